"""Pull request validation, diffing and review workflow.

- validator: gatekeeping checks before a pull request is opened
- diff: change payload (original, proposed, unified diff, line stats)
- workflow: open/approve/reject/close/merge state machine and voting
"""

from branchtale.pull_requests.diff import resolve_changes
from branchtale.pull_requests.models import PullRequestCreate
from branchtale.pull_requests.validator import PullRequestValidator
from branchtale.pull_requests.workflow import PullRequestService

__all__ = [
    "PullRequestCreate",
    "PullRequestService",
    "PullRequestValidator",
    "resolve_changes",
]
