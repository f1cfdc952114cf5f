"""Pure domain rules: role permissions, status transitions and ownership checks.

Nothing in this module performs I/O or mutates its arguments. Entities are
accepted as any object exposing the attributes a rule reads (ORM rows in the
services, simple namespaces in tests).
"""

from collections.abc import Iterable
from dataclasses import dataclass, field, fields
from datetime import datetime, timedelta
from types import MappingProxyType
from typing import Any

from branchtale.domain.models import (
    ChapterStatus,
    CollaboratorRole,
    PRStatus,
    StoryStatus,
)


@dataclass(frozen=True)
class RolePermissions:
    """Capability set granted by a collaborator role."""

    can_edit_story_settings: bool = False
    can_delete_story: bool = False
    can_archive_story: bool = False
    can_write_chapters: bool = False
    can_edit_any_chapter: bool = False
    can_delete_any_chapter: bool = False
    can_approve_prs: bool = False
    can_reject_prs: bool = False
    can_review_prs: bool = False
    can_merge_prs: bool = False
    can_invite_collaborators: bool = False
    can_remove_collaborators: bool = False
    can_change_permissions: bool = False
    can_moderate_comments: bool = False
    can_delete_comments: bool = False
    can_ban_from_story: bool = False
    can_view_story_analytics: bool = False


PERMISSION_NAMES = frozenset(f.name for f in fields(RolePermissions))

_ALL = {name: True for name in PERMISSION_NAMES}

ROLE_PERMISSIONS: MappingProxyType[CollaboratorRole, RolePermissions] = MappingProxyType(
    {
        CollaboratorRole.OWNER: RolePermissions(**_ALL),
        CollaboratorRole.CO_AUTHOR: RolePermissions(
            **{
                **_ALL,
                "can_delete_story": False,
                "can_remove_collaborators": False,
                "can_change_permissions": False,
            }
        ),
        CollaboratorRole.MODERATOR: RolePermissions(
            can_write_chapters=True,
            can_approve_prs=True,
            can_reject_prs=True,
            can_review_prs=True,
            can_merge_prs=True,
            can_moderate_comments=True,
            can_delete_comments=True,
            can_ban_from_story=True,
        ),
        # Reviewers comment on PRs but cannot approve or reject them
        CollaboratorRole.REVIEWER: RolePermissions(
            can_write_chapters=True,
            can_review_prs=True,
        ),
        CollaboratorRole.CONTRIBUTOR: RolePermissions(can_write_chapters=True),
    }
)

ROLE_HIERARCHY: MappingProxyType[CollaboratorRole, int] = MappingProxyType(
    {
        CollaboratorRole.CONTRIBUTOR: 0,
        CollaboratorRole.REVIEWER: 1,
        CollaboratorRole.MODERATOR: 2,
        CollaboratorRole.CO_AUTHOR: 3,
        CollaboratorRole.OWNER: 4,
    }
)

STORY_STATUS_TRANSITIONS: MappingProxyType[StoryStatus, frozenset[StoryStatus]] = MappingProxyType(
    {
        StoryStatus.DRAFT: frozenset(
            {StoryStatus.PUBLISHED, StoryStatus.ARCHIVED, StoryStatus.DELETED}
        ),
        StoryStatus.PUBLISHED: frozenset({StoryStatus.ARCHIVED, StoryStatus.DELETED}),
        StoryStatus.ARCHIVED: frozenset({StoryStatus.DELETED}),
        StoryStatus.DELETED: frozenset(),
    }
)

CHAPTER_STATUS_TRANSITIONS: MappingProxyType[ChapterStatus, frozenset[ChapterStatus]] = MappingProxyType(
    {
        ChapterStatus.DRAFT: frozenset({ChapterStatus.ACTIVE, ChapterStatus.DELETED}),
        ChapterStatus.ACTIVE: frozenset({ChapterStatus.DELETED}),
        ChapterStatus.DELETED: frozenset(),
    }
)

PR_STATUS_TRANSITIONS: MappingProxyType[PRStatus, frozenset[PRStatus]] = MappingProxyType(
    {
        PRStatus.OPEN: frozenset({PRStatus.APPROVED, PRStatus.REJECTED, PRStatus.CLOSED}),
        PRStatus.APPROVED: frozenset({PRStatus.MERGED, PRStatus.CLOSED}),
        PRStatus.REJECTED: frozenset(),
        PRStatus.CLOSED: frozenset(),
        PRStatus.MERGED: frozenset(),
    }
)

TERMINAL_PR_STATUSES = frozenset(
    status for status, allowed in PR_STATUS_TRANSITIONS.items() if not allowed
)


def _as_role(role: CollaboratorRole | str) -> CollaboratorRole:
    return role if isinstance(role, CollaboratorRole) else CollaboratorRole(role)


# =============================================================================
# Roles and permissions
# =============================================================================


def get_role_permissions(role: CollaboratorRole | str) -> RolePermissions:
    """Return the fixed capability set of a role."""
    return ROLE_PERMISSIONS[_as_role(role)]


def has_story_permission(role: CollaboratorRole | str | None, permission: str) -> bool:
    """Check whether a role grants a named permission.

    Args:
        role: Collaborator role, or None for users without a role
        permission: Attribute name on RolePermissions (e.g. "can_merge_prs")

    Returns:
        True if the role grants the permission. Unknown roles and
        unknown permission names grant nothing.
    """
    if role is None or permission not in PERMISSION_NAMES:
        return False
    try:
        permissions = get_role_permissions(role)
    except ValueError:
        return False
    return getattr(permissions, permission)


def has_minimum_story_role(
    user_role: CollaboratorRole | str,
    required_role: CollaboratorRole | str,
) -> bool:
    return ROLE_HIERARCHY[_as_role(user_role)] >= ROLE_HIERARCHY[_as_role(required_role)]


def check_role_hierarchy(
    inviter_role: CollaboratorRole | str,
    invited_role: CollaboratorRole | str,
) -> bool:
    """An inviter may only grant roles at or below their own level."""
    return has_minimum_story_role(inviter_role, invited_role)


def can_role_create_pr(role: CollaboratorRole | str) -> bool:
    """Every role that can write chapters can submit pull requests."""
    return has_story_permission(role, "can_write_chapters")


def can_invite_collaborators(role: CollaboratorRole | str) -> bool:
    return has_story_permission(role, "can_invite_collaborators")


# =============================================================================
# Status transitions
# =============================================================================


def is_valid_status_transition(current: StoryStatus | str, next_status: StoryStatus | str) -> bool:
    """Check a story status change against the transition table."""
    return StoryStatus(next_status) in STORY_STATUS_TRANSITIONS[StoryStatus(current)]


def is_valid_chapter_transition(
    current: ChapterStatus | str, next_status: ChapterStatus | str
) -> bool:
    return ChapterStatus(next_status) in CHAPTER_STATUS_TRANSITIONS[ChapterStatus(current)]


def is_valid_pr_transition(current: PRStatus | str, next_status: PRStatus | str) -> bool:
    return PRStatus(next_status) in PR_STATUS_TRANSITIONS[PRStatus(current)]


def is_terminal_pr_status(status: PRStatus | str) -> bool:
    return PRStatus(status) in TERMINAL_PR_STATUSES


# =============================================================================
# Ownership
# =============================================================================


def can_edit_story(story: Any, user_id: str) -> bool:
    return story.creator_id == user_id


def can_publish_story(story: Any, user_id: str) -> bool:
    return story.creator_id == user_id and StoryStatus(story.status) == StoryStatus.DRAFT


def can_add_root_chapter(story: Any, user_id: str) -> bool:
    return story.creator_id == user_id


def can_add_chapter_directly(story: Any, user_id: str) -> bool:
    """Only the story creator writes straight into the tree; everyone else opens a PR."""
    return story.creator_id == user_id


def must_use_pr_for_chapter_addition(story: Any, user_id: str) -> bool:
    return not can_add_chapter_directly(story, user_id)


def is_chapter_author(chapter: Any, user_id: str) -> bool:
    return chapter.author_id == user_id


@dataclass
class PublishValidation:
    """Outcome of checking whether a story can be published."""

    can_publish: bool
    errors: list[str] = field(default_factory=list)


def validate_publishing(story: Any, user_id: str, chapter_count: int) -> PublishValidation:
    """Collect every reason a story cannot be published yet.

    Args:
        story: Story with creator_id, status, title and description
        user_id: User attempting to publish
        chapter_count: Number of non-deleted chapters in the story

    Returns:
        PublishValidation with all failed checks listed
    """
    errors: list[str] = []

    if story.creator_id != user_id:
        errors.append("Only the story creator can publish the story")

    if StoryStatus(story.status) != StoryStatus.DRAFT:
        errors.append("Story must be in draft status to be published")

    if chapter_count == 0:
        errors.append("Story must have at least one chapter before publishing")

    if not story.title or len(story.title.strip()) < 3:
        errors.append("Story must have a valid title (minimum 3 characters)")

    if not story.description or len(story.description.strip()) < 10:
        errors.append("Story must have a description (minimum 10 characters)")

    return PublishValidation(can_publish=not errors, errors=errors)


# =============================================================================
# Pull requests
# =============================================================================


def has_duplicate_open_pr(
    author_id: str,
    chapter_slug: str,
    open_pr_chapter_slugs: Iterable[str],
) -> bool:
    """True iff the chapter already appears among the author's open PRs.

    ``open_pr_chapter_slugs`` must already be filtered to ``author_id``.
    """
    return chapter_slug in set(open_pr_chapter_slugs)


def qualifies_for_auto_approve(
    enabled: bool,
    score: int,
    threshold: int,
    created_at: datetime,
    now: datetime,
    time_window_days: int,
) -> bool:
    """Check whether community votes alone are enough to approve a PR."""
    if not enabled:
        return False
    if score < threshold:
        return False
    return now - created_at <= timedelta(days=time_window_days)
