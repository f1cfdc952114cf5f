"""Error taxonomy for story, chapter and pull request operations.

Every failure raised by the services carries an ``ErrorCode`` so callers
(an HTTP layer, the CLI) can map it to a response without parsing messages.
Storage failures from SQLAlchemy are not wrapped; they propagate unchanged.
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Stable, translatable error identifiers."""

    # Validation
    VALIDATION_FAILED = "VALIDATION_FAILED"
    INVALID_INPUT = "INVALID_INPUT"
    MISSING_REQUIRED_FIELD = "MISSING_REQUIRED_FIELD"
    STORY_SLUG_REQUIRED = "STORY_SLUG_REQUIRED"
    CHAPTER_SLUG_REQUIRED = "CHAPTER_SLUG_REQUIRED"
    USER_ID_REQUIRED = "USER_ID_REQUIRED"
    ROLE_REQUIRED = "ROLE_REQUIRED"
    INVALID_PARENT_CHAPTER = "INVALID_PARENT_CHAPTER"
    UNKNOWN_NOTIFICATION_TYPE = "UNKNOWN_NOTIFICATION_TYPE"

    # Authorization
    FORBIDDEN = "FORBIDDEN"
    NOT_OWNER = "NOT_OWNER"
    NOT_COLLABORATOR = "NOT_COLLABORATOR"
    INSUFFICIENT_ROLE = "INSUFFICIENT_ROLE"

    # Resources
    NOT_FOUND = "NOT_FOUND"
    STORY_NOT_FOUND = "STORY_NOT_FOUND"
    CHAPTER_NOT_FOUND = "CHAPTER_NOT_FOUND"
    PARENT_CHAPTER_NOT_FOUND = "PARENT_CHAPTER_NOT_FOUND"
    CHAPTER_VERSION_NOT_FOUND = "CHAPTER_VERSION_NOT_FOUND"
    PR_NOT_FOUND = "PR_NOT_FOUND"
    NOTIFICATION_NOT_FOUND = "NOTIFICATION_NOT_FOUND"

    # Conflicts
    CONFLICT = "CONFLICT"
    ROOT_CHAPTER_EXISTS = "ROOT_CHAPTER_EXISTS"
    CHAPTER_ALREADY_EXISTS = "CHAPTER_ALREADY_EXISTS"
    STORY_ALREADY_EXISTS = "STORY_ALREADY_EXISTS"
    COLLABORATOR_ALREADY_EXISTS = "COLLABORATOR_ALREADY_EXISTS"
    DUPLICATE_OPEN_PR = "DUPLICATE_OPEN_PR"
    PR_ALREADY_FINALIZED = "PR_ALREADY_FINALIZED"
    PR_STATE_CHANGED = "PR_STATE_CHANGED"
    CHAPTER_VERSION_CHANGED = "CHAPTER_VERSION_CHANGED"

    # Business rules
    INVALID_STATUS_TRANSITION = "INVALID_STATUS_TRANSITION"
    CHAPTER_DELETED = "CHAPTER_DELETED"
    STORY_NOT_PUBLISHABLE = "STORY_NOT_PUBLISHABLE"
    IMMUTABLE_TREE_METADATA = "IMMUTABLE_TREE_METADATA"


class BranchtaleError(Exception):
    """Base exception for all domain errors."""

    status_code: int = 500
    default_code: ErrorCode = ErrorCode.VALIDATION_FAILED

    def __init__(
        self,
        message: str,
        code: ErrorCode | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"[{self.code.value}] {self.message} ({detail_str})"
        return f"[{self.code.value}] {self.message}"


class ValidationError(BranchtaleError):
    """Malformed or missing input."""

    status_code = 400
    default_code = ErrorCode.VALIDATION_FAILED


class BusinessRuleViolationError(ValidationError):
    """Input is well-formed but breaks a domain rule (e.g. an invalid transition)."""

    status_code = 422
    default_code = ErrorCode.INVALID_STATUS_TRANSITION


class NotificationValidationError(ValidationError):
    """Notification context is missing a field required by its type."""

    def __init__(
        self,
        message: str,
        code: ErrorCode,
        field: str,
        details: dict[str, Any] | None = None,
    ):
        self.field = field
        super().__init__(message, code, {"field": field, **(details or {})})


class NotFoundError(BranchtaleError):
    """A referenced story, chapter, pull request or notification does not exist."""

    status_code = 404
    default_code = ErrorCode.NOT_FOUND


class ForbiddenError(BranchtaleError):
    """The caller lacks the role or ownership the operation requires."""

    status_code = 403
    default_code = ErrorCode.FORBIDDEN


class ConflictError(BranchtaleError):
    """The operation collides with existing state."""

    status_code = 409
    default_code = ErrorCode.CONFLICT


class PullRequestFinalizedError(ConflictError):
    """A transition was attempted on a rejected, closed or merged pull request."""

    def __init__(self, pr_id: str, status: str):
        self.pr_id = pr_id
        self.status = status
        super().__init__(
            f"Pull request {pr_id} is already {status}",
            ErrorCode.PR_ALREADY_FINALIZED,
            {"pr_id": pr_id, "status": status},
        )
