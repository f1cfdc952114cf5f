"""Domain enums, value objects and pure rules."""

from branchtale.domain.models import (
    ChapterStatus,
    ChapterVersionEditType,
    CollaboratorRole,
    CollaboratorStatus,
    PRChanges,
    PRLabel,
    PRStatus,
    PRType,
    StoryStatus,
    TimelineAction,
    TimelineEntry,
    generate_slug,
    slugify,
    utcnow,
)
from branchtale.domain.rules import (
    ROLE_HIERARCHY,
    ROLE_PERMISSIONS,
    PublishValidation,
    RolePermissions,
    has_minimum_story_role,
    has_story_permission,
    is_valid_status_transition,
    validate_publishing,
)

__all__ = [
    # Enums
    "ChapterStatus",
    "ChapterVersionEditType",
    "CollaboratorRole",
    "CollaboratorStatus",
    "PRLabel",
    "PRStatus",
    "PRType",
    "StoryStatus",
    "TimelineAction",
    # Value objects
    "PRChanges",
    "TimelineEntry",
    "generate_slug",
    "slugify",
    "utcnow",
    # Rules
    "ROLE_HIERARCHY",
    "ROLE_PERMISSIONS",
    "PublishValidation",
    "RolePermissions",
    "has_minimum_story_role",
    "has_story_permission",
    "is_valid_status_transition",
    "validate_publishing",
]
