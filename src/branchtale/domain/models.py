"""Enums and value objects shared by the story, chapter and pull request modules."""

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class StoryStatus(str, Enum):
    """Story lifecycle status."""

    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"
    DELETED = "deleted"


class ChapterStatus(str, Enum):
    """Chapter lifecycle status. Chapters are never physically removed."""

    DRAFT = "draft"
    ACTIVE = "active"
    DELETED = "deleted"


class CollaboratorRole(str, Enum):
    """Permission tiers on a story, highest first."""

    OWNER = "owner"
    CO_AUTHOR = "co_author"
    MODERATOR = "moderator"
    REVIEWER = "reviewer"
    CONTRIBUTOR = "contributor"


class CollaboratorStatus(str, Enum):
    """Membership status of a collaborator row."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    REMOVED = "removed"


class PRType(str, Enum):
    """What a pull request proposes to do to the chapter tree."""

    NEW_CHAPTER = "new_chapter"
    EDIT_CHAPTER = "edit_chapter"
    DELETE_CHAPTER = "delete_chapter"


class PRStatus(str, Enum):
    """Pull request workflow status."""

    OPEN = "open"
    APPROVED = "approved"
    REJECTED = "rejected"
    CLOSED = "closed"
    MERGED = "merged"


class PRLabel(str, Enum):
    """Review labels a pull request can carry."""

    NEEDS_REVIEW = "needs_review"
    QUALITY_ISSUE = "quality_issue"
    GRAMMAR = "grammar"
    PLOT_HOLE = "plot_hole"
    GOOD_FIRST_PR = "good_first_pr"


class TimelineAction(str, Enum):
    """Entries recorded on a pull request's audit timeline."""

    CREATED = "created"
    UPDATED = "updated"
    APPROVED = "approved"
    AUTO_APPROVED = "auto_approved"
    REJECTED = "rejected"
    CLOSED = "closed"
    MERGED = "merged"


class ChapterVersionEditType(str, Enum):
    """Why a chapter version snapshot was written."""

    MANUAL_EDIT = "manual_edit"
    PR_MERGE = "pr_merge"
    ADMIN_ROLLBACK = "admin_rollback"
    MODERATION_REMOVAL = "moderation_removal"
    IMPORT = "import"


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what the DateTime columns store."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def slugify(text: str) -> str:
    """Lower-case, hyphen-separated ASCII slug of ``text``."""
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
    return slug or "untitled"


def generate_slug(text: str) -> str:
    """Slug of ``text`` with a short random suffix so titles may repeat."""
    return f"{slugify(text)[:80]}-{uuid.uuid4().hex[:8]}"


@dataclass
class TimelineEntry:
    """One append-only entry of a pull request timeline."""

    action: TimelineAction | str
    performed_by: str | None
    performed_at: datetime = field(default_factory=utcnow)
    metadata: dict[str, Any] | None = None

    def __post_init__(self):
        """Convert string values to enums."""
        if isinstance(self.action, str):
            self.action = TimelineAction(self.action)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "action": self.action.value,
            "performed_by": self.performed_by,
            "performed_at": self.performed_at.isoformat(),
        }
        if self.metadata:
            data["metadata"] = self.metadata
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TimelineEntry":
        return cls(
            action=data["action"],
            performed_by=data.get("performed_by"),
            performed_at=datetime.fromisoformat(data["performed_at"]),
            metadata=data.get("metadata"),
        )


@dataclass
class PRChanges:
    """Content change carried by a pull request."""

    proposed: str
    original: str | None = None
    diff: str | None = None
    line_count: int | None = None
    additions_count: int | None = None
    deletions_count: int | None = None
