"""SQLAlchemy models for stories, the chapter tree and pull requests.

List-valued fields (ancestor ids, labels, timeline) are stored as JSON text
and exposed through properties. Uniqueness rules that the services rely on
for race safety live here as indexes:

- one root chapter per story (partial unique index on story_id)
- one open pull request per (author_id, chapter_slug)
"""

import json
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, validates

from branchtale.domain.models import (
    ChapterStatus,
    CollaboratorStatus,
    PRChanges,
    PRStatus,
    StoryStatus,
    TimelineEntry,
    utcnow,
)
from branchtale.exceptions import BusinessRuleViolationError, ErrorCode


def new_id() -> str:
    return str(uuid.uuid4())


def _json_to_list(value: str | None) -> list[Any]:
    """Convert JSON string to list."""
    if not value:
        return []
    try:
        return json.loads(value)
    except (json.JSONDecodeError, TypeError):
        return []


def _list_to_json(value: list[Any]) -> str:
    """Convert list to JSON string."""
    return json.dumps(value)


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


# =============================================================================
# Stories
# =============================================================================


class Story(Base):
    """A story owning one chapter tree."""

    __tablename__ = "stories"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    slug: Mapped[str] = mapped_column(String(256), unique=True, index=True)
    title: Mapped[str] = mapped_column(String(512))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    creator_id: Mapped[str] = mapped_column(String(64), index=True)

    status: Mapped[str] = mapped_column(String(32), default=StoryStatus.DRAFT.value, index=True)
    # Statuses: draft, published, archived, deleted
    published_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<Story(slug={self.slug}, status={self.status})>"


class StoryCollaborator(Base):
    """Membership of a user in a story, with the role granted to them."""

    __tablename__ = "story_collaborators"
    __table_args__ = (UniqueConstraint("story_id", "user_id", name="uq_story_collaborator"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    story_id: Mapped[str] = mapped_column(ForeignKey("stories.id"), index=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)

    role: Mapped[str] = mapped_column(String(32))
    # Roles: owner, co_author, moderator, reviewer, contributor
    status: Mapped[str] = mapped_column(String(32), default=CollaboratorStatus.PENDING.value)
    # Statuses: pending, accepted, declined, removed

    invited_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<StoryCollaborator(story={self.story_id}, user={self.user_id}, role={self.role})>"


# =============================================================================
# Chapter tree
# =============================================================================


class Chapter(Base):
    """A node of a story's chapter tree.

    ``ancestor_ids`` lists the path from the root (first) to the parent (last);
    ``depth`` is its length. Both are fixed once the chapter has been stored.
    """

    __tablename__ = "chapters"
    __table_args__ = (
        Index(
            "uq_chapters_single_root",
            "story_id",
            unique=True,
            sqlite_where=text("parent_chapter_id IS NULL"),
            postgresql_where=text("parent_chapter_id IS NULL"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    slug: Mapped[str] = mapped_column(String(256), unique=True, index=True)
    story_id: Mapped[str] = mapped_column(ForeignKey("stories.id"), index=True)
    parent_chapter_id: Mapped[str | None] = mapped_column(
        ForeignKey("chapters.id"), nullable=True, index=True
    )

    # Tree position
    ancestor_ids_json: Mapped[str] = mapped_column("ancestor_ids", Text, default="[]")
    depth: Mapped[int] = mapped_column(Integer, default=0)

    # Content
    title: Mapped[str] = mapped_column(String(512))
    content: Mapped[str] = mapped_column(Text, default="")
    author_id: Mapped[str] = mapped_column(String(64), index=True)
    version: Mapped[int] = mapped_column(Integer, default=1)

    status: Mapped[str] = mapped_column(String(32), default=ChapterStatus.ACTIVE.value, index=True)
    # Statuses: draft, active, deleted

    # Review state of the pull request that produced this chapter
    is_pr: Mapped[bool] = mapped_column(Boolean, default=False)
    pr_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    pr_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    pr_submitted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    pr_reviewed_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    pr_reviewed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    pr_rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Stats
    reads: Mapped[int] = mapped_column(Integer, default=0)
    comments: Mapped[int] = mapped_column(Integer, default=0)
    child_branches: Mapped[int] = mapped_column(Integer, default=0)
    report_count: Mapped[int] = mapped_column(Integer, default=0)
    is_flagged: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    @property
    def ancestor_ids(self) -> list[str]:
        return _json_to_list(self.ancestor_ids_json)

    @ancestor_ids.setter
    def ancestor_ids(self, value: list[str]) -> None:
        self.ancestor_ids_json = _list_to_json(list(value))

    @property
    def is_root(self) -> bool:
        return self.parent_chapter_id is None

    @property
    def is_deleted(self) -> bool:
        return self.status == ChapterStatus.DELETED.value

    @validates("ancestor_ids_json", "depth")
    def _freeze_tree_position(self, key: str, value: Any) -> Any:
        current = self.__dict__.get(key)
        if current is not None and current != value:
            raise BusinessRuleViolationError(
                f"Chapter {self.slug}: {key.removesuffix('_json')} cannot change once set",
                ErrorCode.IMMUTABLE_TREE_METADATA,
                {"chapter_id": self.id},
            )
        return value

    def __repr__(self) -> str:
        return f"<Chapter(slug={self.slug}, depth={self.depth}, status={self.status})>"


class ChapterVersion(Base):
    """Immutable snapshot of a chapter after each content change."""

    __tablename__ = "chapter_versions"
    __table_args__ = (UniqueConstraint("chapter_id", "version", name="uq_chapter_version"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    chapter_id: Mapped[str] = mapped_column(ForeignKey("chapters.id"), index=True)
    version: Mapped[int] = mapped_column(Integer)

    # Content snapshot
    title: Mapped[str] = mapped_column(String(512))
    content: Mapped[str] = mapped_column(Text)

    # Change tracking
    edited_by: Mapped[str] = mapped_column(String(64))
    edit_type: Mapped[str] = mapped_column(String(32))
    # Edit types: manual_edit, pr_merge, admin_rollback, moderation_removal, import
    pr_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    change_summary: Mapped[str | None] = mapped_column(String(512), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    def __repr__(self) -> str:
        return f"<ChapterVersion(chapter_id={self.chapter_id}, version={self.version})>"


# =============================================================================
# Pull requests
# =============================================================================


class PullRequest(Base):
    """A proposed change to a story's chapter tree."""

    __tablename__ = "pull_requests"
    __table_args__ = (
        Index(
            "uq_pull_requests_open_per_chapter",
            "author_id",
            "chapter_slug",
            unique=True,
            sqlite_where=text("status = 'open'"),
            postgresql_where=text("status = 'open'"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    story_slug: Mapped[str] = mapped_column(String(256), index=True)
    chapter_slug: Mapped[str] = mapped_column(String(256), index=True)
    parent_chapter_slug: Mapped[str | None] = mapped_column(String(256), nullable=True)
    author_id: Mapped[str] = mapped_column(String(64), index=True)

    title: Mapped[str] = mapped_column(String(512))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_draft: Mapped[bool] = mapped_column(Boolean, default=False)
    pr_type: Mapped[str] = mapped_column(String(32))
    # Types: new_chapter, edit_chapter, delete_chapter

    # Changes
    original_content: Mapped[str | None] = mapped_column(Text, nullable=True)
    proposed_content: Mapped[str] = mapped_column(Text, default="")
    diff: Mapped[str | None] = mapped_column(Text, nullable=True)
    line_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    additions_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    deletions_count: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Lifecycle
    status: Mapped[str] = mapped_column(String(32), default=PRStatus.OPEN.value, index=True)
    # Statuses: open, approved, rejected, closed, merged
    reviewed_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    merged_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    merged_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    merged_chapter_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    closed_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    close_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Engagement
    upvotes: Mapped[int] = mapped_column(Integer, default=0)
    downvotes: Mapped[int] = mapped_column(Integer, default=0)
    score: Mapped[int] = mapped_column(Integer, default=0)
    comment_count: Mapped[int] = mapped_column(Integer, default=0)
    views: Mapped[int] = mapped_column(Integer, default=0)
    discussions: Mapped[int] = mapped_column(Integer, default=0)
    labels_json: Mapped[str] = mapped_column("labels", Text, default="[]")

    # Auto-approval by community votes
    auto_approve_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    auto_approve_threshold: Mapped[int] = mapped_column(Integer, default=10)
    auto_approve_window_days: Mapped[int] = mapped_column(Integer, default=7)
    auto_approved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Append-only audit trail
    timeline_json: Mapped[str] = mapped_column("timeline", Text, default="[]")
    # Bumped by every write to status, content or timeline; guards compare-and-set
    revision: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    @property
    def changes(self) -> PRChanges:
        return PRChanges(
            proposed=self.proposed_content,
            original=self.original_content,
            diff=self.diff,
            line_count=self.line_count,
            additions_count=self.additions_count,
            deletions_count=self.deletions_count,
        )

    @changes.setter
    def changes(self, value: PRChanges) -> None:
        self.proposed_content = value.proposed
        self.original_content = value.original
        self.diff = value.diff
        self.line_count = value.line_count
        self.additions_count = value.additions_count
        self.deletions_count = value.deletions_count

    @property
    def labels(self) -> list[str]:
        return _json_to_list(self.labels_json)

    @labels.setter
    def labels(self, value: list[str]) -> None:
        self.labels_json = _list_to_json(list(value))

    @property
    def timeline(self) -> list[TimelineEntry]:
        return [TimelineEntry.from_dict(item) for item in _json_to_list(self.timeline_json)]

    def timeline_json_with(self, entry: TimelineEntry) -> str:
        """Timeline JSON with ``entry`` appended, leaving this row untouched."""
        entries = _json_to_list(self.timeline_json)
        entries.append(entry.to_dict())
        return _list_to_json(entries)

    def add_timeline_entry(self, entry: TimelineEntry) -> None:
        """Append to the timeline; earlier entries are never rewritten."""
        self.timeline_json = self.timeline_json_with(entry)

    def __repr__(self) -> str:
        return f"<PullRequest(id={self.id}, type={self.pr_type}, status={self.status})>"


class PullRequestVote(Base):
    """A single user's vote on a pull request (+1 or -1)."""

    __tablename__ = "pull_request_votes"
    __table_args__ = (UniqueConstraint("pr_id", "voter_id", name="uq_pull_request_vote"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pr_id: Mapped[str] = mapped_column(ForeignKey("pull_requests.id"), index=True)
    voter_id: Mapped[str] = mapped_column(String(64), index=True)
    value: Mapped[int] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<PullRequestVote(pr_id={self.pr_id}, voter={self.voter_id}, value={self.value})>"


# =============================================================================
# Notifications
# =============================================================================


class Notification(Base):
    """A notification delivered to one user."""

    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    type: Mapped[str] = mapped_column(String(64), index=True)
    title: Mapped[str] = mapped_column(String(512))
    message: Mapped[str] = mapped_column(Text)
    action_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)

    is_read: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    read_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    related_story_slug: Mapped[str | None] = mapped_column(String(256), nullable=True)
    related_pr_id: Mapped[str | None] = mapped_column(String(36), nullable=True)

    def __repr__(self) -> str:
        return f"<Notification(user={self.user_id}, type={self.type}, read={self.is_read})>"
