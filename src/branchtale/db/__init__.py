"""Database module for stories, chapters and pull requests."""

from branchtale.db.database import async_session_maker, engine, get_session, init_db
from branchtale.db.models import (
    Base,
    Chapter,
    ChapterVersion,
    Notification,
    PullRequest,
    PullRequestVote,
    Story,
    StoryCollaborator,
)

__all__ = [
    # Engine and sessions
    "async_session_maker",
    "engine",
    "get_session",
    "init_db",
    # Models
    "Base",
    "Chapter",
    "ChapterVersion",
    "Notification",
    "PullRequest",
    "PullRequestVote",
    "Story",
    "StoryCollaborator",
]
