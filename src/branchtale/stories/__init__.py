"""Stories and their collaborators."""

from branchtale.stories.service import StoryService, resolve_story_role

__all__ = [
    "StoryService",
    "resolve_story_role",
]
