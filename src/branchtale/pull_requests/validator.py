"""Gatekeeping checks run before a pull request is opened."""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from branchtale.db.models import Chapter, PullRequest, Story, StoryCollaborator
from branchtale.domain.models import (
    CollaboratorRole,
    CollaboratorStatus,
    PRStatus,
    PRType,
)
from branchtale.domain.rules import can_role_create_pr, has_duplicate_open_pr
from branchtale.exceptions import ConflictError, ErrorCode, ForbiddenError, NotFoundError
from branchtale.stories.service import get_story_collaborator

logger = logging.getLogger(__name__)


class PullRequestValidator:
    """Checks story, membership, role, targets and duplicates. Never writes."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _find_story(self, story_slug: str) -> Story | None:
        result = await self.session.execute(select(Story).where(Story.slug == story_slug))
        return result.scalars().first()

    async def _find_chapter(self, chapter_slug: str | None) -> Chapter | None:
        if not chapter_slug:
            return None
        result = await self.session.execute(select(Chapter).where(Chapter.slug == chapter_slug))
        return result.scalars().first()

    async def open_chapter_slugs(self, author_id: str, story_slug: str) -> list[str]:
        """Chapter slugs targeted by the author's open PRs on a story."""
        stmt = select(PullRequest.chapter_slug).where(
            PullRequest.author_id == author_id,
            PullRequest.story_slug == story_slug,
            PullRequest.status == PRStatus.OPEN.value,
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def validate_create_request(
        self,
        user_id: str,
        story_slug: str,
        chapter_slug: str | None,
        parent_chapter_slug: str | None,
        pr_type: PRType | str,
    ) -> StoryCollaborator:
        """Validate that a user may open this pull request.

        Checks run in order and the first failure is raised.

        Args:
            user_id: Author of the pull request
            story_slug: Story the pull request targets
            chapter_slug: Target chapter (the future slug for new chapters)
            parent_chapter_slug: Parent chapter for new chapters
            pr_type: Kind of pull request

        Returns:
            The author's accepted collaborator record

        Raises:
            NotFoundError: Story, target chapter or parent chapter missing
                (or not part of this story)
            ForbiddenError: Not an accepted collaborator, or role cannot write
            ConflictError: The author already has an open PR for the chapter
        """
        pr_type = PRType(pr_type)

        story = await self._find_story(story_slug)
        if story is None:
            raise NotFoundError(f"Story {story_slug} not found", ErrorCode.STORY_NOT_FOUND)

        collaborator = await get_story_collaborator(self.session, story.id, user_id)
        if collaborator is None and story.creator_id == user_id:
            collaborator = StoryCollaborator(
                story_id=story.id,
                user_id=user_id,
                role=CollaboratorRole.OWNER.value,
                status=CollaboratorStatus.ACCEPTED.value,
            )
        if collaborator is None:
            logger.warning(f"{user_id} is not a collaborator on {story_slug}")
            raise ForbiddenError(
                "You must be an accepted collaborator to create a pull request",
                ErrorCode.NOT_COLLABORATOR,
            )

        if not can_role_create_pr(collaborator.role):
            raise ForbiddenError(
                "Your collaborator role does not permit creating pull requests",
                ErrorCode.INSUFFICIENT_ROLE,
                {"role": collaborator.role},
            )

        if pr_type == PRType.NEW_CHAPTER:
            parent = await self._find_chapter(parent_chapter_slug)
            if parent is None or parent.story_id != story.id:
                raise NotFoundError(
                    f"Parent chapter {parent_chapter_slug} not found in {story_slug}",
                    ErrorCode.PARENT_CHAPTER_NOT_FOUND,
                )
        else:
            chapter = await self._find_chapter(chapter_slug)
            if chapter is None or chapter.story_id != story.id:
                raise NotFoundError(
                    f"Chapter {chapter_slug} not found in {story_slug}",
                    ErrorCode.CHAPTER_NOT_FOUND,
                )

        open_slugs = await self.open_chapter_slugs(user_id, story_slug)
        if chapter_slug and has_duplicate_open_pr(user_id, chapter_slug, open_slugs):
            raise ConflictError(
                "You already have an open pull request for this chapter; close or merge it first",
                ErrorCode.DUPLICATE_OPEN_PR,
                {"chapter_slug": chapter_slug},
            )

        return collaborator
