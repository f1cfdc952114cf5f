"""Computes where a new chapter sits in its story's tree."""

import logging
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from branchtale.db.models import Chapter
from branchtale.domain.models import ChapterStatus
from branchtale.exceptions import (
    BusinessRuleViolationError,
    ConflictError,
    ErrorCode,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)


@dataclass
class TreeMetadata:
    """Tree position for a chapter that is about to be created."""

    ancestor_ids: list[str] = field(default_factory=list)
    depth: int = 0
    is_root: bool = True
    parent_chapter: Chapter | None = None


class ChapterTreeBuilder:
    """Validates a parent choice and derives ancestor ids and depth.

    The builder only reads. Inserting the chapter is left to the caller, which
    must still handle the single-root index firing if two roots race.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_root(self, story_id: str) -> Chapter | None:
        stmt = select(Chapter).where(
            Chapter.story_id == story_id,
            Chapter.parent_chapter_id.is_(None),
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def build(
        self,
        story_id: str,
        parent_chapter_id: str | None,
        user_id: str,
        story_creator_id: str,
    ) -> TreeMetadata:
        """Compute tree metadata for a new chapter.

        Args:
            story_id: Story the chapter will belong to
            parent_chapter_id: Parent chapter, or None for the root chapter
            user_id: User creating the chapter
            story_creator_id: Creator of the story

        Returns:
            TreeMetadata with the ancestor chain, depth and parent

        Raises:
            ConflictError: A root is requested but the story already has one
            ForbiddenError: A non-creator tries to add the root chapter
            NotFoundError: The parent chapter does not exist
            ValidationError: The parent belongs to another story
            BusinessRuleViolationError: The parent chapter is deleted
        """
        if parent_chapter_id is None:
            if await self.find_root(story_id) is not None:
                raise ConflictError(
                    "Story already has a root chapter",
                    ErrorCode.ROOT_CHAPTER_EXISTS,
                    {"story_id": story_id},
                )
            if user_id != story_creator_id:
                raise ForbiddenError(
                    "Only the story creator can add the root chapter",
                    ErrorCode.NOT_OWNER,
                    {"story_id": story_id, "user_id": user_id},
                )
            return TreeMetadata()

        parent = await self.session.get(Chapter, parent_chapter_id)
        if parent is None:
            raise NotFoundError(
                f"Parent chapter {parent_chapter_id} not found",
                ErrorCode.PARENT_CHAPTER_NOT_FOUND,
            )

        if parent.story_id != story_id:
            raise ValidationError(
                "Parent chapter belongs to a different story",
                ErrorCode.INVALID_PARENT_CHAPTER,
                {"parent_chapter_id": parent_chapter_id, "story_id": story_id},
            )

        if parent.status == ChapterStatus.DELETED.value:
            raise BusinessRuleViolationError(
                "Cannot branch from a deleted chapter",
                ErrorCode.CHAPTER_DELETED,
                {"parent_chapter_id": parent_chapter_id},
            )

        ancestor_ids = [*parent.ancestor_ids, parent.id]
        logger.debug(f"Chapter under {parent.slug} will sit at depth {parent.depth + 1}")
        return TreeMetadata(
            ancestor_ids=ancestor_ids,
            depth=parent.depth + 1,
            is_root=False,
            parent_chapter=parent,
        )
