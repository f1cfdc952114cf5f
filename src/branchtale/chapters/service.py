"""Chapter creation, version history and soft deletion."""

import logging

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from branchtale.chapters.tree_builder import ChapterTreeBuilder, TreeMetadata
from branchtale.db.models import Chapter, ChapterVersion, PullRequest, Story
from branchtale.domain.models import (
    ChapterStatus,
    ChapterVersionEditType,
    generate_slug,
    utcnow,
)
from branchtale.domain.rules import (
    has_story_permission,
    is_chapter_author,
    is_valid_chapter_transition,
    must_use_pr_for_chapter_addition,
)
from branchtale.exceptions import (
    BusinessRuleViolationError,
    ConflictError,
    ErrorCode,
    ForbiddenError,
    NotFoundError,
)
from branchtale.stories.service import resolve_story_role

logger = logging.getLogger(__name__)


class ChapterService:
    """Reads and changes chapters of a story's tree.

    Methods named ``insert_*``/``apply_*``/``mark_*`` only flush; they are
    the building blocks used inside a caller's transaction (such as a pull
    request merge). The public operations commit.
    """

    def __init__(self, session: AsyncSession, tree_builder: ChapterTreeBuilder | None = None):
        self.session = session
        self.tree_builder = tree_builder or ChapterTreeBuilder(session)

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    async def get_by_id(self, chapter_id: str) -> Chapter:
        chapter = await self.session.get(Chapter, chapter_id)
        if chapter is None:
            raise NotFoundError(f"Chapter {chapter_id} not found", ErrorCode.CHAPTER_NOT_FOUND)
        return chapter

    async def find_by_slug(self, slug: str) -> Chapter | None:
        stmt = select(Chapter).where(Chapter.slug == slug)
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def get_by_slug(self, slug: str) -> Chapter:
        chapter = await self.find_by_slug(slug)
        if chapter is None:
            raise NotFoundError(f"Chapter {slug} not found", ErrorCode.CHAPTER_NOT_FOUND)
        return chapter

    async def find_root(self, story_id: str) -> Chapter | None:
        return await self.tree_builder.find_root(story_id)

    async def list_children(self, chapter_id: str) -> list[Chapter]:
        stmt = (
            select(Chapter)
            .where(Chapter.parent_chapter_id == chapter_id)
            .order_by(Chapter.created_at)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_ancestors(self, chapter_id: str) -> list[Chapter]:
        """Return the chapters from the root down to the chapter's parent."""
        chapter = await self.get_by_id(chapter_id)
        ancestor_ids = chapter.ancestor_ids
        if not ancestor_ids:
            return []

        stmt = select(Chapter).where(Chapter.id.in_(ancestor_ids))
        result = await self.session.execute(stmt)
        by_id = {c.id: c for c in result.scalars().all()}
        return [by_id[i] for i in ancestor_ids if i in by_id]

    async def list_versions(self, chapter_id: str) -> list[ChapterVersion]:
        """List a chapter's snapshots, newest first."""
        stmt = (
            select(ChapterVersion)
            .where(ChapterVersion.chapter_id == chapter_id)
            .order_by(ChapterVersion.version.desc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    # -------------------------------------------------------------------------
    # Transaction building blocks
    # -------------------------------------------------------------------------

    def _snapshot(
        self,
        chapter: Chapter,
        edited_by: str,
        edit_type: ChapterVersionEditType,
        pr_id: str | None = None,
        change_summary: str | None = None,
    ) -> ChapterVersion:
        version = ChapterVersion(
            chapter_id=chapter.id,
            version=chapter.version,
            title=chapter.title,
            content=chapter.content,
            edited_by=edited_by,
            edit_type=edit_type.value,
            pr_id=pr_id,
            change_summary=change_summary,
        )
        self.session.add(version)
        return version

    async def insert_chapter(
        self,
        story: Story,
        tree: TreeMetadata,
        title: str,
        content: str,
        author_id: str,
        slug: str | None = None,
        edit_type: ChapterVersionEditType = ChapterVersionEditType.MANUAL_EDIT,
        pull_request: PullRequest | None = None,
    ) -> Chapter:
        """Insert a chapter at a computed tree position and write version 1.

        Raises:
            IntegrityError: Slug or single-root index violated (caller maps it)
        """
        now = utcnow()
        chapter = Chapter(
            slug=slug or generate_slug(title),
            story_id=story.id,
            parent_chapter_id=tree.parent_chapter.id if tree.parent_chapter else None,
            ancestor_ids=tree.ancestor_ids,
            depth=tree.depth,
            title=title,
            content=content,
            author_id=author_id,
            version=1,
            status=ChapterStatus.ACTIVE.value,
        )
        if pull_request is not None:
            chapter.is_pr = True
            chapter.pr_id = pull_request.id
            chapter.pr_status = pull_request.status
            chapter.pr_submitted_at = pull_request.created_at
            chapter.pr_reviewed_by = pull_request.reviewed_by
            chapter.pr_reviewed_at = pull_request.reviewed_at or now

        self.session.add(chapter)
        await self.session.flush()

        if tree.parent_chapter is not None:
            await self.session.execute(
                update(Chapter)
                .where(Chapter.id == tree.parent_chapter.id)
                .values(child_branches=Chapter.child_branches + 1)
                .execution_options(synchronize_session=False)
            )
            await self.session.refresh(tree.parent_chapter, ["child_branches"])

        self._snapshot(
            chapter,
            author_id,
            edit_type,
            pr_id=pull_request.id if pull_request else None,
            change_summary="Chapter created",
        )
        await self.session.flush()
        return chapter

    async def apply_content_change(
        self,
        chapter: Chapter,
        content: str,
        edited_by: str,
        edit_type: ChapterVersionEditType,
        title: str | None = None,
        pr_id: str | None = None,
        change_summary: str | None = None,
    ) -> Chapter:
        """Replace content, bump the version and snapshot the result.

        The update only applies if the chapter is still at the version that
        was read, so two concurrent changes cannot both win.

        Raises:
            BusinessRuleViolationError: The chapter is deleted
            ConflictError: The chapter changed since it was read
        """
        if chapter.is_deleted:
            raise BusinessRuleViolationError(
                f"Chapter {chapter.slug} is deleted", ErrorCode.CHAPTER_DELETED
            )

        expected = chapter.version
        result = await self.session.execute(
            update(Chapter)
            .where(
                Chapter.id == chapter.id,
                Chapter.version == expected,
                Chapter.status != ChapterStatus.DELETED.value,
            )
            .values(
                content=content,
                title=title if title is not None else chapter.title,
                version=expected + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise ConflictError(
                f"Chapter {chapter.slug} changed while the update was in progress",
                ErrorCode.CHAPTER_VERSION_CHANGED,
                {"chapter_id": chapter.id, "expected_version": expected},
            )

        await self.session.refresh(chapter)
        self._snapshot(chapter, edited_by, edit_type, pr_id=pr_id, change_summary=change_summary)
        await self.session.flush()
        return chapter

    async def mark_deleted(
        self,
        chapter: Chapter,
        edited_by: str,
        edit_type: ChapterVersionEditType,
        pr_id: str | None = None,
        change_summary: str | None = None,
    ) -> Chapter:
        """Move a chapter to ``deleted``; its content is kept.

        Raises:
            BusinessRuleViolationError: The chapter cannot move to deleted
            ConflictError: The chapter changed since it was read
        """
        if not is_valid_chapter_transition(chapter.status, ChapterStatus.DELETED):
            raise BusinessRuleViolationError(
                f"Chapter {chapter.slug} cannot move from {chapter.status} to deleted",
                ErrorCode.INVALID_STATUS_TRANSITION,
                {"from": chapter.status, "to": ChapterStatus.DELETED.value},
            )

        expected = chapter.version
        result = await self.session.execute(
            update(Chapter)
            .where(
                Chapter.id == chapter.id,
                Chapter.version == expected,
                Chapter.status == chapter.status,
            )
            .values(
                status=ChapterStatus.DELETED.value,
                version=expected + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise ConflictError(
                f"Chapter {chapter.slug} changed while the deletion was in progress",
                ErrorCode.CHAPTER_VERSION_CHANGED,
                {"chapter_id": chapter.id, "expected_version": expected},
            )

        await self.session.refresh(chapter)
        self._snapshot(
            chapter,
            edited_by,
            edit_type,
            pr_id=pr_id,
            change_summary=change_summary or "Chapter deleted",
        )
        await self.session.flush()
        return chapter

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def create_chapter(
        self,
        story_slug: str,
        user_id: str,
        title: str,
        content: str,
        parent_chapter_id: str | None = None,
        slug: str | None = None,
    ) -> Chapter:
        """Add a chapter directly to a story's tree.

        Only the story creator writes directly; other users submit a
        ``new_chapter`` pull request instead.

        Args:
            story_slug: Story to add the chapter to
            user_id: User adding the chapter
            title: Chapter title
            content: Chapter text
            parent_chapter_id: Parent chapter, or None for the root chapter
            slug: Explicit slug; generated from the title when omitted

        Returns:
            The created Chapter at version 1

        Raises:
            NotFoundError: Story or parent chapter does not exist
            ForbiddenError: The user must go through a pull request
            ConflictError: The story already has a root, or the slug is taken
            ValidationError: The parent is in another story or deleted
        """
        stmt = select(Story).where(Story.slug == story_slug)
        result = await self.session.execute(stmt)
        story = result.scalars().first()
        if story is None:
            raise NotFoundError(f"Story {story_slug} not found", ErrorCode.STORY_NOT_FOUND)

        if parent_chapter_id is not None and must_use_pr_for_chapter_addition(story, user_id):
            logger.warning(f"{user_id} tried to add a chapter to {story_slug} without a PR")
            raise ForbiddenError(
                "Only the story creator can add chapters directly; open a pull request instead",
                ErrorCode.NOT_OWNER,
            )

        tree = await self.tree_builder.build(story.id, parent_chapter_id, user_id, story.creator_id)

        try:
            chapter = await self.insert_chapter(story, tree, title, content, user_id, slug=slug)
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            if tree.is_root:
                raise ConflictError(
                    "Story already has a root chapter",
                    ErrorCode.ROOT_CHAPTER_EXISTS,
                    {"story_id": story.id},
                ) from None
            raise ConflictError(
                "A chapter with this slug already exists",
                ErrorCode.CHAPTER_ALREADY_EXISTS,
                {"slug": slug},
            ) from None

        logger.info(f"Created chapter {chapter.slug} in {story_slug} at depth {chapter.depth}")
        return chapter

    async def _require_permission(
        self, story_id: str, user_id: str, permission: str
    ) -> Story:
        story = await self.session.get(Story, story_id)
        if story is None:
            raise NotFoundError(f"Story {story_id} not found", ErrorCode.STORY_NOT_FOUND)
        role = await resolve_story_role(self.session, story, user_id)
        if not has_story_permission(role, permission):
            raise ForbiddenError(
                "You do not have permission to change this chapter",
                ErrorCode.INSUFFICIENT_ROLE,
                {"permission": permission},
            )
        return story

    async def soft_delete(self, chapter_id: str, user_id: str) -> Chapter:
        """Mark a chapter deleted. Its author or a role that may delete any chapter can do this.

        Raises:
            NotFoundError: The chapter does not exist
            ForbiddenError: The user may not delete this chapter
            BusinessRuleViolationError: The chapter is already deleted
        """
        chapter = await self.get_by_id(chapter_id)
        if not is_chapter_author(chapter, user_id):
            await self._require_permission(chapter.story_id, user_id, "can_delete_any_chapter")

        await self.mark_deleted(chapter, user_id, ChapterVersionEditType.MANUAL_EDIT)
        await self.session.commit()

        logger.info(f"Deleted chapter {chapter.slug} by {user_id}")
        return chapter

    async def restore_version(self, chapter_id: str, version: int, user_id: str) -> Chapter:
        """Roll a chapter's content back to an earlier snapshot.

        The rollback is a new version; history is never rewritten.

        Raises:
            NotFoundError: Chapter or version does not exist
            ForbiddenError: The user may not edit every chapter of the story
        """
        chapter = await self.get_by_id(chapter_id)
        await self._require_permission(chapter.story_id, user_id, "can_edit_any_chapter")

        stmt = select(ChapterVersion).where(
            ChapterVersion.chapter_id == chapter_id,
            ChapterVersion.version == version,
        )
        result = await self.session.execute(stmt)
        snapshot = result.scalars().first()
        if snapshot is None:
            raise NotFoundError(
                f"Version {version} of chapter {chapter.slug} not found",
                ErrorCode.CHAPTER_VERSION_NOT_FOUND,
            )

        await self.apply_content_change(
            chapter,
            snapshot.content,
            user_id,
            ChapterVersionEditType.ADMIN_ROLLBACK,
            title=snapshot.title,
            change_summary=f"Restored version {version}",
        )
        await self.session.commit()

        logger.info(f"Restored chapter {chapter.slug} to version {version} (now v{chapter.version})")
        return chapter
