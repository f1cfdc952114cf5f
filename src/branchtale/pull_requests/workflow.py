"""Pull request review workflow: open, approve, reject, close and merge.

State machine::

    open ──► approved ──► merged
      │          │
      ├──► rejected
      └──► closed ◄┘

Every transition is a compare-and-set UPDATE guarded on the expected status
and the row revision, so two reviewers acting at once cannot both win and a
transition never overwrites a timeline entry written after it read the row. Merge applies the change to
the chapter tree, writes the chapter snapshot and flips the status in a
single transaction.
"""

import logging
from collections.abc import Mapping
from typing import Any

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from branchtale.chapters.service import ChapterService
from branchtale.config import settings
from branchtale.db.models import Chapter, PullRequest, PullRequestVote, Story
from branchtale.domain.models import (
    ChapterVersionEditType,
    CollaboratorRole,
    PRStatus,
    PRType,
    TimelineAction,
    TimelineEntry,
    utcnow,
)
from branchtale.domain.rules import (
    has_story_permission,
    is_terminal_pr_status,
    is_valid_pr_transition,
    qualifies_for_auto_approve,
)
from branchtale.exceptions import (
    BusinessRuleViolationError,
    ConflictError,
    ErrorCode,
    ForbiddenError,
    NotFoundError,
    PullRequestFinalizedError,
    ValidationError,
)
from branchtale.notifications.factory import NotificationContext, NotificationType
from branchtale.notifications.service import NotificationService
from branchtale.pull_requests.diff import apply_changes, resolve_changes
from branchtale.pull_requests.models import PullRequestCreate
from branchtale.pull_requests.validator import PullRequestValidator
from branchtale.stories.service import resolve_story_role

logger = logging.getLogger(__name__)

COMMUNITY_ACTOR = "Community votes"


class PullRequestService:
    """Owns the lifecycle of pull requests against a story's chapters."""

    def __init__(
        self,
        session: AsyncSession,
        validator: PullRequestValidator | None = None,
        chapters: ChapterService | None = None,
        notifications: NotificationService | None = None,
    ):
        """Initialize the pull request service.

        Args:
            session: Database session
            validator: Pre-creation checks (built from the session if omitted)
            chapters: Chapter service used by merges
            notifications: Optional notification service for workflow events
        """
        self.session = session
        self.validator = validator or PullRequestValidator(session)
        self.chapters = chapters or ChapterService(session)
        self.notifications = notifications

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    async def get(self, pr_id: str) -> PullRequest:
        pr = await self.session.get(PullRequest, pr_id)
        if pr is None:
            raise NotFoundError(f"Pull request {pr_id} not found", ErrorCode.PR_NOT_FOUND)
        return pr

    async def list_for_story(
        self,
        story_slug: str,
        status: PRStatus | str | None = None,
    ) -> list[PullRequest]:
        """List a story's pull requests, newest first."""
        stmt = select(PullRequest).where(PullRequest.story_slug == story_slug)
        if status is not None:
            stmt = stmt.where(PullRequest.status == PRStatus(status).value)
        stmt = stmt.order_by(PullRequest.created_at.desc())
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def _get_story(self, story_slug: str) -> Story:
        result = await self.session.execute(select(Story).where(Story.slug == story_slug))
        story = result.scalars().first()
        if story is None:
            raise NotFoundError(f"Story {story_slug} not found", ErrorCode.STORY_NOT_FOUND)
        return story

    # -------------------------------------------------------------------------
    # Guards
    # -------------------------------------------------------------------------

    async def _load_open_for_action(self, pr_id: str) -> PullRequest:
        pr = await self.get(pr_id)
        if is_terminal_pr_status(pr.status):
            raise PullRequestFinalizedError(pr.id, pr.status)
        return pr

    async def _require_permission(
        self, story: Story, user_id: str, permission: str
    ) -> CollaboratorRole:
        role = await resolve_story_role(self.session, story, user_id)
        if not has_story_permission(role, permission):
            logger.warning(f"{user_id} lacks {permission} on {story.slug}")
            raise ForbiddenError(
                "You do not have permission to perform this action",
                ErrorCode.INSUFFICIENT_ROLE,
                {"permission": permission},
            )
        return role

    @staticmethod
    def _require_transition(pr: PullRequest, target: PRStatus) -> None:
        if not is_valid_pr_transition(pr.status, target):
            raise BusinessRuleViolationError(
                f"Pull request {pr.id} cannot move from {pr.status} to {target.value}",
                ErrorCode.INVALID_STATUS_TRANSITION,
                {"from": pr.status, "to": target.value},
            )

    async def _compare_and_set(
        self,
        pr: PullRequest,
        expected: PRStatus,
        target: PRStatus,
        values: dict[Any, Any],
        entry: TimelineEntry,
    ) -> bool:
        """Apply a transition only if the PR is still in ``expected`` and unchanged since read.

        The timeline is rewritten from the copy that was read, so the update
        must also match the revision; otherwise a concurrent entry would be lost.

        Returns:
            True if this call performed the transition
        """
        now = utcnow()
        stmt = (
            update(PullRequest)
            .where(
                PullRequest.id == pr.id,
                PullRequest.status == expected.value,
                PullRequest.revision == pr.revision,
            )
            .values(
                {
                    PullRequest.status: target.value,
                    PullRequest.timeline_json: pr.timeline_json_with(entry),
                    PullRequest.revision: pr.revision + 1,
                    PullRequest.updated_at: now,
                    **values,
                }
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        await self.session.refresh(pr)
        return result.rowcount == 1

    async def _transition(
        self,
        pr: PullRequest,
        expected: PRStatus,
        target: PRStatus,
        values: dict[Any, Any],
        entry: TimelineEntry,
    ) -> None:
        if await self._compare_and_set(pr, expected, target, values, entry):
            return
        if is_terminal_pr_status(pr.status):
            raise PullRequestFinalizedError(pr.id, pr.status)
        raise ConflictError(
            f"Pull request {pr.id} was changed concurrently (now {pr.status})",
            ErrorCode.PR_STATE_CHANGED,
            {"expected": expected.value, "actual": pr.status, "revision": pr.revision},
        )

    # -------------------------------------------------------------------------
    # Notifications
    # -------------------------------------------------------------------------

    async def _notify(
        self,
        user_id: str,
        notification_type: NotificationType,
        pr: PullRequest,
        story: Story,
        actor_id: str | None,
        actor_name: str | None = None,
    ) -> None:
        """Send a workflow notification; failures never undo the transition.

        The display name is shown in the message; the raw id is used when no
        name is known.
        """
        if not self.notifications:
            return
        try:
            await self.notifications.notify(
                user_id,
                notification_type,
                NotificationContext(
                    actor=actor_name or actor_id,
                    actor_id=actor_id,
                    story_name=story.title,
                    story_slug=story.slug,
                    pr=pr.title,
                    pr_id=pr.id,
                ),
            )
        except Exception as e:
            logger.error(f"Failed to send {notification_type.value} for PR {pr.id}: {e}")

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def create(self, dto: PullRequestCreate | Mapping[str, Any]) -> PullRequest:
        """Open a pull request.

        Args:
            dto: PullRequestCreate or a mapping of its fields

        Returns:
            The created PullRequest in ``open`` state

        Raises:
            ValidationError: Malformed input
            NotFoundError: Story or target chapter missing
            ForbiddenError: Author may not write to the story
            ConflictError: Author already has an open PR for the chapter
            BusinessRuleViolationError: Target chapter is deleted
        """
        dto = PullRequestCreate.parse(dto)

        await self.validator.validate_create_request(
            dto.author_id,
            dto.story_slug,
            dto.chapter_slug,
            dto.parent_chapter_slug,
            dto.pr_type,
        )

        original = None
        if dto.pr_type != PRType.NEW_CHAPTER:
            chapter = await self.chapters.get_by_slug(dto.chapter_slug)
            if chapter.is_deleted:
                raise BusinessRuleViolationError(
                    f"Chapter {chapter.slug} is deleted", ErrorCode.CHAPTER_DELETED
                )
            original = chapter.content

        changes = resolve_changes(dto.pr_type, dto.proposed_content, original)

        pr = PullRequest(
            story_slug=dto.story_slug,
            chapter_slug=dto.chapter_slug,
            parent_chapter_slug=dto.parent_chapter_slug,
            author_id=dto.author_id,
            title=dto.title,
            description=dto.description or "",
            is_draft=dto.is_draft,
            pr_type=dto.pr_type.value,
            status=PRStatus.OPEN.value,
            revision=0,
            auto_approve_enabled=dto.auto_approve,
            auto_approve_threshold=settings.PR_AUTO_APPROVE_THRESHOLD,
            auto_approve_window_days=settings.PR_AUTO_APPROVE_WINDOW_DAYS,
            created_at=utcnow(),
        )
        pr.changes = changes
        pr.labels = [label.value for label in dto.labels]
        pr.add_timeline_entry(TimelineEntry(TimelineAction.CREATED, dto.author_id))

        self.session.add(pr)
        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            raise ConflictError(
                "You already have an open pull request for this chapter; close or merge it first",
                ErrorCode.DUPLICATE_OPEN_PR,
                {"chapter_slug": dto.chapter_slug},
            ) from None

        logger.info(
            f"PR created: {pr.title!r} [{pr.pr_type}] by {pr.author_id} for story {pr.story_slug}"
        )

        story = await self._get_story(pr.story_slug)
        if story.creator_id != pr.author_id:
            await self._notify(
                story.creator_id,
                NotificationType.PR_OPENED,
                pr,
                story,
                pr.author_id,
                dto.author_name,
            )

        return pr

    async def approve(
        self,
        pr_id: str,
        reviewer_id: str,
        notes: str | None = None,
        reviewer_name: str | None = None,
    ) -> PullRequest:
        """Approve an open pull request.

        Raises:
            NotFoundError: No such pull request
            PullRequestFinalizedError: Already rejected, closed or merged
            ForbiddenError: Reviewer cannot approve pull requests
            BusinessRuleViolationError: Pull request is not open
        """
        pr = await self._load_open_for_action(pr_id)
        story = await self._get_story(pr.story_slug)
        await self._require_permission(story, reviewer_id, "can_approve_prs")
        self._require_transition(pr, PRStatus.APPROVED)

        now = utcnow()
        await self._transition(
            pr,
            PRStatus.OPEN,
            PRStatus.APPROVED,
            {
                PullRequest.reviewed_by: reviewer_id,
                PullRequest.reviewed_at: now,
                PullRequest.review_notes: notes,
            },
            TimelineEntry(
                TimelineAction.APPROVED,
                reviewer_id,
                now,
                {"notes": notes} if notes else None,
            ),
        )
        await self.session.commit()

        logger.info(f"PR {pr.id} approved by {reviewer_id}")
        await self._notify(
            pr.author_id, NotificationType.PR_APPROVED, pr, story, reviewer_id, reviewer_name
        )
        return pr

    async def reject(
        self,
        pr_id: str,
        reviewer_id: str,
        reason: str,
        reviewer_name: str | None = None,
    ) -> PullRequest:
        """Reject an open pull request.

        Raises:
            ValidationError: The reason is blank
            NotFoundError: No such pull request
            PullRequestFinalizedError: Already rejected, closed or merged
            ForbiddenError: Reviewer cannot reject pull requests
            BusinessRuleViolationError: Pull request is not open
        """
        if not reason or not reason.strip():
            raise ValidationError("A rejection reason is required", ErrorCode.MISSING_REQUIRED_FIELD)

        pr = await self._load_open_for_action(pr_id)
        story = await self._get_story(pr.story_slug)
        await self._require_permission(story, reviewer_id, "can_reject_prs")
        self._require_transition(pr, PRStatus.REJECTED)

        now = utcnow()
        reason = reason.strip()
        await self._transition(
            pr,
            PRStatus.OPEN,
            PRStatus.REJECTED,
            {
                PullRequest.reviewed_by: reviewer_id,
                PullRequest.reviewed_at: now,
                PullRequest.rejection_reason: reason,
            },
            TimelineEntry(TimelineAction.REJECTED, reviewer_id, now, {"reason": reason}),
        )
        await self.session.commit()

        logger.info(f"PR {pr.id} rejected by {reviewer_id}: {reason}")
        await self._notify(
            pr.author_id, NotificationType.PR_REJECTED, pr, story, reviewer_id, reviewer_name
        )
        return pr

    async def close(self, pr_id: str, actor_id: str, reason: str | None = None) -> PullRequest:
        """Close an open or approved pull request without merging it.

        The author can withdraw their own pull request; anyone else needs the
        permission to reject pull requests.

        Raises:
            NotFoundError: No such pull request
            PullRequestFinalizedError: Already rejected, closed or merged
            ForbiddenError: Actor is neither the author nor allowed to reject
        """
        pr = await self._load_open_for_action(pr_id)
        story = await self._get_story(pr.story_slug)
        if actor_id != pr.author_id:
            await self._require_permission(story, actor_id, "can_reject_prs")
        self._require_transition(pr, PRStatus.CLOSED)

        now = utcnow()
        await self._transition(
            pr,
            PRStatus(pr.status),
            PRStatus.CLOSED,
            {
                PullRequest.closed_by: actor_id,
                PullRequest.closed_at: now,
                PullRequest.close_reason: reason,
            },
            TimelineEntry(
                TimelineAction.CLOSED,
                actor_id,
                now,
                {"reason": reason} if reason else None,
            ),
        )
        await self.session.commit()

        logger.info(f"PR {pr.id} closed by {actor_id}")
        return pr

    async def update_proposal(
        self,
        pr_id: str,
        author_id: str,
        proposed: str,
        title: str | None = None,
        description: str | None = None,
    ) -> PullRequest:
        """Replace the proposed content of an open pull request.

        The diff is recomputed against the original captured when the pull
        request was opened.

        Raises:
            NotFoundError: No such pull request
            PullRequestFinalizedError: Already rejected, closed or merged
            ForbiddenError: Caller is not the author
            BusinessRuleViolationError: Pull request is no longer open
            ValidationError: The new content is too long
        """
        pr = await self._load_open_for_action(pr_id)
        if pr.author_id != author_id:
            raise ForbiddenError("Only the author can update a pull request", ErrorCode.FORBIDDEN)
        if pr.status != PRStatus.OPEN.value:
            raise BusinessRuleViolationError(
                f"Pull request {pr.id} is {pr.status}; only open pull requests can be updated",
                ErrorCode.INVALID_STATUS_TRANSITION,
            )
        if len(proposed) > settings.CONTENT_MAX_LENGTH:
            raise ValidationError(
                f"content must be at most {settings.CONTENT_MAX_LENGTH} characters",
                ErrorCode.INVALID_INPUT,
            )

        changes = resolve_changes(pr.pr_type, proposed, pr.original_content)
        entry = TimelineEntry(TimelineAction.UPDATED, author_id)

        values: dict[Any, Any] = {
            PullRequest.proposed_content: changes.proposed,
            PullRequest.diff: changes.diff,
            PullRequest.line_count: changes.line_count,
            PullRequest.additions_count: changes.additions_count,
            PullRequest.deletions_count: changes.deletions_count,
            PullRequest.timeline_json: pr.timeline_json_with(entry),
            PullRequest.revision: pr.revision + 1,
            PullRequest.updated_at: utcnow(),
        }
        if title is not None:
            values[PullRequest.title] = title
        if description is not None:
            values[PullRequest.description] = description

        result = await self.session.execute(
            update(PullRequest)
            .where(
                PullRequest.id == pr.id,
                PullRequest.status == PRStatus.OPEN.value,
                PullRequest.revision == pr.revision,
            )
            .values(values)
            .execution_options(synchronize_session=False)
        )
        await self.session.refresh(pr)
        if result.rowcount == 0:
            raise ConflictError(
                f"Pull request {pr.id} was changed concurrently; reload it and try again",
                ErrorCode.PR_STATE_CHANGED,
                {"actual": pr.status},
            )
        await self.session.commit()

        logger.info(f"PR {pr.id} updated by {author_id}")
        return pr

    async def vote(self, pr_id: str, voter_id: str, value: int) -> PullRequest:
        """Record a +1/-1 vote and re-evaluate auto-approval.

        A second vote by the same user replaces the first.

        Raises:
            ValidationError: Value is not +1 or -1
            NotFoundError: No such pull request
            PullRequestFinalizedError: Already rejected, closed or merged
        """
        if value not in (1, -1):
            raise ValidationError("Vote value must be +1 or -1", ErrorCode.INVALID_INPUT)

        pr = await self._load_open_for_action(pr_id)

        result = await self.session.execute(
            select(PullRequestVote).where(
                PullRequestVote.pr_id == pr.id,
                PullRequestVote.voter_id == voter_id,
            )
        )
        existing = result.scalars().first()
        if existing is None:
            self.session.add(PullRequestVote(pr_id=pr.id, voter_id=voter_id, value=value))
        else:
            existing.value = value
            existing.updated_at = utcnow()
        await self.session.flush()

        totals = await self.session.execute(
            select(
                func.coalesce(func.sum(case((PullRequestVote.value > 0, 1), else_=0)), 0),
                func.coalesce(func.sum(case((PullRequestVote.value < 0, 1), else_=0)), 0),
            ).where(PullRequestVote.pr_id == pr.id)
        )
        upvotes, downvotes = totals.one()
        pr.upvotes = upvotes
        pr.downvotes = downvotes
        pr.score = upvotes - downvotes
        await self.session.commit()

        logger.debug(f"PR {pr.id} votes: +{upvotes} -{downvotes}")

        await self._maybe_auto_approve(pr)
        return pr

    async def _maybe_auto_approve(self, pr: PullRequest) -> bool:
        """Approve an open PR whose community score reached its threshold in time."""
        now = utcnow()
        if pr.status != PRStatus.OPEN.value or not qualifies_for_auto_approve(
            pr.auto_approve_enabled,
            pr.score,
            pr.auto_approve_threshold,
            pr.created_at,
            now,
            pr.auto_approve_window_days,
        ):
            return False

        approved = await self._compare_and_set(
            pr,
            PRStatus.OPEN,
            PRStatus.APPROVED,
            {PullRequest.auto_approved_at: now, PullRequest.reviewed_at: now},
            TimelineEntry(TimelineAction.AUTO_APPROVED, None, now, {"score": pr.score}),
        )
        if not approved:
            logger.info(f"PR {pr.id} left open state before auto-approval")
            return False
        await self.session.commit()

        logger.info(f"PR {pr.id} auto-approved with score {pr.score}")
        story = await self._get_story(pr.story_slug)
        await self._notify(
            pr.author_id, NotificationType.PR_APPROVED, pr, story, None, COMMUNITY_ACTOR
        )
        return True

    async def merge(
        self, pr_id: str, merger_id: str, merger_name: str | None = None
    ) -> PullRequest:
        """Merge an approved pull request into the chapter tree.

        Depending on the type, a new chapter is created under the parent, the
        target chapter's content is replaced, or the target is soft-deleted.
        The chapter change, its version snapshot and the status change commit
        together or not at all.

        Raises:
            NotFoundError: No such pull request, or its chapters are gone
            PullRequestFinalizedError: Already rejected, closed or merged
            ForbiddenError: Merger cannot merge pull requests
            BusinessRuleViolationError: Not approved, or the target/parent is deleted
            ConflictError: The chapter changed since the pull request was opened,
                or another merge won the race
        """
        pr = await self._load_open_for_action(pr_id)
        story = await self._get_story(pr.story_slug)
        await self._require_permission(story, merger_id, "can_merge_prs")
        self._require_transition(pr, PRStatus.MERGED)

        target_slug = pr.chapter_slug
        try:
            chapter = await self._apply_to_tree(pr, story)

            now = utcnow()
            await self._transition(
                pr,
                PRStatus.APPROVED,
                PRStatus.MERGED,
                {
                    PullRequest.merged_by: merger_id,
                    PullRequest.merged_at: now,
                    PullRequest.merged_chapter_id: chapter.id,
                },
                TimelineEntry(TimelineAction.MERGED, merger_id, now, {"chapter_id": chapter.id}),
            )
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            raise ConflictError(
                f"A chapter with slug {target_slug} already exists",
                ErrorCode.CHAPTER_ALREADY_EXISTS,
                {"pr_id": pr_id},
            ) from None
        except Exception:
            await self.session.rollback()
            raise

        logger.info(f"PR {pr.id} merged by {merger_id} into chapter {chapter.slug} v{chapter.version}")
        await self._notify(
            pr.author_id, NotificationType.PR_MERGED, pr, story, merger_id, merger_name
        )
        return pr

    async def _apply_to_tree(self, pr: PullRequest, story: Story) -> Chapter:
        changes = pr.changes
        summary = f"Merged pull request: {pr.title}"

        if pr.pr_type == PRType.NEW_CHAPTER.value:
            parent = await self.chapters.get_by_slug(pr.parent_chapter_slug)
            tree = await self.chapters.tree_builder.build(
                story.id, parent.id, pr.author_id, story.creator_id
            )
            chapter = await self.chapters.insert_chapter(
                story,
                tree,
                pr.title,
                apply_changes(changes),
                pr.author_id,
                slug=pr.chapter_slug,
                edit_type=ChapterVersionEditType.PR_MERGE,
                pull_request=pr,
            )
            chapter.pr_status = PRStatus.MERGED.value
            return chapter

        chapter = await self.chapters.get_by_slug(pr.chapter_slug)
        if changes.original is not None and chapter.content != changes.original:
            raise ConflictError(
                f"Chapter {chapter.slug} changed since the pull request was opened",
                ErrorCode.CHAPTER_VERSION_CHANGED,
                {"chapter_id": chapter.id, "version": chapter.version},
            )

        if pr.pr_type == PRType.DELETE_CHAPTER.value:
            return await self.chapters.mark_deleted(
                chapter,
                pr.author_id,
                ChapterVersionEditType.PR_MERGE,
                pr_id=pr.id,
                change_summary=summary,
            )

        return await self.chapters.apply_content_change(
            chapter,
            apply_changes(changes),
            pr.author_id,
            ChapterVersionEditType.PR_MERGE,
            pr_id=pr.id,
            change_summary=summary,
        )
