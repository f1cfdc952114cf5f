"""Stories, their collaborators and their publication lifecycle."""

import logging

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from branchtale.db.models import Chapter, Story, StoryCollaborator
from branchtale.domain.models import (
    ChapterStatus,
    CollaboratorRole,
    CollaboratorStatus,
    StoryStatus,
    generate_slug,
    utcnow,
)
from branchtale.domain.rules import (
    can_invite_collaborators,
    check_role_hierarchy,
    is_valid_status_transition,
    validate_publishing,
)
from branchtale.exceptions import (
    BusinessRuleViolationError,
    ConflictError,
    ErrorCode,
    ForbiddenError,
    NotFoundError,
)
from branchtale.notifications.factory import NotificationContext, NotificationType
from branchtale.notifications.service import NotificationService

logger = logging.getLogger(__name__)


async def get_story_collaborator(
    session: AsyncSession, story_id: str, user_id: str
) -> StoryCollaborator | None:
    """Return the user's accepted collaborator row on a story, if any."""
    stmt = select(StoryCollaborator).where(
        StoryCollaborator.story_id == story_id,
        StoryCollaborator.user_id == user_id,
        StoryCollaborator.status == CollaboratorStatus.ACCEPTED.value,
    )
    result = await session.execute(stmt)
    return result.scalars().first()


async def resolve_story_role(
    session: AsyncSession, story: Story, user_id: str
) -> CollaboratorRole | None:
    """Role a user holds on a story; the creator is always the owner."""
    if story.creator_id == user_id:
        return CollaboratorRole.OWNER
    collaborator = await get_story_collaborator(session, story.id, user_id)
    return CollaboratorRole(collaborator.role) if collaborator else None


class StoryService:
    """Creates stories and manages who may work on them."""

    def __init__(
        self,
        session: AsyncSession,
        notifications: NotificationService | None = None,
    ):
        """Initialize the story service.

        Args:
            session: Database session
            notifications: Optional notification service for invitations
        """
        self.session = session
        self.notifications = notifications

    async def create_story(
        self,
        creator_id: str,
        title: str,
        description: str | None = None,
        slug: str | None = None,
    ) -> Story:
        """Create a draft story and record its creator as owner.

        Args:
            creator_id: User creating the story
            title: Story title
            description: Optional description (required later to publish)
            slug: Explicit slug; generated from the title when omitted

        Returns:
            The created Story

        Raises:
            ConflictError: The slug is already taken
        """
        slug = slug or generate_slug(title)
        story = Story(
            slug=slug,
            title=title,
            description=description,
            creator_id=creator_id,
            status=StoryStatus.DRAFT.value,
        )
        self.session.add(story)
        try:
            await self.session.flush()
            self.session.add(
                StoryCollaborator(
                    story_id=story.id,
                    user_id=creator_id,
                    role=CollaboratorRole.OWNER.value,
                    status=CollaboratorStatus.ACCEPTED.value,
                    accepted_at=utcnow(),
                )
            )
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            raise ConflictError(
                f"Story slug {slug} is already taken",
                ErrorCode.STORY_ALREADY_EXISTS,
                {"slug": slug},
            ) from None

        logger.info(f"Created story {story.slug} by {creator_id}")
        return story

    async def find_by_slug(self, slug: str) -> Story | None:
        stmt = select(Story).where(Story.slug == slug)
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def get_by_slug(self, slug: str) -> Story:
        """Get a story by slug.

        Raises:
            NotFoundError: No story has this slug
        """
        story = await self.find_by_slug(slug)
        if story is None:
            raise NotFoundError(f"Story {slug} not found", ErrorCode.STORY_NOT_FOUND)
        return story

    async def get_collaborator_role(self, story: Story, user_id: str) -> CollaboratorRole | None:
        return await resolve_story_role(self.session, story, user_id)

    async def add_collaborator(
        self,
        story_slug: str,
        inviter_id: str,
        user_id: str,
        role: CollaboratorRole | str,
        inviter_name: str | None = None,
    ) -> StoryCollaborator:
        """Invite a user to collaborate on a story.

        The inviter needs the invite permission and may only grant roles at or
        below their own. Declined or removed users can be invited again.

        Returns:
            The pending StoryCollaborator row

        Raises:
            NotFoundError: The story does not exist
            ForbiddenError: The inviter may not invite, or not at this role
            ConflictError: The user is already invited or collaborating
        """
        role = CollaboratorRole(role)
        story = await self.get_by_slug(story_slug)

        inviter_role = await self.get_collaborator_role(story, inviter_id)
        if inviter_role is None or not can_invite_collaborators(inviter_role):
            logger.warning(f"{inviter_id} tried to invite to {story_slug} without permission")
            raise ForbiddenError(
                "You do not have permission to invite collaborators",
                ErrorCode.INSUFFICIENT_ROLE,
            )
        if not check_role_hierarchy(inviter_role, role):
            raise ForbiddenError(
                f"A {inviter_role.value} cannot grant the {role.value} role",
                ErrorCode.INSUFFICIENT_ROLE,
                {"inviter_role": inviter_role.value, "role": role.value},
            )

        stmt = select(StoryCollaborator).where(
            StoryCollaborator.story_id == story.id,
            StoryCollaborator.user_id == user_id,
        )
        result = await self.session.execute(stmt)
        collaborator = result.scalars().first()

        reinvitable = {CollaboratorStatus.DECLINED.value, CollaboratorStatus.REMOVED.value}
        if story.creator_id == user_id or (
            collaborator and collaborator.status not in reinvitable
        ):
            raise ConflictError(
                f"{user_id} is already a collaborator on {story_slug}",
                ErrorCode.COLLABORATOR_ALREADY_EXISTS,
            )

        if collaborator is None:
            collaborator = StoryCollaborator(story_id=story.id, user_id=user_id)
            self.session.add(collaborator)
        collaborator.role = role.value
        collaborator.status = CollaboratorStatus.PENDING.value
        collaborator.invited_by = inviter_id
        collaborator.accepted_at = None
        await self.session.commit()

        logger.info(f"Invited {user_id} to {story_slug} as {role.value}")

        if self.notifications:
            await self.notifications.notify(
                user_id,
                NotificationType.COLLAB_INVITATION,
                NotificationContext(
                    actor=inviter_name or inviter_id,
                    actor_id=inviter_id,
                    story_name=story.title,
                    story_slug=story.slug,
                    role=role.value,
                ),
            )

        return collaborator

    async def respond_to_invitation(
        self,
        story_slug: str,
        user_id: str,
        accept: bool,
        user_name: str | None = None,
    ) -> StoryCollaborator:
        """Accept or decline a pending invitation and tell the inviter.

        Raises:
            NotFoundError: The story or a pending invitation does not exist
        """
        story = await self.get_by_slug(story_slug)
        stmt = select(StoryCollaborator).where(
            StoryCollaborator.story_id == story.id,
            StoryCollaborator.user_id == user_id,
            StoryCollaborator.status == CollaboratorStatus.PENDING.value,
        )
        result = await self.session.execute(stmt)
        collaborator = result.scalars().first()
        if collaborator is None:
            raise NotFoundError(f"No pending invitation for {user_id} on {story_slug}")

        if accept:
            collaborator.status = CollaboratorStatus.ACCEPTED.value
            collaborator.accepted_at = utcnow()
        else:
            collaborator.status = CollaboratorStatus.DECLINED.value
        await self.session.commit()

        logger.info(f"{user_id} {collaborator.status} the invitation to {story_slug}")

        if self.notifications and collaborator.invited_by:
            await self.notifications.notify(
                collaborator.invited_by,
                NotificationType.COLLAB_INVITATION_APPROVED
                if accept
                else NotificationType.COLLAB_INVITATION_REJECTED,
                NotificationContext(
                    actor=user_name or user_id,
                    actor_id=user_id,
                    story_name=story.title,
                    story_slug=story.slug,
                ),
            )

        return collaborator

    async def count_chapters(self, story_id: str) -> int:
        """Count chapters of a story that are not deleted."""
        stmt = select(func.count(Chapter.id)).where(
            Chapter.story_id == story_id,
            Chapter.status != ChapterStatus.DELETED.value,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def change_status(
        self,
        story_slug: str,
        user_id: str,
        new_status: StoryStatus | str,
    ) -> Story:
        """Move a story along its lifecycle.

        Raises:
            ForbiddenError: The user is not the story creator
            BusinessRuleViolationError: The transition is not allowed
        """
        new_status = StoryStatus(new_status)
        story = await self.get_by_slug(story_slug)

        if story.creator_id != user_id:
            raise ForbiddenError(
                "Only the story creator can change the story status", ErrorCode.NOT_OWNER
            )
        if not is_valid_status_transition(story.status, new_status):
            raise BusinessRuleViolationError(
                f"Cannot change story status from {story.status} to {new_status.value}",
                ErrorCode.INVALID_STATUS_TRANSITION,
                {"from": story.status, "to": new_status.value},
            )

        previous = story.status
        story.status = new_status.value
        story.updated_at = utcnow()
        if new_status == StoryStatus.PUBLISHED:
            story.published_at = story.updated_at
        await self.session.commit()

        logger.info(f"Story {story_slug}: {previous} -> {new_status.value}")
        return story

    async def publish(self, story_slug: str, user_id: str) -> Story:
        """Publish a draft story after checking it is ready.

        Raises:
            BusinessRuleViolationError: The story is not publishable; details
                list every failed check
        """
        story = await self.get_by_slug(story_slug)
        chapter_count = await self.count_chapters(story.id)

        validation = validate_publishing(story, user_id, chapter_count)
        if not validation.can_publish:
            raise BusinessRuleViolationError(
                validation.errors[0],
                ErrorCode.STORY_NOT_PUBLISHABLE,
                {"errors": validation.errors},
            )

        return await self.change_status(story_slug, user_id, StoryStatus.PUBLISHED)
