"""Stores notifications and hands them to an optional delivery channel."""

import logging
from collections.abc import Mapping
from typing import Any, Protocol

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from branchtale.db.models import Notification
from branchtale.domain.models import utcnow
from branchtale.exceptions import ErrorCode, NotFoundError
from branchtale.notifications.factory import (
    NotificationContext,
    NotificationFactory,
    NotificationPayload,
    NotificationType,
    parse_context,
)

logger = logging.getLogger(__name__)


class NotificationDispatcher(Protocol):
    async def deliver(self, user_id: str, payload: NotificationPayload) -> bool: ...


class NotificationService:
    """Creates, lists and marks notifications for users."""

    def __init__(
        self,
        session: AsyncSession,
        dispatcher: NotificationDispatcher | None = None,
    ):
        """Initialize the notification service.

        Args:
            session: Database session
            dispatcher: Optional delivery channel (e.g. Slack)
        """
        self.session = session
        self.dispatcher = dispatcher

    async def notify(
        self,
        user_id: str,
        notification_type: NotificationType | str,
        context: NotificationContext | Mapping[str, Any],
    ) -> Notification:
        """Build, store and deliver a notification.

        Args:
            user_id: Recipient
            notification_type: Type of notification
            context: Values used by the type's template

        Returns:
            The stored Notification

        Raises:
            ValidationError: The type is unknown or the context is incomplete
        """
        context = parse_context(context)

        payload = NotificationFactory.build(notification_type, context)

        notification = Notification(
            user_id=user_id,
            type=payload.type.value,
            title=payload.title,
            message=payload.message,
            action_url=payload.action_url,
            related_story_slug=context.story_slug,
            related_pr_id=context.pr_id,
        )
        self.session.add(notification)
        try:
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            raise

        logger.info(f"Stored {payload.type.value} notification for {user_id}")

        if self.dispatcher:
            await self.dispatcher.deliver(user_id, payload)

        return notification

    async def list_for_user(
        self,
        user_id: str,
        unread_only: bool = False,
        limit: int = 50,
    ) -> list[Notification]:
        """List a user's notifications, newest first."""
        stmt = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            stmt = stmt.where(Notification.is_read == False)  # noqa: E712
        stmt = stmt.order_by(Notification.created_at.desc()).limit(limit)

        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def mark_as_read(self, notification_id: str, user_id: str) -> Notification:
        """Mark one of the user's notifications as read.

        Raises:
            NotFoundError: No such notification for this user
        """
        notification = await self.session.get(Notification, notification_id)
        if notification is None or notification.user_id != user_id:
            raise NotFoundError(
                f"Notification {notification_id} not found",
                ErrorCode.NOTIFICATION_NOT_FOUND,
            )

        if not notification.is_read:
            notification.is_read = True
            notification.read_at = utcnow()
            await self.session.commit()

        return notification

    async def mark_all_as_read(self, user_id: str) -> int:
        """Mark every unread notification of a user as read.

        Returns:
            Number of notifications updated
        """
        stmt = (
            update(Notification)
            .where(
                Notification.user_id == user_id,
                Notification.is_read == False,  # noqa: E712
            )
            .values(is_read=True, read_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        await self.session.commit()
        return result.rowcount
