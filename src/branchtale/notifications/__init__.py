"""Notification building, storage and Slack delivery."""

from branchtale.notifications.factory import (
    NotificationContext,
    NotificationFactory,
    NotificationPayload,
    NotificationType,
    highlight,
    parse_context,
    strip_highlights,
)
from branchtale.notifications.service import NotificationService
from branchtale.notifications.slack import SlackNotificationDispatcher

__all__ = [
    # Factory
    "NotificationContext",
    "NotificationFactory",
    "NotificationPayload",
    "NotificationType",
    "highlight",
    "parse_context",
    "strip_highlights",
    # Storage and delivery
    "NotificationService",
    "SlackNotificationDispatcher",
]
