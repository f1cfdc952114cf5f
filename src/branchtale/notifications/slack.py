"""Delivers stored notifications to users as Slack direct messages."""

import logging

from slack_sdk.errors import SlackApiError
from slack_sdk.web.async_client import AsyncWebClient
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from branchtale.config import settings
from branchtale.notifications.factory import HIGHLIGHT_PATTERN, NotificationPayload

logger = logging.getLogger(__name__)


def to_slack_mrkdwn(text: str) -> str:
    """Render highlight markers as Slack bold text."""
    return HIGHLIGHT_PATTERN.sub(lambda m: f"*{m.group(2)}*", text)


class SlackNotificationDispatcher:
    """Posts notification payloads to users through the Slack Web API.

    User ids are expected to be Slack member ids; Slack opens the direct
    message channel when a member id is used as ``channel``.
    """

    def __init__(self, client: AsyncWebClient, base_url: str | None = None):
        """Initialize the dispatcher.

        Args:
            client: Slack async web client authenticated with a bot token
            base_url: Prefix for relative action URLs (defaults to APP_BASE_URL)
        """
        self.client = client
        self.base_url = (base_url or settings.APP_BASE_URL).rstrip("/")

    def render(self, payload: NotificationPayload) -> str:
        """Render a payload as a Slack mrkdwn message."""
        text = f"*{to_slack_mrkdwn(payload.title)}*\n\n{to_slack_mrkdwn(payload.message)}"
        if payload.action_url:
            text += f"\n\n<{self.base_url}{payload.action_url}|Open in Branchtale>"
        return text

    @retry(
        retry=retry_if_exception_type(SlackApiError),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    async def _post(self, channel: str, text: str) -> None:
        await self.client.chat_postMessage(
            channel=channel,
            text=text,
            blocks=[{"type": "section", "text": {"type": "mrkdwn", "text": text}}],
        )

    async def deliver(self, user_id: str, payload: NotificationPayload) -> bool:
        """Send a payload to a user.

        Args:
            user_id: Recipient's Slack member id
            payload: Notification to send

        Returns:
            True if Slack accepted the message
        """
        try:
            await self._post(user_id, self.render(payload))
        except Exception as e:
            logger.error(f"Failed to deliver {payload.type.value} notification to {user_id}: {e}")
            return False

        logger.debug(f"Delivered {payload.type.value} notification to {user_id}")
        return True


def create_slack_dispatcher() -> SlackNotificationDispatcher | None:
    """Build a dispatcher from settings, or None when Slack delivery is off."""
    if not settings.SLACK_NOTIFICATIONS_ENABLED or not settings.SLACK_BOT_TOKEN:
        return None
    return SlackNotificationDispatcher(AsyncWebClient(token=settings.SLACK_BOT_TOKEN))
