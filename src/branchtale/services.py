"""Wires the services for one database session."""

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from branchtale.chapters.service import ChapterService
from branchtale.chapters.tree_builder import ChapterTreeBuilder
from branchtale.notifications.service import NotificationDispatcher, NotificationService
from branchtale.notifications.slack import create_slack_dispatcher
from branchtale.pull_requests.validator import PullRequestValidator
from branchtale.pull_requests.workflow import PullRequestService
from branchtale.stories.service import StoryService


@dataclass
class Services:
    """Every service bound to the same session."""

    session: AsyncSession
    notifications: NotificationService
    stories: StoryService
    chapters: ChapterService
    pull_requests: PullRequestService


def build_services(
    session: AsyncSession,
    dispatcher: NotificationDispatcher | None = None,
    use_slack: bool = True,
) -> Services:
    """Build the service graph for a session.

    Args:
        session: Database session shared by all services
        dispatcher: Delivery channel for notifications; when omitted, Slack is
            used if enabled in settings
        use_slack: Set False to store notifications without delivering them

    Returns:
        Services bundle
    """
    if dispatcher is None and use_slack:
        dispatcher = create_slack_dispatcher()

    notifications = NotificationService(session, dispatcher)
    tree_builder = ChapterTreeBuilder(session)
    chapters = ChapterService(session, tree_builder)
    return Services(
        session=session,
        notifications=notifications,
        stories=StoryService(session, notifications),
        chapters=chapters,
        pull_requests=PullRequestService(
            session,
            validator=PullRequestValidator(session),
            chapters=chapters,
            notifications=notifications,
        ),
    )
