"""Fixtures for integration tests with a real (in-memory) database."""

import pytest
import pytest_asyncio
from unittest.mock import AsyncMock, MagicMock

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from branchtale.db.database import _set_sqlite_pragma
from branchtale.db.models import Base, StoryCollaborator
from branchtale.domain.models import CollaboratorRole, CollaboratorStatus, utcnow
from branchtale.services import build_services


@pytest.fixture(scope="function")
def test_db_engine():
    """Create an in-memory SQLite engine for testing.

    Each test gets a fresh database; StaticPool keeps the single in-memory
    connection alive across sessions.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
    )
    event.listen(engine.sync_engine, "connect", _set_sqlite_pragma)
    return engine


@pytest_asyncio.fixture(scope="function")
async def test_db_session(test_db_engine):
    """Create tables and provide a test session."""
    async with test_db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session_factory = async_sessionmaker(
        test_db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session_factory() as session:
        yield session

    async with test_db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await test_db_engine.dispose()


@pytest.fixture
def test_users():
    """Provide test user IDs representing different roles."""
    return {
        "owner": "U_OWNER_001",
        "co_author": "U_COAUTHOR_001",
        "moderator": "U_MODERATOR_001",
        "reviewer": "U_REVIEWER_001",
        "contributor": "U_CONTRIB_001",
        "contributor_2": "U_CONTRIB_002",
        "outsider": "U_OUTSIDER_001",
    }


@pytest.fixture
def mock_dispatcher():
    """Notification dispatcher that accepts every payload."""
    dispatcher = MagicMock()
    dispatcher.deliver = AsyncMock(return_value=True)
    return dispatcher


@pytest.fixture
def services(test_db_session, mock_dispatcher):
    """All services bound to the test session, delivering to the mock dispatcher."""
    return build_services(test_db_session, dispatcher=mock_dispatcher)


@pytest.fixture
def add_member(test_db_session):
    """Insert a collaborator row directly, bypassing invitations."""

    async def _add(story, user_id, role, status=CollaboratorStatus.ACCEPTED):
        collaborator = StoryCollaborator(
            story_id=story.id,
            user_id=user_id,
            role=CollaboratorRole(role).value,
            status=CollaboratorStatus(status).value,
            invited_by=story.creator_id,
            accepted_at=utcnow() if status == CollaboratorStatus.ACCEPTED else None,
        )
        test_db_session.add(collaborator)
        await test_db_session.commit()
        return collaborator

    return _add


@pytest_asyncio.fixture
async def story(services, add_member, test_users):
    """A draft story with one accepted collaborator per non-owner role."""
    story = await services.stories.create_story(
        test_users["owner"],
        "The Quest",
        "A long journey into the unknown.",
        slug="quest",
    )
    for role in ("co_author", "moderator", "reviewer", "contributor"):
        await add_member(story, test_users[role], role)
    await add_member(story, test_users["contributor_2"], CollaboratorRole.CONTRIBUTOR)
    return story


@pytest_asyncio.fixture
async def root_chapter(services, story, test_users):
    """The story's root chapter, written by the owner."""
    return await services.chapters.create_chapter(
        story.slug,
        test_users["owner"],
        "Beginning",
        "The road was long.\nThe night was cold.",
        slug="beginning",
    )
