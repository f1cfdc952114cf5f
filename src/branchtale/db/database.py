"""Database connection and session management."""

from collections.abc import AsyncIterator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from branchtale.config import settings


def _set_sqlite_pragma(dbapi_conn, connection_record):
    """Set SQLite pragmas for concurrency and referential integrity.

    WAL mode allows concurrent reads while a merge transaction is writing.
    """
    cursor = dbapi_conn.cursor()
    # WAL mode: allows readers while writing
    cursor.execute("PRAGMA journal_mode=WAL")
    # 30 second timeout for busy connections
    cursor.execute("PRAGMA busy_timeout=30000")
    # Synchronous=NORMAL is safe with WAL and faster
    cursor.execute("PRAGMA synchronous=NORMAL")
    # SQLite ships with foreign keys disabled
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# Create async engine
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
)

if settings.DATABASE_URL.startswith("sqlite"):
    event.listen(engine.sync_engine, "connect", _set_sqlite_pragma)

# Create session factory
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def init_db() -> None:
    """Create all tables and indexes."""
    from branchtale.db.models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_session() -> AsyncIterator[AsyncSession]:
    """Get a database session."""
    async with async_session_maker() as session:
        yield session
