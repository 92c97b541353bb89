"""SQLAlchemy database connection and session management."""

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from models.base import Base


def _enable_sqlite_wal(dbapi_connection, connection_record) -> None:
    """Switch SQLite connections to WAL so workers can write concurrently."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_engine_and_sessions(
    database_url: str, echo: bool = False
) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Create the async engine and its session factory.

    Args:
        database_url: SQLAlchemy URL, ``sqlite+aiosqlite://`` or ``postgresql+asyncpg://``.
        echo: Log every SQL statement.

    Returns:
        The engine and an ``async_sessionmaker`` bound to it.
    """
    if database_url.startswith("sqlite"):
        engine = create_async_engine(database_url, echo=echo)
        event.listen(engine.sync_engine, "connect", _enable_sqlite_wal)
    else:
        engine = create_async_engine(
            database_url,
            echo=echo,
            pool_size=20,  # Maximum number of connections
            max_overflow=0,
            pool_timeout=30,  # Seconds to wait for a pooled connection
            pool_recycle=300,  # Recycle connections after 5 minutes
            pool_pre_ping=True,  # Check connection validity before using it
        )

    session_maker = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    return engine, session_maker


async def init_models(engine: AsyncEngine) -> None:
    """Create every ledger table that does not exist yet."""
    import models.tables  # noqa: F401  registers the tables on Base.metadata

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

