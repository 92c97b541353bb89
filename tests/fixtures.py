"""
Test fixtures for the gallery mirror.

This module provides reusable fixtures for setting up and tearing down
test environments, particularly for database testing.
"""

import os
import sys

sys.path.insert(0, os.path.abspath(os.path.dirname(os.path.dirname(__file__))))

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from utils.repositories import Ledger
from utils.sqlalchemy_db import create_engine_and_sessions, init_models


class DatabaseFixture:
    """
    Fixture for database testing.

    This class provides methods for setting up and tearing down a test database,
    as well as a ledger bound to it.
    """

    def __init__(self, database_url: str) -> None:
        """
        Initialize the database fixture.

        Args:
            database_url: The URL for the test database. File-backed SQLite is
                preferred so concurrent sessions see each other's commits.
        """
        self.database_url = database_url
        self.engine: AsyncEngine | None = None
        self.session_maker: async_sessionmaker[AsyncSession] | None = None
        self.ledger: Ledger | None = None

    async def setup(self) -> None:
        """
        Set up the test database.

        This method creates the engine and session maker, and creates all tables.
        """
        self.engine, self.session_maker = create_engine_and_sessions(self.database_url)
        await init_models(self.engine)
        self.ledger = Ledger(self.session_maker)

    async def teardown(self) -> None:
        """
        Tear down the test database.

        This method disposes of the engine, which closes all connections.
        """
        if self.engine:
            await self.engine.dispose()

    async def __aenter__(self) -> "DatabaseFixture":
        await self.setup()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.teardown()
