"""
Pytest configuration and fixtures for test isolation.

This module provides fixtures and configuration to ensure proper test isolation
and prevent test interference when running the full test suite.
"""

import logging
import os
import sys
from collections.abc import AsyncGenerator, Generator

import pytest
import pytest_asyncio

sys.path.insert(0, os.path.abspath(os.path.dirname(os.path.dirname(__file__))))

import config
from tests.fixtures import DatabaseFixture
from utils.repositories import Ledger


@pytest.fixture(autouse=True)
def reset_environment() -> Generator[None, None, None]:
    """
    Reset environment variables and the cached config between tests.
    """
    original_env = dict(os.environ)

    yield

    os.environ.clear()
    os.environ.update(original_env)
    config._config = None


@pytest.fixture(autouse=True)
def reset_logging() -> Generator[None, None, None]:
    """
    Reset logging configuration between tests.
    """
    original_level = logging.getLogger().level
    original_handlers = logging.getLogger().handlers[:]

    yield

    logging.getLogger().setLevel(original_level)
    logging.getLogger().handlers = original_handlers


@pytest_asyncio.fixture
async def database(tmp_path) -> AsyncGenerator[DatabaseFixture, None]:
    """A fresh file-backed SQLite ledger database per test."""
    async with DatabaseFixture(f"sqlite+aiosqlite:///{tmp_path}/ledger.db") as db:
        yield db


@pytest_asyncio.fixture
async def ledger(database: DatabaseFixture) -> Ledger:
    return database.ledger
