"""
Repository pattern implementation for SQLAlchemy.

This module provides the base repository every ledger table builds on.
Besides lookups by key it offers the two idempotent write primitives the
pipeline relies on: insert-or-ignore and upsert, both expressed as a
dialect-specific ``INSERT ... ON CONFLICT``.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Generic, Optional, Type, TypeAlias, TypeVar

from sqlalchemy import func, inspect, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from utils.exceptions import LedgerError

# Type variables for generic repository
T = TypeVar("T")
ID = TypeVar("ID")

# Type aliases
EntityType: TypeAlias = Type[T]


class BaseRepository(Generic[T, ID]):
    """Base repository for SQLAlchemy models.

    Attributes:
        session_maker: Factory function to create database sessions.
        entity_type: The SQLAlchemy model class this repository manages.
    """

    def __init__(self, session_maker, entity_type: EntityType):
        """Initialize the repository.

        Args:
            session_maker: Factory function to create database sessions.
            entity_type: The SQLAlchemy model class this repository manages.
        """
        self.session_maker = session_maker
        self.entity_type = entity_type

    @asynccontextmanager
    async def session_scope(self, operation: str) -> AsyncIterator[AsyncSession]:
        """Open a session, translating driver failures into LedgerError.

        Args:
            operation: Name of the operation, used in the error message.
        """
        try:
            async with self.session_maker() as session:
                yield session
        except SQLAlchemyError as e:
            raise LedgerError(
                f"{self.entity_type.__tablename__}.{operation}",
                message=f"{self.entity_type.__tablename__}.{operation} failed: {e}",
            ) from e

    def _insert(self, session: AsyncSession):
        """Return the dialect-specific insert construct for this table."""
        dialect = session.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert(self.entity_type)
        if dialect == "sqlite":
            return sqlite.insert(self.entity_type)
        raise LedgerError("insert", message=f"Unsupported database dialect: {dialect}")

    async def get_by_id(self, entity_id: ID) -> Optional[T]:
        """Get an entity by its primary key.

        Args:
            entity_id: The primary key, a tuple for composite keys.

        Returns:
            The entity if found, None otherwise.
        """
        async with self.session_scope("get_by_id") as session:
            return await session.get(self.entity_type, entity_id)

    async def insert_ignore(self, **values: Any) -> bool:
        """Insert a row unless one with the same key already exists.

        Returns:
            True if a row was inserted, False if it already existed.
        """
        async with self.session_scope("insert_ignore") as session:
            stmt = self._insert(session).values(**values).on_conflict_do_nothing()
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount > 0

    async def upsert(self, index_elements: list[str], **values: Any) -> None:
        """Insert a row, or overwrite the non-key columns of the existing one.

        Args:
            index_elements: Columns of the unique constraint to conflict on.
            **values: Column values.
        """
        async with self.session_scope("upsert") as session:
            stmt = self._insert(session).values(**values)
            updates = {
                name: stmt.excluded[name] for name in values if name not in index_elements
            }
            if updates:
                stmt = stmt.on_conflict_do_update(index_elements=index_elements, set_=updates)
            else:
                stmt = stmt.on_conflict_do_nothing(index_elements=index_elements)
            await session.execute(stmt)
            await session.commit()

    async def count(self) -> int:
        """Count all entities."""
        async with self.session_scope("count") as session:
            pk = inspect(self.entity_type).primary_key[0]
            result = await session.execute(select(func.count(pk)))
            return result.scalar_one()
