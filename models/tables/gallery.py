"""
SQLAlchemy model for the galleries table.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, BigInteger, DateTime, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base
from models.source import DEFAULT_ORIGIN


class GalleryEntity(Base):
    """
    Model for galleries table.

    Flattened snapshot of the last gallery metadata the mirror saw. Update
    checks compare a fresh fetch against this row.
    """

    __tablename__ = "galleries"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    token: Mapped[str] = mapped_column(String(32))
    title: Mapped[str] = mapped_column(Text)
    title_jp: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    tags: Mapped[dict] = mapped_column(JSON, default=dict)
    favorite: Mapped[int] = mapped_column(Integer, default=0)
    pages: Mapped[int] = mapped_column(Integer, default=0)
    parent: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    cover: Mapped[int] = mapped_column(Integer, default=0)
    posted: Mapped[datetime] = mapped_column(DateTime)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )

    @property
    def url(self) -> str:
        return f"{DEFAULT_ORIGIN}/g/{self.id}/{self.token}/"

    @property
    def display_title(self) -> str:
        return self.title_jp or self.title

    @property
    def cover_index(self) -> int:
        return self.cover
