"""
SQLAlchemy model for the articles table.
"""

from datetime import datetime

from sqlalchemy import JSON, BigInteger, DateTime, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base


class ArticleEntity(Base):
    """
    Model for articles table.

    The current published article of a gallery. Republishing overwrites the
    row.
    """

    __tablename__ = "articles"

    gallery_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    url: Mapped[str] = mapped_column(Text)
    page_urls: Mapped[list] = mapped_column(JSON, default=list)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )
