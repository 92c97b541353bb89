"""
SQLAlchemy model for the images table.
"""

from sqlalchemy import Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base


class ImageEntity(Base):
    """
    Model for images table.

    One row per mirrored image, keyed by the page identity hash. Rows are
    never deleted by the pipeline.
    """

    __tablename__ = "images"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    hash: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    url: Mapped[str] = mapped_column(Text)
