"""
SQLAlchemy model for the pages table.
"""

from sqlalchemy import BigInteger, ForeignKey, Integer
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base


class PageEntity(Base):
    """
    Model for pages table.

    Maps one page of one gallery to a mirrored image. Many pages may share
    an image.
    """

    __tablename__ = "pages"

    gallery_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    page: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    image_id: Mapped[int] = mapped_column(Integer, ForeignKey("images.id"), index=True)
