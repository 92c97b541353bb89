"""
SQLAlchemy model for the messages table.
"""

from datetime import datetime

from sqlalchemy import BigInteger, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base


class MessageEntity(Base):
    """
    Model for messages table.

    The channel announcement of a gallery. ``id`` is the external message id.
    """

    __tablename__ = "messages"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    gallery_id: Mapped[int] = mapped_column(BigInteger, unique=True, index=True)
    channel_id: Mapped[int] = mapped_column(BigInteger)
    published_at: Mapped[datetime] = mapped_column(DateTime)
