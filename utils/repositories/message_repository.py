"""Repository for the messages table."""

from datetime import datetime

from sqlalchemy import select

from models.tables.message import MessageEntity
from utils.repository import BaseRepository


class MessageRepository(BaseRepository):
    """Repository for messages table. One announcement per gallery."""

    def __init__(self, session_maker) -> None:
        super().__init__(session_maker, MessageEntity)

    async def get_by_gallery(self, gallery_id: int) -> MessageEntity | None:
        """Get the announcement of a gallery.

        Args:
            gallery_id: The gallery to look up.

        Returns:
            The message if the gallery was announced, None otherwise.
        """
        async with self.session_scope("get_by_gallery") as session:
            stmt = select(MessageEntity).where(MessageEntity.gallery_id == gallery_id)
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def save(
        self, message_id: int, gallery_id: int, channel_id: int, published_at: datetime
    ) -> None:
        """Record the announcement of a gallery, replacing any previous one.

        Args:
            message_id: External id of the channel message.
            gallery_id: The announced gallery.
            channel_id: Channel the message lives in.
            published_at: When the message was first sent.
        """
        await self.upsert(
            ["gallery_id"],
            gallery_id=gallery_id,
            id=message_id,
            channel_id=channel_id,
            published_at=published_at,
        )
