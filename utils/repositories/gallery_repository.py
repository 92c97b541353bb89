"""Repository for the galleries table."""

from datetime import datetime, timezone

from sqlalchemy import select

from models.source import Gallery
from models.tables.gallery import GalleryEntity
from models.tables.message import MessageEntity
from utils.repository import BaseRepository


class GalleryRepository(BaseRepository):
    """Repository for galleries table."""

    def __init__(self, session_maker) -> None:
        super().__init__(session_maker, GalleryEntity)

    async def save(self, gallery: Gallery) -> None:
        """Create or overwrite the stored snapshot of a gallery.

        Args:
            gallery: The freshly fetched gallery.
        """
        await self.upsert(
            ["id"],
            id=gallery.id,
            token=gallery.ref.token,
            title=gallery.title,
            title_jp=gallery.title_native,
            tags=gallery.tag_dict(),
            favorite=gallery.favorite_count,
            pages=len(gallery.pages),
            parent=gallery.parent.id if gallery.parent else None,
            cover=gallery.cover_index,
            posted=gallery.posted_at,
            updated_at=datetime.now(timezone.utc).replace(tzinfo=None),
        )

    async def get_announced(self) -> list[tuple[GalleryEntity, MessageEntity]]:
        """Get every gallery that has a channel message, oldest first.

        Returns:
            Pairs of stored gallery and its message.
        """
        async with self.session_scope("get_announced") as session:
            stmt = (
                select(GalleryEntity, MessageEntity)
                .join(MessageEntity, MessageEntity.gallery_id == GalleryEntity.id)
                .order_by(MessageEntity.published_at)
            )
            result = await session.execute(stmt)
            return [(gallery, message) for gallery, message in result.all()]
