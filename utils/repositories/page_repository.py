"""Repository for the pages table."""

from sqlalchemy import select

from models.tables.page import PageEntity
from utils.repository import BaseRepository


class PageRepository(BaseRepository):
    """Repository for pages table. Rows are written once and never updated."""

    def __init__(self, session_maker) -> None:
        super().__init__(session_maker, PageEntity)

    async def map_page(self, gallery_id: int, page: int, image_id: int) -> bool:
        """Map a gallery page to an image, ignoring an existing mapping.

        Returns:
            True if the mapping is new.
        """
        return await self.insert_ignore(gallery_id=gallery_id, page=page, image_id=image_id)

    async def get_by_gallery(self, gallery_id: int) -> list[PageEntity]:
        async with self.session_scope("get_by_gallery") as session:
            stmt = (
                select(PageEntity)
                .where(PageEntity.gallery_id == gallery_id)
                .order_by(PageEntity.page)
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())
