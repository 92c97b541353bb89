"""Repository for the articles table."""

from datetime import datetime, timezone

from models.tables.article import ArticleEntity
from utils.repository import BaseRepository


class ArticleRepository(BaseRepository):
    """Repository for articles table. One current row per gallery."""

    def __init__(self, session_maker) -> None:
        super().__init__(session_maker, ArticleEntity)

    async def save(self, gallery_id: int, url: str, page_urls: list[str] | None = None) -> None:
        """Create the article row of a gallery or replace its URL.

        Args:
            gallery_id: The gallery the article belongs to.
            url: Canonical (first page) URL.
            page_urls: Every page of a paginated article, in order.
        """
        await self.upsert(
            ["gallery_id"],
            gallery_id=gallery_id,
            url=url,
            page_urls=page_urls or [url],
            updated_at=datetime.now(timezone.utc).replace(tzinfo=None),
        )

    async def get_by_gallery(self, gallery_id: int) -> ArticleEntity | None:
        return await self.get_by_id(gallery_id)
