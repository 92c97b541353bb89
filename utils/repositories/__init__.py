"""Repository package initialization.

This module groups the ledger repositories behind a single ``Ledger`` handle
that is constructed once and handed to the pipeline.
"""

from utils.repositories.article_repository import ArticleRepository
from utils.repositories.gallery_repository import GalleryRepository
from utils.repositories.image_repository import ImageRepository
from utils.repositories.message_repository import MessageRepository
from utils.repositories.page_repository import PageRepository


class Ledger:
    """Durable store for galleries, images, page mappings, articles and messages.

    Write contracts:
        galleries.save: create-or-update
        images.create_if_absent: create-if-absent by hash
        pages.map_page: insert-or-ignore
        articles.save: create-or-update, one row per gallery
        messages.save: create-or-update, one row per gallery
    """

    def __init__(self, session_maker) -> None:
        """Initialize every repository on the same session factory.

        Args:
            session_maker: Factory function to create database sessions.
        """
        self.session_maker = session_maker
        self.galleries = GalleryRepository(session_maker)
        self.images = ImageRepository(session_maker)
        self.pages = PageRepository(session_maker)
        self.articles = ArticleRepository(session_maker)
        self.messages = MessageRepository(session_maker)

    async def is_announced(self, gallery_id: int) -> bool:
        """Whether both the gallery snapshot and its channel message exist."""
        if await self.galleries.get_by_id(gallery_id) is None:
            return False
        return await self.messages.get_by_gallery(gallery_id) is not None
