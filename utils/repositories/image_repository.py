"""Repository for the images table.

At most one row exists per hash; ``create_if_absent`` is the only write path.
"""

from sqlalchemy import select

from models.tables.image import ImageEntity
from models.tables.page import PageEntity
from utils.exceptions import LedgerError
from utils.repository import BaseRepository


class ImageRepository(BaseRepository):
    """Repository for images table."""

    def __init__(self, session_maker) -> None:
        super().__init__(session_maker, ImageEntity)

    async def get_by_hash(self, content_hash: str) -> ImageEntity | None:
        """Get an image by its page identity hash.

        Args:
            content_hash: The dedup key of the image.

        Returns:
            The image if it was mirrored before, None otherwise.
        """
        async with self.session_scope("get_by_hash") as session:
            stmt = select(ImageEntity).where(ImageEntity.hash == content_hash)
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def create_if_absent(self, content_hash: str, url: str) -> ImageEntity:
        """Record a mirrored image unless the hash is already known.

        When another writer got there first the existing row wins and is
        returned unchanged.

        Args:
            content_hash: The dedup key of the image.
            url: The hosted URL of the uploaded bytes.

        Returns:
            The stored image row.
        """
        await self.insert_ignore(hash=content_hash, url=url)
        image = await self.get_by_hash(content_hash)
        if image is None:
            raise LedgerError("images.create_if_absent", message=f"Image {content_hash} vanished after insert")
        return image

    async def get_by_gallery(self, gallery_id: int) -> list[ImageEntity]:
        """Get the images of a gallery ordered by page number.

        Args:
            gallery_id: The gallery to read.

        Returns:
            One entry per mapped page, so shared images may repeat.
        """
        async with self.session_scope("get_by_gallery") as session:
            stmt = (
                select(ImageEntity)
                .join(PageEntity, PageEntity.image_id == ImageEntity.id)
                .where(PageEntity.gallery_id == gallery_id)
                .order_by(PageEntity.page)
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())
