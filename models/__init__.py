from models.base import Base
from models.tables import (
    ArticleEntity,
    GalleryEntity,
    ImageEntity,
    MessageEntity,
    PageEntity,
)
