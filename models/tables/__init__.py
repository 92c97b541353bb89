# Import all table models here
from models.tables.article import ArticleEntity
from models.tables.gallery import GalleryEntity
from models.tables.image import ImageEntity
from models.tables.message import MessageEntity
from models.tables.page import PageEntity
