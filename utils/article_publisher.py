"""Telegraph article publishing.

A gallery becomes one article, split into several Telegraph pages when it
has more images than a page can hold. Pages are created first and then
rewritten with previous/next links once every page URL is known.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Protocol

import structlog

from utils.exceptions import APIError, FloodWaitError, PublishError, TransientNetworkError
from utils.http_client import HTTPClient
from utils.repositories import Ledger
from utils.retry import retry_async

logger = structlog.get_logger(__name__)

TELEGRAPH_API = "https://api.telegra.ph"
FLOOD_WAIT = re.compile(r"FLOOD_WAIT_(\d+)")
TITLE_LIMIT = 256


class Publishable(Protocol):
    """What the publisher needs from a gallery, fresh or stored."""

    id: int

    @property
    def display_title(self) -> str: ...

    @property
    def cover_index(self) -> int: ...


@dataclass
class PublishedArticle:
    """A published article. ``url`` is the first page and the canonical link."""

    url: str
    page_urls: list[str] = field(default_factory=list)


@dataclass
class TelegraphPage:
    path: str
    url: str


class TelegraphClient:
    """Minimal Telegraph API client over the shared HTTP client.

    ``FLOOD_WAIT_<n>`` replies are retried after ``n`` seconds, capped at
    ``max_delay``, up to ``flood_attempts`` calls in total.
    """

    def __init__(
        self,
        http: HTTPClient,
        access_token: str,
        author_name: str = "",
        author_url: str = "",
        flood_attempts: int = 3,
        max_delay: float = 30.0,
    ) -> None:
        self.http = http
        self.access_token = access_token
        self.author_name = author_name
        self.author_url = author_url
        self.flood_attempts = flood_attempts
        self.max_delay = max_delay

    async def _call(self, method: str, payload: dict[str, Any]) -> dict[str, Any]:
        return await retry_async(
            lambda: self._call_once(method, payload),
            attempts=self.flood_attempts,
            base_delay=1.0,
            max_delay=self.max_delay,
            retry_on=(FloodWaitError,),
            operation=f"telegraph.{method.split('/')[0]}",
        )

    async def _call_once(self, method: str, payload: dict[str, Any]) -> dict[str, Any]:
        response = await self.http.post(f"{TELEGRAPH_API}/{method}", data=payload)
        try:
            body = response.json()
        except ValueError as e:
            raise PublishError(f"Telegraph {method} returned non-JSON (status {response.status})") from e

        if body.get("ok"):
            return body["result"]

        error = str(body.get("error", "unknown error"))
        flood = FLOOD_WAIT.search(error)
        if flood:
            raise FloodWaitError("telegraph", retry_after=float(flood.group(1)), message=error)
        raise PublishError(f"Telegraph {method} failed: {error}")

    def _payload(self, title: str, content: list[dict[str, Any]]) -> dict[str, Any]:
        return {
            "access_token": self.access_token,
            "title": title[:TITLE_LIMIT],
            "author_name": self.author_name,
            "author_url": self.author_url,
            "content": json.dumps(content, ensure_ascii=False),
            "return_content": "false",
        }

    async def create_page(self, title: str, content: list[dict[str, Any]]) -> TelegraphPage:
        """Create a page and return its path and URL."""
        result = await self._call("createPage", self._payload(title, content))
        return TelegraphPage(path=result["path"], url=result["url"])

    async def edit_page(self, path: str, title: str, content: list[dict[str, Any]]) -> TelegraphPage:
        """Replace the content of an existing page."""
        result = await self._call(f"editPage/{path}", self._payload(title, content))
        return TelegraphPage(path=result["path"], url=result["url"])


def image_node(url: str) -> dict[str, Any]:
    return {"tag": "img", "attrs": {"src": url}}


def link_node(url: str, text: str) -> dict[str, Any]:
    return {"tag": "a", "attrs": {"href": url}, "children": [text]}


def chunk(items: list[str], size: int) -> list[list[str]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


class ArticlePublisher:
    """Builds Telegraph articles from the images recorded in the ledger."""

    def __init__(self, ledger: Ledger, telegraph: TelegraphClient, capacity: int = 200) -> None:
        """Initialize the publisher.

        Args:
            ledger: Ledger to read image rows from.
            telegraph: Telegraph API client.
            capacity: Maximum number of images on one Telegraph page.
        """
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self.ledger = ledger
        self.telegraph = telegraph
        self.capacity = capacity

    async def publish(self, gallery: Publishable) -> PublishedArticle:
        """Publish the gallery's recorded images as an article.

        The cover image is placed first when ``0 < cover_index < len(images)``,
        followed by every image in page order.

        Args:
            gallery: A fresh ``Gallery`` or a stored ``GalleryEntity``.

        Returns:
            The published article; its ``url`` is the first page.

        Raises:
            PublishError: If no images are recorded or Telegraph rejects a page.
        """
        images = [image.url for image in await self.ledger.images.get_by_gallery(gallery.id)]
        if not images:
            raise PublishError(f"Gallery {gallery.id} has no recorded images")

        total = len(images)
        cover = gallery.cover_index
        if 0 < cover < total:
            images.insert(0, images[cover])

        chunks = chunk(images, self.capacity)
        count = len(chunks)
        title = gallery.display_title

        def page_title(index: int) -> str:
            return f"{title} ({index + 1}/{count})" if count > 1 else title

        def page_content(index: int, pages: list[TelegraphPage] | None) -> list[dict[str, Any]]:
            content: list[dict[str, Any]] = [image_node(url) for url in chunks[index]]
            if pages:
                nav = []
                if index > 0:
                    nav.append(link_node(pages[index - 1].url, "« Previous"))
                if index < count - 1:
                    if nav:
                        nav.append(" | ")
                    nav.append(link_node(pages[index + 1].url, "Next »"))
                content.append({"tag": "p", "children": nav})
            if index == count - 1:
                content.append({"tag": "p", "children": [f"Total images: {total}"]})
            return content

        try:
            pages = [
                await self.telegraph.create_page(page_title(index), page_content(index, None))
                for index in range(count)
            ]
            if count > 1:
                for index, page in enumerate(pages):
                    await self.telegraph.edit_page(page.path, page_title(index), page_content(index, pages))
        except (APIError, TransientNetworkError) as e:
            raise PublishError(f"Publishing gallery {gallery.id} failed: {e}") from e

        logger.info("article_published", gallery_id=gallery.id, url=pages[0].url, pages=count, images=total)
        return PublishedArticle(url=pages[0].url, page_urls=[page.url for page in pages])
