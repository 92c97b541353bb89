"""
Value objects describing what the remote source returns.

These are immutable snapshots: a gallery is never mutated in place, only
re-fetched and compared against the last stored ``GalleryEntity``.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Mapping
from urllib.parse import urlparse

DEFAULT_ORIGIN = "https://exhentai.org"

GALLERY_PATH = re.compile(r"/g/(?P<id>\d+)/(?P<token>[0-9a-f]+)")
PAGE_PATH = re.compile(r"/s/(?P<token>[0-9a-f]+)/(?P<gallery_id>\d+)-(?P<page>\d+)")


@dataclass(frozen=True)
class GalleryRef:
    """External identity of a gallery. Equality and hashing use ``id`` only."""

    id: int
    token: str = field(compare=False)
    cover: int = field(default=0, compare=False)
    origin: str = field(default=DEFAULT_ORIGIN, compare=False, repr=False)

    @property
    def url(self) -> str:
        return f"{self.origin}/g/{self.id}/{self.token}/"

    @classmethod
    def from_url(cls, url: str) -> "GalleryRef":
        """Parse ``https://host/g/<id>/<token>/`` with an optional ``#<cover>`` fragment.

        Raises:
            ValueError: If the URL is not a gallery URL.
        """
        parsed = urlparse(url)
        match = GALLERY_PATH.search(parsed.path)
        if not match:
            raise ValueError(f"Not a gallery URL: {url}")
        cover = int(parsed.fragment) if parsed.fragment.isdigit() else 0
        origin = f"{parsed.scheme}://{parsed.netloc}" if parsed.netloc else DEFAULT_ORIGIN
        return cls(int(match["id"]), match["token"], cover=cover, origin=origin)


@dataclass(frozen=True)
class PageRef:
    """One page of a gallery. ``page_number`` is 1-based."""

    gallery_id: int
    page_number: int
    token: str
    origin: str = field(default=DEFAULT_ORIGIN, compare=False, repr=False)

    @property
    def content_hash(self) -> str:
        # The page token is stable for a given image across galleries
        return self.token

    @property
    def url(self) -> str:
        return f"{self.origin}/s/{self.token}/{self.gallery_id}-{self.page_number}"

    def with_nl(self, nl: str) -> str:
        return f"{self.url}?nl={nl}"

    @classmethod
    def from_url(cls, url: str) -> "PageRef":
        parsed = urlparse(url)
        match = PAGE_PATH.search(parsed.path)
        if not match:
            raise ValueError(f"Not a page URL: {url}")
        origin = f"{parsed.scheme}://{parsed.netloc}" if parsed.netloc else DEFAULT_ORIGIN
        return cls(int(match["gallery_id"]), int(match["page"]), match["token"], origin=origin)


@dataclass(frozen=True)
class Gallery:
    """Snapshot of a gallery's metadata and ordered page list."""

    ref: GalleryRef
    title: str
    title_native: str | None
    tags: Mapping[str, tuple[str, ...]]
    favorite_count: int
    posted_at: datetime
    pages: tuple[PageRef, ...]
    parent: GalleryRef | None = None
    cover_index: int = 0

    def __post_init__(self):
        object.__setattr__(self, "tags", MappingProxyType(dict(self.tags)))

    @property
    def id(self) -> int:
        return self.ref.id

    @property
    def url(self) -> str:
        return self.ref.url

    @property
    def display_title(self) -> str:
        return self.title_native or self.title

    def tag_dict(self) -> dict[str, list[str]]:
        """Tags as plain JSON-serialisable data."""
        return {namespace: list(values) for namespace, values in self.tags.items()}


@dataclass(frozen=True)
class ResolvedImage:
    """A page resolved to a concrete image URL."""

    fileindex: int
    url: str
