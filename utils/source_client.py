"""Client for the remote gallery source.

The source is scraped, not queried through an API, so every response is
validated for size and shape before any field is extracted. Thin or
garbled bodies are classified into explicit errors instead of surfacing
later as confusing parse failures.
"""

import re
from collections.abc import AsyncIterator
from datetime import datetime
from urllib.parse import urlparse

import lxml.html
import structlog
from aiohttp import ClientSession

from models.source import Gallery, GalleryRef, PageRef, ResolvedImage
from utils.exceptions import (
    APIError,
    AuthError,
    AuthExpiredError,
    FallbackExhaustedError,
    HotlinkBrokenError,
    NotFoundError,
    ParseError,
    SourceError,
    TransientNetworkError,
)
from utils.http_client import HTTPClient, HTTPResponse
from utils.retry import first_success

logger = structlog.get_logger(__name__)

MIN_BODY_LENGTH = 1000
POSTED_FORMAT = "%Y-%m-%d %H:%M"

BROWSER_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
    ),
}

REMOVAL_MARKERS = (
    b"This gallery has been removed or is unavailable",
    b"Key missing, or incorrect key provided",
    b"Gallery not found",
)

FILEINDEX_PATTERNS = (re.compile(r"fileindex=(\d+)"), re.compile(r"/om/(\d+)/"))
NL_PATTERN = re.compile(r"nl\('(.+?)'\)")


def _has_class(name: str) -> str:
    return f"contains(concat(' ', normalize-space(@class), ' '), ' {name} ')"


def _first(values: list) -> str | None:
    for value in values:
        text = value if isinstance(value, str) else value.text_content()
        text = text.strip()
        if text:
            return text
    return None


def normalize_credential(credential: str | None) -> str:
    """Remove embedded line breaks and surrounding whitespace from a cookie string.

    A cookie copied with line breaks makes the origin answer with empty pages
    rather than an explicit error, so this always runs before transmission.
    """
    if not credential:
        return ""
    return re.sub(r"[\r\n]+", "", credential).strip()


def is_login_url(url: str) -> bool:
    parsed = urlparse(url)
    return "login" in parsed.path.lower() or "login" in parsed.query.lower()


def classify_thin_body(body: bytes) -> str:
    """Name the failure mode of a response too small to be a real page."""
    try:
        text = body.decode("utf-8")
    except UnicodeDecodeError:
        return "binary"
    if "location.replace" in text or "redirect" in text.lower():
        return "redirect-page"
    return "truncated"


def extract_fileindex(url: str | None) -> int:
    if not url:
        return 0
    for pattern in FILEINDEX_PATTERNS:
        match = pattern.search(url)
        if match:
            return int(match.group(1))
    return 0


def extract_nl_token(onerror: str | None) -> str | None:
    if not onerror:
        return None
    match = NL_PATTERN.search(onerror)
    return match.group(1) if match else None


def parse_search_page(html: str) -> tuple[list[GalleryRef], str | None]:
    """Extract gallery references and the next cursor from a search result page.

    Args:
        html: The search page document.

    Returns:
        The references in page order and the next cursor, or None on the last page.
    """
    doc = lxml.html.fromstring(html)
    refs = []
    for row in doc.xpath(f"//table[{_has_class('itg')}]//tr"):
        href = _first(row.xpath(f".//td[{_has_class('glname')}]//a/@href"))
        if not href:
            # header row
            continue
        try:
            refs.append(GalleryRef.from_url(href))
        except ValueError:
            logger.warning("search_row_unparseable", href=href)

    next_href = _first(doc.xpath("//a[@id='dnext']/@href"))
    cursor = next_href.rsplit("=", 1)[-1] if next_href and "=" in next_href else None
    return refs, cursor


def parse_favorites(text: str | None) -> int:
    if not text:
        return 0
    word = text.split()[0]
    if word == "Never":
        return 0
    if word == "Once":
        return 1
    try:
        return int(word.replace(",", ""))
    except ValueError:
        return 0


def parse_gallery(html: str, ref: GalleryRef) -> tuple[Gallery, str | None]:
    """Extract gallery metadata from the first gallery page.

    Args:
        html: The gallery page document.
        ref: The gallery being parsed.

    Returns:
        The gallery with the pages listed on this document, and the URL of the
        next continuation page if there is one.

    Raises:
        ParseError: If the title or the posted date is missing.
    """
    doc = lxml.html.fromstring(html)

    title = _first(doc.xpath("//h1[@id='gn']"))
    if not title:
        raise ParseError(ref.id, reason="missing-title")
    title_native = _first(doc.xpath("//h1[@id='gj']"))

    parent = None
    parent_href = _first(doc.xpath(f"//td[{_has_class('gdt2')}]/a/@href"))
    if parent_href:
        try:
            parent = GalleryRef.from_url(parent_href)
        except ValueError:
            logger.debug("parent_link_unparseable", href=parent_href)

    posted_text = _first(doc.xpath(f"(//td[{_has_class('gdt2')}])[1]"))
    try:
        posted_at = datetime.strptime(posted_text or "", POSTED_FORMAT)
    except ValueError as e:
        raise ParseError(ref.id, reason="missing-posted-date") from e

    tags: dict[str, list[str]] = {}
    for row in doc.xpath("//div[@id='taglist']//tr"):
        namespace = (_first(row.xpath(f"./td[{_has_class('tc')}]")) or "misc").rstrip(":")
        for tag in row.xpath("./td/div/a"):
            name = tag.text_content().strip()
            bucket = tags.setdefault(namespace, [])
            if name and name not in bucket:
                bucket.append(name)

    gallery = Gallery(
        ref=ref,
        title=title,
        title_native=title_native,
        tags={namespace: tuple(values) for namespace, values in tags.items()},
        favorite_count=parse_favorites(_first(doc.xpath("//*[@id='favcount']"))),
        posted_at=posted_at,
        pages=tuple(parse_page_links(doc)),
        parent=parent,
        cover_index=ref.cover,
    )
    return gallery, next_continuation(doc)


def parse_page_links(doc) -> list[PageRef]:
    pages = []
    for href in doc.xpath("//div[@id='gdt']//a/@href"):
        try:
            pages.append(PageRef.from_url(href))
        except ValueError:
            continue
    return pages


def next_continuation(doc) -> str | None:
    return _first(doc.xpath(f"//table[{_has_class('ptb')}]//td[last()]/a/@href"))


class SourceClient:
    """Authenticated scraping client for the remote gallery source.

    The client has no concurrency of its own; callers decide how many
    requests run at once.
    """

    def __init__(
        self,
        http: HTTPClient,
        credential: str,
        base_url: str = "https://exhentai.org",
        search_params: dict[str, str] | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            http: HTTP client dedicated to the source origin.
            credential: Raw session cookie string.
            base_url: Origin of the source.
            search_params: Query parameters of the search feed.
        """
        self.http = http
        self.credential = credential
        self.base_url = base_url.rstrip("/")
        self.search_params = dict(search_params or {})
        self.http.update_headers({**BROWSER_HEADERS, "Referer": f"{self.base_url}/"})

    async def authenticate(self, credential: str | None = None) -> ClientSession:
        """Run the warm-up handshake and verify the session.

        Args:
            credential: Cookie string overriding the one given at construction.

        Returns:
            The authenticated HTTP session.

        Raises:
            AuthError: If the credential is empty, or verification lands on a
                login page or returns a body that is too small.
        """
        cookie = normalize_credential(credential if credential is not None else self.credential)
        if not cookie:
            raise AuthError("Source credential is empty")
        self.credential = cookie
        self.http.update_headers({"Cookie": cookie})

        for path in ("/", "/uconfig.php", "/mytags"):
            await self.http.get(f"{self.base_url}{path}")

        verification = await self.http.get(f"{self.base_url}/")
        if is_login_url(verification.url):
            raise AuthError(f"Verification redirected to login: {verification.url}")
        if len(verification.body) < MIN_BODY_LENGTH:
            raise AuthError(
                f"Verification body too small ({len(verification.body)} bytes, "
                f"{classify_thin_body(verification.body)})"
            )
        logger.info("source_authenticated", base_url=self.base_url)
        return await self.http.get_session()

    def _validate(self, response: HTTPResponse, requested: str, gallery_id: int | None) -> str:
        """Check a document response before parsing it.

        Returns:
            The decoded HTML text.
        """
        final = urlparse(response.url)
        requested_path = urlparse(requested).path
        if is_login_url(response.url) or (
            final.path in ("", "/") and requested_path not in ("", "/")
        ):
            raise AuthExpiredError(gallery_id)
        if response.status == 404 or any(marker in response.body for marker in REMOVAL_MARKERS):
            raise NotFoundError(gallery_id)
        if not response.ok:
            raise APIError("source", status_code=response.status)
        if len(response.body) < MIN_BODY_LENGTH:
            raise ParseError(gallery_id, reason=classify_thin_body(response.body))
        text = response.body.decode("utf-8", errors="replace").lstrip()
        head = text[:15].lower()
        if not (head.startswith("<!doctype html") or head.startswith("<html")):
            raise ParseError(gallery_id, reason="not-html")
        return text

    async def _fetch_document(
        self, url: str, gallery_id: int | None = None, params: dict[str, str] | None = None
    ) -> str:
        response = await self.http.get(url, params=params)
        return self._validate(response, url, gallery_id)

    async def search_pages(
        self, params: dict[str, str] | None = None, cursor: str | None = "0"
    ) -> AsyncIterator[GalleryRef]:
        """Lazily walk the search feed.

        Args:
            params: Query parameters, defaulting to the configured search.
            cursor: Cursor to resume from.

        Yields:
            Gallery references in feed order.

        Raises:
            AuthError: If the feed is redirected to the login page.
        """
        query = dict(self.search_params if params is None else params)
        while cursor is not None:
            try:
                html = await self._fetch_document(f"{self.base_url}/", params={**query, "next": cursor})
                refs, next_cursor = parse_search_page(html)
            except AuthExpiredError as e:
                raise AuthError("Search feed redirected to login") from e
            except (SourceError, TransientNetworkError, APIError) as e:
                logger.error("search_page_failed", cursor=cursor, error=str(e), error_type=type(e).__name__)
                return

            logger.debug("search_page_parsed", cursor=cursor, results=len(refs), next_cursor=next_cursor)
            for ref in refs:
                yield ref
            if not refs:
                return
            cursor = next_cursor

    async def resolve_gallery(self, ref: GalleryRef) -> Gallery:
        """Fetch a gallery and all of its continuation pages.

        Raises:
            NotFoundError: The gallery was removed.
            AuthExpiredError: The request was redirected to login.
            ParseError: The document lacked required structure.
        """
        html = await self._fetch_document(ref.url, ref.id)
        gallery, next_url = parse_gallery(html, ref)
        pages = list(gallery.pages)
        visited = {ref.url}

        while next_url and next_url not in visited:
            visited.add(next_url)
            html = await self._fetch_document(next_url, ref.id)
            doc = lxml.html.fromstring(html)
            pages.extend(parse_page_links(doc))
            next_url = next_continuation(doc)

        if not pages:
            raise ParseError(ref.id, reason="no-pages")

        logger.debug("gallery_resolved", gallery_id=ref.id, pages=len(pages))
        return Gallery(
            ref=gallery.ref,
            title=gallery.title,
            title_native=gallery.title_native,
            tags=gallery.tags,
            favorite_count=gallery.favorite_count,
            posted_at=gallery.posted_at,
            pages=tuple(pages),
            parent=gallery.parent,
            cover_index=gallery.cover_index,
        )

    async def _follow_original(self, url: str) -> str:
        response = await self.http.get(url, read_body=False, allow_redirects=True)
        if not response.ok or is_login_url(response.url):
            raise HotlinkBrokenError(url)
        return response.url

    async def _probe_standard(self, url: str) -> str:
        response = await self.http.head(url, retry_attempts=2)
        if not response.ok:
            raise HotlinkBrokenError(url)
        return url

    async def _fetch_downgraded(self, page: PageRef, nl: str) -> str:
        html = await self._fetch_document(page.with_nl(nl), page.gallery_id)
        src = _first(lxml.html.fromstring(html).xpath("//img[@id='img']/@src"))
        if not src:
            raise ParseError(page.gallery_id, reason="missing-image")
        return src

    async def resolve_image_url(self, page: PageRef) -> ResolvedImage:
        """Resolve a page to a concrete image URL.

        Tiers, in order: the original-asset link followed through its
        redirect, the displayed image if it passes a liveness probe, and the
        displayed image of the page re-fetched with its downgrade token.

        Raises:
            HotlinkBrokenError: If every tier failed.
        """
        doc = lxml.html.fromstring(await self._fetch_document(page.url, page.gallery_id))
        original = _first(doc.xpath("//div[@id='i6']//a[contains(@href, 'fullimg')]/@href"))
        standard = _first(doc.xpath("//img[@id='img']/@src"))
        nl = extract_nl_token(_first(doc.xpath("//img[@id='img']/@onerror")))

        strategies = []
        if original:
            strategies.append(("original", lambda: self._follow_original(original)))
        if standard:
            strategies.append(("standard", lambda: self._probe_standard(standard)))
        if nl:
            strategies.append(("downgraded", lambda: self._fetch_downgraded(page, nl)))

        try:
            tier, url = await first_success(
                strategies,
                catch=(HotlinkBrokenError, TransientNetworkError, APIError, ParseError),
            )
        except FallbackExhaustedError as e:
            raise HotlinkBrokenError(standard or page.url) from e

        logger.debug("image_url_resolved", page=page.page_number, tier=tier)
        return ResolvedImage(fileindex=extract_fileindex(original or standard), url=url)
