"""Image pipeline: mirror every page of a gallery to the content store.

Stages:
    1. Dedup partition. Pages whose hash is already mirrored are mapped
       straight away. Pending pages sharing a hash form one group.
    2. Resolver. One task resolves each group to an image URL, in page
       order, and feeds a bounded queue. A full queue blocks it.
    3. Workers. N tasks take resolved groups off the queue, download the
       best acceptable payload, upload it and record it in the ledger.

An unrecoverable page failure aborts the gallery: the resolver stops,
workers drain the queue without processing it and ``run`` raises
``PipelineError``. Rows already written stay, so a later run resumes.
"""

import asyncio
import re
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass, field
from typing import Protocol
from urllib.parse import quote

import structlog

from models.source import Gallery, PageRef, ResolvedImage
from utils.content_store import ContentStore
from utils.exceptions import (
    APIError,
    FallbackExhaustedError,
    HotlinkBrokenError,
    InvalidImageError,
    LedgerError,
    MirrorError,
    PipelineError,
    SourceError,
    TransientNetworkError,
    UploadError,
)
from utils.http_client import HTTPClient
from utils.image_transcoder import ensure_image, reencode_webp
from utils.repositories import Ledger
from utils.retry import first_success
from utils.source_client import SourceClient

logger = structlog.get_logger(__name__)

PRIMARY_TRANSFORM_HOST = "wsrv.nl"
ALTERNATE_TRANSFORM_HOST = "images.weserv.nl"

_STOP = object()


def transform_url(host: str, url: str, lossless: bool = True) -> str:
    """URL of ``url`` re-encoded to WebP by an image transform service.

    ``n=-1`` keeps every frame of animated images.
    """
    target = re.sub(r"^https?://", "", url)
    quality = "ll" if lossless else "q=95"
    return f"https://{host}/?url={quote(target, safe='')}&output=webp&{quality}&n=-1"


@dataclass
class StageCounts:
    """Progress of one pipeline run, counted in pages."""

    total: int = 0
    deduplicated: int = 0
    resolved: int = 0
    downloaded: int = 0
    uploaded: int = 0
    failed: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


class ProgressObserver(Protocol):
    def on_progress(self, counts: StageCounts) -> None: ...


@dataclass
class PendingImage:
    """Pages of one gallery that share a content hash."""

    content_hash: str
    pages: list[PageRef] = field(default_factory=list)


@dataclass
class ResolvedPage:
    pending: PendingImage
    image: ResolvedImage


@dataclass
class Payload:
    data: bytes
    extension: str
    transformed: bool


class ImagePipeline:
    """Mirrors the images of a gallery with bounded concurrency."""

    def __init__(
        self,
        source: SourceClient,
        store: ContentStore,
        ledger: Ledger,
        http: HTTPClient,
        workers: int = 4,
        compress_threshold: int = 1_000_000,
        min_payload: int = 1000,
        max_payload: int = 4_900_000,
        observer: ProgressObserver | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            source: Resolves pages to image URLs.
            store: Upload target for image bytes.
            ledger: Durable record of mirrored images and page mappings.
            http: Client used for image downloads and size probes.
            workers: Number of concurrent download and upload workers.
            compress_threshold: Originals larger than this many bytes are recompressed.
            min_payload: Smallest acceptable recompressed payload.
            max_payload: Largest acceptable recompressed payload.
            observer: Default progress observer.
        """
        if workers < 1:
            raise ValueError("workers must be positive")
        self.source = source
        self.store = store
        self.ledger = ledger
        self.http = http
        self.workers = workers
        self.compress_threshold = compress_threshold
        self.min_payload = min_payload
        self.max_payload = max_payload
        self.observer = observer

    async def run(self, gallery: Gallery, observer: ProgressObserver | None = None) -> StageCounts:
        """Mirror every page of ``gallery``.

        Args:
            gallery: The gallery to mirror.
            observer: Progress observer for this run, overriding the default.

        Returns:
            Final stage counts.

        Raises:
            PipelineError: If any page could not be mirrored.
        """
        observer = observer or self.observer
        counts = StageCounts(total=len(gallery.pages))

        def notify() -> None:
            if observer is not None:
                observer.on_progress(counts)

        pending = await self._partition(gallery, counts)
        notify()
        if not pending:
            logger.debug("image_pipeline_all_known", pages=counts.total)
            return counts

        queue: asyncio.Queue = asyncio.Queue(maxsize=2 * self.workers)
        semaphore = asyncio.Semaphore(self.workers)
        abort = asyncio.Event()
        failures: list[tuple[int, Exception]] = []

        def fail(group: PendingImage, error: Exception) -> None:
            for page in group.pages:
                failures.append((page.page_number, error))
            counts.failed += len(group.pages)
            abort.set()
            notify()

        async def resolver() -> None:
            try:
                for group in pending:
                    if abort.is_set():
                        break
                    try:
                        image = await self.source.resolve_image_url(group.pages[0])
                    except (HotlinkBrokenError, SourceError, TransientNetworkError, APIError) as e:
                        logger.warning(
                            "page_resolve_failed",
                            page=group.pages[0].page_number,
                            error=str(e),
                            error_type=type(e).__name__,
                        )
                        fail(group, e)
                        break
                    counts.resolved += len(group.pages)
                    notify()
                    await queue.put(ResolvedPage(group, image))
            finally:
                for _ in range(self.workers):
                    await queue.put(_STOP)

        async def worker() -> None:
            while True:
                item = await queue.get()
                if item is _STOP:
                    return
                if abort.is_set():
                    continue
                try:
                    async with semaphore:
                        await self._process(item, counts, notify)
                except MirrorError as e:
                    logger.warning(
                        "page_mirror_failed",
                        page=item.pending.pages[0].page_number,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    fail(item.pending, e)

        tasks = [asyncio.create_task(resolver())]
        tasks.extend(asyncio.create_task(worker()) for _ in range(self.workers))
        try:
            await asyncio.gather(*tasks)
        finally:
            for task in tasks:
                task.cancel()

        if failures:
            raise PipelineError(gallery.id, sorted(failures, key=lambda failure: failure[0]))
        return counts

    async def _partition(self, gallery: Gallery, counts: StageCounts) -> list[PendingImage]:
        """Map already mirrored pages and group the rest by hash, in page order."""
        groups: dict[str, PendingImage] = {}
        for page in gallery.pages:
            groups.setdefault(page.content_hash, PendingImage(page.content_hash)).pages.append(page)

        pending = []
        for group in groups.values():
            known = await self.ledger.images.get_by_hash(group.content_hash)
            if known is None:
                pending.append(group)
                continue
            for page in group.pages:
                await self.ledger.pages.map_page(page.gallery_id, page.page_number, known.id)
            counts.deduplicated += len(group.pages)
        return pending

    async def _probe_size(self, url: str) -> int | None:
        try:
            response = await self.http.head(url)
        except (TransientNetworkError, APIError) as e:
            logger.debug("size_probe_failed", url=url, error=str(e))
            return None
        return response.content_length if response.ok else None

    async def _download(self, url: str) -> tuple[bytes, str]:
        response = await self.http.get(url)
        if not response.ok:
            raise APIError("image host", status_code=response.status)
        return response.body, response.content_type

    def _check_range(self, data: bytes) -> None:
        if not self.min_payload <= len(data) <= self.max_payload:
            raise InvalidImageError(
                f"size {len(data)} outside [{self.min_payload}, {self.max_payload}]"
            )

    def _tiers(self, url: str, compress: bool) -> list[tuple[str, Callable[[], Awaitable[Payload]]]]:
        """Ordered payload strategies for one image."""
        original: dict[str, tuple[bytes, str]] = {}

        async def raw() -> tuple[bytes, str]:
            if "body" not in original:
                original["body"] = await self._download(url)
            return original["body"]

        async def remote(host: str, lossless: bool) -> Payload:
            data, content_type = await self._download(transform_url(host, url, lossless))
            ensure_image(data, content_type)
            self._check_range(data)
            return Payload(data, "webp", True)

        async def local(lossless: bool) -> Payload:
            data, content_type = await raw()
            ensure_image(data, content_type)
            encoded = await asyncio.to_thread(reencode_webp, data, lossless)
            self._check_range(encoded)
            return Payload(encoded, "webp", True)

        async def original_bytes() -> Payload:
            data, content_type = await raw()
            return Payload(data, ensure_image(data, content_type), False)

        tiers = []
        if compress:
            tiers = [
                ("primary-lossless", lambda: remote(PRIMARY_TRANSFORM_HOST, True)),
                ("alternate-lossless", lambda: remote(ALTERNATE_TRANSFORM_HOST, True)),
                ("alternate-lossy", lambda: remote(ALTERNATE_TRANSFORM_HOST, False)),
                ("local-lossless", lambda: local(True)),
                ("local-lossy", lambda: local(False)),
            ]
        tiers.append(("original", original_bytes))
        return tiers

    async def _process(self, item: ResolvedPage, counts: StageCounts, notify: Callable[[], None]) -> None:
        """Download, upload and record one resolved group."""
        group = item.pending
        url = item.image.url

        size = await self._probe_size(url)
        compress = size is not None and size > self.compress_threshold
        try:
            tier, payload = await first_success(
                self._tiers(url, compress),
                catch=(InvalidImageError, TransientNetworkError, APIError),
            )
        except FallbackExhaustedError as e:
            raise HotlinkBrokenError(url, message=f"No acceptable payload for {url}: {e.message}") from e
        counts.downloaded += len(group.pages)
        notify()
        logger.debug("payload_selected", hash=group.content_hash, tier=tier, size=len(payload.data))

        name = f"{group.content_hash}.{payload.extension}"
        try:
            hosted_url = await self.store.upload(name, payload.data)
        except UploadError:
            if payload.transformed:
                raise
            logger.warning("raw_upload_failed_reencoding", hash=group.content_hash, size=len(payload.data))
            encoded = await asyncio.to_thread(reencode_webp, payload.data)
            hosted_url = await self.store.upload(f"{group.content_hash}.webp", encoded)
        counts.uploaded += len(group.pages)
        notify()

        await self._record(group, hosted_url)

    async def _record(self, group: PendingImage, hosted_url: str) -> None:
        """Write the image row and every page mapping, each attempted on its own.

        Raises:
            LedgerError: If the image row or any page mapping could not be
                written. The pages that did get mapped stay in the ledger.
        """
        image_id = None
        failed: list[str] = []
        try:
            image_id = (await self.ledger.images.create_if_absent(group.content_hash, hosted_url)).id
        except LedgerError as e:
            logger.error("image_record_failed", hash=group.content_hash, error=str(e))
            try:
                known = await self.ledger.images.get_by_hash(group.content_hash)
                image_id = known.id if known else None
            except LedgerError as lookup_error:
                logger.error("image_lookup_failed", hash=group.content_hash, error=str(lookup_error))

        for page in group.pages:
            if image_id is None:
                logger.error("page_mapping_skipped", page=page.page_number, hash=group.content_hash)
                failed.append(f"page {page.page_number}")
                continue
            try:
                await self.ledger.pages.map_page(page.gallery_id, page.page_number, image_id)
            except LedgerError as e:
                logger.error("page_mapping_failed", page=page.page_number, error=str(e))
                failed.append(f"page {page.page_number}")

        if failed:
            raise LedgerError("record", message=f"Could not record {', '.join(failed)}")
