"""Ingestion pipeline: decide what to upload, update or republish.

One scan cycle walks the head of the search feed. For each gallery it
first checks whether an already announced gallery changed, then uploads
it if it was never announced. Failures are contained per gallery, except
``AuthError`` which ends the cycle.
"""

import asyncio
from collections.abc import Awaitable, Callable, Iterable, Sequence
from contextlib import aclosing
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any

import structlog

from models.source import Gallery, GalleryRef
from models.tables.gallery import GalleryEntity
from models.tables.message import MessageEntity
from utils.article_publisher import ArticlePublisher, PublishedArticle
from utils.error_handling import log_error, notify_operator
from utils.exceptions import AuthError
from utils.formatting import TagTranslator, format_message
from utils.http_client import HTTPClient
from utils.image_pipeline import ImagePipeline, ProgressObserver
from utils.logging import GalleryContext, log_timing
from utils.messaging import Messenger
from utils.repositories import Ledger
from utils.source_client import SourceClient

logger = structlog.get_logger(__name__)

# (age in days below which, check every N days)
DEFAULT_CADENCE = ((2, 1), (7, 3), (14, 7))
DEFAULT_CADENCE_MAX = 14


class UploadOutcome(str, Enum):
    SKIPPED = "skipped"
    UPLOADED = "uploaded"


class UpdateOutcome(str, Enum):
    NOT_TRACKED = "not_tracked"
    THROTTLED = "throttled"
    UNCHANGED = "unchanged"
    UPDATED = "updated"


def cadence_for(
    age_days: int,
    thresholds: Sequence[tuple[int, int]] = DEFAULT_CADENCE,
    maximum: int = DEFAULT_CADENCE_MAX,
) -> int:
    """Days between update checks for a gallery announced ``age_days`` ago."""
    for limit, cadence in thresholds:
        if age_days < limit:
            return cadence
    return maximum


def is_update_due(
    today: date,
    age_days: int,
    throttled: bool,
    thresholds: Sequence[tuple[int, int]] = DEFAULT_CADENCE,
    maximum: int = DEFAULT_CADENCE_MAX,
) -> bool:
    """Whether an update check runs today. Unthrottled checks always run."""
    if not throttled:
        return True
    return today.day % cadence_for(age_days, thresholds, maximum) == 0


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass
class CycleReport:
    """Summary of one scan cycle."""

    inspected: int = 0
    uploads: dict[UploadOutcome, int] = field(default_factory=dict)
    updates: dict[UpdateOutcome, int] = field(default_factory=dict)
    failures: list[tuple[int, str]] = field(default_factory=list)

    def count(self, outcome: UploadOutcome | UpdateOutcome) -> None:
        bucket = self.uploads if isinstance(outcome, UploadOutcome) else self.updates
        bucket[outcome] = bucket.get(outcome, 0) + 1

    def as_log(self) -> dict[str, Any]:
        return {
            "inspected": self.inspected,
            **{f"upload_{outcome.value}": n for outcome, n in self.uploads.items()},
            **{f"update_{outcome.value}": n for outcome, n in self.updates.items()},
            "failed": len(self.failures),
        }


class IngestionPipeline:
    """Orchestrates source, image pipeline, publisher, messenger and ledger."""

    def __init__(
        self,
        source: SourceClient,
        images: ImagePipeline,
        publisher: ArticlePublisher,
        messenger: Messenger,
        ledger: Ledger,
        http: HTTPClient,
        channel_id: int,
        operator_channel_id: int | None = None,
        search_count: int = 50,
        gallery_delay: float = 1.0,
        cadence_thresholds: Sequence[tuple[int, int]] = DEFAULT_CADENCE,
        cadence_max: int = DEFAULT_CADENCE_MAX,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        translator: TagTranslator | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            source: Client for the remote source.
            images: Image pipeline mirroring gallery pages.
            publisher: Article publisher.
            messenger: Channel messaging collaborator.
            ledger: Durable record of everything mirrored and announced.
            http: Client used for article liveness checks.
            channel_id: Channel receiving announcements.
            operator_channel_id: Channel receiving failure notices, if any.
            search_count: Galleries inspected per cycle.
            gallery_delay: Seconds between galleries in a cycle.
            cadence_thresholds: ``(age_days, cadence)`` pairs, ascending.
            cadence_max: Cadence for galleries older than every threshold.
            clock: Returns the current naive UTC time.
            sleep: Awaitable sleep, replaceable in tests.
            translator: Display names for tags in announcements.
        """
        self.source = source
        self.images = images
        self.publisher = publisher
        self.messenger = messenger
        self.ledger = ledger
        self.http = http
        self.channel_id = channel_id
        self.operator_channel_id = operator_channel_id
        self.search_count = search_count
        self.gallery_delay = gallery_delay
        self.cadence_thresholds = tuple(cadence_thresholds)
        self.cadence_max = cadence_max
        self.clock = clock
        self.sleep = sleep
        self.translator = translator

    async def try_upload(
        self,
        ref: GalleryRef,
        skip_if_known: bool = True,
        observer: ProgressObserver | None = None,
    ) -> UploadOutcome:
        """Mirror, publish and announce a gallery.

        A gallery that already has a channel message gets that message
        edited; a second announcement is never sent.

        Args:
            ref: The gallery to upload.
            skip_if_known: Return early without any network call when the
                gallery is already stored and announced.
            observer: Progress observer for the image pipeline.

        Returns:
            SKIPPED or UPLOADED.
        """
        if skip_if_known and await self.ledger.is_announced(ref.id):
            logger.debug("gallery_already_announced", gallery_id=ref.id)
            return UploadOutcome.SKIPPED

        async with GalleryContext(logger, "gallery_upload", ref.id) as ctx:
            gallery = await self.source.resolve_gallery(ref)
            counts = await self.images.run(gallery, observer)
            article = await self.publisher.publish(gallery)
            text = format_message(gallery, article.url, self.translator)

            existing = await self.ledger.messages.get_by_gallery(gallery.id)
            if existing is not None:
                await self.messenger.edit(existing.channel_id, existing.id, text)
                message_id, channel_id, published_at = existing.id, existing.channel_id, existing.published_at
            else:
                reply_to = await self._parent_message_id(gallery)
                message_id = await self.messenger.send(self.channel_id, text, reply_to=reply_to)
                channel_id, published_at = self.channel_id, self.clock()

            await self.ledger.messages.save(message_id, gallery.id, channel_id, published_at)
            await self.ledger.articles.save(gallery.id, article.url, article.page_urls)
            await self.ledger.galleries.save(gallery)
            ctx.add_info(
                pages=counts.total,
                deduplicated=counts.deduplicated,
                uploaded=counts.uploaded,
                message_id=message_id,
                edited=existing is not None,
            )
        return UploadOutcome.UPLOADED

    async def _parent_message_id(self, gallery: Gallery) -> int | None:
        if gallery.parent is None:
            return None
        parent = await self.ledger.messages.get_by_gallery(gallery.parent.id)
        if parent is None or parent.channel_id != self.channel_id:
            return None
        return parent.id

    async def try_update(self, ref: GalleryRef, throttled: bool = True) -> UpdateOutcome:
        """Refresh an announced gallery and edit its message if it changed.

        Args:
            ref: The gallery to check.
            throttled: Apply the age-based cadence.

        Returns:
            NOT_TRACKED, THROTTLED, UNCHANGED or UPDATED.
        """
        entity = await self.ledger.galleries.get_by_id(ref.id)
        message = await self.ledger.messages.get_by_gallery(ref.id)
        if entity is None or message is None:
            return UpdateOutcome.NOT_TRACKED

        today = self.clock().date()
        age_days = (today - message.published_at.date()).days
        if not is_update_due(today, age_days, throttled, self.cadence_thresholds, self.cadence_max):
            logger.debug("gallery_update_throttled", gallery_id=ref.id, age_days=age_days)
            return UpdateOutcome.THROTTLED

        gallery = await self.source.resolve_gallery(ref)
        changed = gallery.tag_dict() != entity.tags or gallery.title != entity.title
        if changed:
            article = await self.ledger.articles.get_by_gallery(gallery.id)
            if article is not None:
                article_url = article.url
            else:
                published = await self.publisher.publish(gallery)
                await self.ledger.articles.save(gallery.id, published.url, published.page_urls)
                article_url = published.url
            text = format_message(gallery, article_url, self.translator)
            await self.messenger.edit(message.channel_id, message.id, text)
            logger.info("gallery_updated", gallery_id=gallery.id, title_changed=gallery.title != entity.title)

        await self.ledger.galleries.save(gallery)
        return UpdateOutcome.UPDATED if changed else UpdateOutcome.UNCHANGED

    async def republish(self, gallery: GalleryEntity, message: MessageEntity) -> PublishedArticle:
        """Rebuild a gallery's article from the ledger and point its message at it."""
        logger.info("gallery_republish", gallery_id=gallery.id, message_id=message.id)
        article = await self.publisher.publish(gallery)
        text = format_message(gallery, article.url, self.translator)
        await self.messenger.edit(message.channel_id, message.id, text)
        await self.ledger.articles.save(gallery.id, article.url, article.page_urls)
        return article

    async def scan_cycle(self) -> CycleReport:
        """Update and upload the head of the search feed.

        Raises:
            AuthError: If the source session is no longer valid.
        """
        report = CycleReport()
        async with aclosing(self.source.search_pages()) as refs:
            async for ref in refs:
                report.inspected += 1
                await self._scan_one(ref, report)
                if report.inspected >= self.search_count:
                    break
                await self.sleep(self.gallery_delay)

        logger.info("scan_cycle_completed", **report.as_log())
        return report

    async def _scan_one(self, ref: GalleryRef, report: CycleReport) -> None:
        try:
            report.count(await self.try_update(ref, True))
        except AuthError:
            raise
        except Exception as e:
            log_error(e, "gallery_update", gallery_id=ref.id)
            report.failures.append((ref.id, str(e)))

        try:
            report.count(await self.try_upload(ref, True))
        except AuthError:
            raise
        except Exception as e:
            log_error(e, "gallery_upload", gallery_id=ref.id)
            report.failures.append((ref.id, str(e)))
            await notify_operator(
                self.messenger,
                self.operator_channel_id,
                "Gallery upload failed",
                error=e,
                url=ref.url,
            )

    async def check_article_alive(self, url: str) -> bool:
        """An article is dead only when Telegraph answers 404."""
        response = await self.http.head(url)
        return response.status != 404

    @log_timing(logger, "recheck")
    async def recheck(self) -> int:
        """Republish every announced gallery whose article is gone.

        Returns:
            Number of galleries republished.
        """
        republished = 0
        for gallery, message in await self.ledger.galleries.get_announced():
            try:
                article = await self.ledger.articles.get_by_gallery(gallery.id)
                if article is not None and await self.check_article_alive(article.url):
                    continue
                await self.republish(gallery, message)
                republished += 1
            except AuthError:
                raise
            except Exception as e:
                log_error(e, "gallery_recheck", gallery_id=gallery.id)
        logger.debug("recheck_counted", republished=republished)
        return republished

    async def reupload(self, refs: Iterable[GalleryRef]) -> list[UploadOutcome]:
        """Upload galleries again even if they are already announced."""
        return [await self.try_upload(ref, skip_if_known=False) for ref in refs]
