import asyncio
import sys

import discord
import structlog
from discord.ext import commands

from cogs.mirror import MirrorCog
from config import MirrorConfig, get_config
from utils.article_publisher import ArticlePublisher, TelegraphClient
from utils.content_store import build_content_store
from utils.exceptions import AuthError
from utils.formatting import TagTranslator
from utils.http_client import HTTPClient, RateLimiter
from utils.image_pipeline import ImagePipeline
from utils.ingestion import IngestionPipeline
from utils.logging import init_logging
from utils.messaging import DiscordMessenger
from utils.repositories import Ledger
from utils.source_client import SourceClient
from utils.sqlalchemy_db import create_engine_and_sessions, init_models

logger = structlog.get_logger("main")


class MirrorBot(commands.Bot):
    """Discord bot hosting the mirror's scheduled work."""

    def __init__(self, *args, mirror_config: MirrorConfig, ledger: Ledger, **kwargs):
        super().__init__(*args, **kwargs)
        self.mirror_config = mirror_config
        self.ledger = ledger
        self.messenger = DiscordMessenger(self)
        self.pipeline: IngestionPipeline | None = None

    async def setup_hook(self) -> None:
        await self.add_cog(
            MirrorCog(
                self,
                self.pipeline,
                scan_interval=self.mirror_config.scan_interval,
                operator_channel_id=self.mirror_config.operator_channel_id,
            )
        )

    async def on_ready(self):
        logger.info("bot_ready", user=str(self.user), user_id=self.user.id)


def build_http(config: MirrorConfig, service_name: str, **kwargs) -> HTTPClient:
    return HTTPClient(
        timeout=config.request_timeout,
        connect_timeout=config.connect_timeout,
        retry_attempts=config.network_retry_attempts,
        retry_start_timeout=config.retry_base_delay,
        retry_max_timeout=config.retry_max_delay,
        service_name=service_name,
        **kwargs,
    )


async def main() -> None:
    config = get_config()
    init_logging(config.logging_level, config.logfile or None, config.log_format.value)
    logger.info("config_loaded", **config.safe_summary())

    engine, session_maker = create_engine_and_sessions(config.database_url)
    await init_models(engine)
    ledger = Ledger(session_maker)

    source_http = build_http(
        config,
        "source",
        rate_limiter=RateLimiter(requests_per_second=2, burst_size=4),
        max_concurrent_requests=config.worker_count * 2,
    )
    media_http = build_http(config, "media")

    try:
        source = SourceClient(source_http, config.source_cookie, config.source_base_url, config.search_params)
        try:
            await source.authenticate()
        except AuthError as e:
            logger.critical("source_authentication_failed", error=str(e))
            sys.exit(1)

        store = build_content_store(
            media_http, config.teletype_token, config.ipfs_gateway_host, config.ipfs_gateway_date
        )
        telegraph = TelegraphClient(
            media_http,
            config.telegraph_access_token,
            config.telegraph_author_name,
            config.telegraph_author_url,
            max_delay=config.retry_max_delay,
        )
        translator = None
        if config.tag_translation_file:
            translator = TagTranslator.from_file(config.tag_translation_file)

        intents = discord.Intents.default()
        async with MirrorBot(
            command_prefix=commands.when_mentioned,
            intents=intents,
            mirror_config=config,
            ledger=ledger,
        ) as bot:
            images = ImagePipeline(
                source,
                store,
                ledger,
                media_http,
                workers=config.worker_count,
                compress_threshold=config.compress_threshold,
                min_payload=config.min_payload,
                max_payload=config.max_payload,
            )
            bot.pipeline = IngestionPipeline(
                source,
                images,
                ArticlePublisher(ledger, telegraph, config.article_capacity),
                bot.messenger,
                ledger,
                media_http,
                channel_id=config.channel_id,
                operator_channel_id=config.operator_channel_id,
                search_count=config.search_count,
                gallery_delay=config.gallery_delay,
                cadence_thresholds=config.cadence_thresholds,
                cadence_max=config.cadence_max,
                translator=translator,
            )
            await bot.start(config.bot_token)
    finally:
        await source_http.close()
        await media_http.close()
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
