"""
Background tasks driving the mirror.

``scan_loop`` runs a scan cycle every ``scan_interval`` seconds and
``recheck_loop`` republishes dead articles once a day. An expired source
session stops scanning until an operator restarts the bot with a fresh
credential.
"""

import datetime

import structlog
from discord.ext import commands, tasks

from utils.error_handling import log_error, notify_operator
from utils.exceptions import AuthError
from utils.ingestion import CycleReport, IngestionPipeline

RECHECK_TIME = datetime.time(hour=4, tzinfo=datetime.timezone.utc)


class MirrorCog(commands.Cog, name="mirror"):
    """Hosts the mirror's scheduled work inside the bot process."""

    def __init__(
        self,
        bot: commands.Bot,
        pipeline: IngestionPipeline,
        scan_interval: int = 1800,
        operator_channel_id: int | None = None,
    ) -> None:
        self.bot = bot
        self.pipeline = pipeline
        self.scan_interval = scan_interval
        self.operator_channel_id = operator_channel_id
        self.logger = structlog.get_logger("cogs.mirror")

    async def cog_load(self) -> None:
        self.scan_loop.change_interval(seconds=self.scan_interval)
        self.scan_loop.start()
        self.recheck_loop.start()

    async def cog_unload(self) -> None:
        self.scan_loop.cancel()
        self.recheck_loop.cancel()

    async def run_scan(self) -> CycleReport | None:
        """Run one scan cycle. Returns None if the cycle did not complete."""
        try:
            return await self.pipeline.scan_cycle()
        except AuthError as e:
            self.logger.critical("source_auth_lost", error=str(e))
            self.scan_loop.stop()
            await notify_operator(
                self.pipeline.messenger,
                self.operator_channel_id,
                "Source session expired, scanning stopped",
                error=e,
            )
        except Exception as e:
            log_error(e, "scan_cycle")
        return None

    async def run_recheck(self) -> int | None:
        try:
            return await self.pipeline.recheck()
        except Exception as e:
            log_error(e, "recheck")
        return None

    @tasks.loop(seconds=1800)
    async def scan_loop(self) -> None:
        await self.run_scan()

    @scan_loop.before_loop
    async def before_scan(self) -> None:
        await self.bot.wait_until_ready()

    @tasks.loop(time=RECHECK_TIME)
    async def recheck_loop(self) -> None:
        await self.run_recheck()

    @recheck_loop.before_loop
    async def before_recheck(self) -> None:
        await self.bot.wait_until_ready()
