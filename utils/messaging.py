"""Channel messaging collaborator.

The pipeline only needs two operations: post a message and edit one it
posted earlier. ``Messenger`` is the protocol it depends on and
``DiscordMessenger`` is the production implementation.
"""

from typing import Protocol

import discord
import structlog
from discord.ext import commands

from utils.exceptions import MessagingError
from utils.retry import with_retry

logger = structlog.get_logger(__name__)

MESSAGE_LIMIT = 2000


class Messenger(Protocol):
    async def send(self, channel_id: int, text: str, reply_to: int | None = None) -> int:
        """Post ``text`` and return the new message id."""
        ...

    async def edit(self, channel_id: int, message_id: int, text: str) -> None:
        """Replace the text of an existing message."""
        ...


def truncate(text: str, limit: int = MESSAGE_LIMIT) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 1] + "…"


class DiscordMessenger:
    """Messenger backed by a discord.py client."""

    def __init__(self, bot: commands.Bot) -> None:
        self.bot = bot

    async def _channel(self, channel_id: int) -> discord.abc.Messageable:
        channel = self.bot.get_channel(channel_id)
        if channel is None:
            try:
                channel = await self.bot.fetch_channel(channel_id)
            except discord.HTTPException as e:
                raise MessagingError(channel_id, message=f"Channel {channel_id} unavailable: {e}") from e
        return channel

    @with_retry(attempts=3, base_delay=1.0, retry_on=(discord.DiscordServerError,))
    async def _send(self, channel_id: int, text: str, reply_to: int | None) -> int:
        channel = await self._channel(channel_id)
        reference = None
        if reply_to is not None:
            reference = discord.MessageReference(
                message_id=reply_to, channel_id=channel_id, fail_if_not_exists=False
            )
        message = await channel.send(truncate(text), reference=reference)
        return message.id

    @with_retry(attempts=3, base_delay=1.0, retry_on=(discord.DiscordServerError,))
    async def _edit(self, channel_id: int, message_id: int, text: str) -> None:
        channel = await self._channel(channel_id)
        await channel.get_partial_message(message_id).edit(content=truncate(text))

    async def send(self, channel_id: int, text: str, reply_to: int | None = None) -> int:
        """Post a message, optionally as a reply.

        Raises:
            MessagingError: If Discord rejected the message or stayed unavailable.
        """
        try:
            message_id = await self._send(channel_id, text, reply_to)
        except discord.HTTPException as e:
            raise MessagingError(channel_id, message=f"Send to {channel_id} failed: {e}") from e
        logger.debug("message_sent", channel_id=channel_id, message_id=message_id, reply_to=reply_to)
        return message_id

    async def edit(self, channel_id: int, message_id: int, text: str) -> None:
        """Edit a previously sent message.

        Raises:
            MessagingError: If the message is gone or Discord stayed unavailable.
        """
        try:
            await self._edit(channel_id, message_id, text)
        except discord.HTTPException as e:
            raise MessagingError(channel_id, message=f"Edit of {message_id} failed: {e}") from e
        logger.debug("message_edited", channel_id=channel_id, message_id=message_id)
