"""
Tests for the Discord messenger.

The bot and channels are MagicMocks; discord.py exceptions are built from
mocked responses the way the library builds them from aiohttp responses.
"""

import os
import sys
from unittest.mock import AsyncMock, MagicMock, patch

import discord
import pytest

sys.path.insert(0, os.path.abspath(os.path.dirname(os.path.dirname(__file__))))

from utils.exceptions import MessagingError
from utils.messaging import MESSAGE_LIMIT, DiscordMessenger, truncate


def http_error(cls, status, text="failure"):
    return cls(MagicMock(status=status, reason="reason"), text)


def mock_bot(channel=None):
    bot = MagicMock()
    bot.get_channel.return_value = channel
    bot.fetch_channel = AsyncMock(return_value=channel)
    return bot


def mock_channel(message_id=555):
    channel = MagicMock()
    channel.send = AsyncMock(return_value=MagicMock(id=message_id))
    partial = MagicMock()
    partial.edit = AsyncMock()
    channel.get_partial_message.return_value = partial
    return channel


def test_truncate():
    assert truncate("short") == "short"
    long = truncate("x" * (MESSAGE_LIMIT + 10))
    assert len(long) == MESSAGE_LIMIT
    assert long.endswith("…")


@pytest.mark.asyncio
async def test_send_returns_message_id():
    channel = mock_channel(message_id=777)
    messenger = DiscordMessenger(mock_bot(channel))

    assert await messenger.send(42, "hello") == 777
    channel.send.assert_awaited_once_with("hello", reference=None)


@pytest.mark.asyncio
async def test_reply_uses_lenient_reference():
    channel = mock_channel()
    messenger = DiscordMessenger(mock_bot(channel))

    await messenger.send(42, "child", reply_to=111)

    reference = channel.send.call_args.kwargs["reference"]
    assert reference.message_id == 111
    assert reference.channel_id == 42
    assert reference.fail_if_not_exists is False


@pytest.mark.asyncio
async def test_uncached_channel_is_fetched():
    channel = mock_channel()
    bot = mock_bot(None)
    bot.fetch_channel = AsyncMock(return_value=channel)

    await DiscordMessenger(bot).send(42, "hello")

    bot.fetch_channel.assert_awaited_once_with(42)


@pytest.mark.asyncio
async def test_unknown_channel_is_messaging_error():
    bot = mock_bot(None)
    bot.fetch_channel = AsyncMock(side_effect=http_error(discord.NotFound, 404, "Unknown Channel"))

    with pytest.raises(MessagingError) as excinfo:
        await DiscordMessenger(bot).send(42, "hello")
    assert excinfo.value.channel_id == 42


@pytest.mark.asyncio
async def test_edit_truncates_content():
    channel = mock_channel()

    await DiscordMessenger(mock_bot(channel)).edit(42, 9, "y" * 5000)

    channel.get_partial_message.assert_called_once_with(9)
    content = channel.get_partial_message.return_value.edit.call_args.kwargs["content"]
    assert len(content) == MESSAGE_LIMIT


@pytest.mark.asyncio
async def test_forbidden_is_not_retried():
    channel = mock_channel()
    channel.send.side_effect = http_error(discord.Forbidden, 403)

    with pytest.raises(MessagingError):
        await DiscordMessenger(mock_bot(channel)).send(42, "hello")
    assert channel.send.await_count == 1


@pytest.mark.asyncio
async def test_server_errors_are_retried():
    channel = mock_channel(message_id=888)
    channel.send.side_effect = [http_error(discord.DiscordServerError, 503), MagicMock(id=888)]

    with patch("utils.retry.asyncio.sleep", new=AsyncMock()) as sleep:
        assert await DiscordMessenger(mock_bot(channel)).send(42, "hello") == 888

    assert channel.send.await_count == 2
    sleep.assert_awaited_once_with(1.0)


@pytest.mark.asyncio
async def test_persistent_server_errors_become_messaging_error():
    channel = mock_channel()
    partial = channel.get_partial_message.return_value
    partial.edit.side_effect = http_error(discord.DiscordServerError, 502)

    with patch("utils.retry.asyncio.sleep", new=AsyncMock()):
        with pytest.raises(MessagingError):
            await DiscordMessenger(mock_bot(channel)).edit(42, 9, "text")

    assert partial.edit.await_count == 3
