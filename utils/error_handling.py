"""
Error handling utilities for the mirror.

This module keeps credentials out of logs and operator notices, logs
exceptions in one standard shape, and delivers failure notices to the
operator channel.
"""

import logging
import re
import traceback
from typing import TYPE_CHECKING, Any, List, Optional, Pattern

import structlog

from utils.exceptions import MessagingError, MirrorError

if TYPE_CHECKING:
    from utils.messaging import Messenger

logger = structlog.get_logger(__name__)

# Patterns for sensitive information that should be redacted
SENSITIVE_PATTERNS: List[Pattern] = [
    # Source session cookies
    re.compile(r"\b(ipb_member_id|ipb_pass_hash|igneous|sk|star)=([^;\s]+)", re.IGNORECASE),
    # API keys and tokens
    re.compile(
        r'(access_token|api[_-]?key|token|secret|password|authorization)["\']?\s*[=:]\s*["\'`]?([a-zA-Z0-9_\-\.]{16,})["\'`]?',
        re.IGNORECASE,
    ),
    # Database connection strings
    re.compile(r"(postgres(?:ql)?(?:\+asyncpg)?|mysql|redis)://([^\s]+)", re.IGNORECASE),
]

# Discord bot tokens have no key to keep
DISCORD_TOKEN = re.compile(r"[MN][A-Za-z\d]{23}\.[\w-]{6}\.[\w-]{27}")

MAX_MESSAGE_LENGTH = 300


def redact_sensitive_info(text: str) -> str:
    """
    Redact sensitive values from a string, keeping their keys.

    Args:
        text: The text to redact

    Returns:
        The redacted text
    """
    if not text:
        return text

    redacted_text = text
    for pattern in SENSITIVE_PATTERNS:
        redacted_text = pattern.sub(r"\1=[REDACTED]", redacted_text)
    return DISCORD_TOKEN.sub("[REDACTED]", redacted_text)


def sanitize_error_message(error: Exception, max_length: int = MAX_MESSAGE_LENGTH) -> str:
    """
    Produce a one-line, credential-free description of an exception.

    Args:
        error: The exception to describe
        max_length: Maximum length of the result

    Returns:
        ``ErrorType: message`` with secrets redacted
    """
    error_message = getattr(error, "message", None) or str(error)
    first_line = redact_sensitive_info(error_message).split("\n")[0]
    sanitized = f"{type(error).__name__}: {first_line}"
    if len(sanitized) > max_length:
        sanitized = sanitized[: max_length - 3] + "..."
    return sanitized


def log_error(
    error: Exception,
    operation: str,
    log_level: int = logging.ERROR,
    **context: Any,
) -> None:
    """Log an error with standardized format.

    Mirror errors are expected failure modes and are logged without a
    traceback. Anything else is a bug and gets the full traceback.

    Args:
        error: The exception to log
        operation: Name of the operation that failed
        log_level: Logging level to use
        **context: Extra key-value context, such as ``gallery_id``
    """
    event = {
        "operation": operation,
        "error_type": type(error).__name__,
        "error": sanitize_error_message(error),
        **context,
    }
    if not isinstance(error, MirrorError):
        event["traceback"] = redact_sensitive_info(
            "".join(traceback.format_exception(type(error), error, error.__traceback__))
        )
    logger.log(log_level, f"{operation}_error", **event)


async def notify_operator(
    messenger: "Messenger",
    channel_id: Optional[int],
    title: str,
    error: Optional[Exception] = None,
    **details: Any,
) -> bool:
    """
    Post a failure notice to the operator channel.

    Delivery failures are logged and never raised, so a broken operator
    channel cannot take down the caller.

    Args:
        messenger: Messaging collaborator
        channel_id: Operator channel, None disables notifications
        title: First line of the notice
        error: The exception being reported
        **details: Extra ``key: value`` lines

    Returns:
        True if the notice was delivered
    """
    if channel_id is None:
        return False

    lines = [f"**{title}**"]
    lines.extend(f"{key}: {value}" for key, value in details.items())
    if error is not None:
        lines.append(f"error: {sanitize_error_message(error)}")

    try:
        await messenger.send(channel_id, "\n".join(lines))
    except MessagingError as e:
        logger.error("operator_notify_failed", channel_id=channel_id, error=str(e))
        return False
    return True
