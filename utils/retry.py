"""Retry and fallback helpers.

``retry_async``/``with_retry`` implement capped exponential backoff for
transient failures. ``first_success`` evaluates an ordered list of
strategies and returns the first one that works, which is how every
multi-tier fallback chain in the mirror is expressed.
"""

import asyncio
import functools
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, TypeVar

import structlog

from utils.exceptions import FallbackExhaustedError, TransientNetworkError

T = TypeVar("T")

logger = structlog.get_logger(__name__)

Strategy = tuple[str, Callable[[], Awaitable[T]]]


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay before retry number ``attempt`` (1-based): ``min(base * 2**(attempt-1), max)``."""
    if attempt < 1:
        return 0.0
    return min(base_delay * (2 ** (attempt - 1)), max_delay)


async def retry_async(
    func: Callable[[], Awaitable[T]],
    *,
    attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 30.0,
    retry_on: tuple[type[BaseException], ...] = (TransientNetworkError,),
    operation: str | None = None,
    sleep: Callable[[float], Awaitable[Any]] | None = None,
) -> T:
    """Call ``func`` until it succeeds or ``attempts`` is exhausted.

    Args:
        func: Zero-argument coroutine factory.
        attempts: Total number of calls, including the first.
        base_delay: Delay after the first failure.
        max_delay: Upper bound for every delay.
        retry_on: Exception types worth retrying; anything else propagates at once.
        operation: Name used in log events.
        sleep: Awaitable sleep, defaults to ``asyncio.sleep``.

    Returns:
        The result of the first successful call.

    Raises:
        The last exception once attempts are exhausted.
    """
    name = operation or getattr(func, "__name__", "operation")
    for attempt in range(1, attempts + 1):
        try:
            return await func()
        except retry_on as e:
            if attempt == attempts:
                logger.error("retry_exhausted", operation=name, attempts=attempts, error=str(e))
                raise
            wait_time = backoff_delay(attempt, base_delay, max_delay)
            retry_after = getattr(e, "retry_after", None)
            if retry_after:
                wait_time = min(max(wait_time, float(retry_after)), max_delay)
            logger.warning(
                "retry_scheduled",
                operation=name,
                attempt=attempt,
                max_attempts=attempts,
                wait=round(wait_time, 2),
                error=str(e),
            )
            await (sleep or asyncio.sleep)(wait_time)
    raise AssertionError("unreachable")


def with_retry(
    attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 30.0,
    retry_on: tuple[type[BaseException], ...] = (TransientNetworkError,),
):
    """Decorator form of :func:`retry_async` for coroutine functions.

    Example:
        @with_retry(attempts=3, retry_on=(discord.DiscordServerError,))
        async def edit(self, channel_id, message_id, text): ...
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await retry_async(
                lambda: func(*args, **kwargs),
                attempts=attempts,
                base_delay=base_delay,
                max_delay=max_delay,
                retry_on=retry_on,
                operation=func.__name__,
            )

        return wrapper

    return decorator


async def first_success(
    strategies: Sequence[Strategy],
    *,
    accept: Callable[[T], None] | None = None,
    catch: tuple[type[BaseException], ...] = (Exception,),
) -> tuple[str, T]:
    """Run strategies in order and return the first result that is accepted.

    Args:
        strategies: ``(name, coroutine factory)`` pairs, tried in order.
        accept: Optional validator; raising from it rejects the result and
            moves on to the next strategy.
        catch: Exceptions that count as a strategy failure.

    Returns:
        The winning strategy's name and its result.

    Raises:
        FallbackExhaustedError: If every strategy failed or was rejected.
    """
    errors: list[tuple[str, Exception]] = []
    for name, strategy in strategies:
        try:
            result = await strategy()
            if accept is not None:
                accept(result)
        except catch as e:
            logger.debug("strategy_failed", strategy=name, error=str(e), error_type=type(e).__name__)
            errors.append((name, e))
            continue
        return name, result
    raise FallbackExhaustedError(errors)
