"""
Structured logging configuration for the mirror.

This module sets up structured logging using the structlog library,
providing searchable logs where every event carries the gallery it
belongs to.
"""

import functools
import logging
import logging.handlers
import os
import sys
import time
from typing import Any, Optional

import structlog
from structlog.contextvars import bind_contextvars, merge_contextvars, unbind_contextvars
from structlog.stdlib import LoggerFactory


def configure_stdlib_logging(
    log_level: int = logging.INFO, log_file: Optional[str] = None
) -> None:
    """Configure standard logging.

    Args:
        log_level: The logging level to use.
        log_file: Optional name of a log file written under ``logs/``.
    """
    handlers = [logging.StreamHandler(sys.stdout)]

    if log_file:
        os.makedirs("logs", exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            filename=os.path.join("logs", f"{log_file}.log"),
            encoding="utf-8",
            maxBytes=32 * 1024 * 1024,  # 32 MB
            backupCount=10,
        )
        handlers.append(file_handler)

    logging.basicConfig(format="%(message)s", level=log_level, handlers=handlers, force=True)

    # aiohttp and discord are chatty at DEBUG
    logging.getLogger("discord").setLevel(max(log_level, logging.INFO))
    logging.getLogger("aiohttp").setLevel(max(log_level, logging.INFO))


def configure_structlog(log_format: str = "console") -> None:
    """Configure structlog with processors for formatting and output.

    Args:
        log_format: The format to use for log output. Either "json" or "console".
    """
    processors = [
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.CallsiteParameterAdder(
            [
                structlog.processors.CallsiteParameter.FILENAME,
                structlog.processors.CallsiteParameter.FUNC_NAME,
                structlog.processors.CallsiteParameter.LINENO,
            ]
        ),
        # Picks up gallery_id bound by GalleryContext
        merge_contextvars,
        structlog.processors.format_exc_info,
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        logger_factory=LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def init_logging(
    log_level: int = logging.INFO,
    log_file: Optional[str] = None,
    log_format: str = "console",
) -> structlog.stdlib.BoundLogger:
    """Initialize logging with both stdlib and structlog.

    Args:
        log_level: The logging level to use.
        log_file: Optional log file name.
        log_format: The format to use for log output. Either "json" or "console".

    Returns:
        A structlog logger instance.
    """
    configure_stdlib_logging(log_level, log_file)
    configure_structlog(log_format)
    return structlog.get_logger()


class GalleryContext:
    """Async context manager binding a gallery to every log line inside it.

    Example:
        ```python
        async with GalleryContext(logger, "gallery_upload", gallery_id=123) as ctx:
            await pipeline.run(gallery)
            ctx.add_info(pages=len(gallery.pages))
        ```
    """

    def __init__(
        self,
        logger: structlog.stdlib.BoundLogger,
        operation_name: str,
        gallery_id: int,
    ):
        self.logger = logger
        self.operation_name = operation_name
        self.gallery_id = gallery_id
        self.start_time = None
        self.additional_info = {}

    def add_info(self, **kwargs: Any) -> None:
        """Add additional information to the completion log line."""
        self.additional_info.update(kwargs)

    async def __aenter__(self) -> "GalleryContext":
        bind_contextvars(gallery_id=self.gallery_id)
        self.start_time = time.monotonic()
        self.logger.debug(f"{self.operation_name}_started")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        duration = time.monotonic() - self.start_time
        try:
            if exc_type is None:
                self.logger.info(
                    f"{self.operation_name}_completed",
                    duration=round(duration, 3),
                    **self.additional_info,
                )
            else:
                self.logger.error(
                    f"{self.operation_name}_failed",
                    duration=round(duration, 3),
                    error=str(exc_val),
                    error_type=exc_type.__name__,
                    **self.additional_info,
                )
        finally:
            unbind_contextvars("gallery_id")


def log_timing(logger: structlog.stdlib.BoundLogger, operation_name: str):
    """Decorator for logging the execution time of coroutine functions.

    Args:
        logger: The logger to use.
        operation_name: A name for the operation being timed.

    Returns:
        The decorated function.
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            start_time = time.monotonic()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                logger.error(
                    f"{operation_name}_failed",
                    duration=round(time.monotonic() - start_time, 3),
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise
            logger.info(
                f"{operation_name}_completed",
                duration=round(time.monotonic() - start_time, 3),
            )
            return result

        return wrapper

    return decorator
