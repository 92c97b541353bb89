"""
Configuration module for the gallery mirror.

This module provides a centralized configuration system with validation
and support for different environments (development, testing, production).
Sensitive values are flagged so they never end up in logs, and every value
the ingestion pipeline consumes is validated up front.
"""

import os
import json
import logging
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Set, Tuple

from pydantic import BaseModel, Field, field_validator, model_validator


# Define environment types
class Environment(str, Enum):
    DEVELOPMENT = "development"
    TESTING = "testing"
    PRODUCTION = "production"


# Define log format types
class LogFormat(str, Enum):
    JSON = "json"
    CONSOLE = "console"


DEFAULT_SEARCH_PARAMS: Dict[str, str] = {"f_cats": "1021", "advsearch": "1", "f_srdd": "4"}


class MirrorConfig(BaseModel):
    """
    Configuration model with validation.

    Covers the bot process, the ledger database, the remote source, the image
    pipeline tuning knobs, the article publisher and the hosting backends.
    """

    # Bot settings
    bot_token: str = Field(..., description="Discord bot token", json_schema_extra={"sensitive": True})
    logging_level: int = Field(logging.INFO, description="Logging level")
    logfile: Optional[str] = Field("mirror", description="Log file name, empty disables file logging")
    log_format: LogFormat = Field(LogFormat.CONSOLE, description="Log output format (json or console)")
    environment: Environment = Field(Environment.DEVELOPMENT, description="Deployment environment")

    # Database settings
    database_url: str = Field(
        "sqlite+aiosqlite:///mirror.db", description="SQLAlchemy async database URL"
    )

    # Source settings
    source_cookie: str = Field(
        ..., description="Session cookie string for the source", json_schema_extra={"sensitive": True}
    )
    source_base_url: str = Field("https://exhentai.org", description="Source origin")
    search_params: Dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_SEARCH_PARAMS), description="Search query parameters"
    )
    search_count: int = Field(50, description="Maximum galleries inspected per scan cycle")
    gallery_delay: float = Field(1.0, description="Seconds to wait between galleries in a cycle")

    # Concurrency and network
    worker_count: int = Field(4, description="Image pipeline worker count")
    request_timeout: float = Field(30.0, description="Overall HTTP timeout in seconds")
    connect_timeout: float = Field(10.0, description="HTTP connect timeout in seconds")
    network_retry_attempts: int = Field(4, description="Attempts for transient network failures")
    retry_base_delay: float = Field(0.5, description="First backoff delay in seconds")
    retry_max_delay: float = Field(30.0, description="Backoff cap in seconds")

    # Compression policy
    compress_threshold: int = Field(1_000_000, description="Size above which images are recompressed")
    min_payload: int = Field(1_000, description="Smallest plausible transformed image")
    max_payload: int = Field(4_900_000, description="Largest payload accepted by the content store")

    # Re-check cadence: (age upper bound in days, cadence in days)
    cadence_thresholds: List[Tuple[int, int]] = Field(
        default_factory=lambda: [(2, 1), (7, 3), (14, 7)],
        description="Ascending (max_age_days, cadence_days) pairs",
    )
    cadence_max: int = Field(14, description="Cadence for galleries older than every threshold")

    # Article publishing
    article_capacity: int = Field(200, description="Images per article page")
    telegraph_access_token: str = Field(
        "", description="Telegraph access token", json_schema_extra={"sensitive": True}
    )
    telegraph_author_name: str = Field("", description="Telegraph author name")
    telegraph_author_url: str = Field("", description="Telegraph author URL")

    # Content store
    teletype_token: Optional[str] = Field(
        None, description="Teletype media token", json_schema_extra={"sensitive": True}
    )
    ipfs_gateway_host: str = Field("https://ipfs.io/ipfs/", description="IPFS gateway prefix")
    ipfs_gateway_date: str = Field("", description="Cache-busting query fragment for gateway URLs")

    # Channels and scheduling
    channel_id: int = Field(..., description="Channel receiving gallery announcements")
    operator_channel_id: Optional[int] = Field(None, description="Channel receiving failure notices")
    scan_interval: int = Field(1800, description="Seconds between scan cycles")
    tag_translation_file: Optional[str] = Field(
        None, description="EhTagTranslation database used to translate announced tags"
    )

    _sensitive_fields: ClassVar[Set[str]] = {
        "bot_token",
        "source_cookie",
        "telegraph_access_token",
        "teletype_token",
    }

    @field_validator("bot_token", "source_cookie")
    @classmethod
    def credentials_must_not_be_empty(cls, v, info):
        """Validate that credentials are not blank."""
        if not v or not v.strip():
            raise ValueError(f"{info.field_name} must not be empty")
        return v

    @field_validator(
        "worker_count", "search_count", "article_capacity", "network_retry_attempts", "cadence_max"
    )
    @classmethod
    def must_be_positive(cls, v, info):
        """Validate that counts are positive."""
        if v < 1:
            raise ValueError(f"{info.field_name} must be at least 1")
        return v

    @field_validator("cadence_thresholds")
    @classmethod
    def cadence_thresholds_ascending(cls, v):
        """Validate that cadence thresholds are ascending and positive."""
        ages = [age for age, _ in v]
        if ages != sorted(ages) or len(set(ages)) != len(ages):
            raise ValueError("cadence_thresholds must have strictly ascending ages")
        if any(cadence < 1 for _, cadence in v):
            raise ValueError("cadence values must be at least 1 day")
        return v

    @model_validator(mode="before")
    @classmethod
    def check_payload_bounds(cls, values):
        """
        Validate the compression policy bounds.

        The minimum plausible payload must sit below the compression threshold,
        which in turn must not exceed the maximum payload.
        """
        if not isinstance(values, dict):
            return values
        min_payload = int(values.get("min_payload", 1_000))
        threshold = int(values.get("compress_threshold", 1_000_000))
        max_payload = int(values.get("max_payload", 4_900_000))
        if not min_payload < threshold <= max_payload:
            raise ValueError(
                "Expected min_payload < compress_threshold <= max_payload, got "
                f"{min_payload}, {threshold}, {max_payload}"
            )
        return values

    @classmethod
    def get_sensitive_fields(cls) -> Set[str]:
        """Get the set of sensitive field names that should be handled securely."""
        return cls._sensitive_fields

    def safe_summary(self) -> Dict[str, Any]:
        """Return the configuration with sensitive values removed, for logging."""
        return self.model_dump(exclude=self.get_sensitive_fields())


def load_from_env() -> MirrorConfig:
    """
    Load configuration from environment variables.

    Values are read from the process environment, with support for a .env
    file. Missing required variables are reported together, and JSON or
    numeric values that fail to parse raise a ValueError naming the variable.

    Returns:
        MirrorConfig: A validated configuration object

    Raises:
        ValueError: If required environment variables are missing or invalid
    """
    from dotenv import load_dotenv

    load_dotenv()

    missing_vars = []

    def get_env(name, default=None, required=False):
        value = os.getenv(name, default)
        if required and (value is None or value == ""):
            missing_vars.append(name)
        return value

    def get_json(name, default):
        raw = get_env(name)
        if raw is None or raw == "":
            return default
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in {name} environment variable: {e}")

    def get_number(name, default, cast=int):
        raw = get_env(name)
        if raw is None or raw == "":
            return default
        try:
            return cast(raw)
        except ValueError:
            raise ValueError(f"Invalid {name} value: {raw}. Must be a {cast.__name__}.")

    bot_token = get_env("BOT_TOKEN", "", required=True)
    source_cookie = get_env("SOURCE_COOKIE", "", required=True)
    channel_id = get_env("CHANNEL_ID", "", required=True)

    if missing_vars:
        raise ValueError(f"Missing required environment variables: {', '.join(missing_vars)}")

    environment = get_env("ENVIRONMENT", Environment.DEVELOPMENT.value)
    level_name = get_env("LOG_LEVEL", "INFO").upper()
    logging_level = logging.getLevelName(level_name)
    if not isinstance(logging_level, int):
        raise ValueError(f"Invalid LOG_LEVEL value: {level_name}")

    values: Dict[str, Any] = {
        "bot_token": bot_token,
        "source_cookie": source_cookie,
        "channel_id": get_number("CHANNEL_ID", None),
        "operator_channel_id": get_number("OPERATOR_CHANNEL_ID", None),
        "environment": environment,
        "logging_level": logging_level,
        "logfile": get_env("LOGFILE", "mirror"),
        "log_format": get_env("LOG_FORMAT", LogFormat.CONSOLE.value),
        "database_url": get_env("DATABASE_URL", "sqlite+aiosqlite:///mirror.db"),
        "source_base_url": get_env("SOURCE_BASE_URL", "https://exhentai.org"),
        "search_params": get_json("SEARCH_PARAMS", dict(DEFAULT_SEARCH_PARAMS)),
        "search_count": get_number("SEARCH_COUNT", 50),
        "gallery_delay": get_number("GALLERY_DELAY", 1.0, float),
        "worker_count": get_number("WORKER_COUNT", 4),
        "request_timeout": get_number("REQUEST_TIMEOUT", 30.0, float),
        "connect_timeout": get_number("CONNECT_TIMEOUT", 10.0, float),
        "network_retry_attempts": get_number("NETWORK_RETRY_ATTEMPTS", 4),
        "retry_base_delay": get_number("RETRY_BASE_DELAY", 0.5, float),
        "retry_max_delay": get_number("RETRY_MAX_DELAY", 30.0, float),
        "compress_threshold": get_number("COMPRESS_THRESHOLD", 1_000_000),
        "min_payload": get_number("MIN_PAYLOAD", 1_000),
        "max_payload": get_number("MAX_PAYLOAD", 4_900_000),
        "cadence_thresholds": [tuple(pair) for pair in get_json("CADENCE_THRESHOLDS", [[2, 1], [7, 3], [14, 7]])],
        "cadence_max": get_number("CADENCE_MAX", 14),
        "article_capacity": get_number("ARTICLE_CAPACITY", 200),
        "telegraph_access_token": get_env("TELEGRAPH_ACCESS_TOKEN", ""),
        "telegraph_author_name": get_env("TELEGRAPH_AUTHOR_NAME", ""),
        "telegraph_author_url": get_env("TELEGRAPH_AUTHOR_URL", ""),
        "teletype_token": get_env("TELETYPE_TOKEN") or None,
        "ipfs_gateway_host": get_env("IPFS_GATEWAY_HOST", "https://ipfs.io/ipfs/"),
        "ipfs_gateway_date": get_env("IPFS_GATEWAY_DATE", ""),
        "scan_interval": get_number("SCAN_INTERVAL", 1800),
        "tag_translation_file": get_env("TAG_TRANSLATION_FILE") or None,
    }

    try:
        config = MirrorConfig(**values)
    except ValueError as e:
        raise ValueError(f"Configuration validation error: {e}")

    if config.environment == Environment.TESTING:
        config.logging_level = logging.DEBUG
    elif config.environment == Environment.PRODUCTION and config.logging_level < logging.INFO:
        config.logging_level = logging.INFO

    if not config.telegraph_access_token:
        logging.warning("No TELEGRAPH_ACCESS_TOKEN provided. Articles will be created anonymously.")

    return config


_config: Optional[MirrorConfig] = None


def get_config() -> MirrorConfig:
    """Return the process configuration, loading it from the environment on first use."""
    global _config
    if _config is None:
        _config = load_from_env()
    return _config
