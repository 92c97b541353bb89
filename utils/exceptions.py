"""Custom exception hierarchy for the gallery mirror.

This module defines a hierarchy of custom exceptions for standardized error handling
throughout the mirror. The ingestion pipeline relies on these classes to decide
what is retried, what is contained per page or per gallery, and what is fatal.
"""


class MirrorError(Exception):
    """Base exception for all mirror errors."""

    def __init__(self, message: str = "An error occurred", *args, **kwargs) -> None:
        self.message = message
        super().__init__(message, *args, **kwargs)


# Configuration Errors


class ConfigurationError(MirrorError):
    """Errors related to configuration."""

    def __init__(self, message: str = "Configuration error", *args, **kwargs) -> None:
        super().__init__(message, *args, **kwargs)


class MissingConfigurationError(ConfigurationError):
    """Errors when required configuration values are missing."""

    def __init__(self, config_key: str = None, message: str = None, *args, **kwargs) -> None:
        self.config_key = config_key
        if config_key and not message:
            message = f"Missing required configuration: {config_key}"
        elif not message:
            message = "Missing required configuration"
        super().__init__(message, *args, **kwargs)


# External Service Errors


class ExternalServiceError(MirrorError):
    """Errors from external services (source site, hosting backends, Telegraph, Discord)."""

    def __init__(
        self,
        service_name: str = "external service",
        message: str = None,
        *args,
        **kwargs,
    ) -> None:
        self.service_name = service_name
        if message is None:
            message = f"Error communicating with {service_name}"
        super().__init__(message, *args, **kwargs)


class APIError(ExternalServiceError):
    """Errors from API calls that returned an unusable response."""

    def __init__(
        self,
        service_name: str = "API",
        status_code: int = None,
        response_body: str = None,
        message: str = None,
        *args,
        **kwargs,
    ) -> None:
        self.status_code = status_code
        self.response_body = response_body

        if status_code and not message:
            message = f"{service_name} returned status code {status_code}"

        super().__init__(service_name, message, *args, **kwargs)


class TransientNetworkError(ExternalServiceError):
    """Timeouts, connection resets, 5xx and rate-limit responses.

    These are the only errors retried by the backoff helpers.
    """

    def __init__(
        self,
        service_name: str = "external service",
        status_code: int | None = None,
        retry_after: float | None = None,
        message: str = None,
        *args,
        **kwargs,
    ) -> None:
        self.status_code = status_code
        self.retry_after = retry_after
        if not message:
            if status_code:
                message = f"{service_name} returned transient status {status_code}"
            else:
                message = f"Transient network failure talking to {service_name}"
        super().__init__(service_name, message, *args, **kwargs)


class FloodWaitError(TransientNetworkError):
    """A rate-limit reply carried inside a successful HTTP response."""

    def __init__(self, service_name: str, retry_after: float, message: str = None) -> None:
        if not message:
            message = f"{service_name} asked to wait {retry_after:g}s"
        super().__init__(service_name, retry_after=retry_after, message=message)


class AuthError(ExternalServiceError):
    """The source credential is invalid or expired. Fatal for the whole run."""

    def __init__(self, message: str = None, *args, **kwargs) -> None:
        if not message:
            message = "Source authentication failed"
        super().__init__("source", message, *args, **kwargs)


class SourceError(ExternalServiceError):
    """Per-gallery failures reported by the remote source."""

    def __init__(self, gallery_id: int | None = None, message: str = None, *args, **kwargs) -> None:
        self.gallery_id = gallery_id
        if not message:
            message = f"Source error for gallery {gallery_id}" if gallery_id else "Source error"
        super().__init__("source", message, *args, **kwargs)


class NotFoundError(SourceError):
    """The gallery was removed or never existed."""

    def __init__(self, gallery_id: int | None = None, message: str = None, *args, **kwargs) -> None:
        if not message:
            message = f"Gallery {gallery_id} not found" if gallery_id else "Gallery not found"
        super().__init__(gallery_id, message, *args, **kwargs)


class AuthExpiredError(SourceError):
    """A gallery request was redirected to the login page."""

    def __init__(self, gallery_id: int | None = None, message: str = None, *args, **kwargs) -> None:
        if not message:
            message = "Session expired: request was redirected to login"
        super().__init__(gallery_id, message, *args, **kwargs)


class ParseError(SourceError):
    """A response lacked the structure needed to extract fields."""

    def __init__(
        self,
        gallery_id: int | None = None,
        reason: str = "unexpected",
        message: str = None,
        *args,
        **kwargs,
    ) -> None:
        self.reason = reason
        if not message:
            message = f"Could not parse source response ({reason})"
        super().__init__(gallery_id, message, *args, **kwargs)


class HotlinkBrokenError(ExternalServiceError):
    """Every image URL tier for a page was exhausted."""

    def __init__(self, url: str = None, message: str = None, *args, **kwargs) -> None:
        self.url = url
        if not message:
            message = f"Image link broken: {url}"
        super().__init__("source", message, *args, **kwargs)


class InvalidImageError(ExternalServiceError):
    """Bytes returned in place of an image were an error page or unreadable."""

    def __init__(self, reason: str = "not an image", message: str = None, *args, **kwargs) -> None:
        self.reason = reason
        if not message:
            message = f"Rejected image payload: {reason}"
        super().__init__("image host", message, *args, **kwargs)


class UploadError(ExternalServiceError):
    """No content store backend accepted the payload."""

    def __init__(self, name: str = None, message: str = None, *args, **kwargs) -> None:
        self.name = name
        if not message:
            message = f"Upload of {name} failed on every backend"
        super().__init__("content store", message, *args, **kwargs)


class PublishError(ExternalServiceError):
    """The article could not be created or edited."""

    def __init__(self, message: str = None, *args, **kwargs) -> None:
        super().__init__("telegraph", message, *args, **kwargs)


class MessagingError(ExternalServiceError):
    """Sending or editing a channel message failed."""

    def __init__(self, channel_id: int | None = None, message: str = None, *args, **kwargs) -> None:
        self.channel_id = channel_id
        if not message:
            message = f"Failed to deliver message to channel {channel_id}"
        super().__init__("discord", message, *args, **kwargs)


# Control-flow Errors


class FallbackExhaustedError(MirrorError):
    """Every strategy in a fallback chain failed."""

    def __init__(self, errors: list[tuple[str, Exception]] | None = None, message: str = None, *args, **kwargs) -> None:
        self.errors = errors or []
        if not message:
            attempted = ", ".join(f"{name}: {error}" for name, error in self.errors)
            message = f"All strategies failed ({attempted})" if attempted else "No strategy succeeded"
        super().__init__(message, *args, **kwargs)


class PipelineError(MirrorError):
    """The image pipeline aborted a gallery after an unrecoverable page failure."""

    def __init__(
        self,
        gallery_id: int | None = None,
        failures: list[tuple[int, Exception]] | None = None,
        message: str = None,
        *args,
        **kwargs,
    ) -> None:
        self.gallery_id = gallery_id
        self.failures = failures or []
        if not message:
            pages = ", ".join(str(page) for page, _ in self.failures)
            message = f"Image pipeline for gallery {gallery_id} failed on pages: {pages}"
        super().__init__(message, *args, **kwargs)


# Ledger Errors


class LedgerError(MirrorError):
    """Errors raised by the persistent store."""

    def __init__(self, operation: str = None, message: str = None, *args, **kwargs) -> None:
        self.operation = operation
        if not message:
            message = f"Ledger operation failed: {operation}" if operation else "Ledger operation failed"
        super().__init__(message, *args, **kwargs)
