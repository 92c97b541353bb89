"""HTTP client utility module.

This module provides the shared HTTP client used for the remote source,
the image transform services, the content store backends and Telegraph.
It pools connections, applies connect and total timeouts to every call,
optionally rate limits per domain, and retries transient failures with
capped exponential backoff.
"""

import asyncio
import json
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlparse

import aiohttp
import structlog
from aiohttp import ClientSession, ClientTimeout

from utils.exceptions import APIError, TransientNetworkError
from utils.retry import retry_async

RETRY_STATUSES = frozenset({429, 500, 502, 503, 504})


@dataclass
class HTTPResponse:
    """A fully read response, detached from its connection."""

    status: int
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def content_length(self) -> int | None:
        value = self.headers.get("Content-Length")
        if value is None or not value.isdigit():
            return None
        return int(value)

    @property
    def content_type(self) -> str:
        return self.headers.get("Content-Type", "").split(";")[0].strip().lower()

    def text(self, encoding: str = "utf-8", errors: str = "strict") -> str:
        return self.body.decode(encoding, errors)

    def json(self) -> Any:
        return json.loads(self.body)


class RateLimiter:
    """Token bucket rate limiter keyed by domain.

    Domains without an entry in ``per_domain_limits`` use the default rate;
    a default rate of ``None`` leaves them unlimited.
    """

    def __init__(
        self,
        requests_per_second: float | None = None,
        burst_size: int = 1,
        per_domain_limits: dict[str, tuple[float, int]] | None = None,
    ) -> None:
        """Initialize the rate limiter.

        Args:
            requests_per_second: Default rate, or None for no default limit.
            burst_size: Default bucket capacity.
            per_domain_limits: Mapping of domain to ``(requests_per_second, burst_size)``.
        """
        self.default_rate = requests_per_second
        self.default_burst = burst_size
        self.per_domain_limits = per_domain_limits or {}
        self._buckets: dict[str, tuple[float, float]] = {}
        self._lock = asyncio.Lock()

    async def acquire(self, domain: str) -> None:
        """Wait until a request to ``domain`` is allowed."""
        rate, burst = self.per_domain_limits.get(domain, (self.default_rate, self.default_burst))
        if rate is None:
            return

        async with self._lock:
            tokens, last_refill = self._buckets.get(domain, (float(burst), time.monotonic()))
            now = time.monotonic()
            tokens = min(burst, tokens + (now - last_refill) * rate)
            wait_time = 0.0 if tokens >= 1 else (1 - tokens) / rate
            # Reserve the token now so concurrent callers queue up behind us
            self._buckets[domain] = (tokens - 1, now)

        if wait_time > 0:
            await asyncio.sleep(wait_time)


class HTTPClient:
    """HTTP client utility class with connection pooling.

    Features include:
    - Connection pooling with a lazily created shared session
    - Connect and total timeouts on every request
    - Per-domain rate limiting
    - Retries with capped exponential backoff for timeouts, connection
      failures, 429 and 5xx responses
    - Request counters
    """

    def __init__(
        self,
        timeout: float = 30,
        connect_timeout: float = 10,
        max_connections: int = 100,
        retry_attempts: int = 4,
        retry_start_timeout: float = 0.5,
        retry_max_timeout: float = 30.0,
        rate_limiter: RateLimiter | None = None,
        max_concurrent_requests: int = 100,
        headers: dict[str, str] | None = None,
        service_name: str = "http",
    ) -> None:
        """Initialize the HTTP client.

        Args:
            timeout: Default total timeout for requests in seconds.
            connect_timeout: Timeout for establishing a connection in seconds.
            max_connections: Maximum number of pooled connections.
            retry_attempts: Total attempts for a request hitting transient failures.
            retry_start_timeout: Initial backoff in seconds.
            retry_max_timeout: Backoff cap in seconds.
            rate_limiter: Rate limiter instance to use.
            max_concurrent_requests: Maximum number of requests in flight.
            headers: Default headers sent with every request.
            service_name: Name used in errors and log events.
        """
        self.timeout = timeout
        self.connect_timeout = connect_timeout
        self.max_connections = max_connections
        self.retry_attempts = retry_attempts
        self.retry_start_timeout = retry_start_timeout
        self.retry_max_timeout = retry_max_timeout
        self.rate_limiter = rate_limiter or RateLimiter()
        self.default_headers = dict(headers or {})
        self.service_name = service_name
        self.logger = structlog.get_logger(__name__).bind(service=service_name)
        self._session: ClientSession | None = None
        self._lock = asyncio.Lock()
        self._request_semaphore = asyncio.Semaphore(max_concurrent_requests)
        self._stats = {
            "requests": 0,
            "errors": 0,
            "timeouts": 0,
            "transient_failures": 0,
            "status_codes": {},
        }

    async def get_session(self) -> ClientSession:
        """Get the shared ClientSession, creating it if it doesn't exist."""
        if self._session is None or self._session.closed:
            async with self._lock:
                if self._session is None or self._session.closed:
                    connector = aiohttp.TCPConnector(
                        limit=self.max_connections,
                        ttl_dns_cache=300,  # Cache DNS results for 5 minutes
                        enable_cleanup_closed=True,
                    )
                    self._session = ClientSession(
                        connector=connector,
                        timeout=ClientTimeout(total=self.timeout, connect=self.connect_timeout),
                        headers=self.default_headers,
                        raise_for_status=False,
                    )
                    self.logger.debug("http_session_created", max_connections=self.max_connections)
        return self._session

    def update_headers(self, headers: dict[str, str]) -> None:
        """Merge ``headers`` into the defaults, including the live session."""
        self.default_headers.update(headers)
        if self._session is not None and not self._session.closed:
            self._session.headers.update(headers)

    async def close(self) -> None:
        """Close the shared ClientSession."""
        if self._session and not self._session.closed:
            await self._session.close()
            self.logger.debug("http_session_closed")

    async def __aenter__(self) -> "HTTPClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def get_stats(self) -> dict[str, Any]:
        """Return a copy of the request counters."""
        stats = dict(self._stats)
        stats["status_codes"] = dict(self._stats["status_codes"])
        return stats

    async def _send(
        self,
        method: str,
        url: str,
        *,
        read_body: bool,
        retry_for_statuses: frozenset[int],
        form: Callable[[], aiohttp.FormData] | None,
        timeout: float | None,
        **kwargs: Any,
    ) -> HTTPResponse:
        """Perform a single request attempt.

        Raises:
            TransientNetworkError: On timeouts, connection failures and retryable statuses.
            APIError: On any other client-side failure.
        """
        session = await self.get_session()
        domain = urlparse(url).netloc
        await self.rate_limiter.acquire(domain)

        if form is not None:
            kwargs["data"] = form()
        if timeout is not None:
            kwargs["timeout"] = ClientTimeout(total=timeout, connect=self.connect_timeout)

        self._stats["requests"] += 1
        try:
            async with self._request_semaphore:
                async with session.request(method, url, **kwargs) as response:
                    body = await response.read() if read_body else b""
                    result = HTTPResponse(
                        status=response.status,
                        url=str(response.url),
                        headers=response.headers,
                        body=body,
                    )
        except asyncio.TimeoutError as e:
            self._stats["timeouts"] += 1
            raise TransientNetworkError(
                self.service_name, message=f"{method} {url} timed out"
            ) from e
        except (aiohttp.ClientConnectionError, aiohttp.ClientPayloadError) as e:
            self._stats["errors"] += 1
            raise TransientNetworkError(
                self.service_name, message=f"{method} {url} failed: {e}"
            ) from e
        except aiohttp.ClientError as e:
            self._stats["errors"] += 1
            raise APIError(self.service_name, message=f"{method} {url} failed: {e}") from e

        status = str(result.status)
        self._stats["status_codes"][status] = self._stats["status_codes"].get(status, 0) + 1

        if result.status in retry_for_statuses:
            retry_after = result.headers.get("Retry-After")
            raise TransientNetworkError(
                self.service_name,
                status_code=result.status,
                retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
            )
        return result

    async def request(
        self,
        method: str,
        url: str,
        *,
        read_body: bool = True,
        retry_for_statuses: frozenset[int] = RETRY_STATUSES,
        form: Callable[[], aiohttp.FormData] | None = None,
        timeout: float | None = None,
        retry_attempts: int | None = None,
        **kwargs: Any,
    ) -> HTTPResponse:
        """Make a request with retry and rate limiting support.

        Args:
            method: HTTP method.
            url: URL to request.
            read_body: Read and keep the body; False only follows the request
                through redirects.
            retry_for_statuses: Status codes treated as transient.
            form: Factory for multipart bodies, rebuilt on every attempt.
            timeout: Total timeout override in seconds.
            retry_attempts: Attempt count override.
            **kwargs: Passed to ``aiohttp.ClientSession.request`` (params, headers,
                data, json, allow_redirects).

        Returns:
            The fully read response. Non-retryable error statuses are returned,
            not raised.
        """

        async def attempt() -> HTTPResponse:
            try:
                return await self._send(
                    method,
                    url,
                    read_body=read_body,
                    retry_for_statuses=retry_for_statuses,
                    form=form,
                    timeout=timeout,
                    **kwargs,
                )
            except TransientNetworkError:
                self._stats["transient_failures"] += 1
                raise

        return await retry_async(
            attempt,
            attempts=retry_attempts or self.retry_attempts,
            base_delay=self.retry_start_timeout,
            max_delay=self.retry_max_timeout,
            operation=f"{method} {urlparse(url).netloc}",
        )

    async def get(self, url: str, **kwargs: Any) -> HTTPResponse:
        return await self.request("GET", url, **kwargs)

    async def head(self, url: str, **kwargs: Any) -> HTTPResponse:
        kwargs.setdefault("allow_redirects", True)
        return await self.request("HEAD", url, read_body=False, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> HTTPResponse:
        return await self.request("POST", url, **kwargs)

    async def put(self, url: str, **kwargs: Any) -> HTTPResponse:
        return await self.request("PUT", url, **kwargs)
