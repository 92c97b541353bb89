"""Content store: upload bytes, get back a durable public URL.

Callers see a single ``upload`` entrypoint. Behind it the store walks an
ordered list of hosting backends and falls back to the next one when a
backend rejects the payload or keeps failing.
"""

import mimetypes
from abc import ABC, abstractmethod
from urllib.parse import quote

import aiohttp
import structlog

from utils.exceptions import (
    APIError,
    FallbackExhaustedError,
    TransientNetworkError,
    UploadError,
)
from utils.http_client import HTTPClient
from utils.retry import first_success

logger = structlog.get_logger(__name__)


def _form(name: str, data: bytes, extra: dict[str, str] | None = None):
    """Build a factory for the multipart body so retries get a fresh one."""
    content_type = mimetypes.guess_type(name)[0] or "application/octet-stream"

    def build() -> aiohttp.FormData:
        form = aiohttp.FormData()
        for key, value in (extra or {}).items():
            form.add_field(key, value)
        form.add_field("file", data, filename=name, content_type=content_type)
        return form

    return build


class StorageBackend(ABC):
    """A single hosting provider."""

    name: str = "backend"

    @abstractmethod
    async def upload(self, name: str, data: bytes) -> str:
        """Upload ``data`` as ``name`` and return its public URL."""


class TeletypeBackend(StorageBackend):
    """Teletype media hosting. Requires an access token."""

    name = "teletype"
    endpoint = "https://teletype.in/media/"

    def __init__(self, http: HTTPClient, token: str) -> None:
        self.http = http
        self.token = token

    async def upload(self, name: str, data: bytes) -> str:
        response = await self.http.put(
            self.endpoint,
            form=_form(name, data, {"type": "images"}),
            headers={"Authorization": self.token},
        )
        url = response.text(errors="replace").strip()
        if not response.ok or not url.startswith("http"):
            raise APIError(self.name, status_code=response.status, response_body=url[:200])
        return url


class IpfsBackend(StorageBackend):
    """Public IPFS add endpoint served through a gateway."""

    name = "ipfs"
    endpoint = "https://api.img2ipfs.org/api/v0/add?pin=false"

    def __init__(self, http: HTTPClient, gateway_host: str, gateway_date: str = "") -> None:
        self.http = http
        self.gateway_host = gateway_host if gateway_host.endswith("/") else f"{gateway_host}/"
        self.gateway_date = gateway_date

    async def upload(self, name: str, data: bytes) -> str:
        response = await self.http.post(self.endpoint, form=_form(name, data))
        if not response.ok:
            raise APIError(self.name, status_code=response.status, response_body=response.text(errors="replace")[:200])
        try:
            payload = response.json()
            content_id = payload["Hash"]
            filename = payload.get("Name") or name
        except (ValueError, KeyError, TypeError) as e:
            raise APIError(self.name, message=f"Unexpected IPFS response: {e}") from e
        return f"{self.gateway_host}{content_id}/?{self.gateway_date}&filename={quote(filename)}"


class ContentStore:
    """Upload entrypoint with ordered fallback across backends."""

    def __init__(self, backends: list[StorageBackend]) -> None:
        """Initialize the store.

        Args:
            backends: Backends in order of preference. At least one is required.
        """
        if not backends:
            raise ValueError("ContentStore needs at least one backend")
        self.backends = list(backends)

    async def upload(self, name: str, data: bytes) -> str:
        """Upload bytes and return a durable public URL.

        Raises:
            UploadError: If every backend failed.
        """
        strategies = [
            (backend.name, lambda backend=backend: backend.upload(name, data))
            for backend in self.backends
        ]
        try:
            backend_name, url = await first_success(
                strategies, catch=(APIError, TransientNetworkError)
            )
        except FallbackExhaustedError as e:
            raise UploadError(name, message=f"Upload of {name} failed: {e.message}") from e
        logger.debug("content_uploaded", name=name, backend=backend_name, size=len(data))
        return url


def build_content_store(
    http: HTTPClient,
    teletype_token: str | None,
    gateway_host: str,
    gateway_date: str = "",
) -> ContentStore:
    """Build the store from configuration: Teletype first when a token is set, then IPFS."""
    backends: list[StorageBackend] = []
    if teletype_token:
        backends.append(TeletypeBackend(http, teletype_token))
    backends.append(IpfsBackend(http, gateway_host, gateway_date))
    return ContentStore(backends)
