"""
Tests for the content store and its hosting backends.
"""

import json
import os
import sys

import pytest

sys.path.insert(0, os.path.abspath(os.path.dirname(os.path.dirname(__file__))))

from tests.mock_factories import FakeHTTP, api_error
from utils.content_store import (
    ContentStore,
    IpfsBackend,
    StorageBackend,
    TeletypeBackend,
    build_content_store,
)
from utils.exceptions import APIError, TransientNetworkError, UploadError
from utils.http_client import HTTPResponse


class StaticBackend(StorageBackend):
    def __init__(self, name, result):
        self.name = name
        self.result = result
        self.calls = []

    async def upload(self, name, data):
        self.calls.append(name)
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


class TestContentStore:
    @pytest.mark.asyncio
    async def test_first_backend_wins(self):
        first = StaticBackend("first", "https://one.example/a")
        second = StaticBackend("second", "https://two.example/a")

        assert await ContentStore([first, second]).upload("a.webp", b"data") == "https://one.example/a"
        assert second.calls == []

    @pytest.mark.asyncio
    async def test_falls_back_on_backend_failure(self):
        first = StaticBackend("first", api_error(413))
        second = StaticBackend("second", TransientNetworkError("second"))
        third = StaticBackend("third", "https://three.example/a")

        url = await ContentStore([first, second, third]).upload("a.webp", b"data")

        assert url == "https://three.example/a"
        assert first.calls == second.calls == ["a.webp"]

    @pytest.mark.asyncio
    async def test_all_backends_failing_raises_upload_error(self):
        store = ContentStore([StaticBackend("only", api_error(500))])

        with pytest.raises(UploadError) as excinfo:
            await store.upload("a.webp", b"data")
        assert excinfo.value.name == "a.webp"

    def test_requires_a_backend(self):
        with pytest.raises(ValueError):
            ContentStore([])

    def test_build_orders_teletype_first(self):
        store = build_content_store(FakeHTTP(), "tok", "https://gw.example/ipfs")
        assert [backend.name for backend in store.backends] == ["teletype", "ipfs"]
        assert [backend.name for backend in build_content_store(FakeHTTP(), None, "https://gw.example").backends] == ["ipfs"]


class TestIpfsBackend:
    @pytest.mark.asyncio
    async def test_builds_gateway_url(self):
        http = FakeHTTP()
        http.route(
            "POST",
            IpfsBackend.endpoint,
            HTTPResponse(200, IpfsBackend.endpoint, body=json.dumps({"Hash": "QmHash", "Name": "a b.webp"}).encode()),
        )
        backend = IpfsBackend(http, "https://gw.example/ipfs", "2024-01-01")

        url = await backend.upload("a b.webp", b"data")

        assert url == "https://gw.example/ipfs/QmHash/?2024-01-01&filename=a%20b.webp"
        form = http.calls[0][2]["form"]()
        assert form is not None

    @pytest.mark.asyncio
    async def test_unexpected_body_is_api_error(self):
        http = FakeHTTP()
        http.route("POST", IpfsBackend.endpoint, HTTPResponse(200, IpfsBackend.endpoint, body=b'{"Name": "x"}'))

        with pytest.raises(APIError):
            await IpfsBackend(http, "https://gw.example/").upload("x", b"data")

    @pytest.mark.asyncio
    async def test_error_status_is_api_error(self):
        http = FakeHTTP()
        http.route("POST", IpfsBackend.endpoint, HTTPResponse(500, IpfsBackend.endpoint, body=b"oops"))

        with pytest.raises(APIError):
            await IpfsBackend(http, "https://gw.example/").upload("x", b"data")


class TestTeletypeBackend:
    @pytest.mark.asyncio
    async def test_returns_body_url(self):
        http = FakeHTTP()
        http.route("PUT", TeletypeBackend.endpoint, HTTPResponse(200, "x", body=b"https://img.teletype.in/files/a.webp\n"))

        url = await TeletypeBackend(http, "secret").upload("a.webp", b"data")

        assert url == "https://img.teletype.in/files/a.webp"
        assert http.calls[0][2]["headers"] == {"Authorization": "secret"}

    @pytest.mark.asyncio
    async def test_non_url_body_is_rejected(self):
        http = FakeHTTP()
        http.route("PUT", TeletypeBackend.endpoint, HTTPResponse(200, "x", body=b"error: too large"))

        with pytest.raises(APIError):
            await TeletypeBackend(http, "secret").upload("a.webp", b"data")
