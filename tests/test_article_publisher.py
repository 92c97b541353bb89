"""
Tests for Telegraph article publishing.
"""

import json
import os
import sys
from unittest.mock import AsyncMock, patch

import pytest

sys.path.insert(0, os.path.abspath(os.path.dirname(os.path.dirname(__file__))))

from tests.mock_factories import FakeHTTP, FakeTelegraph, make_gallery
from utils.article_publisher import TELEGRAPH_API, ArticlePublisher, TelegraphClient, chunk
from utils.exceptions import PublishError, TransientNetworkError
from utils.http_client import HTTPResponse


async def record_images(ledger, gallery_id, count):
    urls = []
    for page in range(1, count + 1):
        image = await ledger.images.create_if_absent(f"g{gallery_id}p{page}", f"https://cdn.example.org/{page}.webp")
        await ledger.pages.map_page(gallery_id, page, image.id)
        urls.append(image.url)
    return urls


def images_of(page):
    return [node["attrs"]["src"] for node in page["content"] if node.get("tag") == "img"]


def links_of(page):
    links = []
    for node in page["content"]:
        for child in node.get("children", []):
            if isinstance(child, dict) and child.get("tag") == "a":
                links.append((child["children"][0], child["attrs"]["href"]))
    return links


def test_chunk_keeps_order():
    assert chunk(["a", "b", "c", "d", "e"], 2) == [["a", "b"], ["c", "d"], ["e"]]


@pytest.mark.asyncio
async def test_single_page_article(ledger):
    urls = await record_images(ledger, 1, 3)
    telegraph = FakeTelegraph()
    publisher = ArticlePublisher(ledger, telegraph, capacity=10)

    article = await publisher.publish(make_gallery(gallery_id=1, title_native="Native"))

    assert article.url == "https://telegra.ph/page-1"
    assert article.page_urls == [article.url]
    assert telegraph.edited == []
    page = telegraph.pages["page-1"]
    assert page["title"] == "Native"
    assert images_of(page) == urls
    assert page["content"][-1] == {"tag": "p", "children": ["Total images: 3"]}


@pytest.mark.asyncio
async def test_pagination_links_neighbours(ledger):
    urls = await record_images(ledger, 1, 5)
    telegraph = FakeTelegraph()
    publisher = ArticlePublisher(ledger, telegraph, capacity=2)

    article = await publisher.publish(make_gallery(gallery_id=1, title="Long"))

    assert article.page_urls == [f"https://telegra.ph/page-{n}" for n in (1, 2, 3)]
    assert telegraph.created == ["page-1", "page-2", "page-3"]
    assert telegraph.edited == ["page-1", "page-2", "page-3"]
    first, middle, last = (telegraph.pages[f"page-{n}"] for n in (1, 2, 3))
    assert [first["title"], middle["title"], last["title"]] == ["Long (1/3)", "Long (2/3)", "Long (3/3)"]
    assert images_of(first) + images_of(middle) + images_of(last) == urls
    assert links_of(first) == [("Next »", "https://telegra.ph/page-2")]
    assert links_of(middle) == [
        ("« Previous", "https://telegra.ph/page-1"),
        ("Next »", "https://telegra.ph/page-3"),
    ]
    assert links_of(last) == [("« Previous", "https://telegra.ph/page-2")]
    assert last["content"][-1]["children"] == ["Total images: 5"]
    assert all("Total images" not in json.dumps(page) for page in (first, middle))


@pytest.mark.asyncio
async def test_cover_image_comes_first(ledger):
    urls = await record_images(ledger, 1, 4)
    telegraph = FakeTelegraph()

    await ArticlePublisher(ledger, telegraph).publish(make_gallery(gallery_id=1, cover=2))

    assert images_of(telegraph.pages["page-1"]) == [urls[2]] + urls
    assert telegraph.pages["page-1"]["content"][-1]["children"] == ["Total images: 4"]


@pytest.mark.asyncio
async def test_out_of_range_cover_is_ignored(ledger):
    urls = await record_images(ledger, 1, 2)
    telegraph = FakeTelegraph()

    await ArticlePublisher(ledger, telegraph).publish(make_gallery(gallery_id=1, cover=7))

    assert images_of(telegraph.pages["page-1"]) == urls


@pytest.mark.asyncio
async def test_gallery_without_images_is_rejected(ledger):
    with pytest.raises(PublishError):
        await ArticlePublisher(ledger, FakeTelegraph()).publish(make_gallery(gallery_id=1))


@pytest.mark.asyncio
async def test_telegraph_failure_becomes_publish_error(ledger):
    await record_images(ledger, 1, 1)
    telegraph = FakeTelegraph()
    telegraph.error = TransientNetworkError("telegraph", retry_after=3)

    with pytest.raises(PublishError):
        await ArticlePublisher(ledger, telegraph).publish(make_gallery(gallery_id=1))


def test_capacity_must_be_positive():
    with pytest.raises(ValueError):
        ArticlePublisher(None, FakeTelegraph(), capacity=0)


class TestTelegraphClient:
    def reply(self, body):
        return HTTPResponse(200, TELEGRAPH_API, {"Content-Type": "application/json"}, json.dumps(body).encode())

    @pytest.mark.asyncio
    async def test_create_page_posts_form_fields(self):
        http = FakeHTTP()
        http.route(
            "POST",
            f"{TELEGRAPH_API}/createPage",
            self.reply({"ok": True, "result": {"path": "Title-01-01", "url": "https://telegra.ph/Title-01-01"}}),
        )
        client = TelegraphClient(http, "token", author_name="mirror")

        page = await client.create_page("T" * 300, [{"tag": "img", "attrs": {"src": "x"}}])

        assert page.url == "https://telegra.ph/Title-01-01"
        payload = http.calls[0][2]["data"]
        assert payload["access_token"] == "token"
        assert len(payload["title"]) == 256
        assert json.loads(payload["content"]) == [{"tag": "img", "attrs": {"src": "x"}}]

    @pytest.mark.asyncio
    async def test_flood_wait_is_waited_out_then_retried(self):
        http = FakeHTTP()
        replies = [
            self.reply({"ok": False, "error": "FLOOD_WAIT_12"}),
            self.reply({"ok": True, "result": {"path": "p", "url": "https://telegra.ph/p"}}),
        ]
        http.route("POST", f"{TELEGRAPH_API}/editPage/p", lambda: replies.pop(0))

        with patch("utils.retry.asyncio.sleep", new=AsyncMock()) as sleep:
            page = await TelegraphClient(http, "token").edit_page("p", "t", [])

        assert page.url == "https://telegra.ph/p"
        assert len(http.calls) == 2
        sleep.assert_awaited_once_with(12.0)

    @pytest.mark.asyncio
    async def test_flood_wait_is_capped_and_eventually_transient(self):
        http = FakeHTTP()
        http.route("POST", f"{TELEGRAPH_API}/editPage/p", self.reply({"ok": False, "error": "FLOOD_WAIT_600"}))
        client = TelegraphClient(http, "token", flood_attempts=2, max_delay=20.0)

        with patch("utils.retry.asyncio.sleep", new=AsyncMock()) as sleep:
            with pytest.raises(TransientNetworkError) as excinfo:
                await client.edit_page("p", "t", [])

        assert excinfo.value.retry_after == 600.0
        assert len(http.calls) == 2
        sleep.assert_awaited_once_with(20.0)

    @pytest.mark.asyncio
    async def test_publish_survives_flood_wait(self, ledger):
        gallery = make_gallery(gallery_id=5, tokens=("aa01",))
        await record_images(ledger, 5, 1)
        http = FakeHTTP()
        replies = [
            self.reply({"ok": False, "error": "FLOOD_WAIT_1"}),
            self.reply({"ok": True, "result": {"path": "Gallery-5", "url": "https://telegra.ph/Gallery-5"}}),
        ]
        http.route("POST", f"{TELEGRAPH_API}/createPage", lambda: replies.pop(0))
        publisher = ArticlePublisher(ledger, TelegraphClient(http, "token"))

        with patch("utils.retry.asyncio.sleep", new=AsyncMock()):
            article = await publisher.publish(gallery)

        assert article.url == "https://telegra.ph/Gallery-5"
        assert len(http.calls) == 2

    @pytest.mark.asyncio
    async def test_other_errors_are_publish_errors(self):
        http = FakeHTTP()
        http.route("POST", f"{TELEGRAPH_API}/createPage", self.reply({"ok": False, "error": "CONTENT_TOO_BIG"}))

        with pytest.raises(PublishError):
            await TelegraphClient(http, "token").create_page("t", [])

    @pytest.mark.asyncio
    async def test_non_json_reply_is_publish_error(self):
        http = FakeHTTP()
        http.route("POST", f"{TELEGRAPH_API}/createPage", HTTPResponse(502, TELEGRAPH_API, body=b"<html>bad gateway"))

        with pytest.raises(PublishError):
            await TelegraphClient(http, "token").create_page("t", [])
