import asyncio

import httpx
import pytest

from catalog_sync.errors import FeedFetchError, NeedAuthError
from catalog_sync.feed import FileFeedSource, HttpFeedSource, open_feed_source

from conftest import feed_xml, product_xml

FEED_URL = "https://feeds.example.com/catalog.xml"


async def _collect(source) -> bytes:
    return b"".join([chunk async for chunk in source.chunks()])


def _source(handler, **kwargs) -> HttpFeedSource:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpFeedSource(FEED_URL, client=client, chunk_size=16, **kwargs)


def test_file_source_reads_in_chunks(tmp_path) -> None:
    data = feed_xml(product_xml("1"), product_xml("2"))
    path = tmp_path / "feed.xml"
    path.write_bytes(data)

    source = FileFeedSource(path, chunk_size=32)

    assert asyncio.run(_collect(source)) == data


def test_file_source_missing_file(tmp_path) -> None:
    source = FileFeedSource(tmp_path / "missing.xml")

    with pytest.raises(FeedFetchError):
        asyncio.run(_collect(source))


def test_http_source_streams_body() -> None:
    data = feed_xml(product_xml("1"))

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url == FEED_URL
        return httpx.Response(200, content=data, headers={"content-type": "application/xml"})

    assert asyncio.run(_collect(_source(handler))) == data


def test_http_source_error_status() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="boom")

    with pytest.raises(FeedFetchError) as excinfo:
        asyncio.run(_collect(_source(handler)))

    assert not isinstance(excinfo.value, NeedAuthError)
    assert excinfo.value.context["status"] == 500


def test_http_source_challenge_page_needs_auth() -> None:
    page = "<!DOCTYPE html><html><title>Just a moment...</title><body>Checking your browser</body></html>"

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text=page, headers={"content-type": "text/html; charset=utf-8"})

    with pytest.raises(NeedAuthError):
        asyncio.run(_collect(_source(handler)))


def test_http_source_forbidden_challenge_needs_auth() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, text="<html>Attention Required! | Cloudflare</html>")

    with pytest.raises(NeedAuthError):
        asyncio.run(_collect(_source(handler)))


def test_http_source_plain_html_is_fetch_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html><body>Maintenance</body></html>")

    with pytest.raises(FeedFetchError) as excinfo:
        asyncio.run(_collect(_source(handler)))

    assert not isinstance(excinfo.value, NeedAuthError)


def test_http_source_retries_connection_errors() -> None:
    data = feed_xml(product_xml("1"))
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        if calls["count"] == 1:
            raise httpx.ConnectError("refused", request=request)
        return httpx.Response(200, content=data)

    assert asyncio.run(_collect(_source(handler, retries=2))) == data
    assert calls["count"] == 2


def test_http_source_gives_up_after_retries() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(FeedFetchError):
        asyncio.run(_collect(_source(handler, retries=1)))


def test_open_feed_source_prefers_file(tmp_path) -> None:
    path = tmp_path / "feed.xml"

    assert isinstance(open_feed_source(file_path=path, url=FEED_URL), FileFeedSource)
    assert isinstance(open_feed_source(url=FEED_URL), HttpFeedSource)
    with pytest.raises(ValueError):
        open_feed_source()
