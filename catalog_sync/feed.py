"""Feed transports yielding raw XML byte chunks."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import AsyncIterator, Optional, Protocol

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from catalog_sync.errors import FeedFetchError, NeedAuthError
from catalog_sync.logging_config import get_logger

LOGGER = get_logger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024
DEFAULT_TIMEOUT = 60.0
DEFAULT_RETRIES = 3
SNIFF_LIMIT = 64 * 1024
USER_AGENT = "catalog-sync/1.0 (+xml feed importer)"

CHALLENGE_MARKERS = (
    "captcha",
    "cf-chl",
    "cloudflare",
    "just a moment",
    "attention required",
    "access denied",
    "verify you are human",
)


class FeedSource(Protocol):
    location: str

    def chunks(self) -> AsyncIterator[bytes]: ...


def looks_like_html(head: bytes) -> bool:
    text = head.lstrip()[:512].decode("utf-8", errors="ignore").lower()
    return text.startswith("<!doctype html") or text.startswith("<html")


def looks_like_challenge(head: bytes) -> bool:
    text = head[:8192].decode("utf-8", errors="ignore").lower()
    return any(marker in text for marker in CHALLENGE_MARKERS)


class FileFeedSource:
    """Reads a local feed file in fixed-size chunks off the event loop."""

    def __init__(self, path: str | Path, *, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        self.path = Path(path)
        self.location = str(self.path)
        self.chunk_size = chunk_size

    async def chunks(self) -> AsyncIterator[bytes]:
        try:
            handle = await asyncio.to_thread(self.path.open, "rb")
        except OSError as exc:
            raise FeedFetchError("Failed to open feed file", path=self.location) from exc
        try:
            while True:
                try:
                    chunk = await asyncio.to_thread(handle.read, self.chunk_size)
                except OSError as exc:
                    raise FeedFetchError("Failed to read feed file", path=self.location) from exc
                if not chunk:
                    break
                yield chunk
        finally:
            handle.close()


class HttpFeedSource:
    """Streams the feed over HTTP with httpx.

    Only establishing the connection is retried; once bytes have been handed
    to the parser a transport error is fatal for the run.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        retries: int = DEFAULT_RETRIES,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.url = url
        self.location = url
        self.timeout = timeout
        self.chunk_size = chunk_size
        self.retries = max(1, int(retries))
        self._client = client

    async def _open(self, client: httpx.AsyncClient) -> httpx.Response:
        request = client.build_request("GET", self.url)
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.retries),
            wait=wait_exponential(multiplier=0.5, max=10),
            retry=retry_if_exception_type(httpx.TransportError),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    LOGGER.warning(
                        "Retrying feed request (attempt %s/%s)",
                        attempt.retry_state.attempt_number,
                        self.retries,
                    )
                return await client.send(request, stream=True)
        raise FeedFetchError("Feed request was not attempted", url=self.url)

    async def _check_status(self, response: httpx.Response) -> None:
        if response.status_code < 400:
            return
        await response.aread()
        if response.status_code in (401, 403, 429) and looks_like_challenge(response.content):
            raise NeedAuthError(url=self.url, status=response.status_code)
        raise FeedFetchError("Feed request failed", url=self.url, status=response.status_code)

    def _is_html(self, response: httpx.Response, head: bytes) -> bool:
        content_type = response.headers.get("content-type", "").lower()
        return "text/html" in content_type or looks_like_html(head)

    def _html_error(self, response: httpx.Response, body: bytes) -> FeedFetchError:
        if looks_like_challenge(body):
            return NeedAuthError(url=self.url, content_type=response.headers.get("content-type"))
        return FeedFetchError("Feed returned HTML instead of XML", url=self.url)

    async def chunks(self) -> AsyncIterator[bytes]:
        client = self._client or httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        )
        try:
            response = await self._open(client)
            try:
                await self._check_status(response)
                stream = response.aiter_bytes(self.chunk_size)
                first = True
                async for chunk in stream:
                    if first and self._is_html(response, chunk):
                        body = bytearray(chunk)
                        async for more in stream:
                            body.extend(more)
                            if len(body) >= SNIFF_LIMIT:
                                break
                        raise self._html_error(response, bytes(body))
                    first = False
                    yield chunk
            finally:
                await response.aclose()
        except httpx.HTTPError as exc:
            raise FeedFetchError("Feed transfer failed", url=self.url, error=str(exc)) from exc
        finally:
            if self._client is None:
                await client.aclose()


def open_feed_source(
    *,
    file_path: str | Path | None = None,
    url: str | None = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    timeout: float = DEFAULT_TIMEOUT,
    retries: int = DEFAULT_RETRIES,
) -> FeedSource:
    """A local file wins over a URL."""

    if file_path:
        return FileFeedSource(file_path, chunk_size=chunk_size)
    if url:
        return HttpFeedSource(url, timeout=timeout, chunk_size=chunk_size, retries=retries)
    raise ValueError("Either a feed file or a feed URL is required")


__all__ = [
    "FeedSource",
    "FileFeedSource",
    "HttpFeedSource",
    "looks_like_challenge",
    "looks_like_html",
    "open_feed_source",
]
