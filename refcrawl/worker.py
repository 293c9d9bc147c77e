"""Crawl unit: crawls one spec in its own process.

Run as ``python -m refcrawl.worker``. The unit reads one crawl message on
stdin, asks the scheduler for every resource it needs, and writes exactly
one result (or error) message on stdout before exiting. Logs go to stderr.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import logging
import os
import re
import sys
from dataclasses import dataclass, field
from typing import Any, BinaryIO, Callable, Dict, Optional
from urllib.parse import urljoin

from bs4.element import Tag

from .document import CrawlResult, SpecDescriptor, utc_now
from .extract import LoadedDocument, build_result, load_extractor
from .fetch import FetchError, FetchResponse
from .protocol import (
    CRAWL,
    FETCH,
    STREAM_LIMIT,
    ProtocolError,
    decode,
    encode,
    error_message,
    fetch_request,
    result_message,
)

LOGGER = logging.getLogger(__name__)

MAX_REDIRECTS = 5
_REFRESH_URL = re.compile(r"url\s*=\s*['\"]?([^'\"]+)", re.IGNORECASE)
_SINGLE_PAGE = re.compile(r"single[\s-]page", re.IGNORECASE)

Send = Callable[[Dict[str, Any]], None]


@dataclass
class WorkerOptions:
    published_version: bool = False
    render: bool = False
    render_overrides: Dict[str, Any] = field(default_factory=dict)
    extractor: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "WorkerOptions":
        data = data or {}
        return cls(
            published_version=bool(data.get("publishedVersion")),
            render=bool(data.get("render")),
            render_overrides=dict(data.get("renderOverrides") or {}),
            extractor=data.get("extractor"),
            user_agent=data.get("userAgent"),
        )


class ProxyFetcher:
    """Fetches resources by asking the scheduler, correlated by request id."""

    def __init__(self, send: Send) -> None:
        self._send = send
        self._ids = itertools.count(1)
        self._pending: Dict[int, asyncio.Future] = {}
        self._closed: Optional[str] = None

    async def fetch(self, url: str, headers: Optional[Dict[str, str]] = None) -> FetchResponse:
        if self._closed:
            raise FetchError(self._closed, url)
        req_id = next(self._ids)
        future = asyncio.get_running_loop().create_future()
        self._pending[req_id] = future
        self._send(fetch_request(req_id, url, headers))
        message = await future
        if "error" in message:
            raise FetchError(message["error"], url)
        return FetchResponse.from_dict(message)

    def deliver(self, message: Dict[str, Any]) -> None:
        future = self._pending.pop(message.get("reqId"), None)
        if future is None:
            LOGGER.warning("Unexpected fetch reply %r", message.get("reqId"))
            return
        if not future.done():
            future.set_result(message)

    def close(self, reason: str) -> None:
        self._closed = reason
        for future in self._pending.values():
            if not future.done():
                future.set_result({"error": reason})
        self._pending.clear()


# -----------------------------------------------------------------------------
# Document loading
# -----------------------------------------------------------------------------


def _redirect_target(document: LoadedDocument) -> Optional[str]:
    """URL the document points to instead of holding the spec, if any."""
    soup = document.soup
    refresh = soup.find("meta", attrs={"http-equiv": re.compile("^refresh$", re.IGNORECASE)})
    if isinstance(refresh, Tag):
        match = _REFRESH_URL.search(refresh.get("content") or "")
        if match:
            return urljoin(document.url, match.group(1).strip())
    for anchor in soup.select("body .head dl a[href]"):
        if _SINGLE_PAGE.search(anchor.get_text()):
            target = urljoin(document.url, anchor["href"])
            if target.split("#", 1)[0] != document.page_url:
                return target
    return None


async def load_document(url: str, fetcher: ProxyFetcher, max_redirects: int = MAX_REDIRECTS) -> LoadedDocument:
    """Load a spec, following meta refreshes and single-page links.

    Raises:
        FetchError: If a resource cannot be fetched.
        RuntimeError: If redirects do not settle.
    """
    for _ in range(max_redirects + 1):
        response = await fetcher.fetch(url)
        document = LoadedDocument(
            url=response.url or url,
            html=response.body,
            status=response.status,
            headers=response.headers,
        )
        target = _redirect_target(document)
        if target is None:
            return document
        LOGGER.info("Following %s -> %s", document.url, target)
        url = target
    raise RuntimeError(f"Infinite loop detected while loading {url}")


async def render_document(document: LoadedDocument, options: Optional[WorkerOptions] = None) -> LoadedDocument:
    """Run client-side generators (ReSpec) in a headless browser."""
    from crawl4ai import AsyncWebCrawler

    from .config import RenderOverrides, build_render_browser_config, build_render_run_config

    options = options or WorkerOptions()
    browser_config = build_render_browser_config(options.user_agent)
    run_config = build_render_run_config(RenderOverrides.from_dict(options.render_overrides))

    html = document.html
    if "<base " not in html.lower():
        html = re.sub(r"(<head[^>]*>)", rf'\1<base href="{document.url}">', html, count=1, flags=re.IGNORECASE)

    async with AsyncWebCrawler(config=browser_config) as crawler:
        container = await crawler.arun(url="raw:" + html, config=run_config)
    try:
        rendered = container[0]
    except (IndexError, TypeError):
        rendered = container
    if rendered is None or not getattr(rendered, "success", False):
        message = getattr(rendered, "error_message", None) or "no result"
        raise RuntimeError(f"Rendering of {document.url} failed: {message}")
    return LoadedDocument(url=document.url, html=rendered.html, status=document.status, headers=document.headers)


# -----------------------------------------------------------------------------
# Crawl
# -----------------------------------------------------------------------------


async def crawl_spec(spec: SpecDescriptor, fetcher: ProxyFetcher, options: WorkerOptions) -> CrawlResult:
    """Crawl one spec. Failures end up in the result's error field."""
    url = spec.crawl_url(options.published_version)
    if not url:
        LOGGER.warning("%s has no URL to crawl", spec.shortname or spec.url)
        return CrawlResult(spec=spec, date=utc_now())

    try:
        document = await load_document(url, fetcher)
        if options.render and document.generator == "respec":
            document = await render_document(document, options)
        extractor = load_extractor(options.extractor)
        data = extractor(document)
        if inspect.isawaitable(data):
            data = await data
        return build_result(spec, document, data)
    except Exception as exc:
        LOGGER.error("Crawl of %s failed: %s", url, exc)
        result = CrawlResult.failed(spec, f"{type(exc).__name__}: {exc}")
        result.crawled_url = url
        return result


async def _pump(reader: asyncio.StreamReader, fetcher: ProxyFetcher) -> None:
    while True:
        line = await reader.readline()
        if not line:
            fetcher.close("Scheduler closed the channel")
            return
        try:
            message = decode(line)
        except ProtocolError as exc:
            LOGGER.warning("%s", exc)
            continue
        if message["type"] == FETCH:
            fetcher.deliver(message)
        else:
            LOGGER.warning("Ignoring %s message", message["type"])


async def serve(reader: asyncio.StreamReader, send: Send) -> int:
    """Handle one crawl request. Returns the process exit code."""
    line = await reader.readline()
    if not line:
        LOGGER.error("No crawl request received")
        return 2
    try:
        message = decode(line)
    except ProtocolError as exc:
        send(error_message(str(exc)))
        return 2
    if message["type"] != CRAWL:
        send(error_message(f"Expected a crawl message, got {message['type']}"))
        return 2

    spec = SpecDescriptor.from_dict(message.get("spec") or {})
    fetcher = ProxyFetcher(send)
    pump = asyncio.ensure_future(_pump(reader, fetcher))
    try:
        result = await crawl_spec(spec, fetcher, WorkerOptions.from_dict(message.get("options")))
    finally:
        pump.cancel()
    send(result_message(result))
    return 0


def _sender(stream: BinaryIO) -> Send:
    def send(message: Dict[str, Any]) -> None:
        stream.write(encode(message))
        stream.flush()

    return send


async def _main_async(protocol_out: BinaryIO) -> int:
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader(limit=STREAM_LIMIT)
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)
    return await serve(reader, _sender(protocol_out))


def main() -> int:
    # Keep stdout for protocol messages; anything printed goes to stderr.
    protocol_out = sys.stdout.buffer
    sys.stdout = sys.stderr
    level = os.getenv("REFCRAWL_WORKER_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        stream=sys.stderr,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )
    return asyncio.run(_main_async(protocol_out))


if __name__ == "__main__":
    sys.exit(main())
