"""Shared fetch collaborator with an on-disk HTTP cache.

Only the scheduler owns a Fetcher. Crawl units ask the scheduler for
resources, which keeps one cache and one point of traffic control.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlparse
from urllib.request import url2pathname

import hishel
import httpx
import tldextract

LOGGER = logging.getLogger(__name__)

DEFAULT_CACHE_DIR = Path.home() / ".cache" / "refcrawl"
DEFAULT_USER_AGENT = "refcrawl (+https://github.com/refcrawl/refcrawl)"
CACHEABLE_STATUS_CODES = [200, 203, 300, 301, 308]


@dataclass(slots=True)
class FetchResponse:
    """Response relayed to crawl units."""

    url: str
    status: int
    body: str
    headers: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"url": self.url, "status": self.status, "headers": self.headers, "body": self.body}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FetchResponse":
        return cls(
            url=data.get("url", ""),
            status=int(data.get("status", 0)),
            body=data.get("body", ""),
            headers=dict(data.get("headers") or {}),
        )


class FetchError(Exception):
    """Raised when a resource cannot be fetched."""

    def __init__(self, message: str, url: str = "", status: Optional[int] = None) -> None:
        super().__init__(message)
        self.url = url
        self.status = status


@lru_cache(maxsize=256)
def _registrable_domain(host: str) -> str:
    """Extract the registrable domain from a hostname."""
    if not host:
        return ""
    extracted = tldextract.extract(host)
    if not extracted.domain or not extracted.suffix:
        return host
    return f"{extracted.domain}.{extracted.suffix}"


def build_cached_client(
    cache_dir: Optional[Path] = None,
    *,
    timeout: float = 30.0,
    user_agent: str = DEFAULT_USER_AGENT,
) -> httpx.AsyncClient:
    """httpx client whose transport caches responses on disk."""
    cache_dir = Path(cache_dir or DEFAULT_CACHE_DIR)
    cache_dir.mkdir(parents=True, exist_ok=True)
    storage = hishel.AsyncFileStorage(base_path=str(cache_dir))
    controller = hishel.Controller(
        cacheable_methods=["GET"],
        cacheable_status_codes=CACHEABLE_STATUS_CODES,
        allow_heuristics=False,
        cache_private=True,
        always_revalidate=True,
    )
    transport = hishel.AsyncCacheTransport(
        transport=httpx.AsyncHTTPTransport(retries=2),
        storage=storage,
        controller=controller,
    )
    return httpx.AsyncClient(
        transport=transport,
        timeout=timeout,
        follow_redirects=True,
        headers={"User-Agent": user_agent},
    )


class Fetcher:
    """Fetch URLs through a shared cached client, bounded per origin."""

    def __init__(
        self,
        *,
        cache_dir: Optional[Path] = None,
        per_origin: int = 4,
        timeout: float = 30.0,
        user_agent: str = DEFAULT_USER_AGENT,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or build_cached_client(cache_dir, timeout=timeout, user_agent=user_agent)
        self._per_origin = max(1, per_origin)
        self._semaphores: Dict[str, asyncio.Semaphore] = {}

    async def __aenter__(self) -> "Fetcher":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _semaphore(self, url: str) -> asyncio.Semaphore:
        host = (urlparse(url).hostname or "").lower()
        key = _registrable_domain(host)
        if key not in self._semaphores:
            self._semaphores[key] = asyncio.Semaphore(self._per_origin)
        return self._semaphores[key]

    async def fetch(self, url: str, headers: Optional[Dict[str, str]] = None) -> FetchResponse:
        """Fetch a URL.

        Raises:
            FetchError: On network failures and HTTP statuses >= 400.
        """
        if url.startswith("file:"):
            return await self._read_file(url)

        try:
            semaphore = self._semaphore(url)
        except ValueError as exc:
            raise FetchError(f"Invalid URL {url}: {exc}", url) from exc

        async with semaphore:
            LOGGER.debug("Fetching %s", url)
            try:
                response = await self._client.get(url, headers=headers)
            except (httpx.HTTPError, httpx.InvalidURL) as exc:
                raise FetchError(f"Fetch of {url} failed: {exc}", url) from exc

        if response.status_code >= 400:
            raise FetchError(
                f"Fetch of {url} failed with HTTP status {response.status_code}",
                url,
                response.status_code,
            )
        return FetchResponse(
            url=str(response.url),
            status=response.status_code,
            body=response.text,
            headers=dict(response.headers),
        )

    async def _read_file(self, url: str) -> FetchResponse:
        path = Path(url2pathname(urlparse(url).path))
        try:
            body = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except OSError as exc:
            raise FetchError(f"Could not read {path}: {exc}", url) from exc
        return FetchResponse(url=url, status=200, body=body, headers={"content-type": "text/html"})
