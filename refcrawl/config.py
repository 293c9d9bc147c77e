"""Crawl options and Crawl4AI render configurations."""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from crawl4ai import BrowserConfig, CrawlerRunConfig
from crawl4ai.async_configs import CacheMode

from .document import CrawlIndex
from .fetch import DEFAULT_CACHE_DIR, DEFAULT_USER_AGENT

LOGGER = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 10
DEFAULT_TIMEOUT = 60.0
DEFAULT_FETCH_PER_ORIGIN = 4

# ReSpec inserts its UI once the document has been processed
RESPEC_READY_JS = "js:() => document.querySelector('#respec-ui') !== null"


def default_worker_command() -> List[str]:
    return [sys.executable, "-m", "refcrawl.worker"]


def _env_int(environ: Mapping[str, str], name: str, default: Optional[int]) -> Optional[int]:
    value = environ.get(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        LOGGER.warning("Invalid %s=%r; falling back to %s.", name, value, default)
        return default


def _env_float(environ: Mapping[str, str], name: str, default: Optional[float]) -> Optional[float]:
    value = environ.get(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        LOGGER.warning("Invalid %s=%r; falling back to %s.", name, value, default)
        return default


@dataclass
class RenderOverrides:
    """Adjustments to the headless render run for slow spec generators.

    Unset fields keep the ReSpec defaults of ``build_render_run_config``.
    """

    wait_until: Optional[str] = None
    wait_for: Optional[str] = None
    page_timeout: Optional[int] = None
    delay: Optional[float] = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str]) -> "RenderOverrides":
        return cls(
            wait_until=environ.get("REFCRAWL_RENDER_WAIT_UNTIL") or None,
            wait_for=environ.get("REFCRAWL_RENDER_WAIT_FOR") or None,
            page_timeout=_env_int(environ, "REFCRAWL_RENDER_PAGE_TIMEOUT", None),
            delay=_env_float(environ, "REFCRAWL_RENDER_DELAY", None),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "waitUntil": self.wait_until,
            "waitFor": self.wait_for,
            "pageTimeout": self.page_timeout,
            "delay": self.delay,
        }
        return {key: value for key, value in data.items() if value is not None}

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "RenderOverrides":
        data = data or {}
        return cls(
            wait_until=data.get("waitUntil"),
            wait_for=data.get("waitFor"),
            page_timeout=data.get("pageTimeout"),
            delay=data.get("delay"),
        )


@dataclass
class CrawlOptions:
    """Options of one crawl run."""

    concurrency: int = DEFAULT_CONCURRENCY
    timeout: float = DEFAULT_TIMEOUT
    cache_dir: Path = DEFAULT_CACHE_DIR
    fetch_per_origin: int = DEFAULT_FETCH_PER_ORIGIN
    user_agent: str = DEFAULT_USER_AGENT
    published_version: bool = False
    render: bool = False
    render_overrides: RenderOverrides = field(default_factory=RenderOverrides)
    extractor: Optional[str] = None
    fallback: Optional[CrawlIndex] = None
    journal: Optional[Path] = None
    resume: bool = False
    worker_command: List[str] = field(default_factory=default_worker_command)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides: Any) -> "CrawlOptions":
        """Options from REFCRAWL_* variables; keyword overrides win unless None."""
        environ = os.environ if environ is None else environ
        options = cls(
            concurrency=_env_int(environ, "REFCRAWL_CONCURRENCY", DEFAULT_CONCURRENCY),
            timeout=_env_float(environ, "REFCRAWL_TIMEOUT", DEFAULT_TIMEOUT),
            cache_dir=Path(environ.get("REFCRAWL_CACHE_DIR") or DEFAULT_CACHE_DIR).expanduser(),
            fetch_per_origin=_env_int(environ, "REFCRAWL_FETCH_PER_ORIGIN", DEFAULT_FETCH_PER_ORIGIN),
            user_agent=environ.get("REFCRAWL_USER_AGENT") or DEFAULT_USER_AGENT,
            render_overrides=RenderOverrides.from_env(environ),
        )
        for name, value in overrides.items():
            if value is not None:
                setattr(options, name, value)
        return options

    def worker_options(self) -> Dict[str, Any]:
        """Options relayed to crawl units."""
        return {
            "publishedVersion": self.published_version,
            "render": self.render,
            "renderOverrides": self.render_overrides.to_dict(),
            "extractor": self.extractor,
            "userAgent": self.user_agent,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Options recorded in the crawl result file."""
        return {
            "concurrency": self.concurrency,
            "timeout": self.timeout,
            "publishedVersion": self.published_version,
            "render": self.render,
            "extractor": self.extractor,
        }


def build_render_browser_config(user_agent: Optional[str] = None) -> BrowserConfig:
    """Headless browser used to run ReSpec documents."""
    kwargs: Dict[str, Any] = {"headless": True, "verbose": False}
    if user_agent:
        kwargs["user_agent"] = user_agent
    return BrowserConfig(**kwargs)


def build_render_run_config(overrides: Optional[RenderOverrides] = None) -> CrawlerRunConfig:
    """RunConfig that waits for client-side spec generators to finish."""
    overrides = overrides or RenderOverrides()
    return CrawlerRunConfig(
        verbose=False,
        wait_until=overrides.wait_until or "networkidle",
        wait_for=overrides.wait_for or RESPEC_READY_JS,
        page_timeout=overrides.page_timeout or 60000,
        delay_before_return_html=0.5 if overrides.delay is None else overrides.delay,
        # Documents are passed as raw HTML, so the crawl4ai cache never applies
        cache_mode=CacheMode.BYPASS,
    )
