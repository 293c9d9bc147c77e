"""Spec crawler with cross-reference analysis.

This package crawls collections of specification documents and reports
inconsistencies between them. It supports:

- Crawling specs in isolated, time-bounded worker processes
- Resolving links to the spec they denote (aliases, dated URLs, equivalences)
- Merging a partial crawl into a reference crawl
- Studying a crawl for broken and inconsistent cross-references

Example usage:

    from refcrawl import crawl_specs_async, study_crawl

    # Crawl a couple of specs
    index = await crawl_specs_async([
        "https://dom.spec.whatwg.org/",
        "https://fetch.spec.whatwg.org/",
    ])

    # Study the results
    study = study_crawl(index)
    for entry in study["results"]:
        if not entry["report"]["ok"]:
            print(entry["title"], entry["report"]["failedChecks"])

    # Resolve a link
    from refcrawl import SpecIdentityResolver
    resolver = SpecIdentityResolver(result.spec for result in index.results)
    print(resolver.resolve("https://dom.spec.whatwg.org/#concept-node").status)
"""

from __future__ import annotations

from .backrefs import BackrefsReport, study_backrefs
from .config import CrawlOptions, RenderOverrides
from .document import (
    CrawlFileError,
    CrawlIndex,
    CrawlResult,
    EquivalenceClass,
    Reference,
    References,
    SeriesInfo,
    SpecDescriptor,
)
from .extract import ExtractionError, LoadedDocument, extract
from .fetch import FetchError, Fetcher, FetchResponse
from .identity import (
    EquivalenceMap,
    Resolution,
    ResolutionStatus,
    ShortnameError,
    SpecIdentityResolver,
    canonicalize_url,
    compute_shortname,
    is_latest_level_that_passes,
    match_spec_url,
)
from .merge import merge_crawl_files, merge_crawl_results
from .registry import SpecListError, load_registry, prepare_spec_list
from .scheduler import SpecCrawler, crawl_specs, crawl_specs_async
from .study import AnomalyReport, SpecStudy, study_crawl, study_crawl_file, study_crawl_results

__all__ = [
    # Document types
    "CrawlFileError",
    "CrawlIndex",
    "CrawlResult",
    "EquivalenceClass",
    "Reference",
    "References",
    "SeriesInfo",
    "SpecDescriptor",
    # Identity
    "EquivalenceMap",
    "Resolution",
    "ResolutionStatus",
    "ShortnameError",
    "SpecIdentityResolver",
    "canonicalize_url",
    "compute_shortname",
    "is_latest_level_that_passes",
    "match_spec_url",
    # Crawling
    "CrawlOptions",
    "RenderOverrides",
    "SpecCrawler",
    "SpecListError",
    "crawl_specs",
    "crawl_specs_async",
    "load_registry",
    "prepare_spec_list",
    # Fetch and extraction
    "ExtractionError",
    "FetchError",
    "FetchResponse",
    "Fetcher",
    "LoadedDocument",
    "extract",
    # Merge
    "merge_crawl_files",
    "merge_crawl_results",
    # Analysis
    "AnomalyReport",
    "BackrefsReport",
    "SpecStudy",
    "study_backrefs",
    "study_crawl",
    "study_crawl_file",
    "study_crawl_results",
    # MCP Server
    "mcp",
]


def get_mcp_server():
    """Get the MCP server instance (lazy import to avoid dependency if not needed)."""
    from .mcp_server import mcp

    return mcp


# Lazy import for mcp to avoid requiring fastmcp if not used
def __getattr__(name):
    if name == "mcp":
        from .mcp_server import mcp

        return mcp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
