"""MCP Server for spec crawling and cross-reference analysis.

Provides tools for:
- Resolving links to the specs they denote
- Studying crawl result files for anomalies
- Merging partial crawls into a reference crawl
- Crawling a handful of specs

Supports both STDIO and HTTP transports.

Usage:
    # STDIO
    python -m refcrawl.mcp_server

    # HTTP (for remote access)
    python -m refcrawl.mcp_server --transport http --port 8000

    # Or via FastMCP CLI
    fastmcp run refcrawl/mcp_server.py:mcp --transport http --port 8000

Environment Variables:
    REFCRAWL_CONCURRENCY, REFCRAWL_TIMEOUT, REFCRAWL_CACHE_DIR,
    REFCRAWL_FETCH_PER_ORIGIN, REFCRAWL_USER_AGENT (see .env.example)
"""

from __future__ import annotations

import argparse
import json
import logging
from typing import List, Optional

from dotenv import load_dotenv
from fastmcp import FastMCP

from .cli_output import resolution_to_dict
from .config import CrawlOptions
from .document import CrawlFileError, SpecDescriptor
from .identity import SpecIdentityResolver
from .merge import load_crawl_index, merge_crawl_files
from .registry import SpecListError, load_registry
from .scheduler import crawl_specs_async
from .study import study_crawl_file

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
LOGGER = logging.getLogger(__name__)

load_dotenv()

mcp = FastMCP(
    name="Spec Crawler",
    instructions="""
    A spec crawler and cross-reference analyzer that provides:

    1. resolve_spec_url: tell which spec a link denotes (or why it does not)
    2. study: report anomalies found in a crawl result file
    3. merge: merge a partial crawl result file into a reference one
    4. crawl: crawl a few specs and return their extracts

    All tools return JSON.
    """,
)


def _dumps(data) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False)


def _error(message: str, **context) -> str:
    LOGGER.error(message)
    return json.dumps({"error": message, **context}, ensure_ascii=False)


def _load_descriptors(registry: Optional[str], crawl_path: Optional[str]) -> List[SpecDescriptor]:
    descriptors: List[SpecDescriptor] = []
    if registry:
        descriptors.extend(load_registry(registry))
    if crawl_path:
        descriptors.extend(result.spec for result in load_crawl_index(crawl_path).results)
    return descriptors


# =============================================================================
# ANALYSIS TOOLS
# =============================================================================


@mcp.tool
async def resolve_spec_url(
    urls: List[str],
    registry: Optional[str] = None,
    crawl_path: Optional[str] = None,
) -> str:
    """
    Resolve links to the specs they denote.

    Args:
        urls: Links to resolve
        registry: Path to a JSON file of spec descriptors
        crawl_path: Path to a crawl result file whose specs are known

    Returns:
        JSON array with one entry per link: status ("resolved", "self",
        "outdatedSpec", "unknownSpec", "datedUrl", "nonNormative"),
        shortname and the matching spec when resolved.

    Examples:
        resolve_spec_url(urls=["https://www.w3.org/TR/css-color-4/"], registry="specs.json")
    """
    try:
        descriptors = _load_descriptors(registry, crawl_path)
    except (OSError, json.JSONDecodeError, CrawlFileError, SpecListError) as exc:
        return _error(f"Could not read specs: {exc}")

    resolver = SpecIdentityResolver(descriptors)
    return _dumps([resolution_to_dict(resolver.resolve(url)) for url in urls])


@mcp.tool
async def study(
    crawl_path: str,
    release_crawl_path: Optional[str] = None,
    specs: Optional[List[str]] = None,
    only_failing: bool = False,
) -> str:
    """
    Study a crawl result file for cross-reference anomalies.

    Args:
        crawl_path: Path to the crawl result file (index.json)
        release_crawl_path: Crawl result file of published versions, used to
            tell evolving links from broken ones
        specs: Restrict the report to these URLs or shortnames
        only_failing: Only return specs with anomalies (default: false)

    Returns:
        JSON study file with one report per spec.
    """
    LOGGER.info("Studying %s", crawl_path)
    try:
        result = study_crawl_file(crawl_path, release_path=release_crawl_path, include=specs)
    except (OSError, json.JSONDecodeError, CrawlFileError) as exc:
        return _error(f"Could not read crawl results: {exc}", crawl_path=crawl_path)

    if only_failing:
        result["results"] = [entry for entry in result["results"] if not entry["report"]["ok"]]
    return _dumps(result)


@mcp.tool
async def merge(
    new_path: str,
    ref_path: str,
    out_path: str,
    match_title: bool = True,
) -> str:
    """
    Merge a partial crawl result file into a reference crawl result file.

    Args:
        new_path: Crawl result file with the new results
        ref_path: Reference crawl result file
        out_path: Where to write the merged file
        match_title: Also match entries on their title (default: true)

    Returns:
        JSON summary with the output path and the merged stats.
    """
    try:
        merged = merge_crawl_files(new_path, ref_path, out_path, match_title=match_title)
    except (OSError, json.JSONDecodeError, CrawlFileError) as exc:
        return _error(f"Could not merge crawl results: {exc}")
    return _dumps({"output": out_path, "stats": merged.stats})


# =============================================================================
# CRAWL TOOL
# =============================================================================


@mcp.tool
async def crawl(
    specs: List[str],
    registry: Optional[str] = None,
    concurrency: Optional[int] = None,
    timeout: Optional[float] = None,
    published_version: bool = False,
) -> str:
    """
    Crawl specs, one isolated unit per spec.

    Args:
        specs: Spec URLs or shortnames
        registry: Path to a JSON file of spec descriptors used to look up shortnames
        concurrency: Maximum units crawling at once (default: REFCRAWL_CONCURRENCY or 10)
        timeout: Per-spec timeout in seconds (default: REFCRAWL_TIMEOUT or 60)
        published_version: Crawl published versions instead of editor's drafts

    Returns:
        JSON crawl result file contents.

    Examples:
        crawl(specs=["https://dom.spec.whatwg.org/"])
        crawl(specs=["dom", "fetch"], registry="specs.json", timeout=120)
    """
    try:
        descriptors = load_registry(registry) if registry else []
    except (OSError, json.JSONDecodeError, CrawlFileError, SpecListError) as exc:
        return _error(f"Could not read registry: {exc}")

    options = CrawlOptions.from_env(
        concurrency=concurrency,
        timeout=timeout,
        published_version=published_version,
    )
    LOGGER.info("Crawling %d spec(s)...", len(specs))
    try:
        index = await crawl_specs_async(specs, options, registry=descriptors)
    except SpecListError as exc:
        return _error(str(exc), specs=specs)

    LOGGER.info("Completed: %d crawled, %d errors", index.stats["crawled"], index.stats["errors"])
    return _dumps(index.to_dict())


# =============================================================================
# CLI ENTRY POINT
# =============================================================================


def main():
    """CLI entry point for running the MCP server."""
    parser = argparse.ArgumentParser(
        description="Run the spec crawler MCP server.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # STDIO transport (default)
    python -m refcrawl.mcp_server

    # HTTP transport (for remote access)
    python -m refcrawl.mcp_server --transport http --port 8000

    # Custom host/port
    python -m refcrawl.mcp_server --transport http --host 0.0.0.0 --port 9000
""",
    )
    parser.add_argument(
        "--transport",
        choices=["stdio", "http"],
        default="stdio",
        help="Transport protocol (default: stdio)",
    )
    parser.add_argument(
        "--host",
        default="127.0.0.1",
        help="Host to bind to for HTTP transport (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port to bind to for HTTP transport (default: 8000)",
    )

    args = parser.parse_args()

    if args.transport == "http":
        LOGGER.info("Starting MCP server on http://%s:%d/mcp", args.host, args.port)
        mcp.run(transport="http", host=args.host, port=args.port)
    else:
        LOGGER.info("Starting MCP server with STDIO transport")
        mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
