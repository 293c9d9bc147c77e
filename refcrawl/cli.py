"""Command-line interface for crawling and studying specs."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import shutil
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from .cli_config import CONFIG_DIR, CONFIG_ENV_FILE, load_config
from .cli_output import format_resolutions, format_study_summary, resolution_to_dict, to_json, write_json
from .config import CrawlOptions
from .document import CrawlFileError, CrawlIndex, SpecDescriptor
from .identity import SpecIdentityResolver
from .merge import load_crawl_index, merge_crawl_files, write_crawl_index
from .registry import SpecEntry, SpecListError, load_registry, read_spec_list
from .scheduler import crawl_specs_async
from .study import study_crawl_file

EXIT_OK = 0
EXIT_USAGE = 2
EXIT_INPUT = 3
EXIT_CRAWL_FAILURE = 64
EXIT_INTERRUPTED = 130


def _load_config() -> None:
    load_config(
        config_dir=CONFIG_DIR,
        config_env_file=CONFIG_ENV_FILE,
        cwd=Path.cwd(),
        load_env=load_dotenv,
        copy_file=shutil.copy,
    )


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )


def _add_verbose(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )


def _read_spec_entries(values: List[str]) -> List[SpecEntry]:
    """Expand list files given on the command line.

    Arguments that name an existing file other than an HTML document are
    read as crawl lists; everything else is kept as a URL or shortname.
    """
    entries: List[SpecEntry] = []
    for value in values:
        path = Path(value)
        if path.is_file() and path.suffix.lower() not in (".html", ".htm"):
            entries.extend(read_spec_list(path))
        else:
            entries.append(value)
    return entries


# =============================================================================
# CRAWL COMMAND
# =============================================================================


def _parse_crawl_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="refcrawl-crawl",
        description="Crawl spec documents, one isolated unit per spec.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""\
Examples:
  # Crawl two specs from the registry
  refcrawl-crawl dom fetch --registry specs.json -o crawl/index.json

  # Crawl a list file with 20 concurrent units and a 2 minute timeout
  refcrawl-crawl specs.txt -o crawl/index.json --concurrency 20 --timeout 120

  # Crawl published versions, reusing a previous crawl for failures
  refcrawl-crawl specs.json -o tr/index.json --release --fallback old/index.json

  # Resume an interrupted crawl
  refcrawl-crawl specs.json -o crawl/index.json --journal crawl/journal.jsonl --resume
""",
    )

    parser.add_argument(
        "specs",
        nargs="+",
        help="Spec URLs, shortnames or list files (JSON array or one entry per line)",
    )
    parser.add_argument(
        "-o",
        "--output",
        type=str,
        required=True,
        help="Crawl result file to write",
    )
    parser.add_argument(
        "--registry",
        type=str,
        default=None,
        help="JSON file of spec descriptors used to look up shortnames",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help="Maximum number of units crawling at once (default: 10)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Per-spec timeout in seconds (default: 60)",
    )
    parser.add_argument(
        "--release",
        action="store_true",
        help="Crawl published versions instead of editor's drafts",
    )
    parser.add_argument(
        "--fallback",
        type=str,
        default=None,
        help="Crawl result file whose entries replace failed crawls",
    )
    parser.add_argument(
        "--journal",
        type=str,
        default=None,
        help="JSONL file that accumulates results as they complete",
    )
    parser.add_argument(
        "--resume",
        action="store_true",
        help="Skip specs that already have an error-free journal entry",
    )
    parser.add_argument(
        "--render",
        action="store_true",
        help="Render ReSpec documents in a headless browser before extraction",
    )
    parser.add_argument(
        "--render-wait-for",
        type=str,
        default=None,
        help="crawl4ai wait_for condition that marks a rendered document as ready",
    )
    parser.add_argument(
        "--extractor",
        type=str,
        default=None,
        help="Custom extractor as module:function",
    )
    _add_verbose(parser)

    args = parser.parse_args(argv)
    if args.resume and not args.journal:
        parser.error("--resume requires --journal")
    return args


async def _run_crawl_async(
    args: argparse.Namespace,
    entries: List[SpecEntry],
    registry: List[SpecDescriptor],
    fallback: Optional[CrawlIndex],
) -> CrawlIndex:
    options = CrawlOptions.from_env(
        concurrency=args.concurrency,
        timeout=args.timeout,
        published_version=args.release,
        render=args.render,
        extractor=args.extractor,
        fallback=fallback,
        journal=Path(args.journal) if args.journal else None,
        resume=args.resume,
    )
    if args.render_wait_for:
        options.render_overrides.wait_for = args.render_wait_for
    logging.info(
        "Crawling %d spec entries (concurrency=%d, timeout=%gs)",
        len(entries),
        options.concurrency,
        options.timeout,
    )
    return await crawl_specs_async(entries, options, registry=registry)


def crawl_main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point for the crawl command."""
    args = _parse_crawl_args(argv)
    _setup_logging(args.verbose)
    _load_config()

    try:
        entries = _read_spec_entries(args.specs)
        registry = load_registry(args.registry) if args.registry else []
        fallback = load_crawl_index(args.fallback) if args.fallback else None
    except (OSError, json.JSONDecodeError, CrawlFileError, SpecListError) as exc:
        logging.error("Could not read input: %s", exc)
        return EXIT_INPUT

    try:
        index = asyncio.run(_run_crawl_async(args, entries, registry, fallback))
    except KeyboardInterrupt:
        logging.info("Interrupted")
        return EXIT_INTERRUPTED
    except SpecListError as exc:
        logging.error("Invalid crawl list: %s", exc)
        return EXIT_INPUT
    except Exception as exc:
        logging.error("Crawl failed: %s", exc)
        if args.verbose:
            logging.exception("Full traceback:")
        return EXIT_CRAWL_FAILURE

    path = write_crawl_index(index, args.output)
    logging.info(
        "Wrote %d results to %s (%d errors)",
        index.stats["crawled"],
        path,
        index.stats["errors"],
    )
    return EXIT_OK


# =============================================================================
# STUDY COMMAND
# =============================================================================


def _parse_study_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="refcrawl-study",
        description="Study a crawl result file for cross-reference anomalies.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""\
Examples:
  # Study everything, print the study to stdout
  refcrawl-study crawl/index.json

  # Classify evolving links against a crawl of published versions
  refcrawl-study crawl/index.json --release-crawl tr/index.json -o study.json

  # Only report on a couple of specs
  refcrawl-study crawl/index.json --spec dom --spec https://fetch.spec.whatwg.org/
""",
    )

    parser.add_argument(
        "crawl",
        help="Crawl result file (index.json)",
    )
    parser.add_argument(
        "--release-crawl",
        type=str,
        default=None,
        help="Crawl result file of published versions",
    )
    parser.add_argument(
        "--spec",
        action="append",
        default=None,
        help="Restrict the report to this URL or shortname (repeatable)",
    )
    parser.add_argument(
        "-o",
        "--output",
        type=str,
        default=None,
        help="Study file to write (default: stdout)",
    )
    _add_verbose(parser)

    return parser.parse_args(argv)


def study_main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point for the study command."""
    args = _parse_study_args(argv)
    _setup_logging(args.verbose)

    try:
        study = study_crawl_file(args.crawl, release_path=args.release_crawl, include=args.spec)
    except (OSError, json.JSONDecodeError, CrawlFileError) as exc:
        logging.error("Could not read crawl results: %s", exc)
        return EXIT_INPUT

    write_json(study, args.output)
    if args.output:
        print(format_study_summary(study))
    return EXIT_OK


# =============================================================================
# MERGE COMMAND
# =============================================================================


def _parse_merge_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="refcrawl-merge",
        description="Merge a partial crawl into a reference crawl.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""\
Examples:
  # Replace the entries of the reference crawl that the new crawl covers
  refcrawl-merge partial/index.json crawl/index.json merged/index.json

  # Do not treat identical titles as the same spec
  refcrawl-merge partial/index.json crawl/index.json merged/index.json --no-match-title
""",
    )

    parser.add_argument("new", help="Crawl result file with the new results")
    parser.add_argument("ref", help="Reference crawl result file")
    parser.add_argument("out", help="Merged crawl result file to write")
    parser.add_argument(
        "--no-match-title",
        action="store_true",
        help="Do not match entries on their title",
    )
    _add_verbose(parser)

    return parser.parse_args(argv)


def merge_main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point for the merge command."""
    args = _parse_merge_args(argv)
    _setup_logging(args.verbose)

    try:
        merged = merge_crawl_files(args.new, args.ref, args.out, match_title=not args.no_match_title)
    except (OSError, json.JSONDecodeError, CrawlFileError) as exc:
        logging.error("Could not merge crawl results: %s", exc)
        return EXIT_INPUT

    logging.info("Wrote %d merged results to %s", len(merged.results), args.out)
    return EXIT_OK


# =============================================================================
# RESOLVE COMMAND
# =============================================================================


def _parse_resolve_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="refcrawl-resolve",
        description="Show which spec a link denotes.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""\
Examples:
  # Resolve links against a registry
  refcrawl-resolve https://www.w3.org/TR/2021/WD-css-color-4-20210601/ --registry specs.json

  # Resolve against the specs of a crawl, as JSON
  refcrawl-resolve https://dom.spec.whatwg.org/#concept-node --crawl crawl/index.json --json
""",
    )

    parser.add_argument("urls", nargs="+", help="Link(s) to resolve")
    parser.add_argument(
        "--registry",
        type=str,
        default=None,
        help="JSON file of spec descriptors",
    )
    parser.add_argument(
        "--crawl",
        type=str,
        default=None,
        help="Crawl result file whose specs are known",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        dest="json_output",
        help="Output as JSON",
    )
    _add_verbose(parser)

    return parser.parse_args(argv)


def resolve_main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point for the resolve command."""
    args = _parse_resolve_args(argv)
    _setup_logging(args.verbose)

    descriptors: List[SpecDescriptor] = []
    try:
        if args.registry:
            descriptors.extend(load_registry(args.registry))
        if args.crawl:
            descriptors.extend(result.spec for result in load_crawl_index(args.crawl).results)
    except (OSError, json.JSONDecodeError, CrawlFileError, SpecListError) as exc:
        logging.error("Could not read specs: %s", exc)
        return EXIT_INPUT

    resolver = SpecIdentityResolver(descriptors)
    resolutions = [resolver.resolve(url) for url in args.urls]
    if args.json_output:
        print(to_json([resolution_to_dict(resolution) for resolution in resolutions]))
    else:
        print(format_resolutions(resolutions))
    return EXIT_OK


# =============================================================================
# DISPATCH
# =============================================================================

COMMANDS = {
    "crawl": crawl_main,
    "study": study_main,
    "merge": merge_main,
    "resolve": resolve_main,
}


def main(argv: Optional[List[str]] = None) -> int:
    """``refcrawl <command> ...`` dispatcher."""
    argv = list(sys.argv[1:] if argv is None else argv)
    if not argv or argv[0] not in COMMANDS:
        print(f"usage: refcrawl {{{','.join(COMMANDS)}}} ...", file=sys.stderr)
        return EXIT_USAGE
    return COMMANDS[argv[0]](argv[1:])


if __name__ == "__main__":
    sys.exit(main())
