"""Merging of a new crawl into a reference crawl."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Callable, List, Sequence, Tuple, Union

from .document import CrawlFileError, CrawlIndex, CrawlResult, utc_now

LOGGER = logging.getLogger(__name__)

MatchRule = Tuple[str, Callable[[CrawlResult, CrawlResult], bool]]


def _same_url(new: CrawlResult, ref: CrawlResult) -> bool:
    return new.spec.url == ref.spec.url


def _same_html(new: CrawlResult, ref: CrawlResult) -> bool:
    return bool(new.spec.html) and new.spec.html == ref.spec.html


def _same_latest(new: CrawlResult, ref: CrawlResult) -> bool:
    return bool(new.spec.release_url) and new.spec.release_url == ref.spec.release_url


def _same_shortname(new: CrawlResult, ref: CrawlResult) -> bool:
    return bool(new.spec.shortname) and new.spec.shortname == ref.spec.shortname


def _overlapping_versions(new: CrawlResult, ref: CrawlResult) -> bool:
    return bool(set(new.spec.versions) & set(ref.spec.versions))


def _same_title(new: CrawlResult, ref: CrawlResult) -> bool:
    return bool(new.title) and new.title == ref.title


# Joined by OR, evaluated in this order. A reference entry goes away as soon
# as one rule matches one new entry.
MATCH_RULES: Tuple[MatchRule, ...] = (
    ("url", _same_url),
    ("html", _same_html),
    ("latest", _same_latest),
    ("shortname", _same_shortname),
    ("versions", _overlapping_versions),
)
TITLE_RULE: MatchRule = ("title", _same_title)


def match_rules(match_title: bool = False) -> Tuple[MatchRule, ...]:
    return MATCH_RULES + ((TITLE_RULE,) if match_title else ())


def find_match(
    ref: CrawlResult,
    new_results: Sequence[CrawlResult],
    rules: Sequence[MatchRule] = MATCH_RULES,
) -> str | None:
    """Name of the first rule through which ref matches a new entry."""
    for new in new_results:
        for name, rule in rules:
            if rule(new, ref):
                return name
    return None


def merge_crawl_results(
    new: CrawlIndex,
    ref: CrawlIndex,
    *,
    match_title: bool = False,
) -> CrawlIndex:
    """Replace entries of ref with their counterparts in new.

    Returns:
        A new CrawlIndex sorted by URL, with freshly computed stats.
    """
    rules = match_rules(match_title)
    kept: List[CrawlResult] = []
    for result in ref.results:
        matched = find_match(result, new.results, rules)
        if matched:
            LOGGER.debug("Replacing %s (matched on %s)", result.url, matched)
        else:
            kept.append(result)

    merged = CrawlIndex(
        results=sorted(kept + list(new.results), key=lambda result: result.url),
        title=new.title or ref.title,
        description=new.description or ref.description,
        date=utc_now(),
        options=new.options or ref.options,
    )
    LOGGER.info(
        "Merged %d new entries into %d reference entries: %d results",
        len(new.results),
        len(ref.results),
        len(merged.results),
    )
    return merged


def load_crawl_index(path: Union[str, Path]) -> CrawlIndex:
    """Read a crawl result file.

    Raises:
        OSError, json.JSONDecodeError: If the file cannot be read as JSON.
        CrawlFileError: If the JSON is not a crawl index.
    """
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    try:
        return CrawlIndex.from_dict(data)
    except CrawlFileError as exc:
        raise CrawlFileError(f"{path}: {exc}") from exc


def write_crawl_index(index: CrawlIndex, path: Union[str, Path]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(index.to_dict(), indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    return path


def merge_crawl_files(
    new_path: Union[str, Path],
    ref_path: Union[str, Path],
    out_path: Union[str, Path],
    *,
    match_title: bool = True,
) -> CrawlIndex:
    """Merge two crawl result files and write the outcome."""
    merged = merge_crawl_results(
        load_crawl_index(new_path),
        load_crawl_index(ref_path),
        match_title=match_title,
    )
    write_crawl_index(merged, out_path)
    LOGGER.info("Wrote %s", out_path)
    return merged
