"""Anchor-level checks of links between specs.

For each spec, lists:

- links to anchors that do not exist in the target spec
- links to anchors that only exist in the published version of the target
- links to anchors that are neither definitions nor headings
- links to definitions that are not exported
- links to dated publications of other specs
- links to specs that should no longer be referenced
- links that look like specs but match nothing known (for triage only)
"""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from dataclasses import dataclass, field, fields
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .document import CrawlResult
from .identity import ResolutionStatus, SpecIdentityResolver, match_spec_url

LOGGER = logging.getLogger(__name__)

_TR_LINK = re.compile(r"w3\.org/TR/")


def _check(key: str) -> dict:
    return {"key": key, "check": True}


@dataclass(frozen=True)
class BackrefsReport:
    """Cross-reference findings for one spec."""

    broken_link: Tuple[str, ...] = field(default=(), metadata=_check("brokenLink"))
    evolving_link: Tuple[str, ...] = field(default=(), metadata=_check("evolvingLink"))
    not_dfn: Tuple[str, ...] = field(default=(), metadata=_check("notDfn"))
    not_exported: Tuple[str, ...] = field(default=(), metadata=_check("notExported"))
    outdated_spec: Tuple[str, ...] = field(default=(), metadata=_check("outdatedSpec"))
    dated_url: Tuple[str, ...] = field(default=(), metadata=_check("datedUrl"))
    unknown_spec: Tuple[str, ...] = field(default=(), metadata={"key": "unknownSpec"})

    @property
    def ok(self) -> bool:
        return not any(getattr(self, f.name) for f in fields(self) if f.metadata.get("check"))

    def to_dict(self) -> Dict[str, List[str]]:
        return {f.metadata["key"]: list(getattr(self, f.name)) for f in fields(self)}


class _ResultIndex:
    """Lookup of crawl results by descriptor URL, shortname or series."""

    def __init__(self, results: Iterable[CrawlResult]) -> None:
        self._by_url: Dict[str, CrawlResult] = {}
        self._by_shortname: Dict[str, CrawlResult] = {}
        self._by_series: Dict[str, CrawlResult] = {}
        for result in results:
            self._by_url.setdefault(result.url, result)
            self._by_shortname.setdefault(result.shortname, result)
            if result.spec.is_current:
                self._by_series.setdefault(result.spec.series_shortname, result)

    def get(self, url: str, shortname: str) -> Optional[CrawlResult]:
        return (
            self._by_url.get(url)
            or self._by_shortname.get(shortname)
            or self._by_series.get(shortname)
        )


def study_spec_backrefs(
    result: CrawlResult,
    resolver: SpecIdentityResolver,
    crawled: _ResultIndex,
    released: Optional[_ResultIndex] = None,
) -> BackrefsReport:
    findings: Dict[str, List[str]] = defaultdict(list)
    for link, anchors in result.links.items():
        if not match_spec_url(link):
            continue
        resolution = resolver.resolve(link, result.spec)
        status = resolution.status
        if status in (ResolutionStatus.SELF, ResolutionStatus.NON_NORMATIVE):
            continue
        if status is ResolutionStatus.OUTDATED_SPEC:
            findings["outdated_spec"].append(link)
            continue
        if status is ResolutionStatus.UNKNOWN_SPEC:
            findings["unknown_spec"].append(link)
            continue
        if status is ResolutionStatus.DATED_URL or resolution.dated:
            findings["dated_url"].append(link)
            continue

        descriptor = resolution.descriptor
        target = crawled.get(descriptor.url, descriptor.shortname)
        if target is None or target.error:
            LOGGER.debug("No usable crawl of %s, anchors of %s not checked", descriptor.url, link)
            continue
        release = released.get(descriptor.url, descriptor.shortname) if released else None

        ids = target.fragment_ids()
        release_ids = release.fragment_ids() if release is not None else frozenset()
        heading_ids = {heading.get("id") for heading in target.headings}
        dfns = {dfn.get("id"): dfn for dfn in target.dfns}
        for anchor in anchors:
            target_link = f"{link}#{anchor}"
            dfn = dfns.get(anchor)
            if anchor not in ids:
                if anchor in release_ids and _TR_LINK.search(link):
                    findings["evolving_link"].append(target_link)
                else:
                    findings["broken_link"].append(target_link)
            elif anchor not in heading_ids and dfn is None:
                findings["not_dfn"].append(target_link)
            elif dfn is not None and dfn.get("access") != "public":
                findings["not_exported"].append(target_link)

    return BackrefsReport(**{name: tuple(values) for name, values in findings.items()})


def study_backrefs(
    results: Sequence[CrawlResult],
    release_results: Optional[Sequence[CrawlResult]] = None,
    resolver: Optional[SpecIdentityResolver] = None,
) -> Dict[str, BackrefsReport]:
    """Run anchor-level checks on every spec, keyed by spec URL.

    Args:
        results: Crawl of the latest (editor's draft) versions.
        release_results: Optional crawl of the published versions, used to
            tell evolving links apart from broken ones.
        resolver: Resolver to use, built from the results when omitted.
    """
    resolver = resolver or SpecIdentityResolver([result.spec for result in results])
    crawled = _ResultIndex(results)
    released = _ResultIndex(release_results) if release_results else None
    return {
        result.url: study_spec_backrefs(result, resolver, crawled, released)
        for result in results
    }
