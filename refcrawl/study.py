"""Cross-reference analysis of a crawl.

Produces one anomaly report per spec. Every check is evaluated for every
spec; ``AnomalyReport.ok`` is derived from the check fields, so a new check
only needs to be declared once to take part in it.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple, Union

from .backrefs import BackrefsReport, study_backrefs
from .dfns import check_spec_definitions, has_missing_dfns
from .document import CrawlIndex, CrawlResult, Reference
from .identity import (
    EquivalenceMap,
    IdentityTables,
    SpecIdentityResolver,
    canonicalizes_to,
    is_latest_level_that_passes,
    load_identity_tables,
    match_referenceable_spec_url,
)
from .merge import load_crawl_index

LOGGER = logging.getLogger(__name__)

_WEBIDL_REF = re.compile(r"^WebIDL", re.IGNORECASE)
WEBIDL_SHORTNAMES = ("webidl", "WebIDL-1", "WebIDL")


def _check(key: str, fails: Callable[[Any], bool] = bool) -> dict:
    return {"key": key, "check": fails}


def _xrefs_fail(report: Optional[BackrefsReport]) -> bool:
    return report is not None and not report.ok


@dataclass(frozen=True)
class AnomalyReport:
    """Findings for one spec. Created once per analysis run."""

    error: Optional[str] = field(default=None, metadata=_check("error"))
    no_normative_refs: bool = field(default=False, metadata=_check("noNormativeRefs"))
    no_ref_to_webidl: bool = field(default=False, metadata=_check("noRefToWebIDL"))
    has_invalid_idl: bool = field(default=False, metadata=_check("hasInvalidIdl"))
    has_obsolete_idl: bool = field(default=False, metadata=_check("hasObsoleteIdl"))
    unknown_exposed_names: Tuple[str, ...] = field(default=(), metadata=_check("unknownExposedNames"))
    unknown_idl_names: Tuple[str, ...] = field(default=(), metadata=_check("unknownIdlNames"))
    redefined_idl_names: Tuple[dict, ...] = field(default=(), metadata=_check("redefinedIdlNames"))
    missing_webidl_ref: Tuple[dict, ...] = field(default=(), metadata=_check("missingWebIdlRef"))
    missing_dfns: Dict[str, Any] = field(
        default_factory=dict, metadata=_check("missingDfns", has_missing_dfns)
    )
    missing_link_ref: Tuple[str, ...] = field(default=(), metadata=_check("missingLinkRef"))
    inconsistent_ref: Tuple[dict, ...] = field(default=(), metadata=_check("inconsistentRef"))
    xrefs: Optional[BackrefsReport] = field(default=None, metadata=_check("xrefs", _xrefs_fail))
    referenced_by: Dict[str, List[dict]] = field(default_factory=dict, metadata={"key": "referencedBy"})

    @property
    def ok(self) -> bool:
        for f in fields(self):
            fails = f.metadata.get("check")
            if fails is not None and fails(getattr(self, f.name)):
                return False
        return True

    def failed_checks(self) -> List[str]:
        return [
            f.metadata["key"]
            for f in fields(self)
            if f.metadata.get("check") is not None and f.metadata["check"](getattr(self, f.name))
        ]

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, BackrefsReport):
                value = value.to_dict()
            elif isinstance(value, tuple):
                value = list(value)
            data[f.metadata["key"]] = value
        data["ok"] = self.ok
        data["failedChecks"] = self.failed_checks()
        return data


@dataclass(slots=True)
class SpecStudy:
    """Anomaly report of one spec with identifying info."""

    title: str
    shortname: str
    url: str
    report: AnomalyReport
    crawled_url: Optional[str] = None
    date: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "shortname": self.shortname,
            "url": self.url,
            "crawledUrl": self.crawled_url,
            "date": self.date,
            "report": self.report.to_dict(),
        }


# -----------------------------------------------------------------------------
# Internal helpers
# -----------------------------------------------------------------------------


def _spec_info(result: CrawlResult) -> Dict[str, Any]:
    return {"url": result.url, "title": result.display_title, "crawledUrl": result.crawled_url}


def _idl_names(result: CrawlResult) -> Dict[str, Any]:
    return result.idl.get("idlNames") or {}


class _Corpus:
    """Indices shared by all per-spec checks."""

    def __init__(self, results: Sequence[CrawlResult], equivalents: EquivalenceMap) -> None:
        self.equivalents = equivalents
        # Errored specs contribute no definitions
        healthy = [result for result in results if not result.error]

        definers: Dict[str, List[CrawlResult]] = {}
        self.known_global_names: Set[str] = set()
        for result in healthy:
            for name in _idl_names(result):
                definers.setdefault(name, []).append(result)
            self.known_global_names.update((result.idl.get("globals") or {}).keys())
        self.known_idl_names: Set[str] = set(definers)
        self.idl_owners: Dict[str, List[CrawlResult]] = {
            name: [spec for spec in specs if is_latest_level_that_passes(spec, specs)]
            for name, specs in definers.items()
        }

        self.webidl: Optional[CrawlResult] = None
        for shortname in WEBIDL_SHORTNAMES:
            self.webidl = next((r for r in results if r.shortname == shortname), None)
            if self.webidl is not None:
                break

        self._normative_reps: Dict[str, Set[str]] = {}
        self._informative_reps: Dict[str, Set[str]] = {}
        for result in results:
            self._normative_reps[result.url] = self._reps(result.references.normative)
            self._informative_reps[result.url] = self._reps(result.references.informative)

    def _reps(self, refs: Iterable[Reference]) -> Set[str]:
        return {self.equivalents.representative(ref.url) for ref in refs if ref.url}

    def spec_reps(self, result: CrawlResult) -> Set[str]:
        return {self.equivalents.representative(url) for url in result.spec.known_urls()}

    def cites(self, citing: CrawlResult, cited: CrawlResult, normative: bool = True) -> bool:
        reps = (self._normative_reps if normative else self._informative_reps)[citing.url]
        return bool(reps & self.spec_reps(cited))


def _no_ref_to_webidl(result: CrawlResult, corpus: _Corpus) -> bool:
    idl = result.idl
    if result is corpus.webidl:
        return False
    if not (idl.get("bareMessage") or idl.get("idlNames") or idl.get("idlExtendedNames")):
        return False
    for ref in result.references.normative:
        if _WEBIDL_REF.match(ref.name or ""):
            return False
        if corpus.webidl is not None and ref.url and canonicalizes_to(
            ref.url, corpus.webidl.spec.known_urls(), equivalents=corpus.equivalents
        ):
            return False
    return True


def _missing_webidl_ref(result: CrawlResult, corpus: _Corpus) -> List[dict]:
    missing = []
    for name in result.idl.get("externalDependencies") or []:
        if name not in corpus.known_idl_names:
            continue
        owners = corpus.idl_owners[name]
        if any(corpus.cites(result, owner) for owner in owners):
            continue
        missing.append({"name": name, "refs": [_spec_info(owner) for owner in owners]})
    return missing


def _body_spec_links(result: CrawlResult) -> List[str]:
    return [link for link in result.links if match_referenceable_spec_url(link)]


def _missing_link_ref(result: CrawlResult, corpus: _Corpus) -> List[str]:
    refs = [ref for ref in result.references.all() if ref.url]
    own_urls = result.spec.known_urls()
    missing = []
    for link in _body_spec_links(result):
        if any(canonicalizes_to(ref.url, link, equivalents=corpus.equivalents) for ref in refs):
            continue
        if canonicalizes_to(link, own_urls, equivalents=corpus.equivalents):
            continue
        missing.append(link)
    return missing


def _inconsistent_ref(result: CrawlResult, corpus: _Corpus) -> List[dict]:
    refs = [ref for ref in result.references.all() if ref.url]
    inconsistent = []
    for link in _body_spec_links(result):
        if any(canonicalizes_to(ref.url, link) for ref in refs):
            continue
        ref = next(
            (r for r in refs if canonicalizes_to(r.url, link, equivalents=corpus.equivalents)),
            None,
        )
        if ref is not None:
            inconsistent.append({"link": link, "ref": ref.to_dict()})
    return inconsistent


def _study_spec(
    result: CrawlResult,
    corpus: _Corpus,
    sorted_results: Sequence[CrawlResult],
    xrefs: Optional[BackrefsReport],
    tables: IdentityTables,
) -> AnomalyReport:
    idl = result.idl
    idl_names = list(_idl_names(result))
    exposed = list((idl.get("exposed") or {}).keys())
    deps = idl.get("externalDependencies") or []
    return AnomalyReport(
        error=result.error,
        no_normative_refs=not result.references.normative,
        no_ref_to_webidl=_no_ref_to_webidl(result, corpus),
        has_invalid_idl=bool(not idl.get("idlNames") and idl.get("bareMessage")),
        has_obsolete_idl=bool(idl.get("hasObsoleteIdl")),
        unknown_exposed_names=tuple(sorted(n for n in exposed if n not in corpus.known_global_names)),
        unknown_idl_names=tuple(sorted(n for n in deps if n not in corpus.known_idl_names)),
        redefined_idl_names=tuple(
            {
                "name": name,
                "refs": [_spec_info(o) for o in corpus.idl_owners[name] if o.url != result.url],
            }
            for name in idl_names
            if len(corpus.idl_owners.get(name, ())) > 1
        ),
        missing_webidl_ref=tuple(_missing_webidl_ref(result, corpus)),
        missing_dfns=check_spec_definitions(result, tables=tables),
        missing_link_ref=tuple(_missing_link_ref(result, corpus)),
        inconsistent_ref=tuple(_inconsistent_ref(result, corpus)),
        xrefs=xrefs,
        referenced_by={
            "normative": [_spec_info(s) for s in sorted_results if corpus.cites(s, result)],
            "informative": [
                _spec_info(s) for s in sorted_results if corpus.cites(s, result, normative=False)
            ],
        },
    )


def _included(result: CrawlResult, include: Optional[Sequence[str]]) -> bool:
    if not include:
        return True
    return any(value in (result.url, result.spec.html, result.shortname) for value in include)


# -----------------------------------------------------------------------------
# Public API
# -----------------------------------------------------------------------------


def study_crawl_results(
    results: Sequence[CrawlResult],
    *,
    release_results: Optional[Sequence[CrawlResult]] = None,
    include: Optional[Sequence[str]] = None,
    tables: Optional[IdentityTables] = None,
) -> List[SpecStudy]:
    """Analyze crawl results and return one study per spec, sorted by title.

    Args:
        results: Full (merged) crawl results.
        release_results: Optional crawl of published versions.
        include: Optional URLs, alternate URLs or shortnames of the specs to
            report on. All specs are still used as context.
        tables: Identity tables, the packaged ones by default.
    """
    tables = tables or load_identity_tables()
    equivalents = EquivalenceMap.build(result.spec for result in results)
    resolver = SpecIdentityResolver([result.spec for result in results], tables, equivalents)
    corpus = _Corpus(results, equivalents)
    sorted_results = sorted(results, key=lambda result: result.display_title.upper())
    xrefs = study_backrefs(sorted_results, release_results, resolver)

    studies = []
    for result in sorted_results:
        if not _included(result, include):
            continue
        report = _study_spec(result, corpus, sorted_results, xrefs.get(result.url), tables)
        if not report.ok:
            LOGGER.debug("%s: %s", result.url, ", ".join(report.failed_checks()))
        studies.append(
            SpecStudy(
                title=result.display_title,
                shortname=result.shortname,
                url=result.url,
                report=report,
                crawled_url=result.crawled_url,
                date=result.date,
            )
        )
    LOGGER.info(
        "Studied %d specs: %d with anomalies",
        len(studies),
        sum(1 for study in studies if not study.report.ok),
    )
    return studies


def study_crawl(
    index: CrawlIndex,
    *,
    release_index: Optional[CrawlIndex] = None,
    include: Optional[Sequence[str]] = None,
    tables: Optional[IdentityTables] = None,
) -> Dict[str, Any]:
    """Study a crawl index and return the study file contents."""
    studies = study_crawl_results(
        index.results,
        release_results=release_index.results if release_index else None,
        include=include,
        tables=tables,
    )
    stats = index.stats
    return {
        "type": "study",
        "title": index.title,
        "description": index.description,
        "date": index.date,
        "stats": {
            "crawled": stats["crawled"],
            "errors": stats["errors"],
            "studied": len(studies),
        },
        "results": [study.to_dict() for study in studies],
    }


def study_crawl_file(
    path: Union[str, Path],
    *,
    release_path: Optional[Union[str, Path]] = None,
    include: Optional[Sequence[str]] = None,
) -> Dict[str, Any]:
    """Study a crawl result file."""
    index = load_crawl_index(path)
    release_index = load_crawl_index(release_path) if release_path else None
    return study_crawl(index, release_index=release_index, include=include)
