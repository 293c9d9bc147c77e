"""Data structures representing tracked specs and their crawl results."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple

ERROR_TITLE = "[Could not be determined, see error]"
DEFAULT_CRAWL_TITLE = "Spec crawl"


def utc_now() -> str:
    """Current time as an ISO 8601 UTC timestamp."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


class CrawlFileError(ValueError):
    """Raised when a crawl result file does not hold a crawl index."""


@dataclass(slots=True)
class SeriesInfo:
    """Group of sequential levels of the same spec."""

    shortname: str
    current_specification: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"shortname": self.shortname}
        if self.current_specification:
            data["currentSpecification"] = self.current_specification
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SeriesInfo":
        return cls(
            shortname=data.get("shortname", ""),
            current_specification=data.get("currentSpecification"),
        )


@dataclass(slots=True)
class SpecDescriptor:
    """One tracked specification document."""

    url: str
    shortname: str = ""
    series: Optional[SeriesInfo] = None
    series_version: Optional[str] = None
    series_composition: str = "full"  # full, delta, fork
    nightly_url: Optional[str] = None
    release_url: Optional[str] = None
    title: Optional[str] = None
    html: Optional[str] = None
    versions: List[str] = field(default_factory=list)

    @property
    def series_shortname(self) -> str:
        if self.series and self.series.shortname:
            return self.series.shortname
        return self.shortname

    @property
    def is_current(self) -> bool:
        """Whether this spec is the current level of its series."""
        if not self.series or not self.series.current_specification:
            return True
        return self.series.current_specification == self.shortname

    def add_versions(self, *urls: str) -> None:
        """Record more URLs known to denote this spec. Never removes any."""
        for url in urls:
            if url and url not in self.versions:
                self.versions.append(url)

    def known_urls(self) -> List[str]:
        """The identifying URL, draft and release URLs, then known versions."""
        urls: List[str] = []
        for url in (self.url, self.nightly_url, self.release_url, *self.versions):
            if url and url not in urls:
                urls.append(url)
        return urls

    def crawl_url(self, published_version: bool = False) -> Optional[str]:
        """URL to fetch when crawling this spec."""
        if published_version:
            return self.release_url or self.nightly_url
        return self.nightly_url or self.url

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"url": self.url, "shortname": self.shortname}
        if self.series:
            data["series"] = self.series.to_dict()
        if self.series_version:
            data["seriesVersion"] = self.series_version
        if self.series_composition != "full":
            data["seriesComposition"] = self.series_composition
        if self.nightly_url:
            data["nightlyUrl"] = self.nightly_url
        if self.release_url:
            data["releaseUrl"] = self.release_url
        if self.title:
            data["title"] = self.title
        if self.html:
            data["html"] = self.html
        if self.versions:
            data["versions"] = list(self.versions)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SpecDescriptor":
        """Build a descriptor from flat or registry-style JSON."""
        nightly = data.get("nightly") or {}
        release = data.get("release") or {}
        series = data.get("series")
        nightly_url = data.get("nightlyUrl") or nightly.get("url")
        release_url = data.get("releaseUrl") or release.get("url") or data.get("latest")
        url = data.get("url") or nightly_url or release_url or ""
        return cls(
            url=url,
            shortname=data.get("shortname", ""),
            series=SeriesInfo.from_dict(series) if isinstance(series, dict) else None,
            series_version=data.get("seriesVersion"),
            series_composition=data.get("seriesComposition", "full"),
            nightly_url=nightly_url,
            release_url=release_url,
            title=data.get("title"),
            html=data.get("html"),
            versions=list(data.get("versions") or []),
        )


@dataclass(slots=True)
class Reference:
    """Bibliography entry of a spec."""

    name: str
    url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"name": self.name}
        if self.url:
            data["url"] = self.url
        return data


@dataclass(slots=True)
class References:
    """Normative and informative references of a spec."""

    normative: List[Reference] = field(default_factory=list)
    informative: List[Reference] = field(default_factory=list)

    def all(self) -> List[Reference]:
        return [*self.normative, *self.informative]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "normative": [ref.to_dict() for ref in self.normative],
            "informative": [ref.to_dict() for ref in self.informative],
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "References":
        data = data or {}
        return cls(
            normative=[_reference(ref) for ref in data.get("normative") or []],
            informative=[_reference(ref) for ref in data.get("informative") or []],
        )


def _reference(data: Dict[str, Any]) -> Reference:
    return Reference(name=data.get("name", ""), url=data.get("url"))


@dataclass(slots=True)
class CrawlResult:
    """Extraction outcome for one spec."""

    spec: SpecDescriptor
    crawled_url: Optional[str] = None
    date: Optional[str] = None
    title: Optional[str] = None
    links: Dict[str, List[str]] = field(default_factory=dict)
    references: References = field(default_factory=References)
    idl: Dict[str, Any] = field(default_factory=dict)
    css: Dict[str, Any] = field(default_factory=dict)
    dfns: List[Dict[str, Any]] = field(default_factory=list)
    ids: List[str] = field(default_factory=list)
    headings: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def url(self) -> str:
        return self.spec.url

    @property
    def shortname(self) -> str:
        return self.spec.shortname

    @property
    def display_title(self) -> str:
        return self.title or self.spec.title or self.spec.url

    @classmethod
    def failed(cls, spec: SpecDescriptor, error: str) -> "CrawlResult":
        return cls(
            spec=spec,
            crawled_url=spec.crawl_url(),
            date=utc_now(),
            title=ERROR_TITLE,
            error=error,
        )

    def with_error(self, error: str) -> "CrawlResult":
        return replace(self, error=error)

    def fragment_ids(self) -> FrozenSet[str]:
        """Ids of the document, without the document URL."""
        return frozenset(value.rsplit("#", 1)[-1] for value in self.ids)

    def to_dict(self) -> Dict[str, Any]:
        data = self.spec.to_dict()
        data.update(
            {
                "crawledUrl": self.crawled_url,
                "date": self.date,
                "title": self.display_title,
                "links": {url: {"anchors": list(anchors)} for url, anchors in self.links.items()},
                "references": self.references.to_dict(),
                "idl": self.idl,
                "css": self.css,
                "dfns": self.dfns,
                "ids": self.ids,
                "headings": self.headings,
            }
        )
        if self.error:
            data["error"] = self.error
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CrawlResult":
        links: Dict[str, List[str]] = {}
        for url, value in (data.get("links") or {}).items():
            if isinstance(value, dict):
                links[url] = list(value.get("anchors") or [])
            else:
                links[url] = list(value or [])
        return cls(
            spec=SpecDescriptor.from_dict(data),
            crawled_url=data.get("crawledUrl") or data.get("crawled"),
            date=data.get("date"),
            title=data.get("title"),
            links=links,
            references=References.from_dict(data.get("references") or data.get("refs")),
            idl=data.get("idl") or {},
            css=data.get("css") or {},
            dfns=list(data.get("dfns") or []),
            ids=list(data.get("ids") or []),
            headings=list(data.get("headings") or []),
            error=data.get("error"),
        )


@dataclass(slots=True)
class CrawlIndex:
    """Crawl result file: a set of results plus metadata."""

    results: List[CrawlResult] = field(default_factory=list)
    title: str = DEFAULT_CRAWL_TITLE
    description: str = ""
    date: str = field(default_factory=utc_now)
    options: Dict[str, Any] = field(default_factory=dict)
    type: str = "crawl"

    @property
    def stats(self) -> Dict[str, int]:
        """Counts computed from the results, never stored."""
        return {
            "crawled": len(self.results),
            "errors": sum(1 for result in self.results if result.error),
        }

    def sorted_results(self) -> List[CrawlResult]:
        return sorted(self.results, key=lambda result: result.url)

    def find(self, url: str) -> Optional[CrawlResult]:
        for result in self.results:
            if result.url == url:
                return result
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "title": self.title,
            "description": self.description,
            "date": self.date,
            "options": self.options,
            "stats": self.stats,
            "results": [result.to_dict() for result in self.sorted_results()],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CrawlIndex":
        """Raises CrawlFileError when the data is not shaped like a crawl result file."""
        if not isinstance(data, dict):
            raise CrawlFileError(f"Expected a JSON object, got {type(data).__name__}")
        items = data.get("results") or []
        if not isinstance(items, list) or not all(isinstance(item, dict) for item in items):
            raise CrawlFileError('Expected "results" to be a list of objects')
        return cls(
            results=[CrawlResult.from_dict(item) for item in items],
            title=data.get("title") or DEFAULT_CRAWL_TITLE,
            description=data.get("description") or "",
            date=data.get("date") or utc_now(),
            options=dict(data.get("options") or {}),
            type=data.get("type") or "crawl",
        )


@dataclass(frozen=True, slots=True)
class EquivalenceClass:
    """Set of URLs known to denote one logical document."""

    representative: str
    urls: FrozenSet[str]
    shortnames: Tuple[str, ...] = ()

    def __contains__(self, url: object) -> bool:
        return url in self.urls

    @classmethod
    def of(cls, urls: Iterable[str], shortnames: Iterable[str] = ()) -> "EquivalenceClass":
        members = frozenset(urls)
        return cls(
            representative=min(members),
            urls=members,
            shortnames=tuple(sorted(set(shortnames))),
        )
