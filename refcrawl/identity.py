"""Spec identity resolution.

Maps the many URL variants of a spec (editor's drafts, dated snapshots,
alternate hosts, renamed shortnames) onto the descriptors of the registry.

Example usage:

    from refcrawl.identity import SpecIdentityResolver, load_identity_tables

    resolver = SpecIdentityResolver(descriptors, load_identity_tables())
    resolution = resolver.resolve("https://www.w3.org/TR/2021/REC-css-color-4-20210101/")
    if resolution.resolved:
        print(resolution.descriptor.shortname)

Resolution never touches the network: it is a pure function of the URL, the
static tables and the descriptors given to the resolver.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from importlib import resources
from types import MappingProxyType
from typing import (
    Any,
    Callable,
    Dict,
    FrozenSet,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Set,
)

from .document import EquivalenceClass, SpecDescriptor

LOGGER = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# URL patterns
# -----------------------------------------------------------------------------

_INDEX_PAGE = re.compile(r"(index|Overview|cover)\.html$")
_WHATWG_PAGE = re.compile(r"spec\.whatwg\.org/.*")
_TR_SUBPAGE = re.compile(r"w3\.org/TR/(([^/]+/)?[^/]+)/.*$")
_TR_NO_SLASH = re.compile(r"w3\.org/TR/([^/]+)$")
_GITHUB_NO_SLASH = re.compile(r"w3c\.github\.io/([^/]+)$")
_DATED_TR = re.compile(r"w3\.org/TR/[0-9]{4}/[A-Z]+-(.*)-[0-9]{8}/?")
_DATED_LINK = re.compile(r"www\.w3\.org/TR/[0-9]{4}/[A-Z]+-(.+)-[0-9]{8}/")
_HTML_PAGE = re.compile(r"/[^/]*\.html$")
_LEVEL_SUFFIX = re.compile(r"(.+)-(\d+(?:\.\d+)?)")
_VALID_SHORTNAME = re.compile(r"[\w-]+|[\w-]*-\d+\.\d+", re.ASCII)

# Ordered: first matching rule wins.
_SHORTNAME_RULES: Sequence[tuple[re.Pattern[str], Callable[[re.Match[str]], str]]] = (
    (re.compile(r"^https?://(?:www\.)?w3\.org/TR/([^/]+)/$"), lambda m: m.group(1)),
    (re.compile(r"//(.+)\.spec\.whatwg\.org/?"), lambda m: m.group(1)),
    (re.compile(r"//tc39\.es/proposal-([^/]+)/$"), lambda m: f"tc39-{m.group(1)}"),
    (
        re.compile(r"https://www\.khronos\.org/registry/webgl/extensions/([^/]+)/$"),
        lambda m: m.group(1),
    ),
    (
        re.compile(r"/.*\.github\.io/([^/]+)/(extensions?)\.html$"),
        lambda m: f"{m.group(1)}-{m.group(2)}",
    ),
    (re.compile(r"/.*\.github\.io/(?:webappsec-)?([^/]+)/"), lambda m: m.group(1)),
    (re.compile(r"/drafts\.(?:csswg|fxtf|css-houdini)\.org/([^/]+)/"), lambda m: m.group(1)),
    (re.compile(r"/svgwg\.org/specs/(?:svg-)?([^/]+)/"), lambda m: f"svg-{m.group(1)}"),
)

# Links that look like specs. csswg.org hosts logs, wikis and trackers too.
_SPEC_URL_PATTERNS: Sequence[re.Pattern[str]] = (
    re.compile(r"spec\.whatwg\.org"),
    re.compile(r"www\.w3\.org/TR/[a-z0-9]"),
    re.compile(r"(?<!log)(?<!hg)(?<!test)(?<!wiki)\.csswg\.org(?!/issues)"),
    re.compile(r"\.fxtf\.org"),
    re.compile(r"\.css-houdini\.org"),
    re.compile(r"\.svgwg\.org"),
)
_GITHUB_IO = re.compile(r"\.github\.io")
_TEST_RESULTS = re.compile(r"w3c\.github\.io/test-results/")

# Narrower set of hosts where references are expected in the bibliography.
_REFERENCEABLE_PATTERNS: Sequence[re.Pattern[str]] = (
    re.compile(r"spec\.whatwg\.org"),
    re.compile(r"www\.w3\.org/TR/[a-z0-9]"),
)
_W3C_GITHUB_IO = re.compile(r"w3c\.github\.io")


class ShortnameError(ValueError):
    """Raised when no valid shortname can be derived from a URL."""

    def __init__(self, message: str, url: str = "") -> None:
        super().__init__(message)
        self.url = url


# -----------------------------------------------------------------------------
# Static tables
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class IdentityTables:
    """Read-only lookup tables used during resolution."""

    aliases: Mapping[str, str]
    outdated: Mapping[str, str]
    non_normative: FrozenSet[str]
    obsolete_dfns_model: FrozenSet[str] = frozenset()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IdentityTables":
        return cls(
            aliases=MappingProxyType(dict(data.get("aliases") or {})),
            outdated=MappingProxyType(dict(data.get("outdated") or {})),
            non_normative=frozenset(data.get("nonNormative") or []),
            obsolete_dfns_model=frozenset(data.get("obsoleteDfnsModel") or []),
        )


@lru_cache(maxsize=1)
def load_identity_tables() -> IdentityTables:
    """Load the tables shipped with the package (once per process)."""
    source = resources.files("refcrawl") / "data" / "shortnames.json"
    tables = IdentityTables.from_dict(json.loads(source.read_text(encoding="utf-8")))
    LOGGER.debug(
        "Loaded identity tables: %d aliases, %d outdated, %d non-normative",
        len(tables.aliases),
        len(tables.outdated),
        len(tables.non_normative),
    )
    return tables


# -----------------------------------------------------------------------------
# URL helpers
# -----------------------------------------------------------------------------


def canonicalize_url(
    url: str,
    *,
    dated_to_latest: bool = False,
    equivalents: Optional["EquivalenceMap"] = None,
) -> str:
    """Return the canonical form of a spec URL."""
    if equivalents is not None:
        return equivalents.representative(url)
    canon = url.split("#", 1)[0]
    if canon.startswith("http:"):
        canon = "https:" + canon[len("http:"):]
    canon = _INDEX_PAGE.sub("", canon)
    canon = _WHATWG_PAGE.sub("spec.whatwg.org/", canon)
    canon = _TR_SUBPAGE.sub(r"w3.org/TR/\1/", canon)
    canon = _TR_NO_SLASH.sub(r"w3.org/TR/\1/", canon)
    canon = _GITHUB_NO_SLASH.sub(r"w3c.github.io/\1/", canon)
    if dated_to_latest:
        canon = _DATED_TR.sub(r"w3.org/TR/\1/", canon)
    return canon


def canonicalizes_to(
    url: str,
    targets: str | Iterable[str],
    *,
    dated_to_latest: bool = False,
    equivalents: Optional["EquivalenceMap"] = None,
) -> bool:
    """True when url and one of the targets share the same canonical form."""
    if isinstance(targets, str):
        targets = [targets]
    canon = canonicalize_url(url, dated_to_latest=dated_to_latest, equivalents=equivalents)
    return any(
        canon == canonicalize_url(target, dated_to_latest=dated_to_latest, equivalents=equivalents)
        for target in targets
        if target
    )


def normalize_link(url: str) -> str:
    """Strip the fragment and page name of a link, ensure a trailing slash."""
    link = url.split("#", 1)[0]
    if link.endswith(".html"):
        link = _HTML_PAGE.sub("/", link)
    if not link.endswith("/"):
        link += "/"
    return link


def dated_shortname(url: str) -> Optional[str]:
    """Shortname embedded in a dated W3C publication URL, if any."""
    match = _DATED_LINK.search(normalize_link(url))
    return match.group(1) if match else None


def compute_shortname(url: str) -> str:
    """Derive a shortname from a spec URL using host-specific rules.

    Raises:
        ShortnameError: If no rule applies or the derived name is invalid.
    """
    name: Optional[str] = None
    for pattern, build in _SHORTNAME_RULES:
        match = pattern.search(url)
        if match:
            name = build(match)
            break
    if name is None:
        if "/" in url:
            raise ShortnameError(f"Cannot extract meaningful name from {url}", url)
        name = url
    if not _VALID_SHORTNAME.fullmatch(name):
        raise ShortnameError(
            f"Specification name contains unexpected characters: {name} (extracted from {url})",
            url,
        )
    return name


def match_spec_url(url: str) -> bool:
    """Whether a link looks like it targets a spec."""
    if any(pattern.search(url) for pattern in _SPEC_URL_PATTERNS):
        return True
    return bool(_GITHUB_IO.search(url)) and not _TEST_RESULTS.search(url)


def match_referenceable_spec_url(url: str) -> bool:
    """Whether a link targets a spec that should appear in the references."""
    if any(pattern.search(url) for pattern in _REFERENCEABLE_PATTERNS):
        return True
    return bool(_W3C_GITHUB_IO.search(url)) and not _TEST_RESULTS.search(url)


# -----------------------------------------------------------------------------
# Equivalence classes
# -----------------------------------------------------------------------------


class EquivalenceMap:
    """Union-find over canonical URLs; classes always partition the URLs."""

    def __init__(self) -> None:
        self._parent: Dict[str, str] = {}
        self._shortnames: Dict[str, Set[str]] = {}
        self._primary: Set[str] = set()
        self._classes: Optional[Dict[str, EquivalenceClass]] = None

    @classmethod
    def build(cls, descriptors: Iterable[SpecDescriptor]) -> "EquivalenceMap":
        equivalents = cls()
        for spec in descriptors:
            equivalents.add(*spec.known_urls(), shortname=spec.shortname, primary=spec.url)
        return equivalents

    @staticmethod
    def _key(url: str) -> str:
        return canonicalize_url(url, dated_to_latest=True)

    def _find(self, key: str) -> str:
        parent = self._parent.setdefault(key, key)
        if parent != key:
            parent = self._find(parent)
            self._parent[key] = parent
        return parent

    def add(self, *urls: str, shortname: Optional[str] = None, primary: Optional[str] = None) -> None:
        """Declare all urls equivalent (merging any existing classes)."""
        keys = [self._key(url) for url in urls if url]
        if not keys:
            return
        self._classes = None
        root = self._find(keys[0])
        for key in keys[1:]:
            other = self._find(key)
            if other != root:
                self._parent[other] = root
        if shortname:
            self._shortnames.setdefault(keys[0], set()).add(shortname)
        if primary:
            self._primary.add(self._key(primary))

    def same(self, first: str, second: str) -> bool:
        return self.representative(first) == self.representative(second)

    def representative(self, url: str) -> str:
        key = self._key(url)
        if key not in self._parent:
            return key
        return self._index()[self._find(key)].representative

    def class_of(self, url: str) -> Optional[EquivalenceClass]:
        key = self._key(url)
        if key not in self._parent:
            return None
        return self._index()[self._find(key)]

    def classes(self) -> List[EquivalenceClass]:
        return sorted(self._index().values(), key=lambda item: item.representative)

    def _index(self) -> Dict[str, EquivalenceClass]:
        if self._classes is None:
            members: Dict[str, Set[str]] = {}
            names: Dict[str, Set[str]] = {}
            for key in list(self._parent):
                root = self._find(key)
                members.setdefault(root, set()).add(key)
                names.setdefault(root, set()).update(self._shortnames.get(key, ()))
            index = {}
            for root, urls in members.items():
                primaries = urls & self._primary
                index[root] = EquivalenceClass(
                    representative=min(primaries or urls),
                    urls=frozenset(urls),
                    shortnames=tuple(sorted(names[root])),
                )
            self._classes = index
        return self._classes


# -----------------------------------------------------------------------------
# Resolver
# -----------------------------------------------------------------------------


class ResolutionStatus(str, Enum):
    RESOLVED = "resolved"
    SELF = "self"
    OUTDATED_SPEC = "outdatedSpec"
    UNKNOWN_SPEC = "unknownSpec"
    DATED_URL = "datedUrl"
    NON_NORMATIVE = "nonNormative"


@dataclass(frozen=True)
class Resolution:
    """Outcome of resolving one link."""

    url: str
    status: ResolutionStatus
    shortname: Optional[str] = None
    descriptor: Optional[SpecDescriptor] = None
    dated: bool = False
    replacement: Optional[str] = None

    @property
    def resolved(self) -> bool:
        return self.status is ResolutionStatus.RESOLVED


class SpecIdentityResolver:
    """Resolve raw links to spec descriptors."""

    def __init__(
        self,
        descriptors: Iterable[SpecDescriptor],
        tables: Optional[IdentityTables] = None,
        equivalents: Optional[EquivalenceMap] = None,
    ) -> None:
        self.descriptors: List[SpecDescriptor] = list(descriptors)
        self.tables = tables or load_identity_tables()
        self.equivalents = equivalents or EquivalenceMap.build(self.descriptors)

        self._by_url: Dict[str, SpecDescriptor] = {}
        self._by_shortname: Dict[str, SpecDescriptor] = {}
        self._by_series: Dict[str, SpecDescriptor] = {}
        self._by_class: Dict[str, SpecDescriptor] = {}
        for spec in self.descriptors:
            for url in (spec.url, spec.release_url, spec.nightly_url):
                if url:
                    self._by_url.setdefault(normalize_link(url), spec)
            self._by_shortname.setdefault(spec.shortname, spec)
            if spec.is_current:
                self._by_series.setdefault(spec.series_shortname, spec)
            self._by_class.setdefault(self.equivalents.representative(spec.url), spec)
        for series, spec in self._by_series.items():
            self._by_url.setdefault(f"https://www.w3.org/TR/{series}/", spec)

    def find_by_shortname(self, shortname: str) -> Optional[SpecDescriptor]:
        """Spec with that shortname, else the current spec of that series."""
        return self._by_shortname.get(shortname) or self._by_series.get(shortname)

    def resolve(self, url: str, source: Optional[SpecDescriptor] = None) -> Resolution:
        """Determine which spec a link denotes.

        Args:
            url: Raw link found in a document.
            source: Spec the link was found in, used to suppress self links.

        Returns:
            Resolution carrying either the descriptor or the anomaly category.
        """
        link = normalize_link(url)
        if source is not None and self._is_own_url(link, source):
            return Resolution(url, ResolutionStatus.SELF, source.shortname, source)

        dated = dated_shortname(link)
        if dated is not None and source is not None and dated in (
            source.shortname,
            source.series_shortname,
        ):
            return Resolution(url, ResolutionStatus.SELF, dated, source, dated=True)

        exact = self._exact(link)
        if exact is not None:
            shortname = exact.shortname
        elif dated is not None:
            shortname = dated
        else:
            try:
                shortname = compute_shortname(link)
            except ShortnameError as exc:
                LOGGER.debug("Unknown spec link %s: %s", url, exc)
                return Resolution(url, ResolutionStatus.UNKNOWN_SPEC)

        shortname = self.tables.aliases.get(shortname, shortname)
        if shortname in self.tables.outdated:
            return Resolution(
                url,
                ResolutionStatus.OUTDATED_SPEC,
                shortname,
                dated=dated is not None,
                replacement=self.tables.outdated[shortname],
            )

        descriptor = self.find_by_shortname(shortname) or exact
        if descriptor is None and dated is not None:
            descriptor = self._find_by_level(shortname)
        if descriptor is None:
            if shortname in self.tables.non_normative:
                return Resolution(url, ResolutionStatus.NON_NORMATIVE, shortname)
            status = ResolutionStatus.DATED_URL if dated is not None else ResolutionStatus.UNKNOWN_SPEC
            return Resolution(url, status, shortname, dated=dated is not None)

        if source is not None and (
            descriptor is source
            or shortname in (source.shortname, source.series_shortname)
        ):
            return Resolution(url, ResolutionStatus.SELF, shortname, descriptor, dated=dated is not None)
        return Resolution(url, ResolutionStatus.RESOLVED, shortname, descriptor, dated=dated is not None)

    def _exact(self, link: str) -> Optional[SpecDescriptor]:
        spec = self._by_url.get(link)
        if spec is None:
            spec = self._by_class.get(self.equivalents.representative(link))
        return spec

    def _find_by_level(self, shortname: str) -> Optional[SpecDescriptor]:
        match = _LEVEL_SUFFIX.fullmatch(shortname)
        if not match:
            return None
        return self.find_by_shortname(match.group(1))

    def _is_own_url(self, link: str, source: SpecDescriptor) -> bool:
        if any(normalize_link(url) == link for url in source.known_urls()):
            return True
        return self.equivalents.same(link, source.url)


# -----------------------------------------------------------------------------
# Series levels
# -----------------------------------------------------------------------------


def spec_level(spec: Any) -> float:
    """Level of a spec within its series (0 when unversioned)."""
    spec = getattr(spec, "spec", spec)
    if spec.series_version:
        try:
            return float(spec.series_version)
        except ValueError:
            pass
    match = _LEVEL_SUFFIX.fullmatch(spec.shortname)
    return float(match.group(2)) if match else 0.0


def is_latest_level_that_passes(
    spec: Any,
    specs: Sequence[Any],
    predicate: Optional[Callable[[Any], bool]] = None,
) -> bool:
    """True if spec is the highest level of its series passing predicate.

    Items may be descriptors or crawl results. Delta specs lose against a
    full spec of the same level; among full specs of one level, the first in
    the list wins.
    """
    predicate = predicate or (lambda _: True)
    if not predicate(spec):
        return False
    descriptor = getattr(spec, "spec", spec)
    series = descriptor.series_shortname
    level = spec_level(descriptor)
    position = next((i for i, item in enumerate(specs) if item is spec), len(specs))

    for index, other in enumerate(specs):
        if other is spec:
            continue
        other_descriptor = getattr(other, "spec", other)
        if other_descriptor.series_shortname != series:
            continue
        if other_descriptor.series_composition == "delta":
            continue
        if not predicate(other):
            continue
        other_level = spec_level(other_descriptor)
        if other_level > level:
            return False
        if other_level == level and (
            descriptor.series_composition == "delta" or index < position
        ):
            return False
    return True
