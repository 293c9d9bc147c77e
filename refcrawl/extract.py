"""Document extraction.

The default extractor reads the facts every spec exposes in its markup
(title, links, references, ids, headings, definitions). IDL and CSS extracts
need dedicated parsers; plug one in with a ``module:function`` extractor path
that receives a :class:`LoadedDocument` and returns the same dict shape.
"""

from __future__ import annotations

import importlib
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup
from bs4.element import Tag

from .document import CrawlResult, References, SpecDescriptor, utc_now

LOGGER = logging.getLogger(__name__)

HEADING_TAGS = ["h1", "h2", "h3", "h4", "h5", "h6"]
_WHITESPACE = re.compile(r"\s+")
_REF_NAME_STRIP = re.compile(r"[\[\] \n]")
_NON_NORMATIVE = re.compile(r"non-normative", re.IGNORECASE)
_DFN_FOR_SPLIT = re.compile(r",(?![^(]*\))")

Extractor = Callable[["LoadedDocument"], Any]


class ExtractionError(Exception):
    """Raised when a document cannot be turned into an extract."""

    def __init__(self, message: str, url: str = "") -> None:
        super().__init__(message)
        self.url = url


@dataclass(slots=True)
class LoadedDocument:
    """HTML document as loaded by a crawl unit."""

    url: str
    html: str
    status: int = 200
    headers: Dict[str, str] = field(default_factory=dict)
    _soup: Optional[BeautifulSoup] = field(default=None, repr=False, compare=False)

    @property
    def soup(self) -> BeautifulSoup:
        if self._soup is None:
            self._soup = BeautifulSoup(self.html, "html.parser")
        return self._soup

    @property
    def page_url(self) -> str:
        return self.url.split("#", 1)[0]

    @property
    def generator(self) -> Optional[str]:
        """Well-known generator of the document ("respec", "bikeshed")."""
        meta = self.soup.find("meta", attrs={"name": "generator"})
        content = (meta.get("content") or "").lower() if isinstance(meta, Tag) else ""
        for name in ("respec", "bikeshed"):
            if name in content:
                return name
        if self.soup.find("script", src=re.compile(r"respec", re.IGNORECASE)):
            return "respec"
        return None


def _text(node: Tag) -> str:
    return _WHITESPACE.sub(" ", node.get_text()).strip()


# -----------------------------------------------------------------------------
# Extraction helpers
# -----------------------------------------------------------------------------


def extract_title(soup: BeautifulSoup) -> Optional[str]:
    node = soup.find("title") or soup.find("h1")
    if node is None:
        return None
    return _text(node) or None


def extract_links(soup: BeautifulSoup) -> Dict[str, List[str]]:
    """Absolute links of the document, grouped by page, with their anchors."""
    links: Dict[str, List[str]] = {}
    for node in soup.select("a[href^=http]"):
        # The head links to the spec itself, its repository and the like
        if node.find_parent(class_="head") is not None:
            continue
        page, _, anchor = node["href"].partition("#")
        anchors = links.setdefault(page, [])
        if anchor and anchor not in anchors:
            anchors.append(anchor)
    return dict(sorted(links.items()))


def _reference_list(soup: BeautifulSoup, kind: str) -> Optional[Tag]:
    for selector in (f"#{kind} + dl", f"#{kind}-references > dl", f"#{kind}-references dl"):
        node = soup.select_one(selector)
        if node is not None:
            return node
    pattern = re.compile(rf"{kind}\s+references", re.IGNORECASE)
    for heading in soup.find_all(HEADING_TAGS):
        if pattern.search(_text(heading)):
            return heading.find_next("dl")
    return None


def _parse_reference_list(node: Tag, base_url: str, split_informative: bool) -> tuple[list, list]:
    default: List[Dict[str, Any]] = []
    informative: List[Dict[str, Any]] = []
    for dt in node.find_all("dt", recursive=False):
        name = _REF_NAME_STRIP.sub("", dt.get_text())
        desc = dt.find_next_sibling("dd")
        if not name or desc is None:
            continue
        ref: Dict[str, Any] = {"name": name}
        anchor = desc.find("a", href=re.compile(r"://"))
        if anchor is not None:
            ref["url"] = urljoin(base_url, anchor["href"])
        if split_informative and _NON_NORMATIVE.search(desc.get_text()):
            informative.append(ref)
        else:
            default.append(ref)
    return default, informative


def extract_references(soup: BeautifulSoup, base_url: str) -> Dict[str, List[Dict[str, Any]]]:
    references: Dict[str, List[Dict[str, Any]]] = {"normative": [], "informative": []}
    normative = _reference_list(soup, "normative")
    if normative is not None:
        refs, moved = _parse_reference_list(normative, base_url, split_informative=True)
        references["normative"].extend(refs)
        references["informative"].extend(moved)
    informative = _reference_list(soup, "informative")
    if informative is not None:
        refs, _ = _parse_reference_list(informative, base_url, split_informative=False)
        references["informative"].extend(refs)
    return references


def extract_ids(soup: BeautifulSoup, page_url: str) -> List[str]:
    ids = []
    for node in soup.find_all(attrs={"id": True}):
        ids.append(f"{page_url}#{node['id']}")
    for node in soup.find_all("a", attrs={"name": True}):
        ids.append(f"{page_url}#{node['name']}")
    return sorted(set(ids))


def extract_headings(soup: BeautifulSoup, page_url: str) -> List[Dict[str, Any]]:
    headings = []
    for node in soup.find_all(HEADING_TAGS):
        heading_id = node.get("id")
        if not heading_id and node.parent is not None and node.parent.name == "section":
            heading_id = node.parent.get("id")
        if not heading_id:
            continue
        headings.append(
            {
                "id": heading_id,
                "href": f"{page_url}#{heading_id}",
                "title": _text(node),
                "level": int(node.name[1]),
            }
        )
    return headings


def _dfn_access(node: Tag, dfn_type: str) -> str:
    if node.has_attr("data-export"):
        return "public"
    if node.has_attr("data-noexport"):
        return "private"
    return "private" if dfn_type == "dfn" else "public"


def extract_dfns(soup: BeautifulSoup, page_url: str) -> List[Dict[str, Any]]:
    dfns = []
    for node in soup.select("dfn[id], [data-dfn-type][id]"):
        dfn_type = node.get("data-dfn-type") or "dfn"
        if node.has_attr("data-lt"):
            linking_text = [text.strip() for text in node["data-lt"].split("|") if text.strip()]
        else:
            linking_text = [_text(node)]
        dfn_for = node.get("data-dfn-for") or ""
        dfns.append(
            {
                "id": node["id"],
                "href": f"{page_url}#{node['id']}",
                "linkingText": linking_text,
                "localLinkingText": [],
                "type": dfn_type,
                "for": [value.strip() for value in _DFN_FOR_SPLIT.split(dfn_for) if value.strip()],
                "access": _dfn_access(node, dfn_type),
                "informative": node.find_parent(class_=["informative", "note", "example"]) is not None,
            }
        )
    return dfns


# -----------------------------------------------------------------------------
# Public API
# -----------------------------------------------------------------------------


def extract(document: LoadedDocument) -> Dict[str, Any]:
    """Default extractor.

    Raises:
        ExtractionError: If the document holds no markup.
    """
    if not document.html or not document.html.strip():
        raise ExtractionError(f"Empty document at {document.url}", document.url)
    soup = document.soup
    if soup.find(True) is None:
        raise ExtractionError(f"No markup found at {document.url}", document.url)
    page_url = document.page_url
    return {
        "title": extract_title(soup),
        "links": extract_links(soup),
        "references": extract_references(soup, page_url),
        "idl": {},
        "css": {},
        "dfns": extract_dfns(soup, page_url),
        "ids": extract_ids(soup, page_url),
        "headings": extract_headings(soup, page_url),
    }


def load_extractor(path: Optional[str] = None) -> Extractor:
    """Resolve a ``module:function`` path, or the default extractor."""
    if not path:
        return extract
    module_name, _, attr = path.partition(":")
    if not attr:
        raise ExtractionError(f"Extractor path {path!r} must look like 'module:function'")
    try:
        module = importlib.import_module(module_name)
        return getattr(module, attr)
    except (ImportError, AttributeError) as exc:
        raise ExtractionError(f"Cannot load extractor {path!r}: {exc}") from exc


def build_result(spec: SpecDescriptor, document: LoadedDocument, data: Any) -> CrawlResult:
    """Turn an extract into a crawl result.

    Raises:
        ExtractionError: If the extract does not have the expected shape.
    """
    if not isinstance(data, dict):
        raise ExtractionError(
            f"Extractor returned {type(data).__name__} instead of a dict", document.url
        )
    links = data.get("links") or {}
    return CrawlResult(
        spec=spec,
        crawled_url=document.url,
        date=utc_now(),
        title=data.get("title") or spec.title,
        links={
            url: list(value.get("anchors") or []) if isinstance(value, dict) else list(value or [])
            for url, value in links.items()
        },
        references=References.from_dict(data.get("references")),
        idl=data.get("idl") or {},
        css=data.get("css") or {},
        dfns=list(data.get("dfns") or []),
        ids=list(data.get("ids") or []),
        headings=list(data.get("headings") or []),
    )
