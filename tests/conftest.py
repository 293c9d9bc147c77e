"""Shared fixtures: a small factory for crawl results."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import pytest

from refcrawl.document import CrawlResult, Reference, References, SpecDescriptor


def make_result(
    spec: SpecDescriptor,
    *,
    normative: Optional[List[Dict[str, Any]]] = None,
    informative: Optional[List[Dict[str, Any]]] = None,
    **kwargs: Any,
) -> CrawlResult:
    references = References(
        normative=[Reference(**ref) for ref in normative or []],
        informative=[Reference(**ref) for ref in informative or []],
    )
    kwargs.setdefault("title", spec.title or spec.shortname.upper())
    kwargs.setdefault("crawled_url", spec.crawl_url())
    return CrawlResult(spec=spec, references=references, **kwargs)


@pytest.fixture
def result_factory():
    return make_result
