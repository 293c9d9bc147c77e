"""Tests for refcrawl.merge module."""

import json

import pytest

from refcrawl.document import CrawlFileError, CrawlIndex, CrawlResult, SpecDescriptor
from refcrawl.merge import (
    MATCH_RULES,
    find_match,
    load_crawl_index,
    match_rules,
    merge_crawl_files,
    merge_crawl_results,
)


def _result(url, shortname, **kwargs):
    spec_fields = {key: kwargs.pop(key) for key in ("release_url", "html", "versions") if key in kwargs}
    return CrawlResult(spec=SpecDescriptor(url=url, shortname=shortname, **spec_fields), **kwargs)


class TestMatchRules:
    def test_order(self):
        assert [name for name, _ in MATCH_RULES] == ["url", "html", "latest", "shortname", "versions"]
        assert [name for name, _ in match_rules(match_title=True)][-1] == "title"

    def test_url(self):
        ref = _result("https://a.example/", "a")
        assert find_match(ref, [_result("https://a.example/", "other")]) == "url"

    def test_release_url(self):
        ref = _result("https://a.example/", "a", release_url="https://tr.example/a/")
        new = _result("https://a2.example/", "a2", release_url="https://tr.example/a/")
        assert find_match(ref, [new]) == "latest"

    def test_shortname(self):
        ref = _result("https://a.example/", "a")
        assert find_match(ref, [_result("https://b.example/", "a")]) == "shortname"

    def test_versions_overlap(self):
        ref = _result("https://a.example/", "a", versions=["https://v/1/", "https://v/2/"])
        new = _result("https://b.example/", "b", versions=["https://v/2/"])
        assert find_match(ref, [new]) == "versions"

    def test_title_only_when_enabled(self):
        ref = _result("https://a.example/", "a", title="Same")
        new = _result("https://b.example/", "b", title="Same")
        assert find_match(ref, [new]) is None
        assert find_match(ref, [new], match_rules(match_title=True)) == "title"

    def test_empty_values_never_match(self):
        ref = _result("https://a.example/", "")
        assert find_match(ref, [_result("https://b.example/", "")]) is None


class TestMergeCrawlResults:
    def _indices(self):
        new = CrawlIndex(
            results=[_result("https://b.example/", "b", title="B new")],
            title="Partial",
        )
        ref = CrawlIndex(
            results=[
                _result("https://c.example/", "c", title="C"),
                _result("https://b.example/", "b", title="B old", error="boom"),
                _result("https://a.example/", "a", title="A"),
            ],
            title="Full",
            description="Reference crawl",
        )
        return new, ref

    def test_replaces_matching_entries(self):
        new, ref = self._indices()
        merged = merge_crawl_results(new, ref)
        assert [result.url for result in merged.results] == [
            "https://a.example/",
            "https://b.example/",
            "https://c.example/",
        ]
        assert merged.find("https://b.example/").title == "B new"

    def test_stats_recomputed(self):
        new, ref = self._indices()
        assert ref.stats["errors"] == 1
        assert merge_crawl_results(new, ref).stats == {"crawled": 3, "errors": 0}

    def test_metadata(self):
        new, ref = self._indices()
        merged = merge_crawl_results(new, ref)
        assert merged.title == "Partial"
        assert merged.description == "Reference crawl"

    def test_idempotent(self):
        new, ref = self._indices()
        once = merge_crawl_results(new, ref)
        twice = merge_crawl_results(new, once)
        assert [result.to_dict() for result in twice.results] == [result.to_dict() for result in once.results]

    def test_new_entries_appended(self):
        new = CrawlIndex(results=[_result("https://z.example/", "z")])
        ref = CrawlIndex(results=[_result("https://a.example/", "a")])
        assert len(merge_crawl_results(new, ref).results) == 2


class TestMergeCrawlFiles:
    def test_files(self, tmp_path):
        new = CrawlIndex(results=[_result("https://b.example/", "b", title="B new")])
        ref = CrawlIndex(results=[_result("https://b.example/", "b", title="B old"), _result("https://a.example/", "a")])
        (tmp_path / "new.json").write_text(json.dumps(new.to_dict()))
        (tmp_path / "ref.json").write_text(json.dumps(ref.to_dict()))

        out = tmp_path / "out" / "index.json"
        merged = merge_crawl_files(tmp_path / "new.json", tmp_path / "ref.json", out)

        data = json.loads(out.read_text())
        assert data["stats"] == {"crawled": 2, "errors": 0}
        assert [item["url"] for item in data["results"]] == ["https://a.example/", "https://b.example/"]
        assert len(merged.results) == 2

    def test_input_not_a_crawl_index(self, tmp_path):
        path = tmp_path / "new.json"
        path.write_text(json.dumps([{"url": "https://a.example/"}]))
        with pytest.raises(CrawlFileError) as exc_info:
            load_crawl_index(path)
        assert str(exc_info.value) == f"{path}: Expected a JSON object, got list"
        with pytest.raises(CrawlFileError):
            merge_crawl_files(path, path, tmp_path / "out.json")
        assert not (tmp_path / "out.json").exists()
