from __future__ import annotations

import json

import pytest

from refcrawl import mcp_server
from refcrawl.document import CrawlIndex, CrawlResult, SpecDescriptor
from refcrawl.registry import SpecListError


def _write_index(path, *shortnames) -> str:
    index = CrawlIndex(
        results=[
            CrawlResult(spec=SpecDescriptor(url=f"https://example.org/{name}/", shortname=name), title=name.upper())
            for name in shortnames
        ]
    )
    path.write_text(json.dumps(index.to_dict()), encoding="utf-8")
    return str(path)


@pytest.mark.asyncio
async def test_resolve_spec_url(tmp_path) -> None:
    crawl_path = _write_index(tmp_path / "index.json", "dom")
    data = json.loads(
        await mcp_server.resolve_spec_url(
            urls=["https://example.org/dom/#x", "https://www.w3.org/TR/no-such-spec/"],
            crawl_path=crawl_path,
        )
    )
    assert [entry["status"] for entry in data] == ["resolved", "unknownSpec"]
    assert data[0]["spec"]["shortname"] == "dom"


@pytest.mark.asyncio
async def test_resolve_spec_url_missing_registry(tmp_path) -> None:
    data = json.loads(await mcp_server.resolve_spec_url(urls=["x"], registry=str(tmp_path / "nope.json")))
    assert data["error"].startswith("Could not read specs")


@pytest.mark.asyncio
async def test_study_only_failing(tmp_path) -> None:
    crawl_path = _write_index(tmp_path / "index.json", "a", "b")
    data = json.loads(await mcp_server.study(crawl_path=crawl_path, specs=["a"], only_failing=True))
    assert data["type"] == "study"
    assert [entry["shortname"] for entry in data["results"]] == ["a"]


@pytest.mark.asyncio
async def test_study_missing_file(tmp_path) -> None:
    data = json.loads(await mcp_server.study(crawl_path=str(tmp_path / "nope.json")))
    assert "error" in data
    assert data["crawl_path"].endswith("nope.json")


@pytest.mark.asyncio
async def test_merge(tmp_path) -> None:
    new_path = _write_index(tmp_path / "new.json", "b")
    ref_path = _write_index(tmp_path / "ref.json", "a", "b")
    out_path = str(tmp_path / "out.json")
    data = json.loads(await mcp_server.merge(new_path=new_path, ref_path=ref_path, out_path=out_path))
    assert data == {"output": out_path, "stats": {"crawled": 2, "errors": 0}}


@pytest.mark.asyncio
async def test_crawl_forwards_options(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict = {}

    async def fake_crawl_specs_async(specs, options, *, registry=()):
        captured["specs"] = specs
        captured["options"] = options
        return CrawlIndex(results=[CrawlResult(spec=SpecDescriptor(url="https://example.org/a/", shortname="a"))])

    monkeypatch.setattr(mcp_server, "crawl_specs_async", fake_crawl_specs_async)

    data = json.loads(await mcp_server.crawl(specs=["a"], timeout=5.0, published_version=True))

    assert captured["specs"] == ["a"]
    assert captured["options"].timeout == 5.0
    assert captured["options"].published_version is True
    assert data["stats"] == {"crawled": 1, "errors": 0}


@pytest.mark.asyncio
async def test_crawl_invalid_spec(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_crawl_specs_async(specs, options, *, registry=()):
        raise SpecListError("Spec nope can neither be found", "nope")

    monkeypatch.setattr(mcp_server, "crawl_specs_async", fake_crawl_specs_async)

    data = json.loads(await mcp_server.crawl(specs=["nope"]))
    assert data == {"error": "Spec nope can neither be found", "specs": ["nope"]}


@pytest.mark.asyncio
async def test_tools_registered() -> None:
    tools = await mcp_server.mcp.list_tools()
    assert {tool.name for tool in tools} == {"resolve_spec_url", "study", "merge", "crawl"}


@pytest.mark.asyncio
async def test_study_rejects_non_index_file(tmp_path) -> None:
    crawl_path = tmp_path / "index.json"
    crawl_path.write_text("[1, 2]", encoding="utf-8")
    data = json.loads(await mcp_server.study(crawl_path=str(crawl_path)))
    assert "Expected a JSON object, got list" in data["error"]
