"""Tests for WebSearchTool and result rendering."""

from __future__ import annotations

import httpx
import pytest

from atrium.errors import ToolError
from atrium.tools.web_search import (
    WebSearchTool,
    format_results_for_model,
    render_search_block,
    source_domain,
)

_SEARX_BODY = {
    "results": [
        {
            "title": "Python 3.13 released",
            "url": "https://www.python.org/downloads/release/python-3130/",
            "content": "The <b>latest</b> major   release.",
        },
        {"title": "No URL", "content": "dropped"},
        {"title": "Changelog", "url": "https://docs.python.org/3/whatsnew/", "content": "x" * 500},
    ]
}


def _tool(handler, base_url: str = "https://search.example.com/search/", **kwargs) -> WebSearchTool:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return WebSearchTool(base_url, client=client, **kwargs)


@pytest.mark.asyncio
async def test_search_request_and_normalized_results():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = request.url
        return httpx.Response(200, json=_SEARX_BODY)

    result = await _tool(handler).run({"query": "python release"})

    assert seen["url"].path == "/search"
    assert seen["url"].params["q"] == "python release"
    assert seen["url"].params["format"] == "json"
    assert result["success"] is True
    first, second = result["results"]
    assert first["snippet"] == "The latest major release."
    assert first["source"] == "python.org"
    assert len(second["snippet"]) == 401 and second["snippet"].endswith("…")


@pytest.mark.asyncio
async def test_max_results_applied():
    tool = _tool(lambda r: httpx.Response(200, json=_SEARX_BODY), max_results=1)
    result = await tool.run({"query": "python"})
    assert len(result["results"]) == 1


@pytest.mark.asyncio
async def test_missing_query_raises():
    with pytest.raises(ToolError, match="query"):
        await _tool(lambda r: httpx.Response(200, json={})).run({"query": "  "})


@pytest.mark.asyncio
async def test_private_search_url_is_blocked():
    called = []

    def handler(request):
        called.append(request)
        return httpx.Response(200, json=_SEARX_BODY)

    with pytest.raises(ToolError, match="blocked"):
        await _tool(handler, base_url="http://127.0.0.1:8888").run({"query": "x"})
    assert called == []


@pytest.mark.asyncio
async def test_http_error_becomes_tool_error():
    with pytest.raises(ToolError, match="HTTP 503"):
        await _tool(lambda r: httpx.Response(503, text="maintenance")).run({"query": "x"})


@pytest.mark.asyncio
async def test_empty_results():
    result = await _tool(lambda r: httpx.Response(200, json={"results": []})).run({"query": "x"})
    assert result["results"] == []


def test_source_domain_strips_www():
    assert source_domain("https://www.example.com/a") == "example.com"
    assert source_domain("https://news.example.com") == "news.example.com"


def test_render_search_block():
    results = [{"title": "T", "url": "https://e.com", "snippet": "S", "source": "e.com"}]
    assert render_search_block(results) == "**Web search results**\n\n1. [T](https://e.com) (e.com)\n   S"
    assert render_search_block([]) == ""


def test_format_results_for_model():
    text = format_results_for_model("q", [{"title": "T", "url": "https://e.com", "snippet": "S"}])
    assert text.startswith('Web search results for "q":')
    assert "[1] T\nURL: https://e.com\nS" in text
    assert format_results_for_model("q", []) == 'Web search for "q" returned no results.'
