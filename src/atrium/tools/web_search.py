"""Web search against a SearXNG-compatible JSON API.

Request:  GET {base}/search?q=<query>&format=json
Response: {"results": [{"title", "url", "content"}, ...]}

Snippets are HTML fragments on many engines; tags are stripped with
BeautifulSoup before the results reach the model.
"""

from __future__ import annotations

import urllib.parse
from typing import Any

import httpx
from bs4 import BeautifulSoup

from atrium.errors import ToolError
from atrium.tools.base import HttpTool
from atrium.tools.urls import normalize_base_url, validate_public_url

DEFAULT_SEARCH_URL = "https://search.brainstormnodes.org"
_SNIPPET_CHARS = 400


class WebSearchTool(HttpTool):
    name = "web_search"
    description = (
        "Search the web for current information. Use this for recent events, "
        "facts you are unsure about, or anything after your training data."
    )

    def __init__(
        self,
        base_url: str = DEFAULT_SEARCH_URL,
        max_results: int = 8,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(
            normalize_base_url(base_url, "/search") or DEFAULT_SEARCH_URL,
            timeout=timeout,
            client=client,
        )
        self.max_results = max_results

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {"query": {"type": "string", "description": "Search query"}},
            "required": ["query"],
        }

    async def run(self, arguments: dict[str, Any]) -> dict[str, Any]:
        query = str(arguments.get("query") or "").strip()
        if not query:
            raise ToolError("web_search: missing 'query'")
        try:
            validate_public_url(self.base_url)
        except ValueError as exc:
            raise ToolError(f"web_search: blocked search URL: {exc}") from exc

        body = await self._request("GET", "/search", params={"q": query, "format": "json"})
        raw = body.get("results") if isinstance(body, dict) else None
        results = [_normalize_result(r) for r in (raw or []) if isinstance(r, dict)]
        return {
            "success": True,
            "query": query,
            "results": [r for r in results if r["url"]][: self.max_results],
        }


def _normalize_result(raw: dict[str, Any]) -> dict[str, str]:
    url = str(raw.get("url") or "")
    snippet = str(raw.get("content") or raw.get("snippet") or "")
    if "<" in snippet:
        snippet = BeautifulSoup(snippet, "html.parser").get_text(" ", strip=True)
    snippet = " ".join(snippet.split())
    if len(snippet) > _SNIPPET_CHARS:
        snippet = snippet[:_SNIPPET_CHARS].rstrip() + "…"
    return {
        "title": str(raw.get("title") or url),
        "url": url,
        "snippet": snippet,
        "source": source_domain(url),
    }


def source_domain(url: str) -> str:
    host = urllib.parse.urlparse(url).hostname or ""
    return host[4:] if host.startswith("www.") else host


def render_search_block(results: list[dict[str, Any]]) -> str:
    """Markdown block listing *results*; "" when there are none."""
    if not results:
        return ""
    lines = ["**Web search results**", ""]
    for i, r in enumerate(results, 1):
        source = f" ({r['source']})" if r.get("source") else ""
        lines.append(f"{i}. [{r.get('title') or r.get('url')}]({r.get('url')}){source}")
        if r.get("snippet"):
            lines.append(f"   {r['snippet']}")
    return "\n".join(lines)


def format_results_for_model(query: str, results: list[dict[str, Any]]) -> str:
    """Plain-text rendering of raw results, appended as a user turn."""
    if not results:
        return f'Web search for "{query}" returned no results.'
    parts = [f'Web search results for "{query}":']
    for i, r in enumerate(results, 1):
        parts.append(f"[{i}] {r.get('title', '')}\nURL: {r.get('url', '')}\n{r.get('snippet', '')}")
    return "\n\n".join(parts)
