"""Uncertainty-triggered web search.

When a turn that used no tools ends in an answer containing a hedging phrase
("I don't know", "as of my last update", ...), one web search is run on the
user's message and the model is re-prompted with the raw results. The
phrase list is a heuristic: false positives and negatives are expected.

The fallback round is single-shot. Its answer is never checked again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, TypeVar

from atrium.errors import ProviderError, ToolError
from atrium.providers.base import CompletionProvider, CompletionRequest, Usage
from atrium.providers.toolparse import strip_tool_markup
from atrium.tools.web_search import WebSearchTool, format_results_for_model

logger = logging.getLogger(__name__)

T = TypeVar("T")
Guard = Callable[[Awaitable[T]], Awaitable[T]]

_FOLLOWUP = (
    "Use the web search results above to answer my previous message. "
    "Cite sources by domain where helpful."
)


def matches_uncertainty(text: str, phrases: Iterable[str]) -> bool:
    """Case-insensitive substring match of any phrase in *text*."""
    lowered = (text or "").lower()
    return any(p and p.lower() in lowered for p in phrases)


def fallback_query(message: str, max_chars: int = 200) -> str:
    query = " ".join(message.split())
    if len(query) <= max_chars:
        return query
    cut = query[:max_chars]
    # Prefer a word boundary when one is reasonably close.
    space = cut.rfind(" ")
    return cut[:space] if space > max_chars // 2 else cut


@dataclass
class FallbackOutcome:
    text: str
    usage: Usage = field(default_factory=Usage)
    results: list[dict[str, Any]] = field(default_factory=list)


class UncertaintyFallback:
    def __init__(
        self,
        search: WebSearchTool,
        phrases: Iterable[str],
        query_chars: int = 200,
    ) -> None:
        self._search = search
        self.phrases = list(phrases)
        self.query_chars = query_chars

    def should_run(self, answer: str, used_tools: bool) -> bool:
        return not used_tools and matches_uncertainty(answer, self.phrases)

    async def run(
        self,
        provider: CompletionProvider,
        messages: list[dict[str, Any]],
        answer: str,
        user_message: str,
        temperature: float,
        guard: Guard,
    ) -> FallbackOutcome | None:
        """Search, re-prompt once, and return the replacement answer.

        Returns None (keep the original answer) when the search fails, finds
        nothing, or the re-prompt fails.
        """
        query = fallback_query(user_message, self.query_chars)
        if not query:
            return None
        logger.info("Answer looks uncertain; searching the web for %r", query)
        try:
            result = await guard(self._search.run({"query": query}))
        except ToolError as exc:
            logger.warning("Fallback web search failed: %s", exc)
            return None

        results = result.get("results") or []
        if not results:
            return None

        followup = [
            *messages,
            {"role": "assistant", "content": answer},
            {"role": "user", "content": f"{format_results_for_model(query, results)}\n\n{_FOLLOWUP}"},
        ]
        try:
            completion = await guard(
                provider.complete(CompletionRequest(messages=followup, temperature=temperature))
            )
        except ProviderError as exc:
            logger.warning("Fallback re-prompt failed, keeping the original answer: %s", exc)
            return None

        text = strip_tool_markup(completion.text)
        return FallbackOutcome(text=text or answer, usage=completion.usage, results=results)
