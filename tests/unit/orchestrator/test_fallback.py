"""Tests for the uncertainty-triggered web search fallback."""

from __future__ import annotations

import httpx
import pytest

from atrium.agents import AgentConfig
from atrium.config import DEFAULT_UNCERTAINTY_PHRASES
from atrium.errors import ProviderError
from atrium.orchestrator import Orchestrator, TurnRequest, matches_uncertainty
from atrium.orchestrator.fallback import fallback_query
from atrium.providers.base import Completion, CompletionProvider, CompletionRequest, ToolCall, Usage
from atrium.tools.base import ToolRegistry
from atrium.tools.web_search import WebSearchTool

_AGENT = AgentConfig(id="helper", model="test-model")

_RESULTS = {
    "results": [
        {"title": "Match report", "url": "https://www.sport.example/report", "content": "Lisbon won 2-1."}
    ]
}


class ScriptedProvider(CompletionProvider):
    def __init__(self, replies) -> None:
        super().__init__("test-model")
        self.replies = list(replies)
        self.requests: list[CompletionRequest] = []

    async def complete(self, request: CompletionRequest) -> Completion:
        self.requests.append(request)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


def _search_tool(status: int = 200, body: dict | None = None, seen: list | None = None) -> WebSearchTool:
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return httpx.Response(status, json=body if body is not None else _RESULTS)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return WebSearchTool("https://search.example.com", client=client)


def _orchestrator(provider, search: WebSearchTool, **kwargs) -> Orchestrator:
    return Orchestrator(_AGENT, provider, registry=ToolRegistry([search]), **kwargs)


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


@pytest.mark.parametrize("text,expected", [
    ("I don't know who won last night.", True),
    ("As of my last update, the score was unknown.", True),
    ("AS OF MY KNOWLEDGE CUTOFF it was 3-0", True),
    ("Lisbon won 2-1.", False),
    ("", False),
])
def test_matches_uncertainty(text, expected):
    assert matches_uncertainty(text, DEFAULT_UNCERTAINTY_PHRASES) is expected


def test_fallback_query_collapses_whitespace_and_truncates():
    assert fallback_query("  who   won\n the match? ") == "who won the match?"
    long = "word " * 100
    query = fallback_query(long, max_chars=50)
    assert len(query) <= 50
    assert not query.endswith(" ")


# ------------------------------------------------------------------
# In the turn
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_uncertain_answer_triggers_one_search():
    seen: list[httpx.Request] = []
    provider = ScriptedProvider(
        [
            Completion(text="I don't know the latest score.", usage=Usage(10, 5)),
            Completion(text="Lisbon won 2-1.", usage=Usage(30, 8)),
        ]
    )
    result = await _orchestrator(provider, _search_tool(seen=seen)).run_turn(
        TurnRequest("alice", "Who won the Lisbon match?")
    )

    assert result.fallback_used
    assert len(seen) == 1
    assert seen[0].url.params["q"] == "Who won the Lisbon match?"
    assert len(provider.requests) == 2
    assert result.text.startswith("**Web search results**")
    assert result.text.endswith("Lisbon won 2-1.")
    assert result.usage == Usage(40, 13)

    followup = provider.requests[1]
    assert followup.tools is None
    assert followup.messages[-2] == {"role": "assistant", "content": "I don't know the latest score."}
    assert "Lisbon won 2-1." in followup.messages[-1]["content"]


@pytest.mark.asyncio
async def test_fallback_runs_at_most_once():
    provider = ScriptedProvider(
        [
            Completion(text="I'm not sure."),
            Completion(text="I'm still not sure, let me search again."),
        ]
    )
    result = await _orchestrator(provider, _search_tool()).run_turn(TurnRequest("alice", "q?"))
    assert len(provider.requests) == 2
    assert result.text.endswith("I'm still not sure, let me search again.")


@pytest.mark.asyncio
async def test_confident_answer_skips_fallback():
    seen: list = []
    provider = ScriptedProvider([Completion(text="Paris is the capital of France.")])
    result = await _orchestrator(provider, _search_tool(seen=seen)).run_turn(
        TurnRequest("alice", "capital of France?")
    )
    assert not result.fallback_used
    assert seen == []
    assert result.text == "Paris is the capital of France."


@pytest.mark.asyncio
async def test_no_fallback_after_tools_ran():
    seen: list = []
    provider = ScriptedProvider(
        [
            Completion(text="", tool_calls=[ToolCall(id="c1", name="web_search", arguments={"query": "x"})]),
            Completion(text="I don't know, the results were unclear."),
        ]
    )
    result = await _orchestrator(provider, _search_tool(seen=seen)).run_turn(
        TurnRequest("alice", "x")
    )
    assert not result.fallback_used
    assert len(seen) == 1
    assert len(provider.requests) == 2
    # Results from the model's own search are still shown.
    assert result.text.startswith("**Web search results**")


@pytest.mark.asyncio
async def test_search_failure_keeps_original_answer():
    provider = ScriptedProvider([Completion(text="I don't know.")])
    result = await _orchestrator(provider, _search_tool(status=500)).run_turn(
        TurnRequest("alice", "x")
    )
    assert not result.fallback_used
    assert result.text == "I don't know."


@pytest.mark.asyncio
async def test_empty_results_keep_original_answer():
    provider = ScriptedProvider([Completion(text="I don't know.")])
    result = await _orchestrator(provider, _search_tool(body={"results": []})).run_turn(
        TurnRequest("alice", "x")
    )
    assert not result.fallback_used
    assert len(provider.requests) == 1


@pytest.mark.asyncio
async def test_reprompt_failure_keeps_original_answer():
    provider = ScriptedProvider([Completion(text="I don't know."), ProviderError("timeout")])
    result = await _orchestrator(provider, _search_tool()).run_turn(TurnRequest("alice", "x"))
    assert result.ok
    assert result.text == "I don't know."


@pytest.mark.asyncio
async def test_fallback_can_be_disabled():
    provider = ScriptedProvider([Completion(text="I don't know.")])
    result = await _orchestrator(provider, _search_tool(), fallback_enabled=False).run_turn(
        TurnRequest("alice", "x")
    )
    assert result.text == "I don't know."
    assert len(provider.requests) == 1
