"""Tests for Orchestrator.run_turn: tool loop, cap, cancellation, usage."""

from __future__ import annotations

import asyncio
import json
import sqlite3
from dataclasses import replace
from unittest.mock import MagicMock, patch

import pytest

from atrium.agents import AgentConfig
from atrium.db.repository import Repository
from atrium.errors import ProviderError, TurnCancelled
from atrium.orchestrator import Orchestrator, TurnRequest, guarded
from atrium.orchestrator.loop import CAPPED_MESSAGE, EMPTY_ANSWER_MESSAGE
from atrium.providers.base import (
    Completion,
    CompletionProvider,
    CompletionRequest,
    ToolCall,
    ToolMode,
    Usage,
)
from atrium.rag.context import ContextAssembler
from atrium.tools.base import Tool, ToolRegistry
from atrium.usage import UsageLedger

_AGENT = AgentConfig(id="helper", model="test-model", system_prompt="You help.")


class ScriptedProvider(CompletionProvider):
    """Returns queued replies in order; the last reply repeats."""

    def __init__(self, replies, tool_mode: ToolMode = ToolMode.NATIVE) -> None:
        super().__init__("test-model")
        self.replies = list(replies)
        self.tool_mode = tool_mode
        self.calls: list[tuple[list[dict], list | None]] = []
        self.requests: list[CompletionRequest] = []

    async def complete(self, request: CompletionRequest) -> Completion:
        self.calls.append((list(request.messages), request.tools))
        self.requests.append(request)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        return reply


class HangingProvider(CompletionProvider):
    def __init__(self) -> None:
        super().__init__("test-model")
        self.was_cancelled = False

    async def complete(self, request: CompletionRequest) -> Completion:
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.was_cancelled = True
            raise
        raise AssertionError("unreachable")


class RecordingTool(Tool):
    def __init__(self, name: str, result=None, exc: Exception | None = None, delay: float = 0.0):
        self.name = name
        self.description = f"{name} tool"
        self.result = result if result is not None else {"success": True, "tool": name}
        self.exc = exc
        self.delay = delay
        self.arguments: list[dict] = []

    @property
    def parameters(self):
        return {"type": "object"}

    async def run(self, arguments):
        self.arguments.append(arguments)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.exc is not None:
            raise self.exc
        return self.result


def _call(name: str, call_id: str = "c1", **arguments) -> ToolCall:
    return ToolCall(id=call_id, name=name, arguments=arguments)


def _text(text: str, inp: int = 10, out: int = 5) -> Completion:
    return Completion(text=text, usage=Usage(inp, out))


def _tools(*calls: ToolCall, inp: int = 10, out: int = 5) -> Completion:
    return Completion(text="", tool_calls=list(calls), usage=Usage(inp, out))


@pytest.fixture
def ledger(tmp_db):
    return UsageLedger(Repository(tmp_db), default_input_rate=1.0, default_output_rate=2.0)


# ------------------------------------------------------------------
# Basic turns
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_plain_answer_records_usage(ledger, tmp_db):
    provider = ScriptedProvider([_text("Hello!", 1_000, 500)])
    result = await Orchestrator(_AGENT, provider, ledger=ledger).run_turn(
        TurnRequest(user_id="alice", message="hi")
    )

    assert result.ok
    assert result.text == "Hello!"
    assert result.cost == pytest.approx(1_000 / 1e6 * 1.0 + 500 / 1e6 * 2.0)
    [record] = Repository(tmp_db).get_usage("alice")
    assert (record.model, record.input_tokens, record.output_tokens) == ("test-model", 1_000, 500)


@pytest.mark.asyncio
async def test_message_layout():
    provider = ScriptedProvider([_text("ok")])
    request = TurnRequest(
        user_id="alice",
        message="and now?",
        history=[{"role": "user", "content": "before"}, {"role": "assistant", "content": "sure"}],
        attachments="--- a.txt ---\nbody",
    )
    await Orchestrator(_AGENT, provider).run_turn(request)

    messages, tools = provider.calls[0]
    assert [m["role"] for m in messages] == ["system", "user", "assistant", "user"]
    assert messages[0]["content"].startswith("You help.")
    assert "## Attached files\n--- a.txt ---\nbody" in messages[0]["content"]
    assert messages[-1]["content"] == "and now?"
    assert tools is None


@pytest.mark.asyncio
async def test_provider_error_is_reported():
    provider = ScriptedProvider([ProviderError("model overloaded", status_code=503)])
    result = await Orchestrator(_AGENT, provider).run_turn(TurnRequest("alice", "hi"))
    assert not result.ok
    assert result.text == ""
    assert "model overloaded" in result.error


def test_max_tool_iterations_must_be_positive():
    with pytest.raises(ValueError):
        Orchestrator(_AGENT, ScriptedProvider([_text("x")]), max_tool_iterations=0)


# ------------------------------------------------------------------
# Tool loop
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_tool_call_then_answer():
    lookup = RecordingTool("lookup", result={"success": True, "value": 42})
    provider = ScriptedProvider([_tools(_call("lookup", key="answer")), _text("It is 42.")])
    orchestrator = Orchestrator(_AGENT, provider, registry=ToolRegistry([lookup]))

    result = await orchestrator.run_turn(TurnRequest("alice", "what is it?"))

    assert result.text == "It is 42."
    assert result.tool_calls_made == ["lookup"]
    assert lookup.arguments == [{"key": "answer"}]
    assert result.usage == Usage(20, 10)
    messages, tools = provider.calls[1]
    assert tools[0]["function"]["name"] == "lookup"
    assert messages[-2]["tool_calls"][0]["id"] == "c1"
    assert messages[-1]["role"] == "tool"
    assert json.loads(messages[-1]["content"]) == {"success": True, "value": 42}


@pytest.mark.asyncio
async def test_tool_results_keep_call_order():
    slow = RecordingTool("slow", delay=0.05)
    fast = RecordingTool("fast")
    provider = ScriptedProvider(
        [_tools(_call("slow", "c1"), _call("fast", "c2")), _text("done")]
    )
    await Orchestrator(_AGENT, provider, registry=ToolRegistry([slow, fast])).run_turn(
        TurnRequest("alice", "go")
    )
    messages, _ = provider.calls[1]
    tool_messages = [m for m in messages if m["role"] == "tool"]
    assert [m["tool_call_id"] for m in tool_messages] == ["c1", "c2"]


@pytest.mark.asyncio
async def test_throwing_tool_still_gets_an_answer():
    broken = RecordingTool("broken", exc=RuntimeError("disk on fire"))
    provider = ScriptedProvider([_tools(_call("broken")), _text("Sorry, that failed.")])
    result = await Orchestrator(_AGENT, provider, registry=ToolRegistry([broken])).run_turn(
        TurnRequest("alice", "try it")
    )
    assert result.ok
    assert result.text == "Sorry, that failed."
    messages, _ = provider.calls[1]
    assert "disk on fire" in json.loads(messages[-1]["content"])["error"]


@pytest.mark.asyncio
async def test_loop_stops_at_cap():
    looping = RecordingTool("again")
    provider = ScriptedProvider([_tools(_call("again"))])
    result = await Orchestrator(_AGENT, provider, registry=ToolRegistry([looping])).run_turn(
        TurnRequest("alice", "loop forever")
    )
    assert len(provider.calls) == 5
    assert len(looping.arguments) == 4
    assert result.text == CAPPED_MESSAGE
    assert result.usage == Usage(50, 25)


@pytest.mark.asyncio
async def test_cap_keeps_text_of_last_reply():
    provider = ScriptedProvider(
        [Completion(text="Partial answer.", tool_calls=[_call("again")])]
    )
    result = await Orchestrator(
        _AGENT, provider, registry=ToolRegistry([RecordingTool("again")]), max_tool_iterations=2
    ).run_turn(TurnRequest("alice", "x"))
    assert len(provider.calls) == 2
    assert result.text == "Partial answer."


@pytest.mark.asyncio
async def test_tool_markup_stripped_from_answer():
    provider = ScriptedProvider([_text('Here you go. {"tool": "lookup", "params": {}}')])
    result = await Orchestrator(_AGENT, provider).run_turn(TurnRequest("alice", "x"))
    assert result.text == "Here you go."


@pytest.mark.asyncio
async def test_no_tools_sent_to_providers_without_tool_support():
    provider = ScriptedProvider([_text("ok")], tool_mode=ToolMode.NONE)
    await Orchestrator(
        _AGENT, provider, registry=ToolRegistry([RecordingTool("lookup")])
    ).run_turn(TurnRequest("alice", "x"))
    assert provider.calls[0][1] is None


@pytest.mark.asyncio
async def test_empty_answer_after_tools_is_not_reported_as_capped():
    provider = ScriptedProvider([_tools(_call("lookup")), _text("")])
    result = await Orchestrator(
        _AGENT, provider, registry=ToolRegistry([RecordingTool("lookup")])
    ).run_turn(TurnRequest("alice", "x"))
    assert len(provider.calls) == 2
    assert result.text == EMPTY_ANSWER_MESSAGE


@pytest.mark.asyncio
async def test_agent_sampling_settings_reach_provider():
    agent = replace(_AGENT, temperature=0.2, top_p=0.9)
    provider = ScriptedProvider([_text("ok")])
    await Orchestrator(agent, provider).run_turn(TurnRequest("alice", "x"))
    [request] = provider.requests
    assert (request.temperature, request.top_p) == (0.2, 0.9)


# ------------------------------------------------------------------
# Store failures
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_locked_usage_store_does_not_break_turn():
    repo = MagicMock()
    repo.increment_usage.side_effect = sqlite3.OperationalError("database is locked")
    repo.get_rate.side_effect = sqlite3.OperationalError("database is locked")
    ledger = UsageLedger(repo, default_input_rate=1.0, default_output_rate=2.0)
    provider = ScriptedProvider([_text("hello", 1_000, 500)])

    result = await Orchestrator(_AGENT, provider, ledger=ledger).run_turn(TurnRequest("alice", "hi"))

    assert result.ok
    assert result.text == "hello"
    assert result.cost == pytest.approx(1_000 / 1e6 * 1.0 + 500 / 1e6 * 2.0)


@pytest.mark.asyncio
async def test_locked_knowledge_store_does_not_break_turn(tmp_db):
    repo = Repository(tmp_db)
    assembler = ContextAssembler(repo)
    provider = ScriptedProvider([_text("still here")])
    locked = sqlite3.OperationalError("database is locked")
    with patch.object(Repository, "list_memories", side_effect=locked), patch.object(
        Repository, "keyword_search", side_effect=locked
    ):
        result = await Orchestrator(_AGENT, provider, assembler=assembler).run_turn(
            TurnRequest("alice", "what did I upload?")
        )

    assert result.ok
    assert result.text == "still here"
    assert provider.calls[0][0][0]["content"] == "You help."


# ------------------------------------------------------------------
# Cancellation
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_cancel_aborts_in_flight_call(ledger, tmp_db):
    provider = HangingProvider()
    cancel = asyncio.Event()
    asyncio.get_running_loop().call_later(0.05, cancel.set)

    result = await Orchestrator(_AGENT, provider, ledger=ledger).run_turn(
        TurnRequest("alice", "hi"), cancel
    )

    assert result.cancelled
    assert result.text == ""
    assert provider.was_cancelled
    assert Repository(tmp_db).get_usage("alice") == []


@pytest.mark.asyncio
async def test_cancel_during_tool_call_writes_no_usage(ledger, tmp_db):
    hanging_tool = RecordingTool("slow", delay=30)
    provider = ScriptedProvider([_tools(_call("slow"), inp=100, out=20), _text("never")])
    cancel = asyncio.Event()
    asyncio.get_running_loop().call_later(0.05, cancel.set)

    result = await Orchestrator(
        _AGENT, provider, registry=ToolRegistry([hanging_tool]), ledger=ledger
    ).run_turn(TurnRequest("alice", "hi"), cancel)

    assert result.cancelled
    assert result.usage.is_empty
    assert len(provider.calls) == 1
    assert Repository(tmp_db).get_usage("alice") == []


@pytest.mark.asyncio
async def test_already_cancelled_turn_makes_no_call():
    provider = ScriptedProvider([_text("ok")])
    cancel = asyncio.Event()
    cancel.set()
    result = await Orchestrator(_AGENT, provider).run_turn(TurnRequest("alice", "hi"), cancel)
    assert result.cancelled
    assert provider.calls == []


@pytest.mark.asyncio
async def test_guarded_returns_result_without_cancel():
    async def work():
        return 7

    assert await guarded(work(), None) == 7
    assert await guarded(work(), asyncio.Event()) == 7


@pytest.mark.asyncio
async def test_guarded_raises_turn_cancelled():
    cancel = asyncio.Event()
    asyncio.get_running_loop().call_later(0.01, cancel.set)
    with pytest.raises(TurnCancelled):
        await guarded(asyncio.sleep(10), cancel)
