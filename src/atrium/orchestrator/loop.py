"""Per-turn orchestration: context, bounded tool-calling loop, fallback, usage.

State machine for one turn:
  1. Assemble context and build the message list.
  2. Call the provider with the tool declarations.
  3. If the response carries tool calls, run them concurrently, append one
     ``tool`` message per call (in call order) and go to 2.
  4. Stop when no tool calls come back or after ``max_tool_iterations``
     provider calls.
  5. If no tool ran and the answer hedges, run the uncertainty fallback once.
  6. Prefix the rendered search block when a web search ran.
  7. Record usage (best-effort).

Cancellation: every network await goes through a guard that races it
against the caller's ``asyncio.Event``. When the event fires the in-flight
call is cancelled and the turn returns ``cancelled=True`` with no text and no
usage write.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Iterable, TypeVar

from atrium.agents import AgentConfig
from atrium.config import DEFAULT_UNCERTAINTY_PHRASES
from atrium.errors import ProviderError, TurnCancelled, UsageWriteError
from atrium.orchestrator.fallback import UncertaintyFallback
from atrium.providers.base import (
    CompletionProvider,
    CompletionRequest,
    ToolMode,
    Usage,
    assistant_tool_message,
    tool_result_message,
)
from atrium.providers.toolparse import strip_tool_markup
from atrium.rag.context import ContextAssembler, UserProfile
from atrium.tools.base import ToolRegistry
from atrium.tools.web_search import WebSearchTool, render_search_block
from atrium.usage import UsageLedger

logger = logging.getLogger(__name__)

T = TypeVar("T")

CAPPED_MESSAGE = (
    "I wasn't able to finish that request: the tools kept asking for more steps. "
    "Please try rephrasing or narrowing the request."
)
EMPTY_ANSWER_MESSAGE = (
    "The tools ran but I came back with nothing to say about the results. "
    "Please ask again."
)


@dataclass
class TurnRequest:
    """Input for one turn.

    Attributes:
        history: Prior user/assistant messages, oldest first (no system message).
        attachments: Extracted text of files attached to this message.
    """

    user_id: str
    message: str
    history: list[dict[str, Any]] = field(default_factory=list)
    profile: UserProfile | None = None
    attachments: str = ""


@dataclass
class TurnResult:
    text: str = ""
    usage: Usage = field(default_factory=Usage)
    cost: float = 0.0
    tool_calls_made: list[str] = field(default_factory=list)
    search_results: list[dict[str, Any]] = field(default_factory=list)
    fallback_used: bool = False
    cancelled: bool = False
    error: str | None = None

    @property
    def ok(self) -> bool:
        return not self.cancelled and self.error is None


async def guarded(awaitable: Awaitable[T], cancel: asyncio.Event | None) -> T:
    """Await *awaitable* unless *cancel* fires first.

    Raises:
        TurnCancelled: *cancel* was set before or during the call; the
            in-flight task is cancelled and awaited.
    """
    task = asyncio.ensure_future(awaitable)
    if cancel is None:
        return await task
    if cancel.is_set():
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise TurnCancelled("Turn cancelled before the call started")

    waiter = asyncio.ensure_future(cancel.wait())
    try:
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        waiter.cancel()

    if cancel.is_set():
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise TurnCancelled("Turn cancelled by the caller")
    return task.result()


class Orchestrator:
    """Runs turns for one agent.

    Args:
        agent: Agent persona (system prompt, temperature).
        provider: Completion provider built for *agent*.
        registry: Tools enabled for *agent*; empty registry means no tools.
        assembler: Context source; None sends the bare system prompt.
        ledger: Usage ledger; None skips accounting.
        max_tool_iterations: Provider calls allowed per turn.
        fallback_enabled: Run the uncertainty fallback when web_search is available.
    """

    def __init__(
        self,
        agent: AgentConfig,
        provider: CompletionProvider,
        registry: ToolRegistry | None = None,
        assembler: ContextAssembler | None = None,
        ledger: UsageLedger | None = None,
        max_tool_iterations: int = 5,
        fallback_enabled: bool = True,
        uncertainty_phrases: Iterable[str] = DEFAULT_UNCERTAINTY_PHRASES,
        fallback_query_chars: int = 200,
    ) -> None:
        if max_tool_iterations < 1:
            raise ValueError("max_tool_iterations must be >= 1")
        self.agent = agent
        self.provider = provider
        self.registry = registry or ToolRegistry()
        self.assembler = assembler
        self.ledger = ledger
        self.max_tool_iterations = max_tool_iterations

        self.fallback: UncertaintyFallback | None = None
        search = self.registry.get("web_search")
        if fallback_enabled and isinstance(search, WebSearchTool):
            self.fallback = UncertaintyFallback(search, uncertainty_phrases, fallback_query_chars)

    async def run_turn(
        self, request: TurnRequest, cancel: asyncio.Event | None = None
    ) -> TurnResult:
        result = TurnResult()
        try:
            await self._run(request, result, cancel)
        except TurnCancelled:
            logger.info("Turn for %s cancelled", request.user_id)
            return TurnResult(cancelled=True, tool_calls_made=result.tool_calls_made)
        except ProviderError as exc:
            logger.error("Turn for %s failed: %s", request.user_id, exc)
            result.text = ""
            result.error = str(exc)

        self._record_usage(request.user_id, result)
        return result

    # ------------------------------------------------------------------
    # Turn body
    # ------------------------------------------------------------------

    async def _run(
        self, request: TurnRequest, result: TurnResult, cancel: asyncio.Event | None
    ) -> None:
        def guard(awaitable: Awaitable[T]) -> Awaitable[T]:
            return guarded(awaitable, cancel)

        messages = await self._build_messages(request, guard)
        tools = self._tool_declarations()

        answer = ""
        capped = False
        for iteration in range(1, self.max_tool_iterations + 1):
            completion = await guard(
                self.provider.complete(
                    CompletionRequest(
                        messages=messages,
                        tools=tools,
                        temperature=self.agent.temperature,
                        top_p=self.agent.top_p,
                    )
                )
            )
            result.usage = result.usage + completion.usage

            if not completion.tool_calls:
                answer = completion.text
                break
            if iteration == self.max_tool_iterations:
                logger.warning(
                    "Tool loop hit the cap of %d provider calls; returning the last text",
                    self.max_tool_iterations,
                )
                capped = True
                answer = completion.text or CAPPED_MESSAGE
                break

            calls = completion.tool_calls
            result.tool_calls_made.extend(call.name for call in calls)
            messages.append(assistant_tool_message(completion.text, calls))
            outputs = await guard(self.registry.execute_all(calls))
            for call, output in zip(calls, outputs):
                messages.append(tool_result_message(call, output))
                if call.name == "web_search" and output.get("success"):
                    result.search_results.extend(output.get("results") or [])

        answer = strip_tool_markup(answer)
        if not answer and result.tool_calls_made:
            answer = CAPPED_MESSAGE if capped else EMPTY_ANSWER_MESSAGE

        if self.fallback is not None and self.fallback.should_run(
            answer, used_tools=bool(result.tool_calls_made)
        ):
            outcome = await self.fallback.run(
                self.provider,
                messages,
                answer,
                request.message,
                self.agent.temperature,
                guard,
            )
            if outcome is not None:
                answer = outcome.text
                result.usage = result.usage + outcome.usage
                result.search_results.extend(outcome.results)
                result.fallback_used = True

        block = render_search_block(result.search_results)
        result.text = f"{block}\n\n{answer}" if block else answer

    async def _build_messages(self, request: TurnRequest, guard) -> list[dict[str, Any]]:
        system = self.agent.system_prompt
        if self.assembler is not None:
            context = await guard(
                self.assembler.assemble(request.message, request.user_id, request.profile)
            )
            if context:
                system = f"{system}\n\n{context}"
        if request.attachments:
            system = f"{system}\n\n## Attached files\n{request.attachments}"
        return [
            {"role": "system", "content": system},
            *request.history,
            {"role": "user", "content": request.message},
        ]

    def _tool_declarations(self) -> list[dict[str, Any]] | None:
        if not len(self.registry) or self.provider.tool_mode is ToolMode.NONE:
            return None
        return self.registry.declarations()

    def _record_usage(self, user_id: str, result: TurnResult) -> None:
        if self.ledger is None or result.usage.is_empty:
            return
        try:
            self.ledger.record_usage(user_id, self.agent.model, result.usage)
        except UsageWriteError as exc:
            logger.warning("Usage not recorded: %s", exc)
        result.cost = self.ledger.calculate_cost(
            result.usage.input_tokens, result.usage.output_tokens, user_id
        )
