"""Provider-neutral completion contract.

Every provider variant takes a CompletionRequest and returns a Completion:
text, zero or more ToolCalls, and token usage. Messages use the OpenAI chat
shape; variants without native tool support rewrite tool traffic into plain
text internally.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ToolMode(str, Enum):
    NATIVE = "native"  # structured tools in, structured tool_calls out
    PROMPT = "prompt"  # tools described in the system prompt, calls parsed from text
    NONE = "none"      # provider cannot call tools


@dataclass
class ToolCall:
    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0

    def __add__(self, other: Usage) -> Usage:
        return Usage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
        )

    @property
    def is_empty(self) -> bool:
        return self.input_tokens == 0 and self.output_tokens == 0


@dataclass
class CompletionRequest:
    """One completion call.

    Attributes:
        messages: OpenAI-style message list (system first, if any).
        tools: OpenAI function declarations; None for a plain completion.
        temperature: Sampling temperature.
        top_p: Nucleus sampling; omitted from the call when None.
        model: Per-call model override; providers fall back to their own.
        max_tokens: Output cap (provider default when None).
    """

    messages: list[dict[str, Any]]
    tools: list[dict[str, Any]] | None = None
    temperature: float = 0.7
    top_p: float | None = None
    model: str | None = None
    max_tokens: int | None = None


@dataclass
class Completion:
    text: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)


class CompletionProvider(ABC):
    """Interchangeable completion backend."""

    tool_mode: ToolMode = ToolMode.NATIVE

    def __init__(self, model: str) -> None:
        self.model = model

    @abstractmethod
    async def complete(self, request: CompletionRequest) -> Completion:
        """Run one completion.

        Raises:
            ProviderError: The call failed and no retry path is left.
        """


# ------------------------------------------------------------------
# Message helpers shared by the orchestrator and adapters
# ------------------------------------------------------------------


def assistant_tool_message(text: str, calls: list[ToolCall]) -> dict[str, Any]:
    """The assistant turn that requested *calls*, in OpenAI shape."""
    return {
        "role": "assistant",
        "content": text or None,
        "tool_calls": [
            {
                "id": call.id,
                "type": "function",
                "function": {"name": call.name, "arguments": json.dumps(call.arguments)},
            }
            for call in calls
        ],
    }


def tool_result_message(call: ToolCall, result: dict[str, Any]) -> dict[str, Any]:
    return {
        "role": "tool",
        "tool_call_id": call.id,
        "name": call.name,
        "content": json.dumps(result, ensure_ascii=False, default=str),
    }
