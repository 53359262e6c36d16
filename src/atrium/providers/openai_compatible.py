"""Self-hosted OpenAI-compatible server (vLLM, llama.cpp, LM Studio, ...).

These servers often lack structured tool calling, so tools are described in
the system prompt and calls are parsed out of the response text. Tool traffic
already in the conversation (assistant tool_calls, ``tool`` messages) is
rewritten into plain assistant/user text before it is sent.
"""

from __future__ import annotations

import json
from typing import Any

from atrium.providers.base import Completion, CompletionRequest, ToolMode
from atrium.providers.gateway import LiteLLMProvider, parse_response
from atrium.providers.toolparse import parse_tool_calls, tool_instructions


class OpenAICompatibleProvider(LiteLLMProvider):
    tool_mode = ToolMode.PROMPT

    def __init__(
        self,
        model: str,
        endpoint: str,
        api_key: str | None = None,
        num_retries: int = 2,
        timeout: float = 120.0,
    ) -> None:
        # litellm routes "openai/<name>" + api_base to any OpenAI-compatible server.
        litellm_model = model if model.startswith("openai/") else f"openai/{model}"
        super().__init__(
            litellm_model,
            api_key=api_key or "not-needed",
            api_base=endpoint.rstrip("/"),
            num_retries=num_retries,
            timeout=timeout,
        )

    async def complete(self, request: CompletionRequest) -> Completion:
        messages = to_plain_messages(request.messages)
        if request.tools:
            messages = _with_tool_instructions(messages, tool_instructions(request.tools))

        completion = parse_response(await self._call(self._kwargs(request, messages)))
        text, calls = parse_tool_calls(completion.text)
        completion.text = text
        if request.tools:
            completion.tool_calls = calls
        return completion


def to_plain_messages(messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Rewrite tool_calls / tool-role messages into plain chat messages."""
    out: list[dict[str, Any]] = []
    for msg in messages:
        role = msg.get("role")
        if role == "assistant" and msg.get("tool_calls"):
            blocks = []
            for tc in msg["tool_calls"]:
                fn = tc.get("function", {})
                args = fn.get("arguments", "{}")
                params = json.loads(args) if isinstance(args, str) and args.strip() else args or {}
                blocks.append(
                    "```tool\n" + json.dumps({"tool": fn.get("name"), "params": params}) + "\n```"
                )
            content = "\n".join(filter(None, [msg.get("content") or "", *blocks]))
            out.append({"role": "assistant", "content": content})
        elif role == "tool":
            name = msg.get("name") or "tool"
            out.append(
                {
                    "role": "user",
                    "content": f"Tool result for {name}:\n{msg.get('content', '')}",
                }
            )
        else:
            out.append(msg)
    return out


def _with_tool_instructions(messages: list[dict[str, Any]], instructions: str) -> list[dict[str, Any]]:
    if messages and messages[0].get("role") == "system":
        first = dict(messages[0])
        first["content"] = f"{first.get('content') or ''}\n\n{instructions}".strip()
        return [first, *messages[1:]]
    return [{"role": "system", "content": instructions}, *messages]
