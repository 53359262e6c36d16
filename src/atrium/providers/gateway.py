"""Hosted multi-model gateway (e.g. OpenRouter) via LiteLLM, with native tools.

Structured ``tools`` go in, structured ``tool_calls`` come out unchanged.
If a model rejects the tools parameter with a client error, the request is
retried once without tools instead of failing the turn.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any

import litellm

from atrium.errors import ProviderError
from atrium.providers.base import (
    Completion,
    CompletionProvider,
    CompletionRequest,
    ToolCall,
    ToolMode,
    Usage,
)

logger = logging.getLogger(__name__)

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True

_TOOLS_UNSUPPORTED_RE = re.compile(
    r"(?:tool|function)s?[^.]{0,40}(?:not|un)[ -]?support"
    r"|support[^.]{0,40}(?:tool|function)"
    r"|tool[_ ]choice|tool use",
    re.IGNORECASE,
)


class LiteLLMProvider(CompletionProvider):
    """Shared litellm plumbing for gateway and self-hosted variants."""

    def __init__(
        self,
        model: str,
        api_key: str | None = None,
        api_base: str | None = None,
        num_retries: int = 2,
        timeout: float = 120.0,
    ) -> None:
        super().__init__(model)
        self._api_key = api_key
        self._api_base = api_base
        self._num_retries = num_retries
        self._timeout = timeout

    def _kwargs(self, request: CompletionRequest, messages: list[dict[str, Any]]) -> dict:
        kwargs: dict[str, Any] = {
            "model": request.model or self.model,
            "messages": messages,
            "temperature": request.temperature,
            "num_retries": self._num_retries,
            "timeout": self._timeout,
        }
        if request.top_p is not None:
            kwargs["top_p"] = request.top_p
        if request.max_tokens:
            kwargs["max_tokens"] = request.max_tokens
        if self._api_key:
            kwargs["api_key"] = self._api_key
        if self._api_base:
            kwargs["api_base"] = self._api_base
        return kwargs

    async def _call(self, kwargs: dict[str, Any]):
        try:
            return await litellm.acompletion(**kwargs)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            raise ProviderError(
                f"Completion request to '{kwargs['model']}' failed: {exc}",
                status_code=getattr(exc, "status_code", None),
            ) from exc


class GatewayProvider(LiteLLMProvider):
    tool_mode = ToolMode.NATIVE

    async def complete(self, request: CompletionRequest) -> Completion:
        kwargs = self._kwargs(request, request.messages)
        if request.tools:
            try:
                return parse_response(await self._call({**kwargs, "tools": request.tools}))
            except ProviderError as exc:
                if not looks_like_tools_unsupported(exc):
                    raise
                logger.warning(
                    "Model '%s' rejected tools (%s); retrying without tools", kwargs["model"], exc
                )
        return parse_response(await self._call(kwargs))


def looks_like_tools_unsupported(exc: ProviderError) -> bool:
    """True for a 4xx error whose message says tools are not supported."""
    status = exc.status_code
    if status is None or not 400 <= status < 500 or status in (401, 403, 429):
        return False
    return bool(_TOOLS_UNSUPPORTED_RE.search(str(exc)))


def parse_response(response: Any) -> Completion:
    try:
        message = response.choices[0].message
    except (AttributeError, IndexError, TypeError) as exc:
        raise ProviderError(f"Malformed completion response: {exc}") from exc

    calls: list[ToolCall] = []
    for raw in getattr(message, "tool_calls", None) or []:
        arguments = raw.function.arguments
        if isinstance(arguments, str):
            try:
                arguments = json.loads(arguments) if arguments.strip() else {}
            except json.JSONDecodeError:
                logger.warning("Tool call %s has non-JSON arguments", raw.function.name)
                arguments = {}
        calls.append(ToolCall(id=raw.id, name=raw.function.name, arguments=arguments or {}))

    return Completion(
        text=message.content or "",
        tool_calls=calls,
        usage=_usage(response),
    )


def _usage(response: Any) -> Usage:
    usage = getattr(response, "usage", None)
    if usage is None:
        return Usage()
    return Usage(
        input_tokens=int(getattr(usage, "prompt_tokens", 0) or 0),
        output_tokens=int(getattr(usage, "completion_tokens", 0) or 0),
    )
