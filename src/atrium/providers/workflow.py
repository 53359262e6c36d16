"""Remote workflow gateway: runs a named workflow over JSON-RPC ``tools/call``.

Remote workflows (n8n, MCP servers, ...) disagree on input field names, so
the user message is sent under several redundant keys. Results are equally
inconsistent; the first usable text field is taken from a tolerant set of
shapes, with stringified JSON as the last resort.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from typing import Any

import httpx

from atrium.errors import ProviderError
from atrium.providers.base import Completion, CompletionProvider, CompletionRequest, ToolMode, Usage

logger = logging.getLogger(__name__)

_TEXT_KEYS = ("content", "output", "result", "response", "text", "message", "answer", "data")
_MAX_DEPTH = 6


class WorkflowProvider(CompletionProvider):
    """Execute the workflow named by *model* at *endpoint*.

    Args:
        model: Remote workflow (tool) name passed as ``params.name``.
        endpoint: JSON-RPC URL.
        api_key: Bearer credential, if the gateway requires one.
        client: Injected httpx client (tests use ``httpx.MockTransport``).
    """

    tool_mode = ToolMode.NONE

    def __init__(
        self,
        model: str,
        endpoint: str,
        api_key: str | None = None,
        timeout: float = 120.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(model)
        self.endpoint = endpoint
        self._api_key = api_key
        self._timeout = timeout
        self._client = client

    async def complete(self, request: CompletionRequest) -> Completion:
        payload = build_payload(self.model, _last_user_text(request.messages))
        headers = {
            "Accept": "application/json, text/event-stream",
            "Content-Type": "application/json",
        }
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        try:
            if self._client is not None:
                response = await self._client.post(self.endpoint, json=payload, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(self.endpoint, json=payload, headers=headers)
        except asyncio.CancelledError:
            raise
        except httpx.HTTPError as exc:
            raise ProviderError(f"Workflow '{self.model}' request failed: {exc}") from exc

        if response.status_code >= 400:
            raise ProviderError(
                f"Workflow '{self.model}' returned HTTP {response.status_code}: "
                f"{response.text[:300]}",
                status_code=response.status_code,
            )

        body = _decode_body(response)
        if isinstance(body, dict) and body.get("error"):
            error = body["error"]
            message = error.get("message") if isinstance(error, dict) else error
            raise ProviderError(f"Workflow '{self.model}' error: {message}")

        result = body.get("result", body) if isinstance(body, dict) else body
        if isinstance(result, dict) and result.get("isError"):
            raise ProviderError(f"Workflow '{self.model}' failed: {extract_text(result)}")

        return Completion(text=extract_text(result), usage=_usage(body))


def build_payload(workflow: str, message: str) -> dict[str, Any]:
    """JSON-RPC ``tools/call`` body carrying *message* under redundant keys."""
    return {
        "jsonrpc": "2.0",
        "id": str(uuid.uuid4()),
        "method": "tools/call",
        "params": {
            "name": workflow,
            "arguments": {
                "message": message,
                "query": message,
                "input": message,
                "text": message,
                "chatInput": message,
                "data": {"message": message, "input": message},
                "items": [{"json": {"message": message}}],
            },
        },
    }


def extract_text(result: Any) -> str:
    """First usable text in *result*; stringified JSON as a last resort."""
    text = _first_text(result, 0)
    if text is not None:
        return text.strip()
    if result is None:
        return ""
    return json.dumps(result, ensure_ascii=False, default=str)


def _first_text(obj: Any, depth: int) -> str | None:
    if depth > _MAX_DEPTH:
        return None
    if isinstance(obj, str):
        stripped = obj.strip()
        if stripped.startswith(("{", "[")):
            # Workflows often wrap their real output in a JSON string.
            try:
                inner = _first_text(json.loads(stripped), depth + 1)
            except json.JSONDecodeError:
                inner = None
            if inner is not None:
                return inner
        return obj if stripped else None
    if isinstance(obj, list):
        parts = [t for t in (_first_text(item, depth + 1) for item in obj) if t]
        return "\n".join(parts) if parts else None
    if isinstance(obj, dict):
        for key in _TEXT_KEYS:
            if key in obj:
                text = _first_text(obj[key], depth + 1)
                if text:
                    return text
    return None


def _decode_body(response: httpx.Response) -> Any:
    """Parse JSON, or the last ``data:`` event of a text/event-stream body."""
    content_type = response.headers.get("content-type", "")
    if "text/event-stream" in content_type:
        events = [
            line[len("data:") :].strip()
            for line in response.text.splitlines()
            if line.startswith("data:")
        ]
        for event in reversed(events):
            try:
                return json.loads(event)
            except json.JSONDecodeError:
                continue
        return response.text
    try:
        return response.json()
    except (json.JSONDecodeError, ValueError):
        return response.text


def _last_user_text(messages: list[dict[str, Any]]) -> str:
    for msg in reversed(messages):
        if msg.get("role") != "user":
            continue
        content = msg.get("content")
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            return "\n".join(
                part.get("text", "") for part in content if isinstance(part, dict)
            ).strip()
    return ""


def _usage(body: Any) -> Usage:
    usage = body.get("usage") if isinstance(body, dict) else None
    if not isinstance(usage, dict):
        return Usage()
    return Usage(
        input_tokens=int(usage.get("prompt_tokens", usage.get("input_tokens", 0)) or 0),
        output_tokens=int(usage.get("completion_tokens", usage.get("output_tokens", 0)) or 0),
    )
