"""Tool-call parsing for providers without native tool calling.

The model is told (via system prompt) to emit::

    ```tool
    {"tool": "web_search", "params": {"query": "..."}}
    ```

Parsing tries, in order:
  1. fenced code blocks whose body is a ``{"tool": ...}`` object
  2. bare inline objects starting with ``{"tool":``
Anything that looks like tool-call JSON is removed from the visible text,
even when it cannot be parsed.
"""

from __future__ import annotations

import json
import re
import uuid
from typing import Any

from atrium.providers.base import ToolCall

_FENCED_RE = re.compile(r"```[ \t]*(?:tool_call|tool|json)?[ \t]*\n?(.*?)```", re.DOTALL)
_INLINE_START_RE = re.compile(r"\{\s*\"tool\"\s*:")
_TOOLISH_RE = re.compile(r"\"tool\"\s*:")
_BLANK_LINES_RE = re.compile(r"\n{3,}")

_decoder = json.JSONDecoder()


def tool_instructions(tools: list[dict[str, Any]]) -> str:
    """System-prompt block describing *tools* and the expected call format."""
    lines = [
        "You can use the following tools. To call a tool, reply with ONLY a fenced",
        "block in exactly this format and nothing else:",
        "",
        "```tool",
        '{"tool": "<tool name>", "params": {<arguments>}}',
        "```",
        "",
        "After the tool result arrives, answer the user normally without any tool block.",
        "",
        "Available tools:",
    ]
    for decl in tools:
        fn = decl.get("function", decl)
        params = fn.get("parameters", {}).get("properties", {})
        lines.append(f"- {fn['name']}: {fn.get('description', '')}")
        if params:
            lines.append(f"  params: {json.dumps(params)}")
    return "\n".join(lines)


def parse_tool_calls(text: str) -> tuple[str, list[ToolCall]]:
    """Return (text with tool JSON removed, parsed tool calls)."""
    calls: list[ToolCall] = []
    spans: list[tuple[int, int]] = []

    for match in _FENCED_RE.finditer(text):
        body = match.group(1).strip()
        if not _TOOLISH_RE.search(body):
            continue
        spans.append(match.span())
        call = _to_call(_loads(body))
        if call is not None:
            calls.append(call)

    if not calls:
        for match in _INLINE_START_RE.finditer(text):
            start = match.start()
            if any(s <= start < e for s, e in spans):
                continue
            try:
                obj, end = _decoder.raw_decode(text, start)
            except json.JSONDecodeError:
                # Unparseable: hide everything up to the last closing brace.
                last = text.rfind("}", start)
                spans.append((start, last + 1 if last != -1 else len(text)))
                continue
            spans.append((start, end))
            call = _to_call(obj)
            if call is not None:
                calls.append(call)

    return _remove_spans(text, spans), calls


def strip_tool_markup(text: str) -> str:
    """Remove any tool-call JSON from *text*, ignoring the parsed calls."""
    cleaned, _ = parse_tool_calls(text)
    return cleaned


def _loads(body: str) -> Any:
    try:
        return json.loads(body)
    except json.JSONDecodeError:
        match = _INLINE_START_RE.search(body)
        if match is None:
            return None
        try:
            obj, _ = _decoder.raw_decode(body, match.start())
            return obj
        except json.JSONDecodeError:
            return None


def _to_call(obj: Any) -> ToolCall | None:
    if not isinstance(obj, dict) or not isinstance(obj.get("tool"), str):
        return None
    params = obj.get("params", obj.get("arguments", {}))
    if isinstance(params, str):
        try:
            params = json.loads(params)
        except json.JSONDecodeError:
            params = {}
    if not isinstance(params, dict):
        params = {}
    return ToolCall(id=f"call_{uuid.uuid4().hex[:12]}", name=obj["tool"], arguments=params)


def _remove_spans(text: str, spans: list[tuple[int, int]]) -> str:
    if not spans:
        return text.strip()
    out: list[str] = []
    pos = 0
    for start, end in sorted(spans):
        if start < pos:
            start = pos
        out.append(text[pos:start])
        pos = max(pos, end)
    out.append(text[pos:])
    return _BLANK_LINES_RE.sub("\n\n", "".join(out)).strip()
