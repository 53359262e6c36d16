"""Tool interface and registry.

A tool returns ``{"success": True, ...}`` or ``{"error": "..."}``. The
registry never lets an exception escape ``execute()``: failures become an
``{"error": ...}`` result that is sent back to the model as the tool message,
so the model can recover or apologise.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from atrium.errors import ToolError
from atrium.providers.base import ToolCall

logger = logging.getLogger(__name__)


class Tool(ABC):
    """One callable capability exposed to the model."""

    name: str = ""
    description: str = ""

    @property
    @abstractmethod
    def parameters(self) -> dict[str, Any]:
        """JSON schema of the tool's arguments."""

    @abstractmethod
    async def run(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Execute the tool.

        Raises:
            ToolError: Invalid arguments or a failed remote call.
        """

    def declaration(self) -> dict[str, Any]:
        """OpenAI function-tool declaration."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


class ToolRegistry:
    """Named tools available to one turn."""

    def __init__(self, tools: list[Tool] | None = None) -> None:
        self._tools: dict[str, Tool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' is already registered")
        self._tools[tool.name] = tool

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def declarations(self) -> list[dict[str, Any]]:
        return [tool.declaration() for tool in self._tools.values()]

    async def execute(self, call: ToolCall) -> dict[str, Any]:
        """Run one call; errors are returned as ``{"error": ...}``, never raised."""
        tool = self._tools.get(call.name)
        if tool is None:
            return {"error": f"Unknown tool '{call.name}'. Available: {', '.join(self._tools)}"}
        try:
            return await tool.run(call.arguments or {})
        except asyncio.CancelledError:
            raise
        except ToolError as exc:
            logger.warning("Tool %s failed: %s", call.name, exc)
            return {"error": str(exc)}
        except Exception as exc:  # noqa: BLE001
            logger.exception("Tool %s raised unexpectedly", call.name)
            return {"error": f"{call.name} failed: {exc}"}

    async def execute_all(self, calls: list[ToolCall]) -> list[dict[str, Any]]:
        """Run independent calls concurrently; results come back in call order."""
        return list(await asyncio.gather(*(self.execute(call) for call in calls)))


class HttpTool(Tool):
    """Tool backed by a REST API on *base_url*.

    Args:
        base_url: API root; paths passed to ``_request`` are appended.
        token: Per-user bearer credential, if the API requires one.
        timeout: Per-request timeout in seconds.
        client: Injected httpx client (tests use ``httpx.MockTransport``).
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._token = token
        self._timeout = timeout
        self._client = client

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
        allow_missing: bool = False,
    ) -> Any:
        """Send one request and return the decoded JSON body.

        With *allow_missing*, a 404 returns None instead of raising.

        Raises:
            ToolError: Transport failure or a non-2xx status.
        """
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            if self._client is not None:
                response = await self._client.request(
                    method, url, json=json, params=params, headers=self._headers()
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.request(
                        method, url, json=json, params=params, headers=self._headers()
                    )
        except httpx.HTTPError as exc:
            raise ToolError(f"{self.name}: request to {url} failed: {exc}") from exc

        if allow_missing and response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise ToolError(
                f"{self.name}: {method} {path} returned HTTP {response.status_code}: "
                f"{_error_detail(response)}"
            )
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise ToolError(f"{self.name}: {method} {path} returned non-JSON body") from exc


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:300]
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            return str(error.get("message") or error)
        return str(body.get("message") or error or body)[:300]
    return str(body)[:300]


class ActionTool(HttpTool):
    """HttpTool exposing several named actions: ``{"action": ..., "params": {...}}``.

    Subclasses list their actions in ``actions`` and implement each one as
    ``async def action_<name>(self, params) -> dict``.
    """

    actions: tuple[str, ...] = ()

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "action": {"type": "string", "enum": list(self.actions)},
                "params": {"type": "object", "description": "Arguments for the action"},
            },
            "required": ["action"],
        }

    async def run(self, arguments: dict[str, Any]) -> dict[str, Any]:
        action = str(arguments.get("action") or "")
        if action not in self.actions:
            raise ToolError(
                f"{self.name}: unknown action '{action}'. Use one of: {', '.join(self.actions)}"
            )
        if not self._token:
            raise ToolError(f"{self.name}: no credential configured for this user")
        params = arguments.get("params") or {}
        if not isinstance(params, dict):
            raise ToolError(f"{self.name}: 'params' must be an object")
        result = await getattr(self, f"action_{action}")(params)
        return {"success": True, "action": action, **result}


def require(params: dict[str, Any], *keys: str) -> list[str]:
    """Values of *keys* as strings; ToolError naming the first missing one."""
    values = []
    for key in keys:
        value = params.get(key)
        if value is None or str(value).strip() == "":
            raise ToolError(f"Missing required parameter '{key}'")
        values.append(str(value).strip())
    return values
