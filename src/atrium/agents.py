"""Agent configurations: which provider, model and tools a turn runs with.

Agents are declared under ``agents:`` in atrium.yaml. Selection is made by
the caller; the orchestrator treats an AgentConfig as immutable per turn.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any


class ProviderKind(str, Enum):
    GATEWAY = "gateway"                      # hosted multi-model gateway, native tools
    OPENAI_COMPATIBLE = "openai_compatible"  # self-hosted server, prompt-based tools
    WORKFLOW = "workflow"                    # remote workflow over JSON-RPC


@dataclass(frozen=True)
class ToolFlags:
    web_search: bool = False
    repository: bool = False
    deployment: bool = False

    def enabled(self) -> list[str]:
        names = []
        if self.web_search:
            names.append("web_search")
        if self.repository:
            names.append("repository_action")
        if self.deployment:
            names.append("deployment_action")
        return names


@dataclass(frozen=True)
class AgentConfig:
    """One assistant persona.

    Attributes:
        provider: Which completion provider variant serves this agent.
        model: Model identifier (litellm string for gateway / openai_compatible,
            workflow name for workflow).
        endpoint: Base URL for self-hosted and workflow providers.
        credential_env: Environment variable holding the provider credential.
        credential: Credential resolved at runtime; never read from YAML.
    """

    id: str
    provider: ProviderKind = ProviderKind.GATEWAY
    model: str = "openrouter/anthropic/claude-3.5-sonnet"
    name: str = ""
    system_prompt: str = "You are a helpful personal assistant."
    temperature: float = 0.7
    top_p: float = 1.0
    endpoint: str | None = None
    credential_env: str | None = None
    credential: str | None = field(default=None, repr=False)
    tools: ToolFlags = field(default_factory=ToolFlags)

    def with_credential(self) -> AgentConfig:
        """Return a copy with ``credential`` filled from ``credential_env``."""
        if self.credential or not self.credential_env:
            return self
        return replace(self, credential=os.environ.get(self.credential_env))


def agent_from_dict(raw: dict[str, Any]) -> AgentConfig:
    """Build an AgentConfig from one YAML mapping.

    Raises:
        ValueError: On a missing id, unknown provider, or an inline credential.
    """
    if "credential" in raw:
        raise ValueError(
            f"Agent '{raw.get('id', '?')}' stores a credential inline; "
            "use credential_env to name an environment variable instead."
        )
    if not raw.get("id"):
        raise ValueError("Every agent needs an 'id'")
    tools = raw.get("tools") or {}
    return AgentConfig(
        id=str(raw["id"]),
        provider=ProviderKind(raw.get("provider", ProviderKind.GATEWAY.value)),
        model=str(raw.get("model", AgentConfig.model)),
        name=str(raw.get("name", raw["id"])),
        system_prompt=str(raw.get("system_prompt", AgentConfig.system_prompt)),
        temperature=float(raw.get("temperature", AgentConfig.temperature)),
        top_p=float(raw.get("top_p", AgentConfig.top_p)),
        endpoint=raw.get("endpoint"),
        credential_env=raw.get("credential_env"),
        tools=ToolFlags(
            web_search=bool(tools.get("web_search", False)),
            repository=bool(tools.get("repository", tools.get("github", False))),
            deployment=bool(tools.get("deployment", tools.get("vercel", False))),
        ),
    )


def get_agent(agents: list[AgentConfig], agent_id: str) -> AgentConfig | None:
    return next((a for a in agents if a.id == agent_id), None)


def default_agent(agents: list[AgentConfig], fallback_model: str) -> AgentConfig:
    """First configured agent, or a plain gateway agent on *fallback_model*."""
    if agents:
        return agents[0]
    return AgentConfig(
        id="default",
        name="Assistant",
        model=fallback_model,
        credential_env="OPENROUTER_API_KEY",
        tools=ToolFlags(web_search=True),
    )


def search_agents(agents: list[AgentConfig], query: str) -> list[AgentConfig]:
    """Agents whose id, name or system prompt mention *query* (case-insensitive)."""
    q = query.lower()
    return [
        a
        for a in agents
        if q in a.id.lower() or q in a.name.lower() or q in a.system_prompt.lower()
    ]
