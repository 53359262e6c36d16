"""Completion provider variants behind one contract."""

from __future__ import annotations

from atrium.agents import AgentConfig, ProviderKind
from atrium.providers.base import (
    Completion,
    CompletionProvider,
    CompletionRequest,
    ToolCall,
    ToolMode,
    Usage,
)
from atrium.providers.gateway import GatewayProvider
from atrium.providers.openai_compatible import OpenAICompatibleProvider
from atrium.providers.workflow import WorkflowProvider

__all__ = [
    "Completion",
    "CompletionProvider",
    "CompletionRequest",
    "GatewayProvider",
    "OpenAICompatibleProvider",
    "ToolCall",
    "ToolMode",
    "Usage",
    "WorkflowProvider",
    "build_provider",
]


def build_provider(agent: AgentConfig, timeout: float = 120.0) -> CompletionProvider:
    """Create the provider variant *agent* asks for.

    The agent's credential must already be resolved (see
    ``AgentConfig.with_credential``); nothing is cached between calls.

    Raises:
        ValueError: A self-hosted or workflow agent without an endpoint.
    """
    if agent.provider is ProviderKind.GATEWAY:
        return GatewayProvider(
            agent.model, api_key=agent.credential, api_base=agent.endpoint, timeout=timeout
        )
    if not agent.endpoint:
        raise ValueError(f"Agent '{agent.id}' ({agent.provider.value}) needs an endpoint")
    if agent.provider is ProviderKind.OPENAI_COMPATIBLE:
        return OpenAICompatibleProvider(
            agent.model, endpoint=agent.endpoint, api_key=agent.credential, timeout=timeout
        )
    return WorkflowProvider(
        agent.model, endpoint=agent.endpoint, api_key=agent.credential, timeout=timeout
    )
