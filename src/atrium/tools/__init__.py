"""Tools the model can call mid-conversation."""

from __future__ import annotations

from typing import TYPE_CHECKING, Mapping

from atrium.tools.base import ActionTool, HttpTool, Tool, ToolRegistry
from atrium.tools.deployment import DeploymentTool
from atrium.tools.repository import RepositoryTool
from atrium.tools.web_search import WebSearchTool, render_search_block

if TYPE_CHECKING:
    from atrium.agents import AgentConfig
    from atrium.config import ToolsCfg

__all__ = [
    "ActionTool",
    "DeploymentTool",
    "HttpTool",
    "RepositoryTool",
    "Tool",
    "ToolRegistry",
    "WebSearchTool",
    "build_registry",
    "render_search_block",
]


def build_registry(
    agent: AgentConfig,
    cfg: ToolsCfg,
    credentials: Mapping[str, str | None] | None = None,
) -> ToolRegistry:
    """Registry holding the tools *agent* has enabled.

    Args:
        credentials: Per-user bearer tokens keyed by ``"repository"`` and
            ``"deployment"``. Tools are still registered without one and
            report the missing credential as a tool error.
    """
    credentials = credentials or {}
    registry = ToolRegistry()
    if agent.tools.web_search:
        registry.register(
            WebSearchTool(cfg.search_url, max_results=cfg.max_search_results, timeout=cfg.timeout)
        )
    if agent.tools.repository:
        registry.register(
            RepositoryTool(
                cfg.repository_api, token=credentials.get("repository"), timeout=cfg.timeout
            )
        )
    if agent.tools.deployment:
        registry.register(
            DeploymentTool(
                cfg.deployment_api, token=credentials.get("deployment"), timeout=cfg.timeout
            )
        )
    return registry
