"""Atrium configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site, not in this module)
  2. Environment variables  (ATRIUM_CHAT_MODEL, ATRIUM_EMBEDDING_MODEL,
                             ATRIUM_SEARCH_URL, ATRIUM_LOG_LEVEL)
  3. Per-project atrium.yaml  (next to atrium.db)
  4. Global ~/.atrium/config.yaml  (defaults only, no API keys)
  5. Hardcoded defaults

Global config must never contain API keys; use environment variables instead.
Agents name the env var holding their credential (``credential_env``).
All YAML reads use yaml.safe_load(), never yaml.load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from atrium.agents import AgentConfig, ProviderKind, agent_from_dict
from atrium.tools.urls import normalize_base_url, validate_public_url

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".atrium"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "atrium.yaml"

# Fields that suggest an API key; forbidden in global config.
# Does NOT match legitimate keys like credential_env, max_tokens, batch_size.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"  # api_key, api-key, api_secret, apikey
    r"|_token$"                  # github_token, access_token (suffix)
    r"|^token$"                  # exactly "token"
    r"|_secret$"                 # client_secret (suffix)
    r"|^secret$"                 # exactly "secret"
    r"|passw(?:ord|d)"           # password, passwd
    r"|^credentials?$",          # credential, credentials (but not credential_env)
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    [
        "chat",
        "embedding",
        "chunking",
        "retrieval",
        "orchestrator",
        "tools",
        "ingest",
        "usage",
        "agents",
        "logging",
    ]
)

# Heuristic: phrases that suggest the model is guessing rather than knowing.
# False positives/negatives are acceptable; tune via orchestrator.uncertainty_phrases.
DEFAULT_UNCERTAINTY_PHRASES: tuple[str, ...] = (
    "i don't know",
    "i do not know",
    "i'm not sure",
    "i am not sure",
    "as of my last update",
    "as of my knowledge cutoff",
    "my knowledge cutoff",
    "my training data",
    "i don't have access to real-time",
    "i don't have real-time",
    "i cannot browse",
    "i can't browse",
    "let me search",
    "let me look that up",
    "i'll search",
    "i'll look up",
    "i will search",
    "i would need to search",
)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class ChatCfg:
    """Default completion model when no agent overrides it (atrium.yaml: chat:)."""

    model: str = "openrouter/anthropic/claude-3.5-sonnet"
    temperature: float = 0.7


@dataclass
class EmbeddingCfg:
    """Embedding model configuration (atrium.yaml: embedding:)."""

    model: str = "openai/text-embedding-3-small"
    batch_size: int = 32
    max_concurrency: int = 2


@dataclass
class ChunkingCfg:
    """Character-window chunking (atrium.yaml: chunking:)."""

    chunk_size: int = 1_400
    overlap: int = 200


@dataclass
class RetrievalCfg:
    """Context assembly limits (atrium.yaml: retrieval:)."""

    memory_cap: int = 40
    priority_memory_cap: int = 25
    memory_fetch_limit: int = 200
    document_limit: int = 6


@dataclass
class OrchestratorCfg:
    """Tool-calling loop and uncertainty fallback (atrium.yaml: orchestrator:)."""

    max_tool_iterations: int = 5
    fallback_enabled: bool = True
    fallback_query_chars: int = 200
    uncertainty_phrases: list[str] = field(
        default_factory=lambda: list(DEFAULT_UNCERTAINTY_PHRASES)
    )


@dataclass
class ToolsCfg:
    """External tool endpoints (atrium.yaml: tools:).

    Attributes:
        search_url: SearXNG-compatible base URL; ``/search`` is appended.
        repository_api: GitHub REST base URL.
        deployment_api: Vercel REST base URL.
        timeout: Per-request timeout in seconds.
        max_search_results: Results kept per web search.
    """

    search_url: str = "https://search.brainstormnodes.org"
    repository_api: str = "https://api.github.com"
    deployment_api: str = "https://api.vercel.com"
    timeout: float = 30.0
    max_search_results: int = 8


@dataclass
class IngestCfg:
    """Upload extraction limits (atrium.yaml: ingest:)."""

    max_pdf_pages: int = 100
    pdf_timeout: float = 30.0
    max_upload_bytes: int = 10 * 1024 * 1024
    vision_model: str = "openrouter/openai/gpt-4o-mini"


@dataclass
class UsageCfg:
    """Default USD rates per million tokens (atrium.yaml: usage:)."""

    input_per_million: float = 3.0
    output_per_million: float = 15.0


@dataclass
class LoggingCfg:
    level: str = "WARNING"


@dataclass
class AtriumConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    chat: ChatCfg = field(default_factory=ChatCfg)
    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    orchestrator: OrchestratorCfg = field(default_factory=OrchestratorCfg)
    tools: ToolsCfg = field(default_factory=ToolsCfg)
    ingest: IngestCfg = field(default_factory=IngestCfg)
    usage: UsageCfg = field(default_factory=UsageCfg)
    agents: list[AgentConfig] = field(default_factory=list)
    logging: LoggingCfg = field(default_factory=LoggingCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  API keys must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)
        elif isinstance(obj, list):
            for i, item in enumerate(obj):
                _scan(item, f"{path}[{i}]")

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}'; ignored.",
                UserWarning,
                stacklevel=4,
            )


def _validate(cfg: AtriumConfig) -> None:
    if cfg.chunking.chunk_size < 1:
        raise ConfigError(f"chunking.chunk_size must be >= 1, got {cfg.chunking.chunk_size}")
    if not 0 <= cfg.chunking.overlap < cfg.chunking.chunk_size:
        raise ConfigError(
            f"chunking.overlap must be in [0, chunk_size), got {cfg.chunking.overlap}"
        )
    if cfg.embedding.batch_size < 1:
        raise ConfigError("embedding.batch_size must be >= 1")
    if cfg.orchestrator.max_tool_iterations < 1:
        raise ConfigError("orchestrator.max_tool_iterations must be >= 1")
    if cfg.retrieval.priority_memory_cap > cfg.retrieval.memory_cap:
        raise ConfigError("retrieval.priority_memory_cap must not exceed retrieval.memory_cap")
    if cfg.tools.search_url:
        _check_public_url("tools.search_url", normalize_base_url(cfg.tools.search_url, "/search"))
    for agent in cfg.agents:
        if agent.provider is ProviderKind.WORKFLOW and agent.endpoint:
            _check_public_url(f"agents[{agent.id}].endpoint", agent.endpoint)


def _check_public_url(key: str, url: str) -> None:
    try:
        validate_public_url(url)
    except ValueError as exc:
        raise ConfigError(f"{key}: {exc}") from exc


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _cfg_from_dict(data: dict[str, Any]) -> AtriumConfig:
    """Build an *AtriumConfig* from a merged raw YAML dict."""
    cfg = AtriumConfig()

    if "chat" in data:
        c = data["chat"]
        cfg.chat = ChatCfg(
            model=str(c.get("model", cfg.chat.model)),
            temperature=float(c.get("temperature", cfg.chat.temperature)),
        )

    if "embedding" in data:
        e = data["embedding"]
        cfg.embedding = EmbeddingCfg(
            model=str(e.get("model", cfg.embedding.model)),
            batch_size=int(e.get("batch_size", cfg.embedding.batch_size)),
            max_concurrency=int(e.get("max_concurrency", cfg.embedding.max_concurrency)),
        )

    if "chunking" in data:
        ch = data["chunking"]
        cfg.chunking = ChunkingCfg(
            chunk_size=int(ch.get("chunk_size", cfg.chunking.chunk_size)),
            overlap=int(ch.get("overlap", cfg.chunking.overlap)),
        )

    if "retrieval" in data:
        r = data["retrieval"]
        cfg.retrieval = RetrievalCfg(
            memory_cap=int(r.get("memory_cap", cfg.retrieval.memory_cap)),
            priority_memory_cap=int(
                r.get("priority_memory_cap", cfg.retrieval.priority_memory_cap)
            ),
            memory_fetch_limit=int(
                r.get("memory_fetch_limit", cfg.retrieval.memory_fetch_limit)
            ),
            document_limit=int(r.get("document_limit", cfg.retrieval.document_limit)),
        )

    if "orchestrator" in data:
        o = data["orchestrator"]
        phrases = o.get("uncertainty_phrases")
        cfg.orchestrator = OrchestratorCfg(
            max_tool_iterations=int(
                o.get("max_tool_iterations", cfg.orchestrator.max_tool_iterations)
            ),
            fallback_enabled=bool(o.get("fallback_enabled", cfg.orchestrator.fallback_enabled)),
            fallback_query_chars=int(
                o.get("fallback_query_chars", cfg.orchestrator.fallback_query_chars)
            ),
            uncertainty_phrases=(
                [str(p) for p in phrases]
                if phrases is not None
                else list(cfg.orchestrator.uncertainty_phrases)
            ),
        )

    if "tools" in data:
        t = data["tools"]
        cfg.tools = ToolsCfg(
            search_url=str(t.get("search_url", cfg.tools.search_url)),
            repository_api=str(t.get("repository_api", cfg.tools.repository_api)),
            deployment_api=str(t.get("deployment_api", cfg.tools.deployment_api)),
            timeout=float(t.get("timeout", cfg.tools.timeout)),
            max_search_results=int(t.get("max_search_results", cfg.tools.max_search_results)),
        )

    if "ingest" in data:
        i = data["ingest"]
        cfg.ingest = IngestCfg(
            max_pdf_pages=int(i.get("max_pdf_pages", cfg.ingest.max_pdf_pages)),
            pdf_timeout=float(i.get("pdf_timeout", cfg.ingest.pdf_timeout)),
            max_upload_bytes=int(i.get("max_upload_bytes", cfg.ingest.max_upload_bytes)),
            vision_model=str(i.get("vision_model", cfg.ingest.vision_model)),
        )

    if "usage" in data:
        u = data["usage"]
        cfg.usage = UsageCfg(
            input_per_million=float(u.get("input_per_million", cfg.usage.input_per_million)),
            output_per_million=float(u.get("output_per_million", cfg.usage.output_per_million)),
        )

    if "agents" in data:
        cfg.agents = [agent_from_dict(a) for a in data.get("agents") or []]

    if "logging" in data:
        cfg.logging = LoggingCfg(level=str(data["logging"].get("level", cfg.logging.level)))

    return cfg


def _apply_env_overrides(cfg: AtriumConfig) -> AtriumConfig:
    """Apply ATRIUM_* environment variable overrides (layer 2)."""
    if model := os.environ.get("ATRIUM_CHAT_MODEL"):
        cfg.chat.model = model
    if model := os.environ.get("ATRIUM_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if url := os.environ.get("ATRIUM_SEARCH_URL"):
        cfg.tools.search_url = url
    if level := os.environ.get("ATRIUM_LOG_LEVEL"):
        cfg.logging.level = level
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> AtriumConfig:
    """Load and return a merged *AtriumConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *atrium.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: If global config contains API-key-like fields, or a
            value is out of range (e.g. overlap >= chunk_size).
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    # Layer 1: global config
    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    # Layer 2: per-project config
    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    try:
        cfg = _cfg_from_dict(merged)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid configuration value: {exc}") from exc

    # Layer 3: env var overrides
    cfg = _apply_env_overrides(cfg)
    _validate(cfg)
    return cfg


def write_project_config(project_dir: Path) -> Path:
    """Write a starter ``atrium.yaml`` into *project_dir* if none exists."""
    target = project_dir / _PROJECT_CONFIG_NAME
    if not target.exists():
        content = (
            "# Atrium project configuration.\n"
            "# NEVER store API keys here; use environment variables:\n"
            "#   export OPENROUTER_API_KEY=sk-or-...\n"
            "#   export OPENAI_API_KEY=sk-...\n"
            "\n"
            "chat:\n"
            "  model: openrouter/anthropic/claude-3.5-sonnet\n"
            "\n"
            "embedding:\n"
            "  model: openai/text-embedding-3-small\n"
            "\n"
            "agents:\n"
            "  - id: generalist\n"
            "    name: Generalist\n"
            "    provider: gateway\n"
            "    model: openrouter/anthropic/claude-3.5-sonnet\n"
            "    credential_env: OPENROUTER_API_KEY\n"
            "    system_prompt: You are a helpful personal assistant.\n"
            "    tools:\n"
            "      web_search: true\n"
        )
        target.write_text(content, encoding="utf-8")
    return target
