"""Shared wiring for CLI commands: database, config, components."""

from __future__ import annotations

import os
import sqlite3
from pathlib import Path

import typer
from rich.console import Console

from atrium.agents import AgentConfig, default_agent, get_agent
from atrium.cli.errors import err_config, err_no_db, err_unknown_agent
from atrium.config import AtriumConfig, ConfigError, load_config
from atrium.db.connection import Database
from atrium.db.repository import Repository
from atrium.db.schema import initialize
from atrium.ingest.chunker import TextChunker
from atrium.ingest.embedding import EmbeddingClient
from atrium.ingest.extractor import TextExtractor
from atrium.ingest.pipeline import IngestPipeline
from atrium.logging_setup import setup_logging
from atrium.providers.gateway import GatewayProvider

console = Console()

DEFAULT_DB = Path("atrium.db")
DEFAULT_USER = "local"

# Per-user bearer tokens for the repository / deployment tools.
TOOL_CREDENTIAL_ENV = {"repository": "GITHUB_TOKEN", "deployment": "VERCEL_TOKEN"}


def open_db(db_path: Path) -> sqlite3.Connection:
    """Open (or create) the database and run migrations."""
    conn = Database(db_path).connect()
    initialize(conn)
    return conn


def open_existing_repo(db_path: Path) -> tuple[sqlite3.Connection, Repository]:
    """Open an existing database or exit with an actionable error."""
    if not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)
    conn = open_db(db_path)
    return conn, Repository(conn)


def load_settings(db_path: Path) -> AtriumConfig:
    """Load config next to *db_path* and configure logging; exit 1 on bad config."""
    try:
        cfg = load_config(db_path.resolve().parent)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)
    setup_logging(cfg.logging.level)
    return cfg


def build_embedder(cfg: AtriumConfig) -> EmbeddingClient:
    return EmbeddingClient(
        cfg.embedding.model,
        batch_size=cfg.embedding.batch_size,
        max_concurrency=cfg.embedding.max_concurrency,
    )


def build_pipeline(cfg: AtriumConfig, repo: Repository) -> IngestPipeline:
    extractor = TextExtractor(
        vision=GatewayProvider(cfg.ingest.vision_model),
        max_pdf_pages=cfg.ingest.max_pdf_pages,
        pdf_timeout=cfg.ingest.pdf_timeout,
        max_upload_bytes=cfg.ingest.max_upload_bytes,
    )
    chunker = TextChunker(cfg.chunking.chunk_size, cfg.chunking.overlap)
    return IngestPipeline(repo, extractor, chunker, build_embedder(cfg))


def resolve_agent(cfg: AtriumConfig, agent_id: str | None) -> AgentConfig:
    if agent_id:
        agent = get_agent(cfg.agents, agent_id)
        if agent is None:
            console.print(err_unknown_agent(agent_id, [a.id for a in cfg.agents]))
            raise typer.Exit(1)
    else:
        agent = default_agent(cfg.agents, cfg.chat.model)
    return agent.with_credential()


def tool_credentials() -> dict[str, str | None]:
    return {name: os.environ.get(env) for name, env in TOOL_CREDENTIAL_ENV.items()}
