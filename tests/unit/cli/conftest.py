"""Fixtures for CLI tests: isolated config, env and logging."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

import atrium.config
from atrium.cli.common import open_db


@pytest.fixture(autouse=True)
def _isolated(tmp_path: Path, monkeypatch):
    """Keep the real ~/.atrium config and shell env out of CLI runs."""
    monkeypatch.setattr(atrium.config, "_GLOBAL_CONFIG_PATH", tmp_path / "no-global" / "config.yaml")
    for var in (
        "ATRIUM_USER",
        "ATRIUM_CHAT_MODEL",
        "ATRIUM_EMBEDDING_MODEL",
        "ATRIUM_SEARCH_URL",
        "ATRIUM_LOG_LEVEL",
        "OPENAI_API_KEY",
    ):
        monkeypatch.delenv(var, raising=False)
    yield
    logger = logging.getLogger("atrium")
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    """Path to an initialized (empty) atrium.db."""
    path = tmp_path / "atrium.db"
    open_db(path).close()
    return path
