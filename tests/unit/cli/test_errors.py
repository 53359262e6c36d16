"""Tests for atrium CLI error messages."""

from __future__ import annotations

import pytest

from atrium.cli.errors import (
    err_config,
    err_document_not_found,
    err_file_not_found,
    err_memory_not_found,
    err_missing_credential,
    err_no_api_key,
    err_no_db,
    err_turn_failed,
    err_unknown_agent,
    err_vec_unavailable,
)


def _has_action(msg: str) -> bool:
    """Every error must say what to do next."""
    lower = msg.lower()
    return any(kw in lower for kw in ["run:", "set:", "install", "export ", "fix ", "check ", "add it"])


@pytest.mark.parametrize(
    "msg",
    [
        err_no_db("x.db"),
        err_no_api_key("openai"),
        err_config("chunking.overlap must be in [0, chunk_size)"),
        err_unknown_agent("nope", ["writer"]),
        err_missing_credential("writer", "OPENROUTER_API_KEY"),
        err_file_not_found("a.pdf"),
        err_document_not_found("doc-1"),
        err_memory_not_found("m-1"),
        err_vec_unavailable(),
        err_turn_failed("timeout"),
    ],
)
def test_every_error_is_actionable(msg: str) -> None:
    assert _has_action(msg)


def test_no_api_key_names_env_var() -> None:
    assert "export OPENAI_API_KEY=" in err_no_api_key("openai")
    assert "export OPENROUTER_API_KEY=" in err_no_api_key("OpenRouter")
    assert "export ACME_API_KEY=" in err_no_api_key("acme")


def test_unknown_agent_lists_known_agents() -> None:
    assert "writer, coder" in err_unknown_agent("x", ["writer", "coder"])
    assert "(none configured)" in err_unknown_agent("x", [])


def test_no_db_mentions_path() -> None:
    assert "'data/atrium.db'" in err_no_db("data/atrium.db")
