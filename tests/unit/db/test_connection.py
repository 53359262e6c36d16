"""Tests for Database connection layer."""

from __future__ import annotations

from pathlib import Path

import pytest

from atrium.db.connection import Database
from atrium.db.repository import Repository


def test_connect_creates_file(tmp_path):
    db_path = tmp_path / "atrium.db"
    conn = Database(db_path).connect()
    conn.close()
    assert db_path.exists()


def test_foreign_keys_enabled(tmp_path):
    conn = Database(tmp_path / "atrium.db").connect()
    result = conn.execute("PRAGMA foreign_keys").fetchone()[0]
    conn.close()
    assert result == 1


def test_wal_journal_mode(tmp_path):
    conn = Database(tmp_path / "atrium.db").connect()
    mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
    conn.close()
    assert mode == "wal"


def test_row_factory_set(tmp_path):
    conn = Database(tmp_path / "atrium.db").connect()
    conn.execute("CREATE TABLE t (x INTEGER)")
    conn.execute("INSERT INTO t VALUES (42)")
    row = conn.execute("SELECT x FROM t").fetchone()
    conn.close()
    assert row["x"] == 42


def test_sqlite_vec_loads(vec_db):
    version = vec_db.execute("SELECT vec_version()").fetchone()[0]
    assert version.startswith("v")


def test_vec_available_reports_extension_state(tmp_db):
    repo = Repository(tmp_db)
    first = repo.vec_available
    # Cached after the first check.
    assert repo.vec_available is first


def test_context_manager_closes_connection(tmp_path):
    db = Database(tmp_path / "atrium.db")
    with db as conn:
        conn.execute("CREATE TABLE t (x INTEGER)")
    with pytest.raises(Exception):
        conn.execute("SELECT 1")


def test_accepts_path_str(tmp_path):
    db = Database(str(tmp_path / "atrium.db"))
    assert isinstance(db.db_path, Path)
    with db as conn:
        assert conn.execute("SELECT 1").fetchone()[0] == 1
