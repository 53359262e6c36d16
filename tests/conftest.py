"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from atrium.db.connection import Database
from atrium.db.repository import Repository
from atrium.db.schema import initialize


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / "atrium.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def vec_db(tmp_db):
    """Like tmp_db, but skips the test when sqlite-vec cannot be loaded."""
    if not Repository(tmp_db).vec_available:
        pytest.skip("sqlite-vec extension not available")
    return tmp_db
