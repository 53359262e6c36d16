"""sqlite-vec tables: one ``vec0`` table per embedding model.

Vectors are keyed by ``chunks.rowid``. A chunk with no row in the active
model's table has a null embedding; switching embedding model simply starts
a new, empty table and the repair sweep fills it.
"""

from __future__ import annotations

import re
import sqlite3

from atrium.errors import RetrievalError

VEC_TABLE_PREFIX = "vec_chunks_"

_SLUG_RE = re.compile(r"[a-z0-9_]+")
_DIMENSIONS_RE = re.compile(r"float\[(\d+)\]")


def model_to_slug(model: str) -> str:
    """``"ollama/nomic-embed-text"`` -> ``"ollama_nomic_embed_text"``."""
    return re.sub(r"[^a-z0-9]", "_", model.lower())


def vec_table_name(model_slug: str) -> str:
    return f"{VEC_TABLE_PREFIX}{model_slug}"


def _table_sql(conn: sqlite3.Connection, table: str) -> str | None:
    row = conn.execute(
        "SELECT sql FROM sqlite_master WHERE type='table' AND name=?", (table,)
    ).fetchone()
    return None if row is None else (row[0] or "")


def vec_table_exists(conn: sqlite3.Connection, table: str) -> bool:
    return _table_sql(conn, table) is not None


def list_vec_tables(conn: sqlite3.Connection) -> list[str]:
    """Every per-model vec0 table, excluding sqlite-vec's shadow tables."""
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' "
        "AND name LIKE ? AND sql LIKE 'CREATE VIRTUAL TABLE%'",
        (f"{VEC_TABLE_PREFIX}%",),
    ).fetchall()
    return [r[0] for r in rows]


def vec_table_dimensions(conn: sqlite3.Connection, table: str) -> int | None:
    """Vector width declared by *table*, or None if the table does not exist."""
    sql = _table_sql(conn, table)
    if sql is None:
        return None
    match = _DIMENSIONS_RE.search(sql)
    return int(match.group(1)) if match else None


def ensure_vec_table(conn: sqlite3.Connection, model_slug: str, dimensions: int) -> str:
    """Return the vec table for *model_slug*, creating it on first use.

    Args:
        conn: Connection with sqlite-vec loaded.
        model_slug: Output of ``model_to_slug()``.
        dimensions: Width of the vectors about to be written.

    Raises:
        ValueError: Unsanitized slug or non-positive dimensions.
        RetrievalError: The table exists with a different width (the model
            now returns vectors of another size).
    """
    if not _SLUG_RE.fullmatch(model_slug):
        raise ValueError(f"Invalid model_slug '{model_slug}'; use model_to_slug() to sanitize.")
    if dimensions < 1:
        raise ValueError(f"dimensions must be >= 1, got {dimensions}")

    table = vec_table_name(model_slug)
    existing = vec_table_dimensions(conn, table)
    if existing is None:
        conn.execute(f"CREATE VIRTUAL TABLE {table} USING vec0(embedding float[{dimensions}])")
        conn.commit()
    elif existing != dimensions:
        raise RetrievalError(
            f"{table} stores {existing}-dimensional vectors, got {dimensions}; "
            "configure a different embedding model name or drop the table."
        )
    return table
