"""Atrium knowledge store: SQLite + sqlite-vec."""

from atrium.db.connection import Database
from atrium.db.migrations import MIGRATIONS, run_migrations
from atrium.db.repository import Repository
from atrium.db.schema import initialize
from atrium.db.vectors import ensure_vec_table, model_to_slug, vec_table_name

__all__ = [
    "Database",
    "Repository",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "ensure_vec_table",
    "model_to_slug",
    "vec_table_name",
]
