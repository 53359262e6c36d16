"""atrium init: create the database and a starter atrium.yaml.

Creates:
  atrium.db     knowledge store with schema (documents, chunks, memories, usage)
  atrium.yaml   project config with one default agent; never holds API keys
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from atrium.cli.common import console, open_db
from atrium.config import write_project_config
from atrium.db.repository import Repository


def init_cmd(
    project_dir: Annotated[
        Path,
        typer.Argument(help="Directory to initialize. Defaults to current directory."),
    ] = Path("."),
) -> None:
    """Initialize an Atrium knowledge store in PROJECT_DIR."""
    project_dir = project_dir.resolve()
    project_dir.mkdir(parents=True, exist_ok=True)
    db_path = project_dir / "atrium.db"

    if db_path.exists():
        console.print(f"[yellow]⚠[/]  {db_path} already exists; schema is brought up to date.")

    conn = open_db(db_path)
    try:
        vec_ok = Repository(conn).vec_available
    finally:
        conn.close()
    console.print("  [green]✓[/] atrium.db")
    if not vec_ok:
        console.print("  [yellow]⚠[/] sqlite-vec not loaded; vector search will be unavailable")

    config_path = project_dir / "atrium.yaml"
    existed = config_path.exists()
    write_project_config(project_dir)
    console.print(f"  [green]✓[/] atrium.yaml{' (kept existing)' if existed else ''}")

    console.print("\nNext steps:")
    console.print("  1. export OPENROUTER_API_KEY=...  and  export OPENAI_API_KEY=...")
    console.print("  2. atrium ingest <files>            (build the knowledge store)")
    console.print('  3. atrium chat "your question"      (ask the assistant)')
