"""atrium memory CLI commands.

Commands:
  atrium memory add TEXT --type preference   store a memory fact
  atrium memory list                         show active memories, most confident first
  atrium memory remove ID                    delete a memory fact
"""

from __future__ import annotations

import uuid
from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from atrium.cli.common import DEFAULT_DB, DEFAULT_USER, console, open_db, open_existing_repo
from atrium.cli.errors import err_memory_not_found
from atrium.db.models import MemoryFact, MemoryType
from atrium.db.repository import Repository

memory_app = typer.Typer(
    name="memory",
    help="Manage long-term memory facts (add, list, remove).",
    add_completion=False,
)

_UserOpt = Annotated[
    str, typer.Option("--user", "-u", envvar="ATRIUM_USER", help="Owner of the memories.")
]
_DbOpt = Annotated[Path, typer.Option("--db", help="Path to atrium.db.")]


@memory_app.command("add")
def memory_add_cmd(
    content: Annotated[str, typer.Argument(help="The fact to remember.")],
    memory_type: Annotated[
        MemoryType, typer.Option("--type", "-t", help="Kind of memory.")
    ] = MemoryType.FACT,
    confidence: Annotated[
        float, typer.Option("--confidence", min=0.0, max=1.0, help="Confidence in [0, 1].")
    ] = 0.6,
    user: _UserOpt = DEFAULT_USER,
    db: _DbOpt = DEFAULT_DB,
) -> None:
    """Store a memory fact."""
    if not content.strip():
        console.print("[red]Error:[/] Memory text is empty.\n  Pass the fact as an argument.")
        raise typer.Exit(1)

    conn = open_db(db)
    try:
        fact = MemoryFact(
            id=str(uuid.uuid4()),
            owner_user_id=user,
            memory_type=memory_type,
            content=content.strip(),
            confidence=confidence,
        )
        Repository(conn).upsert_memory(fact)
    finally:
        conn.close()
    console.print(f"[green]✓[/] Remembered ({fact.memory_type.value}): {fact.id}")


@memory_app.command("list")
def memory_list_cmd(
    show_all: Annotated[
        bool, typer.Option("--all", help="Include inactive memories.")
    ] = False,
    user: _UserOpt = DEFAULT_USER,
    db: _DbOpt = DEFAULT_DB,
) -> None:
    """List memories, most confident first."""
    conn, repo = open_existing_repo(db)
    try:
        facts = repo.list_memories(user, active_only=not show_all)
    finally:
        conn.close()

    if not facts:
        console.print(f"[yellow]No memories stored for '{user}'.[/]")
        raise typer.Exit(0)

    table = Table(title=f"Memories ({user})", show_header=True, header_style="bold")
    table.add_column("ID", style="dim")
    table.add_column("Type")
    table.add_column("Confidence", justify="right")
    table.add_column("Content")
    for fact in facts:
        content = fact.content if fact.is_active else f"[dim]{fact.content} (inactive)[/]"
        table.add_row(fact.id, fact.memory_type.value, f"{fact.confidence:.2f}", content)
    console.print(table)


@memory_app.command("remove")
def memory_remove_cmd(
    memory_id: Annotated[str, typer.Argument(help="Memory id (see 'atrium memory list').")],
    user: _UserOpt = DEFAULT_USER,
    db: _DbOpt = DEFAULT_DB,
) -> None:
    """Delete a memory fact."""
    conn, repo = open_existing_repo(db)
    try:
        removed = repo.delete_memory(user, memory_id)
    finally:
        conn.close()
    if not removed:
        console.print(err_memory_not_found(memory_id))
        raise typer.Exit(1)
    console.print(f"[green]✓[/] Removed memory {memory_id}")
