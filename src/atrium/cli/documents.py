"""atrium documents CLI commands.

Commands:
  atrium documents list          show the user's documents with chunk counts
  atrium documents remove ID     delete a document, its chunks and vectors
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from atrium.cli.common import DEFAULT_DB, DEFAULT_USER, console, open_existing_repo
from atrium.cli.errors import err_document_not_found

documents_app = typer.Typer(
    name="documents",
    help="Manage ingested documents (list, remove).",
    add_completion=False,
)


@documents_app.command("list")
def documents_list_cmd(
    user: Annotated[
        str, typer.Option("--user", "-u", envvar="ATRIUM_USER", help="Document owner.")
    ] = DEFAULT_USER,
    db: Annotated[Path, typer.Option("--db", help="Path to atrium.db.")] = DEFAULT_DB,
) -> None:
    """List documents in the knowledge store."""
    conn, repo = open_existing_repo(db)
    try:
        docs = repo.list_documents(user)
        if not docs:
            console.print(f"[yellow]No documents stored for '{user}'.[/]")
            raise typer.Exit(0)

        table = Table(title=f"Documents ({user})", show_header=True, header_style="bold")
        table.add_column("ID", style="dim")
        table.add_column("Title", style="bold")
        table.add_column("Source")
        table.add_column("Chunks", justify="right")
        table.add_column("Added")
        for doc in docs:
            table.add_row(
                doc.id,
                doc.title,
                doc.source_type,
                str(repo.count_chunks(doc.id)),
                (doc.created_at or "")[:16],
            )
    finally:
        conn.close()
    console.print(table)


@documents_app.command("remove")
def documents_remove_cmd(
    document_id: Annotated[str, typer.Argument(help="Document id (see 'atrium documents list').")],
    user: Annotated[
        str, typer.Option("--user", "-u", envvar="ATRIUM_USER", help="Document owner.")
    ] = DEFAULT_USER,
    db: Annotated[Path, typer.Option("--db", help="Path to atrium.db.")] = DEFAULT_DB,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt.")] = False,
) -> None:
    """Delete a document together with its chunks and embeddings."""
    conn, repo = open_existing_repo(db)
    try:
        doc = repo.get_document(document_id)
        if doc is None or doc.owner_user_id != user:
            console.print(err_document_not_found(document_id))
            raise typer.Exit(1)

        chunk_count = repo.count_chunks(doc.id)
        console.print(f"\nRemove document: [bold]{doc.title}[/]  ({chunk_count} chunks)")
        if not yes and not typer.confirm("Confirm removal?", default=False):
            console.print("[dim]Cancelled.[/]")
            raise typer.Exit(0)

        removed = repo.delete_document(doc.id)
    finally:
        conn.close()
    console.print(f"[green]✓[/] Removed: {doc.title} ({removed} chunks)")
