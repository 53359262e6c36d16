"""atrium repair: embed chunks that were stored without a vector.

Chunks end up without an embedding when the embedding provider fails after
extraction succeeded. Their content is kept as-is; only the vector is added.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer

from atrium.cli.common import (
    DEFAULT_DB,
    DEFAULT_USER,
    build_pipeline,
    console,
    load_settings,
    open_existing_repo,
)
from atrium.cli.errors import err_no_api_key, err_vec_unavailable
from atrium.db.vectors import model_to_slug, vec_table_name
from atrium.errors import ProviderError, RetrievalError


def repair_cmd(
    user: Annotated[
        str, typer.Option("--user", "-u", envvar="ATRIUM_USER", help="Whose chunks to repair.")
    ] = DEFAULT_USER,
    limit: Annotated[
        int | None, typer.Option("--limit", min=1, help="Repair at most this many chunks.")
    ] = None,
    db: Annotated[Path, typer.Option("--db", help="Path to atrium.db.")] = DEFAULT_DB,
) -> None:
    """Re-embed chunks whose embedding is missing."""
    cfg = load_settings(db)
    conn, repo = open_existing_repo(db)
    try:
        if not repo.vec_available:
            console.print(err_vec_unavailable())
            raise typer.Exit(1)

        table = vec_table_name(model_to_slug(cfg.embedding.model))
        pending = len(repo.chunks_missing_embeddings(user, table, limit=limit))
        if pending == 0:
            console.print("[green]✓[/] Every chunk has an embedding.")
            raise typer.Exit(0)

        console.print(f"Embedding {pending} chunk(s) with {cfg.embedding.model}…")
        pipeline = build_pipeline(cfg, repo)
        try:
            repaired = asyncio.run(pipeline.repair_missing_embeddings(user, limit=limit))
        except ProviderError as exc:
            if "No API key" in str(exc):
                console.print(err_no_api_key(cfg.embedding.model.split("/")[0]))
            else:
                console.print(f"[red]Error:[/] {exc}")
            raise typer.Exit(1)
        except RetrievalError as exc:
            console.print(f"[red]Error:[/] {exc}")
            raise typer.Exit(1)
    finally:
        conn.close()

    console.print(f"[green]✓[/] Repaired {repaired} chunk embedding(s)")
