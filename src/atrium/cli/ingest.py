"""atrium ingest: bulk ingestion of local files.

Files are processed one at a time; a file that fails is reported and the
rest continue. Chunks whose embedding failed are re-embedded by the repair
sweep at the end of the run (or later with ``atrium repair``).
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn

from atrium.cli.common import DEFAULT_DB, DEFAULT_USER, build_pipeline, console, load_settings, open_db
from atrium.cli.errors import err_file_not_found
from atrium.db.repository import Repository
from atrium.ingest.pipeline import IngestFile


def ingest_cmd(
    files: Annotated[list[Path], typer.Argument(help="Files to ingest.")],
    user: Annotated[
        str, typer.Option("--user", "-u", envvar="ATRIUM_USER", help="Owner of the documents.")
    ] = DEFAULT_USER,
    db: Annotated[
        Path, typer.Option("--db", help="Path to atrium.db (created if missing).")
    ] = DEFAULT_DB,
) -> None:
    """Extract, chunk, embed and store FILES for one user."""
    missing = [f for f in files if not f.is_file()]
    if missing:
        for f in missing:
            console.print(err_file_not_found(str(f)))
        raise typer.Exit(1)

    cfg = load_settings(db)
    conn = open_db(db)
    try:
        pipeline = build_pipeline(cfg, Repository(conn))
        uploads = [IngestFile.from_path(f) for f in files]

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            transient=True,
            console=console,
        ) as prog:
            task = prog.add_task("Ingesting…", total=100)

            def _on_progress(filename: str, percent: int) -> None:
                prog.update(task, completed=percent, description=f"Ingesting {filename}")

            result = asyncio.run(pipeline.ingest(uploads, user, on_progress=_on_progress))
    finally:
        conn.close()

    for report in result.reports:
        if report.ok:
            suffix = f" [yellow]({report.note})[/]" if report.note else ""
            console.print(
                f"  [green]✓[/] {report.filename}: {report.chunks} chunks, "
                f"{report.embedded} embedded{suffix}"
            )
        else:
            console.print(f"  [red]✗[/] {report.filename}: {report.note}")

    if not any(r.ok for r in result.reports):
        raise typer.Exit(1)
