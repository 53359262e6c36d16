"""Atrium CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from atrium.cli.chat import chat_cmd
from atrium.cli.documents import documents_app
from atrium.cli.ingest import ingest_cmd
from atrium.cli.init import init_cmd
from atrium.cli.memory import memory_app
from atrium.cli.repair import repair_cmd
from atrium.cli.usage import usage_cmd


def _installed_version() -> str:
    try:
        return importlib.metadata.version("atrium")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"atrium {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="atrium",
    help=(
        "Atrium: personal assistant with memory, document retrieval and tools.\n\n"
        "  atrium ingest   Add files to the knowledge store.\n"
        "  atrium chat     Ask the assistant a question."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """Atrium: personal assistant with memory, document retrieval and tools."""


app.command("init")(init_cmd)
app.command("ingest")(ingest_cmd)
app.command("chat")(chat_cmd)
app.command("repair")(repair_cmd)
app.command("usage")(usage_cmd)
app.add_typer(memory_app, name="memory")
app.add_typer(documents_app, name="documents")


@app.command("version")
def version_cmd() -> None:
    """Show the installed Atrium version."""
    typer.echo(f"atrium {_installed_version()}")


if __name__ == "__main__":
    app()
