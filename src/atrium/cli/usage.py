"""atrium usage: token counters and cost per model, plus per-user rate overrides."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from atrium.cli.common import DEFAULT_DB, DEFAULT_USER, console, load_settings, open_existing_repo
from atrium.usage import UsageLedger


def usage_cmd(
    user: Annotated[
        str, typer.Option("--user", "-u", envvar="ATRIUM_USER", help="Whose usage to show.")
    ] = DEFAULT_USER,
    set_input_rate: Annotated[
        float | None,
        typer.Option("--set-input-rate", min=0.0, help="Override USD per million input tokens."),
    ] = None,
    set_output_rate: Annotated[
        float | None,
        typer.Option("--set-output-rate", min=0.0, help="Override USD per million output tokens."),
    ] = None,
    db: Annotated[Path, typer.Option("--db", help="Path to atrium.db.")] = DEFAULT_DB,
) -> None:
    """Show token usage and cost for a user."""
    cfg = load_settings(db)
    conn, repo = open_existing_repo(db)
    try:
        ledger = UsageLedger(repo, cfg.usage.input_per_million, cfg.usage.output_per_million)
        if set_input_rate is not None or set_output_rate is not None:
            current_in, current_out = ledger.rates_for(user)
            ledger.set_rate(
                user,
                set_input_rate if set_input_rate is not None else current_in,
                set_output_rate if set_output_rate is not None else current_out,
            )
            console.print(f"[green]✓[/] Rates updated for '{user}'")

        lines = ledger.usage_for_user(user)
        input_rate, output_rate = ledger.rates_for(user)
    finally:
        conn.close()

    if not lines:
        console.print(f"[yellow]No usage recorded for '{user}'.[/]")
        raise typer.Exit(0)

    table = Table(title=f"Usage ({user})", show_header=True, header_style="bold")
    table.add_column("Model", style="bold")
    table.add_column("Input tokens", justify="right")
    table.add_column("Output tokens", justify="right")
    table.add_column("Cost (USD)", justify="right")
    for line in lines:
        table.add_row(
            line.model, f"{line.input_tokens:,}", f"{line.output_tokens:,}", f"${line.cost:.4f}"
        )
    console.print(table)
    console.print(
        f"\n  Total: ${sum(line.cost for line in lines):.4f}  "
        f"[dim](rates: ${input_rate:g} in / ${output_rate:g} out per million)[/]"
    )
