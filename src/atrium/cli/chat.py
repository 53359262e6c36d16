"""atrium chat: run one orchestrated turn.

Ctrl-C while the assistant is working cancels the turn: the in-flight
request is aborted and nothing from the model is printed.
"""

from __future__ import annotations

import asyncio
import signal
from pathlib import Path
from typing import Annotated

import typer

from atrium.cli.common import (
    DEFAULT_DB,
    DEFAULT_USER,
    build_embedder,
    build_pipeline,
    console,
    load_settings,
    open_db,
    resolve_agent,
    tool_credentials,
)
from atrium.cli.errors import err_file_not_found, err_missing_credential, err_turn_failed
from atrium.agents import AgentConfig
from atrium.config import AtriumConfig
from atrium.db.repository import Repository
from atrium.ingest.pipeline import IngestFile
from atrium.orchestrator import Orchestrator, TurnRequest, TurnResult
from atrium.providers import build_provider
from atrium.rag import ContextAssembler, UserProfile
from atrium.tools import build_registry
from atrium.usage import UsageLedger


def chat_cmd(
    message: Annotated[str, typer.Argument(help="Your message to the assistant.")],
    user: Annotated[
        str, typer.Option("--user", "-u", envvar="ATRIUM_USER", help="Who is asking.")
    ] = DEFAULT_USER,
    agent_id: Annotated[
        str | None, typer.Option("--agent", "-a", help="Agent id from atrium.yaml.")
    ] = None,
    attach: Annotated[
        list[Path] | None,
        typer.Option("--attach", help="File to attach to this message (repeatable)."),
    ] = None,
    name: Annotated[
        str, typer.Option("--name", help="Your display name, added to the context.")
    ] = "",
    db: Annotated[Path, typer.Option("--db", help="Path to atrium.db.")] = DEFAULT_DB,
) -> None:
    """Ask the assistant MESSAGE and print the answer."""
    for path in attach or []:
        if not path.is_file():
            console.print(err_file_not_found(str(path)))
            raise typer.Exit(1)

    cfg = load_settings(db)
    agent = resolve_agent(cfg, agent_id)
    if agent.credential_env and not agent.credential:
        console.print(err_missing_credential(agent.id, agent.credential_env))
        raise typer.Exit(1)

    conn = open_db(db)
    try:
        repo = Repository(conn)
        request = TurnRequest(
            user_id=user,
            message=message,
            profile=UserProfile(display_name=name) if name else None,
        )
        result = asyncio.run(_run(cfg, repo, agent, request, attach or []))
    finally:
        conn.close()

    if result.cancelled:
        console.print("[dim]Cancelled.[/]")
        raise typer.Exit(130)
    if result.error:
        console.print(err_turn_failed(result.error))
        raise typer.Exit(1)

    console.print(result.text, markup=False, highlight=False)
    if not result.usage.is_empty:
        console.print(
            f"[dim]{result.usage.input_tokens:,} in · {result.usage.output_tokens:,} out"
            f" · ${result.cost:.4f}[/]"
        )


async def _run(
    cfg: AtriumConfig,
    repo: Repository,
    agent: AgentConfig,
    request: TurnRequest,
    attachments: list[Path],
) -> TurnResult:
    if attachments:
        pipeline = build_pipeline(cfg, repo)
        contexts = []
        for path in attachments:
            upload = IngestFile.from_path(path)
            uploaded = await pipeline.ingest_upload(
                upload.data, upload.mime, upload.filename, request.user_id
            )
            if uploaded.ocr_context:
                contexts.append(uploaded.ocr_context)
        request.attachments = "\n\n".join(contexts)

    orchestrator = Orchestrator(
        agent,
        build_provider(agent),
        registry=build_registry(agent, cfg.tools, tool_credentials()),
        assembler=ContextAssembler(
            repo,
            build_embedder(cfg),
            memory_cap=cfg.retrieval.memory_cap,
            priority_memory_cap=cfg.retrieval.priority_memory_cap,
            memory_fetch_limit=cfg.retrieval.memory_fetch_limit,
            document_limit=cfg.retrieval.document_limit,
        ),
        ledger=UsageLedger(repo, cfg.usage.input_per_million, cfg.usage.output_per_million),
        max_tool_iterations=cfg.orchestrator.max_tool_iterations,
        fallback_enabled=cfg.orchestrator.fallback_enabled,
        uncertainty_phrases=cfg.orchestrator.uncertainty_phrases,
        fallback_query_chars=cfg.orchestrator.fallback_query_chars,
    )

    cancel = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel.set)
        installed = True
    except (NotImplementedError, RuntimeError, ValueError):
        # No signal support here (Windows, or not the main thread).
        installed = False
    try:
        with console.status("Thinking…"):
            return await orchestrator.run_turn(request, cancel)
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)
