"""Actionable error messages for the CLI.

Every message says what went wrong and the exact action that fixes it.

Usage:
    from atrium.cli.errors import err_no_db
    console.print(err_no_db("atrium.db"))
    raise typer.Exit(1)
"""

from __future__ import annotations

_PROVIDER_ENV = {
    "openai": "OPENAI_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
}


def err_no_db(db_path: str = "atrium.db") -> str:
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  atrium init"
    )


def err_no_api_key(provider: str) -> str:
    """No API key for *provider*.

    Example:
        No API key for 'openai'. Set:  export OPENAI_API_KEY=sk-...
    """
    env_var = _PROVIDER_ENV.get(provider.lower(), f"{provider.upper()}_API_KEY")
    return (
        f"[red]Error:[/] No API key for '{provider}'.\n"
        f"  Set:  export {env_var}=sk-..."
    )


def err_config(message: str) -> str:
    return (
        f"[red]Error:[/] Invalid configuration.\n"
        f"  {message}\n"
        "  Fix atrium.yaml (or ~/.atrium/config.yaml) and try again."
    )


def err_unknown_agent(agent_id: str, known: list[str]) -> str:
    known_list = ", ".join(known) if known else "(none configured)"
    return (
        f"[red]Error:[/] Agent '{agent_id}' is not configured.\n"
        f"  Configured agents: {known_list}\n"
        "  Add it under 'agents:' in atrium.yaml, or omit --agent to use the default."
    )


def err_missing_credential(agent_id: str, env_var: str) -> str:
    return (
        f"[red]Error:[/] Agent '{agent_id}' has no credential.\n"
        f"  Set:  export {env_var}=<key>"
    )


def err_file_not_found(path: str) -> str:
    return (
        f"[red]Error:[/] File not found: '{path}'\n"
        "  Check the path and try again."
    )


def err_document_not_found(document_id: str) -> str:
    return (
        f"[yellow]Document not found:[/] '{document_id}' is not in the knowledge base.\n"
        "  Run:  atrium documents list  to see stored documents."
    )


def err_memory_not_found(memory_id: str) -> str:
    return (
        f"[yellow]Memory not found:[/] '{memory_id}'.\n"
        "  Run:  atrium memory list  to see stored memories."
    )


def err_vec_unavailable() -> str:
    return (
        "[red]Error:[/] The sqlite-vec extension could not be loaded.\n"
        "  Install it:  pip install sqlite-vec\n"
        "  Keyword search still works; embeddings cannot be stored until it is available."
    )


def err_turn_failed(message: str) -> str:
    return (
        f"[red]Error:[/] The assistant could not answer.\n"
        f"  {message}\n"
        "  Check the agent's model, endpoint and API key, then retry."
    )
