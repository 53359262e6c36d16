"""Console logging via rich.

Library modules only call ``logging.getLogger(__name__)``; the CLI calls
``setup_logging()`` once at startup.
"""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

_FORMAT = "%(message)s"


def setup_logging(level: str = "WARNING", console: Console | None = None) -> None:
    """Install a RichHandler on the ``atrium`` logger.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR). Unknown names
            fall back to WARNING.
        console: Console to write to (defaults to stderr).
    """
    numeric = getattr(logging, level.upper(), logging.WARNING)
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
        markup=False,
    )
    handler.setFormatter(logging.Formatter(_FORMAT, datefmt="[%X]"))

    root = logging.getLogger("atrium")
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(numeric)
    root.propagate = False

    # litellm logs every request at INFO; keep it quiet unless debugging.
    logging.getLogger("LiteLLM").setLevel(
        logging.DEBUG if numeric <= logging.DEBUG else logging.WARNING
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
