"""Error taxonomy shared by the ingestion, retrieval and orchestration layers.

Propagation policy:
  - ExtractionError   per file; the ingest pipeline turns it into a failure note.
  - ProviderError     completion / embedding call failed; surfaced once per turn.
  - ToolError         serialised into the tool-result message, never raised to callers.
  - RetrievalError    triggers vector -> keyword fallback, or an empty context block.
  - UsageWriteError   logged; never blocks the user-visible response.
  - TurnCancelled     user-initiated stop; suppresses output instead of reporting an error.
"""

from __future__ import annotations


class AtriumError(Exception):
    """Base class for all Atrium errors."""


class ExtractionError(AtriumError):
    """Text could not be extracted from an uploaded file."""

    def __init__(self, message: str, filename: str = "") -> None:
        super().__init__(message)
        self.filename = filename


class ProviderError(AtriumError):
    """A completion or embedding provider call failed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ToolError(AtriumError):
    """A tool invocation failed (bad arguments, remote API error, ...)."""


class RetrievalError(AtriumError):
    """Vector retrieval is unavailable for this store or model."""


class UsageWriteError(AtriumError):
    """Token counters could not be written."""


class TurnCancelled(AtriumError):
    """The caller cancelled the turn while a network call was in flight."""
