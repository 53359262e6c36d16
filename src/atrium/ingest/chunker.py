"""Character-window chunker with overlap.

Splits on character count, not semantic boundaries: the embedding step has a
token budget and deterministic windows are easier to reason about than
perfect boundary placement. Segments are NOT stripped, so the original text
is recoverable::

    chunks[0] + "".join(c[overlap:] for c in chunks[1:]) == text
"""

from __future__ import annotations

from atrium.db.models import Chunk

DEFAULT_CHUNK_SIZE = 1_400
DEFAULT_OVERLAP = 200


def chunk_text(
    text: str, chunk_size: int = DEFAULT_CHUNK_SIZE, overlap: int = DEFAULT_OVERLAP
) -> list[str]:
    """Split *text* into overlapping windows of at most *chunk_size* characters.

    Each window after the first starts ``overlap`` characters before the
    previous one ended, so the position advances by ``chunk_size - overlap``
    per step.

    Raises:
        ValueError: If chunk_size < 1 or overlap is outside [0, chunk_size).
    """
    if chunk_size < 1:
        raise ValueError("chunk_size must be >= 1")
    if not 0 <= overlap < chunk_size:
        raise ValueError("overlap must be in [0, chunk_size)")
    if not text.strip():
        return []

    step = chunk_size - overlap
    segments: list[str] = []
    pos = 0
    length = len(text)

    while pos < length:
        end = min(pos + chunk_size, length)
        segments.append(text[pos:end])
        if end >= length:
            break
        pos += step

    return segments


class TextChunker:
    """Turn extracted text into sequentially indexed Chunk objects."""

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE, overlap: int = DEFAULT_OVERLAP) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        if not 0 <= overlap < chunk_size:
            raise ValueError("overlap must be in [0, chunk_size)")
        self.chunk_size = chunk_size
        self.overlap = overlap

    def split(self, text: str) -> list[str]:
        return chunk_text(text, self.chunk_size, self.overlap)

    def chunk(self, document_id: str, text: str, metadata: dict | None = None) -> list[Chunk]:
        """Split *text* into Chunks for *document_id* with chunk_index 0..n-1."""
        return self._make_chunks(document_id, self.split(text), metadata or {})

    @staticmethod
    def _make_chunks(document_id: str, texts: list[str], metadata: dict) -> list[Chunk]:
        return [
            Chunk(document_id=document_id, chunk_index=i, content=t, metadata=dict(metadata))
            for i, t in enumerate(texts)
        ]
