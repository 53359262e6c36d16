"""Domain models for the Atrium knowledge store."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class MemoryType(str, Enum):
    PREFERENCE = "preference"
    PERSONAL_DETAIL = "personal_detail"
    PROJECT_CONTEXT = "project_context"
    FACT = "fact"


# High-value, rare memories that are always injected into the prompt.
PRIORITY_MEMORY_TYPES: frozenset[MemoryType] = frozenset(
    [MemoryType.PERSONAL_DETAIL, MemoryType.PREFERENCE, MemoryType.FACT]
)


@dataclass
class Document:
    """An uploaded document owned by one user.

    Attributes:
        metadata: ``{"filename": ..., "mime": ..., "size": ...}`` plus any
            extras the ingest pipeline records (page count, truncation).
    """

    id: str
    owner_user_id: str
    title: str
    source_type: str = "upload"  # upload | bulk | message
    metadata: dict = field(default_factory=dict)
    created_at: str | None = None


@dataclass
class Chunk:
    document_id: str
    chunk_index: int
    content: str
    metadata: dict = field(default_factory=dict)
    embedding: list[float] | None = None  # None until the embedding step succeeds
    created_at: str | None = None
    rowid: int | None = None  # set after insert; None for unsaved chunks


@dataclass
class MemoryFact:
    id: str
    owner_user_id: str
    memory_type: MemoryType
    content: str
    confidence: float = 0.6
    is_active: bool = True
    created_at: str | None = None

    def __post_init__(self) -> None:
        self.memory_type = MemoryType(self.memory_type)
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be in [0, 1], got {self.confidence}")


@dataclass
class UsageRecord:
    user_id: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    updated_at: str | None = None
