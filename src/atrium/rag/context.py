"""Context assembler: builds the system-prompt fragment for one turn.

Blocks, in order (each omitted entirely when empty):
  1. Profile   what the caller knows about the user.
  2. Memory    priority memories (personal_detail, preference, fact) always,
               bounded to the most confident; other types ranked by keyword
               overlap with the query. Total capped at ``memory_cap``.
  3. Documents vector search on the query embedding; on a provider or
               retrieval error, keyword (LIKE) search instead.
"""

from __future__ import annotations

import logging
import re
import sqlite3
from dataclasses import dataclass, field

from atrium.db.models import PRIORITY_MEMORY_TYPES, Chunk, MemoryFact
from atrium.db.repository import Repository
from atrium.db.vectors import model_to_slug, vec_table_name
from atrium.errors import ProviderError, RetrievalError
from atrium.ingest.embedding import EmbeddingClient

logger = logging.getLogger(__name__)

_WORD_RE = re.compile(r"[a-z0-9][a-z0-9'_-]*")
_STOPWORDS = frozenset(
    "the and for with that this from what when where which who how are was were "
    "you your have has had not but can could would should about into them they "
    "their there then than just also will does did".split()
)
_MIN_TERM_LEN = 4
_CHUNK_PREVIEW_CHARS = 1_200


@dataclass
class UserProfile:
    """What the caller knows about the user; every field is optional."""

    display_name: str = ""
    about: str = ""
    location: str = ""
    timezone: str = ""
    preferences: dict[str, str] = field(default_factory=dict)

    def render(self) -> str:
        lines = []
        if self.display_name:
            lines.append(f"- Name: {self.display_name}")
        if self.location:
            lines.append(f"- Location: {self.location}")
        if self.timezone:
            lines.append(f"- Timezone: {self.timezone}")
        if self.about:
            lines.append(f"- About: {self.about}")
        for key, value in self.preferences.items():
            if value:
                lines.append(f"- {key}: {value}")
        return "\n".join(lines)


def keywords(text: str) -> set[str]:
    return {w for w in _WORD_RE.findall(text.lower()) if len(w) >= 3 and w not in _STOPWORDS}


def overlap_score(query_terms: set[str], content: str) -> int:
    return len(query_terms & keywords(content))


class ContextAssembler:
    """Assemble profile, memory and document context for a query.

    Args:
        repo: Knowledge store.
        embedder: Embedding client for the query; None means keyword search only.
        memory_cap: Maximum memories in the memory block.
        priority_memory_cap: Maximum priority-type memories (most confident first).
        memory_fetch_limit: Active memories read from the store per turn.
        document_limit: Maximum chunks in the document block.
    """

    def __init__(
        self,
        repo: Repository,
        embedder: EmbeddingClient | None = None,
        memory_cap: int = 40,
        priority_memory_cap: int = 25,
        memory_fetch_limit: int = 200,
        document_limit: int = 6,
    ) -> None:
        self._repo = repo
        self._embedder = embedder
        self.memory_cap = memory_cap
        self.priority_memory_cap = min(priority_memory_cap, memory_cap)
        self.memory_fetch_limit = memory_fetch_limit
        self.document_limit = document_limit

    async def assemble(self, query: str, user_id: str, profile: UserProfile | None = None) -> str:
        blocks: list[str] = []

        profile_text = profile.render() if profile else ""
        if profile_text:
            blocks.append(f"## About the user\n{profile_text}")

        try:
            memories = self.select_memories(query, user_id)
        except sqlite3.Error as exc:
            logger.warning("Memory lookup failed, answering without memories: %s", exc)
            memories = []
        if memories:
            lines = [f"- ({m.memory_type.value}) {m.content}" for m in memories]
            blocks.append("## What you remember about the user\n" + "\n".join(lines))

        try:
            chunks = await self.retrieve_documents(query, user_id)
        except sqlite3.Error as exc:
            logger.warning("Document lookup failed, answering without documents: %s", exc)
            chunks = []
        if chunks:
            blocks.append("## Relevant documents\n" + "\n\n".join(self._render_chunk(c) for c in chunks))

        return "\n\n".join(blocks)

    # ------------------------------------------------------------------
    # Memories
    # ------------------------------------------------------------------

    def select_memories(self, query: str, user_id: str) -> list[MemoryFact]:
        """Priority memories first, then the best keyword matches, capped at memory_cap.

        Other memory types only fill leftover room once every priority memory
        is in; if the priority cap had to drop some, nothing else is added.
        """
        facts = self._repo.list_memories(user_id, active_only=True, limit=self.memory_fetch_limit)
        # list_memories is ordered by confidence, so slicing keeps the most confident.
        priority = [m for m in facts if m.memory_type in PRIORITY_MEMORY_TYPES]
        selected = priority[: self.priority_memory_cap]
        if len(selected) < len(priority):
            return selected

        room = self.memory_cap - len(selected)
        if room <= 0:
            return selected

        terms = keywords(query)
        scored = [
            (overlap_score(terms, m.content), m)
            for m in facts
            if m.memory_type not in PRIORITY_MEMORY_TYPES
        ]
        ranked = sorted(
            (pair for pair in scored if pair[0] > 0),
            key=lambda pair: (pair[0], pair[1].confidence),
            reverse=True,
        )
        return selected + [m for _, m in ranked[:room]]

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def retrieve_documents(self, query: str, user_id: str) -> list[Chunk]:
        if not query.strip() or self.document_limit <= 0:
            return []
        if self._embedder is not None:
            try:
                hits = await self._vector_search(query, user_id)
            except (ProviderError, RetrievalError, sqlite3.Error) as exc:
                logger.warning("Vector retrieval unavailable, using keyword search: %s", exc)
            else:
                if hits:
                    return hits
        return self.keyword_search(query, user_id)

    async def _vector_search(self, query: str, user_id: str) -> list[Chunk]:
        assert self._embedder is not None
        [embedding] = await self._embedder.embed([query])
        table = vec_table_name(model_to_slug(self._embedder.model))
        results = self._repo.vector_search(user_id, table, embedding, k=self.document_limit)
        return [chunk for chunk, _distance in results]

    def keyword_search(self, query: str, user_id: str) -> list[Chunk]:
        """Whole-query substring match first, then individual significant terms."""
        found: list[Chunk] = []
        seen: set[int | None] = set()

        def _add(chunks: list[Chunk]) -> None:
            for chunk in chunks:
                if len(found) >= self.document_limit:
                    return
                if chunk.rowid not in seen:
                    seen.add(chunk.rowid)
                    found.append(chunk)

        _add(self._repo.keyword_search(user_id, query.strip(), k=self.document_limit))
        terms = sorted(
            {w for w in keywords(query) if len(w) >= _MIN_TERM_LEN}, key=len, reverse=True
        )
        for term in terms:
            if len(found) >= self.document_limit:
                break
            _add(self._repo.keyword_search(user_id, term, k=self.document_limit))
        return found

    def _render_chunk(self, chunk: Chunk) -> str:
        document = self._repo.get_document(chunk.document_id)
        title = document.title if document else chunk.document_id
        content = chunk.content
        if len(content) > _CHUNK_PREVIEW_CHARS:
            content = content[:_CHUNK_PREVIEW_CHARS].rstrip() + "…"
        return f"[{title}]\n{content}"
