"""Tests for ContextAssembler: memory selection, document retrieval, block layout."""

from __future__ import annotations

import sqlite3
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from atrium.db.models import Chunk, Document, MemoryFact, MemoryType
from atrium.db.repository import Repository
from atrium.db.vectors import ensure_vec_table, model_to_slug
from atrium.errors import ProviderError
from atrium.rag.context import ContextAssembler, UserProfile, keywords

_MODEL = "openai/text-embedding-3-small"


@pytest.fixture
def repo(tmp_db):
    return Repository(tmp_db)


def _add_memory(repo, mem_id, mtype, content, confidence=0.6, owner="alice"):
    repo.upsert_memory(
        MemoryFact(
            id=mem_id, owner_user_id=owner, memory_type=mtype, content=content, confidence=confidence
        )
    )


def _add_document(repo, doc_id, texts, owner="alice", title=None) -> list[int]:
    repo.insert_document(Document(id=doc_id, owner_user_id=owner, title=title or f"{doc_id}.txt"))
    return repo.insert_chunks(
        [Chunk(document_id=doc_id, chunk_index=i, content=t) for i, t in enumerate(texts)]
    )


def _embedder(vector=None, fail=False) -> MagicMock:
    embedder = MagicMock()
    embedder.model = _MODEL
    if fail:
        embedder.embed = AsyncMock(side_effect=ProviderError("No API key"))
    else:
        embedder.embed = AsyncMock(return_value=[vector or [1.0, 0.0]])
    return embedder


# ------------------------------------------------------------------
# Memory selection
# ------------------------------------------------------------------


def test_keywords_drop_stopwords_and_short_words():
    assert keywords("What is the status of my Garden project?") == {
        "status",
        "garden",
        "project",
    }


def test_priority_memories_always_included(repo):
    _add_memory(repo, "p1", MemoryType.PERSONAL_DETAIL, "Lives in Lisbon", 0.3)
    _add_memory(repo, "p2", MemoryType.PREFERENCE, "Prefers short answers", 0.4)
    _add_memory(repo, "c1", MemoryType.PROJECT_CONTEXT, "Working on a compiler", 0.99)

    selected = ContextAssembler(repo).select_memories("what's the weather", "alice")
    assert {m.id for m in selected} == {"p1", "p2"}


def test_project_context_needs_keyword_overlap(repo):
    _add_memory(repo, "c1", MemoryType.PROJECT_CONTEXT, "Building a garden irrigation controller")
    _add_memory(repo, "c2", MemoryType.PROJECT_CONTEXT, "Writing a novel")

    selected = ContextAssembler(repo).select_memories("How should I wire the irrigation valves?", "alice")
    assert [m.id for m in selected] == ["c1"]


def test_priority_overflow_leaves_no_room_for_other_types(repo):
    for i in range(30):
        _add_memory(repo, f"p{i}", MemoryType.FACT, f"fact number {i}", 0.5 + i / 100)
    for i in range(30):
        _add_memory(repo, f"c{i}", MemoryType.PROJECT_CONTEXT, f"garden task {i}")

    selected = ContextAssembler(repo).select_memories("garden", "alice")
    assert len(selected) == 25
    assert all(m.memory_type is MemoryType.FACT for m in selected)
    # The most confident priority facts survive the priority cap.
    assert min(m.confidence for m in selected) == pytest.approx(0.5 + 5 / 100)


def test_memory_cap_is_40(repo):
    for i in range(60):
        _add_memory(repo, f"p{i}", MemoryType.PREFERENCE, f"likes thing {i}", 0.3 + i / 100)
    for i in range(10):
        _add_memory(repo, f"c{i}", MemoryType.PROJECT_CONTEXT, f"garden task {i}", 0.99)

    selected = ContextAssembler(repo, memory_cap=40, priority_memory_cap=40).select_memories(
        "garden", "alice"
    )
    assert len(selected) == 40
    assert all(m.memory_type is MemoryType.PREFERENCE for m in selected)


@pytest.mark.parametrize("n_priority", [0, 10, 25, 40, 60])
@pytest.mark.parametrize("n_other", [0, 5, 30])
@pytest.mark.parametrize("priority_cap", [25, 40])
def test_priority_memories_never_displaced_by_other_types(repo, n_priority, n_other, priority_cap):
    for i in range(n_priority):
        mtype = (MemoryType.FACT, MemoryType.PREFERENCE, MemoryType.PERSONAL_DETAIL)[i % 3]
        _add_memory(repo, f"p{i}", mtype, f"detail {i}", 0.2 + (i % 50) / 100)
    for i in range(n_other):
        _add_memory(repo, f"c{i}", MemoryType.PROJECT_CONTEXT, f"garden task {i}", 0.95)

    selected = ContextAssembler(repo, memory_cap=40, priority_memory_cap=priority_cap).select_memories(
        "garden", "alice"
    )
    chosen = {m.id for m in selected}
    priority_left_out = any(f"p{i}" not in chosen for i in range(n_priority))
    others_in = any(m.memory_type is MemoryType.PROJECT_CONTEXT for m in selected)

    assert len(selected) <= 40
    assert not (priority_left_out and others_in)
    if not priority_left_out:
        assert len(selected) == min(40, n_priority + n_other)


def test_other_types_ranked_by_overlap_then_confidence(repo):
    _add_memory(repo, "one", MemoryType.PROJECT_CONTEXT, "garden", 0.9)
    _add_memory(repo, "two", MemoryType.PROJECT_CONTEXT, "garden irrigation", 0.1)
    _add_memory(repo, "tie", MemoryType.PROJECT_CONTEXT, "garden", 0.95)

    selected = ContextAssembler(repo, memory_cap=2, priority_memory_cap=0).select_memories(
        "garden irrigation", "alice"
    )
    assert [m.id for m in selected] == ["two", "tie"]


def test_inactive_and_foreign_memories_excluded(repo):
    repo.upsert_memory(
        MemoryFact(id="old", owner_user_id="alice", memory_type=MemoryType.FACT, content="stale",
                   is_active=False)
    )
    _add_memory(repo, "bob", MemoryType.FACT, "bob's fact", owner="bob")
    assert ContextAssembler(repo).select_memories("anything", "alice") == []


# ------------------------------------------------------------------
# Document retrieval
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_keyword_fallback_without_embedder(repo):
    _add_document(repo, "d1", ["The invoice total was 420 euros.", "Unrelated chunk."])
    chunks = await ContextAssembler(repo).retrieve_documents("invoice total", "alice")
    assert [c.content for c in chunks] == ["The invoice total was 420 euros."]


@pytest.mark.asyncio
async def test_keyword_fallback_on_provider_error(repo):
    _add_document(repo, "d1", ["Flight to Porto leaves at 9:40."])
    embedder = _embedder(fail=True)
    chunks = await ContextAssembler(repo, embedder).retrieve_documents(
        "When does my flight to Porto leave?", "alice"
    )
    assert [c.content for c in chunks] == ["Flight to Porto leaves at 9:40."]
    embedder.embed.assert_awaited_once()


@pytest.mark.asyncio
async def test_keyword_terms_deduplicated_and_capped(repo):
    _add_document(repo, "d1", [f"budget line {i} for marketing" for i in range(10)])
    chunks = await ContextAssembler(repo, document_limit=3).retrieve_documents(
        "marketing budget", "alice"
    )
    assert len(chunks) == 3
    assert len({c.rowid for c in chunks}) == 3


@pytest.mark.asyncio
async def test_vector_search_used_when_available(vec_db):
    repo = Repository(vec_db)
    table = ensure_vec_table(vec_db, model_to_slug(_MODEL), 2)
    near, far = _add_document(repo, "d1", ["close match", "far away"])
    repo.set_embeddings(table, [(near, [1.0, 0.0]), (far, [0.0, 1.0])])

    chunks = await ContextAssembler(repo, _embedder([1.0, 0.0]), document_limit=1).retrieve_documents(
        "zzz nothing matches by keyword", "alice"
    )
    assert [c.content for c in chunks] == ["close match"]


@pytest.mark.asyncio
async def test_blank_query_retrieves_nothing(repo):
    _add_document(repo, "d1", ["content"])
    assert await ContextAssembler(repo).retrieve_documents("   ", "alice") == []


# ------------------------------------------------------------------
# Assembly
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_blocks_in_order(repo):
    _add_memory(repo, "p1", MemoryType.PREFERENCE, "Prefers metric units")
    _add_document(repo, "d1", ["Garden plan: tomatoes along the south wall."], title="garden.md")
    profile = UserProfile(display_name="Alice", timezone="Europe/Lisbon")

    context = await ContextAssembler(repo).assemble("garden plan", "alice", profile)

    about = context.index("## About the user")
    memory = context.index("## What you remember about the user")
    documents = context.index("## Relevant documents")
    assert about < memory < documents
    assert "- Name: Alice" in context
    assert "- (preference) Prefers metric units" in context
    assert "[garden.md]\nGarden plan: tomatoes along the south wall." in context


@pytest.mark.asyncio
async def test_empty_blocks_omitted(repo):
    assert await ContextAssembler(repo).assemble("hello", "alice") == ""
    assert await ContextAssembler(repo).assemble("hello", "alice", UserProfile()) == ""


@pytest.mark.asyncio
async def test_long_chunks_truncated(repo):
    _add_document(repo, "d1", ["keyword " + "x" * 2_000])
    context = await ContextAssembler(repo).assemble("keyword", "alice")
    assert context.endswith("…")
    assert len(context) < 1_400


@pytest.mark.asyncio
async def test_locked_store_drops_memory_block(repo):
    _add_document(repo, "d1", ["The invoice total was 420 euros."])
    with patch.object(
        Repository, "list_memories", side_effect=sqlite3.OperationalError("database is locked")
    ):
        text = await ContextAssembler(repo).assemble("invoice total", "alice")
    assert "What you remember" not in text
    assert "420 euros" in text


@pytest.mark.asyncio
async def test_locked_store_drops_document_block(repo):
    _add_memory(repo, "p1", MemoryType.FACT, "Has a dog named Rex")
    with patch.object(
        Repository, "keyword_search", side_effect=sqlite3.OperationalError("database is locked")
    ):
        text = await ContextAssembler(repo).assemble("invoice total", "alice")
    assert "Has a dog named Rex" in text
    assert "Relevant documents" not in text


@pytest.mark.asyncio
async def test_vector_store_error_falls_back_to_keywords(repo):
    _add_document(repo, "d1", ["The invoice total was 420 euros."])
    with patch.object(
        Repository, "vector_search", side_effect=sqlite3.OperationalError("database is locked")
    ):
        chunks = await ContextAssembler(repo, _embedder()).retrieve_documents("invoice total", "alice")
    assert [c.content for c in chunks] == ["The invoice total was 420 euros."]
