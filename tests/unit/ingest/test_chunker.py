"""Tests for the character-window chunker."""

from __future__ import annotations

import pytest

from atrium.ingest.chunker import TextChunker, chunk_text


def _rebuild(chunks: list[str], overlap: int) -> str:
    return chunks[0] + "".join(c[overlap:] for c in chunks[1:])


def test_short_text_is_single_chunk():
    assert chunk_text("hello world", chunk_size=100, overlap=10) == ["hello world"]


@pytest.mark.parametrize("text", ["", "   ", "\n\t\n"])
def test_empty_or_whitespace_gives_no_chunks(text):
    assert chunk_text(text) == []


def test_windows_respect_size_and_overlap():
    text = "".join(chr(ord("a") + i % 26) for i in range(1_000))
    chunks = chunk_text(text, chunk_size=300, overlap=50)
    assert all(len(c) <= 300 for c in chunks)
    for prev, cur in zip(chunks, chunks[1:]):
        assert prev[-50:] == cur[:50]


@pytest.mark.parametrize("size,overlap", [(1_400, 200), (100, 0), (64, 63)])
def test_original_text_is_recoverable(size, overlap):
    text = ("Lorem ipsum dolor sit amet, consectetur adipiscing elit. " * 80).strip()
    chunks = chunk_text(text, chunk_size=size, overlap=overlap)
    assert _rebuild(chunks, overlap) == text


def test_segments_are_not_stripped():
    text = "a" * 10 + "   " + "b" * 10
    chunks = chunk_text(text, chunk_size=12, overlap=2)
    assert _rebuild(chunks, 2) == text


def test_chunk_count_for_default_settings():
    # Step is 1_200 characters: windows start at 0, 1_200 and 2_400.
    assert len(chunk_text("x" * 3_000)) == 3


@pytest.mark.parametrize("size,overlap", [(0, 0), (10, 10), (10, -1)])
def test_invalid_parameters(size, overlap):
    with pytest.raises(ValueError):
        chunk_text("text", chunk_size=size, overlap=overlap)
    with pytest.raises(ValueError):
        TextChunker(size, overlap)


def test_text_chunker_indexes_sequentially():
    chunker = TextChunker(chunk_size=10, overlap=2)
    chunks = chunker.chunk("doc-1", "0123456789abcdefghij", metadata={"kind": "text"})
    assert [c.chunk_index for c in chunks] == list(range(len(chunks)))
    assert all(c.document_id == "doc-1" for c in chunks)
    assert all(c.metadata == {"kind": "text"} for c in chunks)
    assert all(c.embedding is None for c in chunks)
