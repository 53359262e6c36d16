"""Atrium ingest pipeline: extraction, chunking, embedding and storage."""

from atrium.ingest.chunker import TextChunker, chunk_text
from atrium.ingest.embedding import EmbeddingClient
from atrium.ingest.extractor import Extraction, TextExtractor
from atrium.ingest.pipeline import FileReport, IngestFile, IngestPipeline, IngestResult

__all__ = [
    "EmbeddingClient",
    "Extraction",
    "FileReport",
    "IngestFile",
    "IngestPipeline",
    "IngestResult",
    "TextChunker",
    "TextExtractor",
    "chunk_text",
]
