"""Document ingestion pipeline (bulk and per-message).

Per file:
  extract → embeddable text → chunk → insert document → embed (batched)
  → insert chunks → write vectors

Files are processed sequentially and independently: a failure is recorded
as a note on that file's report and the batch continues. If embedding fails
after extraction succeeded, the chunks are still stored with no vector and
the repair sweep (``repair_missing_embeddings``) fills them in later.
"""

from __future__ import annotations

import logging
import mimetypes
import sqlite3
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from atrium.db.models import Chunk, Document
from atrium.db.repository import Repository
from atrium.db.vectors import ensure_vec_table, model_to_slug, vec_table_name
from atrium.errors import ExtractionError, ProviderError, RetrievalError
from atrium.ingest.chunker import TextChunker
from atrium.ingest.embedding import EmbeddingClient
from atrium.ingest.extractor import Extraction, TextExtractor

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, int], None]

_CONTEXT_CHARS_PER_FILE = 12_000


@dataclass
class IngestFile:
    filename: str
    data: bytes
    mime: str = ""

    @classmethod
    def from_path(cls, path: Path) -> IngestFile:
        mime, _ = mimetypes.guess_type(path.name)
        return cls(filename=path.name, data=path.read_bytes(), mime=mime or "")


@dataclass
class FileReport:
    """Outcome for one file. ``note`` explains a failure or partial success."""

    filename: str
    document_id: str | None = None
    chunks: int = 0
    embedded: int = 0
    kind: str = ""
    note: str = ""

    @property
    def ok(self) -> bool:
        return self.document_id is not None


@dataclass
class IngestResult:
    """Combined outcome of one ``ingest()`` call.

    Attributes:
        ocr_context: Extracted text of every file, for inlining into the current turn.
        summary_text: One human-readable line per file.
        reports: Per-file details.
    """

    ocr_context: str = ""
    summary_text: str = ""
    reports: list[FileReport] = field(default_factory=list)


class IngestPipeline:
    def __init__(
        self,
        repo: Repository,
        extractor: TextExtractor,
        chunker: TextChunker,
        embedder: EmbeddingClient | None = None,
    ) -> None:
        self._repo = repo
        self._extractor = extractor
        self._chunker = chunker
        self._embedder = embedder

    async def ingest(
        self,
        files: list[IngestFile],
        user_id: str,
        on_progress: ProgressCallback | None = None,
        source_type: str = "upload",
        repair: bool = True,
    ) -> IngestResult:
        """Ingest *files* for *user_id*, one at a time.

        Args:
            on_progress: Called with (filename, percent) as each file starts
                and finishes. Advisory only.
            repair: Re-embed any of the user's chunks still missing a vector
                once the batch is done.
        """
        result = IngestResult()
        contexts: list[str] = []
        total = len(files)

        for i, upload in enumerate(files):
            _report_progress(on_progress, upload.filename, int(i * 100 / total))
            try:
                report, extraction = await self._ingest_one(upload, user_id, source_type)
            except (sqlite3.Error, ValueError) as exc:
                logger.warning("Storing %s failed: %s", upload.filename, exc)
                report, extraction = FileReport(upload.filename, note=f"storage failed: {exc}"), None
            result.reports.append(report)
            if extraction is not None and extraction.embeddable_text.strip():
                contexts.append(_context_block(upload.filename, extraction))
            _report_progress(on_progress, upload.filename, int((i + 1) * 100 / total))

        if repair and self._embedder is not None and any(r.embedded < r.chunks for r in result.reports):
            try:
                repaired = await self.repair_missing_embeddings(user_id)
            except (ProviderError, RetrievalError) as exc:
                logger.warning("Embedding repair after ingest failed: %s", exc)
            else:
                if repaired:
                    logger.info("Repaired %d chunk embeddings for %s", repaired, user_id)

        result.ocr_context = "\n\n".join(contexts)
        result.summary_text = "\n".join(_summary_line(r) for r in result.reports)
        return result

    async def ingest_upload(
        self, data: bytes, mime: str, filename: str, user_id: str
    ) -> IngestResult:
        """Per-message path: ingest one attachment and return its context."""
        return await self.ingest(
            [IngestFile(filename=filename, data=data, mime=mime)],
            user_id,
            source_type="message",
            repair=False,
        )

    # ------------------------------------------------------------------
    # Per-file pipeline
    # ------------------------------------------------------------------

    async def _ingest_one(
        self, upload: IngestFile, user_id: str, source_type: str
    ) -> tuple[FileReport, Extraction | None]:
        report = FileReport(filename=upload.filename)
        try:
            extraction = await self._extractor.extract(upload.data, upload.mime, upload.filename)
        except ExtractionError as exc:
            logger.warning("Extraction failed for %s: %s", upload.filename, exc)
            report.note = f"extraction failed: {exc}"
            return report, None

        report.kind = extraction.kind
        text = extraction.embeddable_text
        if not text.strip():
            report.note = (
                "unsupported file type" if extraction.kind == "unsupported" else "no text found"
            )
            return report, extraction

        document = Document(
            id=str(uuid.uuid4()),
            owner_user_id=user_id,
            title=upload.filename,
            source_type=source_type,
            metadata=_document_metadata(upload, extraction),
        )
        chunks = self._chunker.chunk(
            document.id, text, metadata={"filename": upload.filename, "kind": extraction.kind}
        )

        vectors: list[list[float]] | None = None
        embed_note = ""
        if self._embedder is None:
            embed_note = "no embedding model configured"
        else:
            try:
                vectors = await self._embedder.embed_batched([c.content for c in chunks])
            except ProviderError as exc:
                logger.warning("Embedding failed for %s: %s", upload.filename, exc)
                embed_note = f"embedding failed, stored for repair: {exc}"

        self._repo.insert_document(document)
        try:
            self._repo.insert_chunks(chunks)
        except (sqlite3.Error, ValueError):
            self._repo.delete_document(document.id)
            raise
        report.document_id = document.id
        report.chunks = len(chunks)

        if vectors is not None:
            try:
                report.embedded = self._store_vectors(chunks, vectors)
            except (RetrievalError, sqlite3.Error) as exc:
                logger.warning("Vectors not stored for %s: %s", upload.filename, exc)
                embed_note = f"vectors not stored: {exc}"

        notes = [embed_note] if embed_note else []
        if extraction.truncated:
            notes.append("truncated")
        report.note = "; ".join(notes)
        return report, extraction

    def _store_vectors(self, chunks: list[Chunk], vectors: list[list[float]]) -> int:
        if not vectors:
            return 0
        if not self._repo.vec_available:
            raise RetrievalError("sqlite-vec extension is not loaded")
        assert self._embedder is not None
        table = ensure_vec_table(
            self._repo.conn, model_to_slug(self._embedder.model), len(vectors[0])
        )
        for chunk, vector in zip(chunks, vectors):
            chunk.embedding = vector
        return self._repo.set_embeddings(
            table, [(c.rowid, v) for c, v in zip(chunks, vectors) if c.rowid is not None]
        )

    # ------------------------------------------------------------------
    # Repair sweep
    # ------------------------------------------------------------------

    async def repair_missing_embeddings(self, user_id: str, limit: int | None = None) -> int:
        """Embed the user's chunks that have no vector. Returns how many were written.

        Raises:
            ProviderError: The embedding provider failed.
            RetrievalError: No embedder is configured or sqlite-vec is unavailable.
        """
        if self._embedder is None:
            raise RetrievalError("No embedding model configured")
        if not self._repo.vec_available:
            raise RetrievalError("sqlite-vec extension is not loaded")
        table = vec_table_name(model_to_slug(self._embedder.model))
        missing = self._repo.chunks_missing_embeddings(user_id, table, limit=limit)
        if not missing:
            return 0
        vectors = await self._embedder.embed_batched([c.content for c in missing])
        return self._store_vectors(missing, vectors)


def _report_progress(callback: ProgressCallback | None, filename: str, percent: int) -> None:
    if callback is None:
        return
    try:
        callback(filename, percent)
    except Exception:  # noqa: BLE001
        logger.debug("Progress callback raised", exc_info=True)


def _document_metadata(upload: IngestFile, extraction: Extraction) -> dict:
    metadata: dict = {"filename": upload.filename, "mime": upload.mime, "size": len(upload.data)}
    if extraction.pages is not None:
        metadata["pages"] = extraction.pages
    if extraction.truncated:
        metadata["truncated"] = True
    if extraction.analysis:
        metadata["analysis"] = extraction.analysis
    return metadata


def _context_block(filename: str, extraction: Extraction) -> str:
    text = extraction.embeddable_text
    if len(text) > _CONTEXT_CHARS_PER_FILE:
        text = text[:_CONTEXT_CHARS_PER_FILE].rstrip() + "\n[...truncated]"
    return f"--- {filename} ---\n{text}"


def _summary_line(report: FileReport) -> str:
    if not report.ok:
        return f"✗ {report.filename}: {report.note or 'not ingested'}"
    line = f"✓ {report.filename}: {report.chunks} chunks, {report.embedded} embedded"
    return f"{line} ({report.note})" if report.note else line
