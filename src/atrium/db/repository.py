"""Repository pattern for all Atrium knowledge-store operations.

Single interface for: documents, chunks, vec embeddings, keyword search,
memory facts and usage counters. Vec tables are model-managed
(ensure_vec_table); the repository handles read + write.
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterable

from atrium.db.models import Chunk, Document, MemoryFact, MemoryType, UsageRecord
from atrium.db.vectors import list_vec_tables, vec_table_exists
from atrium.errors import RetrievalError

# Vector hits are filtered by owner after the KNN query; over-fetch to compensate.
_VEC_OVERFETCH = 4


class Repository:
    """Data access layer for all Atrium database entities.

    Wraps an open sqlite3.Connection. The connection is owned by the caller
    and must be closed after use.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with schema initialised
                (see atrium.db.schema.initialize). sqlite-vec is optional.
        """
        self._conn = conn
        self._vec_available: bool | None = None

    @property
    def conn(self) -> sqlite3.Connection:
        return self._conn

    @property
    def vec_available(self) -> bool:
        """True if the sqlite-vec extension is loaded on this connection."""
        if self._vec_available is None:
            try:
                self._conn.execute("SELECT vec_version()").fetchone()
                self._vec_available = True
            except sqlite3.OperationalError:
                self._vec_available = False
        return self._vec_available

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def insert_document(self, document: Document) -> None:
        """Insert a new document record."""
        self._conn.execute(
            """
            INSERT INTO documents (id, owner_user_id, title, source_type, metadata)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                document.id,
                document.owner_user_id,
                document.title,
                document.source_type,
                json.dumps(document.metadata),
            ),
        )
        self._conn.commit()

    def get_document(self, document_id: str) -> Document | None:
        row = self._conn.execute(
            "SELECT id, owner_user_id, title, source_type, metadata, created_at "
            "FROM documents WHERE id = ?",
            (document_id,),
        ).fetchone()
        return _row_to_document(row) if row else None

    def list_documents(self, user_id: str) -> list[Document]:
        """Return the user's documents, newest first."""
        rows = self._conn.execute(
            "SELECT id, owner_user_id, title, source_type, metadata, created_at "
            "FROM documents WHERE owner_user_id = ? ORDER BY created_at DESC, rowid DESC",
            (user_id,),
        ).fetchall()
        return [_row_to_document(r) for r in rows]

    def delete_document(self, document_id: str) -> int:
        """Delete a document, its chunks and their embeddings in one transaction.

        Returns:
            Number of chunks removed.
        """
        with self._conn:
            rowids = [
                r[0]
                for r in self._conn.execute(
                    "SELECT rowid FROM chunks WHERE document_id = ?", (document_id,)
                ).fetchall()
            ]
            if rowids and self.vec_available:
                placeholders = ",".join("?" * len(rowids))
                for table in list_vec_tables(self._conn):
                    self._conn.execute(
                        f"DELETE FROM [{table}] WHERE rowid IN ({placeholders})",  # noqa: S608
                        rowids,
                    )
            self._conn.execute("DELETE FROM chunks WHERE document_id = ?", (document_id,))
            self._conn.execute("DELETE FROM documents WHERE id = ?", (document_id,))
        return len(rowids)

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    def insert_chunks(self, chunks: list[Chunk]) -> list[int]:
        """Insert one ordered batch of chunks atomically. Returns the new rowids.

        Indices must continue the document's existing sequence without gaps,
        so a document's chunk_index values stay contiguous from 0.

        Raises:
            ValueError: If the batch mixes documents or breaks the sequence.
        """
        if not chunks:
            return []
        document_id = chunks[0].document_id
        if any(c.document_id != document_id for c in chunks):
            raise ValueError("insert_chunks() batch must belong to a single document")

        with self._conn:
            expected = self.count_chunks(document_id)
            rowids: list[int] = []
            for offset, chunk in enumerate(chunks):
                if chunk.chunk_index != expected + offset:
                    raise ValueError(
                        f"chunk_index {chunk.chunk_index} breaks the sequence for "
                        f"document {document_id} (expected {expected + offset})"
                    )
                cur = self._conn.execute(
                    """
                    INSERT INTO chunks (document_id, chunk_index, content, metadata)
                    VALUES (?, ?, ?, ?)
                    """,
                    (document_id, chunk.chunk_index, chunk.content, json.dumps(chunk.metadata)),
                )
                chunk.rowid = cur.lastrowid
                rowids.append(cur.lastrowid)
        return rowids

    def get_chunk_by_rowid(self, rowid: int) -> Chunk | None:
        row = self._conn.execute(
            """
            SELECT rowid, document_id, chunk_index, content, metadata, created_at
            FROM chunks WHERE rowid = ?
            """,
            (rowid,),
        ).fetchone()
        return _row_to_chunk(row) if row else None

    def list_chunks(self, document_id: str) -> list[Chunk]:
        rows = self._conn.execute(
            """
            SELECT rowid, document_id, chunk_index, content, metadata, created_at
            FROM chunks WHERE document_id = ? ORDER BY chunk_index
            """,
            (document_id,),
        ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def count_chunks(self, document_id: str) -> int:
        return self._conn.execute(
            "SELECT COUNT(*) FROM chunks WHERE document_id = ?", (document_id,)
        ).fetchone()[0]

    # ------------------------------------------------------------------
    # Vec embeddings
    # ------------------------------------------------------------------

    def set_embeddings(self, table: str, items: Iterable[tuple[int, list[float]]]) -> int:
        """Write (chunk rowid, vector) pairs, overwriting any existing vector.

        Only the vec row changes; chunk content is never touched.
        """
        count = 0
        with self._conn:
            for rowid, embedding in items:
                self._conn.execute(f"DELETE FROM {table} WHERE rowid = ?", (rowid,))
                self._conn.execute(
                    f"INSERT INTO {table}(rowid, embedding) VALUES (?, ?)",
                    (rowid, json.dumps(embedding)),
                )
                count += 1
        return count

    def count_embeddings(self, table: str, document_id: str) -> int:
        """Number of the document's chunks that have a vector in *table*."""
        if not self.vec_available or not vec_table_exists(self._conn, table):
            return 0
        return self._conn.execute(
            f"SELECT COUNT(*) FROM chunks WHERE document_id = ? "
            f"AND rowid IN (SELECT rowid FROM {table})",
            (document_id,),
        ).fetchone()[0]

    def chunks_missing_embeddings(
        self, user_id: str, table: str, limit: int | None = None
    ) -> list[Chunk]:
        """Chunks owned by *user_id* with no vector in *table* (repair candidates)."""
        sql = (
            "SELECT c.rowid, c.document_id, c.chunk_index, c.content, c.metadata, c.created_at "
            "FROM chunks c JOIN documents d ON d.id = c.document_id "
            "WHERE d.owner_user_id = ?"
        )
        if self.vec_available and vec_table_exists(self._conn, table):
            sql += f" AND c.rowid NOT IN (SELECT rowid FROM {table})"
        sql += " ORDER BY c.document_id, c.chunk_index"
        if limit is not None:
            sql += f" LIMIT {int(limit)}"
        return [_row_to_chunk(r) for r in self._conn.execute(sql, (user_id,)).fetchall()]

    def vector_search(
        self, user_id: str, table: str, embedding: list[float], k: int = 6
    ) -> list[tuple[Chunk, float]]:
        """Nearest-neighbour search over the user's chunks, closest first.

        Raises:
            RetrievalError: If sqlite-vec is not loaded, the model's vec table
                does not exist, or the KNN query fails.
        """
        if not self.vec_available:
            raise RetrievalError("sqlite-vec extension is not loaded")
        if not vec_table_exists(self._conn, table):
            raise RetrievalError(f"No embeddings stored yet ({table} missing)")

        try:
            vec_rows = self._conn.execute(
                f"SELECT rowid, distance FROM {table} WHERE embedding MATCH ? "
                "ORDER BY distance LIMIT ?",
                (json.dumps(embedding), k * _VEC_OVERFETCH),
            ).fetchall()
        except sqlite3.OperationalError as exc:
            raise RetrievalError(f"Vector query failed: {exc}") from exc

        results: list[tuple[Chunk, float]] = []
        for vec_row in vec_rows:
            row = self._conn.execute(
                """
                SELECT c.rowid, c.document_id, c.chunk_index, c.content, c.metadata, c.created_at
                FROM chunks c JOIN documents d ON d.id = c.document_id
                WHERE c.rowid = ? AND d.owner_user_id = ?
                """,
                (vec_row["rowid"], user_id),
            ).fetchone()
            if row is not None:
                results.append((_row_to_chunk(row), vec_row["distance"]))
            if len(results) >= k:
                break
        return results

    # ------------------------------------------------------------------
    # Keyword search
    # ------------------------------------------------------------------

    def keyword_search(self, user_id: str, term: str, k: int = 6) -> list[Chunk]:
        """Case-insensitive substring match over the user's chunks, newest first."""
        term = term.strip()
        if not term:
            return []
        pattern = "%" + _escape_like(term) + "%"
        rows = self._conn.execute(
            r"""
            SELECT c.rowid, c.document_id, c.chunk_index, c.content, c.metadata, c.created_at
            FROM chunks c JOIN documents d ON d.id = c.document_id
            WHERE d.owner_user_id = ? AND c.content LIKE ? ESCAPE '\'
            ORDER BY d.created_at DESC, c.chunk_index
            LIMIT ?
            """,
            (user_id, pattern, k),
        ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    # ------------------------------------------------------------------
    # Memory facts
    # ------------------------------------------------------------------

    def upsert_memory(self, fact: MemoryFact) -> None:
        """Insert *fact*, or update content/type/confidence/active flag if it exists."""
        self._conn.execute(
            """
            INSERT INTO memories (id, owner_user_id, memory_type, content, confidence, is_active)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                memory_type = excluded.memory_type,
                content     = excluded.content,
                confidence  = excluded.confidence,
                is_active   = excluded.is_active,
                updated_at  = datetime('now')
            """,
            (
                fact.id,
                fact.owner_user_id,
                fact.memory_type.value,
                fact.content,
                fact.confidence,
                int(fact.is_active),
            ),
        )
        self._conn.commit()

    def list_memories(
        self, user_id: str, active_only: bool = True, limit: int | None = None
    ) -> list[MemoryFact]:
        """Return the user's memories, most confident first."""
        sql = (
            "SELECT id, owner_user_id, memory_type, content, confidence, is_active, created_at "
            "FROM memories WHERE owner_user_id = ?"
        )
        if active_only:
            sql += " AND is_active = 1"
        sql += " ORDER BY confidence DESC, updated_at DESC"
        if limit is not None:
            sql += f" LIMIT {int(limit)}"
        return [_row_to_memory(r) for r in self._conn.execute(sql, (user_id,)).fetchall()]

    def delete_memory(self, user_id: str, memory_id: str) -> bool:
        """Delete a memory fact. Returns False if it did not exist for this user."""
        cur = self._conn.execute(
            "DELETE FROM memories WHERE id = ? AND owner_user_id = ?", (memory_id, user_id)
        )
        self._conn.commit()
        return cur.rowcount > 0

    # ------------------------------------------------------------------
    # Usage counters
    # ------------------------------------------------------------------

    def increment_usage(
        self, user_id: str, model: str, input_tokens: int, output_tokens: int
    ) -> None:
        """Atomically add to the (user, model) counters, creating the row if absent."""
        with self._conn:
            self._conn.execute(
                """
                INSERT INTO usage_counters (user_id, model, input_tokens, output_tokens)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(user_id, model) DO UPDATE SET
                    input_tokens  = input_tokens + excluded.input_tokens,
                    output_tokens = output_tokens + excluded.output_tokens,
                    updated_at    = datetime('now')
                """,
                (user_id, model, input_tokens, output_tokens),
            )

    def get_usage(self, user_id: str) -> list[UsageRecord]:
        rows = self._conn.execute(
            "SELECT user_id, model, input_tokens, output_tokens, updated_at "
            "FROM usage_counters WHERE user_id = ? ORDER BY model",
            (user_id,),
        ).fetchall()
        return [
            UsageRecord(
                user_id=r["user_id"],
                model=r["model"],
                input_tokens=r["input_tokens"],
                output_tokens=r["output_tokens"],
                updated_at=r["updated_at"],
            )
            for r in rows
        ]

    def get_rate(self, user_id: str) -> tuple[float, float] | None:
        """Return the user's (input, output) USD-per-million override, if any."""
        row = self._conn.execute(
            "SELECT input_per_million, output_per_million FROM usage_rates WHERE user_id = ?",
            (user_id,),
        ).fetchone()
        return (row[0], row[1]) if row else None

    def set_rate(self, user_id: str, input_per_million: float, output_per_million: float) -> None:
        self._conn.execute(
            """
            INSERT INTO usage_rates (user_id, input_per_million, output_per_million)
            VALUES (?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                input_per_million  = excluded.input_per_million,
                output_per_million = excluded.output_per_million,
                updated_at         = datetime('now')
            """,
            (user_id, input_per_million, output_per_million),
        )
        self._conn.commit()


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _row_to_document(row: sqlite3.Row) -> Document:
    return Document(
        id=row["id"],
        owner_user_id=row["owner_user_id"],
        title=row["title"],
        source_type=row["source_type"],
        metadata=json.loads(row["metadata"] or "{}"),
        created_at=row["created_at"],
    )


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    return Chunk(
        rowid=row["rowid"],
        document_id=row["document_id"],
        chunk_index=row["chunk_index"],
        content=row["content"],
        metadata=json.loads(row["metadata"] or "{}"),
        created_at=row["created_at"],
    )


def _row_to_memory(row: sqlite3.Row) -> MemoryFact:
    return MemoryFact(
        id=row["id"],
        owner_user_id=row["owner_user_id"],
        memory_type=MemoryType(row["memory_type"]),
        content=row["content"],
        confidence=float(row["confidence"]),
        is_active=bool(row["is_active"]),
        created_at=row["created_at"],
    )
