"""Vector storage and similarity search for Lore.

One embedding + metadata row per knowledge record (or session summary),
searchable by cosine similarity. Two backends share one database file:

- NativeVectorIndex: sqlite-vec vec0 table, exact KNN inside SQLite.
- LinearScanIndex: numpy cosine over every stored float32 BLOB.

The verbatim BLOB copy is always written, so the linear scan is both the
fallback when sqlite-vec won't load and the reference the native backend
must agree with. Which backend searches is decided once, when the store
is opened.
"""

from __future__ import annotations

import logging
import sqlite3
import struct
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from lore import db
from lore.embeddings import EMBEDDING_DIMENSION
from lore.models import EmbeddingEntry, EntryType

logger = logging.getLogger(__name__)

SNIPPET_LENGTH = 200


@dataclass
class VectorHit:
    """One ranked search result from the vector store."""

    id: str
    type: str
    score: float  # Cosine similarity, higher is closer
    snippet: str

    def to_dict(self) -> dict:
        return {"id": self.id, "type": self.type, "score": self.score, "snippet": self.snippet}


def serialize_embedding(embedding: list[float]) -> bytes:
    """Serialize embedding to bytes for SQLite BLOB storage.

    Uses little-endian float32 format, matching sqlite-vec expectations.

    Args:
        embedding: List of floats (typically 384 dimensions).

    Returns:
        Bytes representation of the embedding.
    """
    return struct.pack(f"<{len(embedding)}f", *embedding)


def deserialize_embedding(blob: bytes) -> list[float]:
    """Deserialize embedding from SQLite BLOB.

    Args:
        blob: Bytes from SQLite BLOB column.

    Returns:
        List of floats.
    """
    count = len(blob) // 4  # 4 bytes per float32
    return list(struct.unpack(f"<{count}f", blob))


def _snippet(text: str) -> str:
    return text[:SNIPPET_LENGTH]


def _type_value(type_filter: EntryType | str | None) -> str | None:
    if type_filter is None:
        return None
    return type_filter.value if isinstance(type_filter, EntryType) else str(type_filter)


# ============================================================
# Backends
# ============================================================


class VectorIndex(ABC):
    """A place vectors are written to and searched in.

    Implementations never commit; the VectorStore owns transactions.
    """

    name: str = ""

    @abstractmethod
    def upsert(self, conn: sqlite3.Connection, entry_id: str, blob: bytes) -> None:
        """Write or replace the vector for entry_id."""

    @abstractmethod
    def delete(self, conn: sqlite3.Connection, entry_id: str) -> None:
        """Remove the vector for entry_id, if present."""

    @abstractmethod
    def search(
        self,
        conn: sqlite3.Connection,
        query_blob: bytes,
        k: int,
        type_filter: str | None,
    ) -> list[VectorHit]:
        """Return the k nearest entries, most similar first."""


class LinearScanIndex(VectorIndex):
    """Brute-force cosine similarity over embedding_vectors."""

    name = "linear-scan"

    def upsert(self, conn: sqlite3.Connection, entry_id: str, blob: bytes) -> None:
        conn.execute(
            "INSERT OR REPLACE INTO embedding_vectors (id, vector) VALUES (?, ?)",
            (entry_id, blob),
        )

    def delete(self, conn: sqlite3.Connection, entry_id: str) -> None:
        conn.execute("DELETE FROM embedding_vectors WHERE id = ?", (entry_id,))

    def search(
        self,
        conn: sqlite3.Connection,
        query_blob: bytes,
        k: int,
        type_filter: str | None,
    ) -> list[VectorHit]:
        import numpy as np

        sql = """
            SELECT e.id, e.type, e.text, ev.vector
            FROM embedding_vectors ev
            JOIN embeddings e ON e.id = ev.id
        """
        params: list = []
        if type_filter:
            sql += " WHERE e.type = ?"
            params.append(type_filter)

        rows = conn.execute(sql, params).fetchall()
        if not rows:
            return []

        # WHAT: Compute in float32, the precision the vectors are stored in.
        matrix = np.stack([np.frombuffer(row["vector"], dtype="<f4") for row in rows])
        query_vec = np.frombuffer(query_blob, dtype="<f4")

        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query_vec)
        dots = matrix @ query_vec
        with np.errstate(divide="ignore", invalid="ignore"):
            scores = np.where(norms > 0, dots / norms, 0.0)

        hits = [
            VectorHit(id=row["id"], type=row["type"], score=float(score), snippet=_snippet(row["text"]))
            for row, score in zip(rows, scores, strict=True)
        ]
        hits.sort(key=lambda h: (-h.score, h.id))
        return hits[:k]


class NativeVectorIndex(VectorIndex):
    """sqlite-vec vec0 index addressed through vec_id_map.

    vec0 rows are keyed by integer rowid; vec_id_map translates record ids
    to rowids. Re-inserting an id updates its vec0 row in place.
    """

    name = "sqlite-vec"

    def _rowid(self, conn: sqlite3.Connection, entry_id: str) -> int | None:
        row = conn.execute("SELECT vec_rowid FROM vec_id_map WHERE embedding_id = ?", (entry_id,)).fetchone()
        return row[0] if row else None

    def upsert(self, conn: sqlite3.Connection, entry_id: str, blob: bytes) -> None:
        rowid = self._rowid(conn, entry_id)
        if rowid is not None:
            conn.execute("UPDATE vec_embeddings SET embedding = ? WHERE rowid = ?", (blob, rowid))
            return
        cursor = conn.execute("INSERT INTO vec_id_map (embedding_id) VALUES (?)", (entry_id,))
        conn.execute(
            "INSERT INTO vec_embeddings (rowid, embedding) VALUES (?, ?)",
            (cursor.lastrowid, blob),
        )

    def delete(self, conn: sqlite3.Connection, entry_id: str) -> None:
        rowid = self._rowid(conn, entry_id)
        if rowid is None:
            return
        # Vector row first, then the mapping that points at it.
        conn.execute("DELETE FROM vec_embeddings WHERE rowid = ?", (rowid,))
        conn.execute("DELETE FROM vec_id_map WHERE vec_rowid = ?", (rowid,))

    def search(
        self,
        conn: sqlite3.Connection,
        query_blob: bytes,
        k: int,
        type_filter: str | None,
    ) -> list[VectorHit]:
        if type_filter:
            # WHAT: Exact scan with the extension's distance function.
            # WHY: A KNN query picks its k before any join, so filtering
            # afterwards could return fewer than k hits of the wanted type.
            sql = """
                SELECT e.id, e.type, e.text, vec_distance_cosine(v.embedding, ?) AS distance
                FROM vec_embeddings v
                JOIN vec_id_map m ON m.vec_rowid = v.rowid
                JOIN embeddings e ON e.id = m.embedding_id
                WHERE e.type = ?
                ORDER BY distance ASC, e.id ASC
                LIMIT ?
            """
            params = (query_blob, type_filter, k)
        else:
            sql = """
                WITH knn AS (
                    SELECT rowid, distance
                    FROM vec_embeddings
                    WHERE embedding MATCH ? AND k = ?
                )
                SELECT e.id, e.type, e.text, knn.distance
                FROM knn
                JOIN vec_id_map m ON m.vec_rowid = knn.rowid
                JOIN embeddings e ON e.id = m.embedding_id
                ORDER BY knn.distance ASC, e.id ASC
            """
            params = (query_blob, min(k, db.VEC_MAX_K))

        rows = conn.execute(sql, params).fetchall()
        return [
            VectorHit(
                id=row["id"],
                type=row["type"],
                score=1.0 - float(row["distance"]),
                snippet=_snippet(row["text"]),
            )
            for row in rows
        ]

    def reconcile(self, conn: sqlite3.Connection) -> int:
        """Bring the native index in line with embedding_vectors.

        Indexes vectors written while sqlite-vec was unavailable, rewrites
        native rows replaced meanwhile, and drops mappings whose entry was
        deleted meanwhile.

        Returns:
            Number of native rows added or rewritten.
        """
        orphans = conn.execute(
            """
            SELECT m.embedding_id FROM vec_id_map m
            LEFT JOIN embedding_vectors ev ON ev.id = m.embedding_id
            WHERE ev.id IS NULL
            """
        ).fetchall()
        for row in orphans:
            self.delete(conn, row[0])

        missing = conn.execute(
            """
            SELECT ev.id, ev.vector FROM embedding_vectors ev
            LEFT JOIN vec_id_map m ON m.embedding_id = ev.id
            WHERE m.embedding_id IS NULL
            """
        ).fetchall()
        for row in missing:
            self.upsert(conn, row[0], row[1])

        # WHAT: Rewrite vec0 rows whose bytes differ from the stored copy.
        # WHY: A re-insert made without the extension only reached
        # embedding_vectors; its mapping still points at the old vector.
        native = {row[0]: bytes(row[1]) for row in conn.execute("SELECT rowid, embedding FROM vec_embeddings")}
        mapped = conn.execute(
            """
            SELECT m.vec_rowid, ev.vector FROM vec_id_map m
            JOIN embedding_vectors ev ON ev.id = m.embedding_id
            """
        ).fetchall()
        refreshed = 0
        for rowid, vector in mapped:
            current = native.get(rowid)
            if current == bytes(vector):
                continue
            if current is None:
                conn.execute("INSERT INTO vec_embeddings (rowid, embedding) VALUES (?, ?)", (rowid, vector))
            else:
                conn.execute("UPDATE vec_embeddings SET embedding = ? WHERE rowid = ?", (vector, rowid))
            refreshed += 1

        if orphans or missing or refreshed:
            logger.info(
                f"Native index reconciled: {len(missing)} added, {refreshed} refreshed, {len(orphans)} removed"
            )
        return len(missing) + refreshed


# ============================================================
# Store facade
# ============================================================


class VectorStore:
    """Embedding rows plus the active search backend.

    Example:
        with VectorStore(get_db_path(project_hash)) as vectors:
            vectors.insert(EmbeddingEntry.for_record(decision), engine.embed(text))
            hits = vectors.search(engine.embed("database choice"), k=5)
    """

    def __init__(
        self,
        db_path: str | Path,
        dimension: int = EMBEDDING_DIMENSION,
        prefer_native: bool = True,
    ):
        """Open (and initialize) a vector store.

        Args:
            db_path: SQLite file, or ":memory:".
            dimension: Vector dimension every insert and query must match.
            prefer_native: Try sqlite-vec first. False forces linear scan.
        """
        self.dimension = dimension
        self._conn = db.connect(db_path)
        db.initialize_schema(self._conn)

        self._fallback = LinearScanIndex()
        self._native: NativeVectorIndex | None = None

        if prefer_native and db.load_vec_extension(self._conn):
            if db.initialize_vec_schema(self._conn, dimension):
                self._native = NativeVectorIndex()
                with self._conn:
                    self._native.reconcile(self._conn)
        elif prefer_native:
            logger.info("sqlite-vec unavailable, using linear-scan vector search")

        self._search_index: VectorIndex = self._native or self._fallback
        logger.debug(f"Vector store opened at {db_path} with {self.backend} backend")

    @property
    def backend(self) -> str:
        """Name of the backend answering searches."""
        return self._search_index.name

    @property
    def is_native(self) -> bool:
        return self._native is not None

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def _writers(self) -> list[VectorIndex]:
        return [self._fallback] if self._native is None else [self._fallback, self._native]

    def _check_dimension(self, vector: list[float], what: str) -> None:
        if len(vector) != self.dimension:
            raise ValueError(f"{what} has dimension {len(vector)}, expected {self.dimension}")

    def _write(self, entry: EmbeddingEntry, vector: list[float]) -> None:
        type_value = _type_value(entry.type)
        self._conn.execute(
            "INSERT OR REPLACE INTO embeddings (id, type, text, session_id) VALUES (?, ?, ?, ?)",
            (entry.id, type_value, entry.text, entry.session_id),
        )
        blob = serialize_embedding(vector)
        for index in self._writers():
            index.upsert(self._conn, entry.id, blob)

    def _remove(self, entry_id: str) -> bool:
        existed = self.exists(entry_id)
        if self._native is not None:
            self._native.delete(self._conn, entry_id)
        self._fallback.delete(self._conn, entry_id)
        self._conn.execute("DELETE FROM embeddings WHERE id = ?", (entry_id,))
        return existed

    def insert(self, entry: EmbeddingEntry, vector: list[float]) -> None:
        """Insert or replace the embedding for entry.id.

        Raises:
            ValueError: If the vector's dimension doesn't match the store.
        """
        self._check_dimension(vector, f"Vector for {entry.id}")
        with self._conn:
            self._write(entry, vector)

    def insert_batch(self, items: Iterable[tuple[EmbeddingEntry, list[float]]]) -> int:
        """Insert many embeddings in one transaction.

        Every vector is validated before anything is written, and a failure
        part-way through rolls the whole batch back.

        Returns:
            Number of entries written.
        """
        items = list(items)
        for entry, vector in items:
            self._check_dimension(vector, f"Vector for {entry.id}")

        with self._conn:
            for entry, vector in items:
                self._write(entry, vector)
        return len(items)

    def replace_session(self, session_id: str, items: Iterable[tuple[EmbeddingEntry, list[float]]]) -> int:
        """Swap a session's embeddings for a new set in one transaction.

        Returns:
            Number of entries written.
        """
        items = list(items)
        for entry, vector in items:
            self._check_dimension(vector, f"Vector for {entry.id}")

        rows = self._conn.execute("SELECT id FROM embeddings WHERE session_id = ?", (session_id,)).fetchall()
        with self._conn:
            for row in rows:
                self._remove(row[0])
            for entry, vector in items:
                self._write(entry, vector)
        return len(items)

    def search(
        self,
        query: list[float],
        k: int = 10,
        type_filter: EntryType | str | None = None,
    ) -> list[VectorHit]:
        """Return the k entries most similar to query, best first.

        Args:
            query: Query vector.
            k: Maximum number of hits.
            type_filter: Restrict to one entry type.

        Raises:
            ValueError: If the query's dimension doesn't match the store.
        """
        self._check_dimension(query, "Query vector")
        if k <= 0:
            return []

        query_blob = serialize_embedding(query)
        type_value = _type_value(type_filter)
        try:
            return self._search_index.search(self._conn, query_blob, k, type_value)
        except sqlite3.OperationalError as e:
            if self._search_index is self._fallback:
                raise
            logger.warning(f"sqlite-vec query failed: {e}, falling back to linear scan")
            return self._fallback.search(self._conn, query_blob, k, type_value)

    def delete(self, entry_id: str) -> bool:
        """Delete one entry. Returns True if it existed."""
        with self._conn:
            return self._remove(entry_id)

    def delete_many(self, entry_ids: Iterable[str]) -> int:
        """Delete several entries in one transaction. Returns how many existed."""
        with self._conn:
            return sum(1 for entry_id in entry_ids if self._remove(entry_id))

    def delete_by_session(self, session_id: str) -> int:
        """Delete every entry whose session_id matches, including the summary."""
        rows = self._conn.execute("SELECT id FROM embeddings WHERE session_id = ?", (session_id,)).fetchall()
        return self.delete_many(row[0] for row in rows)

    def delete_by_type(self, entry_type: EntryType | str) -> int:
        rows = self._conn.execute("SELECT id FROM embeddings WHERE type = ?", (_type_value(entry_type),)).fetchall()
        return self.delete_many(row[0] for row in rows)

    def clear(self) -> int:
        """Delete every entry."""
        rows = self._conn.execute("SELECT id FROM embeddings").fetchall()
        return self.delete_many(row[0] for row in rows)

    def count(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM embeddings").fetchone()[0]

    def count_by_type(self) -> dict[str, int]:
        cursor = self._conn.execute("SELECT type, COUNT(*) FROM embeddings GROUP BY type")
        return {row[0]: row[1] for row in cursor.fetchall()}

    def exists(self, entry_id: str) -> bool:
        row = self._conn.execute("SELECT 1 FROM embeddings WHERE id = ?", (entry_id,)).fetchone()
        return row is not None

    def get_vector(self, entry_id: str) -> list[float] | None:
        """Return the stored vector for an entry, or None."""
        row = self._conn.execute("SELECT vector FROM embedding_vectors WHERE id = ?", (entry_id,)).fetchone()
        if row is None:
            return None
        return deserialize_embedding(row[0])

    def get_entry(self, entry_id: str) -> EmbeddingEntry | None:
        row = self._conn.execute(
            "SELECT id, type, text, session_id FROM embeddings WHERE id = ?", (entry_id,)
        ).fetchone()
        if row is None:
            return None
        return EmbeddingEntry(id=row["id"], type=EntryType(row["type"]), text=row["text"], session_id=row["session_id"])

    def stats(self) -> dict:
        stats = db.get_database_stats(self._conn)
        stats["backend"] = self.backend
        stats["by_type"] = self.count_by_type()
        return stats

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> VectorStore:
        return self

    def __exit__(self, *exc) -> None:
        self.close()
