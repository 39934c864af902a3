"""Vector store for indexed chunks.

``SQLiteVectorStore`` keeps embeddings as float32 blobs next to their JSON
metadata and scores queries with numpy cosine similarity. Several logical
indexes can share one database file.

Filters are dictionaries of metadata field to value. A scalar value means
equality; a list means "any of", and for list-valued metadata such as
``search_tags`` it matches when the two lists intersect.
"""

import asyncio
import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence

import numpy as np

from pipelines.models import VectorMatch, VectorRecord

logger = logging.getLogger(__name__)

# Metadata fields mirrored into columns so filters on them run in SQL
INDEXED_COLUMNS = ("namespace", "category", "site_id")

SCHEMA = """
CREATE TABLE IF NOT EXISTS vectors (
    index_name TEXT NOT NULL,
    id TEXT NOT NULL,
    namespace TEXT,
    category TEXT,
    site_id TEXT,
    dimension INTEGER NOT NULL,
    embedding BLOB NOT NULL,
    metadata TEXT NOT NULL,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (index_name, id)
);
CREATE INDEX IF NOT EXISTS idx_vectors_namespace ON vectors (index_name, namespace);
CREATE INDEX IF NOT EXISTS idx_vectors_site ON vectors (index_name, site_id);
"""


class VectorStore(Protocol):
    async def upsert_vectors(self, index: str, records: Sequence[VectorRecord]) -> int: ...

    async def query(self, index: str, vector: Sequence[float], top_k: int = 10,
                    filter: Optional[Dict[str, Any]] = None) -> List[VectorMatch]: ...

    async def delete_by_filter(self, index: str, filter: Dict[str, Any]) -> int: ...


def _matches_value(actual: Any, expected: Any) -> bool:
    if isinstance(expected, (list, tuple, set)):
        if isinstance(actual, (list, tuple)):
            return bool(set(actual) & set(expected))
        return actual in expected
    if isinstance(actual, (list, tuple)):
        return expected in actual
    return actual == expected


def matches_filter(metadata: Dict[str, Any], filter: Optional[Dict[str, Any]]) -> bool:
    """Check a metadata dict against a filter dict."""
    if not filter:
        return True
    return all(_matches_value(metadata.get(key), expected) for key, expected in filter.items())


def cosine_scores(matrix: np.ndarray, vector: np.ndarray) -> np.ndarray:
    """Cosine similarity of every row of ``matrix`` with ``vector``."""
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(vector)
    norms[norms == 0] = 1.0
    return matrix @ vector / norms


class SQLiteVectorStore:
    """SQLite-backed vector store with brute-force cosine search."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self.conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()

    def _connect(self) -> sqlite3.Connection:
        if self.conn is None:
            if self.db_path != ":memory:":
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self.conn.row_factory = sqlite3.Row
            self.conn.executescript(SCHEMA)
            self.conn.commit()
            logger.info(f"SQLite vector store initialized: {self.db_path}")
        return self.conn

    async def initialize(self):
        """Open the database and ensure the schema exists."""
        await asyncio.to_thread(self._connect)

    async def close(self):
        """Close the SQLite connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.info("SQLite vector store closed")

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def _upsert(self, index: str, records: Sequence[VectorRecord]) -> int:
        rows = []
        for record in records:
            embedding = np.asarray(record.embedding, dtype=np.float32)
            metadata = record.metadata or {}
            rows.append((
                index,
                record.id,
                *(None if metadata.get(col) is None else str(metadata.get(col)) for col in INDEXED_COLUMNS),
                int(embedding.shape[0]),
                embedding.tobytes(),
                json.dumps(metadata, default=str),
            ))
        with self._lock:
            conn = self._connect()
            conn.executemany(
                """
                INSERT OR REPLACE INTO vectors
                    (index_name, id, namespace, category, site_id, dimension, embedding, metadata, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
                """,
                rows,
            )
            conn.commit()
        return len(rows)

    async def upsert_vectors(self, index: str, records: Sequence[VectorRecord]) -> int:
        """Insert or overwrite records by id. Returns the number written."""
        if not records:
            return 0
        written = await asyncio.to_thread(self._upsert, index, list(records))
        logger.debug(f"Upserted {written} vectors into {index}")
        return written

    def _select(self, index: str, filter: Optional[Dict[str, Any]]) -> List[sqlite3.Row]:
        clauses = ["index_name = ?"]
        params: List[Any] = [index]
        for col in INDEXED_COLUMNS:
            if filter and col in filter and not isinstance(filter[col], (list, tuple, set)):
                clauses.append(f"{col} = ?")
                params.append(str(filter[col]))
        with self._lock:
            conn = self._connect()
            cursor = conn.execute(
                f"SELECT id, dimension, embedding, metadata FROM vectors WHERE {' AND '.join(clauses)}",
                params,
            )
            return cursor.fetchall()

    def _query(self, index: str, vector: Sequence[float], top_k: int,
               filter: Optional[Dict[str, Any]]) -> List[VectorMatch]:
        query = np.asarray(vector, dtype=np.float32)
        candidates = []
        for row in self._select(index, filter):
            if row["dimension"] != query.shape[0]:
                continue
            metadata = json.loads(row["metadata"])
            if not matches_filter(metadata, filter):
                continue
            candidates.append((row["id"], np.frombuffer(row["embedding"], dtype=np.float32), metadata))
        if not candidates:
            return []

        matrix = np.vstack([embedding for _, embedding, _ in candidates])
        scores = cosine_scores(matrix, query)
        order = np.argsort(-scores)[:top_k]
        return [
            VectorMatch(id=candidates[i][0], score=float(scores[i]), metadata=candidates[i][2])
            for i in order
        ]

    async def query(self, index: str, vector: Sequence[float], top_k: int = 10,
                    filter: Optional[Dict[str, Any]] = None) -> List[VectorMatch]:
        """Return the ``top_k`` most similar records matching ``filter``, best first."""
        return await asyncio.to_thread(self._query, index, list(vector), top_k, filter)

    def _delete(self, index: str, filter: Dict[str, Any]) -> int:
        ids = [
            row["id"] for row in self._select(index, filter)
            if matches_filter(json.loads(row["metadata"]), filter)
        ]
        if not ids:
            return 0
        with self._lock:
            conn = self._connect()
            conn.executemany("DELETE FROM vectors WHERE index_name = ? AND id = ?", [(index, i) for i in ids])
            conn.commit()
        return len(ids)

    async def delete_by_filter(self, index: str, filter: Dict[str, Any]) -> int:
        """Delete every record matching ``filter``. An empty filter is refused."""
        if not filter:
            raise ValueError("delete_by_filter requires a non-empty filter")
        deleted = await asyncio.to_thread(self._delete, index, dict(filter))
        logger.info(f"Deleted {deleted} vectors from {index} matching {filter}")
        return deleted

    def _count(self, index: str) -> int:
        with self._lock:
            conn = self._connect()
            return conn.execute("SELECT COUNT(*) FROM vectors WHERE index_name = ?", (index,)).fetchone()[0]

    async def count(self, index: str) -> int:
        return await asyncio.to_thread(self._count, index)
