"""Similarity store: durable ``EmbeddingRecord`` storage + nearest neighbours.

``LanceDBSimilarityStore`` keeps one LanceDB table per collection and ranks
with LanceDB's cosine distance (similarity = 1 - distance). The vector
column is a fixed-size list, so a collection's dimensionality is set when
its table is created and every later insert or query with a different
vector length is rejected.
"""

from __future__ import annotations

import logging
import os
import threading
import uuid
from collections.abc import Sequence
from typing import Protocol

import lancedb
import pyarrow as pa

from src.config import EMBEDDING_DIMENSIONS, VECTOR_DB_PATH
from src.errors import StorageFailure
from src.models import EmbeddingRecord

logger = logging.getLogger(__name__)

DEFAULT_COLLECTION = "conversation_embeddings"

# Errors raised by LanceDB / Arrow for I/O, schema and commit problems
_LANCE_ERRORS = (OSError, ValueError, RuntimeError, pa.ArrowException)


class SimilarityStore(Protocol):
    """Storage + ranking contract used by the RAG retriever."""

    @property
    def dimensions(self) -> int:
        ...

    def insert(self, record: EmbeddingRecord) -> EmbeddingRecord:
        """Persist *record*; returns it with its storage id."""
        ...

    def query_nearest(
        self, vector: Sequence[float], k: int,
    ) -> list[tuple[EmbeddingRecord, float]]:
        """Return up to *k* records ordered by descending similarity."""
        ...


def _schema(dimensions: int) -> pa.Schema:
    return pa.schema(
        [
            pa.field("id", pa.string()),
            pa.field("owner_id", pa.string()),
            pa.field("text", pa.string()),
            pa.field("vector", pa.list_(pa.float32(), dimensions)),
            pa.field("created_at", pa.timestamp("us", tz="UTC")),
        ]
    )


class LanceDBSimilarityStore:
    """``SimilarityStore`` backed by a LanceDB table with cosine ranking."""

    def __init__(
        self,
        path: str | None = None,
        dimensions: int | None = None,
        collection: str = DEFAULT_COLLECTION,
    ) -> None:
        self._path = path or VECTOR_DB_PATH
        self._collection = collection
        self._lock = threading.Lock()
        requested = dimensions or EMBEDDING_DIMENSIONS

        try:
            os.makedirs(self._path, exist_ok=True)
            self._db = lancedb.connect(self._path)
            self._table = self._open_or_create(requested)
            stored = self._table.schema.field("vector").type.list_size
        except _LANCE_ERRORS as exc:
            logger.error("Could not open collection %r at %s: %s", collection, self._path, exc)
            raise StorageFailure(f"Could not open collection {collection!r}: {exc}") from exc

        if stored != requested:
            raise StorageFailure(
                f"Collection {collection!r} was created with {stored} dimensions, "
                f"not {requested}"
            )
        self._dimensions = stored

    def _open_or_create(self, dimensions: int):
        try:
            return self._db.open_table(self._collection)
        except (ValueError, FileNotFoundError):
            logger.info(
                "Creating collection %r (%d dimensions)", self._collection, dimensions,
            )
            return self._db.create_table(
                self._collection, schema=_schema(dimensions), exist_ok=True,
            )

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def _check_length(self, vector: Sequence[float]) -> None:
        if len(vector) != self._dimensions:
            raise StorageFailure(
                f"Vector has {len(vector)} dimensions; collection "
                f"{self._collection!r} requires {self._dimensions}"
            )

    def insert(self, record: EmbeddingRecord) -> EmbeddingRecord:
        self._check_length(record.vector)
        stored = record.model_copy(update={"id": str(uuid.uuid4())})
        row = {
            "id": stored.id,
            "owner_id": stored.owner_id,
            "text": stored.text,
            "vector": list(stored.vector),
            "created_at": stored.created_at,
        }
        try:
            with self._lock:
                self._table.add([row])
        except _LANCE_ERRORS as exc:
            logger.error("Could not store embedding for %s: %s", record.owner_id, exc)
            raise StorageFailure(f"Could not store embedding: {exc}") from exc
        return stored

    def query_nearest(
        self, vector: Sequence[float], k: int,
    ) -> list[tuple[EmbeddingRecord, float]]:
        self._check_length(vector)
        if k <= 0:
            return []
        try:
            if self._table.count_rows() == 0:
                return []
            rows = (
                self._table.search(list(vector))
                .distance_type("cosine")
                .limit(k)
                .to_list()
            )
        except _LANCE_ERRORS as exc:
            logger.error("Similarity query failed: %s", exc)
            raise StorageFailure(f"Similarity query failed: {exc}") from exc

        results = [
            (
                EmbeddingRecord(
                    id=row["id"],
                    owner_id=row["owner_id"],
                    text=row["text"],
                    vector=list(row["vector"]),
                    created_at=row["created_at"],
                ),
                1.0 - float(row["_distance"]),
            )
            for row in rows
        ]
        results.sort(key=lambda item: item[1], reverse=True)
        return results

    def close(self) -> None:
        self._table = None
        self._db = None
