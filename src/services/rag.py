"""Retrieval-augmented context: prior user messages similar to the current one."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from src.config import RAG_SIMILARITY_THRESHOLD, RAG_TOP_K
from src.models import EmbeddingRecord, RetrievedSnippet
from src.services.embeddings import Embedder
from src.storage.similarity import SimilarityStore

logger = logging.getLogger(__name__)

CONTEXT_HEADER = "Relevant context from past conversations:"


class RAGRetriever:
    """Combines an ``Embedder`` and a ``SimilarityStore``.

    The embedder's dimensionality must match the store's collection; this
    is checked once here rather than on every insert.
    """

    def __init__(
        self,
        embedder: Embedder,
        store: SimilarityStore,
        *,
        top_k: int | None = None,
        threshold: float | None = None,
    ):
        if embedder.dimensions != store.dimensions:
            raise ValueError(
                f"Embedder produces {embedder.dimensions}-dimensional vectors "
                f"but the similarity store holds {store.dimensions}"
            )
        self._embedder = embedder
        self._store = store
        self.top_k = RAG_TOP_K if top_k is None else top_k
        self.threshold = RAG_SIMILARITY_THRESHOLD if threshold is None else threshold

    def embed(self, text: str, *, budget: float | None = None) -> list[float]:
        return self._embedder.embed(text, budget=budget)

    def retrieve(
        self,
        query: str,
        *,
        vector: Sequence[float] | None = None,
        threshold: float | None = None,
    ) -> list[RetrievedSnippet]:
        """Return stored snippets at or above the threshold, best match first.

        Pass *vector* to reuse an embedding already computed for *query*.
        An empty list is a normal outcome.
        """
        if vector is None:
            vector = self.embed(query)
        minimum = self.threshold if threshold is None else threshold

        snippets = [
            RetrievedSnippet(text=record.text, similarity=score, owner_id=record.owner_id)
            for record, score in self._store.query_nearest(vector, self.top_k)
            if score >= minimum
        ]
        snippets.sort(key=lambda snippet: snippet.similarity, reverse=True)
        logger.debug("RAG: %d snippet(s) at threshold %.2f", len(snippets), minimum)
        return snippets

    def remember(
        self, owner_id: str, text: str, vector: Sequence[float],
    ) -> EmbeddingRecord:
        """Store *text* (already embedded as *vector*) for future retrieval."""
        return self._store.insert(
            EmbeddingRecord(owner_id=owner_id, text=text, vector=list(vector)),
        )

    @staticmethod
    def format_context(snippets: Sequence[RetrievedSnippet]) -> str | None:
        """Render snippets as the context system message, or ``None`` if empty."""
        if not snippets:
            return None
        lines = [CONTEXT_HEADER]
        lines.extend(f"- {snippet.text}" for snippet in snippets)
        return "\n".join(lines)
