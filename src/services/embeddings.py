"""Embedding provider adapter (text → fixed-length vector)."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Protocol

import openai
from openai import OpenAI

from src.config import EMBEDDING_DIMENSIONS, EMBEDDING_MODEL, OPENAI_API_KEY
from src.errors import ProviderUnavailable
from src.services.metrics import metrics

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
INITIAL_BACKOFF_SECONDS = 1.0
REQUEST_TIMEOUT_SECONDS = 10.0

_RETRYABLE_ERRORS = (
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
)


class Embedder(Protocol):
    """Protocol for embedding text into vectors."""

    @property
    def dimensions(self) -> int:
        """Return the dimensionality of the embedding vectors."""
        ...

    def embed(self, text: str, *, budget: float | None = None) -> list[float]:
        """Embed a single text string into a vector.

        No retry is started that would outlast *budget* seconds.
        """
        ...


class OpenAIEmbedder:
    """OpenAI embedding implementation with bounded retries."""

    def __init__(
        self,
        model: str | None = None,
        dimensions: int | None = None,
        api_key: str | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._model = model or EMBEDDING_MODEL
        self._dimensions = dimensions or EMBEDDING_DIMENSIONS
        self._client = OpenAI(
            api_key=api_key or OPENAI_API_KEY,
            timeout=REQUEST_TIMEOUT_SECONDS,
            max_retries=0,
        )
        self._clock = clock

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def embed(self, text: str, *, budget: float | None = None) -> list[float]:
        started = self._clock()
        last_error: Exception | None = None
        for attempt in range(1, MAX_RETRIES + 1):
            t0 = time.perf_counter()
            try:
                response = self._client.embeddings.create(
                    model=self._model,
                    input=text,
                    dimensions=self._dimensions,
                )
            except _RETRYABLE_ERRORS as exc:
                metrics.record_failure("openai", "embed", error_type=type(exc).__name__)
                last_error = exc
                backoff = INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1))
                if budget is not None and self._clock() - started + backoff >= budget:
                    raise ProviderUnavailable(
                        "openai", f"turn budget spent after {attempt} attempt(s): {exc}",
                    ) from exc
                logger.warning(
                    "Embedding attempt %d/%d failed (%s). Retrying in %.1fs…",
                    attempt, MAX_RETRIES, type(exc).__name__, backoff,
                )
                time.sleep(backoff)
                continue
            except openai.APIError as exc:
                metrics.record_failure("openai", "embed", error_type=type(exc).__name__)
                raise ProviderUnavailable("openai", str(exc)) from exc

            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_success("openai", "embed", latency_ms=elapsed)
            vector = response.data[0].embedding
            if len(vector) != self._dimensions:
                raise ProviderUnavailable(
                    "openai",
                    f"{self._model} returned {len(vector)} dimensions, "
                    f"expected {self._dimensions}",
                )
            return vector

        raise ProviderUnavailable(
            "openai", f"failed after {MAX_RETRIES} retries: {last_error}",
        ) from last_error
