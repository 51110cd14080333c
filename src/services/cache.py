"""Thread-safe in-memory LRU cache with a configurable byte-size ceiling.

Used as the read-through cache in front of the session store (see
``src/storage/sessions.py``).  The cache is never the source of truth:
every session write invalidates the affected key, so the next read goes
back to the durable store.

Design decisions
────────────────
• **OrderedDict** for O(1) LRU eviction and promotion.
• **Size tracking** via ``json.dumps`` byte length — the cached values
  are serialised message payloads, which are JSON by construction.
• **threading.Lock** for thread safety (chat turns run on worker threads).
• Purely ephemeral — data is lost on process restart.

>>> cache = LRUCache(max_bytes=5 * 1024 * 1024)
>>> cache.put("session:abc", {"messages": []})
>>> cache.get("session:abc")
{'messages': []}
>>> cache.invalidate("session:abc")
True
"""

from __future__ import annotations

import json
import logging
import threading
from collections import OrderedDict
from typing import Any

logger = logging.getLogger(__name__)

# Default ceiling: 5 MB
DEFAULT_MAX_BYTES = 5 * 1024 * 1024


class LRUCache:
    """Least-Recently-Used cache bounded by total estimated byte size."""

    def __init__(self, max_bytes: int = DEFAULT_MAX_BYTES) -> None:
        self._max_bytes = max_bytes
        self._current_bytes = 0
        # key → (value, estimated_size_bytes)
        self._store: OrderedDict[str, tuple[Any, int]] = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    @staticmethod
    def _estimate_bytes(value: Any) -> int:
        """Return the JSON-encoded size of *value* (``str()`` as fallback)."""
        try:
            return len(json.dumps(value, default=str).encode("utf-8"))
        except (TypeError, ValueError, OverflowError):
            return len(str(value).encode("utf-8"))

    # ── Core operations ──────────────────────────────────────────────

    def get(self, key: str) -> Any | None:
        """Return the cached value (promoting it to MRU) or ``None``."""
        with self._lock:
            if key not in self._store:
                self._misses += 1
                return None
            self._store.move_to_end(key)
            self._hits += 1
            value, _ = self._store[key]
            return value

    def put(self, key: str, value: Any) -> None:
        """Insert or overwrite *key*.  Evicts LRU entries if needed."""
        size = self._estimate_bytes(value)

        with self._lock:
            # An oversized value must not leave a stale copy behind
            if key in self._store:
                _, old_size = self._store.pop(key)
                self._current_bytes -= old_size

            if size > self._max_bytes:
                logger.debug(
                    "Cache: skipping key %s (size %d > max %d)",
                    key, size, self._max_bytes,
                )
                return

            while self._current_bytes + size > self._max_bytes and self._store:
                evicted_key, (_, evicted_size) = self._store.popitem(last=False)
                self._current_bytes -= evicted_size
                logger.debug("Cache: evicted %s (%d bytes)", evicted_key, evicted_size)

            self._store[key] = (value, size)
            self._current_bytes += size

    def invalidate(self, key: str) -> bool:
        """Remove a single key.  Returns ``True`` if the key existed."""
        with self._lock:
            if key in self._store:
                _, size = self._store.pop(key)
                self._current_bytes -= size
                return True
            return False

    def clear(self) -> None:
        """Drop all entries."""
        with self._lock:
            self._store.clear()
            self._current_bytes = 0

    # ── Introspection ────────────────────────────────────────────────

    @property
    def current_bytes(self) -> int:
        return self._current_bytes

    @property
    def entry_count(self) -> int:
        return len(self._store)

    @property
    def stats(self) -> dict[str, int]:
        """Hit / miss counters since creation."""
        return {"hits": self._hits, "misses": self._misses}

    def has(self, key: str) -> bool:
        """Check if a key is present *without* promoting it."""
        return key in self._store
