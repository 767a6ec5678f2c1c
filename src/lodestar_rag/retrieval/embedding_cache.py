"""lodestar_rag.retrieval.embedding_cache

Bounded cache for query embeddings.

Repeated queries are common in interactive use, and embedding a query is a
remote call. :class:`QueryEmbeddingCache` keeps the most recent query vectors
in insertion order and evicts the oldest entry once ``max_size`` is reached.
The cache is safe to share between threads; the application container holds
one instance per process, but any component can be given its own.
"""

from __future__ import annotations

import threading
from collections import OrderedDict
from typing import List, Optional

DEFAULT_MAX_SIZE = 256


class QueryEmbeddingCache:
    """FIFO cache mapping query text to its embedding.

    Parameters
    ----------
    max_size : int, optional
        Maximum number of entries. Defaults to ``256``. A value of ``0``
        disables caching.
    """

    def __init__(self, max_size: int = DEFAULT_MAX_SIZE):
        if max_size < 0:
            raise ValueError(f"max_size must be non-negative, got {max_size}")
        self.max_size = int(max_size)
        self._entries: "OrderedDict[str, List[float]]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, text: str) -> Optional[List[float]]:
        with self._lock:
            vector = self._entries.get(text)
        return list(vector) if vector is not None else None

    def put(self, text: str, vector: List[float]) -> None:
        if self.max_size == 0:
            return
        with self._lock:
            if text in self._entries:
                self._entries[text] = list(vector)
                return
            while len(self._entries) >= self.max_size:
                self._entries.popitem(last=False)
            self._entries[text] = list(vector)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, text: object) -> bool:
        with self._lock:
            return text in self._entries


__all__ = ["QueryEmbeddingCache", "DEFAULT_MAX_SIZE"]
