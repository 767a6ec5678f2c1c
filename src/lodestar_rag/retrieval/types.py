"""lodestar_rag.retrieval.types

Shared type definitions for the retrieval layer.

This module defines lightweight protocol abstractions used to decouple the
chunking and ranking code from concrete embedding providers, similarity
indexes and fetchers.

Classes
-------
EmbeddingProvider
    Protocol for turning text into vectors.
SimilarityIndex
    Protocol for storing chunk vectors and querying them.
SourceFetcher
    Protocol for acquiring source documents.

Attributes
----------
CandidateSupplier : TypeAlias
    Callable taking ``top_k`` and returning candidates in descending score
    order.
"""

from __future__ import annotations

from typing import Any, Callable, List, Mapping, Optional, Protocol, Sequence

from lodestar_rag.common.schemas import CandidateMatch, Chunk, IndexStats, SourceDocument

CandidateSupplier = Callable[[int], Sequence[CandidateMatch]]


class EmbeddingProvider(Protocol):
    """Protocol for embedding providers.

    Implementations raise subclasses of
    :class:`~lodestar_rag.common.errors.EmbeddingError` on failure.
    ``embed_batch`` returns vectors in input order.
    """

    def embed(self, text: str) -> List[float]:
        ...

    def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        ...

    def embed_query(self, text: str) -> List[float]:
        ...


class SimilarityIndex(Protocol):
    """Protocol for similarity indexes.

    Methods
    -------
    upsert
        Write chunk vectors, replacing entries with the same chunk id.
    query
        Return the ``top_k`` nearest candidates in descending score order.
    delete_by_filter
        Remove every entry matching ``filter``.
    stats
        Report entry count and vector dimension.
    list_sources
        Return the distinct source URLs present in the index.
    """

    def upsert(self, chunks: Sequence[Chunk], vectors: Sequence[Sequence[float]], batch_size: int = 100) -> int:
        ...

    def query(
            self,
            vector: Sequence[float],
            *,
            top_k: int,
            filter: Optional[Mapping[str, Any]] = None,
            include_vectors: bool = False,
        ) -> List[CandidateMatch]:
        ...

    def delete_by_filter(self, filter: Mapping[str, Any]) -> None:
        ...

    def stats(self) -> IndexStats:
        ...

    def list_sources(self) -> List[str]:
        ...


class SourceFetcher(Protocol):
    def fetch(self) -> List[SourceDocument]:
        ...


__all__ = [
    "CandidateSupplier",
    "EmbeddingProvider",
    "SimilarityIndex",
    "SourceFetcher",
]
