"""
Common building blocks shared across the RAG stack.

This package provides small, widely-used primitives (schemas, errors, the
retry combinator and token counting) imported by every other layer.

Attributes
----------
ChunkId : TypeAlias
    Type alias for chunk identifiers.
SourceId : TypeAlias
    Type alias for source registry identifiers.

See Also
--------
lodestar_rag.common.schemas
    Defines :class:`~lodestar_rag.common.schemas.Chunk` and the retrieval
    request/response records.
lodestar_rag.common.errors
    Defines the :class:`~lodestar_rag.common.errors.LodestarError` hierarchy.
"""
from __future__ import annotations
from typing import TypeAlias

from .errors import (
    LodestarError,
    ConfigurationError,
    EmbeddingError,
    RateLimitError,
    MalformedInputError,
    TransportError,
    VectorStoreError,
    FetchError,
)
from .schemas import (
    CodeFile,
    DocPage,
    SourceDocument,
    ChunkKind,
    SourceReference,
    ChunkMetadata,
    Chunk,
    ChunkLimits,
    ChunkBatch,
    CandidateMatch,
    RankedResult,
    RetrievalStrategy,
    RetrievalQuery,
    SearchOutcome,
    IndexStats,
    SourceInfo,
    IngestionReport,
)

ChunkId: TypeAlias = str
SourceId: TypeAlias = str

__all__ = [
    "LodestarError",
    "ConfigurationError",
    "EmbeddingError",
    "RateLimitError",
    "MalformedInputError",
    "TransportError",
    "VectorStoreError",
    "FetchError",
    "CodeFile",
    "DocPage",
    "SourceDocument",
    "ChunkKind",
    "SourceReference",
    "ChunkMetadata",
    "Chunk",
    "ChunkLimits",
    "ChunkBatch",
    "CandidateMatch",
    "RankedResult",
    "RetrievalStrategy",
    "RetrievalQuery",
    "SearchOutcome",
    "IndexStats",
    "SourceInfo",
    "IngestionReport",
    "ChunkId",
    "SourceId",
]
