"""lodestar_rag.common.schemas

Core data schemas shared across the RAG pipeline.

These lightweight dataclasses describe the canonical shapes for raw source
documents, the chunks derived from them, the candidates returned by the
similarity index and the ranked results handed back to callers. They are
passed between ingestion, chunking, embedding and retrieval components.

Classes
-------
CodeFile
    A source file from a code repository or local directory.
DocPage
    A page of fetched documentation.
ChunkKind
    Coarse chunk category (``code``, ``readme``, ``documentation``).
SourceReference
    Where a chunk came from.
ChunkMetadata
    Size, hash and structural labels attached to a chunk.
Chunk
    A contiguous retrievable unit produced from a source document.
ChunkLimits
    Window size and overlap used by the chunking engine.
ChunkBatch
    Chunks and warnings produced from a batch of documents.
CandidateMatch
    A raw hit returned by the similarity index.
RankedResult
    A result after re-ranking, as returned to callers.
RetrievalStrategy
    Named presets for threshold, oversampling and diversity.
RetrievalQuery
    An immutable retrieval request.
SearchOutcome
    The result of a retrieval request.
IndexStats
    Count and dimension of the similarity index.
SourceInfo
    A registry entry describing an indexed source.
IngestionReport
    Summary of one ingestion run.

Notes
-----
``CandidateMatch.metadata`` mirrors the payload written to the similarity
index and is deliberately a plain mapping; downstream code should treat
missing keys as absent values.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from lodestar_rag.common.errors import ConfigurationError

MIN_TOKEN_CHUNK_CHARS = 128
DEFAULT_OVERLAP_RATIO = 0.1


@dataclass(frozen=True)
class CodeFile:
    """A source file.

    Attributes
    ----------
    path : str
        Path of the file relative to the repository or directory root.
    content : str
        Full text of the file.
    language : str or None
        Programming language. When ``None`` it is detected from the path
        extension.
    size : int or None
        Size in characters. Defaults to ``len(content)``.
    source_url : str
        Identity of the source the file belongs to (repository URL or local
        directory).
    title : str or None
        Optional display title.
    """
    path: str
    content: str
    language: Optional[str] = None
    size: Optional[int] = None
    source_url: str = ""
    title: Optional[str] = None

    def __post_init__(self):
        if self.language is None:
            from lodestar_rag.retrieval.languages import detect_language

            object.__setattr__(self, "language", detect_language(self.path))
        if self.size is None and isinstance(self.content, str):
            object.__setattr__(self, "size", len(self.content))

    @property
    def identity(self) -> str:
        return self.source_url

    @property
    def path_or_url(self) -> str:
        return self.path


@dataclass(frozen=True)
class DocPage:
    """A fetched documentation page.

    Attributes
    ----------
    url : str
        Page URL.
    title : str
        Page title.
    content : str
        Page text, ideally markdown-like with ``#`` headings.
    headings : Sequence[str]
        Heading texts discovered by the fetcher, used as section boundaries
        when ``content`` carries no markdown headings.
    source_url : str or None
        Identity of the documentation site. Defaults to ``url``.
    """
    url: str
    title: str
    content: str
    headings: Tuple[str, ...] = ()
    source_url: Optional[str] = None

    def __post_init__(self):
        if self.source_url is None:
            object.__setattr__(self, "source_url", self.url)
        object.__setattr__(self, "headings", tuple(self.headings or ()))

    @property
    def identity(self) -> str:
        return self.source_url

    @property
    def path_or_url(self) -> str:
        return self.url


SourceDocument = Union[CodeFile, DocPage]


class ChunkKind(str, Enum):
    CODE = "code"
    README = "readme"
    DOCUMENTATION = "documentation"


@dataclass(frozen=True)
class SourceReference:
    url: str
    path: Optional[str] = None
    title: Optional[str] = None


@dataclass(frozen=True)
class ChunkMetadata:
    """Metadata attached to a :class:`Chunk`.

    Attributes
    ----------
    size : int
        Length of the chunk content in characters.
    content_hash : str
        Full SHA-256 hex digest of the chunk content.
    language : str or None
        Programming language for code chunks.
    heading_level : int or None
        Markdown heading level of the section the chunk belongs to.
    section : str or None
        Heading text of the section the chunk belongs to.
    dependencies : Tuple[str, ...] or None
        Modules imported or required by a code chunk.
    """
    size: int
    content_hash: str
    language: Optional[str] = None
    heading_level: Optional[int] = None
    section: Optional[str] = None
    dependencies: Optional[Tuple[str, ...]] = None


@dataclass(frozen=True)
class Chunk:
    """A contiguous, retrievable unit of a source document.

    Attributes
    ----------
    id : str
        Deterministic identifier derived from the document identity, its
        path or URL and the chunk's position.
    content : str
        Chunk text.
    kind : ChunkKind
        Coarse category of the chunk.
    source : SourceReference
        Where the chunk came from.
    metadata : ChunkMetadata
        Size, hash and structural labels.
    index : int
        Position of the chunk within its document.
    """
    id: str
    content: str
    kind: ChunkKind
    source: SourceReference
    metadata: ChunkMetadata
    index: int = 0

    def to_payload(self) -> Dict[str, Any]:
        """Flatten the chunk into a similarity-index payload mapping."""
        return {
            "chunk_id": self.id,
            "content": self.content,
            "kind": self.kind.value,
            "source_url": self.source.url,
            "source_path": self.source.path,
            "source_title": self.source.title,
            "language": self.metadata.language,
            "size": self.metadata.size,
            "hash": self.metadata.content_hash,
            "heading_level": self.metadata.heading_level,
            "section": self.metadata.section,
            "dependencies": list(self.metadata.dependencies or ()),
            "index": self.index,
        }


@dataclass(frozen=True)
class ChunkLimits:
    """Window size and overlap, in characters.

    Parameters
    ----------
    max_chunk_size : int
        Maximum number of characters per chunk. Must be positive.
    overlap_size : int or None, optional
        Characters shared between consecutive windows. Defaults to 10% of
        ``max_chunk_size``. Must be non-negative and smaller than
        ``max_chunk_size``.

    Raises
    ------
    ConfigurationError
        If the limits are inconsistent.
    """
    max_chunk_size: int
    overlap_size: Optional[int] = None

    def __post_init__(self):
        if not isinstance(self.max_chunk_size, int) or self.max_chunk_size <= 0:
            raise ConfigurationError(
                f"max_chunk_size must be a positive integer, got {self.max_chunk_size!r}",
                details={"max_chunk_size": self.max_chunk_size},
            )
        if self.overlap_size is None:
            object.__setattr__(
                self, "overlap_size", int(self.max_chunk_size * DEFAULT_OVERLAP_RATIO)
            )
        if self.overlap_size < 0:
            raise ConfigurationError(
                f"overlap_size must be non-negative, got {self.overlap_size}",
                details={"overlap_size": self.overlap_size},
            )
        if self.overlap_size >= self.max_chunk_size:
            raise ConfigurationError(
                "overlap_size must be smaller than max_chunk_size "
                f"({self.overlap_size} >= {self.max_chunk_size})",
                details={
                    "max_chunk_size": self.max_chunk_size,
                    "overlap_size": self.overlap_size,
                },
            )

    @classmethod
    def from_token_budget(cls, tokens: int, chars_per_token: int = 4) -> "ChunkLimits":
        """Build limits from a token budget, assuming ``chars_per_token`` characters per token."""
        if tokens <= 0:
            raise ConfigurationError(f"tokens must be positive, got {tokens}")
        return cls(max_chunk_size=max(MIN_TOKEN_CHUNK_CHARS, int(tokens) * chars_per_token))


@dataclass
class ChunkBatch:
    chunks: List[Chunk] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class CandidateMatch:
    """A raw hit from the similarity index.

    Attributes
    ----------
    id : str
        Identifier of the indexed chunk.
    score : float
        Similarity score in ``[0, 1]``, higher is better.
    metadata : Mapping[str, Any]
        Index payload, as produced by :meth:`Chunk.to_payload`.
    vector : Sequence[float] or None
        The stored embedding, when the index was asked to return it.
    """
    id: str
    score: float
    metadata: Mapping[str, Any] = field(default_factory=dict)
    vector: Optional[Sequence[float]] = None

    @property
    def content(self) -> str:
        return self.metadata.get("content") or ""

    @property
    def kind(self) -> Optional[str]:
        return self.metadata.get("kind")

    @property
    def source_url(self) -> str:
        return self.metadata.get("source_url") or ""

    @property
    def source_path(self) -> Optional[str]:
        return self.metadata.get("source_path")

    @property
    def content_hash(self) -> Optional[str]:
        return self.metadata.get("hash")

    @property
    def section(self) -> Optional[str]:
        return self.metadata.get("section")

    def to_ranked_result(self) -> "RankedResult":
        return RankedResult(
            content=self.content,
            source=SourceReference(
                url=self.source_url,
                path=self.source_path,
                title=self.metadata.get("source_title"),
            ),
            metadata={
                "language": self.metadata.get("language"),
                "section": self.section,
                "heading_level": self.metadata.get("heading_level"),
            },
            score=float(self.score),
        )


@dataclass(frozen=True)
class RankedResult:
    content: str
    source: SourceReference
    metadata: Mapping[str, Any]
    score: float


class RetrievalStrategy(str, Enum):
    """Retrieval presets.

    Each strategy maps to a default similarity threshold, an oversampling
    factor for the index query and an MMR diversity coefficient ``lambda``
    (1.0 is pure relevance).
    """
    PRECISION = "precision"
    BALANCED = "balanced"
    RECALL = "recall"

    @property
    def default_threshold(self) -> float:
        return _STRATEGY_PRESETS[self][0]

    @property
    def oversample_factor(self) -> int:
        return _STRATEGY_PRESETS[self][1]

    @property
    def diversity(self) -> float:
        return _STRATEGY_PRESETS[self][2]


_STRATEGY_PRESETS = {
    RetrievalStrategy.PRECISION: (0.8, 2, 0.9),
    RetrievalStrategy.BALANCED: (0.7, 3, 0.7),
    RetrievalStrategy.RECALL: (0.5, 5, 0.5),
}


@dataclass(frozen=True)
class RetrievalQuery:
    """An immutable retrieval request.

    Attributes
    ----------
    text : str
        Natural-language query.
    max_results : int
        Upper bound on the number of results.
    sources : Sequence[str] or None
        Allow-list of source URLs. ``None`` searches everything.
    threshold : float or None
        Requested minimum similarity. ``None`` uses the strategy default.
    strategy : RetrievalStrategy
        Named preset for defaults.
    diversity : float or None
        MMR ``lambda`` in ``[0, 1]``. ``None`` uses the strategy default.
    max_per_source : int
        Cap on results sharing one source URL, before backfill.
    deduplicate : bool
        Collapse candidates with identical content hash and path.
    adaptive_threshold : bool
        Relax the threshold when too few candidates pass it.
    min_results : int
        Number of results the adaptive ladder aims for.
    include_code : bool
        Search code and readme chunks.
    include_docs : bool
        Search documentation chunks.
    """
    text: str
    max_results: int = 10
    sources: Optional[Tuple[str, ...]] = None
    threshold: Optional[float] = None
    strategy: RetrievalStrategy = RetrievalStrategy.BALANCED
    diversity: Optional[float] = None
    max_per_source: int = 3
    deduplicate: bool = True
    adaptive_threshold: bool = True
    min_results: int = 3
    include_code: bool = True
    include_docs: bool = True

    def __post_init__(self):
        if self.sources is not None:
            object.__setattr__(self, "sources", tuple(self.sources))
        object.__setattr__(self, "strategy", RetrievalStrategy(self.strategy))

    @property
    def effective_threshold(self) -> float:
        if self.threshold is None:
            return self.strategy.default_threshold
        return float(self.threshold)

    @property
    def effective_diversity(self) -> float:
        if self.diversity is None:
            return self.strategy.diversity
        return float(self.diversity)

    @property
    def kinds(self) -> List[str]:
        """Chunk kinds selected by the include flags."""
        kinds: List[str] = []
        if self.include_code:
            kinds.extend([ChunkKind.CODE.value, ChunkKind.README.value])
        if self.include_docs:
            kinds.append(ChunkKind.DOCUMENTATION.value)
        return kinds


@dataclass
class SearchOutcome:
    success: bool
    message: str
    results: List[RankedResult] = field(default_factory=list)
    threshold_used: Optional[float] = None
    search_time: float = 0.0


@dataclass(frozen=True)
class IndexStats:
    count: int
    dimension: Optional[int] = None


@dataclass
class SourceInfo:
    """A registry entry for an indexed source.

    Attributes
    ----------
    id : str
        Short stable identifier derived from ``url``.
    url : str
        Source identity (repository URL, documentation site or local path).
    kind : str
        ``"github"``, ``"documentation"`` or ``"local"``.
    title : str or None
        Display title.
    indexed_at : str or None
        ISO-8601 timestamp of the last ingestion.
    chunk_count : int
        Number of chunks written by the last ingestion.
    status : str
        ``"indexed"`` or ``"failed"``.
    error : str or None
        Failure description when ``status == "failed"``.
    """
    id: str
    url: str
    kind: str
    title: Optional[str] = None
    indexed_at: Optional[str] = None
    chunk_count: int = 0
    status: str = "indexed"
    error: Optional[str] = None


@dataclass
class IngestionReport:
    source: SourceInfo
    documents: int = 0
    chunks: int = 0
    estimated_tokens: int = 0
    warnings: List[str] = field(default_factory=list)
    success: bool = True
    message: str = ""


__all__ = [
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
]
