"""lodestar_rag.retrieval.vector_store

Vector store interfaces and factories for the retrieval layer.

This module defines a small wrapper interface around similarity-index
backends and provides two implementations. The main responsibilities are:
- writing :class:`~lodestar_rag.common.schemas.Chunk` vectors and payloads
- nearest-neighbour queries that can return the stored vectors, which the
  reranker needs for diversity selection
- deleting a source's chunks, listing sources and reporting statistics

Filters are plain mappings from payload key to an allowed value or a list of
allowed values, e.g. ``{"source_url": ["https://github.com/a/b"], "kind":
["code", "readme"]}``.

Classes
-------
BaseVectorStore
    Abstract interface for vector store wrappers.
QdrantVectorStore
    Qdrant-backed store using ``qdrant-client`` directly.
InMemoryVectorStore
    Process-local numpy store for tests and small corpora.

Functions
---------
create_vector_store
    Create a vector store implementation from a configuration mapping.
"""

from __future__ import annotations

import logging
import threading
import uuid
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, TypeVar

import numpy as np
import yaml
from qdrant_client import QdrantClient, models

from lodestar_rag.common.errors import VectorStoreError
from lodestar_rag.common.schemas import CandidateMatch, Chunk, IndexStats

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_PAYLOAD_CONTENT_CHARS = 40000
DEFAULT_BATCH_SIZE = 100
POINT_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "lodestar-rag/chunks")


def point_id(chunk_id: str) -> str:
    """Map a chunk id onto a stable UUID accepted by the backend."""
    return str(uuid.uuid5(POINT_NAMESPACE, chunk_id))


def chunk_payload(chunk: Chunk) -> Dict[str, Any]:
    payload = chunk.to_payload()
    content = payload.get("content") or ""
    if len(content) > MAX_PAYLOAD_CONTENT_CHARS:
        payload["content"] = content[:MAX_PAYLOAD_CONTENT_CHARS]
    return payload


def _check_lengths(chunks: Sequence[Chunk], vectors: Sequence[Sequence[float]]) -> None:
    if len(chunks) != len(vectors):
        raise ValueError(f"Got {len(vectors)} vectors for {len(chunks)} chunks")


class BaseVectorStore(ABC):
    """Abstract interface for vector store wrappers."""

    @classmethod
    @abstractmethod
    def from_config_dict(cls, config: Mapping[str, Any]) -> "BaseVectorStore":
        """Create a vector store instance from a configuration mapping."""

    @classmethod
    def from_config(cls, config_path: str) -> "BaseVectorStore":
        """Load YAML configuration and create a vector store."""
        with open(config_path, "r") as f:
            cfg = yaml.safe_load(f) or {}
        return cls.from_config_dict(cfg)

    @abstractmethod
    def upsert(
            self,
            chunks: Sequence[Chunk],
            vectors: Sequence[Sequence[float]],
            batch_size: int = DEFAULT_BATCH_SIZE,
        ) -> int:
        """Write chunks with their vectors, replacing any with the same id.

        Returns
        -------
        int
            Number of chunks written.
        """

    @abstractmethod
    def query(
            self,
            vector: Sequence[float],
            *,
            top_k: int,
            filter: Optional[Mapping[str, Any]] = None,
            include_vectors: bool = False,
        ) -> List[CandidateMatch]:
        """Return up to ``top_k`` candidates in descending score order."""

    @abstractmethod
    def delete_by_filter(self, filter: Mapping[str, Any]) -> None:
        """Delete every entry whose payload matches ``filter``."""

    @abstractmethod
    def stats(self) -> IndexStats:
        """Return the entry count and vector dimension."""

    @abstractmethod
    def list_sources(self) -> List[str]:
        """Return the distinct ``source_url`` values in the store."""

    def health_check(self) -> bool:
        try:
            self.stats()
        except VectorStoreError as exc:
            logger.warning("Vector store health check failed: %s", exc)
            return False
        return True


def _qdrant_filter(filter: Optional[Mapping[str, Any]]) -> Optional[models.Filter]:
    if not filter:
        return None
    must: List[models.FieldCondition] = []
    for key, allowed in filter.items():
        if allowed is None:
            continue
        if isinstance(allowed, (list, tuple, set, frozenset)):
            match = models.MatchAny(any=list(allowed))
        else:
            match = models.MatchValue(value=allowed)
        must.append(models.FieldCondition(key=key, match=match))
    return models.Filter(must=must) if must else None


class QdrantVectorStore(BaseVectorStore):
    """Qdrant-backed similarity index.

    The collection is created on first use with cosine distance. Point ids
    are UUIDv5 values derived from chunk ids, so re-upserting a chunk
    overwrites it. Backend failures are raised as
    :class:`~lodestar_rag.common.errors.VectorStoreError`.

    Parameters
    ----------
    collection_name : str, optional
        Name of the Qdrant collection. Defaults to ``"lodestar_chunks"``.
    url : str or None, optional
        Full server URL. Takes precedence over ``host``/``port``.
    host : str, optional
        Qdrant host address. Defaults to ``"localhost"``.
    port : int, optional
        Qdrant port number. Defaults to ``6333``.
    api_key : str or None, optional
        API key for Qdrant Cloud.
    location : str or None, optional
        ``":memory:"`` for a local in-process instance.
    path : str or None, optional
        Directory for a local on-disk instance.
    dimension : int or None, optional
        Vector size. When omitted it is taken from the first upsert.
    client : QdrantClient or None, optional
        Pre-built client, mainly for tests.
    """

    def __init__(
            self,
            *,
            collection_name: str = "lodestar_chunks",
            url: Optional[str] = None,
            host: str = "localhost",
            port: int = 6333,
            api_key: Optional[str] = None,
            location: Optional[str] = None,
            path: Optional[str] = None,
            dimension: Optional[int] = None,
            timeout: Optional[float] = None,
            client: Optional[QdrantClient] = None,
        ):
        self.collection_name = collection_name
        self.dimension = dimension
        if client is not None:
            self.client = client
        elif location is not None:
            self.client = QdrantClient(location=location)
        elif path is not None:
            self.client = QdrantClient(path=path)
        elif url is not None:
            self.client = QdrantClient(url=url, api_key=api_key, timeout=timeout)
        else:
            self.client = QdrantClient(host=host, port=port, api_key=api_key, timeout=timeout)
        self._collection_ready = False

    @classmethod
    def from_config_dict(cls, config: Mapping[str, Any]) -> "QdrantVectorStore":
        """Create a QdrantVectorStore from a configuration mapping.

        Parameters
        ----------
        config : Mapping[str, Any]
            Expected keys (all optional): ``collection_name``, ``url``,
            ``host``, ``port``, ``api_key``, ``location``, ``path``,
            ``dimension``, ``timeout``.
        """
        return cls(
            collection_name=config.get("collection_name", "lodestar_chunks"),
            url=config.get("url"),
            host=config.get("host", "localhost"),
            port=int(config.get("port", 6333)),
            api_key=config.get("api_key"),
            location=config.get("location"),
            path=config.get("path"),
            dimension=config.get("dimension"),
            timeout=config.get("timeout"),
        )

    def _guard(self, operation: str, fn: Callable[[], T]) -> T:
        try:
            return fn()
        except VectorStoreError:
            raise
        except Exception as exc:
            raise VectorStoreError(
                f"Qdrant {operation} failed: {exc}",
                details={"collection": self.collection_name, "operation": operation},
            ) from exc

    def _exists(self) -> bool:
        if self._collection_ready:
            return True
        exists = self._guard(
            "collection_exists",
            lambda: self.client.collection_exists(self.collection_name),
        )
        self._collection_ready = bool(exists)
        return self._collection_ready

    def _ensure_collection(self, dimension: int) -> None:
        if self._exists():
            return
        logger.info(
            "Creating Qdrant collection %r (dimension=%d, distance=cosine)",
            self.collection_name, dimension,
        )
        self._guard(
            "create_collection",
            lambda: self.client.create_collection(
                collection_name=self.collection_name,
                vectors_config=models.VectorParams(size=dimension, distance=models.Distance.COSINE),
            ),
        )
        self.dimension = dimension
        self._collection_ready = True

    def upsert(
            self,
            chunks: Sequence[Chunk],
            vectors: Sequence[Sequence[float]],
            batch_size: int = DEFAULT_BATCH_SIZE,
        ) -> int:
        _check_lengths(chunks, vectors)
        if not chunks:
            return 0
        self._ensure_collection(self.dimension or len(vectors[0]))

        step = batch_size if batch_size and batch_size > 0 else len(chunks)
        written = 0
        for start in range(0, len(chunks), step):
            points = [
                models.PointStruct(
                    id=point_id(chunk.id),
                    vector=[float(x) for x in vector],
                    payload=chunk_payload(chunk),
                )
                for chunk, vector in zip(chunks[start:start + step], vectors[start:start + step])
            ]
            self._guard(
                "upsert",
                lambda: self.client.upsert(
                    collection_name=self.collection_name, points=points, wait=True
                ),
            )
            written += len(points)
            logger.debug("Upserted %d/%d points into %r", written, len(chunks), self.collection_name)
        return written

    def query(
            self,
            vector: Sequence[float],
            *,
            top_k: int,
            filter: Optional[Mapping[str, Any]] = None,
            include_vectors: bool = False,
        ) -> List[CandidateMatch]:
        if top_k <= 0 or not self._exists():
            return []
        response = self._guard(
            "query_points",
            lambda: self.client.query_points(
                collection_name=self.collection_name,
                query=[float(x) for x in vector],
                query_filter=_qdrant_filter(filter),
                limit=top_k,
                with_payload=True,
                with_vectors=include_vectors,
            ),
        )
        matches: List[CandidateMatch] = []
        for point in response.points:
            payload = dict(point.payload or {})
            stored = point.vector if include_vectors else None
            if isinstance(stored, dict):
                stored = next(iter(stored.values()), None)
            matches.append(
                CandidateMatch(
                    id=str(payload.get("chunk_id") or point.id),
                    score=float(point.score),
                    metadata=payload,
                    vector=list(stored) if stored is not None else None,
                )
            )
        return matches

    def delete_by_filter(self, filter: Mapping[str, Any]) -> None:
        qfilter = _qdrant_filter(filter)
        if qfilter is None:
            raise ValueError("delete_by_filter requires a non-empty filter")
        if not self._exists():
            return
        self._guard(
            "delete",
            lambda: self.client.delete(
                collection_name=self.collection_name,
                points_selector=models.FilterSelector(filter=qfilter),
                wait=True,
            ),
        )

    def stats(self) -> IndexStats:
        if not self._exists():
            return IndexStats(count=0, dimension=self.dimension)
        count = self._guard(
            "count",
            lambda: self.client.count(collection_name=self.collection_name, exact=True),
        )
        info = self._guard(
            "get_collection",
            lambda: self.client.get_collection(collection_name=self.collection_name),
        )
        params = info.config.params.vectors
        dimension = getattr(params, "size", None) or self.dimension
        return IndexStats(count=int(count.count), dimension=dimension)

    def list_sources(self) -> List[str]:
        if not self._exists():
            return []
        sources: Dict[str, None] = {}
        offset = None
        while True:
            points, offset = self._guard(
                "scroll",
                lambda: self.client.scroll(
                    collection_name=self.collection_name,
                    limit=256,
                    offset=offset,
                    with_payload=["source_url"],
                    with_vectors=False,
                ),
            )
            for point in points:
                url = (point.payload or {}).get("source_url")
                if url:
                    sources.setdefault(url, None)
            if offset is None:
                break
        return list(sources)


def _payload_matches(payload: Mapping[str, Any], filter: Optional[Mapping[str, Any]]) -> bool:
    for key, allowed in (filter or {}).items():
        if allowed is None:
            continue
        value = payload.get(key)
        if isinstance(allowed, (list, tuple, set, frozenset)):
            if value not in allowed:
                return False
        elif value != allowed:
            return False
    return True


class InMemoryVectorStore(BaseVectorStore):
    """Numpy-backed similarity index held in process memory.

    Scores are cosine similarities. Thread-safe for concurrent readers and
    writers.
    """

    def __init__(self, dimension: Optional[int] = None):
        self.dimension = dimension
        self._points: Dict[str, Tuple[np.ndarray, Dict[str, Any]]] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config_dict(cls, config: Mapping[str, Any]) -> "InMemoryVectorStore":
        return cls(dimension=config.get("dimension"))

    def upsert(
            self,
            chunks: Sequence[Chunk],
            vectors: Sequence[Sequence[float]],
            batch_size: int = DEFAULT_BATCH_SIZE,
        ) -> int:
        _check_lengths(chunks, vectors)
        with self._lock:
            for chunk, vector in zip(chunks, vectors):
                arr = np.asarray(vector, dtype=np.float64).ravel()
                if self.dimension is None:
                    self.dimension = int(arr.size)
                elif arr.size != self.dimension:
                    raise VectorStoreError(
                        f"Vector dimension {arr.size} does not match index dimension {self.dimension}"
                    )
                self._points[point_id(chunk.id)] = (arr, chunk_payload(chunk))
        return len(chunks)

    def query(
            self,
            vector: Sequence[float],
            *,
            top_k: int,
            filter: Optional[Mapping[str, Any]] = None,
            include_vectors: bool = False,
        ) -> List[CandidateMatch]:
        with self._lock:
            entries = [
                (arr, payload)
                for arr, payload in self._points.values()
                if _payload_matches(payload, filter)
            ]
        if not entries or top_k <= 0:
            return []

        query = np.asarray(vector, dtype=np.float64).ravel()
        matrix = np.vstack([arr for arr, _ in entries])
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        dots = matrix @ query
        scores = np.divide(dots, norms, out=np.zeros_like(dots), where=norms > 0)

        order = np.argsort(-scores, kind="stable")[:top_k]
        return [
            CandidateMatch(
                id=str(entries[i][1].get("chunk_id")),
                score=float(scores[i]),
                metadata=dict(entries[i][1]),
                vector=entries[i][0].tolist() if include_vectors else None,
            )
            for i in order
        ]

    def delete_by_filter(self, filter: Mapping[str, Any]) -> None:
        if not filter:
            raise ValueError("delete_by_filter requires a non-empty filter")
        with self._lock:
            doomed = [pid for pid, (_, payload) in self._points.items() if _payload_matches(payload, filter)]
            for pid in doomed:
                del self._points[pid]

    def stats(self) -> IndexStats:
        with self._lock:
            return IndexStats(count=len(self._points), dimension=self.dimension)

    def list_sources(self) -> List[str]:
        with self._lock:
            sources = {payload.get("source_url"): None for _, payload in self._points.values()}
        return [s for s in sources if s]


def _get_vector_store_kind(cfg: Mapping[str, Any]) -> Optional[str]:
    for key in ("kind", "type", "provider", "backend", "impl"):
        val = cfg.get(key)
        if val is not None:
            return val
    return None


def _normalize_vector_store_kind(kind: Any) -> str:
    """Normalise a vector store kind to ``"qdrant"`` or ``"memory"`` where recognised."""
    if not kind:
        return "qdrant"
    k = str(kind).lower().replace("-", "_")
    if k in {"qdrant", "qdrantvectorstore", "qdrant_vector_store"}:
        return "qdrant"
    if k in {"memory", "in_memory", "inmemory", "inmemoryvectorstore", "numpy"}:
        return "memory"
    return k


def create_vector_store(config: Mapping[str, Any]) -> BaseVectorStore:
    """Create a vector store implementation from a configuration mapping.

    The backend is selected by one of the discriminator keys ``kind``,
    ``type``, ``provider``, ``backend`` or ``impl``; the default is Qdrant.

    Raises
    ------
    ValueError
        If the requested backend kind is not supported.
    """
    kind = _normalize_vector_store_kind(_get_vector_store_kind(config))
    if kind == "qdrant":
        return QdrantVectorStore.from_config_dict(config)
    if kind == "memory":
        return InMemoryVectorStore.from_config_dict(config)
    raise ValueError(f"Unknown vector store kind: {kind!r}")


__all__ = [
    "BaseVectorStore",
    "QdrantVectorStore",
    "InMemoryVectorStore",
    "create_vector_store",
    "point_id",
    "chunk_payload",
    "MAX_PAYLOAD_CONTENT_CHARS",
]
