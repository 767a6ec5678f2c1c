"""lodestar_rag.app.container

Composition root for the Lodestar RAG system.

This module is the single place where concrete implementations are wired
together from configuration (embedder, vector store, reranker, query cache,
retry policy, source registry, retriever and ingestion pipeline). Components
are constructed lazily and cached on first access to avoid repeated
expensive initialisation.

Notes
-----
- Keep this module importable with minimal side effects:
  - do not perform network calls at import time
  - do not read files at import time
  - construct expensive objects lazily (cached on first access)

- The query-embedding cache lives on the container, so every retriever
  served by one container shares it.

Examples
--------
>>> from lodestar_rag.config import GlobalConfig
>>> from lodestar_rag.app.container import build_container
>>> cfg = GlobalConfig.load("config.yaml")
>>> c = build_container(cfg)
>>> outcome = c.retriever.retrieve(c.build_query("how do I configure retries?"))
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import cached_property
from pathlib import Path
from typing import Any, Mapping

from lodestar_rag.common.schemas import RetrievalQuery

QUERY_DEFAULT_KEYS = (
    "max_results",
    "threshold",
    "strategy",
    "diversity",
    "max_per_source",
    "deduplicate",
    "adaptive_threshold",
    "min_results",
)


@dataclass(frozen=True)
class LodestarContainer:
    """Holds the configured, cached runtime components for the application.

    Parameters
    ----------
    config : Any
        Loaded global configuration object (typically :class:`lodestar_rag.config.GlobalConfig`).
    """

    config: Any

    @cached_property
    def embedder(self) -> Any:
        """Return the embedding provider.

        Returns
        -------
        Any
            Configured :class:`~lodestar_rag.retrieval.embedder.BaseEmbedder`.
        """
        from lodestar_rag.retrieval.embedder import create_embedder

        return create_embedder(_as_mapping(self.config.embedder))

    @cached_property
    def vector_store(self) -> Any:
        """Return the similarity index.

        When the vector store section does not pin a dimension, the
        embedder's dimension is used so the collection can be created before
        the first write.
        """
        from lodestar_rag.retrieval.vector_store import create_vector_store

        section = dict(_as_mapping(self.config.vector_store))
        if section.get("dimension") is None and self.embedder.dimension is not None:
            section["dimension"] = self.embedder.dimension
        return create_vector_store(section)

    @cached_property
    def reranker(self) -> Any:
        from lodestar_rag.retrieval.reranker import create_reranker

        return create_reranker(config=_as_mapping(self.config.reranker))

    @cached_property
    def embedding_cache(self) -> Any:
        """Return the process-wide query-embedding cache."""
        from lodestar_rag.retrieval.embedding_cache import DEFAULT_MAX_SIZE, QueryEmbeddingCache

        section = _as_mapping(self.config.embedding_cache)
        return QueryEmbeddingCache(max_size=int(section.get("max_size", DEFAULT_MAX_SIZE)))

    @cached_property
    def retry_policy(self) -> Any:
        from lodestar_rag.common.retry import RetryPolicy

        return RetryPolicy.from_config(_as_mapping(self.config.retry))

    @cached_property
    def token_counter(self) -> Any:
        """Return the token counter used for ingestion estimates.

        Configuration is read from ``processing.token_counter``; the
        four-characters-per-token heuristic is used when it is absent.
        """
        from lodestar_rag.common.tokenisation import create_token_counter

        processing = _as_mapping(self.config.processing)
        return create_token_counter(processing.get("token_counter"))

    @cached_property
    def registry(self) -> Any:
        from lodestar_rag.retrieval.source_registry import SourceRegistry

        return SourceRegistry(Path(self.config.registry_path))

    @cached_property
    def retriever(self) -> Any:
        """Return the configured retriever.

        Returns
        -------
        Any
            A :class:`lodestar_rag.retrieval.retriever.ContextRetriever`.
        """
        from lodestar_rag.retrieval.retriever import ContextRetriever

        return ContextRetriever(
            embedder=self.embedder,
            vector_store=self.vector_store,
            reranker=self.reranker,
            cache=self.embedding_cache,
            retry_policy=self.retry_policy,
        )

    @cached_property
    def pipeline(self) -> Any:
        """Return the fully wired ingestion pipeline.

        Returns
        -------
        Any
            A :class:`lodestar_rag.pipelines.ingestion_pipeline.IngestionPipeline`.
        """
        from lodestar_rag.pipelines.ingestion_pipeline import DEFAULT_EMBED_BATCH_SIZE, IngestionPipeline

        processing = _as_mapping(self.config.processing)
        return IngestionPipeline(
            embedder=self.embedder,
            vector_store=self.vector_store,
            registry=self.registry,
            limits=self.config.chunk_limits,
            retry_policy=self.retry_policy,
            token_counter=self.token_counter,
            batch_size=int(processing.get("embed_batch_size", DEFAULT_EMBED_BATCH_SIZE)),
        )

    def build_query(self, text: str, **overrides: Any) -> RetrievalQuery:
        """Create a :class:`RetrievalQuery` with defaults from ``config.retrieval``.

        Keyword arguments whose value is ``None`` do not override the
        configured default.
        """
        section = _as_mapping(self.config.retrieval)
        params = {k: section[k] for k in QUERY_DEFAULT_KEYS if section.get(k) is not None}
        params.update({k: v for k, v in overrides.items() if v is not None})
        return RetrievalQuery(text=text, **params)


def build_container(config: Any) -> LodestarContainer:
    """Create a :class:`~lodestar_rag.app.container.LodestarContainer`.

    This function is intentionally small so it can serve as a single entry point
    for FastAPI lifespan hooks, CLI scripts, and tests.

    Parameters
    ----------
    config : Any
        Loaded global configuration object (typically :class:`lodestar_rag.config.GlobalConfig`).

    Returns
    -------
    LodestarContainer
        Container instance with cached component accessors.
    """

    return LodestarContainer(config=config)


def _as_mapping(obj: Any) -> Mapping[str, Any]:
    """Coerce an object into a mapping.

    Parameters
    ----------
    obj : Any
        Object to interpret as a mapping. ``None`` becomes an empty mapping;
        a mapping is returned as-is; an object with a ``__dict__`` is
        converted via ``vars``.

    Raises
    ------
    TypeError
        If ``obj`` cannot be interpreted as a mapping.
    """
    if obj is None:
        return {}

    if isinstance(obj, Mapping):
        return obj

    if hasattr(obj, "__dict__"):
        return dict(vars(obj))

    raise TypeError(f"Expected mapping type but got {type(obj)}")


__all__ = ["LodestarContainer", "build_container"]
