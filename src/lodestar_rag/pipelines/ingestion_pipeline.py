"""lodestar_rag.pipelines.ingestion_pipeline

Ingestion orchestration for the Lodestar RAG system.

This module defines the :class:`IngestionPipeline`, which takes a source
(either a fetcher or already-loaded documents) through chunking, embedding
and indexing, and records the outcome in the source registry.

Re-ingesting a source supersedes it: every chunk previously written for the
same ``source_url`` is deleted before the new chunks are upserted.

Classes
-------
IngestionPipeline
    Orchestrates fetch → chunk → embed → supersede → upsert → register.
"""

import logging
from typing import List, Optional, Sequence

from lodestar_rag.common.errors import LodestarError
from lodestar_rag.common.retry import RetryPolicy, retry_with_backoff
from lodestar_rag.common.schemas import (
    Chunk,
    ChunkLimits,
    IngestionReport,
    SourceDocument,
    SourceInfo,
)
from lodestar_rag.common.tokenisation import TokenCounter, count_tokens
from lodestar_rag.retrieval.source_registry import (
    SourceRegistry,
    detect_source_kind,
    source_id_for,
    utc_now,
)
from lodestar_rag.retrieval.text_splitter import get_chunks_from_documents
from lodestar_rag.retrieval.types import EmbeddingProvider, SimilarityIndex, SourceFetcher

logger = logging.getLogger(__name__)

DEFAULT_EMBED_BATCH_SIZE = 32


class IngestionPipeline:
    """Chunk, embed and index a source.

    The pipeline is stateless beyond its configured components, so a single
    instance can be shared across requests.

    Parameters
    ----------
    embedder : EmbeddingProvider
        Used to embed chunk contents.
    vector_store : SimilarityIndex
        Destination index.
    registry : SourceRegistry
        Record of indexed sources.
    limits : ChunkLimits
        Chunk size and overlap.
    retry_policy : RetryPolicy or None, optional
        Policy for embedding and index calls.
    token_counter : TokenCounter or None, optional
        Used for the estimated token count in reports. Defaults to the
        four-characters-per-token heuristic.
    batch_size : int, optional
        Number of chunks per embedding request.
    """

    def __init__(
            self,
            embedder: EmbeddingProvider,
            vector_store: SimilarityIndex,
            registry: SourceRegistry,
            limits: ChunkLimits,
            retry_policy: Optional[RetryPolicy] = None,
            token_counter: Optional[TokenCounter] = None,
            batch_size: int = DEFAULT_EMBED_BATCH_SIZE,
        ):
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self.embedder = embedder
        self.vector_store = vector_store
        self.registry = registry
        self.limits = limits
        self.retry_policy = retry_policy or RetryPolicy()
        self.token_counter = token_counter
        self.batch_size = batch_size

    def _embed(self, chunks: Sequence[Chunk]) -> List[List[float]]:
        vectors: List[List[float]] = []
        for start in range(0, len(chunks), self.batch_size):
            texts = [c.content for c in chunks[start:start + self.batch_size]]
            vectors.extend(
                retry_with_backoff(
                    lambda texts=texts: self.embedder.embed_batch(texts),
                    self.retry_policy,
                    name="embed_batch",
                )
            )
            logger.debug("Embedded %d/%d chunks", len(vectors), len(chunks))
        return vectors

    def _supersede(self, source_url: str) -> None:
        retry_with_backoff(
            lambda: self.vector_store.delete_by_filter({"source_url": source_url}),
            self.retry_policy,
            name="vector_store.delete_by_filter",
        )

    def _upsert(self, chunks: Sequence[Chunk], vectors: Sequence[Sequence[float]]) -> int:
        if not chunks:
            return 0
        return retry_with_backoff(
            lambda: self.vector_store.upsert(chunks, vectors),
            self.retry_policy,
            name="vector_store.upsert",
        )

    def ingest(
            self,
            source_url: str,
            *,
            fetcher: Optional[SourceFetcher] = None,
            documents: Optional[Sequence[SourceDocument]] = None,
            title: Optional[str] = None,
            kind: Optional[str] = None,
        ) -> IngestionReport:
        """Ingest one source.

        Exactly one of ``fetcher`` and ``documents`` must be given. Failures
        are not raised: they are recorded in the registry with status
        ``"failed"`` and returned as an unsuccessful report. A failure before
        the previous chunks are deleted keeps the previous ``indexed_at`` and
        ``chunk_count``, since those chunks are still searchable.

        Parameters
        ----------
        source_url : str
            Identity of the source; chunks are grouped and superseded by it.
        fetcher : SourceFetcher or None, optional
            Called once to load the documents.
        documents : Sequence[CodeFile or DocPage] or None, optional
            Pre-loaded documents.
        title : str or None, optional
            Display title for the registry. Defaults to ``source_url``.
        kind : str or None, optional
            Registry kind. Detected from ``source_url`` when omitted.

        Returns
        -------
        IngestionReport
            Counts, warnings and the registry entry written.

        Raises
        ------
        ValueError
            If both or neither of ``fetcher`` and ``documents`` are given.
        """
        if (fetcher is None) == (documents is None):
            raise ValueError("Provide exactly one of 'fetcher' or 'documents'.")

        info = SourceInfo(
            id=source_id_for(source_url),
            url=source_url,
            kind=kind or detect_source_kind(source_url),
            title=title or source_url,
        )
        report = IngestionReport(source=info)
        superseded = False

        try:
            if fetcher is not None:
                documents = fetcher.fetch()
                report.warnings.extend(getattr(fetcher, "warnings", []) or [])
            report.documents = len(documents)

            batch = get_chunks_from_documents(documents, self.limits)
            report.warnings.extend(batch.warnings)
            chunks = [c for c in batch.chunks if c.content.strip()]
            report.estimated_tokens = count_tokens((c.content for c in chunks), self.token_counter)

            vectors = self._embed(chunks)
            self._supersede(source_url)
            superseded = True
            report.chunks = self._upsert(chunks, vectors)
        except LodestarError as exc:
            logger.warning("Ingestion of %s failed: %s", source_url, exc)
            return self._failed(report, str(exc), superseded)
        except Exception as exc:
            logger.exception("Unexpected error ingesting %s", source_url)
            return self._failed(report, f"{type(exc).__name__}: {exc}", superseded)

        info.indexed_at = utc_now()
        info.chunk_count = report.chunks
        self.registry.upsert(info)
        report.message = (
            f"Indexed {report.chunks} chunks from {report.documents} documents "
            f"(~{report.estimated_tokens} tokens)."
        )
        logger.info("%s: %s", source_url, report.message)
        return report

    def _failed(self, report: IngestionReport, error: str, superseded: bool) -> IngestionReport:
        # Chunks from an earlier run stay searchable until they are superseded.
        info = report.source
        previous = self.registry.get(info.id)
        if previous is not None and not superseded:
            info.indexed_at = previous.indexed_at
            info.chunk_count = previous.chunk_count
        else:
            info.indexed_at = utc_now()
        info.status = "failed"
        info.error = error
        self.registry.upsert(info)
        report.success = False
        report.message = f"Failed to index {info.url}: {error}"
        return report

    def delete_source(self, source_id: str) -> Optional[SourceInfo]:
        """Remove a source's chunks from the index and its registry entry.

        Returns
        -------
        SourceInfo or None
            The removed entry, or ``None`` if ``source_id`` is unknown.

        Raises
        ------
        VectorStoreError
            If the index deletion fails after retries; the registry entry is
            kept in that case.
        """
        info = self.registry.get(source_id)
        if info is None:
            return None
        retry_with_backoff(
            lambda: self.vector_store.delete_by_filter({"source_url": info.url}),
            self.retry_policy,
            name="vector_store.delete_by_filter",
        )
        return self.registry.remove(source_id)

    def list_sources(self) -> List[SourceInfo]:
        return self.registry.all()


__all__ = ["IngestionPipeline", "DEFAULT_EMBED_BATCH_SIZE"]
