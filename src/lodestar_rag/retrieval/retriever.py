"""lodestar_rag.retrieval.retriever

Retrieval orchestration for the Lodestar RAG system.

:func:`search` is the core entry point: given a query and a candidate
supplier (any callable returning similarity-index hits for a ``top_k``), it
fetches one oversampled candidate set, reranks it and wraps the outcome in a
:class:`~lodestar_rag.common.schemas.SearchOutcome`. It never raises.

:class:`ContextRetriever` wires the real collaborators together: it embeds
the query (through the query-embedding cache and the retry combinator),
builds the payload filter from the query, and supplies candidates from the
vector store.

Classes
-------
ContextRetriever
    Embeds queries and searches a vector store.

Functions
---------
search
    Run one retrieval request against a candidate supplier.
candidate_budget
    Number of candidates to request for a query.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional, Sequence

from lodestar_rag.common.errors import LodestarError
from lodestar_rag.common.retry import RetryPolicy, retry_with_backoff
from lodestar_rag.common.schemas import CandidateMatch, RetrievalQuery, SearchOutcome
from lodestar_rag.retrieval.embedding_cache import QueryEmbeddingCache
from lodestar_rag.retrieval.reranker import BaseReranker, SimilarityReranker
from lodestar_rag.retrieval.types import CandidateSupplier, EmbeddingProvider, SimilarityIndex

logger = logging.getLogger(__name__)

MAX_CANDIDATES = 100
NO_RESULTS_MESSAGE = (
    "No relevant results found. Try adjusting your query or lowering the similarity threshold."
)


def candidate_budget(query: RetrievalQuery) -> int:
    return max(0, min(query.max_results * query.strategy.oversample_factor, MAX_CANDIDATES))


def search(
        query: RetrievalQuery,
        candidate_supplier: CandidateSupplier,
        *,
        query_vector: Optional[Sequence[float]] = None,
        reranker: Optional[BaseReranker] = None,
    ) -> SearchOutcome:
    """Run a retrieval request.

    Parameters
    ----------
    query : RetrievalQuery
        The request.
    candidate_supplier : Callable[[int], Sequence[CandidateMatch]]
        Called exactly once with the candidate budget.
    query_vector : Sequence[float] or None, optional
        Query embedding, enabling diversity selection when candidates carry
        vectors.
    reranker : BaseReranker or None, optional
        Defaults to :class:`~lodestar_rag.retrieval.reranker.SimilarityReranker`.

    Returns
    -------
    SearchOutcome
        ``success=False`` when candidates could not be fetched or ranked.
        A successful outcome with no results carries an explanatory message.
    """
    started = time.perf_counter()
    reranker = reranker or SimilarityReranker()

    def _elapsed() -> float:
        return time.perf_counter() - started

    if not query.text or not query.text.strip():
        return SearchOutcome(success=False, message="Query text must not be empty.", search_time=_elapsed())

    top_k = candidate_budget(query)
    try:
        candidates: List[CandidateMatch] = list(candidate_supplier(top_k))
    except Exception as exc:
        logger.warning("Candidate retrieval failed for query %r: %s", query.text[:80], exc)
        return SearchOutcome(success=False, message=f"Search failed: {exc}", search_time=_elapsed())

    try:
        ranked = reranker.rerank(candidates, query_vector, query)
    except Exception as exc:
        logger.exception("Reranking failed for query %r", query.text[:80])
        return SearchOutcome(success=False, message=f"Ranking failed: {exc}", search_time=_elapsed())

    if not ranked.results:
        return SearchOutcome(
            success=True,
            message=NO_RESULTS_MESSAGE,
            results=[],
            threshold_used=ranked.threshold_used,
            search_time=_elapsed(),
        )

    logger.info(
        "Query %r: %d candidates -> %d results (threshold %.2f)",
        query.text[:80], len(candidates), len(ranked.results), ranked.threshold_used,
    )
    return SearchOutcome(
        success=True,
        message=f"Found {len(ranked.results)} relevant result(s).",
        results=ranked.results,
        threshold_used=ranked.threshold_used,
        search_time=_elapsed(),
    )


class ContextRetriever:
    """Search a vector store for context relevant to a query.

    Parameters
    ----------
    embedder : EmbeddingProvider
        Used to embed query text.
    vector_store : SimilarityIndex
        Index holding chunk vectors.
    reranker : BaseReranker or None, optional
        Defaults to :class:`~lodestar_rag.retrieval.reranker.SimilarityReranker`.
    cache : QueryEmbeddingCache or None, optional
        Query-embedding cache. A private cache is created when omitted.
    retry_policy : RetryPolicy or None, optional
        Policy for embedding and index calls.
    """

    def __init__(
            self,
            *,
            embedder: EmbeddingProvider,
            vector_store: SimilarityIndex,
            reranker: Optional[BaseReranker] = None,
            cache: Optional[QueryEmbeddingCache] = None,
            retry_policy: Optional[RetryPolicy] = None,
        ):
        self.embedder = embedder
        self.vector_store = vector_store
        self.reranker = reranker or SimilarityReranker()
        self.cache = cache if cache is not None else QueryEmbeddingCache()
        self.retry_policy = retry_policy or RetryPolicy()

    def embed_query(self, text: str) -> List[float]:
        cached = self.cache.get(text)
        if cached is not None:
            logger.debug("Query embedding cache hit for %r", text[:50])
            return cached
        vector = retry_with_backoff(
            lambda: self.embedder.embed_query(text),
            self.retry_policy,
            name="embed_query",
        )
        self.cache.put(text, vector)
        return vector

    @staticmethod
    def build_filter(query: RetrievalQuery) -> Dict[str, Any]:
        """Payload filter for ``query``: source allow-list and chunk kinds."""
        filter: Dict[str, Any] = {}
        if query.sources:
            filter["source_url"] = list(query.sources)
        if not (query.include_code and query.include_docs):
            filter["kind"] = query.kinds
        return filter

    def retrieve(self, query: RetrievalQuery) -> SearchOutcome:
        """Embed ``query``, fetch candidates and rank them. Never raises."""
        if not query.kinds:
            return SearchOutcome(
                success=True,
                message="Nothing to search: both code and documentation are excluded.",
            )
        try:
            vector = self.embed_query(query.text)
        except LodestarError as exc:
            logger.warning("Query embedding failed: %s", exc)
            return SearchOutcome(success=False, message=f"Failed to embed query: {exc}")

        filter = self.build_filter(query)

        def supply(top_k: int) -> Sequence[CandidateMatch]:
            return retry_with_backoff(
                lambda: self.vector_store.query(
                    vector, top_k=top_k, filter=filter or None, include_vectors=True
                ),
                self.retry_policy,
                name="vector_store.query",
            )

        return search(query, supply, query_vector=vector, reranker=self.reranker)


__all__ = [
    "search",
    "candidate_budget",
    "ContextRetriever",
    "NO_RESULTS_MESSAGE",
    "MAX_CANDIDATES",
]
