"""lodestar_rag.retrieval.reranker

Reranker abstractions and implementations for similarity-search candidates.

This module defines:
- the rerank result container
- an abstract reranker interface
- a concrete similarity reranker (adaptive thresholding, deduplication,
  MMR diversity selection or heuristic re-scoring, per-source capping)
- a small reranker factory for configuration-driven construction
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from lodestar_rag.common.schemas import CandidateMatch, RankedResult, RetrievalQuery
from lodestar_rag.retrieval.similarity import adjusted_score, mmr_order

logger = logging.getLogger(__name__)

FALLBACK_THRESHOLDS: Tuple[float, ...] = (0.7, 0.6, 0.5, 0.4, 0.3, 0.2, 0.1)


@dataclass
class RerankResult:
    """Ranked results and the threshold that produced them.

    ``threshold_used`` is ``0.0`` when the relaxed acceptance had to go below
    every ladder rung to reach the minimum result count.
    """

    results: List[RankedResult] = field(default_factory=list)
    threshold_used: Optional[float] = None
    selection: str = "none"


def threshold_ladder(
        requested: float,
        fallbacks: Sequence[float] = FALLBACK_THRESHOLDS,
    ) -> List[float]:
    """Return the requested threshold followed by the fallbacks strictly below it."""
    return [requested] + [t for t in fallbacks if t < requested]


def apply_threshold(candidates: Sequence[CandidateMatch], threshold: float) -> List[CandidateMatch]:
    return [c for c in candidates if c.score >= threshold]


def by_raw_score(candidates: Sequence[CandidateMatch]) -> List[CandidateMatch]:
    return sorted(candidates, key=lambda c: c.score, reverse=True)


def deduplicate(candidates: Sequence[CandidateMatch]) -> List[CandidateMatch]:
    """Collapse candidates sharing ``(content hash, source path)``, keeping the best score."""
    best: Dict[Tuple[Any, Any], CandidateMatch] = {}
    for candidate in by_raw_score(candidates):
        content_key = candidate.content_hash or candidate.content
        key = (content_key, candidate.source_path)
        if key not in best:
            best[key] = candidate
    return list(best.values())


def cap_per_source(
        ordered: Sequence[CandidateMatch],
        max_per_source: Optional[int],
        max_results: int,
    ) -> List[CandidateMatch]:
    """Keep at most ``max_per_source`` candidates per source URL.

    When capping leaves fewer than ``max_results`` candidates, the gap is
    backfilled from the capped-out candidates in their original order.
    """
    if not max_per_source or max_per_source <= 0:
        return list(ordered[:max_results])

    kept: List[CandidateMatch] = []
    overflow: List[CandidateMatch] = []
    per_source: Dict[str, int] = {}
    for candidate in ordered:
        if len(kept) >= max_results:
            break
        count = per_source.get(candidate.source_url, 0)
        if count < max_per_source:
            kept.append(candidate)
            per_source[candidate.source_url] = count + 1
        else:
            overflow.append(candidate)

    if len(kept) < max_results:
        kept.extend(overflow[: max_results - len(kept)])
    return kept


class BaseReranker(ABC):
    """Abstract interface for reranking similarity-search candidates."""

    @abstractmethod
    def rerank(
            self,
            candidates: Sequence[CandidateMatch],
            query_vector: Optional[Sequence[float]],
            query: RetrievalQuery,
        ) -> RerankResult:
        """Return at most ``query.max_results`` ranked results."""
        raise NotImplementedError


class SimilarityReranker(BaseReranker):
    """Adaptive-threshold, diversity-aware reranker.

    The pipeline is:

    1. optional deduplication on ``(content hash, source path)``
    2. adaptive thresholding down a ladder of thresholds until enough
       candidates pass
    3. MMR ordering when the query vector and every candidate vector are
       available, otherwise heuristic re-scoring
    4. per-source capping with backfill, truncated to ``max_results``

    Reported scores are the raw similarity scores. The reranker holds no
    state between calls.

    Parameters
    ----------
    fallback_thresholds : Sequence[float], optional
        Thresholds tried, in order, after the requested one.
    """

    def __init__(self, *, fallback_thresholds: Sequence[float] = FALLBACK_THRESHOLDS):
        self.fallback_thresholds = tuple(sorted((float(t) for t in fallback_thresholds), reverse=True))

    def select_threshold(
            self,
            candidates: Sequence[CandidateMatch],
            query: RetrievalQuery,
        ) -> Tuple[List[CandidateMatch], float]:
        """Apply adaptive thresholding.

        When fewer than ``min(min_results, max_results)`` candidates pass the
        requested threshold, the ladder is walked down to the first rung that
        reaches that target. Relaxed acceptance only admits candidates scoring
        at least the target-th best raw score, so the number of accepted
        candidates never grows as the requested threshold rises. When the
        target is only reached below every rung, ``0.0`` is reported.

        Returns
        -------
        Tuple[List[CandidateMatch], float]
            Passing candidates sorted by raw score, and the threshold used.
        """
        requested = query.effective_threshold
        ranked = by_raw_score(candidates)
        passing = apply_threshold(ranked, requested)
        target = min(query.min_results, query.max_results)
        if not query.adaptive_threshold or not ranked or len(passing) >= target:
            return passing, requested

        floor = ranked[min(target, len(ranked)) - 1].score
        relaxed = apply_threshold(ranked, floor)
        for threshold in threshold_ladder(requested, self.fallback_thresholds)[1:]:
            if threshold <= floor:
                return relaxed, threshold
        return relaxed, 0.0

    def _mmr(
            self,
            candidates: List[CandidateMatch],
            query_vector: Sequence[float],
            query: RetrievalQuery,
        ) -> Optional[List[CandidateMatch]]:
        try:
            order = mmr_order(
                query_vector,
                [c.vector for c in candidates],
                query.effective_diversity,
            )
        except ValueError as exc:
            logger.warning("MMR selection unavailable, using heuristic ranking: %s", exc)
            return None
        return [candidates[i] for i in order]

    def _heuristic(self, candidates: List[CandidateMatch], query: RetrievalQuery) -> List[CandidateMatch]:
        scored = [
            (adjusted_score(candidate, query.text), position, candidate)
            for position, candidate in enumerate(candidates)
        ]
        scored.sort(key=lambda item: (-item[0], item[1]))
        return [candidate for _, _, candidate in scored]

    def rerank(
            self,
            candidates: Sequence[CandidateMatch],
            query_vector: Optional[Sequence[float]],
            query: RetrievalQuery,
        ) -> RerankResult:
        if not candidates or query.max_results <= 0:
            return RerankResult(results=[], threshold_used=None)

        pool = deduplicate(candidates) if query.deduplicate else list(candidates)
        passing, threshold = self.select_threshold(pool, query)
        if not passing:
            return RerankResult(results=[], threshold_used=threshold)

        vectors_available = query_vector is not None and all(
            c.vector is not None and len(c.vector) > 0 for c in passing
        )
        ordered = None
        selection = "heuristic"
        if vectors_available:
            ordered = self._mmr(passing, query_vector, query)
            selection = "mmr"
        if ordered is None:
            ordered = self._heuristic(passing, query)
            selection = "heuristic"

        final = cap_per_source(ordered, query.max_per_source, query.max_results)
        logger.debug(
            "Reranked %d candidates to %d results (threshold=%.2f, selection=%s)",
            len(candidates), len(final), threshold, selection,
        )
        return RerankResult(
            results=[c.to_ranked_result() for c in final],
            threshold_used=threshold,
            selection=selection,
        )


def create_reranker(*, config: Mapping[str, Any] | None = None) -> BaseReranker:
    """Create a reranker from configuration.

    Parameters
    ----------
    config : Mapping[str, Any] or None
        Mapping with a ``type`` discriminator. Only ``"similarity"`` is
        supported; it accepts an optional ``fallback_thresholds`` list.

    Raises
    ------
    ValueError
        If ``type`` is not supported.
    """
    cfg = dict(config or {})
    kind = str(cfg.get("type", "similarity")).lower().strip()

    if kind == "similarity":
        fallbacks = cfg.get("fallback_thresholds") or FALLBACK_THRESHOLDS
        return SimilarityReranker(fallback_thresholds=fallbacks)

    raise ValueError(f"Unsupported rerank type {kind!r}. Supported rerankers: ['similarity'].")


__all__ = [
    "FALLBACK_THRESHOLDS",
    "RerankResult",
    "BaseReranker",
    "SimilarityReranker",
    "threshold_ladder",
    "apply_threshold",
    "deduplicate",
    "cap_per_source",
    "create_reranker",
]
