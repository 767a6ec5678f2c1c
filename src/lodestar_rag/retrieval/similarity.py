"""lodestar_rag.retrieval.similarity

Similarity primitives used by the reranker.

Functions
---------
cosine_similarity
    Cosine similarity of two vectors, ``0.0`` when either has zero norm.
mmr_order
    Greedy maximal-marginal-relevance ordering of candidate vectors.
adjusted_score
    Heuristic re-score of a candidate used when vectors are unavailable.
"""

from __future__ import annotations

import re
from typing import List, Optional, Sequence

import numpy as np

from lodestar_rag.common.schemas import CandidateMatch, ChunkKind

CODE_TERMS = frozenset({"function", "class", "method", "implementation", "code", "api", "library"})
QUESTION_TERMS = frozenset({"how", "what", "why", "when", "where", "guide", "tutorial", "documentation"})

LONG_CONTENT_CHARS = 500
SHORT_CONTENT_CHARS = 100
LONG_CONTENT_FACTOR = 1.1
SHORT_CONTENT_FACTOR = 0.9
CODE_INTENT_FACTOR = 1.2
QUESTION_INTENT_FACTOR = 1.15
TERM_OVERLAP_WEIGHT = 0.1
SECTION_FACTOR = 1.05

_WORD_RE = re.compile(r"[a-z0-9_]+")


def _as_array(vector: Sequence[float]) -> np.ndarray:
    return np.asarray(vector, dtype=np.float64).ravel()


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of ``a`` and ``b``.

    Returns ``0.0`` if either vector has zero norm, and also when the vectors
    have different lengths.
    """
    va, vb = _as_array(a), _as_array(b)
    if va.shape != vb.shape or va.size == 0:
        return 0.0
    na, nb = np.linalg.norm(va), np.linalg.norm(vb)
    if na == 0.0 or nb == 0.0:
        return 0.0
    return float(np.dot(va, vb) / (na * nb))


def _normalise_rows(matrix: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    safe = np.where(norms == 0.0, 1.0, norms)
    return np.where(norms == 0.0, 0.0, matrix / safe)


def mmr_order(
        query_vector: Sequence[float],
        candidate_vectors: Sequence[Sequence[float]],
        diversity: float,
        limit: Optional[int] = None,
    ) -> List[int]:
    """Order candidates by maximal marginal relevance.

    At each step the unselected candidate maximising
    ``diversity * rel(c) - (1 - diversity) * max(sim(c, s) for s in selected)``
    is picked, where ``rel`` is cosine similarity to the query and ``sim``
    is cosine similarity between candidates. Ties go to the earlier
    candidate.

    Parameters
    ----------
    query_vector : Sequence[float]
        Query embedding.
    candidate_vectors : Sequence[Sequence[float]]
        Candidate embeddings.
    diversity : float
        Trade-off coefficient ``lambda`` in ``[0, 1]``; ``1`` is pure relevance.
    limit : int or None, optional
        Stop after this many picks. Defaults to ordering every candidate.

    Returns
    -------
    List[int]
        Candidate indices in selection order.
    """
    n = len(candidate_vectors)
    if n == 0:
        return []
    limit = n if limit is None else max(0, min(limit, n))
    lam = float(min(max(diversity, 0.0), 1.0))

    query = _as_array(query_vector)
    matrix = np.vstack([_as_array(v) for v in candidate_vectors])
    if matrix.shape[1] != query.size:
        raise ValueError(
            f"Candidate dimension {matrix.shape[1]} does not match query dimension {query.size}"
        )
    unit = _normalise_rows(matrix)
    q_norm = np.linalg.norm(query)
    q_unit = query / q_norm if q_norm else np.zeros_like(query)

    relevance = unit @ q_unit
    pairwise = unit @ unit.T

    selected: List[int] = []
    max_sim = np.zeros(n)
    remaining = np.ones(n, dtype=bool)
    while len(selected) < limit:
        scores = lam * relevance - (1.0 - lam) * max_sim
        scores = np.where(remaining, scores, -np.inf)
        pick = int(np.argmax(scores))
        selected.append(pick)
        remaining[pick] = False
        max_sim = np.maximum(max_sim, pairwise[pick])
    return selected


def _words(text: str) -> List[str]:
    return _WORD_RE.findall(text.lower())


def adjusted_score(candidate: CandidateMatch, query_text: str) -> float:
    """Re-score a candidate with bounded multiplicative factors.

    Factors applied to the raw score:

    - content longer than 500 characters ``x1.1``, shorter than 100 ``x0.9``
    - code terms in the query and a code or readme candidate ``x1.2``
    - question terms in the query and a documentation candidate ``x1.15``
    - lexical overlap ``x(1 + 0.1 * matched_query_words / query_words)``
    - a section label ``x1.05``

    The result is not capped, so candidates keep distinct scores.
    """
    score = float(candidate.score)
    content = candidate.content

    if len(content) > LONG_CONTENT_CHARS:
        score *= LONG_CONTENT_FACTOR
    elif len(content) < SHORT_CONTENT_CHARS:
        score *= SHORT_CONTENT_FACTOR

    query_words = _words(query_text)
    query_vocab = set(query_words)
    kind = candidate.kind
    if query_vocab & CODE_TERMS and kind in (ChunkKind.CODE.value, ChunkKind.README.value):
        score *= CODE_INTENT_FACTOR
    if query_vocab & QUESTION_TERMS and kind == ChunkKind.DOCUMENTATION.value:
        score *= QUESTION_INTENT_FACTOR

    if query_words:
        content_vocab = set(_words(content))
        matches = sum(1 for word in query_words if word in content_vocab)
        score *= 1.0 + (matches / len(query_words)) * TERM_OVERLAP_WEIGHT

    if candidate.section:
        score *= SECTION_FACTOR
    return score


__all__ = [
    "cosine_similarity",
    "mmr_order",
    "adjusted_score",
    "CODE_TERMS",
    "QUESTION_TERMS",
]
