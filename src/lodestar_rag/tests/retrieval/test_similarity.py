import pytest

from lodestar_rag.common.schemas import CandidateMatch
from lodestar_rag.retrieval.similarity import adjusted_score, cosine_similarity, mmr_order


def test_cosine_similarity_basic_values():
    assert cosine_similarity([1, 0], [1, 0]) == pytest.approx(1.0)
    assert cosine_similarity([1, 0], [0, 1]) == pytest.approx(0.0)
    assert cosine_similarity([1, 1], [-1, -1]) == pytest.approx(-1.0)


def test_cosine_similarity_is_zero_for_degenerate_inputs():
    """Zero vectors, empty vectors and mismatched lengths never divide by zero."""
    assert cosine_similarity([0, 0, 0], [1, 2, 3]) == 0.0
    assert cosine_similarity([], []) == 0.0
    assert cosine_similarity([1, 2], [1, 2, 3]) == 0.0


def test_mmr_with_lambda_one_orders_by_relevance():
    query = [1.0, 0.0]
    vectors = [[0.2, 1.0], [1.0, 0.1], [1.0, 1.0], [1.0, 0.0]]
    assert mmr_order(query, vectors, diversity=1.0) == [3, 1, 2, 0]


def test_mmr_prefers_novel_candidates_with_low_lambda():
    """A near-duplicate of the first pick loses to a different candidate."""
    query = [1.0, 0.2]
    vectors = [[1.0, 0.2], [1.0, 0.21], [0.3, 1.0]]
    assert mmr_order(query, vectors, diversity=1.0)[:2] == [0, 1]
    assert mmr_order(query, vectors, diversity=0.3)[:2] == [0, 2]


def test_mmr_limit_and_dimension_mismatch():
    assert mmr_order([1, 0], [[1, 0], [0, 1], [1, 1]], 0.7, limit=2) == [0, 2]
    assert mmr_order([1, 0], [], 0.7) == []
    with pytest.raises(ValueError):
        mmr_order([1, 0, 0], [[1, 0]], 0.7)


def _candidate(score, content, kind="code", section=None):
    return CandidateMatch(
        id=content[:10],
        score=score,
        metadata={"content": content, "kind": kind, "section": section, "source_url": "u"},
    )


def test_adjusted_score_length_factors():
    medium = "m" * 200
    assert adjusted_score(_candidate(0.5, medium), "zzz") == pytest.approx(0.5)
    assert adjusted_score(_candidate(0.5, "s" * 50), "zzz") == pytest.approx(0.45)
    assert adjusted_score(_candidate(0.5, "l" * 600), "zzz") == pytest.approx(0.55)


def test_adjusted_score_intent_and_overlap():
    """Code intent boosts code, question intent boosts documentation."""
    content = "x" * 200
    code = _candidate(0.5, content, kind="code")
    doc = _candidate(0.5, content, kind="documentation")
    assert adjusted_score(code, "function") == pytest.approx(0.5 * 1.2)
    assert adjusted_score(doc, "function") == pytest.approx(0.5)
    assert adjusted_score(doc, "how") == pytest.approx(0.5 * 1.15)

    text = "retry backoff " + "y" * 200
    both = _candidate(0.5, text, kind="documentation")
    half = _candidate(0.5, text, kind="documentation", section="Retries")
    assert adjusted_score(both, "retry jitter") == pytest.approx(0.5 * 1.05)
    assert adjusted_score(half, "retry jitter") == pytest.approx(0.5 * 1.05 * 1.05)
