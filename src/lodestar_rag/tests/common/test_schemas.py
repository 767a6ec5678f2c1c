import pytest

from lodestar_rag.common.errors import ConfigurationError
from lodestar_rag.common.schemas import (
    CandidateMatch,
    ChunkLimits,
    CodeFile,
    DocPage,
    RetrievalQuery,
    RetrievalStrategy,
)


def test_chunk_limits_default_overlap_is_ten_percent():
    """Omitting the overlap gives 10% of the chunk size."""
    limits = ChunkLimits(max_chunk_size=2000)
    assert limits.overlap_size == 200


@pytest.mark.parametrize(
    "size, overlap",
    [(0, 0), (-5, None), (100, -1), (100, 100), (100, 150)],
)
def test_chunk_limits_rejects_inconsistent_values(size, overlap):
    """Non-positive sizes and overlaps not below the size are configuration errors."""
    with pytest.raises(ConfigurationError) as excinfo:
        ChunkLimits(max_chunk_size=size, overlap_size=overlap)
    assert excinfo.value.code == "CONFIG_ERROR"


def test_chunk_limits_from_token_budget_uses_four_chars_per_token():
    """Token budgets are converted at four characters per token, with a floor."""
    assert ChunkLimits.from_token_budget(500).max_chunk_size == 2000
    assert ChunkLimits.from_token_budget(1).max_chunk_size == 128
    with pytest.raises(ConfigurationError):
        ChunkLimits.from_token_budget(0)


def test_code_file_detects_language_and_size():
    """Language comes from the extension and size from the content."""
    f = CodeFile(path="src/app.ts", content="export const x = 1;\n", source_url="https://github.com/o/r")
    assert f.language == "typescript"
    assert f.size == len(f.content)
    assert f.identity == "https://github.com/o/r"
    assert f.path_or_url == "src/app.ts"


def test_doc_page_identity_defaults_to_url():
    page = DocPage(url="https://docs.example.com/a", title="A", content="text", headings=["x"])
    assert page.identity == "https://docs.example.com/a"
    assert page.headings == ("x",)


def test_retrieval_query_defaults_follow_strategy():
    """Threshold and diversity fall back to the strategy presets."""
    q = RetrievalQuery(text="q", strategy="precision")
    assert q.strategy is RetrievalStrategy.PRECISION
    assert q.effective_threshold == pytest.approx(0.8)
    assert q.effective_diversity == pytest.approx(0.9)
    assert q.strategy.oversample_factor == 2

    q = RetrievalQuery(text="q", threshold=0.3, diversity=1.0)
    assert q.effective_threshold == pytest.approx(0.3)
    assert q.effective_diversity == pytest.approx(1.0)


def test_retrieval_query_kinds_follow_include_flags():
    assert RetrievalQuery(text="q").kinds == ["code", "readme", "documentation"]
    assert RetrievalQuery(text="q", include_docs=False).kinds == ["code", "readme"]
    assert RetrievalQuery(text="q", include_code=False).kinds == ["documentation"]
    assert RetrievalQuery(text="q", include_code=False, include_docs=False).kinds == []


def test_retrieval_query_rejects_unknown_strategy():
    with pytest.raises(ValueError):
        RetrievalQuery(text="q", strategy="fastest")


def test_candidate_match_ranked_result_keeps_raw_score():
    """Conversion to a ranked result exposes provenance and the raw score."""
    c = CandidateMatch(
        id="1",
        score=0.42,
        metadata={
            "content": "body",
            "source_url": "https://github.com/o/r",
            "source_path": "a.py",
            "source_title": "a.py",
            "language": "python",
            "section": None,
        },
    )
    r = c.to_ranked_result()
    assert r.score == pytest.approx(0.42)
    assert r.content == "body"
    assert r.source.url == "https://github.com/o/r"
    assert r.source.path == "a.py"
    assert r.metadata["language"] == "python"
