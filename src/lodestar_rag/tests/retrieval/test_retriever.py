from types import SimpleNamespace

import pytest

from lodestar_rag.common.errors import RateLimitError, VectorStoreError
from lodestar_rag.common.retry import RetryPolicy
from lodestar_rag.common.schemas import CandidateMatch, ChunkLimits, CodeFile, DocPage, RetrievalQuery
from lodestar_rag.retrieval.embedder import HashingEmbedder
from lodestar_rag.retrieval.embedding_cache import QueryEmbeddingCache
from lodestar_rag.retrieval.retriever import (
    MAX_CANDIDATES,
    NO_RESULTS_MESSAGE,
    ContextRetriever,
    candidate_budget,
    search,
)
from lodestar_rag.retrieval.text_splitter import process_source
from lodestar_rag.retrieval.vector_store import InMemoryVectorStore

FAST = RetryPolicy(max_attempts=3, initial_delay=0.0, max_delay=0.0, jitter=0.0)


def _candidate(i, score):
    return CandidateMatch(
        id=f"c{i}",
        score=score,
        metadata={"content": f"result number {i} " * 10, "kind": "code", "source_url": f"s{i % 4}"},
    )


def test_candidate_budget_oversamples_and_caps():
    assert candidate_budget(RetrievalQuery(text="q", max_results=5)) == 15
    assert candidate_budget(RetrievalQuery(text="q", max_results=5, strategy="recall")) == 25
    assert candidate_budget(RetrievalQuery(text="q", max_results=80)) == MAX_CANDIDATES


def test_search_calls_supplier_once_with_budget():
    calls = []

    def supplier(top_k):
        calls.append(top_k)
        return [_candidate(i, 0.9 - i * 0.01) for i in range(top_k)]

    outcome = search(RetrievalQuery(text="q", max_results=4), supplier)
    assert calls == [12]
    assert outcome.success
    assert len(outcome.results) == 4
    assert outcome.message == "Found 4 relevant result(s)."
    assert outcome.threshold_used == pytest.approx(0.7)


def test_search_reports_supplier_failure():
    def supplier(top_k):
        raise VectorStoreError("index offline")

    outcome = search(RetrievalQuery(text="q"), supplier)
    assert outcome.success is False
    assert "index offline" in outcome.message
    assert outcome.results == []


def test_search_with_no_candidates_is_a_successful_empty_outcome():
    outcome = search(RetrievalQuery(text="q"), lambda top_k: [])
    assert outcome.success
    assert outcome.results == []
    assert outcome.message == NO_RESULTS_MESSAGE


def test_search_rejects_blank_query_without_calling_supplier():
    def supplier(top_k):
        raise AssertionError("supplier must not be called")

    outcome = search(RetrievalQuery(text="   "), supplier)
    assert outcome.success is False


def _indexed_store(embedder):
    repo = "https://github.com/acme/widgets"
    docs = "https://docs.acme.dev/"
    limits = ChunkLimits(max_chunk_size=400)
    chunks = process_source(
        CodeFile(
            path="retry.py",
            content="def retry_with_backoff(operation):\n    return operation()\n",
            source_url=repo,
        ),
        limits,
    )
    chunks += process_source(
        DocPage(
            url=docs + "retries",
            title="Retries",
            content="## Retries\nFailed calls retry with exponential backoff.\n",
            source_url=docs,
        ),
        limits,
    )
    store = InMemoryVectorStore()
    store.upsert(chunks, embedder.embed_batch([c.content for c in chunks]))
    return store, repo, docs


def test_context_retriever_end_to_end_with_filters():
    embedder = HashingEmbedder(dimension=128)
    store, repo, docs = _indexed_store(embedder)
    retriever = ContextRetriever(embedder=embedder, vector_store=store, retry_policy=FAST)

    outcome = retriever.retrieve(RetrievalQuery(text="retry with backoff", threshold=0.0))
    assert outcome.success
    assert {r.source.url for r in outcome.results} == {repo, docs}

    code_only = retriever.retrieve(RetrievalQuery(text="retry with backoff", include_docs=False))
    assert [r.source.url for r in code_only.results] == [repo]

    by_source = retriever.retrieve(RetrievalQuery(text="retry with backoff", sources=(docs,)))
    assert [r.source.url for r in by_source.results] == [docs]

    nothing = retriever.retrieve(RetrievalQuery(text="x", include_code=False, include_docs=False))
    assert nothing.success and nothing.results == []


def test_build_filter():
    assert ContextRetriever.build_filter(RetrievalQuery(text="q")) == {}
    assert ContextRetriever.build_filter(RetrievalQuery(text="q", sources=("a",), include_code=False)) == {
        "source_url": ["a"],
        "kind": ["documentation"],
    }


def test_query_embeddings_are_cached_and_retried():
    """A transient rate limit is retried once, then the cache serves repeats."""
    calls = []

    class FlakyEmbedder:
        def embed_query(self, text):
            calls.append(text)
            if len(calls) == 1:
                raise RateLimitError("429")
            return [1.0, 0.0]

    store = SimpleNamespace(query=lambda vector, **kwargs: [])
    cache = QueryEmbeddingCache(max_size=4)
    retriever = ContextRetriever(embedder=FlakyEmbedder(), vector_store=store, cache=cache, retry_policy=FAST)

    assert retriever.embed_query("hello") == [1.0, 0.0]
    assert retriever.embed_query("hello") == [1.0, 0.0]
    assert calls == ["hello", "hello"]
    assert "hello" in cache


def test_embedding_failure_becomes_failed_outcome():
    class DownEmbedder:
        def embed_query(self, text):
            raise RateLimitError("still limited")

    store = SimpleNamespace(query=lambda vector, **kwargs: [])
    retriever = ContextRetriever(embedder=DownEmbedder(), vector_store=store, retry_policy=FAST)
    outcome = retriever.retrieve(RetrievalQuery(text="q"))
    assert outcome.success is False
    assert "still limited" in outcome.message
