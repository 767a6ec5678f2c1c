from lodestar_rag.app.container import build_container
from lodestar_rag.common.schemas import RetrievalStrategy
from lodestar_rag.config import GlobalConfig
from lodestar_rag.retrieval.embedder import HashingEmbedder
from lodestar_rag.retrieval.vector_store import InMemoryVectorStore


def _container(tmp_path, **sections):
    raw = {
        "vector_store": {"kind": "memory"},
        "registry": {"path": str(tmp_path / "sources.json")},
    }
    raw.update(sections)
    return build_container(GlobalConfig(raw))


def test_components_are_cached_and_shared(tmp_path):
    c = _container(tmp_path)
    assert isinstance(c.embedder, HashingEmbedder)
    assert isinstance(c.vector_store, InMemoryVectorStore)
    assert c.vector_store.dimension == c.embedder.dimension
    assert c.retriever is c.retriever
    assert c.retriever.cache is c.embedding_cache
    assert c.pipeline.vector_store is c.retriever.vector_store


def test_build_query_uses_configured_defaults(tmp_path):
    c = _container(tmp_path, retrieval={"strategy": "recall", "max_results": 4, "max_per_source": 1})
    q = c.build_query("hello", max_results=None)
    assert q.strategy is RetrievalStrategy.RECALL
    assert q.max_results == 4
    assert q.max_per_source == 1

    q = c.build_query("hello", max_results=7, include_docs=False)
    assert q.max_results == 7
    assert q.include_docs is False
