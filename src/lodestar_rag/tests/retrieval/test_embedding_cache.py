import threading

import pytest

from lodestar_rag.retrieval.embedding_cache import QueryEmbeddingCache


def test_cache_returns_copies():
    cache = QueryEmbeddingCache(max_size=2)
    cache.put("q", [1.0, 2.0])
    got = cache.get("q")
    got.append(3.0)
    assert cache.get("q") == [1.0, 2.0]
    assert cache.get("missing") is None


def test_cache_evicts_oldest_entry_first():
    """Eviction is FIFO: reading an entry does not refresh it."""
    cache = QueryEmbeddingCache(max_size=2)
    cache.put("a", [1.0])
    cache.put("b", [2.0])
    cache.get("a")
    cache.put("c", [3.0])
    assert "a" not in cache
    assert "b" in cache and "c" in cache
    assert len(cache) == 2


def test_zero_size_disables_cache_and_negative_is_rejected():
    cache = QueryEmbeddingCache(max_size=0)
    cache.put("a", [1.0])
    assert len(cache) == 0
    with pytest.raises(ValueError):
        QueryEmbeddingCache(max_size=-1)


def test_cache_is_bounded_under_concurrent_writers():
    cache = QueryEmbeddingCache(max_size=50)

    def writer(offset):
        for i in range(200):
            cache.put(f"{offset}-{i}", [float(i)])

    threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(cache) == 50
