import json

from lodestar_rag.common.schemas import SourceInfo
from lodestar_rag.retrieval.source_registry import SourceRegistry, detect_source_kind, source_id_for


def test_source_ids_are_short_and_stable():
    sid = source_id_for("https://github.com/acme/widgets")
    assert sid == source_id_for("https://github.com/acme/widgets")
    assert len(sid) == 12
    assert sid != source_id_for("https://github.com/acme/gadgets")


def test_detect_source_kind():
    assert detect_source_kind("https://github.com/acme/widgets") == "github"
    assert detect_source_kind("https://docs.acme.dev/") == "documentation"
    assert detect_source_kind("file:///srv/code") == "local"
    assert detect_source_kind("/srv/code") == "local"


def test_registry_persists_and_orders_by_recency(tmp_path):
    path = tmp_path / "state" / "sources.json"
    registry = SourceRegistry(path)
    old = SourceInfo(id="a", url="https://a", kind="documentation", indexed_at="2024-01-01T00:00:00+00:00")
    new = SourceInfo(id="b", url="https://b", kind="github", indexed_at="2024-06-01T00:00:00+00:00", chunk_count=4)
    registry.upsert(old)
    registry.upsert(new)

    reloaded = SourceRegistry(path)
    assert [s.id for s in reloaded.all()] == ["b", "a"]
    assert reloaded.get("b").chunk_count == 4
    assert json.loads(path.read_text())["sources"][0]["url"] == "https://a"

    assert reloaded.remove("a").url == "https://a"
    assert reloaded.remove("a") is None
    assert [s.id for s in SourceRegistry(path).all()] == ["b"]


def test_registry_find_by_url_and_unreadable_file(tmp_path):
    path = tmp_path / "sources.json"
    path.write_text("{not json", encoding="utf-8")
    registry = SourceRegistry(path)
    assert registry.all() == []

    url = "https://docs.acme.dev/"
    registry.upsert(SourceInfo(id=source_id_for(url), url=url, kind="documentation"))
    assert registry.find_by_url(url).url == url
