import time

import pytest
import requests
from bs4 import BeautifulSoup

from lodestar_rag.common.errors import FetchError
from lodestar_rag.retrieval.document_loader import (
    DocumentationSiteFetcher,
    GitHubRepositoryFetcher,
    LocalSourceFetcher,
    get_internal_links,
    html_to_markdown,
    is_internal_link,
    parse_github_url,
)

PAGE = """<!DOCTYPE html>
<html>
<head><title>Widgets Guide</title><style>body {}</style></head>
<body>
<nav><a href="/guide/">Home</a></nav>
<main>
  <h1>Getting started</h1>
  <p>Install the <code>widgets</code> package.</p>
  <!-- hidden comment -->
  <h2>Configuration</h2>
  <ul><li>Set <b>timeout</b></li><li>Set retries</li></ul>
  <pre>widgets.configure(timeout=3)
widgets.run()</pre>
  <script>track()</script>
  <a href="/guide/install#top">Install</a>
  <a href="https://other.example.com/x">Elsewhere</a>
  <a href="mailto:team@acme.dev">Mail</a>
</main>
<footer>Copyright</footer>
</body>
</html>
"""


def test_html_to_markdown_renders_main_content():
    title, markdown, headings = html_to_markdown(PAGE)
    assert title == "Widgets Guide"
    assert headings == ["Getting started", "Configuration"]
    assert markdown.startswith("# Getting started")
    assert "## Configuration" in markdown
    assert "- Set timeout" in markdown
    assert "```\nwidgets.configure(timeout=3)\nwidgets.run()\n```" in markdown
    for dropped in ("track()", "Copyright", "hidden comment", "Home", "DOCTYPE"):
        assert dropped not in markdown


def test_html_to_markdown_falls_back_to_body():
    title, markdown, headings = html_to_markdown("<html><body><h3>Only</h3><p>text</p></body></html>")
    assert title == "Only"
    assert markdown == "### Only\n\ntext"


def test_internal_links():
    assert is_internal_link("/a", "https://docs.acme.dev/x")
    assert not is_internal_link("mailto:x@y.z", "https://docs.acme.dev/x")
    assert is_internal_link("https://api.docs.acme.dev/", "https://docs.acme.dev/")
    assert not is_internal_link("https://api.docs.acme.dev/", "https://docs.acme.dev/", allow_subdomains=False)

    soup = BeautifulSoup(PAGE, "html.parser")
    assert get_internal_links(soup, "https://docs.acme.dev/guide/") == [
        "https://docs.acme.dev/guide/",
        "https://docs.acme.dev/guide/install",
    ]


def test_local_fetcher_reads_code_and_skips_unwanted_files(tmp_path):
    (tmp_path / "pkg").mkdir()
    (tmp_path / "pkg" / "mod.py").write_text("import os\n", encoding="utf-8")
    (tmp_path / "README.md").write_text("# Demo\n", encoding="utf-8")
    (tmp_path / "node_modules").mkdir()
    (tmp_path / "node_modules" / "dep.js").write_text("x", encoding="utf-8")
    (tmp_path / "blob.py").write_bytes(b"abc\x00def")
    (tmp_path / "latin.py").write_bytes("caf\xe9".encode("latin-1"))
    (tmp_path / "big.py").write_text("y" * 200, encoding="utf-8")
    (tmp_path / "image.png").write_bytes(b"\x89PNG")

    fetcher = LocalSourceFetcher(str(tmp_path), max_file_size=100)
    files = fetcher.fetch()

    assert sorted(f.path for f in files) == ["README.md", "pkg/mod.py"]
    mod = next(f for f in files if f.path == "pkg/mod.py")
    assert mod.language == "python"
    assert mod.source_url == tmp_path.resolve().as_uri()
    assert len(fetcher.warnings) == 3
    assert any("binary" in w for w in fetcher.warnings)


def test_local_fetcher_include_patterns_and_missing_path(tmp_path):
    (tmp_path / "a.py").write_text("a = 1\n", encoding="utf-8")
    (tmp_path / "b.ts").write_text("let b = 1;\n", encoding="utf-8")
    files = LocalSourceFetcher(str(tmp_path), include=["*.ts"]).fetch()
    assert [f.path for f in files] == ["b.ts"]

    with pytest.raises(FetchError):
        LocalSourceFetcher(str(tmp_path / "missing")).fetch()


class FakeResponse:
    def __init__(self, text="", status=200, content_type="text/html; charset=utf-8", payload=None, content=None, headers=None):
        self.text = text
        self.status_code = status
        self.headers = {"Content-Type": content_type, **(headers or {})}
        self.encoding = "utf-8"
        self.payload = payload
        self.content = content if content is not None else text.encode("utf-8")

    def json(self):
        return self.payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class FakeSession:
    def __init__(self, pages):
        self.pages = pages
        self.headers = {}
        self.requested = []

    def get(self, url, timeout=None):
        self.requested.append(url)
        if url not in self.pages:
            return FakeResponse("", status=404)
        return self.pages[url]


def test_documentation_fetcher_crawls_within_scope():
    pages = {
        "https://docs.acme.dev/guide/": FakeResponse(
            '<main><h1>Guide</h1><p>Start here.</p>'
            '<a href="install">Install</a><a href="/blog/news">News</a>'
            '<a href="missing">Broken</a><a href="logo.png">Logo</a></main>'
        ),
        "https://docs.acme.dev/guide/install": FakeResponse("<main><h1>Install</h1><p>pip install</p></main>"),
        "https://docs.acme.dev/guide/logo.png": FakeResponse("", content_type="image/png"),
    }
    session = FakeSession(pages)
    fetcher = DocumentationSiteFetcher("https://docs.acme.dev/guide/", session=session)

    docs = fetcher.fetch()

    assert [d.url for d in docs] == ["https://docs.acme.dev/guide/", "https://docs.acme.dev/guide/install"]
    assert all(d.source_url == "https://docs.acme.dev/guide/" for d in docs)
    assert docs[1].headings == ("Install",)
    assert "https://docs.acme.dev/blog/news" not in session.requested


def test_documentation_fetcher_fails_when_start_page_is_unreachable():
    fetcher = DocumentationSiteFetcher("https://docs.acme.dev/", session=FakeSession({}))
    with pytest.raises(FetchError):
        fetcher.fetch()


API = "https://api.github.com/repos/acme/widgets"
RAW = "https://raw.githubusercontent.com/acme/widgets"


def _blob(path, size):
    return {"path": path, "type": "blob", "size": size}


def _github_pages(branch="trunk", tree=None, headers=None):
    tree = tree if tree is not None else [
        {"path": "src", "type": "tree"},
        _blob("src/app.py", 20),
        _blob("README.md", 10),
        _blob("logo.png", 5),
        _blob("node_modules/dep.js", 3),
        _blob("big.py", 5000),
        _blob("blob.py", 7),
        _blob("latin.py", 4),
        _blob("gone.py", 4),
    ]
    return {
        API: FakeResponse(payload={"default_branch": "trunk"}, content_type="application/json", headers=headers),
        f"{API}/git/trees/{branch}?recursive=1": FakeResponse(
            payload={"tree": tree, "truncated": False}, content_type="application/json", headers=headers,
        ),
        f"{RAW}/{branch}/src/app.py": FakeResponse(content=b"def app():\n    return 1\n"),
        f"{RAW}/{branch}/README.md": FakeResponse(content=b"# Widgets\n"),
        f"{RAW}/{branch}/blob.py": FakeResponse(content=b"ab\x00cd"),
        f"{RAW}/{branch}/latin.py": FakeResponse(content="caf\xe9".encode("latin-1")),
    }


def test_parse_github_url_variants():
    assert parse_github_url("https://github.com/acme/widgets") == ("acme", "widgets", None, "")
    assert parse_github_url("https://github.com/acme/widgets.git/") == ("acme", "widgets", None, "")
    assert parse_github_url("https://github.com/acme/widgets/tree/dev/src/lib") == ("acme", "widgets", "dev", "src/lib")
    with pytest.raises(FetchError):
        parse_github_url("https://gitlab.com/acme/widgets")


def test_github_fetcher_reads_default_branch_and_skips_unwanted_files():
    session = FakeSession(_github_pages())
    fetcher = GitHubRepositoryFetcher(
        "https://github.com/acme/widgets", max_file_size=1000, token="t0ken", session=session,
    )

    files = fetcher.fetch()

    assert [f.path for f in files] == ["src/app.py", "README.md"]
    assert files[0].language == "python"
    assert all(f.source_url == "https://github.com/acme/widgets" for f in files)
    assert fetcher.repository == "acme/widgets"
    assert session.headers["Authorization"] == "Bearer t0ken"
    assert len(fetcher.warnings) == 4
    assert any("big.py" in w and "exceeds" in w for w in fetcher.warnings)
    assert any("blob.py: binary content" in w for w in fetcher.warnings)
    assert any("latin.py: not valid UTF-8" in w for w in fetcher.warnings)
    assert any("gone.py" in w for w in fetcher.warnings)
    assert not any("logo.png" in url or "node_modules" in url for url in session.requested)


def test_github_fetcher_limits_to_branch_and_path_from_url():
    session = FakeSession(_github_pages(branch="dev"))
    fetcher = GitHubRepositoryFetcher("https://github.com/acme/widgets/tree/dev/src", session=session)

    files = fetcher.fetch()

    assert [f.path for f in files] == ["src/app.py"]


def test_github_fetcher_reports_missing_repository():
    fetcher = GitHubRepositoryFetcher("https://github.com/acme/widgets", session=FakeSession({}))
    with pytest.raises(FetchError, match="not found or is private"):
        fetcher.fetch()


def test_github_fetcher_waits_when_rate_limit_is_low(monkeypatch):
    sleeps = []
    monkeypatch.setattr(time, "sleep", sleeps.append)
    reset = time.time() + 30
    headers = {"X-RateLimit-Remaining": "3", "X-RateLimit-Reset": str(reset)}
    session = FakeSession(_github_pages(tree=[_blob("src/app.py", 20)], headers=headers))

    files = GitHubRepositoryFetcher("https://github.com/acme/widgets", session=session).fetch()

    assert [f.path for f in files] == ["src/app.py"]
    assert len(sleeps) == 1
    assert 0 < sleeps[0] <= 31


def test_github_fetcher_gives_up_on_long_rate_limit_reset():
    headers = {"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": str(time.time() + 3600)}
    session = FakeSession(_github_pages(headers=headers))
    with pytest.raises(FetchError, match="rate limit"):
        GitHubRepositoryFetcher("https://github.com/acme/widgets", session=session).fetch()
