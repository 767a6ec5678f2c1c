"""lodestar_rag.retrieval.document_loader

Document loading utilities for multiple data sources.

This module provides fetchers that acquire raw source documents from:
- local directories or files (code and documentation)
- GitHub repositories (tree listing through the REST API, raw file downloads)
- documentation websites (HTML pages, crawled by internal links)

The outputs are :class:`~lodestar_rag.common.schemas.CodeFile` and
:class:`~lodestar_rag.common.schemas.DocPage` objects ready for chunking.

Classes
-------
LocalSourceFetcher
    Walk a directory (or read one file) into code files.
GitHubRepositoryFetcher
    Read the files of a GitHub repository branch into code files.
DocumentationSiteFetcher
    Crawl a documentation site into markdown-like pages.

Functions
---------
parse_github_url
    Split a GitHub repository URL into owner, repository, branch and path.
is_internal_link
    Check whether a hyperlink is internal relative to a base URL.
remove_link_fragment
    Remove the fragment component (``#...``) from a URL.
get_internal_links
    Extract internal links from parsed HTML.
html_to_markdown
    Convert an HTML page into markdown-like text with ``#`` headings.
"""

from __future__ import annotations

import fnmatch
import logging
import os
import re
import time
from collections import deque
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple
from urllib.parse import quote, urljoin, urlparse, urlsplit, urlunsplit

import requests
from bs4 import BeautifulSoup, Comment, Doctype, NavigableString, Tag

from lodestar_rag.common.errors import FetchError
from lodestar_rag.common.schemas import CodeFile, DocPage
from lodestar_rag.retrieval.languages import EXTENSION_LANGUAGES

logger = logging.getLogger(__name__)

DEFAULT_CHARSET = "UTF-8"
DEFAULT_MAX_FILE_SIZE = 1_048_576
DEFAULT_EXCLUDE = ("node_modules/**", ".git/**", "dist/**", "build/**", "__pycache__/**", ".venv/**")
BINARY_SNIFF_BYTES = 8192
USER_AGENT = "lodestar-rag/0.1 (+documentation indexer)"

GITHUB_API_URL = "https://api.github.com"
GITHUB_RAW_URL = "https://raw.githubusercontent.com"
RATE_LIMIT_FLOOR = 10
MAX_RATE_LIMIT_WAIT = 900.0

_GITHUB_URL = re.compile(
    r"^https?://(?:www\.)?github\.com/(?P<owner>[^/]+)/(?P<repo>[^/#?]+?)(?:\.git)?"
    r"(?:/tree/(?P<branch>[^/]+)(?:/(?P<path>.+?))?)?/?$"
)

MAIN_CONTENT_SELECTORS = (
    "main",
    "article",
    '[role="main"]',
    ".content",
    ".documentation",
    ".docs",
    ".markdown-body",
    "#content",
    ".docs-content",
    ".main-content",
    ".prose",
)
_DROP_TAGS = frozenset({"script", "style", "noscript", "nav", "footer", "aside", "form", "svg", "button"})
_HEADING_TAGS = frozenset({"h1", "h2", "h3", "h4", "h5", "h6"})
_TEXT_BLOCK_TAGS = frozenset({"p", "blockquote", "dt", "dd", "figcaption", "summary"})


def is_internal_link(link: str,
                base_url: str,
                allow_subdomains: bool = True) -> bool:
    """Check whether a hyperlink is internal relative to a base URL.

    A link is internal if it resolves to the same host as ``base_url`` (or a
    subdomain of it when ``allow_subdomains`` is ``True``). Non-HTTP(S)
    schemes such as ``mailto:`` are external.
    """
    resolved = urlparse(urljoin(base_url, link))
    base     = urlparse(base_url)

    if resolved.scheme not in ("http", "https"):
        return False

    if not resolved.hostname:
        return True

    if resolved.hostname == base.hostname:
        return True

    if allow_subdomains and base.hostname and resolved.hostname.endswith("." + base.hostname):
        return True

    return False


def remove_link_fragment(link: str) -> str:
    parts = urlsplit(link)
    return urlunsplit(parts._replace(fragment=""))


def get_internal_links(soup: BeautifulSoup, page_url: str, allow_subdomains: bool = False) -> List[str]:
    """Extract internal links from a parsed page.

    Parameters
    ----------
    soup : BeautifulSoup
        Parsed HTML of the page.
    page_url : str
        URL the page was fetched from, used to resolve relative links.
    allow_subdomains : bool, optional
        Whether subdomains of the page host count as internal.

    Returns
    -------
    list[str]
        Absolute, fragment-free internal URLs in document order, without
        duplicates.
    """
    seen = {}
    for anchor in soup.find_all("a"):
        href = anchor.get("href", None)
        if not href or not is_internal_link(link=href, base_url=page_url, allow_subdomains=allow_subdomains):
            continue
        url = remove_link_fragment(urljoin(page_url, href))
        seen.setdefault(url, None)
    return list(seen)


def _inline_text(tag: Tag) -> str:
    return " ".join(tag.get_text(" ", strip=True).split())


def _render_blocks(element: Tag, blocks: List[str], headings: List[str]) -> None:
    for child in element.children:
        if isinstance(child, (Comment, Doctype)):
            continue
        if isinstance(child, NavigableString):
            text = " ".join(str(child).split())
            if text:
                blocks.append(text)
            continue
        if not isinstance(child, Tag) or child.name in _DROP_TAGS:
            continue

        name = child.name
        if name in _HEADING_TAGS:
            text = _inline_text(child)
            if text:
                blocks.append("#" * int(name[1]) + " " + text)
                headings.append(text)
        elif name == "pre":
            code = child.get_text().rstrip("\n")
            if code.strip():
                blocks.append("```\n" + code + "\n```")
        elif name == "li":
            text = _inline_text(child)
            if text:
                blocks.append("- " + text)
        elif name == "tr":
            cells = [_inline_text(c) for c in child.find_all(["th", "td"])]
            if any(cells):
                blocks.append(" | ".join(cells))
        elif name in _TEXT_BLOCK_TAGS:
            text = _inline_text(child)
            if text:
                blocks.append(text)
        elif child.find(True) is None:
            text = _inline_text(child)
            if text:
                blocks.append(text)
        else:
            _render_blocks(child, blocks, headings)


def html_to_markdown(html: str, only_main_content: bool = True) -> Tuple[str, str, List[str]]:
    """Convert an HTML page into markdown-like text.

    Headings become ATX ``#`` headings, ``<pre>`` blocks become fenced code,
    list items become ``-`` bullets and table rows become ``|``-separated
    lines. Scripts, styles and navigation chrome are dropped.

    Parameters
    ----------
    html : str
        Page HTML.
    only_main_content : bool, optional
        Restrict conversion to the first main-content container found (e.g.
        ``<main>`` or ``<article>``), falling back to ``<body>``.

    Returns
    -------
    Tuple[str, str, List[str]]
        ``(title, markdown, headings)``.
    """
    soup = BeautifulSoup(html, "html.parser")
    title = soup.title.get_text(strip=True) if soup.title else ""

    root: Optional[Tag] = None
    if only_main_content:
        for selector in MAIN_CONTENT_SELECTORS:
            root = soup.select_one(selector)
            if root is not None:
                break
    if root is None:
        root = soup.body or soup

    blocks: List[str] = []
    headings: List[str] = []
    _render_blocks(root, blocks, headings)

    if not title and headings:
        title = headings[0]
    return title, "\n\n".join(blocks), headings


def _is_binary(sample: bytes) -> bool:
    return b"\x00" in sample


def _decode_text(raw: bytes) -> Tuple[Optional[str], Optional[str]]:
    """Return ``(text, None)`` for UTF-8 text, or ``(None, reason)``."""
    if _is_binary(raw[:BINARY_SNIFF_BYTES]):
        return None, "binary content"
    try:
        return raw.decode("utf-8"), None
    except UnicodeDecodeError:
        return None, "not valid UTF-8"


def _has_known_extension(rel_path: str) -> bool:
    name = rel_path.rsplit("/", 1)[-1]
    ext = name.rsplit(".", 1)[-1].lower() if "." in name else ""
    return ext in EXTENSION_LANGUAGES or name.lower().startswith("readme")


def _matches_any(rel_path: str, patterns: Sequence[str]) -> bool:
    name = rel_path.rsplit("/", 1)[-1]
    return any(fnmatch.fnmatch(rel_path, p) or fnmatch.fnmatch(name, p) for p in patterns)


def _excluded(rel_path: str, patterns: Sequence[str]) -> bool:
    parts = rel_path.split("/")
    for pattern in patterns:
        if fnmatch.fnmatch(rel_path, pattern):
            return True
        stem = pattern.rstrip("/*")
        if stem and "/" not in stem and any(fnmatch.fnmatch(part, stem) for part in parts):
            return True
    return False


class LocalSourceFetcher:
    """Read code and documentation files from a local path.

    Parameters
    ----------
    path : str
        Directory to walk, or a single file.
    include : Sequence[str] or None, optional
        Glob patterns matched against the relative path or file name. By
        default any file with a known language extension is included.
    exclude : Sequence[str] or None, optional
        Glob patterns for files and directories to skip. Defaults to
        ``node_modules``, ``.git``, ``dist``, ``build`` and virtualenv caches.
    max_file_size : int, optional
        Files larger than this many bytes are skipped.
    source_url : str or None, optional
        Identity recorded on every file. Defaults to a ``file://`` URL of
        the resolved path.

    Attributes
    ----------
    warnings : list[str]
        Files skipped during the last :meth:`fetch`, with reasons.
    """

    def __init__(
            self,
            path: str,
            *,
            include: Optional[Sequence[str]] = None,
            exclude: Optional[Sequence[str]] = None,
            max_file_size: int = DEFAULT_MAX_FILE_SIZE,
            source_url: Optional[str] = None,
        ):
        self.root = Path(path).expanduser().resolve()
        self.include = list(include or [])
        self.exclude = list(exclude) if exclude is not None else list(DEFAULT_EXCLUDE)
        self.max_file_size = int(max_file_size)
        self.source_url = source_url or self.root.as_uri()
        self.warnings: List[str] = []

    def _included(self, rel_path: str) -> bool:
        if self.include:
            return _matches_any(rel_path, self.include)
        return _has_known_extension(rel_path)

    def _candidate_files(self) -> Iterable[Tuple[Path, str]]:
        if self.root.is_file():
            yield self.root, self.root.name
            return
        for dirpath, dirnames, filenames in os.walk(self.root):
            rel_dir = Path(dirpath).relative_to(self.root).as_posix()
            rel_dir = "" if rel_dir == "." else rel_dir + "/"
            dirnames[:] = sorted(d for d in dirnames if not _excluded(rel_dir + d, self.exclude))
            for filename in sorted(filenames):
                rel = rel_dir + filename
                if self._included(rel) and not _excluded(rel, self.exclude):
                    yield Path(dirpath) / filename, rel

    def _skip(self, rel_path: str, reason: str) -> None:
        message = f"Skipped {rel_path}: {reason}"
        logger.debug(message)
        self.warnings.append(message)

    def fetch(self) -> List[CodeFile]:
        """Read every eligible file.

        Raises
        ------
        FetchError
            If the path does not exist.
        """
        if not self.root.exists():
            raise FetchError(f"Path not found: {self.root}", details={"path": str(self.root)})

        self.warnings = []
        files: List[CodeFile] = []
        for file_path, rel in self._candidate_files():
            try:
                size = file_path.stat().st_size
                if size > self.max_file_size:
                    self._skip(rel, f"{size} bytes exceeds limit of {self.max_file_size}")
                    continue
                raw = file_path.read_bytes()
            except OSError as exc:
                self._skip(rel, str(exc))
                continue
            content, reason = _decode_text(raw)
            if content is None:
                self._skip(rel, reason)
                continue
            files.append(CodeFile(path=rel, content=content, source_url=self.source_url, title=rel))

        logger.info("Read %d files from %s (%d skipped)", len(files), self.root, len(self.warnings))
        return files


def parse_github_url(url: str) -> Tuple[str, str, Optional[str], str]:
    """Split a GitHub repository URL.

    Accepts ``https://github.com/owner/repo``, an optional ``.git`` suffix,
    and ``/tree/<branch>[/<path>]`` forms.

    Returns
    -------
    Tuple[str, str, Optional[str], str]
        ``(owner, repo, branch, path)``. ``branch`` is ``None`` when the URL
        does not name one; ``path`` is ``""`` for the repository root.

    Raises
    ------
    FetchError
        If ``url`` is not a GitHub repository URL.
    """
    match = _GITHUB_URL.match(url.strip())
    if match is None:
        raise FetchError(f"Invalid GitHub URL format: {url}", details={"url": url})
    return match["owner"], match["repo"], match["branch"], (match["path"] or "").strip("/")


class GitHubRepositoryFetcher:
    """Read code and documentation files from a GitHub repository.

    The branch tree is listed with one recursive call to the git trees API
    and each eligible file is downloaded from the raw content host. API
    calls pause when the remaining rate limit drops to
    ``RATE_LIMIT_FLOOR``.

    Parameters
    ----------
    url : str
        Repository URL, optionally with ``/tree/<branch>/<path>``. Also used
        as the source identity.
    branch : str or None, optional
        Branch to read. Defaults to the branch in ``url``, then the
        repository's default branch.
    include : Sequence[str] or None, optional
        Glob patterns matched against the repository path or file name. By
        default any file with a known language extension is included.
    exclude : Sequence[str] or None, optional
        Glob patterns for files and directories to skip.
    max_file_size : int, optional
        Files larger than this many bytes are skipped.
    token : str or None, optional
        GitHub token for higher rate limits and private repositories.
        Defaults to the ``GITHUB_TOKEN`` environment variable.
    api_url, raw_url : str, optional
        Base URLs of the REST API and the raw content host (GitHub
        Enterprise installs use their own).
    timeout : float, optional
        Per-request timeout in seconds.
    session : requests.Session or None, optional
        HTTP session, mainly for tests.

    Attributes
    ----------
    warnings : list[str]
        Files skipped during the last :meth:`fetch`, with reasons.
    """

    def __init__(
            self,
            url: str,
            *,
            branch: Optional[str] = None,
            include: Optional[Sequence[str]] = None,
            exclude: Optional[Sequence[str]] = None,
            max_file_size: int = DEFAULT_MAX_FILE_SIZE,
            token: Optional[str] = None,
            api_url: str = GITHUB_API_URL,
            raw_url: str = GITHUB_RAW_URL,
            timeout: float = 10.0,
            session: Optional[requests.Session] = None,
        ):
        self.owner, self.repo, url_branch, self.subpath = parse_github_url(url)
        self.source_url = url.strip().rstrip("/")
        self.branch = branch or url_branch
        self.include = list(include or [])
        self.exclude = list(exclude) if exclude is not None else list(DEFAULT_EXCLUDE)
        self.max_file_size = int(max_file_size)
        self.api_url = api_url.rstrip("/")
        self.raw_url = raw_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", USER_AGENT)
        self.session.headers.setdefault("Accept", "application/vnd.github+json")
        token = token or os.environ.get("GITHUB_TOKEN")
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"
        self.warnings: List[str] = []
        self._remaining: Optional[int] = None
        self._reset_at = 0.0

    @classmethod
    def from_config_dict(cls, url: str, config: Optional[dict], **kwargs) -> "GitHubRepositoryFetcher":
        """Create a fetcher using ``token``, ``api_url``, ``raw_url`` and ``timeout`` from ``config``.

        Explicit keyword arguments take precedence over configuration.
        """
        for key in ("token", "api_url", "raw_url", "timeout"):
            value = (config or {}).get(key)
            if value is not None:
                kwargs.setdefault(key, value)
        return cls(url, **kwargs)

    @property
    def repository(self) -> str:
        return f"{self.owner}/{self.repo}"

    def _included(self, path: str) -> bool:
        if self.include:
            return _matches_any(path, self.include)
        return _has_known_extension(path)

    def _in_scope(self, path: str) -> bool:
        if not self.subpath:
            return True
        return path == self.subpath or path.startswith(self.subpath + "/")

    def _skip(self, path: str, reason: str) -> None:
        message = f"Skipped {path}: {reason}"
        logger.debug(message)
        self.warnings.append(message)

    def _wait_for_rate_limit(self) -> None:
        if self._remaining is None or self._remaining > RATE_LIMIT_FLOOR:
            return
        wait = self._reset_at - time.time()
        if wait <= 0:
            return
        if wait > MAX_RATE_LIMIT_WAIT:
            raise FetchError(
                f"GitHub API rate limit exhausted; it resets in {int(wait)} seconds. Provide a GitHub token.",
                details={"repository": self.repository, "reset_at": self._reset_at},
            )
        logger.warning("GitHub rate limit nearly exhausted, waiting %d seconds", int(wait) + 1)
        time.sleep(wait + 1)
        self._remaining = None

    def _update_rate_limit(self, headers) -> None:
        remaining = headers.get("X-RateLimit-Remaining")
        reset = headers.get("X-RateLimit-Reset")
        if remaining is not None and reset is not None:
            self._remaining = int(remaining)
            self._reset_at = float(reset)

    def _api(self, path: str, not_found: str) -> dict:
        self._wait_for_rate_limit()
        url = f"{self.api_url}{path}"
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as exc:
            raise FetchError(f"Could not reach the GitHub API: {exc}", details={"url": url}) from exc
        self._update_rate_limit(response.headers)
        if response.status_code == 404:
            raise FetchError(not_found, details={"url": url})
        if response.status_code in (401, 403, 429):
            raise FetchError(
                f"Access denied to repository {self.repository}. Check permissions or provide a GitHub token.",
                details={"url": url, "status": response.status_code},
            )
        try:
            response.raise_for_status()
        except requests.RequestException as exc:
            raise FetchError(f"GitHub API request failed: {exc}", details={"url": url}) from exc
        return response.json()

    def _download(self, branch: str, path: str) -> bytes:
        url = f"{self.raw_url}/{self.owner}/{self.repo}/{quote(branch, safe='')}/{quote(path)}"
        response = self.session.get(url, timeout=self.timeout)
        response.raise_for_status()
        return response.content

    def fetch(self) -> List[CodeFile]:
        """Read every eligible file of the branch.

        Raises
        ------
        FetchError
            If the repository or branch cannot be listed.
        """
        self.warnings = []
        info = self._api(
            f"/repos/{self.owner}/{self.repo}",
            not_found=f"Repository {self.repository} not found or is private",
        )
        branch = self.branch or info.get("default_branch") or "main"
        tree = self._api(
            f"/repos/{self.owner}/{self.repo}/git/trees/{quote(branch, safe='')}?recursive=1",
            not_found=f"Branch {branch!r} not found in {self.repository}",
        )
        if tree.get("truncated"):
            self.warnings.append("Repository tree listing was truncated by GitHub; some files were not indexed.")

        files: List[CodeFile] = []
        for entry in tree.get("tree", []):
            path = entry.get("path", "")
            if entry.get("type") != "blob" or not self._in_scope(path):
                continue
            if not self._included(path) or _excluded(path, self.exclude):
                continue
            size = int(entry.get("size") or 0)
            if size > self.max_file_size:
                self._skip(path, f"{size} bytes exceeds limit of {self.max_file_size}")
                continue
            try:
                raw = self._download(branch, path)
            except requests.RequestException as exc:
                self._skip(path, str(exc))
                continue
            content, reason = _decode_text(raw)
            if content is None:
                self._skip(path, reason)
                continue
            files.append(CodeFile(path=path, content=content, source_url=self.source_url, title=path))

        logger.info(
            "Read %d files from %s@%s (%d skipped)", len(files), self.repository, branch, len(self.warnings),
        )
        return files


class DocumentationSiteFetcher:
    """Crawl a documentation site breadth-first.

    Only pages on the same host whose path lies under the start URL's
    directory are followed.

    Parameters
    ----------
    url : str
        Start page, also used as the source identity.
    max_pages : int, optional
        Maximum number of pages to fetch. Defaults to ``50``.
    max_depth : int, optional
        Maximum link depth from the start page. Defaults to ``2``.
    only_main_content : bool, optional
        Convert only the main content container of each page.
    timeout : float, optional
        Per-request timeout in seconds.
    session : requests.Session or None, optional
        HTTP session, mainly for tests.
    """

    def __init__(
            self,
            url: str,
            *,
            max_pages: int = 50,
            max_depth: int = 2,
            only_main_content: bool = True,
            timeout: float = 10.0,
            session: Optional[requests.Session] = None,
        ):
        self.url = remove_link_fragment(url)
        self.max_pages = int(max_pages)
        self.max_depth = int(max_depth)
        self.only_main_content = only_main_content
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", USER_AGENT)
        base_path = urlsplit(self.url).path
        self._scope = base_path if base_path.endswith("/") else base_path.rsplit("/", 1)[0] + "/"

    def _in_scope(self, url: str) -> bool:
        parts = urlsplit(url)
        return parts.netloc == urlsplit(self.url).netloc and parts.path.startswith(self._scope)

    def _get(self, url: str) -> Optional[str]:
        response = self.session.get(url, timeout=self.timeout)
        response.raise_for_status()
        content_type = response.headers.get("Content-Type", "text/html")
        if "html" not in content_type:
            logger.debug("Skipping %s: content type %s", url, content_type)
            return None
        response.encoding = response.encoding or DEFAULT_CHARSET
        return response.text

    def fetch(self) -> List[DocPage]:
        """Crawl the site.

        Raises
        ------
        FetchError
            If the start page cannot be fetched.
        """
        pages: List[DocPage] = []
        queue = deque([(self.url, 0)])
        visited = {self.url}

        while queue and len(pages) < self.max_pages:
            url, depth = queue.popleft()
            try:
                html = self._get(url)
            except requests.RequestException as exc:
                if url == self.url:
                    raise FetchError(f"Could not access {url}: {exc}", details={"url": url}) from exc
                logger.warning("Skipping %s: %s", url, exc)
                continue
            if html is None:
                continue

            title, markdown, headings = html_to_markdown(html, self.only_main_content)
            if markdown.strip():
                pages.append(
                    DocPage(
                        url=url,
                        title=title or url,
                        content=markdown,
                        headings=tuple(headings),
                        source_url=self.url,
                    )
                )

            if depth >= self.max_depth:
                continue
            for link in get_internal_links(BeautifulSoup(html, "html.parser"), url):
                if link not in visited and self._in_scope(link):
                    visited.add(link)
                    queue.append((link, depth + 1))

        logger.info("Fetched %d pages from %s", len(pages), self.url)
        return pages


__all__ = [
    "LocalSourceFetcher",
    "GitHubRepositoryFetcher",
    "parse_github_url",
    "DocumentationSiteFetcher",
    "is_internal_link",
    "remove_link_fragment",
    "get_internal_links",
    "html_to_markdown",
]
