"""Source ingestion entrypoint.

This script indexes a local directory (or file), a GitHub repository or a
documentation site:
it fetches the source, chunks it, embeds the chunks and writes them to the
configured vector store, replacing any chunks from a previous ingestion of
the same source.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = REPO_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from lodestar_rag.app.container import build_container
from lodestar_rag.common.errors import FetchError
from lodestar_rag.config import GlobalConfig
from lodestar_rag.retrieval.document_loader import (
    DocumentationSiteFetcher,
    GitHubRepositoryFetcher,
    LocalSourceFetcher,
)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Index a source into the vector store")

    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument(
        "--path",
        type=str,
        help="Local directory or file to index.",
    )
    source.add_argument(
        "--github-url",
        type=str,
        help="GitHub repository URL to index (optionally /tree/<branch>/<path>).",
    )
    source.add_argument(
        "--docs-url",
        type=str,
        help="Documentation site URL to crawl and index.",
    )

    parser.add_argument(
        "--config-file",
        "-c",
        required=True,
        type=str,
        help="Path to the YAML configuration file.",
    )

    parser.add_argument(
        "--title",
        "-t",
        required=False,
        type=str,
        default=None,
        help="Display title for the source registry (optional).",
    )

    parser.add_argument(
        "--branch",
        type=str,
        default=None,
        help="Branch to index (GitHub sources only; defaults to the repository default).",
    )

    parser.add_argument(
        "--include",
        action="append",
        default=None,
        help="Glob pattern of files to include (repeatable; local and GitHub sources).",
    )

    parser.add_argument(
        "--exclude",
        action="append",
        default=None,
        help="Glob pattern of files to exclude (repeatable; local and GitHub sources).",
    )

    parser.add_argument(
        "--max-pages",
        type=int,
        default=50,
        help="Maximum pages to crawl (documentation sites only, default: 50).",
    )

    parser.add_argument(
        "--max-depth",
        type=int,
        default=2,
        help="Maximum link depth to crawl (documentation sites only, default: 2).",
    )

    parser.add_argument(
        "--collection-name",
        required=False,
        type=str,
        default=None,
        help="Override Qdrant collection name from config (optional).",
    )

    return parser.parse_args()


def _override_collection_name(cfg: GlobalConfig, cli_value: str | None) -> None:
    if not cli_value:
        return

    vector_store = cfg.raw.get("vector_store")
    if vector_store is None:
        cfg.raw["vector_store"] = {
            "kind": "qdrant",
            "collection_name": cli_value,
        }
        return

    if isinstance(vector_store, dict):
        vector_store["collection_name"] = cli_value
        return

    raise TypeError("'vector_store' config must be a mapping to override collection_name.")


def main() -> int:
    args = parse_args()

    cfg = GlobalConfig.load(args.config_file)
    logging.basicConfig(
        level=str(cfg.logging["level"]).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    _override_collection_name(cfg, args.collection_name)
    container = build_container(cfg)

    if args.path:
        fetcher = LocalSourceFetcher(args.path, include=args.include, exclude=args.exclude)
        source_url, kind = fetcher.source_url, "local"
        title = args.title or args.path
    elif args.github_url:
        try:
            fetcher = GitHubRepositoryFetcher.from_config_dict(
                args.github_url,
                cfg.github,
                branch=args.branch,
                include=args.include,
                exclude=args.exclude,
            )
        except FetchError as e:
            print(e.message, file=sys.stderr)
            return 2
        source_url, kind = fetcher.source_url, "github"
        title = args.title or fetcher.repository
    else:
        fetcher = DocumentationSiteFetcher(args.docs_url, max_pages=args.max_pages, max_depth=args.max_depth)
        source_url, kind = fetcher.url, "documentation"
        title = args.title

    print(f"Indexing {source_url} ...")
    report = container.pipeline.ingest(source_url, fetcher=fetcher, title=title, kind=kind)

    for warning in report.warnings:
        print(f"  warning: {warning}")
    print(report.message)
    return 0 if report.success else 1


if __name__ == "__main__":
    sys.exit(main())
