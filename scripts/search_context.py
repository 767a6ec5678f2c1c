"""Context search entrypoint.

This script runs one retrieval query against the configured vector store
and prints the ranked results as markdown.
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
from lodestar_rag.app.formatting import format_results_for_display
from lodestar_rag.config import GlobalConfig


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Search indexed sources for relevant context")

    parser.add_argument(
        "query",
        type=str,
        help="Natural-language query.",
    )

    parser.add_argument(
        "--config-file",
        "-c",
        required=True,
        type=str,
        help="Path to the YAML configuration file.",
    )

    parser.add_argument(
        "--max-results",
        "-k",
        type=int,
        default=None,
        help="Maximum number of results (default from config).",
    )

    parser.add_argument(
        "--source",
        action="append",
        default=None,
        help="Restrict the search to this source URL (repeatable).",
    )

    parser.add_argument(
        "--strategy",
        choices=["precision", "balanced", "recall"],
        default=None,
        help="Retrieval strategy preset (default from config).",
    )

    parser.add_argument(
        "--threshold",
        type=float,
        default=None,
        help="Minimum similarity score (default from the strategy).",
    )

    parser.add_argument(
        "--code-only",
        action="store_true",
        help="Search code and readme chunks only.",
    )

    parser.add_argument(
        "--docs-only",
        action="store_true",
        help="Search documentation chunks only.",
    )

    return parser.parse_args()


def main() -> int:
    args = parse_args()

    cfg = GlobalConfig.load(args.config_file)
    logging.basicConfig(
        level=str(cfg.logging["level"]).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    container = build_container(cfg)

    query = container.build_query(
        args.query,
        max_results=args.max_results,
        sources=tuple(args.source) if args.source else None,
        strategy=args.strategy,
        threshold=args.threshold,
        include_code=not args.docs_only,
        include_docs=not args.code_only,
    )
    outcome = container.retriever.retrieve(query)

    if not outcome.success:
        print(outcome.message, file=sys.stderr)
        return 1

    print(format_results_for_display(outcome.results))
    print(f"\n({len(outcome.results)} results in {outcome.search_time:.2f}s, threshold {outcome.threshold_used})")
    return 0


if __name__ == "__main__":
    sys.exit(main())
