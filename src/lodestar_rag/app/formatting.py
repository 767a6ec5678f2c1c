"""lodestar_rag.app.formatting

Markdown rendering of ranked results for display to users and agents.

Functions
---------
format_results_for_display
    Render a list of ranked results as markdown.
"""

from typing import List, Sequence

from lodestar_rag.common.schemas import RankedResult
from lodestar_rag.retrieval.retriever import NO_RESULTS_MESSAGE

PREVIEW_CHARS = 500


def _source_label(result: RankedResult) -> str:
    source = result.source
    if source.path and source.path != source.url:
        return f"{source.url} ({source.path})" if source.url else source.path
    return source.url or source.title or "unknown"


def _details(result: RankedResult) -> str:
    parts: List[str] = []
    language = result.metadata.get("language")
    if language:
        parts.append(f"Language: {language}")
    section = result.metadata.get("section")
    if section:
        parts.append(f"Section: {section}")
    return f" ({', '.join(parts)})" if parts else ""


def format_results_for_display(results: Sequence[RankedResult], preview_chars: int = PREVIEW_CHARS) -> str:
    """Render ranked results as markdown.

    Each result gets a numbered heading with its score as a percentage, a
    source line with language and section when known, and its content
    truncated to ``preview_chars`` characters.

    Parameters
    ----------
    results : Sequence[RankedResult]
        Results in rank order.
    preview_chars : int, optional
        Maximum content characters shown per result.

    Returns
    -------
    str
        Markdown text, or the no-results message when ``results`` is empty.
    """
    if not results:
        return NO_RESULTS_MESSAGE

    blocks: List[str] = []
    for rank, result in enumerate(results, start=1):
        content = result.content
        if len(content) > preview_chars:
            content = content[:preview_chars] + "..."
        blocks.append(
            f"## Result {rank} ({result.score * 100:.1f}% match)\n"
            f"**Source:** {_source_label(result)}{_details(result)}\n\n"
            f"{content}\n\n---"
        )
    return "\n\n".join(blocks)


__all__ = ["format_results_for_display", "PREVIEW_CHARS"]
