"""lodestar_rag.retrieval.text_splitter

Chunking engine for the retrieval layer.

This module converts source documents (:class:`~lodestar_rag.common.schemas.CodeFile`
and :class:`~lodestar_rag.common.schemas.DocPage`) into ordered
:class:`~lodestar_rag.common.schemas.Chunk` sequences suitable for embedding and
retrieval. The policy depends on what the document is:

- code in a language with known structural starts is split at function/class
  boundaries, and oversized units are line-windowed
- other code is line-windowed
- documentation and markdown is split by heading sections, and oversized
  sections are character-windowed
- heading-less text is character-windowed, preferring natural break points

Chunking is a pure function of the document and the limits. Identifiers are
derived from the document identity, its path or URL and the chunk index, so
re-chunking identical input reproduces identical identifiers.

Functions
---------
process_source
    Chunk a single source document.
get_chunks_from_documents
    Chunk many documents, skipping malformed ones with a warning.
chunk_id
    Deterministic chunk identifier.
content_hash
    SHA-256 digest of chunk text.
"""

from __future__ import annotations

import dataclasses
import hashlib
import logging
from typing import Iterable, List, Optional, Sequence, Tuple

from lodestar_rag.common.schemas import (
    Chunk,
    ChunkBatch,
    ChunkKind,
    ChunkLimits,
    ChunkMetadata,
    CodeFile,
    DocPage,
    SourceDocument,
    SourceReference,
)
from lodestar_rag.retrieval.languages import (
    classify_kind,
    extract_dependencies,
    structure_pattern,
)
from lodestar_rag.retrieval.segment_splitter import (
    Section,
    Span,
    split_char_windows,
    split_headings,
    split_line_windows,
    split_structural,
)

logger = logging.getLogger(__name__)

CHUNK_ID_LENGTH = 32
MAX_MIN_UNIT_SIZE = 200


def chunk_id(identity: str, path_or_url: str, index: int) -> str:
    raw = f"{identity}:{path_or_url}:{index}".encode("utf-8")
    return hashlib.sha256(raw).hexdigest()[:CHUNK_ID_LENGTH]


def content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _min_unit_size(limits: ChunkLimits) -> int:
    return min(MAX_MIN_UNIT_SIZE, limits.max_chunk_size // 4)


def _code_spans(text: str, language: Optional[str], limits: ChunkLimits) -> List[Span]:
    if len(text) <= limits.max_chunk_size:
        return [(0, len(text))]

    pattern = structure_pattern(language)
    if pattern is None:
        return split_line_windows(text, limits.max_chunk_size, limits.overlap_size)

    spans: List[Span] = []
    for start, end in split_structural(text, pattern, _min_unit_size(limits)):
        if end - start <= limits.max_chunk_size:
            spans.append((start, end))
        else:
            spans.extend(
                split_line_windows(
                    text, limits.max_chunk_size, limits.overlap_size, start=start, end=end
                )
            )
    return spans


def _section_spans(
        text: str,
        sections: Sequence[Section],
        limits: ChunkLimits,
    ) -> List[Tuple[Span, Section]]:
    labelled: List[Tuple[Span, Section]] = []
    for section in sections:
        if section.end - section.start <= limits.max_chunk_size:
            labelled.append(((section.start, section.end), section))
            continue
        for span in split_char_windows(
                text,
                limits.max_chunk_size,
                limits.overlap_size,
                start=section.start,
                end=section.end,
            ):
            labelled.append((span, section))
    return labelled


def _text_spans(text: str, headings: Sequence[str], limits: ChunkLimits) -> List[Tuple[Span, Optional[Section]]]:
    sections = split_headings(text, headings)
    if sections:
        return list(_section_spans(text, sections, limits))
    return [
        (span, None)
        for span in split_char_windows(text, limits.max_chunk_size, limits.overlap_size)
    ]


def _build_chunk(
        document: SourceDocument,
        text: str,
        span: Span,
        index: int,
        kind: ChunkKind,
        source: SourceReference,
        language: Optional[str],
        section: Optional[Section] = None,
    ) -> Chunk:
    piece = text[span[0]:span[1]]
    dependencies = None
    if kind is ChunkKind.CODE:
        dependencies = tuple(extract_dependencies(piece, language))
    return Chunk(
        id=chunk_id(document.identity, document.path_or_url, index),
        content=piece,
        kind=kind,
        source=source,
        metadata=ChunkMetadata(
            size=len(piece),
            content_hash=content_hash(piece),
            language=language,
            heading_level=section.level if section else None,
            section=section.title if section else None,
            dependencies=dependencies,
        ),
        index=index,
    )


def process_source(document: SourceDocument, limits: ChunkLimits) -> List[Chunk]:
    """Chunk a single source document.

    Parameters
    ----------
    document : CodeFile or DocPage
        Document to split.
    limits : ChunkLimits
        Maximum chunk size and overlap, in characters.

    Returns
    -------
    List[Chunk]
        Chunks in document order. Empty for an empty or whitespace-only
        document.

    Raises
    ------
    TypeError
        If ``document`` is not a supported document type or its content is
        not text.
    """
    if not isinstance(document, (CodeFile, DocPage)):
        raise TypeError(f"Unsupported document type: {type(document).__name__}")
    text = document.content
    if not isinstance(text, str):
        raise TypeError(
            f"Document content must be str, got {type(text).__name__} "
            f"for {document.path_or_url!r}"
        )
    if not text.strip():
        return []

    if isinstance(document, DocPage):
        source = SourceReference(url=document.identity, path=document.url, title=document.title)
        labelled = _text_spans(text, document.headings, limits)
        return [
            _build_chunk(document, text, span, i, ChunkKind.DOCUMENTATION, source, None, section)
            for i, (span, section) in enumerate(labelled)
        ]

    source = SourceReference(url=document.identity, path=document.path, title=document.title)
    kind = classify_kind(document.path)
    if kind is ChunkKind.CODE:
        spans = _code_spans(text, document.language, limits)
        return [
            _build_chunk(document, text, span, i, kind, source, document.language)
            for i, span in enumerate(spans)
        ]

    labelled = _text_spans(text, (), limits)
    return [
        _build_chunk(document, text, span, i, kind, source, document.language, section)
        for i, (span, section) in enumerate(labelled)
    ]


def _validated(document: SourceDocument) -> SourceDocument:
    """Return a document whose content is clean text, or raise ``ValueError``."""
    content = getattr(document, "content", None)
    if isinstance(content, (bytes, bytearray)):
        try:
            content = bytes(content).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ValueError(f"undecodable content ({exc.reason})") from exc
        document = dataclasses.replace(document, content=content)
    if not isinstance(content, str):
        raise ValueError(f"content is {type(content).__name__}, not text")
    if "\x00" in content:
        raise ValueError("content contains NUL bytes")
    return document


def get_chunks_from_documents(
        documents: Iterable[SourceDocument],
        limits: ChunkLimits,
    ) -> ChunkBatch:
    """Chunk a batch of documents.

    A malformed document (non-text content, undecodable bytes or NUL bytes)
    does not abort the batch: it is skipped and described in the returned
    warnings.

    Parameters
    ----------
    documents : Iterable[CodeFile or DocPage]
        Documents to chunk.
    limits : ChunkLimits
        Maximum chunk size and overlap, in characters.

    Returns
    -------
    ChunkBatch
        Chunks of every valid document, in input order, and one warning per
        skipped document.
    """
    batch = ChunkBatch()
    for document in documents:
        label = getattr(document, "path_or_url", repr(document))
        try:
            document = _validated(document)
            batch.chunks.extend(process_source(document, limits))
        except (TypeError, ValueError) as exc:
            message = f"Skipped {label}: {exc}"
            logger.warning(message)
            batch.warnings.append(message)
    return batch


__all__ = [
    "process_source",
    "get_chunks_from_documents",
    "chunk_id",
    "content_hash",
]
