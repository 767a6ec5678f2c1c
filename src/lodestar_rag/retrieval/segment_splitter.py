"""lodestar_rag.retrieval.segment_splitter

Pure text-splitting primitives used by the chunking engine.

Every primitive works on character offsets into the original text and returns
``(start, end)`` spans (or :class:`Section` records) rather than copies of the
text. Consecutive spans either touch or overlap, so joining the spans with
their overlaps removed reconstructs the input exactly.

Classes
-------
Section
    A heading-delimited region of a document.

Functions
---------
find_text_break_point
    Choose a natural cut position near the end of a window.
split_fixed_window
    Fixed-size windows with overlap and no break-point search.
split_char_windows
    Character windows with overlap that prefer natural break points.
split_line_windows
    Windows made of whole lines, with line-aligned overlap.
split_headings
    Split markdown-like text into heading sections.
split_structural
    Split code at structural starts (functions, classes, ...).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional, Pattern, Sequence, Tuple

Span = Tuple[int, int]

BREAK_SEARCH_FRACTION = 0.2

_SENTENCE_END_RE = re.compile(r"[.!?][\"')\]]*\s")
_HEADING_RE = re.compile(r"^(#{1,6})[ \t]+(.+?)[ \t]*#*[ \t]*$")
_FENCE_RE = re.compile(r"^[ \t]{0,3}(```|~~~)")


@dataclass(frozen=True)
class Section:
    """A region of text belonging to one heading.

    Attributes
    ----------
    start : int
        Offset of the first character of the section (the heading line).
    end : int
        Offset one past the last character of the section.
    title : str or None
        Heading text, or ``None`` for text preceding the first heading.
    level : int or None
        Markdown heading level (1-6), or ``None`` when unknown.
    """
    start: int
    end: int
    title: Optional[str] = None
    level: Optional[int] = None


def find_text_break_point(text: str, start: int, end: int) -> int:
    """Find a natural cut position in ``text[start:end]``.

    Only the last 20% of the window is searched. In order of preference the
    cut is placed after a blank line, after sentence-ending punctuation
    followed by whitespace, or after a line break. When none is found the
    window is cut hard at ``end``.

    Parameters
    ----------
    text : str
        Full text.
    start : int
        Window start offset.
    end : int
        Window end offset (exclusive).

    Returns
    -------
    int
        Cut offset ``c`` with ``start < c <= end``.
    """
    if end >= len(text):
        return len(text)

    region_start = start + int((end - start) * (1 - BREAK_SEARCH_FRACTION))
    region_start = max(region_start, start)

    idx = text.rfind("\n\n", region_start, end)
    if idx != -1 and idx + 2 > start:
        return idx + 2

    last_sentence = None
    for match in _SENTENCE_END_RE.finditer(text, region_start, end):
        last_sentence = match
    if last_sentence is not None and last_sentence.end() > start:
        return last_sentence.end()

    idx = text.rfind("\n", region_start, end)
    if idx != -1 and idx + 1 > start:
        return idx + 1

    return end


def _advance(pos: int, cut: int, overlap: int) -> int:
    nxt = cut - overlap
    # Windows must always move forward.
    if nxt <= pos:
        return cut
    return nxt


def _absorb_blank_spans(text: str, spans: List[Span], max_size: int) -> List[Span]:
    """Fold whitespace-only spans into the preceding span when it fits."""
    merged: List[Span] = []
    for start, end in spans:
        if merged and not text[start:end].strip():
            prev_start, prev_end = merged[-1]
            if end - prev_start <= max_size and start <= prev_end:
                merged[-1] = (prev_start, end)
                continue
        merged.append((start, end))
    return merged


def split_char_windows(
        text: str,
        max_size: int,
        overlap: int = 0,
        *,
        start: int = 0,
        end: Optional[int] = None,
        prefer_breaks: bool = True,
    ) -> List[Span]:
    """Split ``text[start:end]`` into character windows.

    Parameters
    ----------
    text : str
        Full text.
    max_size : int
        Maximum window length in characters.
    overlap : int, optional
        Characters shared by consecutive windows. Must be smaller than
        ``max_size``.
    start, end : int, optional
        Region of ``text`` to split. Defaults to the whole text.
    prefer_breaks : bool, optional
        Use :func:`find_text_break_point` to place cuts. When ``False`` every
        window except the last is exactly ``max_size`` long.

    Returns
    -------
    List[Span]
        Ordered ``(start, end)`` spans covering the region.
    """
    end = len(text) if end is None else end
    spans: List[Span] = []
    pos = start
    while pos < end:
        window_end = min(pos + max_size, end)
        if window_end < end and prefer_breaks:
            cut = find_text_break_point(text[:end], pos, window_end)
        else:
            cut = window_end
        spans.append((pos, cut))
        if cut >= end:
            break
        pos = _advance(pos, cut, overlap)
    return _absorb_blank_spans(text, spans, max_size)


def split_fixed_window(text: str, max_size: int, overlap: int = 0) -> List[Span]:
    return split_char_windows(text, max_size, overlap, prefer_breaks=False)


def _line_spans(text: str, start: int, end: int) -> List[Span]:
    lines: List[Span] = []
    pos = start
    while pos < end:
        nl = text.find("\n", pos, end)
        line_end = end if nl == -1 else nl + 1
        lines.append((pos, line_end))
        pos = line_end
    return lines


def split_line_windows(
        text: str,
        max_size: int,
        overlap: int = 0,
        *,
        start: int = 0,
        end: Optional[int] = None,
    ) -> List[Span]:
    """Split ``text[start:end]`` into windows of whole lines.

    Lines are accumulated until the next one would push the window past
    ``max_size``. The following window starts at the earliest line boundary
    no earlier than ``window_end - overlap``. A line longer than ``max_size``
    on its own is split with raw character windows, and only that line.

    Returns
    -------
    List[Span]
        Ordered ``(start, end)`` spans covering the region.
    """
    end = len(text) if end is None else end
    lines = _line_spans(text, start, end)
    spans: List[Span] = []
    n = len(lines)
    i = 0
    while i < n:
        line_start, line_end = lines[i]
        if line_end - line_start > max_size:
            spans.extend(
                split_char_windows(
                    text, max_size, overlap,
                    start=line_start, end=line_end, prefer_breaks=False,
                )
            )
            i += 1
            continue

        j = i
        while j < n and lines[j][1] - line_start <= max_size:
            j += 1
        window_end = lines[j - 1][1]
        spans.append((line_start, window_end))
        if j >= n:
            break

        target = window_end - overlap
        k = j
        while k - 1 > i and lines[k - 1][0] >= target:
            k -= 1
        # Overlap that cannot fit the next line buys nothing.
        if lines[j][1] - lines[k][0] > max_size:
            k = j
        i = k
    return _absorb_blank_spans(text, spans, max_size)


def _heading_matches(text: str) -> List[Tuple[int, int, str]]:
    """Return ``(offset, level, title)`` for every markdown heading outside fences."""
    found: List[Tuple[int, int, str]] = []
    in_fence = False
    fence_marker = ""
    for line_start, line_end in _line_spans(text, 0, len(text)):
        line = text[line_start:line_end].rstrip("\r\n")
        fence = _FENCE_RE.match(line)
        if fence:
            if not in_fence:
                in_fence, fence_marker = True, fence.group(1)
            elif fence.group(1) == fence_marker:
                in_fence = False
            continue
        if in_fence:
            continue
        match = _HEADING_RE.match(line)
        if match:
            found.append((line_start, len(match.group(1)), match.group(2).strip()))
    return found


def _listed_heading_matches(text: str, headings: Sequence[str]) -> List[Tuple[int, Optional[int], str]]:
    wanted = {h.strip() for h in headings if h and h.strip()}
    found: List[Tuple[int, Optional[int], str]] = []
    if not wanted:
        return found
    for line_start, line_end in _line_spans(text, 0, len(text)):
        line = text[line_start:line_end].strip()
        if line in wanted:
            found.append((line_start, None, line))
    return found


def split_headings(text: str, headings: Sequence[str] = ()) -> List[Section]:
    """Split text into heading sections.

    A section is a heading line plus everything up to the next heading of
    equal or higher level; deeper headings stay inside their parent section.
    Lines inside fenced code blocks are never treated as headings. Text
    before the first heading becomes an unlabelled section, or is merged
    into the first section when it is only whitespace.

    When the text has no markdown headings, lines equal to one of
    ``headings`` are used as flat section boundaries with an unknown level.

    Parameters
    ----------
    text : str
        Document text.
    headings : Sequence[str], optional
        Heading texts supplied by the fetcher.

    Returns
    -------
    List[Section]
        Sections covering the text in order. Empty when no heading is found.
    """
    matches: List[Tuple[int, Optional[int], str]] = list(_heading_matches(text))
    if not matches:
        matches = _listed_heading_matches(text, headings)
    if not matches:
        return []

    sections: List[Section] = []
    first_offset = matches[0][0]
    preamble_blank = not text[:first_offset].strip()
    if first_offset > 0 and not preamble_blank:
        sections.append(Section(start=0, end=first_offset))

    i = 0
    while i < len(matches):
        offset, level, title = matches[i]
        j = i + 1
        if level is not None:
            while j < len(matches) and matches[j][1] is not None and matches[j][1] > level:
                j += 1
        section_end = matches[j][0] if j < len(matches) else len(text)
        section_start = 0 if (not sections and preamble_blank) else offset
        sections.append(Section(start=section_start, end=section_end, title=title, level=level))
        i = j
    return sections


def split_structural(text: str, pattern: Pattern[str], min_size: int) -> List[Span]:
    """Split code at lines matching ``pattern``.

    A new unit starts at a matching line once the current unit holds at
    least ``min_size`` characters. Units are not size-bounded here.

    Returns
    -------
    List[Span]
        Ordered, contiguous ``(start, end)`` spans covering the text.
    """
    spans: List[Span] = []
    unit_start = 0
    for line_start, line_end in _line_spans(text, 0, len(text)):
        if line_start == unit_start:
            continue
        if line_start - unit_start < min_size:
            continue
        if pattern.match(text[line_start:line_end].rstrip("\r\n")):
            spans.append((unit_start, line_start))
            unit_start = line_start
    if unit_start < len(text):
        spans.append((unit_start, len(text)))
    return spans


__all__ = [
    "Span",
    "Section",
    "find_text_break_point",
    "split_fixed_window",
    "split_char_windows",
    "split_line_windows",
    "split_headings",
    "split_structural",
]
