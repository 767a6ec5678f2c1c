import re

import pytest

from lodestar_rag.retrieval.segment_splitter import (
    find_text_break_point,
    split_char_windows,
    split_fixed_window,
    split_headings,
    split_line_windows,
    split_structural,
)


def _reconstruct(text, spans):
    """Join spans, dropping each span's overlap with the previous one."""
    out = []
    covered = 0
    for start, end in spans:
        assert start <= covered, "spans must touch or overlap"
        out.append(text[max(start, covered):end])
        covered = max(covered, end)
    return "".join(out)


def test_break_point_prefers_paragraph_break():
    text = "a" * 85 + "\n\n" + "b" * 50
    assert find_text_break_point(text, 0, 100) == 87


def test_break_point_falls_back_to_sentence_then_hard_cut():
    text = "x" * 90 + ". " + "y" * 50
    assert find_text_break_point(text, 0, 100) == 92

    text = "z" * 200
    assert find_text_break_point(text, 0, 100) == 100


def test_break_point_at_end_of_text():
    assert find_text_break_point("short", 0, 50) == 5


def test_fixed_window_sizes_and_overlap():
    text = "abcdefghij" * 10
    spans = split_fixed_window(text, 30, 5)
    assert spans[0] == (0, 30)
    assert spans[1] == (25, 55)
    assert all(end - start <= 30 for start, end in spans)
    assert spans[-1][1] == len(text)


@pytest.mark.parametrize("max_size", [7, 40, 128])
def test_char_windows_reconstruct_without_overlap(max_size):
    text = ("Lorem ipsum dolor sit amet. Consectetur adipiscing elit!\n\n" * 12).strip()
    spans = split_char_windows(text, max_size, 0)
    assert _reconstruct(text, spans) == text
    assert all(0 < end - start <= max_size for start, end in spans)


def test_char_windows_overlap_is_bounded():
    text = "word " * 400
    spans = split_char_windows(text, 100, 20)
    for (s1, e1), (s2, e2) in zip(spans, spans[1:]):
        assert s2 > s1
        assert max(0, e1 - s2) <= 20


def test_line_windows_keep_whole_lines():
    lines = [f"line {i:03d} " + "x" * 20 + "\n" for i in range(30)]
    text = "".join(lines)
    spans = split_line_windows(text, 120, 0)
    assert _reconstruct(text, spans) == text
    for start, end in spans:
        assert end - start <= 120
        assert start == 0 or text[start - 1] == "\n"
        assert text[end - 1] == "\n"


def test_line_windows_split_oversized_line():
    text = "short\n" + "y" * 250 + "\nend\n"
    spans = split_line_windows(text, 100, 0)
    assert _reconstruct(text, spans) == text
    assert all(end - start <= 100 for start, end in spans)


def test_headings_split_at_same_or_higher_level():
    """Deeper headings stay in their parent's section."""
    text = (
        "# Title\nintro\n"
        "## Install\npip install\n"
        "### From source\nclone it\n"
        "## Usage\nrun it\n"
    )
    sections = split_headings(text)
    assert [(s.title, s.level) for s in sections] == [
        ("Title", 1),
    ]
    assert sections[0].start == 0 and sections[0].end == len(text)

    sections = split_headings(text[text.index("## Install"):])
    assert [(s.title, s.level) for s in sections] == [("Install", 2), ("Usage", 2)]
    assert "From source" in text[text.index("## Install"):][sections[0].start:sections[0].end]


def test_headings_ignore_fenced_code_and_keep_preamble():
    text = "Preamble text\n## A\n```\n# not a heading\n```\n## B\nbody\n"
    sections = split_headings(text)
    assert [s.title for s in sections] == [None, "A", "B"]
    assert sections[0].end == text.index("## A")


def test_headings_fall_back_to_listed_headings():
    text = "Overview\nsome text\nDetails\nmore text\n"
    sections = split_headings(text, ["Overview", "Details"])
    assert [s.title for s in sections] == ["Overview", "Details"]
    assert all(s.level is None for s in sections)
    assert split_headings("plain text only") == []


def test_structural_split_respects_min_size():
    text = "import os\n\ndef a():\n    pass\n\ndef b():\n    pass\n"
    pattern = re.compile(r"^def\s+\w+")
    spans = split_structural(text, pattern, 5)
    assert [text[s:e].splitlines()[0] for s, e in spans] == ["import os", "def a():", "def b():"]
    assert _reconstruct(text, spans) == text

    assert split_structural(text, pattern, 1000) == [(0, len(text))]
