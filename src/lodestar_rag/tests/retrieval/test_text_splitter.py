import pytest

from lodestar_rag.common.schemas import ChunkKind, ChunkLimits, CodeFile, DocPage
from lodestar_rag.retrieval.text_splitter import (
    chunk_id,
    content_hash,
    get_chunks_from_documents,
    process_source,
)

REPO = "https://github.com/acme/widgets"


def _reconstruct(chunks):
    return "".join(c.content for c in chunks)


def _ts_file(lines: int = 50) -> CodeFile:
    body = ["import { helper } from './helper';", "", "export function compute(values: number[]): number {"]
    body += [f"  const v{i} = helper(values[{i}]);" for i in range(lines - 5)]
    body += ["  return 0;", "}"]
    return CodeFile(path="src/compute.ts", content="\n".join(body) + "\n", source_url=REPO)


def _python_module(functions: int) -> str:
    parts = ["import os\nfrom typing import List\n\n"]
    for i in range(functions):
        parts.append(
            f"def function_{i}(items: List[int]) -> int:\n"
            + "".join(f"    total_{j} = sum(items) + {j}\n" for j in range(8))
            + "    return total_0\n\n"
        )
    return "".join(parts)


def test_small_typescript_file_is_one_code_chunk():
    """A 50-line file with one function under the limit stays whole."""
    doc = _ts_file(50)
    chunks = process_source(doc, ChunkLimits(max_chunk_size=2000))
    assert len(chunks) == 1
    chunk = chunks[0]
    assert chunk.kind is ChunkKind.CODE
    assert chunk.content == doc.content
    assert chunk.metadata.language == "typescript"
    assert chunk.metadata.dependencies == ("./helper",)
    assert chunk.source.url == REPO
    assert chunk.source.path == "src/compute.ts"


def test_markdown_page_with_three_sections():
    """Each ``##`` section becomes one chunk labelled with its heading."""
    content = (
        "## Installation\nRun the installer.\n\n"
        "## Configuration\nEdit config.yaml.\n\n"
        "## Usage\nCall the API.\n"
    )
    page = DocPage(url="https://docs.acme.dev/guide", title="Guide", content=content)
    chunks = process_source(page, ChunkLimits(max_chunk_size=2000))
    assert len(chunks) == 3
    assert [c.metadata.section for c in chunks] == ["Installation", "Configuration", "Usage"]
    assert all(c.metadata.heading_level == 2 for c in chunks)
    assert all(c.kind is ChunkKind.DOCUMENTATION for c in chunks)
    assert _reconstruct(chunks) == content


def test_empty_and_whitespace_documents_yield_no_chunks():
    limits = ChunkLimits(max_chunk_size=100)
    assert process_source(CodeFile(path="a.py", content="", source_url=REPO), limits) == []
    assert process_source(CodeFile(path="a.py", content="  \n\t\n", source_url=REPO), limits) == []


def test_unsupported_document_type_raises():
    with pytest.raises(TypeError):
        process_source({"content": "x"}, ChunkLimits(max_chunk_size=100))


@pytest.mark.parametrize("max_size", [150, 400, 1000])
def test_code_chunks_respect_size_and_reconstruct(max_size):
    """With no overlap, concatenated chunks reproduce the file exactly."""
    text = _python_module(12)
    doc = CodeFile(path="pkg/module.py", content=text, source_url=REPO)
    chunks = process_source(doc, ChunkLimits(max_chunk_size=max_size, overlap_size=0))
    assert len(chunks) > 1
    assert all(0 < c.metadata.size <= max_size for c in chunks)
    assert all(c.metadata.size == len(c.content) for c in chunks)
    assert [c.index for c in chunks] == list(range(len(chunks)))
    assert _reconstruct(chunks) == text


def test_code_chunks_start_at_function_boundaries_when_possible():
    text = _python_module(6)
    doc = CodeFile(path="pkg/module.py", content=text, source_url=REPO)
    chunks = process_source(doc, ChunkLimits(max_chunk_size=400, overlap_size=0))
    assert all(c.content.startswith(("import", "def ")) for c in chunks)
    assert chunks[0].metadata.dependencies == ("os", "typing")


@pytest.mark.parametrize("overlap", [0, 10, 50])
def test_text_overlap_is_bounded(overlap):
    text = " ".join(f"Sentence number {i} explains something." for i in range(120))
    doc = CodeFile(path="NOTES.txt", content=text, source_url=REPO)
    chunks = process_source(doc, ChunkLimits(max_chunk_size=200, overlap_size=overlap))
    assert chunks[0].kind is ChunkKind.DOCUMENTATION
    position = 0
    previous_end = 0
    for chunk in chunks:
        start = text.index(chunk.content, max(0, previous_end - overlap))
        assert start >= position
        assert previous_end - start <= overlap
        position = start
        previous_end = start + len(chunk.content)
    assert previous_end == len(text)


def test_chunking_is_deterministic():
    text = _python_module(10)
    doc = CodeFile(path="pkg/module.py", content=text, source_url=REPO)
    limits = ChunkLimits(max_chunk_size=300, overlap_size=30)
    first = process_source(doc, limits)
    second = process_source(doc, limits)
    assert [c.id for c in first] == [c.id for c in second]
    assert [c.content for c in first] == [c.content for c in second]
    assert len({c.id for c in first}) == len(first)


def test_chunk_identifiers_and_hashes():
    doc = CodeFile(path="a.py", content="x = 1\n", source_url=REPO)
    chunk = process_source(doc, ChunkLimits(max_chunk_size=100))[0]
    assert chunk.id == chunk_id(REPO, "a.py", 0)
    assert len(chunk.id) == 32
    assert chunk.metadata.content_hash == content_hash("x = 1\n")
    assert chunk_id(REPO, "a.py", 0) != chunk_id(REPO, "b.py", 0)


def test_readme_is_split_by_headings_without_dependencies():
    text = "# Widgets\nA library.\n\n## Install\n" + "pip install widgets\n" * 5
    doc = CodeFile(path="README.md", content=text, source_url=REPO)
    chunks = process_source(doc, ChunkLimits(max_chunk_size=2000))
    assert len(chunks) == 1
    assert chunks[0].kind is ChunkKind.README
    assert chunks[0].metadata.section == "Widgets"
    assert chunks[0].metadata.dependencies is None


def test_oversized_section_is_windowed_under_its_heading():
    body = "Paragraph text that goes on. " * 40
    content = "## Big\n" + body + "\n## Small\nshort\n"
    page = DocPage(url="https://docs.acme.dev/p", title="P", content=content)
    chunks = process_source(page, ChunkLimits(max_chunk_size=300, overlap_size=0))
    assert len(chunks) > 2
    assert all(c.metadata.size <= 300 for c in chunks)
    assert chunks[-1].metadata.section == "Small"
    assert {c.metadata.section for c in chunks[:-1]} == {"Big"}
    assert _reconstruct(chunks) == content


def test_batch_skips_malformed_documents_with_warnings():
    """Undecodable, NUL-bearing and non-text documents are reported, not fatal."""
    limits = ChunkLimits(max_chunk_size=500)
    docs = [
        CodeFile(path="good.py", content="print('hi')\n", source_url=REPO),
        CodeFile(path="bad.py", content=b"\xff\xfe\x00", source_url=REPO),
        CodeFile(path="nul.py", content="a\x00b", source_url=REPO),
        object(),
        CodeFile(path="bytes.py", content=b"x = 2\n", source_url=REPO),
    ]
    batch = get_chunks_from_documents(docs, limits)
    assert [c.source.path for c in batch.chunks] == ["good.py", "bytes.py"]
    assert batch.chunks[1].content == "x = 2\n"
    assert len(batch.warnings) == 3
    assert batch.warnings[0].startswith("Skipped bad.py")
    assert "NUL" in batch.warnings[1]
