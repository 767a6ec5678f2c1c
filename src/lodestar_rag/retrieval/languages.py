"""lodestar_rag.retrieval.languages

Language detection and language-specific patterns used by the chunking
engine.

Functions
---------
detect_language
    Map a file path to a language name from its extension.
classify_kind
    Decide whether a file is code, a README or documentation.
structure_pattern
    Return the structural-start regex for a language, if it has one.
extract_dependencies
    Collect imported or required module names from source text.
"""

from __future__ import annotations

import posixpath
import re
from typing import Dict, List, Optional, Pattern, Tuple

from lodestar_rag.common.schemas import ChunkKind

EXTENSION_LANGUAGES: Dict[str, str] = {
    "py": "python",
    "pyi": "python",
    "ts": "typescript",
    "tsx": "typescript",
    "js": "javascript",
    "jsx": "javascript",
    "mjs": "javascript",
    "cjs": "javascript",
    "java": "java",
    "kt": "kotlin",
    "scala": "scala",
    "swift": "swift",
    "cs": "csharp",
    "go": "go",
    "rs": "rust",
    "c": "c",
    "h": "c",
    "cpp": "cpp",
    "cc": "cpp",
    "hpp": "cpp",
    "rb": "ruby",
    "php": "php",
    "md": "markdown",
    "mdx": "markdown",
    "rst": "rst",
    "txt": "text",
    "json": "json",
    "yml": "yaml",
    "yaml": "yaml",
    "toml": "toml",
    "html": "html",
    "css": "css",
    "scss": "scss",
    "sh": "shell",
}

DOCUMENTATION_EXTENSIONS = frozenset({"md", "mdx", "rst", "txt"})

_JS_LIKE = (
    r"^\s*(?:export\s+)?(?:default\s+)?(?:async\s+)?function\b"
    r"|^\s*(?:export\s+)?(?:default\s+)?(?:abstract\s+)?class\b"
    r"|^\s*(?:export\s+)?(?:interface|type|enum)\s+\w+"
    r"|^\s*(?:export\s+)?(?:const|let|var)\s+\w+\s*=\s*(?:async\s+)?(?:\([^)]*\)|\w+)\s*=>"
)

_JVM_LIKE = (
    r"^\s*(?:@\w+\s+)*(?:(?:public|private|protected|internal|static|final|abstract|sealed|open|data|override)\s+)*"
    r"(?:class|interface|enum|record|struct|object|trait|fun|func|def)\b"
)

STRUCTURE_PATTERNS: Dict[str, Pattern[str]] = {
    "python": re.compile(r"^(?:async\s+def|def|class)\s+\w+|^@\w+"),
    "javascript": re.compile(_JS_LIKE),
    "typescript": re.compile(_JS_LIKE),
    "java": re.compile(_JVM_LIKE),
    "kotlin": re.compile(_JVM_LIKE),
    "scala": re.compile(_JVM_LIKE),
    "swift": re.compile(_JVM_LIKE),
    "csharp": re.compile(
        r"^\s*(?:\[\w+.*\]\s*)?(?:(?:public|private|protected|internal|static|sealed|abstract|partial)\s+)*"
        r"(?:class|interface|enum|struct|record|namespace)\b"
    ),
    "go": re.compile(r"^func\b|^type\s+\w+\s+(?:struct|interface)\b"),
    "rust": re.compile(
        r"^\s*(?:pub(?:\([^)]*\))?\s+)?(?:async\s+)?(?:fn|struct|enum|trait|impl|mod)\b"
    ),
    "c": re.compile(
        r"^(?:[A-Za-z_][\w\*]*[ \t\*]+)+[A-Za-z_]\w*\s*\([^;]*$"
        r"|^struct\s+\w+\s*\{"
    ),
    "cpp": re.compile(
        r"^(?:template\s*<.*>\s*)?(?:class|struct|namespace)\s+\w+"
        r"|^(?:[A-Za-z_][\w:<>\*&]*[ \t\*&]+)+[A-Za-z_~][\w:~]*\s*\([^;]*$"
    ),
    "ruby": re.compile(r"^\s*(?:def|class|module)\s+\w+"),
    "php": re.compile(
        r"^\s*(?:(?:public|private|protected|static|abstract|final)\s+)*(?:function|class|interface|trait)\b"
    ),
}

_DEPENDENCY_PATTERNS: Dict[str, Tuple[Pattern[str], ...]] = {
    "python": (
        re.compile(r"^\s*import\s+([\w\.]+)", re.MULTILINE),
        re.compile(r"^\s*from\s+([\w\.]+)\s+import\b", re.MULTILINE),
    ),
    "javascript": (
        re.compile(r"""^\s*import\s+(?:[^'"]*?\s+from\s+)?['"]([^'"]+)['"]""", re.MULTILINE),
        re.compile(r"""require\(\s*['"]([^'"]+)['"]\s*\)"""),
    ),
    "java": (re.compile(r"^\s*import\s+(?:static\s+)?([\w\.\*]+)\s*;", re.MULTILINE),),
    "kotlin": (re.compile(r"^\s*import\s+([\w\.\*]+)", re.MULTILINE),),
    "scala": (re.compile(r"^\s*import\s+([\w\.\*\{\}, ]+)", re.MULTILINE),),
    "swift": (re.compile(r"^\s*import\s+(\w+)", re.MULTILINE),),
    "csharp": (re.compile(r"^\s*using\s+(?:static\s+)?([\w\.]+)\s*;", re.MULTILINE),),
    "go": (
        re.compile(r"""^\s*import\s+(?:\w+\s+)?"([^"]+)\"""", re.MULTILINE),
        re.compile(r"""^\s+(?:\w+\s+)?"([^"]+)"\s*$""", re.MULTILINE),
    ),
    "rust": (re.compile(r"^\s*(?:pub\s+)?use\s+([\w:]+)", re.MULTILINE),),
    "c": (re.compile(r"""^\s*#\s*include\s+[<"]([^>"]+)[>"]""", re.MULTILINE),),
    "ruby": (re.compile(r"""^\s*require(?:_relative)?\s+['"]([^'"]+)['"]""", re.MULTILINE),),
    "php": (re.compile(r"^\s*use\s+([\w\\]+)\s*;", re.MULTILINE),),
}
_DEPENDENCY_PATTERNS["typescript"] = _DEPENDENCY_PATTERNS["javascript"]
_DEPENDENCY_PATTERNS["cpp"] = _DEPENDENCY_PATTERNS["c"]

_GO_IMPORT_BLOCK = re.compile(r"^import\s*\((.*?)^\)", re.MULTILINE | re.DOTALL)


def _extension(path: str) -> str:
    base = posixpath.basename(path.replace("\\", "/"))
    if "." not in base:
        return ""
    return base.rsplit(".", 1)[-1].lower()


def detect_language(path: str) -> Optional[str]:
    """Return the language for ``path`` based on its extension, or ``None``."""
    if not path:
        return None
    return EXTENSION_LANGUAGES.get(_extension(path))


def classify_kind(path: str) -> ChunkKind:
    """Classify a file path.

    README files (any extension) are ``readme``; ``.md``, ``.mdx``, ``.rst``
    and ``.txt`` files are ``documentation``; everything else is ``code``.
    """
    base = posixpath.basename(path.replace("\\", "/")).lower()
    if base.startswith("readme"):
        return ChunkKind.README
    if _extension(path) in DOCUMENTATION_EXTENSIONS:
        return ChunkKind.DOCUMENTATION
    return ChunkKind.CODE


def structure_pattern(language: Optional[str]) -> Optional[Pattern[str]]:
    if not language:
        return None
    return STRUCTURE_PATTERNS.get(language)


def extract_dependencies(text: str, language: Optional[str]) -> List[str]:
    """Collect dependency names referenced by ``text``.

    Parameters
    ----------
    text : str
        Source text to scan.
    language : str or None
        Language name as returned by :func:`detect_language`.

    Returns
    -------
    List[str]
        Unique dependency names in order of first appearance. Empty when the
        language has no known import syntax.
    """
    patterns = _DEPENDENCY_PATTERNS.get(language or "")
    if not patterns:
        return []

    haystack = text
    if language == "go":
        # Bare quoted lines only count inside an import block.
        blocks = "\n".join(m.group(1) for m in _GO_IMPORT_BLOCK.finditer(text))
        found = [m.group(1) for m in patterns[0].finditer(text)]
        found += [m.group(1) for m in patterns[1].finditer(blocks)]
    else:
        matches = [m for pattern in patterns for m in pattern.finditer(haystack)]
        matches.sort(key=lambda m: m.start())
        found = [m.group(1).strip() for m in matches]

    seen = set()
    deps: List[str] = []
    for dep in found:
        if dep and dep not in seen:
            seen.add(dep)
            deps.append(dep)
    return deps


__all__ = [
    "EXTENSION_LANGUAGES",
    "STRUCTURE_PATTERNS",
    "detect_language",
    "classify_kind",
    "structure_pattern",
    "extract_dependencies",
]
