"""lodestar_rag

Lodestar RAG system package.

This package contains the building blocks for a retrieval-augmented
generation backend over code repositories and documentation: configuration,
chunking, embedding, indexing, ranked retrieval, ingestion orchestration and
an HTTP API.

Attributes
----------
__version__ : str
    Package version string. Defaults to ``"0.0.0-dev"`` when package metadata is
    unavailable.

Modules
-------
config
    Global configuration loader and cached accessors.
app
    Application container, HTTP API and result formatting.
pipelines
    Ingestion orchestration (fetch → chunk → embed → index).
retrieval
    Chunking, embedding, vector stores, fetchers and ranking.
common
    Shared schemas, errors, retries and token counting.

Exports
-------
GlobalConfig
    Global configuration loader and accessor.
LodestarContainer
    Cached runtime component container for applications.
build_container
    Factory function to construct a configured :class:`~lodestar_rag.app.container.LodestarContainer`.
Chunk
    A retrievable unit of a source document.
RetrievalQuery
    An immutable retrieval request.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("lodestar-rag")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

from .config import GlobalConfig
from .app.container import LodestarContainer, build_container
from .common import Chunk, RetrievalQuery

__all__ = [
    "__version__",
    "GlobalConfig",
    "LodestarContainer",
    "build_container",
    "Chunk",
    "RetrievalQuery",
]
