"""lodestar_rag.common.errors

Error taxonomy shared across the Lodestar RAG stack.

Every error raised by this package derives from :class:`LodestarError`, which
carries a short machine-readable ``code`` and an optional ``details`` mapping
in addition to the human-readable message. Orchestration code (pipelines,
the HTTP layer) converts these into explicit result values rather than
letting them reach the host process.

Classes
-------
LodestarError
    Base class for all package errors.
ConfigurationError
    Invalid configuration (e.g. ``overlap_size >= max_chunk_size``). Fatal,
    never retried.
EmbeddingError
    Base class for embedding-provider failures.
RateLimitError
    The embedding provider rejected the call due to rate limiting. Retryable.
MalformedInputError
    The embedding provider rejected the input itself. Not retryable.
TransportError
    Network/transport failure talking to the embedding provider. Retryable.
VectorStoreError
    Failure talking to the similarity index. Retryable.
FetchError
    Failure acquiring source material.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional


class LodestarError(Exception):
    """Base class for Lodestar errors.

    Parameters
    ----------
    message : str
        Human-readable error description.
    code : str, optional
        Machine-readable error code. Defaults to ``"LODESTAR_ERROR"``.
    details : Mapping[str, Any] or None, optional
        Extra context useful for logging.
    """

    default_code = "LODESTAR_ERROR"

    def __init__(
            self,
            message: str,
            code: Optional[str] = None,
            details: Optional[Mapping[str, Any]] = None,
        ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = dict(details or {})

    def __str__(self) -> str:
        return self.message


class ConfigurationError(LodestarError):
    """Raised for invalid configuration values."""

    default_code = "CONFIG_ERROR"


class EmbeddingError(LodestarError):
    """Base class for embedding-provider failures."""

    default_code = "EMBEDDING_ERROR"


class RateLimitError(EmbeddingError):
    """The embedding provider is rate limiting requests."""

    default_code = "EMBEDDING_RATE_LIMITED"


class MalformedInputError(EmbeddingError):
    """The embedding provider cannot embed the given input."""

    default_code = "EMBEDDING_MALFORMED_INPUT"


class TransportError(EmbeddingError):
    """The embedding provider could not be reached."""

    default_code = "EMBEDDING_TRANSPORT"


class VectorStoreError(LodestarError):
    """Raised when a similarity-index operation fails."""

    default_code = "VECTOR_STORE_ERROR"


class FetchError(LodestarError):
    """Raised when source material cannot be acquired."""

    default_code = "FETCH_ERROR"


__all__ = [
    "LodestarError",
    "ConfigurationError",
    "EmbeddingError",
    "RateLimitError",
    "MalformedInputError",
    "TransportError",
    "VectorStoreError",
    "FetchError",
]
