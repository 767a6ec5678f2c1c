"""lodestar_rag.retrieval.embedder

Embedding interfaces and factories for the retrieval layer.

This module defines a small provider-agnostic interface for producing vector
embeddings from text, along with concrete implementations backed by
LlamaIndex embedding models. Provider failures are translated into the
package's typed embedding errors so orchestration code can decide what to
retry. A factory function is provided to construct an embedder
implementation from configuration.

Classes
-------
BaseEmbedder
    Abstract interface specifying the API used by the retrieval pipeline.
HashedTermEmbedding
    Deterministic, offline LlamaIndex embedding based on hashed term
    frequencies.
HashingEmbedder
    Embedder backed by :class:`HashedTermEmbedding`.
HuggingFaceEmbedder
    Embedder backed by a Hugging Face SentenceTransformer via LlamaIndex.
OpenAILikeEmbedder
    Embedder backed by an OpenAI-compatible HTTP API via LlamaIndex.

Functions
---------
prepare_text
    Normalise whitespace and truncate text before embedding.
create_embedder
    Create an embedder implementation from a configuration mapping.
"""

from __future__ import annotations

import hashlib
import logging
import math
import re
from abc import ABC, abstractmethod
from collections import Counter
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, TypeVar

import yaml
from llama_index.core.base.embeddings.base import BaseEmbedding as LlamaIndexBaseEmbedding
from llama_index.core.bridge.pydantic import Field

from lodestar_rag.common.errors import (
    EmbeddingError,
    MalformedInputError,
    RateLimitError,
    TransportError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_INPUT_CHARS = 8000
SENTENCE_CUT_FRACTION = 0.8
DEFAULT_HASH_DIMENSION = 384

_WHITESPACE_RE = re.compile(r"\s+")
_TERM_RE = re.compile(r"[A-Za-z0-9_]+")
_CAMEL_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"1", "true", "yes", "y", "on"}:
            return True
        if normalized in {"0", "false", "no", "n", "off"}:
            return False
    return bool(value)


def prepare_text(text: str, max_chars: int = MAX_INPUT_CHARS) -> str:
    """Normalise text before embedding.

    Whitespace runs are collapsed to single spaces. Text longer than
    ``max_chars`` is truncated, ending at the last sentence terminator when
    one falls in the final 20% of the allowed length.

    Raises
    ------
    MalformedInputError
        If ``text`` is not a string or is empty after normalisation.
    """
    if not isinstance(text, str):
        raise MalformedInputError(f"Cannot embed {type(text).__name__}; expected str")
    cleaned = _WHITESPACE_RE.sub(" ", text).strip()
    if not cleaned:
        raise MalformedInputError("Cannot embed empty text")
    if len(cleaned) <= max_chars:
        return cleaned

    truncated = cleaned[:max_chars]
    last_stop = max(truncated.rfind("."), truncated.rfind("!"), truncated.rfind("?"))
    if last_stop > max_chars * SENTENCE_CUT_FRACTION:
        truncated = truncated[: last_stop + 1]
    return truncated


def _status_code(exc: BaseException) -> Optional[int]:
    for holder in (exc, getattr(exc, "response", None)):
        code = getattr(holder, "status_code", None) or getattr(holder, "status", None)
        if isinstance(code, int):
            return code
    return None


def translate_error(exc: BaseException) -> EmbeddingError:
    """Map a provider exception onto the embedding error taxonomy."""
    if isinstance(exc, EmbeddingError):
        return exc
    message = str(exc) or type(exc).__name__
    details = {"exception": type(exc).__name__}
    if _status_code(exc) == 429 or "rate limit" in message.lower():
        return RateLimitError(message, details=details)
    if isinstance(exc, (ValueError, TypeError)):
        return MalformedInputError(message, details=details)
    return TransportError(message, details=details)


class BaseEmbedder(ABC):
    """Abstract interface for text embedding.

    Concrete implementations wrap a LlamaIndex embedding model and expose a
    small, consistent API used by the Lodestar retrieval pipeline. Every
    public method prepares its input with :func:`prepare_text` and raises
    only :class:`~lodestar_rag.common.errors.EmbeddingError` subclasses.
    """

    max_input_chars: int = MAX_INPUT_CHARS

    @abstractmethod
    def get_embedder(self) -> LlamaIndexBaseEmbedding:
        """Return the underlying LlamaIndex embedding instance."""

    @classmethod
    @abstractmethod
    def from_config_dict(cls, config: Dict[str, Any]) -> "BaseEmbedder":
        """Create an embedder from a configuration mapping.

        Raises
        ------
        KeyError
            If required configuration keys are missing.
        """

    @classmethod
    def from_config(cls, config_path: str) -> "BaseEmbedder":
        """Create an embedder from a YAML configuration file."""
        with open(config_path, "r") as f:
            cfg = yaml.safe_load(f) or {}
        return cls.from_config_dict(cfg)

    @property
    def dimension(self) -> Optional[int]:
        return None

    def _call(self, fn: Callable[[], T]) -> T:
        try:
            return fn()
        except EmbeddingError:
            raise
        except Exception as exc:
            raise translate_error(exc) from exc

    def embed(self, text: str) -> List[float]:
        """Embed a single document text."""
        prepared = prepare_text(text, self.max_input_chars)
        return list(self._call(lambda: self.get_embedder().get_text_embedding(prepared)))

    def embed_query(self, text: str) -> List[float]:
        """Embed a query string.

        Some models embed queries differently from documents (e.g. with an
        instruction prefix); LlamaIndex handles that in
        ``get_query_embedding``.
        """
        prepared = prepare_text(text, self.max_input_chars)
        return list(self._call(lambda: self.get_embedder().get_query_embedding(prepared)))

    def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        """Embed several texts, returning vectors in input order.

        Raises
        ------
        MalformedInputError
            If any text is empty after normalisation.
        """
        if not texts:
            return []
        prepared = [prepare_text(t, self.max_input_chars) for t in texts]
        vectors = self._call(lambda: self.get_embedder().get_text_embedding_batch(prepared))
        if len(vectors) != len(prepared):
            raise TransportError(
                f"Provider returned {len(vectors)} embeddings for {len(prepared)} inputs"
            )
        return [list(v) for v in vectors]

    def health_check(self) -> bool:
        try:
            self.embed("health check")
        except EmbeddingError as exc:
            logger.warning("Embedder health check failed: %s", exc)
            return False
        return True


def _terms(text: str) -> List[str]:
    terms: List[str] = []
    for token in _TERM_RE.findall(text):
        parts = [p for piece in token.split("_") for p in _CAMEL_RE.split(piece) if p]
        lowered = [p.lower() for p in parts]
        terms.extend(lowered)
        if len(lowered) > 1:
            terms.append("".join(lowered))
    return terms


def hashed_term_vector(text: str, dimension: int) -> List[float]:
    """Project term frequencies of ``text`` onto a ``dimension``-sized unit vector.

    Each term is hashed with BLAKE2b to a bucket and a sign; its weight is
    ``1 + log(count)``.
    """
    vec = [0.0] * dimension
    for term, count in Counter(_terms(text)).items():
        digest = hashlib.blake2b(term.encode("utf-8"), digest_size=8).digest()
        idx = int.from_bytes(digest[:4], "big") % dimension
        sign = 1.0 if (digest[4] & 1) == 0 else -1.0
        vec[idx] += sign * (1.0 + math.log(count))
    norm = math.sqrt(sum(v * v for v in vec))
    if norm == 0.0:
        return vec
    return [v / norm for v in vec]


class HashedTermEmbedding(LlamaIndexBaseEmbedding):
    """Offline LlamaIndex embedding using hashed term frequencies.

    Lexical rather than semantic, but deterministic and dependency-free,
    which makes it suitable for tests, demos and air-gapped indexing.
    """

    dimension: int = Field(default=DEFAULT_HASH_DIMENSION, gt=0, description="Vector size.")

    @classmethod
    def class_name(cls) -> str:
        return "HashedTermEmbedding"

    def _get_query_embedding(self, query: str) -> List[float]:
        return hashed_term_vector(query, self.dimension)

    async def _aget_query_embedding(self, query: str) -> List[float]:
        return self._get_query_embedding(query)

    def _get_text_embedding(self, text: str) -> List[float]:
        return hashed_term_vector(text, self.dimension)


class HashingEmbedder(BaseEmbedder):
    """Embedder backed by :class:`HashedTermEmbedding`.

    Parameters
    ----------
    dimension : int, optional
        Vector size. Defaults to ``384``.
    """

    def __init__(self, dimension: int = DEFAULT_HASH_DIMENSION):
        self.embedder = HashedTermEmbedding(
            dimension=int(dimension),
            model_name=f"hashed-term-{int(dimension)}",
        )

    def get_embedder(self) -> LlamaIndexBaseEmbedding:
        return self.embedder

    @property
    def dimension(self) -> Optional[int]:
        return self.embedder.dimension

    @classmethod
    def from_config_dict(cls, config: Dict[str, Any]) -> "HashingEmbedder":
        return cls(dimension=int(config.get("dimension", DEFAULT_HASH_DIMENSION)))


class HuggingFaceEmbedder(BaseEmbedder):
    """Embedder backed by a Hugging Face SentenceTransformer via LlamaIndex.

    This implementation wraps :class:`llama_index.embeddings.huggingface.HuggingFaceEmbedding`,
    imported lazily so the package does not require it unless configured.

    Parameters
    ----------
    model_name : str
        Name or path of the embedding model.
    device : str
        Device identifier (e.g., ``"cuda"``, ``"cpu"``, ``"mps"``).
    trust_remote_code : bool, optional
        Whether to allow custom model code from the Hugging Face Hub.
    query_instruction : str or None, optional
        Instruction prepended to queries by models that expect one.
    model_kwargs : dict[str, Any] or None, optional
        Additional keyword arguments forwarded to the underlying model.
    dimension : int or None, optional
        Expected vector size, used to create the index collection.
    """

    def __init__(
            self,
            model_name: str,
            *,
            device: str,
            trust_remote_code: bool = False,
            query_instruction: Optional[str] = None,
            model_kwargs: Optional[dict[str, Any]] = None,
            dimension: Optional[int] = None,
        ):
        from llama_index.embeddings.huggingface import HuggingFaceEmbedding

        self.embedder = HuggingFaceEmbedding(
            model_name=model_name,
            trust_remote_code=trust_remote_code,
            device=device,
            query_instruction=query_instruction,
            model_kwargs=model_kwargs or {},
        )
        self._dimension = dimension

    def get_embedder(self) -> LlamaIndexBaseEmbedding:
        return self.embedder

    @property
    def dimension(self) -> Optional[int]:
        return self._dimension

    @classmethod
    def from_config_dict(cls, config: Dict[str, Any]) -> "HuggingFaceEmbedder":
        """Create a Hugging Face embedder from a configuration mapping.

        Raises
        ------
        KeyError
            If ``model_name`` or ``device`` is missing.
        """
        return cls(
            model_name=config["model_name"],
            device=config["device"],
            trust_remote_code=_as_bool(config.get("trust_remote_code"), False),
            query_instruction=config.get("query_instruction"),
            model_kwargs=config.get("model_kwargs", {}),
            dimension=config.get("dimension"),
        )


class OpenAILikeEmbedder(BaseEmbedder):
    """Embedder backed by an OpenAI-compatible embedding API via LlamaIndex.

    This implementation wraps :class:`llama_index.embeddings.openai_like.OpenAILikeEmbedding`.
    Client-side retries are disabled by default (``max_retries=0``) because
    retrying is done by the ingestion and retrieval layers.

    Parameters
    ----------
    model_name : str
        Model identifier for the embedding endpoint.
    api_base : str
        Base URL for the OpenAI-compatible embedding API endpoint.
    api_key : str or None, optional
        API key sent with each request.
    model_kwargs : dict[str, Any] or None, optional
        Additional keyword arguments forwarded with each request.
    timeout : float, optional
        Request timeout in seconds.
    max_retries : int, optional
        Retries performed by the underlying client.
    embed_batch_size : int, optional
        Texts per provider request.
    dimension : int or None, optional
        Expected vector size, used to create the index collection.
    """

    def __init__(
            self,
            model_name: str,
            *,
            api_base: str,
            api_key: Optional[str] = None,
            model_kwargs: Optional[dict[str, Any]] = None,
            timeout: float = 60.0,
            max_retries: int = 0,
            embed_batch_size: int = 10,
            reuse_client: bool = True,
            dimension: Optional[int] = None,
        ):
        from llama_index.embeddings.openai_like import OpenAILikeEmbedding

        self.embedder = OpenAILikeEmbedding(
            model_name=model_name,
            api_base=api_base,
            api_key=api_key,
            additional_kwargs=model_kwargs or {},
            timeout=timeout,
            max_retries=max_retries,
            embed_batch_size=embed_batch_size,
            reuse_client=reuse_client,
        )
        self._dimension = dimension

    def get_embedder(self) -> LlamaIndexBaseEmbedding:
        return self.embedder

    @property
    def dimension(self) -> Optional[int]:
        return self._dimension

    @classmethod
    def from_config_dict(cls, config: Dict[str, Any]) -> "OpenAILikeEmbedder":
        """Create an OpenAI-compatible embedder from a configuration mapping.

        Raises
        ------
        KeyError
            If ``model_name`` or ``api_base`` is missing.
        """
        return cls(
            model_name=config["model_name"],
            api_base=config["api_base"],
            api_key=config.get("api_key"),
            model_kwargs=config.get("model_kwargs", {}),
            timeout=float(config.get("timeout", config.get("request_timeout", 60.0))),
            max_retries=int(config.get("max_retries", 0)),
            embed_batch_size=int(config.get("embed_batch_size", 10)),
            reuse_client=_as_bool(config.get("reuse_client"), True),
            dimension=config.get("dimension"),
        )


# ----------------- Factory helpers -----------------

def _get_embedder_kind(cfg: Mapping[str, Any]) -> str:
    """Return the first non-empty ``kind``/``type``/``provider``/``backend``/``impl`` value."""
    for key in ("kind", "type", "provider", "backend", "impl"):
        val = cfg.get(key)
        if isinstance(val, str) and val.strip():
            return val.strip()
    return ""


def _normalize_embedder_kind(kind: str) -> str:
    """Normalise an embedder kind string to a registry key.

    CamelCase becomes snake_case, hyphens and spaces become underscores, and
    ``OpenAILike`` spellings collapse to ``"openai_like"``.
    """
    k = kind.strip()
    if not k:
        return ""

    out: list[str] = []
    prev = ""
    for ch in k:
        if prev and prev.islower() and ch.isupper():
            out.append("_")
        out.append(ch)
        prev = ch

    k2 = "".join(out).replace("-", "_").replace(" ", "_")
    while "__" in k2:
        k2 = k2.replace("__", "_")
    k2 = k2.lower()

    for alias in ("openailike", "open_ailike", "open_ai_like"):
        k2 = k2.replace(alias, "openai_like")
    return k2


def create_embedder(config: Mapping[str, Any]) -> BaseEmbedder:
    """Create an embedder implementation from a configuration mapping.

    The concrete implementation is selected by a discriminator field (one of
    ``kind``, ``type``, ``provider``, ``backend`` or ``impl``). Without a
    discriminator the offline :class:`HashingEmbedder` is used.

    Parameters
    ----------
    config : Mapping[str, Any]
        Configuration mapping used to construct the embedder.

    Returns
    -------
    BaseEmbedder
        An initialised embedder implementation.

    Raises
    ------
    TypeError
        If ``config`` is not a mapping.
    ValueError
        If the discriminator selects an unsupported implementation.
    """
    if not isinstance(config, Mapping):
        raise TypeError(f"create_embedder expected a mapping/dict, got {type(config)}")

    kind_raw = _get_embedder_kind(config)
    kind = _normalize_embedder_kind(kind_raw)

    registry = {
        "hashing": HashingEmbedder,
        "hash": HashingEmbedder,
        "huggingface": HuggingFaceEmbedder,
        "hugging_face": HuggingFaceEmbedder,
        "hf": HuggingFaceEmbedder,
        "openai_like": OpenAILikeEmbedder,
        "openai": OpenAILikeEmbedder,
    }

    cls = registry.get(kind) if kind else HashingEmbedder
    if cls is None:
        raise ValueError(
            f"Unknown embedder kind '{kind_raw}' (normalized to '{kind}'). "
            f"Supported kinds: {sorted(registry.keys())}."
        )
    return cls.from_config_dict(dict(config))


__all__ = [
    "BaseEmbedder",
    "HashedTermEmbedding",
    "HashingEmbedder",
    "HuggingFaceEmbedder",
    "OpenAILikeEmbedder",
    "prepare_text",
    "translate_error",
    "hashed_term_vector",
    "create_embedder",
]
