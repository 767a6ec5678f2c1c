"""lodestar_rag.common.tokenisation

Token counting utilities.

Chunk windows are sized in characters, but ingestion reports an estimated
token count so operators can reason about embedding cost and context-window
usage. This module provides a small token-counting abstraction whose
concrete implementation is chosen via configuration.

Classes
-------
TokenCounter
    Minimal protocol defining the token-counting interface.
HeuristicTokenCounter
    Dependency-free approximate counter (characters per token).
TiktokenTokenCounter
    Exact counter backed by the ``tiktoken`` library.
HuggingFaceTokenCounter
    Counter backed by a Hugging Face tokenizer instance.

Functions
---------
create_token_counter
    Build a counter from a ``processing.token_counter`` configuration mapping.
count_tokens
    Sum token counts over several texts.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional, Protocol


class TokenCounter(Protocol):
    """A minimal interface for token-based sizing."""

    def count(self, text: str) -> int:
        """Return the number of tokens in ``text``."""


@dataclass(frozen=True)
class HeuristicTokenCounter:
    """Approximate token counter.

    Attributes
    ----------
    chars_per_token : int
        Approximate number of characters per token. Defaults to ``4``, the
        same ratio used to convert token budgets into chunk limits.
    """

    chars_per_token: int = 4

    def count(self, text: str) -> int:
        if not text:
            return 0
        cpt = max(1, int(self.chars_per_token))
        return max(1, -(-len(text) // cpt))


@dataclass(frozen=True)
class TiktokenTokenCounter:
    """Token counter backed by a ``tiktoken`` encoding."""

    encoding_name: str
    _enc: Any

    @classmethod
    def from_encoding_name(cls, encoding_name: str) -> "TiktokenTokenCounter":
        import tiktoken # type: ignore

        return cls(encoding_name=encoding_name, _enc=tiktoken.get_encoding(encoding_name))

    def count(self, text: str) -> int:
        if not text:
            return 0
        return len(self._enc.encode(text, disallowed_special=()))


@dataclass(frozen=True)
class HuggingFaceTokenCounter:
    """Token counter backed by a Hugging Face tokenizer.

    ``transformers`` is imported only by :meth:`from_pretrained`.
    """

    tokenizer: Any

    @classmethod
    def from_pretrained(cls, model_name: str) -> "HuggingFaceTokenCounter":
        from transformers import AutoTokenizer # type: ignore

        return cls(tokenizer=AutoTokenizer.from_pretrained(model_name))

    def count(self, text: str) -> int:
        if not text:
            return 0
        return len(self.tokenizer.encode(text, add_special_tokens=False))


def create_token_counter(cfg: Optional[Mapping[str, Any]] = None) -> TokenCounter:
    """Build a token counter from configuration.

    Parameters
    ----------
    cfg : Mapping[str, Any] or None
        Mapping with a ``kind`` discriminator: ``"heuristic"`` (default,
        optional ``chars_per_token``), ``"tiktoken"`` (``encoding``) or
        ``"huggingface"`` (``model_name``).

    Returns
    -------
    TokenCounter
        The configured counter.

    Raises
    ------
    ValueError
        If ``kind`` is not recognised.
    """
    cfg = dict(cfg or {})
    kind = str(cfg.get("kind", "heuristic")).lower()

    if kind == "heuristic":
        return HeuristicTokenCounter(chars_per_token=int(cfg.get("chars_per_token", 4)))
    if kind == "tiktoken":
        return TiktokenTokenCounter.from_encoding_name(cfg.get("encoding", "cl100k_base"))
    if kind in ("huggingface", "hf"):
        model_name = cfg.get("model_name")
        if not model_name:
            raise ValueError("huggingface token counter requires 'model_name'")
        return HuggingFaceTokenCounter.from_pretrained(model_name)

    raise ValueError(f"Unsupported token counter kind: {kind!r}")


def count_tokens(texts: Iterable[str], counter: Optional[TokenCounter] = None) -> int:
    counter = counter or HeuristicTokenCounter()
    return sum(counter.count(t) for t in texts)


__all__ = [
    "TokenCounter",
    "HeuristicTokenCounter",
    "TiktokenTokenCounter",
    "HuggingFaceTokenCounter",
    "create_token_counter",
    "count_tokens",
]
