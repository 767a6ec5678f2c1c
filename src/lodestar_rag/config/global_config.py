"""lodestar_rag.config.global_config

Global configuration loader and accessors.

This module defines a lightweight wrapper around a raw YAML configuration
dictionary, providing validated, cached access to the configuration sections
used across the Lodestar pipeline. Every section except ``embedder`` is
optional and falls back to defaults.

Environment variables of the form ``${VAR}`` are expanded recursively in all
string values at load time.

Classes
-------
GlobalConfig
    Loader and accessor for global project configuration.
"""

import os
import yaml
from pathlib import Path
from functools import cached_property

from lodestar_rag.common.errors import ConfigurationError
from lodestar_rag.common.schemas import ChunkLimits, RetrievalStrategy

DEFAULT_MAX_CHUNK_SIZE = 2000


def _expand_env(obj):
    """Recursively expand ``${VAR}`` environment references in strings.

    Dictionaries and lists are walked; other types are returned unchanged.
    """
    if isinstance(obj, dict):
        return {k: _expand_env(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_expand_env(v) for v in obj]
    if isinstance(obj, str):
        return os.path.expandvars(obj)
    return obj


def _section(raw: dict, name: str) -> dict:
    value = raw.get(name)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise TypeError(f"'{name}' must be a mapping, got {type(value).__name__}.")
    return value


class GlobalConfig:
    """Loader and accessor for global project configuration.

    Parameters
    ----------
    raw : dict
        Raw configuration data as loaded from a YAML file.
    config_path : Path or None, optional
        Absolute path of the loaded file, used to resolve relative paths.
    """

    def __init__(
            self,
            raw: dict,
            config_path: Path | None = None,
        ):
        self.raw = raw or {}
        self.config_path = config_path

    @classmethod
    def load(
            cls,
            path: str | Path,
        ) -> "GlobalConfig":
        """Load configuration from a YAML file.

        Parameters
        ----------
        path : str or Path
            Path to the YAML configuration file.

        Returns
        -------
        GlobalConfig
            An instance initialised with the loaded and environment-expanded data.
        """
        cfg_path = Path(path).expanduser().resolve()
        with cfg_path.open("r") as f:
            data = yaml.safe_load(f) or {}
        data = _expand_env(data)
        return cls(data, config_path=cfg_path)

    def resolve_path(self, value: str | Path) -> Path:
        """Resolve ``value`` relative to the config file's directory."""
        p = Path(value).expanduser()
        if p.is_absolute() or self.config_path is None:
            return p
        return (self.config_path.parent / p).resolve()

    @cached_property
    def embedder(self) -> dict:
        """Return the embedder configuration section.

        Defaults to the offline hashing embedder when absent.
        """
        section = _section(self.raw, "embedder")
        return section or {"kind": "hashing"}

    @cached_property
    def vector_store(self) -> dict:
        """Return the vector store configuration section.

        Defaults to a Qdrant server on ``localhost:6333``.
        """
        return _section(self.raw, "vector_store") or {"kind": "qdrant"}

    @cached_property
    def processing(self) -> dict:
        """Return the chunking/ingestion section (``processing``)."""
        return _section(self.raw, "processing")

    @cached_property
    def chunk_limits(self) -> ChunkLimits:
        """Chunk limits derived from ``processing``.

        ``processing.tokens_per_chunk`` takes precedence and is converted
        with :meth:`ChunkLimits.from_token_budget`; otherwise
        ``processing.max_chunk_size`` and ``processing.overlap_size`` are
        used.

        Raises
        ------
        ConfigurationError
            If the limits are inconsistent.
        """
        section = self.processing
        tokens = section.get("tokens_per_chunk")
        if tokens is not None:
            return ChunkLimits.from_token_budget(int(tokens))
        overlap = section.get("overlap_size")
        return ChunkLimits(
            max_chunk_size=int(section.get("max_chunk_size", DEFAULT_MAX_CHUNK_SIZE)),
            overlap_size=None if overlap is None else int(overlap),
        )

    @cached_property
    def retrieval(self) -> dict:
        """Return the retrieval section, validating its strategy and threshold.

        Raises
        ------
        ConfigurationError
            If ``strategy`` is unknown or ``threshold`` is outside ``[0, 1]``.
        """
        section = dict(_section(self.raw, "retrieval"))
        strategy = section.get("strategy", RetrievalStrategy.BALANCED.value)
        try:
            section["strategy"] = RetrievalStrategy(strategy)
        except ValueError as exc:
            raise ConfigurationError(f"Unknown retrieval strategy {strategy!r}.") from exc
        threshold = section.get("threshold")
        if threshold is not None and not 0.0 <= float(threshold) <= 1.0:
            raise ConfigurationError(f"'retrieval.threshold' must be in [0, 1], got {threshold}.")
        return section

    @cached_property
    def reranker(self) -> dict:
        return _section(self.raw, "reranker")

    @cached_property
    def embedding_cache(self) -> dict:
        return _section(self.raw, "embedding_cache")

    @cached_property
    def retry(self) -> dict:
        return _section(self.raw, "retry")

    @cached_property
    def github(self) -> dict:
        """Return the GitHub section (``token``, ``api_url``, ``raw_url``)."""
        return _section(self.raw, "github")

    @cached_property
    def registry_path(self) -> Path:
        """Location of the source registry file."""
        section = _section(self.raw, "registry")
        return self.resolve_path(section.get("path", ".lodestar/sources.json"))

    @cached_property
    def logging(self) -> dict:
        """Return the logging section, defaulting ``level`` to ``INFO``."""
        section = dict(_section(self.raw, "logging"))
        section.setdefault("level", "INFO")
        return section
