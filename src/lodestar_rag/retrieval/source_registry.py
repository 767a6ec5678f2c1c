"""lodestar_rag.retrieval.source_registry

Persistent record of indexed sources.

The registry is a small JSON file (``.lodestar/sources.json`` by default)
listing every source that has been ingested, when, how many chunks it
produced and whether the last ingestion succeeded. It backs the
list-sources and delete-source operations.

Classes
-------
SourceRegistry
    JSON-file backed registry of :class:`~lodestar_rag.common.schemas.SourceInfo`.

Functions
---------
source_id_for
    Short stable identifier for a source URL.
detect_source_kind
    Classify a source URL as ``github``, ``local`` or ``documentation``.
"""

from __future__ import annotations

import dataclasses
import hashlib
import json
import logging
import os
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from lodestar_rag.common.schemas import SourceInfo

logger = logging.getLogger(__name__)

DEFAULT_REGISTRY_PATH = ".lodestar/sources.json"
SOURCE_ID_LENGTH = 12


def source_id_for(url: str) -> str:
    return hashlib.md5(url.encode("utf-8")).hexdigest()[:SOURCE_ID_LENGTH]


def detect_source_kind(url: str) -> str:
    if "github.com" in url:
        return "github"
    if url.startswith("file://") or "://" not in url:
        return "local"
    return "documentation"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


class SourceRegistry:
    """JSON-file registry of indexed sources.

    Reads are served from an in-memory copy loaded on construction; every
    mutation rewrites the file atomically.

    Parameters
    ----------
    path : str or Path, optional
        Location of the registry file. Parent directories are created on
        first write.
    """

    def __init__(self, path: str | Path = DEFAULT_REGISTRY_PATH):
        self.path = Path(path).expanduser()
        self._lock = threading.Lock()
        self._sources: Dict[str, SourceInfo] = self._load()

    def _load(self) -> Dict[str, SourceInfo]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable source registry %s: %s", self.path, exc)
            return {}

        field_names = {f.name for f in dataclasses.fields(SourceInfo)}
        sources: Dict[str, SourceInfo] = {}
        for entry in data.get("sources", []):
            info = SourceInfo(**{k: v for k, v in entry.items() if k in field_names})
            sources[info.id] = info
        return sources

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"sources": [dataclasses.asdict(s) for s in self._sources.values()]}
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".sources-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
            os.replace(tmp, self.path)
        except OSError:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def upsert(self, info: SourceInfo) -> SourceInfo:
        with self._lock:
            self._sources[info.id] = info
            self._save()
        return info

    def get(self, source_id: str) -> Optional[SourceInfo]:
        with self._lock:
            return self._sources.get(source_id)

    def find_by_url(self, url: str) -> Optional[SourceInfo]:
        return self.get(source_id_for(url))

    def remove(self, source_id: str) -> Optional[SourceInfo]:
        with self._lock:
            removed = self._sources.pop(source_id, None)
            if removed is not None:
                self._save()
        return removed

    def all(self) -> List[SourceInfo]:
        with self._lock:
            return sorted(self._sources.values(), key=lambda s: s.indexed_at or "", reverse=True)


__all__ = [
    "SourceRegistry",
    "source_id_for",
    "detect_source_kind",
    "utc_now",
    "DEFAULT_REGISTRY_PATH",
]
