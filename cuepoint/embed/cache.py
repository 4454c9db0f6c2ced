"""
cuepoint.embed.cache - Embedding cache stores.

Embeddings for a fixed text and model never change, so entries are written
once and never expire. Keys address values independently; concurrent runs
need no locking beyond atomic writes.
"""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Protocol

from cuepoint.io import read_json, write_json

logger = logging.getLogger(__name__)


def embedding_cache_key(text: str, model: str) -> str:
    """Content-addressed cache key for a text under a given model."""
    digest = hashlib.sha256(text.encode("utf-8")).hexdigest()
    return f"embedding:{model}:{digest}"


class EmbeddingCache(Protocol):
    """Key-value store for vectors with permanent retention."""

    def get(self, key: str) -> list[float] | None: ...

    def set(self, key: str, vector: list[float]) -> None: ...

    def get_many(self, keys: Sequence[str]) -> list[list[float] | None]: ...


class InMemoryEmbeddingCache:
    """Process-local cache, mainly for tests and single runs."""

    def __init__(self) -> None:
        self._store: dict[str, list[float]] = {}

    def get(self, key: str) -> list[float] | None:
        return self._store.get(key)

    def set(self, key: str, vector: list[float]) -> None:
        self._store[key] = list(vector)

    def get_many(self, keys: Sequence[str]) -> list[list[float] | None]:
        return [self._store.get(k) for k in keys]

    def __len__(self) -> int:
        return len(self._store)


class FileEmbeddingCache:
    """On-disk cache storing one JSON file per key.

    Files are written atomically, so several pipeline runs can share a cache
    directory. Batch lookups are issued concurrently on a small thread pool.
    """

    def __init__(self, cache_dir: Path, max_workers: int = 8) -> None:
        self.cache_dir = cache_dir
        self.max_workers = max_workers
        self.cache_dir.mkdir(parents=True, exist_ok=True)

    def _path_for(self, key: str) -> Path:
        name = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return self.cache_dir / name[:2] / f"{name}.json"

    def get(self, key: str) -> list[float] | None:
        path = self._path_for(key)
        if not path.exists():
            return None
        try:
            data = read_json(path)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable cache entry %s: %s", path, e)
            return None
        if data.get("key") != key:
            return None
        return data["vector"]

    def set(self, key: str, vector: list[float]) -> None:
        write_json(self._path_for(key), {"key": key, "vector": list(vector)}, indent=None)

    def get_many(self, keys: Sequence[str]) -> list[list[float] | None]:
        if len(keys) <= 1:
            return [self.get(k) for k in keys]
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            return list(pool.map(self.get, keys))
