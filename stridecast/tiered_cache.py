from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from .errors import ExternalLookupError
from .storage import read_named_json, safe_name, write_named_json


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheKey:
    """Location of one cache entry: partition directories plus a file name."""

    partition: tuple[str, ...]
    name: str

    @classmethod
    def of(cls, *segments: Any) -> "CacheKey":
        parts = [safe_name(segment) for segment in segments]
        if not parts:
            raise ValueError("CacheKey needs at least one segment.")
        return cls(partition=tuple(parts[:-1]), name=parts[-1])

    def as_string(self) -> str:
        return "/".join((*self.partition, self.name))


class TieredCache:
    """Memory, then disk, then a caller-supplied fetch.

    Entries never expire: once a payload reaches disk it is served as-is.
    Nothing is cached when the fetch fails.
    """

    def __init__(self, root: Path, namespace: str, *, compress: bool = False):
        self.namespace = safe_name(namespace)
        self.directory = root / self.namespace
        self.compress = compress
        self._memory: dict[str, Any] = {}
        self.stats = {"memory_hits": 0, "disk_hits": 0, "fetches": 0}

    def _entry_dir(self, key: CacheKey) -> Path:
        return self.directory.joinpath(*key.partition)

    def get(self, key: CacheKey) -> Any | None:
        memory_key = key.as_string()
        if memory_key in self._memory:
            self.stats["memory_hits"] += 1
            return self._memory[memory_key]

        payload = read_named_json(self._entry_dir(key), key.name)
        if payload is None:
            return None
        self.stats["disk_hits"] += 1
        self._memory[memory_key] = payload
        return payload

    def resolve(self, key: CacheKey, fetch_fn: Callable[[], Any]) -> Any:
        cached = self.get(key)
        if cached is not None:
            return cached

        self.stats["fetches"] += 1
        try:
            payload = fetch_fn()
        except ExternalLookupError:
            raise
        except Exception as exc:
            raise ExternalLookupError(f"{self.namespace} lookup for {key.as_string()} failed: {exc}") from exc
        if payload is None:
            raise ExternalLookupError(f"{self.namespace} lookup for {key.as_string()} returned no data.")

        self.put(key, payload)
        return payload

    def put(self, key: CacheKey, payload: Any) -> None:
        try:
            write_named_json(self._entry_dir(key), key.name, payload, compressed=self.compress)
        except OSError as exc:
            logger.warning("Could not persist %s cache entry %s: %s", self.namespace, key.as_string(), exc)
        self._memory[key.as_string()] = payload

    def clear_memory(self) -> None:
        self._memory.clear()
