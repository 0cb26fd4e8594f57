"""
Process-local query cache with per-kind freshness windows.

Holds the last known value for each collection key. The cache never fetches on
its own: callers check `is_stale()` and refresh from the record store.
"""

from __future__ import annotations

import copy
import logging
import os
import time
from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import Any

from .keys import STALE_SECONDS, CollectionKey

logger = logging.getLogger(__name__)

DEFAULT_STALE_SECONDS = float(os.getenv("FITOUT_SYNC_DEFAULT_STALE_SECONDS", "60"))
GC_SECONDS = float(os.getenv("FITOUT_SYNC_GC_SECONDS", "300"))


@dataclass
class CacheEntry:
    """One cached value and its freshness bookkeeping."""

    data: Any
    updated_at: float = 0.0
    last_read_at: float = 0.0
    invalidated: bool = False
    optimistic: bool = False


class QueryCache:
    """
    Keyed store of last-known-good collection values.

    Reads and writes are synchronous; each write replaces the whole entry.
    """

    def __init__(
        self,
        stale_seconds: Mapping[str, float] | None = None,
        default_stale_seconds: float | None = None,
        gc_seconds: float | None = None,
    ):
        self._entries: dict[CollectionKey, CacheEntry] = {}
        self._stale_seconds = dict(STALE_SECONDS if stale_seconds is None else stale_seconds)
        self._default_stale_seconds = (
            DEFAULT_STALE_SECONDS if default_stale_seconds is None else default_stale_seconds
        )
        self._gc_seconds = GC_SECONDS if gc_seconds is None else gc_seconds
        self._invalidation_count = 0
        self._generations: dict[CollectionKey, int] = {}
        self._global_generation = 0

    def stale_seconds_for(self, key: CollectionKey) -> float:
        return self._stale_seconds.get(key.kind, self._default_stale_seconds)

    def read(self, key: CollectionKey) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        entry.last_read_at = time.time()
        return entry.data

    def entry(self, key: CollectionKey) -> CacheEntry | None:
        return self._entries.get(key)

    def write(self, key: CollectionKey, data: Any, *, optimistic: bool = False) -> None:
        if key.is_wildcard:
            raise ValueError(f"cannot write to wildcard key {key}")
        now = time.time()
        previous = self._entries.get(key)
        self._entries[key] = CacheEntry(
            data=data,
            updated_at=now,
            last_read_at=previous.last_read_at if previous else now,
            # An optimistic write keeps the entry's freshness verdict; only
            # confirmed data clears an invalidation.
            invalidated=previous.invalidated if (optimistic and previous) else False,
            optimistic=optimistic,
        )

    def remove(self, key: CollectionKey) -> None:
        self._entries.pop(key, None)

    def contains(self, key: CollectionKey) -> bool:
        return key in self._entries

    def keys(self) -> list[CollectionKey]:
        return list(self._entries)

    def invalidate(self, key: CollectionKey) -> list[CollectionKey]:
        """Mark the entry (or every entry a wildcard covers) as needing refresh."""
        marked: list[CollectionKey] = []
        for existing, entry in self._entries.items():
            if key.covers(existing):
                entry.invalidated = True
                marked.append(existing)
        self.bump(key)
        self._invalidation_count += 1
        logger.debug("Invalidated %s (%d entries)", key, len(marked))
        return marked

    def invalidate_all(self) -> list[CollectionKey]:
        for entry in self._entries.values():
            entry.invalidated = True
        self._global_generation += 1
        self._invalidation_count += 1
        return list(self._entries)

    def generation(self, key: CollectionKey) -> tuple[int, int, int]:
        """Opaque token that changes whenever `key` is mutated or invalidated.

        Loaders capture it before calling the store and compare it on landing;
        a changed token means the loaded rows may predate a write.
        """
        return (
            self._generations.get(key, 0),
            self._generations.get(CollectionKey(key.kind), 0),
            self._global_generation,
        )

    def bump(self, key: CollectionKey) -> None:
        self._generations[key] = self._generations.get(key, 0) + 1

    def is_stale(self, key: CollectionKey) -> bool:
        entry = self._entries.get(key)
        if entry is None or entry.invalidated:
            return True
        return time.time() - entry.updated_at > self.stale_seconds_for(key)

    def snapshot(self, key: CollectionKey) -> CacheEntry | None:
        """Capture the entry verbatim; None records that the key was absent."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        return replace(entry, data=copy.deepcopy(entry.data))

    def restore(self, key: CollectionKey, snapshot: CacheEntry | None) -> None:
        if snapshot is None:
            self._entries.pop(key, None)
            return
        self._entries[key] = replace(snapshot, data=copy.deepcopy(snapshot.data))

    def collect_garbage(self) -> list[CollectionKey]:
        """Drop entries nobody has read within the garbage-collection window."""
        cutoff = time.time() - self._gc_seconds
        dropped = [key for key, entry in self._entries.items() if entry.last_read_at < cutoff]
        for key in dropped:
            del self._entries[key]
        if dropped:
            logger.debug("Garbage-collected %d cache entries", len(dropped))
        return dropped

    def clear(self) -> None:
        self._entries.clear()

    def get_health(self) -> dict[str, Any]:
        return {
            "entries": len(self._entries),
            "staleEntries": sum(1 for key in self._entries if self.is_stale(key)),
            "optimisticEntries": sum(1 for e in self._entries.values() if e.optimistic),
            "invalidations": self._invalidation_count,
            "defaultStaleSeconds": self._default_stale_seconds,
            "gcSeconds": self._gc_seconds,
        }
