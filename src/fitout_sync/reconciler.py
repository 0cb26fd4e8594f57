"""
Post-settle reconciliation of cached state with the record store.
"""

from __future__ import annotations

import logging
import os
from collections import OrderedDict
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from .keys import CollectionKey
from .query_cache import QueryCache

logger = logging.getLogger(__name__)

RESOLVED_ID_HISTORY = int(os.getenv("FITOUT_SYNC_RESOLVED_ID_HISTORY", "500"))


@dataclass
class _PendingCreate:
    temp_id: str
    keys: tuple[CollectionKey, ...]


class Reconciler:
    """
    Marks settled mutations' keys stale and swaps predicted records for
    confirmed ones.

    Predicted records are matched to confirmed records through the idempotency
    key supplied when the mutation was dispatched, never by list position.
    """

    def __init__(self, cache: QueryCache, history: int | None = None):
        self._cache = cache
        self._pending: dict[str, _PendingCreate] = {}
        # Oldest temp ids are forgotten first.
        self._resolved: OrderedDict[str, str] = OrderedDict()
        self._history = history or RESOLVED_ID_HISTORY

    def register(self, idempotency_key: str, temp_id: str, keys: Iterable[CollectionKey]) -> None:
        self._pending[idempotency_key] = _PendingCreate(temp_id=temp_id, keys=tuple(keys))

    def confirm(self, idempotency_key: str, confirmed: Any) -> str | None:
        """Replace the predicted record with the store's record; return the store id."""
        pending = self._pending.pop(idempotency_key, None)
        if pending is None:
            return None
        if not isinstance(confirmed, dict) or not confirmed.get("id"):
            logger.warning(
                "Store confirmed %s without a record id; keeping %s until refresh",
                idempotency_key,
                pending.temp_id,
            )
            return None

        real_id = str(confirmed["id"])
        self._remember(pending.temp_id, real_id)
        for key in pending.keys:
            current = self._cache.read(key)
            if not isinstance(current, list):
                continue
            if not any(isinstance(item, dict) and item.get("id") == pending.temp_id for item in current):
                continue
            self._cache.write(
                key,
                [
                    dict(confirmed) if isinstance(item, dict) and item.get("id") == pending.temp_id else item
                    for item in current
                ],
                optimistic=True,
            )
        return real_id

    def _remember(self, temp_id: str, real_id: str) -> None:
        self._resolved[temp_id] = real_id
        self._resolved.move_to_end(temp_id)
        while len(self._resolved) > self._history:
            self._resolved.popitem(last=False)

    def discard(self, idempotency_key: str) -> None:
        self._pending.pop(idempotency_key, None)

    def resolve_id(self, record_id: str) -> str:
        """Translate a temporary id handed out before confirmation into the store id."""
        return self._resolved.get(record_id, record_id)

    def settle(self, keys: Iterable[CollectionKey]) -> list[CollectionKey]:
        """Invalidate every affected key, whatever the mutation's outcome."""
        marked: list[CollectionKey] = []
        for key in keys:
            marked.extend(self._cache.invalidate(key))
        return marked

    def pending_count(self) -> int:
        return len(self._pending)
