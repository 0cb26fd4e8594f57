"""
Application-session wiring of cache, coordinator and record store.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from .coordinator import Mutation, MutationCoordinator, MutationOutcome
from .feedback import FeedbackSink, LoggingFeedback
from .keys import CollectionKey
from .query_cache import QueryCache
from .reconciler import Reconciler
from .store import RecordStore, StoreError

logger = logging.getLogger(__name__)

Loader = Callable[[], Awaitable[Any]]


class SyncSession:
    """
    Owns one query cache and the coordinator writing through it.

    Everything that reads or mutates cached collections receives the session
    explicitly; there is no module-level cache.
    """

    def __init__(
        self,
        store: RecordStore,
        cache: QueryCache | None = None,
        feedback: FeedbackSink | None = None,
    ):
        self.store = store
        self.cache = cache or QueryCache()
        self.feedback = feedback or LoggingFeedback()
        self.reconciler = Reconciler(self.cache)
        self.coordinator = MutationCoordinator(self.cache, self.feedback, self.reconciler)
        self._inflight_loads: dict[CollectionKey, tuple[tuple[int, int, int], asyncio.Future[Any]]] = {}
        self._stale_served = 0

    async def query(self, key: CollectionKey, loader: Loader, *, force: bool = False) -> Any:
        """Return cached data for `key`, loading it first when stale.

        Concurrent loads of the same key share one store call. When the store
        is unreachable and something is cached, the stale value is returned.
        """
        if not force and not self.cache.is_stale(key):
            return self.cache.read(key)

        inflight = self._inflight_loads.get(key)
        if inflight is None or inflight[0] != self.cache.generation(key):
            generation = self.cache.generation(key)
            future = asyncio.ensure_future(self._load(key, loader, generation))
            inflight = (generation, future)
            self._inflight_loads[key] = inflight
            future.add_done_callback(lambda f, k=key: self._forget_load(k, f))

        try:
            return await asyncio.shield(inflight[1])
        except StoreError as exc:
            cached = self.cache.read(key)
            if cached is None:
                raise
            self._stale_served += 1
            logger.warning("Returning stale cache for %s because the store failed: %s", key, exc)
            return cached

    async def _load(self, key: CollectionKey, loader: Loader, generation: tuple[int, int, int]) -> Any:
        data = await loader()
        if self.cache.generation(key) != generation:
            # A mutation or invalidation touched the key while the store call was out.
            logger.debug("Discarding load of %s that started before a write", key)
            return data
        self.cache.write(key, data)
        return data

    def _forget_load(self, key: CollectionKey, future: asyncio.Future[Any]) -> None:
        current = self._inflight_loads.get(key)
        if current is not None and current[1] is future:
            del self._inflight_loads[key]

    def dispatch(self, mutation: Mutation) -> asyncio.Task[MutationOutcome]:
        return self.coordinator.dispatch(mutation)

    async def execute(self, mutation: Mutation) -> MutationOutcome:
        return await self.coordinator.execute(mutation)

    async def poll(
        self,
        key: CollectionKey,
        loader: Loader,
        interval_seconds: float,
        stop: asyncio.Event,
    ) -> None:
        """Refresh `key` every `interval_seconds` until `stop` is set."""
        while not stop.is_set():
            try:
                await self.query(key, loader, force=True)
            except StoreError as exc:
                logger.warning("Polling %s failed: %s", key, exc)
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval_seconds)
            except asyncio.TimeoutError:
                continue

    def invalidate_all(self) -> list[CollectionKey]:
        return self.cache.invalidate_all()

    def get_health(self) -> dict[str, Any]:
        health: dict[str, Any] = {
            "cache": self.cache.get_health(),
            "mutations": self.coordinator.get_health(),
            "staleServed": self._stale_served,
            "loadsInFlight": len(self._inflight_loads),
        }
        store_health = getattr(self.store, "get_health", None)
        if callable(store_health):
            health["store"] = store_health()
        return health
