"""
Optimistic mutation coordinator.

A mutation runs in three phases:

1. snapshot every key it updates and write the predicted values, all within
   the caller's turn of the event loop;
2. await the record store (the only suspension point);
3. on failure restore this mutation's own snapshots, emit feedback, then
   invalidate every affected key regardless of outcome.

Mutations on overlapping keys are not serialized. A later mutation builds its
prediction on whatever the cache shows, and the last one to settle decides
what the cache shows until the post-settle refresh.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import uuid
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from .feedback import FeedbackSink, LoggingFeedback
from .keys import CollectionKey
from .query_cache import CacheEntry, QueryCache
from .reconciler import Reconciler
from .result import Err, Ok, Result
from .updaters import Updater

logger = logging.getLogger(__name__)

TEMP_ID_PREFIX = "temp-"


class MutationKind(str, enum.Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    REORDER = "reorder"
    BULK = "bulk"


@dataclass
class Mutation:
    """One logical write and how it should look in the cache meanwhile."""

    name: str
    kind: MutationKind
    remote: Callable[[], Awaitable[Result[Any]]]
    failure_message: str
    updates: Mapping[CollectionKey, Updater] = field(default_factory=dict)
    invalidates: tuple[CollectionKey, ...] = ()
    success_message: str | Callable[[Any], str] | None = None
    idempotency_key: str | None = None
    temp_id: str | None = None

    def affected_keys(self) -> tuple[CollectionKey, ...]:
        keys: list[CollectionKey] = []
        for key in (*self.updates, *self.invalidates):
            if key not in keys:
                keys.append(key)
        return tuple(keys)


@dataclass
class PendingMutation:
    mutation: Mutation
    snapshots: dict[CollectionKey, CacheEntry | None]


@dataclass
class MutationOutcome:
    name: str
    ok: bool
    value: Any = None
    error: str | None = None
    message: str | None = None
    invalidated: tuple[CollectionKey, ...] = ()
    resolved_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "mutation": self.name,
            "value": self.value,
            "error": self.error,
            "message": self.message,
            "invalidated": [str(key) for key in self.invalidated],
            "resolvedId": self.resolved_id,
        }


def new_temp_id() -> str:
    return f"{TEMP_ID_PREFIX}{uuid.uuid4().hex}"


def is_temp_id(record_id: str | None) -> bool:
    return bool(record_id) and str(record_id).startswith(TEMP_ID_PREFIX)


class MutationCoordinator:
    """Runs mutations against the record store with optimistic cache writes."""

    def __init__(
        self,
        cache: QueryCache,
        feedback: FeedbackSink | None = None,
        reconciler: Reconciler | None = None,
    ):
        self._cache = cache
        self._feedback = feedback or LoggingFeedback()
        self._reconciler = reconciler or Reconciler(cache)
        self._in_flight = 0
        self._settled = 0
        self._failed = 0

    @property
    def reconciler(self) -> Reconciler:
        return self._reconciler

    def dispatch(self, mutation: Mutation) -> asyncio.Task[MutationOutcome]:
        """Apply the prediction now and schedule the remote call.

        Must be called from inside a running event loop. The returned task
        never raises for store failures; it resolves to a `MutationOutcome`.
        """
        loop = asyncio.get_running_loop()
        pending = self._begin(mutation)
        return loop.create_task(self._complete(pending), name=f"mutation:{mutation.name}")

    async def execute(self, mutation: Mutation) -> MutationOutcome:
        return await self.dispatch(mutation)

    def _begin(self, mutation: Mutation) -> PendingMutation:
        snapshots = {key: self._cache.snapshot(key) for key in mutation.updates}
        # Loads already in flight for these keys must not land over the prediction.
        for key in mutation.affected_keys():
            self._cache.bump(key)
        for key, updater in mutation.updates.items():
            predicted = updater(self._cache.read(key))
            if predicted is not None:
                self._cache.write(key, predicted, optimistic=True)
        if mutation.idempotency_key and mutation.temp_id:
            self._reconciler.register(mutation.idempotency_key, mutation.temp_id, mutation.updates)
        self._in_flight += 1
        return PendingMutation(mutation=mutation, snapshots=snapshots)

    async def _complete(self, pending: PendingMutation) -> MutationOutcome:
        mutation = pending.mutation
        outcome = MutationOutcome(name=mutation.name, ok=False)
        try:
            try:
                result = await mutation.remote()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("Mutation %s failed in transport: %s", mutation.name, exc)
                result = Err("")

            if isinstance(result, Ok):
                outcome = self._on_success(mutation, result.value)
            else:
                outcome = self._on_failure(pending, result)
        finally:
            self._in_flight -= 1
            self._settled += 1
            outcome.invalidated = self._settle(mutation)
        return outcome

    def _on_success(self, mutation: Mutation, value: Any) -> MutationOutcome:
        message = mutation.success_message
        if callable(message):
            try:
                message = message(value)
            except Exception:
                logger.exception("Success message for %s could not be built", mutation.name)
                message = None
        if message:
            self._emit(self._feedback.notify_success, message)

        resolved_id = None
        if mutation.idempotency_key:
            try:
                resolved_id = self._reconciler.confirm(mutation.idempotency_key, value)
            except Exception:
                logger.exception("Could not reconcile %s; waiting for refresh", mutation.name)
        return MutationOutcome(
            name=mutation.name, ok=True, value=value, message=message or None, resolved_id=resolved_id
        )

    def _on_failure(self, pending: PendingMutation, result: Result[Any]) -> MutationOutcome:
        mutation = pending.mutation
        self._failed += 1
        for key, snapshot in pending.snapshots.items():
            self._cache.restore(key, snapshot)
        if mutation.idempotency_key:
            self._reconciler.discard(mutation.idempotency_key)

        reason = result.error if isinstance(result, Err) else ""
        message = reason or mutation.failure_message
        logger.warning("Rolled back %s: %s", mutation.name, message)
        self._emit(self._feedback.notify_failure, message)
        return MutationOutcome(name=mutation.name, ok=False, error=message, message=message)

    def _settle(self, mutation: Mutation) -> tuple[CollectionKey, ...]:
        keys = mutation.affected_keys()
        self._reconciler.settle(keys)
        return keys

    @staticmethod
    def _emit(signal: Callable[[str], None], message: str) -> None:
        try:
            signal(message)
        except Exception:
            logger.exception("Feedback sink raised while reporting %r", message)

    def get_health(self) -> dict[str, Any]:
        return {
            "inFlight": self._in_flight,
            "settled": self._settled,
            "failed": self._failed,
            "pendingCreates": self._reconciler.pending_count(),
        }
