"""
Notification list and unread counter for one user.

Mutations here are silent on success; the list itself is the feedback.
"""

from __future__ import annotations

import asyncio
from typing import Any

from . import keys, updaters
from .coordinator import Mutation, MutationKind, MutationOutcome
from .session import SyncSession
from .store import NOTIFICATIONS, Record


async def get_notifications(session: SyncSession, user_id: str, limit: int = 20) -> list[Record]:
    records = await session.query(
        keys.notification_list(user_id),
        lambda: session.store.list_records(NOTIFICATIONS, user_id),
    )
    if limit > 0:
        return records[:limit]
    return records


async def get_unread_count(session: SyncSession, user_id: str) -> int:
    return await session.query(
        keys.notification_unread_count(user_id),
        lambda: session.store.count_records(NOTIFICATIONS, user_id, {"is_read": False}),
    )


async def poll_unread_count(
    session: SyncSession,
    user_id: str,
    stop: asyncio.Event,
    interval_seconds: float | None = None,
) -> None:
    interval = interval_seconds or keys.REFETCH_INTERVAL_SECONDS[keys.NOTIFICATIONS_UNREAD]
    await session.poll(
        keys.notification_unread_count(user_id),
        lambda: session.store.count_records(NOTIFICATIONS, user_id, {"is_read": False}),
        interval,
        stop,
    )


def _was_unread(session: SyncSession, user_id: str, notification_id: str) -> bool:
    cached: Any = session.cache.read(keys.notification_list(user_id))
    if not cached:
        return True
    for item in cached:
        if item.get("id") == notification_id:
            return not item.get("is_read")
    return True


def mark_as_read(
    session: SyncSession, user_id: str, notification_id: str
) -> asyncio.Task[MutationOutcome]:
    list_key = keys.notification_list(user_id)
    count_key = keys.notification_unread_count(user_id)
    updates = {list_key: updaters.patch(notification_id, {"is_read": True})}
    if _was_unread(session, user_id, notification_id):
        updates[count_key] = updaters.decrement()

    return session.dispatch(
        Mutation(
            name="mark_notification_read",
            kind=MutationKind.UPDATE,
            remote=lambda: session.store.update_record(
                NOTIFICATIONS, notification_id, {"is_read": True}
            ),
            updates=updates,
            invalidates=keys.notification_all(user_id),
            failure_message="Failed to mark notification as read",
        )
    )


def mark_all_read(session: SyncSession, user_id: str) -> asyncio.Task[MutationOutcome]:
    return session.dispatch(
        Mutation(
            name="mark_all_notifications_read",
            kind=MutationKind.BULK,
            remote=lambda: session.store.bulk_update_records(
                NOTIFICATIONS, user_id, None, {"is_read": True}
            ),
            updates={
                keys.notification_list(user_id): updaters.patch_all({"is_read": True}),
                keys.notification_unread_count(user_id): updaters.set_value(0),
            },
            invalidates=keys.notification_all(user_id),
            failure_message="Failed to mark notifications as read",
        )
    )
