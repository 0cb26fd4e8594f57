"""
Timeline (Gantt) items and dependencies with optimistic updates.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Any

from . import keys, updaters
from .coordinator import Mutation, MutationKind, MutationOutcome, new_temp_id
from .session import SyncSession
from .store import TIMELINE_DEPENDENCIES, TIMELINE_ITEMS, Record

# Fields a caller may change on an existing item.
TIMELINE_ITEM_FIELDS = (
    "name",
    "item_type",
    "start_date",
    "end_date",
    "parent_id",
    "color",
    "priority",
    "progress_override",
    "is_completed",
    "linked_scope_item_ids",
)
DEPENDENCY_FIELDS = ("dependency_type", "lag_days")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _pick(values: dict[str, Any], allowed: tuple[str, ...]) -> dict[str, Any]:
    return {name: value for name, value in values.items() if name in allowed}


async def get_timeline_items(session: SyncSession, project_id: str) -> list[Record]:
    return await session.query(
        keys.timeline_items(project_id),
        lambda: session.store.list_records(TIMELINE_ITEMS, project_id),
    )


async def get_timeline_dependencies(session: SyncSession, project_id: str) -> list[Record]:
    return await session.query(
        keys.timeline_dependencies(project_id),
        lambda: session.store.list_records(TIMELINE_DEPENDENCIES, project_id),
    )


def create_timeline_item(
    session: SyncSession, project_id: str, payload: dict[str, Any]
) -> asyncio.Task[MutationOutcome]:
    key = keys.timeline_items(project_id)
    temp_id = new_temp_id()
    existing = session.cache.read(key) or []
    now = _now()
    predicted: Record = {
        "id": temp_id,
        "project_id": project_id,
        "name": payload.get("name"),
        "item_type": payload.get("item_type", "task"),
        "phase_key": payload.get("phase_key"),
        "parent_id": payload.get("parent_id"),
        "start_date": payload.get("start_date"),
        "end_date": payload.get("end_date"),
        "color": payload.get("color"),
        "priority": payload.get("priority") or 2,
        "progress_override": payload.get("progress_override"),
        "is_completed": payload.get("is_completed", False),
        "completed_at": None,
        "sort_order": len(existing) + 1,
        "created_by": None,
        "created_at": now,
        "updated_at": now,
        "progress": 0,
        "linked_scope_item_ids": list(payload.get("linked_scope_item_ids") or []),
    }
    body = {**payload, "project_id": project_id}

    return session.dispatch(
        Mutation(
            name="create_timeline_item",
            kind=MutationKind.CREATE,
            remote=lambda: session.store.create_record(TIMELINE_ITEMS, body),
            updates={key: updaters.append(predicted)},
            failure_message="Failed to create timeline item",
            success_message="Timeline item created",
            idempotency_key=str(uuid.uuid4()),
            temp_id=temp_id,
        )
    )


def update_timeline_item(
    session: SyncSession, project_id: str, item_id: str, changes: dict[str, Any]
) -> asyncio.Task[MutationOutcome]:
    patch = _pick(changes, TIMELINE_ITEM_FIELDS)
    record_id = session.reconciler.resolve_id(item_id)
    return session.dispatch(
        Mutation(
            name="update_timeline_item",
            kind=MutationKind.UPDATE,
            remote=lambda: session.store.update_record(TIMELINE_ITEMS, record_id, patch),
            updates={keys.timeline_items(project_id): updaters.patch(record_id, patch)},
            failure_message="Failed to update timeline item",
            success_message="Timeline item updated",
        )
    )


def update_timeline_item_dates(
    session: SyncSession, project_id: str, item_id: str, start_date: str, end_date: str
) -> asyncio.Task[MutationOutcome]:
    """Drag/resize of a bar; silent on success."""
    patch = {"start_date": start_date, "end_date": end_date}
    record_id = session.reconciler.resolve_id(item_id)
    return session.dispatch(
        Mutation(
            name="update_timeline_item_dates",
            kind=MutationKind.UPDATE,
            remote=lambda: session.store.update_record(TIMELINE_ITEMS, record_id, patch),
            updates={keys.timeline_items(project_id): updaters.patch(record_id, patch)},
            failure_message="Failed to update dates",
        )
    )


def delete_timeline_item(
    session: SyncSession, project_id: str, item_id: str
) -> asyncio.Task[MutationOutcome]:
    record_id = session.reconciler.resolve_id(item_id)
    return session.dispatch(
        Mutation(
            name="delete_timeline_item",
            kind=MutationKind.DELETE,
            remote=lambda: session.store.delete_record(TIMELINE_ITEMS, record_id),
            updates={keys.timeline_items(project_id): updaters.remove(record_id)},
            # Dependencies may reference the deleted item.
            invalidates=(keys.timeline_dependencies(project_id),),
            failure_message="Failed to delete timeline item",
            success_message="Timeline item deleted",
        )
    )


def reorder_timeline_items(
    session: SyncSession, project_id: str, item_ids: list[str]
) -> asyncio.Task[MutationOutcome]:
    record_ids = [session.reconciler.resolve_id(item_id) for item_id in item_ids]
    return session.dispatch(
        Mutation(
            name="reorder_timeline_items",
            kind=MutationKind.REORDER,
            remote=lambda: session.store.reorder_records(TIMELINE_ITEMS, project_id, record_ids),
            updates={keys.timeline_items(project_id): updaters.reorder(record_ids)},
            failure_message="Failed to reorder items",
        )
    )


def create_timeline_dependency(
    session: SyncSession, project_id: str, payload: dict[str, Any]
) -> asyncio.Task[MutationOutcome]:
    key = keys.timeline_dependencies(project_id)
    temp_id = new_temp_id()
    body = {
        **payload,
        "project_id": project_id,
        "source_id": session.reconciler.resolve_id(payload.get("source_id", "")),
        "target_id": session.reconciler.resolve_id(payload.get("target_id", "")),
    }
    predicted: Record = {
        "id": temp_id,
        "project_id": project_id,
        "source_id": body["source_id"],
        "target_id": body["target_id"],
        "dependency_type": payload.get("dependency_type", 0),
        "lag_days": payload.get("lag_days", 0),
        "created_at": _now(),
        "created_by": None,
    }

    return session.dispatch(
        Mutation(
            name="create_timeline_dependency",
            kind=MutationKind.CREATE,
            remote=lambda: session.store.create_record(TIMELINE_DEPENDENCIES, body),
            updates={key: updaters.append(predicted)},
            failure_message="Failed to create dependency",
            success_message="Dependency created",
            idempotency_key=str(uuid.uuid4()),
            temp_id=temp_id,
        )
    )


def update_timeline_dependency(
    session: SyncSession, project_id: str, dependency_id: str, changes: dict[str, Any]
) -> asyncio.Task[MutationOutcome]:
    patch = _pick(changes, DEPENDENCY_FIELDS)
    record_id = session.reconciler.resolve_id(dependency_id)
    return session.dispatch(
        Mutation(
            name="update_timeline_dependency",
            kind=MutationKind.UPDATE,
            remote=lambda: session.store.update_record(TIMELINE_DEPENDENCIES, record_id, patch),
            updates={keys.timeline_dependencies(project_id): updaters.patch(record_id, patch)},
            failure_message="Failed to update dependency",
            success_message="Dependency updated",
        )
    )


def delete_timeline_dependency(
    session: SyncSession, project_id: str, dependency_id: str
) -> asyncio.Task[MutationOutcome]:
    record_id = session.reconciler.resolve_id(dependency_id)
    return session.dispatch(
        Mutation(
            name="delete_timeline_dependency",
            kind=MutationKind.DELETE,
            remote=lambda: session.store.delete_record(TIMELINE_DEPENDENCIES, record_id),
            updates={keys.timeline_dependencies(project_id): updaters.remove(record_id)},
            failure_message="Failed to delete dependency",
            success_message="Dependency deleted",
        )
    )
