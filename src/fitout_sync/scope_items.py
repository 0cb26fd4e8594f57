"""
Scope items (the furniture/joinery lines of a project).
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any

from . import keys, updaters
from .coordinator import Mutation, MutationKind, MutationOutcome
from .result import Err, Ok, Result
from .session import SyncSession
from .store import ITEM_MATERIALS, SCOPE_ITEMS, Record, StoreError

EDITABLE_FIELDS = frozenset(
    {
        "name",
        "item_code",
        "description",
        "quantity",
        "unit",
        "unit_price",
        "status",
        "item_path",
        "production_percentage",
        "is_installed",
        "notes",
    }
)


def _check_field(field: str) -> None:
    if field not in EDITABLE_FIELDS:
        raise ValueError(f"scope item field '{field}' cannot be edited")


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}{'' if count == 1 else 's'}"


async def get_scope_items(session: SyncSession, project_id: str) -> list[Record]:
    return await session.query(
        keys.scope_item_list(project_id),
        lambda: session.store.list_records(SCOPE_ITEMS, project_id),
    )


async def get_scope_item(session: SyncSession, item_id: str) -> Record:
    async def _load() -> Record:
        record = await session.store.get_record(SCOPE_ITEMS, item_id)
        if record is None:
            raise StoreError("not_found", "Scope item not found")
        return record

    return await session.query(keys.scope_item_detail(item_id), _load)


def bulk_update_scope_items(
    session: SyncSession, project_id: str, item_ids: list[str], field: str, value: Any
) -> asyncio.Task[MutationOutcome]:
    _check_field(field)
    patch = {field: value}
    return session.dispatch(
        Mutation(
            name="bulk_update_scope_items",
            kind=MutationKind.BULK,
            remote=lambda: session.store.bulk_update_records(SCOPE_ITEMS, project_id, list(item_ids), patch),
            updates={keys.scope_item_list(project_id): updaters.patch_many(item_ids, patch)},
            failure_message="Failed to update items",
            success_message=f"Updated {_plural(len(item_ids), 'item')}",
        )
    )


def update_scope_item_field(
    session: SyncSession, project_id: str, item_id: str, field: str, value: Any
) -> asyncio.Task[MutationOutcome]:
    _check_field(field)
    patch = {field: value}
    return session.dispatch(
        Mutation(
            name="update_scope_item_field",
            kind=MutationKind.UPDATE,
            remote=lambda: session.store.update_record(SCOPE_ITEMS, item_id, patch),
            updates={
                keys.scope_item_list(project_id): updaters.patch(item_id, patch),
                keys.scope_item_detail(item_id): updaters.patch_record(patch),
            },
            failure_message="Failed to update item",
            success_message="Item updated",
        )
    )


def update_production_percentage(
    session: SyncSession, project_id: str, item_id: str, percentage: float
) -> asyncio.Task[MutationOutcome]:
    patch = {"production_percentage": percentage}
    return session.dispatch(
        Mutation(
            name="update_production_percentage",
            kind=MutationKind.UPDATE,
            remote=lambda: session.store.update_record(SCOPE_ITEMS, item_id, patch),
            updates={keys.scope_item_list(project_id): updaters.patch(item_id, patch)},
            failure_message="Failed to update percentage",
            success_message=f"Progress updated to {percentage}%",
        )
    )


def update_installation_status(
    session: SyncSession, project_id: str, item_id: str, is_installed: bool
) -> asyncio.Task[MutationOutcome]:
    patch = {
        "is_installed": is_installed,
        "installed_at": datetime.now(timezone.utc).isoformat() if is_installed else None,
    }
    return session.dispatch(
        Mutation(
            name="update_installation_status",
            kind=MutationKind.UPDATE,
            remote=lambda: session.store.update_record(SCOPE_ITEMS, item_id, patch),
            updates={keys.scope_item_list(project_id): updaters.patch(item_id, patch)},
            failure_message="Failed to update status",
            success_message="Marked as installed" if is_installed else "Marked as not installed",
        )
    )


def delete_scope_item(
    session: SyncSession, project_id: str, item_id: str
) -> asyncio.Task[MutationOutcome]:
    return session.dispatch(
        Mutation(
            name="delete_scope_item",
            kind=MutationKind.DELETE,
            remote=lambda: session.store.delete_record(SCOPE_ITEMS, item_id),
            updates={keys.scope_item_list(project_id): updaters.remove(item_id)},
            invalidates=(keys.scope_item_detail(item_id),),
            failure_message="Failed to delete item",
            success_message="Item deleted",
        )
    )


def bulk_assign_materials(
    session: SyncSession, project_id: str, item_ids: list[str], material_ids: list[str]
) -> asyncio.Task[MutationOutcome]:
    async def _remote() -> Result[dict[str, int]]:
        existing = await session.store.list_records(ITEM_MATERIALS, project_id)
        taken = {(row.get("scope_item_id"), row.get("material_id")) for row in existing}
        assigned = 0
        for item_id in item_ids:
            for material_id in material_ids:
                if (item_id, material_id) in taken:
                    continue
                created = await session.store.create_record(
                    ITEM_MATERIALS,
                    {"project_id": project_id, "scope_item_id": item_id, "material_id": material_id},
                )
                if isinstance(created, Err):
                    return created
                assigned += 1
        return Ok({"assigned": assigned})

    return session.dispatch(
        Mutation(
            name="bulk_assign_materials",
            kind=MutationKind.BULK,
            remote=_remote,
            invalidates=(keys.scope_item_list(project_id), keys.material_list(project_id)),
            failure_message="Failed to assign materials",
            success_message=lambda data: (
                f"Assigned {_plural(data['assigned'], 'material-item combination')}"
            ),
        )
    )
