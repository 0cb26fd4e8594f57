"""
Project materials and their assignment to scope items.
"""

from __future__ import annotations

import asyncio
from typing import Any

from . import keys, updaters
from .coordinator import Mutation, MutationKind, MutationOutcome
from .result import Err, Ok, Result
from .session import SyncSession
from .store import ITEM_MATERIALS, MATERIALS, Record, StoreError


async def get_materials(session: SyncSession, project_id: str) -> list[Record]:
    return await session.query(
        keys.material_list(project_id),
        lambda: session.store.list_records(MATERIALS, project_id),
    )


async def get_material(session: SyncSession, material_id: str) -> Record:
    async def _load() -> Record:
        record = await session.store.get_record(MATERIALS, material_id)
        if record is None:
            raise StoreError("not_found", "Material not found")
        return record

    return await session.query(keys.material_detail(material_id), _load)


def create_material(
    session: SyncSession, project_id: str, payload: dict[str, Any], assigned_item_ids: list[str] | None = None
) -> asyncio.Task[MutationOutcome]:
    """Create without a prediction; the list refreshes once the store answers."""

    async def _remote() -> Result[Record]:
        created = await session.store.create_record(MATERIALS, {**payload, "project_id": project_id})
        if isinstance(created, Err) or not assigned_item_ids:
            return created
        assigned = await _assign(session, project_id, created.value["id"], assigned_item_ids)
        return assigned if isinstance(assigned, Err) else created

    invalidates = (keys.material_list(project_id),)
    if assigned_item_ids:
        invalidates += (keys.scope_item_list(project_id),)
    return session.dispatch(
        Mutation(
            name="create_material",
            kind=MutationKind.CREATE,
            remote=_remote,
            invalidates=invalidates,
            failure_message="Failed to create material",
            success_message="Material created successfully",
        )
    )


def update_material(
    session: SyncSession, project_id: str, material_id: str, changes: dict[str, Any]
) -> asyncio.Task[MutationOutcome]:
    patch = {k: v for k, v in changes.items() if k not in {"id", "project_id"}}
    return session.dispatch(
        Mutation(
            name="update_material",
            kind=MutationKind.UPDATE,
            remote=lambda: session.store.update_record(MATERIALS, material_id, patch),
            updates={
                keys.material_list(project_id): updaters.patch(material_id, patch),
                keys.material_detail(material_id): updaters.patch_record(patch),
            },
            failure_message="Failed to update material",
            success_message="Material updated successfully",
        )
    )


def delete_material(
    session: SyncSession, project_id: str, material_id: str
) -> asyncio.Task[MutationOutcome]:
    return session.dispatch(
        Mutation(
            name="delete_material",
            kind=MutationKind.DELETE,
            remote=lambda: session.store.delete_record(MATERIALS, material_id),
            updates={keys.material_list(project_id): updaters.remove(material_id)},
            invalidates=(keys.material_detail(material_id),),
            failure_message="Failed to delete material",
            success_message="Material deleted successfully",
        )
    )


def update_material_status(
    session: SyncSession, project_id: str, material_id: str, status: str
) -> asyncio.Task[MutationOutcome]:
    return session.dispatch(
        Mutation(
            name="update_material_status",
            kind=MutationKind.UPDATE,
            remote=lambda: session.store.update_record(MATERIALS, material_id, {"status": status}),
            updates={keys.material_list(project_id): updaters.patch(material_id, {"status": status})},
            failure_message="Failed to update status",
            success_message=f"Material {status}",
        )
    )


async def _assign(
    session: SyncSession, project_id: str, material_id: str, item_ids: list[str]
) -> Result[int]:
    count = 0
    for item_id in item_ids:
        created = await session.store.create_record(
            ITEM_MATERIALS,
            {"project_id": project_id, "scope_item_id": item_id, "material_id": material_id},
        )
        if isinstance(created, Err):
            return created
        count += 1
    return Ok(count)


async def _assignment_ids(
    session: SyncSession, project_id: str, scope_item_id: str, material_ids: set[str]
) -> dict[str, str]:
    rows = await session.store.list_records(ITEM_MATERIALS, project_id)
    return {
        row["material_id"]: row["id"]
        for row in rows
        if row.get("scope_item_id") == scope_item_id and row.get("material_id") in material_ids
    }


def update_item_material_assignments(
    session: SyncSession,
    project_id: str,
    scope_item_id: str,
    current_material_ids: list[str],
    selected_material_ids: list[str],
) -> asyncio.Task[MutationOutcome]:
    """Assign newly selected materials to an item and unassign deselected ones."""
    to_add = [m for m in selected_material_ids if m not in current_material_ids]
    to_remove = {m for m in current_material_ids if m not in selected_material_ids}

    async def _remote() -> Result[None]:
        for material_id in to_add:
            created = await session.store.create_record(
                ITEM_MATERIALS,
                {"project_id": project_id, "scope_item_id": scope_item_id, "material_id": material_id},
            )
            if isinstance(created, Err):
                return created
        if to_remove:
            existing = await _assignment_ids(session, project_id, scope_item_id, to_remove)
            for assignment_id in existing.values():
                deleted = await session.store.delete_record(ITEM_MATERIALS, assignment_id)
                if isinstance(deleted, Err):
                    return deleted
        return Ok(None)

    return session.dispatch(
        Mutation(
            name="update_item_material_assignments",
            kind=MutationKind.BULK,
            remote=_remote,
            invalidates=(keys.material_list(project_id), keys.scope_item_list(project_id)),
            failure_message="Failed to update assignments",
            success_message="Material assignments updated",
        )
    )


def remove_item_material(
    session: SyncSession, project_id: str, scope_item_id: str, material_id: str
) -> asyncio.Task[MutationOutcome]:
    async def _remote() -> Result[None]:
        existing = await _assignment_ids(session, project_id, scope_item_id, {material_id})
        if material_id not in existing:
            return Err("Assignment not found")
        return await session.store.delete_record(ITEM_MATERIALS, existing[material_id])

    return session.dispatch(
        Mutation(
            name="remove_item_material",
            kind=MutationKind.DELETE,
            remote=_remote,
            invalidates=(keys.material_list(project_id), keys.scope_item_list(project_id)),
            failure_message="Failed to remove material",
            success_message="Material removed from item",
        )
    )
