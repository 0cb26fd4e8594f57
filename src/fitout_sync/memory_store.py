"""
In-process record store enforcing the project's server-side rules.

Used for local runs of the server and as the authoritative store in tests.
Records are copied on the way in and out, so callers never share state with
the store.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from .result import Err, Ok, Result
from .store import (
    ITEM_MATERIALS,
    MATERIALS,
    NOTIFICATIONS,
    SCOPE_FIELDS,
    SCOPE_ITEMS,
    TIMELINE_DEPENDENCIES,
    TIMELINE_ITEMS,
    Record,
    StoreError,
)

logger = logging.getLogger(__name__)

MAX_TIMELINE_DEPTH = 5
MATERIAL_STATUSES = {"pending", "approved", "rejected"}
SOFT_DELETED_ENTITIES = {MATERIALS, SCOPE_ITEMS}

TIMELINE_DEFAULTS: dict[str, Any] = {
    "item_type": "task",
    "phase_key": None,
    "parent_id": None,
    "color": None,
    "priority": 2,
    "progress_override": None,
    "is_completed": False,
    "completed_at": None,
    "linked_scope_item_ids": [],
}
DEPENDENCY_DEFAULTS: dict[str, Any] = {"dependency_type": 0, "lag_days": 0}
NOTIFICATION_DEFAULTS: dict[str, Any] = {"is_read": False}
MATERIAL_DEFAULTS: dict[str, Any] = {"status": "pending", "is_deleted": False}
SCOPE_ITEM_DEFAULTS: dict[str, Any] = {
    "production_percentage": 0,
    "is_installed": False,
    "installed_at": None,
    "is_deleted": False,
}

_DEFAULTS: dict[str, dict[str, Any]] = {
    TIMELINE_ITEMS: TIMELINE_DEFAULTS,
    TIMELINE_DEPENDENCIES: DEPENDENCY_DEFAULTS,
    NOTIFICATIONS: NOTIFICATION_DEFAULTS,
    MATERIALS: MATERIAL_DEFAULTS,
    SCOPE_ITEMS: SCOPE_ITEM_DEFAULTS,
}

_NOT_FOUND: dict[str, str] = {
    TIMELINE_ITEMS: "Timeline item not found",
    TIMELINE_DEPENDENCIES: "Dependency not found",
    NOTIFICATIONS: "Notification not found",
    MATERIALS: "Material not found",
    SCOPE_ITEMS: "Scope item not found",
    ITEM_MATERIALS: "Assignment not found",
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class InMemoryRecordStore:
    """Authoritative store kept in a dict per entity."""

    def __init__(self, latency_seconds: float = 0.0):
        self._tables: dict[str, dict[str, Record]] = {entity: {} for entity in SCOPE_FIELDS}
        self._latency_seconds = latency_seconds
        self.calls: list[tuple[str, str]] = []

    # ------------------------------------------------------------------
    # helpers

    def _table(self, entity: str) -> dict[str, Record]:
        try:
            return self._tables[entity]
        except KeyError:
            raise StoreError("store_protocol_error", f"unknown entity '{entity}'") from None

    async def _tick(self, op: str, entity: str) -> None:
        self.calls.append((op, entity))
        if self._latency_seconds:
            await asyncio.sleep(self._latency_seconds)
        else:
            await asyncio.sleep(0)

    def _visible(self, entity: str, record: Record) -> bool:
        return not (entity in SOFT_DELETED_ENTITIES and record.get("is_deleted"))

    def _in_scope(self, entity: str, scope: str) -> list[Record]:
        table = self._table(entity)
        field = SCOPE_FIELDS[entity]
        rows = [
            r for r in table.values() if r.get(field) == scope and self._visible(entity, r)
        ]
        if entity in (TIMELINE_ITEMS, SCOPE_ITEMS, MATERIALS):
            rows.sort(key=lambda r: (r.get("sort_order") or 0, r.get("created_at") or ""))
        elif entity == NOTIFICATIONS:
            rows.sort(key=lambda r: r.get("created_at") or "", reverse=True)
        return rows

    def seed(self, entity: str, *records: Record) -> None:
        """Insert records verbatim, bypassing validation."""
        table = self._table(entity)
        for record in records:
            row = {**_DEFAULTS.get(entity, {}), **copy.deepcopy(record)}
            row.setdefault("id", str(uuid.uuid4()))
            row.setdefault("created_at", _now())
            row.setdefault("updated_at", row["created_at"])
            table[row["id"]] = row

    def dump(self, entity: str) -> list[Record]:
        return copy.deepcopy(list(self._table(entity).values()))

    # ------------------------------------------------------------------
    # reads

    async def list_records(self, entity: str, scope: str) -> list[Record]:
        await self._tick("list", entity)
        return copy.deepcopy(self._in_scope(entity, scope))

    async def get_record(self, entity: str, record_id: str) -> Record | None:
        await self._tick("get", entity)
        record = self._table(entity).get(record_id)
        if record is None or not self._visible(entity, record):
            return None
        return copy.deepcopy(record)

    async def count_records(
        self, entity: str, scope: str, filters: dict[str, Any] | None = None
    ) -> int:
        await self._tick("count", entity)
        rows = self._in_scope(entity, scope)
        for name, value in (filters or {}).items():
            rows = [r for r in rows if r.get(name) == value]
        return len(rows)

    # ------------------------------------------------------------------
    # writes

    async def create_record(self, entity: str, payload: dict[str, Any]) -> Result[Record]:
        await self._tick("create", entity)
        table = self._table(entity)
        validator = _CREATE_RULES.get(entity)
        if validator is not None:
            rejection = validator(self, payload)
            if rejection:
                return Err(rejection)

        row = {**copy.deepcopy(_DEFAULTS.get(entity, {})), **copy.deepcopy(payload)}
        row.pop("id", None)
        row["id"] = str(uuid.uuid4())
        row["created_at"] = row["updated_at"] = _now()
        if entity == TIMELINE_ITEMS:
            row["sort_order"] = self._next_sort_order(row.get("project_id"), row.get("parent_id"))
        table[row["id"]] = row
        return Ok(copy.deepcopy(row))

    async def update_record(
        self, entity: str, record_id: str, patch: dict[str, Any]
    ) -> Result[Record]:
        await self._tick("update", entity)
        existing = self._table(entity).get(record_id)
        if existing is None or not self._visible(entity, existing):
            return Err(_NOT_FOUND.get(entity, "Record not found"))
        validator = _UPDATE_RULES.get(entity)
        if validator is not None:
            rejection = validator(self, existing, patch)
            if rejection:
                return Err(rejection)

        changes = {k: copy.deepcopy(v) for k, v in patch.items() if k not in {"id", "created_at"}}
        existing.update(changes)
        existing["updated_at"] = _now()
        return Ok(copy.deepcopy(existing))

    async def delete_record(self, entity: str, record_id: str) -> Result[None]:
        await self._tick("delete", entity)
        table = self._table(entity)
        existing = table.get(record_id)
        if existing is None or not self._visible(entity, existing):
            return Err(_NOT_FOUND.get(entity, "Record not found"))

        if entity == TIMELINE_ITEMS:
            if existing.get("item_type") == "phase":
                return Err("Fixed phases cannot be deleted")
            # Children move up to the deleted item's parent.
            for row in table.values():
                if row.get("parent_id") == record_id:
                    row["parent_id"] = existing.get("parent_id")
            dependencies = self._tables[TIMELINE_DEPENDENCIES]
            for dep_id in [
                d["id"]
                for d in dependencies.values()
                if record_id in (d.get("source_id"), d.get("target_id"))
            ]:
                del dependencies[dep_id]

        if entity in SOFT_DELETED_ENTITIES:
            existing["is_deleted"] = True
            existing["updated_at"] = _now()
        else:
            del table[record_id]
        return Ok(None)

    async def reorder_records(
        self, entity: str, scope: str, record_ids: list[str]
    ) -> Result[None]:
        await self._tick("reorder", entity)
        table = self._table(entity)
        field = SCOPE_FIELDS[entity]
        rows = []
        for record_id in record_ids:
            row = table.get(record_id)
            if row is None or row.get(field) != scope:
                return Err("Failed to reorder items")
            rows.append(row)
        for index, row in enumerate(rows, start=1):
            row["sort_order"] = index
        return Ok(None)

    async def bulk_update_records(
        self,
        entity: str,
        scope: str,
        record_ids: list[str] | None,
        patch: dict[str, Any],
    ) -> Result[int]:
        await self._tick("bulk_update", entity)
        rows = self._in_scope(entity, scope)
        if record_ids is not None:
            wanted = set(record_ids)
            rows = [r for r in rows if r["id"] in wanted]
            if len(rows) != len(wanted):
                return Err(_NOT_FOUND.get(entity, "Record not found"))
        validator = _UPDATE_RULES.get(entity)
        for row in rows:
            if validator is not None:
                rejection = validator(self, row, patch)
                if rejection:
                    return Err(rejection)
        for row in rows:
            row.update(copy.deepcopy(patch))
            row["updated_at"] = _now()
        return Ok(len(rows))

    # ------------------------------------------------------------------
    # timeline rules

    def _next_sort_order(self, project_id: Any, parent_id: Any) -> int:
        siblings = [
            r.get("sort_order") or 0
            for r in self._tables[TIMELINE_ITEMS].values()
            if r.get("project_id") == project_id and r.get("parent_id") == parent_id
        ]
        return max(siblings, default=0) + 1

    def _parent_chain_error(self, record_id: str, parent_id: str) -> str | None:
        items = self._tables[TIMELINE_ITEMS]
        current: str | None = parent_id
        depth = 0
        while current and depth < MAX_TIMELINE_DEPTH + 1:
            if current == record_id:
                return "Circular parent reference detected"
            ancestor = items.get(current)
            current = ancestor.get("parent_id") if ancestor else None
            depth += 1
        if depth > MAX_TIMELINE_DEPTH:
            return f"Maximum nesting depth ({MAX_TIMELINE_DEPTH}) exceeded"
        return None


def _create_timeline_item(store: InMemoryRecordStore, payload: dict[str, Any]) -> str | None:
    if payload.get("item_type") == "phase":
        return "Phases are fixed and cannot be created manually"
    if not payload.get("name"):
        return "Name is required"
    return None


def _update_timeline_item(
    store: InMemoryRecordStore, existing: Record, patch: dict[str, Any]
) -> str | None:
    parent_id = patch.get("parent_id")
    if parent_id:
        return store._parent_chain_error(existing["id"], parent_id)
    return None


def _create_dependency(store: InMemoryRecordStore, payload: dict[str, Any]) -> str | None:
    if payload.get("source_id") == payload.get("target_id"):
        return "Cannot create a dependency to itself"
    return None


def _update_scope_item(
    store: InMemoryRecordStore, existing: Record, patch: dict[str, Any]
) -> str | None:
    if "production_percentage" in patch:
        value = patch["production_percentage"]
        if not isinstance(value, (int, float)) or not 0 <= value <= 100:
            return "Percentage must be between 0 and 100"
    return None


def _update_material(
    store: InMemoryRecordStore, existing: Record, patch: dict[str, Any]
) -> str | None:
    if "status" in patch and patch["status"] not in MATERIAL_STATUSES:
        return f"Invalid material status: {patch['status']}"
    return None


_CREATE_RULES: dict[str, Callable[[InMemoryRecordStore, dict[str, Any]], str | None]] = {
    TIMELINE_ITEMS: _create_timeline_item,
    TIMELINE_DEPENDENCIES: _create_dependency,
}
_UPDATE_RULES: dict[str, Callable[[InMemoryRecordStore, Record, dict[str, Any]], str | None]] = {
    TIMELINE_ITEMS: _update_timeline_item,
    SCOPE_ITEMS: _update_scope_item,
    MATERIALS: _update_material,
}
