"""
Contract for the authoritative record store.
"""

from __future__ import annotations

from typing import Any, Protocol

from .result import Result

Record = dict[str, Any]

TIMELINE_ITEMS = "timeline_items"
TIMELINE_DEPENDENCIES = "timeline_dependencies"
NOTIFICATIONS = "notifications"
MATERIALS = "materials"
SCOPE_ITEMS = "scope_items"
ITEM_MATERIALS = "item_materials"

# Field that scopes each entity's collections.
SCOPE_FIELDS: dict[str, str] = {
    TIMELINE_ITEMS: "project_id",
    TIMELINE_DEPENDENCIES: "project_id",
    NOTIFICATIONS: "user_id",
    MATERIALS: "project_id",
    SCOPE_ITEMS: "project_id",
    ITEM_MATERIALS: "project_id",
}


class StoreError(RuntimeError):
    """Raised when the store cannot be reached or answers malformed data."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class RecordStore(Protocol):
    """
    Remote record operations consumed by the cache layer.

    Reads return data or raise `StoreError`. Writes return `Ok`/`Err`; an `Err`
    is a business rejection, an exception is a transport failure.
    """

    async def list_records(self, entity: str, scope: str) -> list[Record]: ...

    async def get_record(self, entity: str, record_id: str) -> Record | None: ...

    async def count_records(
        self, entity: str, scope: str, filters: dict[str, Any] | None = None
    ) -> int: ...

    async def create_record(self, entity: str, payload: dict[str, Any]) -> Result[Record]: ...

    async def update_record(
        self, entity: str, record_id: str, patch: dict[str, Any]
    ) -> Result[Record]: ...

    async def delete_record(self, entity: str, record_id: str) -> Result[None]: ...

    async def reorder_records(
        self, entity: str, scope: str, record_ids: list[str]
    ) -> Result[None]: ...

    async def bulk_update_records(
        self,
        entity: str,
        scope: str,
        record_ids: list[str] | None,
        patch: dict[str, Any],
    ) -> Result[int]: ...
