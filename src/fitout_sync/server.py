"""
MCP server exposing cached project collections and optimistic mutations.
"""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from mcp.server.fastmcp import FastMCP

from . import materials, notifications, scope_items, timelines
from .coordinator import MutationOutcome
from .feedback import LoggingFeedback
from .memory_store import InMemoryRecordStore
from .remote_store import McpRecordStore
from .session import SyncSession
from .store import RecordStore

logger = logging.getLogger(__name__)

STORE_BACKENDS = ("memory", "mcp")


def _build_store(backend: str | None = None) -> RecordStore:
    backend = (backend or os.getenv("FITOUT_STORE_BACKEND", "memory")).lower()
    if backend == "memory":
        return InMemoryRecordStore()
    if backend == "mcp":
        return McpRecordStore()
    raise ValueError(f"FITOUT_STORE_BACKEND must be one of: {', '.join(STORE_BACKENDS)}")


_session: SyncSession | None = None
_feedback: LoggingFeedback | None = None


def get_feedback() -> LoggingFeedback:
    global _feedback
    if _feedback is None:
        _feedback = LoggingFeedback()
    return _feedback


def get_session() -> SyncSession:
    global _session
    if _session is None:
        _session = SyncSession(_build_store(), feedback=get_feedback())
    return _session


@asynccontextmanager
async def _lifespan(server: FastMCP) -> AsyncIterator[None]:
    get_session()
    try:
        yield
    finally:
        await _shutdown()


async def _shutdown() -> None:
    global _session
    if _session is None:
        return
    close = getattr(_session.store, "close", None)
    if close is not None:
        try:
            await close()
        except Exception as exc:
            logger.warning("Record store close failed: %s", exc)
    _session = None


mcp = FastMCP(
    "Fitout Sync",
    instructions=(
        "Project records (timeline, dependencies, materials, scope items, "
        "notifications) served from a local cache. Writes are applied to the "
        "cache immediately, sent to the record store, and rolled back if the "
        "store rejects them. Every mutating tool reports ok/message."
    ),
    lifespan=_lifespan,
)


def _report(outcome: MutationOutcome) -> dict[str, Any]:
    return outcome.to_dict()


# ----------------------------------------------------------------------
# timeline


@mcp.tool()
async def list_timeline_items(project_id: str) -> list[dict[str, Any]]:
    """List timeline items (phases, tasks, milestones) of a project in display order."""
    return await timelines.get_timeline_items(get_session(), project_id)


@mcp.tool()
async def list_timeline_dependencies(project_id: str) -> list[dict[str, Any]]:
    """List dependency links between timeline items of a project."""
    return await timelines.get_timeline_dependencies(get_session(), project_id)


@mcp.tool()
async def create_timeline_item(project_id: str, item: dict[str, Any]) -> dict[str, Any]:
    """Create a task or milestone.

    Args:
        project_id: Owning project.
        item: Fields {name, item_type, start_date, end_date, parent_id?, color?,
            priority?, progress_override?, is_completed?, linked_scope_item_ids?}.
    """
    return _report(await timelines.create_timeline_item(get_session(), project_id, item))


@mcp.tool()
async def update_timeline_item(project_id: str, item_id: str, changes: dict[str, Any]) -> dict[str, Any]:
    """Apply a partial update; omitted fields keep their value."""
    return _report(await timelines.update_timeline_item(get_session(), project_id, item_id, changes))


@mcp.tool()
async def update_timeline_item_dates(
    project_id: str, item_id: str, start_date: str, end_date: str
) -> dict[str, Any]:
    """Move or resize a timeline bar."""
    return _report(
        await timelines.update_timeline_item_dates(get_session(), project_id, item_id, start_date, end_date)
    )


@mcp.tool()
async def delete_timeline_item(project_id: str, item_id: str) -> dict[str, Any]:
    """Delete a task or milestone. Phases cannot be deleted."""
    return _report(await timelines.delete_timeline_item(get_session(), project_id, item_id))


@mcp.tool()
async def reorder_timeline_items(project_id: str, item_ids: list[str]) -> dict[str, Any]:
    """Reorder the given items among the slots they occupy."""
    return _report(await timelines.reorder_timeline_items(get_session(), project_id, item_ids))


@mcp.tool()
async def create_timeline_dependency(project_id: str, dependency: dict[str, Any]) -> dict[str, Any]:
    """Link two items: {source_id, target_id, dependency_type?, lag_days?}."""
    return _report(await timelines.create_timeline_dependency(get_session(), project_id, dependency))


@mcp.tool()
async def update_timeline_dependency(
    project_id: str, dependency_id: str, changes: dict[str, Any]
) -> dict[str, Any]:
    """Change a dependency's type or lag."""
    return _report(
        await timelines.update_timeline_dependency(get_session(), project_id, dependency_id, changes)
    )


@mcp.tool()
async def delete_timeline_dependency(project_id: str, dependency_id: str) -> dict[str, Any]:
    return _report(await timelines.delete_timeline_dependency(get_session(), project_id, dependency_id))


# ----------------------------------------------------------------------
# notifications


@mcp.tool()
async def list_notifications(user_id: str, limit: int = 20) -> list[dict[str, Any]]:
    """List a user's notifications, newest first."""
    return await notifications.get_notifications(get_session(), user_id, limit)


@mcp.tool()
async def get_unread_count(user_id: str) -> int:
    return await notifications.get_unread_count(get_session(), user_id)


@mcp.tool()
async def mark_notification_read(user_id: str, notification_id: str) -> dict[str, Any]:
    return _report(await notifications.mark_as_read(get_session(), user_id, notification_id))


@mcp.tool()
async def mark_all_notifications_read(user_id: str) -> dict[str, Any]:
    return _report(await notifications.mark_all_read(get_session(), user_id))


# ----------------------------------------------------------------------
# materials


@mcp.tool()
async def list_materials(project_id: str) -> list[dict[str, Any]]:
    return await materials.get_materials(get_session(), project_id)


@mcp.tool()
async def get_material(material_id: str) -> dict[str, Any]:
    return await materials.get_material(get_session(), material_id)


@mcp.tool()
async def create_material(
    project_id: str, material: dict[str, Any], assigned_item_ids: list[str] | None = None
) -> dict[str, Any]:
    """Create a material and optionally assign it to scope items."""
    return _report(
        await materials.create_material(get_session(), project_id, material, assigned_item_ids)
    )


@mcp.tool()
async def update_material(project_id: str, material_id: str, changes: dict[str, Any]) -> dict[str, Any]:
    return _report(await materials.update_material(get_session(), project_id, material_id, changes))


@mcp.tool()
async def delete_material(project_id: str, material_id: str) -> dict[str, Any]:
    return _report(await materials.delete_material(get_session(), project_id, material_id))


@mcp.tool()
async def update_material_status(project_id: str, material_id: str, status: str) -> dict[str, Any]:
    """Set status to one of: pending, approved, rejected."""
    return _report(await materials.update_material_status(get_session(), project_id, material_id, status))


@mcp.tool()
async def update_item_material_assignments(
    project_id: str,
    scope_item_id: str,
    current_material_ids: list[str],
    selected_material_ids: list[str],
) -> dict[str, Any]:
    return _report(
        await materials.update_item_material_assignments(
            get_session(), project_id, scope_item_id, current_material_ids, selected_material_ids
        )
    )


@mcp.tool()
async def remove_item_material(project_id: str, scope_item_id: str, material_id: str) -> dict[str, Any]:
    return _report(
        await materials.remove_item_material(get_session(), project_id, scope_item_id, material_id)
    )


# ----------------------------------------------------------------------
# scope items


@mcp.tool()
async def list_scope_items(project_id: str) -> list[dict[str, Any]]:
    return await scope_items.get_scope_items(get_session(), project_id)


@mcp.tool()
async def get_scope_item(item_id: str) -> dict[str, Any]:
    return await scope_items.get_scope_item(get_session(), item_id)


@mcp.tool()
async def bulk_update_scope_items(
    project_id: str, item_ids: list[str], field: str, value: Any
) -> dict[str, Any]:
    """Set one field to the same value on several scope items."""
    return _report(
        await scope_items.bulk_update_scope_items(get_session(), project_id, item_ids, field, value)
    )


@mcp.tool()
async def update_scope_item_field(project_id: str, item_id: str, field: str, value: Any) -> dict[str, Any]:
    return _report(
        await scope_items.update_scope_item_field(get_session(), project_id, item_id, field, value)
    )


@mcp.tool()
async def update_production_percentage(project_id: str, item_id: str, percentage: float) -> dict[str, Any]:
    """Set production progress (0-100)."""
    return _report(
        await scope_items.update_production_percentage(get_session(), project_id, item_id, percentage)
    )


@mcp.tool()
async def update_installation_status(project_id: str, item_id: str, is_installed: bool) -> dict[str, Any]:
    return _report(
        await scope_items.update_installation_status(get_session(), project_id, item_id, is_installed)
    )


@mcp.tool()
async def delete_scope_item(project_id: str, item_id: str) -> dict[str, Any]:
    return _report(await scope_items.delete_scope_item(get_session(), project_id, item_id))


@mcp.tool()
async def bulk_assign_materials(
    project_id: str, item_ids: list[str], material_ids: list[str]
) -> dict[str, Any]:
    return _report(
        await scope_items.bulk_assign_materials(get_session(), project_id, item_ids, material_ids)
    )


# ----------------------------------------------------------------------
# maintenance


@mcp.tool()
def refresh_cache() -> dict[str, Any]:
    """Mark every cached collection stale so the next read goes to the store."""
    session = get_session()
    marked = session.invalidate_all()
    dropped = session.cache.collect_garbage()
    return {"invalidated": len(marked), "collected": len(dropped)}


@mcp.tool()
def get_cache_health() -> dict[str, Any]:
    return get_session().get_health()


@mcp.tool()
def recent_feedback(limit: int = 20) -> list[dict[str, Any]]:
    """Recent success/error messages produced by mutations."""
    return get_feedback().recent(limit)


def main() -> None:
    logging.basicConfig(level=os.getenv("FITOUT_SYNC_LOG_LEVEL", "INFO"))
    mcp.run()


if __name__ == "__main__":
    main()
