from __future__ import annotations

import asyncio

import pytest

from fitout_sync import server
from fitout_sync.feedback import LoggingFeedback
from fitout_sync.memory_store import InMemoryRecordStore
from fitout_sync.remote_store import McpRecordStore
from fitout_sync.session import SyncSession
from fitout_sync.store import TIMELINE_ITEMS

PROJECT = "proj-001"


@pytest.fixture
def session(monkeypatch: pytest.MonkeyPatch) -> SyncSession:
    store = InMemoryRecordStore()
    store.seed(
        TIMELINE_ITEMS,
        {"id": "phase-1", "project_id": PROJECT, "name": "Design", "item_type": "phase", "sort_order": 1},
        {"id": "item-001", "project_id": PROJECT, "name": "Test Task", "sort_order": 2},
    )
    feedback = LoggingFeedback(history=10)
    session = SyncSession(store, feedback=feedback)
    monkeypatch.setattr(server, "_session", session)
    monkeypatch.setattr(server, "_feedback", feedback)
    return session


def test_build_store_by_backend(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("FITOUT_STORE_BACKEND", raising=False)
    assert isinstance(server._build_store(), InMemoryRecordStore)

    monkeypatch.setenv("FITOUT_STORE_BACKEND", "mcp")
    assert isinstance(server._build_store(), McpRecordStore)

    with pytest.raises(ValueError):
        server._build_store("sqlite")


def test_update_tool_reports_outcome(session: SyncSession):
    report = asyncio.run(server.update_timeline_item(PROJECT, "item-001", {"name": "Updated Name"}))

    assert report["ok"] is True
    assert report["mutation"] == "update_timeline_item"
    assert report["message"] == "Timeline item updated"
    assert report["invalidated"] == [f"timeline_items:{PROJECT}"]


def test_rejected_delete_is_reported_and_recorded(session: SyncSession):
    items = asyncio.run(server.list_timeline_items(PROJECT))
    assert [i["id"] for i in items] == ["phase-1", "item-001"]

    report = asyncio.run(server.delete_timeline_item(PROJECT, "phase-1"))

    assert report["ok"] is False
    assert report["error"] == "Fixed phases cannot be deleted"
    [entry] = server.recent_feedback()
    assert entry["level"] == "error"
    assert entry["message"] == "Fixed phases cannot be deleted"


def test_refresh_cache_marks_entries_stale(session: SyncSession):
    asyncio.run(server.list_timeline_items(PROJECT))

    result = server.refresh_cache()

    assert result == {"invalidated": 1, "collected": 0}
    assert server.get_cache_health()["cache"]["staleEntries"] == 1
