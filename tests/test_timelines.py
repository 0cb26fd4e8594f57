from __future__ import annotations

import asyncio

from fitout_sync import keys, timelines
from fitout_sync.coordinator import is_temp_id
from fitout_sync.memory_store import InMemoryRecordStore
from fitout_sync.session import SyncSession
from fitout_sync.store import TIMELINE_DEPENDENCIES, TIMELINE_ITEMS

PROJECT = "proj-001"


class FakeFeedback:
    def __init__(self):
        self.successes: list[str] = []
        self.failures: list[str] = []

    def notify_success(self, message: str) -> None:
        self.successes.append(message)

    def notify_failure(self, message: str) -> None:
        self.failures.append(message)


def _session() -> tuple[SyncSession, InMemoryRecordStore, FakeFeedback]:
    store = InMemoryRecordStore()
    store.seed(
        TIMELINE_ITEMS,
        {"id": "phase-1", "project_id": PROJECT, "name": "Design", "item_type": "phase", "sort_order": 1},
        {"id": "item-001", "project_id": PROJECT, "name": "Test Task", "sort_order": 2},
        {"id": "item-002", "project_id": PROJECT, "name": "Site survey", "sort_order": 3},
    )
    store.seed(
        TIMELINE_DEPENDENCIES,
        {"id": "dep-1", "project_id": PROJECT, "source_id": "item-001", "target_id": "item-002"},
    )
    feedback = FakeFeedback()
    return SyncSession(store, feedback=feedback), store, feedback


def test_update_shows_new_name_before_store_answers():
    async def scenario():
        session, store, feedback = _session()
        await timelines.get_timeline_items(session, PROJECT)

        task = timelines.update_timeline_item(session, PROJECT, "item-001", {"name": "Updated Name"})
        cached = session.cache.read(keys.timeline_items(PROJECT))
        assert [i["name"] for i in cached if i["id"] == "item-001"] == ["Updated Name"]

        outcome = await task
        assert outcome.ok is True
        assert feedback.successes == ["Timeline item updated"]
        assert session.cache.is_stale(keys.timeline_items(PROJECT)) is True

        refreshed = await timelines.get_timeline_items(session, PROJECT)
        assert [i["name"] for i in refreshed if i["id"] == "item-001"] == ["Updated Name"]

    asyncio.run(scenario())


def test_update_ignores_fields_outside_whitelist():
    async def scenario():
        session, store, _ = _session()

        await timelines.update_timeline_item(
            session, PROJECT, "item-001", {"priority": 1, "project_id": "proj-999", "id": "other"}
        )

        [row] = [r for r in store.dump(TIMELINE_ITEMS) if r["id"] == "item-001"]
        assert row["priority"] == 1
        assert row["project_id"] == PROJECT

    asyncio.run(scenario())


def test_deleting_item_invalidates_its_dependencies():
    async def scenario():
        session, store, feedback = _session()
        await timelines.get_timeline_items(session, PROJECT)
        deps = await timelines.get_timeline_dependencies(session, PROJECT)
        assert [d["source_id"] for d in deps] == ["item-001"]

        outcome = await timelines.delete_timeline_item(session, PROJECT, "item-001")

        assert outcome.ok is True
        assert feedback.successes == ["Timeline item deleted"]
        assert session.cache.is_stale(keys.timeline_items(PROJECT)) is True
        assert session.cache.is_stale(keys.timeline_dependencies(PROJECT)) is True
        assert await timelines.get_timeline_dependencies(session, PROJECT) == []

    asyncio.run(scenario())


def test_deleting_phase_is_rolled_back():
    async def scenario():
        session, _, feedback = _session()
        before = await timelines.get_timeline_items(session, PROJECT)

        task = timelines.delete_timeline_item(session, PROJECT, "phase-1")
        assert "phase-1" not in [i["id"] for i in session.cache.read(keys.timeline_items(PROJECT))]

        outcome = await task

        assert outcome.ok is False
        assert session.cache.read(keys.timeline_items(PROJECT)) == before
        assert feedback.failures == ["Fixed phases cannot be deleted"]
        assert feedback.successes == []

    asyncio.run(scenario())


def test_created_item_id_resolves_after_confirmation():
    async def scenario():
        session, store, feedback = _session()
        await timelines.get_timeline_items(session, PROJECT)

        task = timelines.create_timeline_item(
            session, PROJECT, {"name": "Install joinery", "start_date": "2026-03-01", "end_date": "2026-03-05"}
        )
        [temp] = [i for i in session.cache.read(keys.timeline_items(PROJECT)) if i["name"] == "Install joinery"]
        assert is_temp_id(temp["id"])

        outcome = await task
        assert outcome.ok is True
        assert feedback.successes == ["Timeline item created"]
        assert session.reconciler.resolve_id(temp["id"]) == outcome.resolved_id

        # An edit made with the temporary id reaches the stored record.
        edited = await timelines.update_timeline_item(session, PROJECT, temp["id"], {"color": "#f59e0b"})
        assert edited.ok is True
        [row] = [r for r in store.dump(TIMELINE_ITEMS) if r["id"] == outcome.resolved_id]
        assert row["color"] == "#f59e0b"

    asyncio.run(scenario())


def test_creating_phase_is_rejected():
    async def scenario():
        session, _, feedback = _session()
        await timelines.get_timeline_items(session, PROJECT)

        outcome = await timelines.create_timeline_item(session, PROJECT, {"name": "Extra", "item_type": "phase"})

        assert outcome.ok is False
        assert feedback.failures == ["Phases are fixed and cannot be created manually"]
        assert len(session.cache.read(keys.timeline_items(PROJECT))) == 3
        assert session.reconciler.pending_count() == 0

    asyncio.run(scenario())


def test_circular_parent_is_rejected():
    async def scenario():
        session, store, feedback = _session()
        await timelines.update_timeline_item(session, PROJECT, "item-002", {"parent_id": "item-001"})

        outcome = await timelines.update_timeline_item(session, PROJECT, "item-001", {"parent_id": "item-002"})

        assert outcome.ok is False
        assert feedback.failures == ["Circular parent reference detected"]

    asyncio.run(scenario())


def test_date_change_is_silent_on_success():
    async def scenario():
        session, _, feedback = _session()
        await timelines.get_timeline_items(session, PROJECT)

        outcome = await timelines.update_timeline_item_dates(
            session, PROJECT, "item-001", "2026-04-01", "2026-04-10"
        )

        assert outcome.ok is True
        assert feedback.successes == []
        [item] = [i for i in session.cache.read(keys.timeline_items(PROJECT)) if i["id"] == "item-001"]
        assert (item["start_date"], item["end_date"]) == ("2026-04-01", "2026-04-10")

    asyncio.run(scenario())


def test_reorder_prediction_and_store_order():
    async def scenario():
        session, store, _ = _session()
        await timelines.get_timeline_items(session, PROJECT)

        task = timelines.reorder_timeline_items(session, PROJECT, ["phase-1", "item-002", "item-001"])
        assert [i["id"] for i in session.cache.read(keys.timeline_items(PROJECT))] == [
            "phase-1",
            "item-002",
            "item-001",
        ]

        outcome = await task
        assert outcome.ok is True
        refreshed = await timelines.get_timeline_items(session, PROJECT)
        assert [i["id"] for i in refreshed] == ["phase-1", "item-002", "item-001"]

    asyncio.run(scenario())


def test_reorder_with_unknown_item_uses_store_message():
    async def scenario():
        session, _, feedback = _session()
        before = await timelines.get_timeline_items(session, PROJECT)

        outcome = await timelines.reorder_timeline_items(session, PROJECT, ["item-002", "ghost"])

        assert outcome.ok is False
        assert feedback.failures == ["Failed to reorder items"]
        assert session.cache.read(keys.timeline_items(PROJECT)) == before

    asyncio.run(scenario())


def test_dependency_create_shows_temp_then_refreshes():
    async def scenario():
        session, store, feedback = _session()
        await timelines.get_timeline_dependencies(session, PROJECT)

        task = timelines.create_timeline_dependency(
            session, PROJECT, {"source_id": "item-002", "target_id": "phase-1"}
        )
        cached = session.cache.read(keys.timeline_dependencies(PROJECT))
        assert len(cached) == 2
        assert is_temp_id(cached[-1]["id"])

        outcome = await task
        assert outcome.ok is True
        assert feedback.successes == ["Dependency created"]
        assert session.cache.is_stale(keys.timeline_dependencies(PROJECT)) is True

        refreshed = await timelines.get_timeline_dependencies(session, PROJECT)
        assert outcome.resolved_id in [d["id"] for d in refreshed]
        assert not any(is_temp_id(d["id"]) for d in refreshed)

    asyncio.run(scenario())


def test_self_dependency_is_rejected_and_removed():
    async def scenario():
        session, _, feedback = _session()
        before = await timelines.get_timeline_dependencies(session, PROJECT)

        outcome = await timelines.create_timeline_dependency(
            session, PROJECT, {"source_id": "item-001", "target_id": "item-001"}
        )

        assert outcome.ok is False
        assert feedback.failures == ["Cannot create a dependency to itself"]
        assert session.cache.read(keys.timeline_dependencies(PROJECT)) == before

    asyncio.run(scenario())


def test_dependency_update_and_delete():
    async def scenario():
        session, store, feedback = _session()
        await timelines.get_timeline_dependencies(session, PROJECT)

        updated = await timelines.update_timeline_dependency(
            session, PROJECT, "dep-1", {"lag_days": 3, "source_id": "ignored"}
        )
        assert updated.ok is True
        assert store.dump(TIMELINE_DEPENDENCIES)[0]["lag_days"] == 3
        assert store.dump(TIMELINE_DEPENDENCIES)[0]["source_id"] == "item-001"

        deleted = await timelines.delete_timeline_dependency(session, PROJECT, "dep-1")
        assert deleted.ok is True
        assert store.dump(TIMELINE_DEPENDENCIES) == []

        missing = await timelines.delete_timeline_dependency(session, PROJECT, "dep-1")
        assert missing.ok is False
        assert feedback.failures == ["Dependency not found"]
        assert feedback.successes == ["Dependency updated", "Dependency deleted"]

    asyncio.run(scenario())


class SlowReadStore(InMemoryRecordStore):
    """Takes its rows first, then waits, like a read racing a write on the server."""

    async def list_records(self, entity, scope):
        rows = [r for r in self.dump(entity) if r.get("project_id") == scope]
        await asyncio.sleep(0.05)
        return rows


def test_read_started_before_update_does_not_land_as_fresh():
    async def scenario():
        store = SlowReadStore()
        store.seed(TIMELINE_ITEMS, {"id": "item-001", "project_id": PROJECT, "name": "Old", "sort_order": 1})
        session = SyncSession(store, feedback=FakeFeedback())
        key = keys.timeline_items(PROJECT)

        load = asyncio.ensure_future(timelines.get_timeline_items(session, PROJECT))
        await asyncio.sleep(0)

        outcome = await timelines.update_timeline_item(session, PROJECT, "item-001", {"name": "New"})
        assert outcome.ok is True

        loaded = await load
        assert loaded[0]["name"] == "Old"
        assert session.cache.is_stale(key) is True

        refreshed = await timelines.get_timeline_items(session, PROJECT)
        assert refreshed[0]["name"] == "New"

    asyncio.run(scenario())
