from __future__ import annotations

import asyncio

import pytest

from fitout_sync import keys, materials
from fitout_sync.memory_store import InMemoryRecordStore
from fitout_sync.session import SyncSession
from fitout_sync.store import ITEM_MATERIALS, MATERIALS, SCOPE_ITEMS, StoreError

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
        MATERIALS,
        {"id": "mat-1", "project_id": PROJECT, "name": "Oak veneer", "sort_order": 1},
        {"id": "mat-2", "project_id": PROJECT, "name": "Brass handle", "sort_order": 2},
    )
    store.seed(
        SCOPE_ITEMS,
        {"id": "si-1", "project_id": PROJECT, "name": "Reception desk", "sort_order": 1},
    )
    store.seed(
        ITEM_MATERIALS,
        {"id": "im-1", "project_id": PROJECT, "scope_item_id": "si-1", "material_id": "mat-1"},
    )
    feedback = FakeFeedback()
    return SyncSession(store, feedback=feedback), store, feedback


def _assigned(store: InMemoryRecordStore, scope_item_id: str) -> set[str]:
    return {r["material_id"] for r in store.dump(ITEM_MATERIALS) if r["scope_item_id"] == scope_item_id}


def test_create_has_no_prediction_and_refreshes_list():
    async def scenario():
        session, store, feedback = _session()
        await materials.get_materials(session, PROJECT)

        task = materials.create_material(session, PROJECT, {"name": "Fabric", "sort_order": 3}, ["si-1"])
        assert len(session.cache.read(keys.material_list(PROJECT))) == 2

        outcome = await task
        assert outcome.ok is True
        assert feedback.successes == ["Material created successfully"]
        assert session.cache.is_stale(keys.material_list(PROJECT)) is True
        assert outcome.value["id"] in _assigned(store, "si-1")

        refreshed = await materials.get_materials(session, PROJECT)
        assert [m["name"] for m in refreshed] == ["Oak veneer", "Brass handle", "Fabric"]

    asyncio.run(scenario())


def test_update_patches_list_and_detail():
    async def scenario():
        session, _, feedback = _session()
        await materials.get_materials(session, PROJECT)
        await materials.get_material(session, "mat-1")

        task = materials.update_material(session, PROJECT, "mat-1", {"name": "Walnut veneer"})
        assert session.cache.read(keys.material_detail("mat-1"))["name"] == "Walnut veneer"
        assert session.cache.read(keys.material_list(PROJECT))[0]["name"] == "Walnut veneer"

        outcome = await task
        assert outcome.ok is True
        assert feedback.successes == ["Material updated successfully"]

    asyncio.run(scenario())


def test_invalid_status_rolls_back():
    async def scenario():
        session, _, feedback = _session()
        before = await materials.get_materials(session, PROJECT)

        outcome = await materials.update_material_status(session, PROJECT, "mat-2", "lost")

        assert outcome.ok is False
        assert session.cache.read(keys.material_list(PROJECT)) == before
        assert feedback.failures == ["Invalid material status: lost"]

    asyncio.run(scenario())


def test_status_change_message_names_status():
    async def scenario():
        session, _, feedback = _session()

        await materials.update_material_status(session, PROJECT, "mat-2", "approved")

        assert feedback.successes == ["Material approved"]

    asyncio.run(scenario())


def test_delete_is_soft_and_hides_material():
    async def scenario():
        session, store, feedback = _session()
        await materials.get_materials(session, PROJECT)

        task = materials.delete_material(session, PROJECT, "mat-2")
        assert [m["id"] for m in session.cache.read(keys.material_list(PROJECT))] == ["mat-1"]
        await task

        assert [m["id"] for m in await materials.get_materials(session, PROJECT)] == ["mat-1"]
        [row] = [r for r in store.dump(MATERIALS) if r["id"] == "mat-2"]
        assert row["is_deleted"] is True
        assert feedback.successes == ["Material deleted successfully"]

    asyncio.run(scenario())


def test_get_missing_material_raises_not_found():
    async def scenario():
        session, _, _ = _session()
        with pytest.raises(StoreError) as exc_info:
            await materials.get_material(session, "mat-404")
        assert exc_info.value.code == "not_found"

    asyncio.run(scenario())


def test_assignment_diff_adds_and_removes():
    async def scenario():
        session, store, feedback = _session()
        await materials.get_materials(session, PROJECT)

        outcome = await materials.update_item_material_assignments(
            session, PROJECT, "si-1", ["mat-1"], ["mat-2"]
        )

        assert outcome.ok is True
        assert _assigned(store, "si-1") == {"mat-2"}
        assert set(outcome.invalidated) == {keys.material_list(PROJECT), keys.scope_item_list(PROJECT)}
        assert feedback.successes == ["Material assignments updated"]

    asyncio.run(scenario())


def test_remove_missing_assignment_is_rejected():
    async def scenario():
        session, store, feedback = _session()

        outcome = await materials.remove_item_material(session, PROJECT, "si-1", "mat-2")
        assert outcome.ok is False
        assert feedback.failures == ["Assignment not found"]

        removed = await materials.remove_item_material(session, PROJECT, "si-1", "mat-1")
        assert removed.ok is True
        assert _assigned(store, "si-1") == set()

    asyncio.run(scenario())


def test_delete_marks_cached_detail_stale():
    async def scenario():
        session, _, _ = _session()
        await materials.get_material(session, "mat-2")

        outcome = await materials.delete_material(session, PROJECT, "mat-2")

        assert keys.material_detail("mat-2") in outcome.invalidated
        assert session.cache.is_stale(keys.material_detail("mat-2")) is True
        with pytest.raises(StoreError) as exc_info:
            await materials.get_material(session, "mat-2")
        assert exc_info.value.code == "not_found"

    asyncio.run(scenario())
