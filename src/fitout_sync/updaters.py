"""
Optimistic transforms over cached values.

Each factory returns a function from the current cached value (possibly None)
to the predicted value. Returning None means "leave the entry alone". Inputs
are never mutated.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from typing import Any

Record = dict[str, Any]
Updater = Callable[[Any], Any]


def append(record: Record) -> Updater:
    def _apply(old: list[Record] | None) -> list[Record]:
        return [*(old or []), dict(record)]

    return _apply


def patch(record_id: str, changes: Mapping[str, Any]) -> Updater:
    """Merge `changes` into one record; fields not in `changes` keep their value."""

    def _apply(old: list[Record] | None) -> list[Record] | None:
        if old is None:
            return None
        return [{**item, **changes} if item.get("id") == record_id else item for item in old]

    return _apply


def patch_many(record_ids: Iterable[str], changes: Mapping[str, Any]) -> Updater:
    targets = set(record_ids)

    def _apply(old: list[Record] | None) -> list[Record] | None:
        if old is None:
            return None
        return [{**item, **changes} if item.get("id") in targets else item for item in old]

    return _apply


def patch_all(changes: Mapping[str, Any]) -> Updater:
    def _apply(old: list[Record] | None) -> list[Record] | None:
        if old is None:
            return None
        return [{**item, **changes} for item in old]

    return _apply


def patch_record(changes: Mapping[str, Any]) -> Updater:
    """Like `patch`, for detail keys that cache a single record."""

    def _apply(old: Record | None) -> Record | None:
        if old is None:
            return None
        return {**old, **changes}

    return _apply


def remove(record_id: str) -> Updater:
    def _apply(old: list[Record] | None) -> list[Record] | None:
        if old is None:
            return None
        return [item for item in old if item.get("id") != record_id]

    return _apply


def reorder(record_ids: list[str]) -> Updater:
    """Reorder only the listed records.

    The listed records fill the slots they already occupy, in the requested
    order; records not listed stay where they are.
    """

    def _apply(old: list[Record] | None) -> list[Record] | None:
        if old is None:
            return None
        by_id = {item.get("id"): item for item in old}
        wanted = [record_id for record_id in record_ids if record_id in by_id]
        slots = set(wanted)
        cursor = iter(wanted)
        return [by_id[next(cursor)] if item.get("id") in slots else item for item in old]

    return _apply


def decrement(amount: int = 1) -> Updater:
    """Lower a cached counter, never below zero."""

    def _apply(old: int | None) -> int:
        if not old or old <= 0:
            return 0
        return max(old - amount, 0)

    return _apply


def set_value(value: Any) -> Updater:
    def _apply(_old: Any) -> Any:
        return value

    return _apply
