"""
Collection keys and per-kind freshness policy.
"""

from __future__ import annotations

from dataclasses import dataclass

TIMELINE_ITEMS = "timeline_items"
TIMELINE_DEPENDENCIES = "timeline_dependencies"
NOTIFICATIONS = "notifications"
NOTIFICATIONS_UNREAD = "notifications_unread"
MATERIALS = "materials"
MATERIAL_DETAIL = "material_detail"
SCOPE_ITEMS = "scope_items"
SCOPE_ITEM_DETAIL = "scope_item_detail"

# Seconds a cached value is considered fresh, by key kind.
STALE_SECONDS: dict[str, float] = {
    TIMELINE_ITEMS: 30,
    TIMELINE_DEPENDENCIES: 30,
    NOTIFICATIONS: 60,
    NOTIFICATIONS_UNREAD: 30,
    MATERIALS: 60,
    MATERIAL_DETAIL: 60,
    SCOPE_ITEMS: 60,
    SCOPE_ITEM_DETAIL: 60,
}

# Kinds refreshed on a fixed interval regardless of reads.
REFETCH_INTERVAL_SECONDS: dict[str, float] = {
    NOTIFICATIONS_UNREAD: 60,
}


@dataclass(frozen=True)
class CollectionKey:
    """Identifies one cached value: an entity kind plus a scope.

    A key with ``scope=None`` is a wildcard and is only meaningful for
    invalidation, where it covers every key of the same kind.
    """

    kind: str
    scope: str | None = None

    def covers(self, other: CollectionKey) -> bool:
        if self.kind != other.kind:
            return False
        return self.scope is None or self.scope == other.scope

    @property
    def is_wildcard(self) -> bool:
        return self.scope is None

    def __str__(self) -> str:
        return f"{self.kind}:{self.scope if self.scope is not None else '*'}"


def timeline_items(project_id: str | None = None) -> CollectionKey:
    return CollectionKey(TIMELINE_ITEMS, project_id)


def timeline_dependencies(project_id: str | None = None) -> CollectionKey:
    return CollectionKey(TIMELINE_DEPENDENCIES, project_id)


def notification_list(user_id: str | None = None) -> CollectionKey:
    return CollectionKey(NOTIFICATIONS, user_id)


def notification_unread_count(user_id: str | None = None) -> CollectionKey:
    return CollectionKey(NOTIFICATIONS_UNREAD, user_id)


def notification_all(user_id: str | None = None) -> tuple[CollectionKey, ...]:
    return (notification_list(user_id), notification_unread_count(user_id))


def material_list(project_id: str | None = None) -> CollectionKey:
    return CollectionKey(MATERIALS, project_id)


def material_detail(material_id: str | None = None) -> CollectionKey:
    return CollectionKey(MATERIAL_DETAIL, material_id)


def scope_item_list(project_id: str | None = None) -> CollectionKey:
    return CollectionKey(SCOPE_ITEMS, project_id)


def scope_item_detail(item_id: str | None = None) -> CollectionKey:
    return CollectionKey(SCOPE_ITEM_DETAIL, item_id)
