"""In-memory document store adapter.

Implements DocumentStorePort with process-local dictionaries guarded by
an asyncio.Lock. Suitable for development and tests; data does not
survive a restart.
"""

import asyncio
import copy
import logging
from collections.abc import Mapping
from typing import Any

from huddle.core.models import Entity, EntityFilter, EntityKind, TaskStatus
from huddle.core.ports import DocumentStorePort, validate_changes

logger = logging.getLogger(__name__)


def apply_changes(entity: Entity, changes: Mapping[str, Any]) -> None:
    """Write validated field changes onto an entity in place."""
    for name, value in changes.items():
        if name in ("start", "end"):
            entity.schedule = entity.schedule.with_date(name, value)
        elif name == "status":
            entity.status = TaskStatus(value)
        elif name == "completed":
            entity.completed = bool(value)
        else:
            setattr(entity, name, value)


class InMemoryDocumentStore(DocumentStorePort):
    """Thread-unsafe, task-safe in-memory store.

    Every read returns a deep copy and every write stores one, so callers
    can never mutate stored state behind the store's back. Each method
    holds the lock for its whole read-modify-write, which makes the
    conditional membership writes atomic.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._items: dict[EntityKind, dict[str, Entity]] = {
            EntityKind.PROJECT: {},
            EntityKind.TASK: {},
        }

    async def get(self, kind: EntityKind, entity_id: str) -> Entity | None:
        async with self._lock:
            entity = self._items[kind].get(entity_id)
            return None if entity is None else copy.deepcopy(entity)

    async def find(
        self, kind: EntityKind, flt: EntityFilter | None = None
    ) -> list[Entity]:
        async with self._lock:
            return [
                copy.deepcopy(entity)
                for entity in self._items[kind].values()
                if flt is None or flt.matches(entity)
            ]

    async def insert(self, entity: Entity) -> None:
        async with self._lock:
            bucket = self._items[entity.kind]
            if entity.id in bucket:
                raise ValueError(f"{entity.kind.value} {entity.id} already exists")
            bucket[entity.id] = copy.deepcopy(entity)

    async def update(
        self, kind: EntityKind, entity_id: str, changes: Mapping[str, Any]
    ) -> int:
        validate_changes(kind, changes)
        async with self._lock:
            entity = self._items[kind].get(entity_id)
            if entity is None:
                return 0
            updated = copy.deepcopy(entity)
            apply_changes(updated, changes)
            self._items[kind][entity_id] = updated
            return 1

    async def update_many(
        self, kind: EntityKind, flt: EntityFilter, changes: Mapping[str, Any]
    ) -> int:
        validate_changes(kind, changes)
        async with self._lock:
            count = 0
            for entity_id, entity in list(self._items[kind].items()):
                if flt.matches(entity):
                    updated = copy.deepcopy(entity)
                    apply_changes(updated, changes)
                    self._items[kind][entity_id] = updated
                    count += 1
            return count

    async def delete(self, kind: EntityKind, entity_id: str) -> int:
        async with self._lock:
            return 0 if self._items[kind].pop(entity_id, None) is None else 1

    async def delete_many(self, kind: EntityKind, flt: EntityFilter) -> int:
        async with self._lock:
            doomed = [eid for eid, e in self._items[kind].items() if flt.matches(e)]
            for entity_id in doomed:
                del self._items[kind][entity_id]
            return len(doomed)

    async def add_collaborator(
        self,
        kind: EntityKind,
        entity_id: str,
        user_id: str,
        accepted: bool = False,
    ) -> bool:
        async with self._lock:
            entity = self._items[kind].get(entity_id)
            if entity is None or user_id in entity.collaborators:
                return False
            entity.collaborators.add(user_id, accepted=accepted)
            return True

    async def accept_collaborator(
        self, kind: EntityKind, entity_id: str, user_id: str
    ) -> int:
        async with self._lock:
            entity = self._items[kind].get(entity_id)
            if entity is None:
                return 0
            membership = entity.collaborators.get(user_id)
            if membership is None or membership.accepted:
                return 0
            entity.collaborators.accept(user_id)
            return 1

    async def remove_collaborator(
        self,
        kind: EntityKind,
        entity_id: str,
        user_id: str,
        pending_only: bool = False,
    ) -> int:
        async with self._lock:
            entity = self._items[kind].get(entity_id)
            if entity is None:
                return 0
            membership = entity.collaborators.get(user_id)
            if membership is None or (pending_only and membership.accepted):
                return 0
            entity.collaborators.remove(user_id)
            return 1

    async def remove_collaborator_many(
        self, kind: EntityKind, flt: EntityFilter, user_id: str
    ) -> int:
        async with self._lock:
            count = 0
            for entity in self._items[kind].values():
                if flt.matches(entity) and user_id in entity.collaborators:
                    entity.collaborators.remove(user_id)
                    count += 1
            return count
