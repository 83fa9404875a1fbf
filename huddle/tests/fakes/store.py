"""Fake DocumentStorePort implementation for testing."""

import copy
from collections.abc import Mapping
from typing import Any

from huddle.core.models import Entity, EntityFilter, EntityKind, TaskStatus
from huddle.core.ports import DocumentStorePort, validate_changes


class FakeDocumentStorePort(DocumentStorePort):
    """In-memory document store for testing.

    Tracks every call for assertions and supports two kinds of injected
    trouble:

    - ``fail_on``: method name -> exception raised when it is called
    - ``no_effect``: method names whose writes are skipped and report 0
    """

    def __init__(self):
        """Initialize with an empty store."""
        self.entities: dict[EntityKind, dict[str, Entity]] = {
            EntityKind.PROJECT: {},
            EntityKind.TASK: {},
        }
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.fail_on: dict[str, Exception] = {}
        self.no_effect: set[str] = set()
        self.closed = False

    def seed(self, *entities: Entity) -> None:
        """Store entities directly, bypassing call tracking."""
        for entity in entities:
            self.entities[entity.kind][entity.id] = copy.deepcopy(entity)

    def stored(self, kind: EntityKind, entity_id: str) -> Entity | None:
        """Peek at stored state without recording a call."""
        entity = self.entities[kind].get(entity_id)
        return None if entity is None else copy.deepcopy(entity)

    def calls_to(self, method: str) -> list[tuple[Any, ...]]:
        return [args for name, args in self.calls if name == method]

    def _record(self, method: str, *args: Any) -> bool:
        """Record a call; return False when the write must be skipped."""
        self.calls.append((method, args))
        if method in self.fail_on:
            raise self.fail_on[method]
        return method not in self.no_effect

    async def get(self, kind: EntityKind, entity_id: str) -> Entity | None:
        self._record("get", kind, entity_id)
        return self.stored(kind, entity_id)

    async def find(
        self, kind: EntityKind, flt: EntityFilter | None = None
    ) -> list[Entity]:
        self._record("find", kind, flt)
        return [
            copy.deepcopy(e)
            for e in self.entities[kind].values()
            if flt is None or flt.matches(e)
        ]

    async def insert(self, entity: Entity) -> None:
        if self._record("insert", entity):
            self.entities[entity.kind][entity.id] = copy.deepcopy(entity)

    async def update(
        self, kind: EntityKind, entity_id: str, changes: Mapping[str, Any]
    ) -> int:
        validate_changes(kind, changes)
        if not self._record("update", kind, entity_id, dict(changes)):
            return 0
        entity = self.entities[kind].get(entity_id)
        if entity is None:
            return 0
        self._apply(entity, changes)
        return 1

    async def update_many(
        self, kind: EntityKind, flt: EntityFilter, changes: Mapping[str, Any]
    ) -> int:
        validate_changes(kind, changes)
        if not self._record("update_many", kind, flt, dict(changes)):
            return 0
        matched = [e for e in self.entities[kind].values() if flt.matches(e)]
        for entity in matched:
            self._apply(entity, changes)
        return len(matched)

    async def delete(self, kind: EntityKind, entity_id: str) -> int:
        if not self._record("delete", kind, entity_id):
            return 0
        return 0 if self.entities[kind].pop(entity_id, None) is None else 1

    async def delete_many(self, kind: EntityKind, flt: EntityFilter) -> int:
        if not self._record("delete_many", kind, flt):
            return 0
        doomed = [i for i, e in self.entities[kind].items() if flt.matches(e)]
        for entity_id in doomed:
            del self.entities[kind][entity_id]
        return len(doomed)

    async def add_collaborator(
        self,
        kind: EntityKind,
        entity_id: str,
        user_id: str,
        accepted: bool = False,
    ) -> bool:
        if not self._record("add_collaborator", kind, entity_id, user_id, accepted):
            return False
        entity = self.entities[kind].get(entity_id)
        if entity is None or user_id in entity.collaborators:
            return False
        entity.collaborators.add(user_id, accepted=accepted)
        return True

    async def accept_collaborator(
        self, kind: EntityKind, entity_id: str, user_id: str
    ) -> int:
        if not self._record("accept_collaborator", kind, entity_id, user_id):
            return 0
        entity = self.entities[kind].get(entity_id)
        membership = None if entity is None else entity.collaborators.get(user_id)
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
        if not self._record("remove_collaborator", kind, entity_id, user_id, pending_only):
            return 0
        entity = self.entities[kind].get(entity_id)
        membership = None if entity is None else entity.collaborators.get(user_id)
        if membership is None or (pending_only and membership.accepted):
            return 0
        entity.collaborators.remove(user_id)
        return 1

    async def remove_collaborator_many(
        self, kind: EntityKind, flt: EntityFilter, user_id: str
    ) -> int:
        if not self._record("remove_collaborator_many", kind, flt, user_id):
            return 0
        count = 0
        for entity in self.entities[kind].values():
            if flt.matches(entity) and user_id in entity.collaborators:
                entity.collaborators.remove(user_id)
                count += 1
        return count

    async def close(self) -> None:
        self.closed = True

    @staticmethod
    def _apply(entity: Entity, changes: Mapping[str, Any]) -> None:
        for name, value in changes.items():
            if name in ("start", "end"):
                entity.schedule = entity.schedule.with_date(name, value)
            elif name == "status":
                entity.status = TaskStatus(value)
            else:
                setattr(entity, name, value)
