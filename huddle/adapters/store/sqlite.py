"""SQLite document store adapter.

Implements DocumentStorePort using SQLite with aiosqlite for async access.
Projects and tasks live in their own tables; memberships live in a shared
table keyed by (kind, entity_id, user_id), so the conditional membership
writes are single statements and therefore atomic.
"""

import asyncio
import logging
from collections.abc import Mapping
from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite

from huddle.core.models import (
    CollaboratorSet,
    Entity,
    EntityFilter,
    EntityKind,
    Project,
    Schedule,
    Task,
    TaskStatus,
)
from huddle.core.ports import DocumentStorePort, validate_changes

logger = logging.getLogger(__name__)

_TABLES = {EntityKind.PROJECT: "projects", EntityKind.TASK: "tasks"}

# Entity field name -> column name, where they differ.
_COLUMNS = {"start": "start_at", "end": "end_at"}


def _to_column_value(name: str, value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, TaskStatus):
        return value.value
    if name == "status":
        return TaskStatus(value).value
    if name == "completed":
        return 1 if value else 0
    return value


class SQLiteDocumentStore(DocumentStorePort):
    """SQLite-backed document store with connection pooling and async access."""

    def __init__(self, db_path: str, pool_size: int = 5):
        """Initialize SQLite store with connection pooling.

        Args:
            db_path: Path to SQLite database file.
            pool_size: Number of connections to maintain in the pool.
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._pool: list[aiosqlite.Connection] = []
        self._pool_lock = asyncio.Lock()
        self._pool_size = pool_size
        self._schema_initialized = False

    async def _get_connection(self) -> aiosqlite.Connection:
        """Get a connection from the pool or create a new one."""
        async with self._pool_lock:
            if self._pool:
                conn = self._pool.pop()
            else:
                conn = await aiosqlite.connect(str(self.db_path))
                conn.row_factory = aiosqlite.Row
                await conn.execute("PRAGMA foreign_keys = ON")
        return conn

    async def _return_connection(self, conn: aiosqlite.Connection) -> None:
        """Return a connection to the pool."""
        async with self._pool_lock:
            if len(self._pool) < self._pool_size:
                self._pool.append(conn)
            else:
                await conn.close()

    async def close(self) -> None:
        """Close all pooled connections."""
        async with self._pool_lock:
            for conn in self._pool:
                await conn.close()
            self._pool.clear()

    async def _init_schema(self) -> None:
        """Create tables on first use. Subsequent calls are no-ops."""
        if self._schema_initialized:
            return

        conn = await self._get_connection()
        try:
            await conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS projects (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT UNIQUE NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL,
                    label TEXT NOT NULL,
                    creator_id TEXT NOT NULL,
                    start_at TEXT NOT NULL,
                    end_at TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    completed INTEGER NOT NULL DEFAULT 0
                );
                CREATE TABLE IF NOT EXISTS tasks (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT UNIQUE NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    creator_id TEXT NOT NULL,
                    project_id TEXT NOT NULL,
                    start_at TEXT NOT NULL,
                    end_at TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'open',
                    completed INTEGER NOT NULL DEFAULT 0
                );
                CREATE TABLE IF NOT EXISTS memberships (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    kind TEXT NOT NULL,
                    entity_id TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    accepted INTEGER NOT NULL DEFAULT 0,
                    UNIQUE (kind, entity_id, user_id)
                );
                CREATE INDEX IF NOT EXISTS idx_tasks_project ON tasks(project_id);
                CREATE INDEX IF NOT EXISTS idx_memberships_user
                    ON memberships(kind, user_id);
                """
            )
            await conn.commit()
            self._schema_initialized = True
        finally:
            await self._return_connection(conn)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, kind: EntityKind, entity_id: str) -> Entity | None:
        await self._init_schema()

        conn = await self._get_connection()
        try:
            cursor = await conn.execute(
                f"SELECT * FROM {_TABLES[kind]} WHERE id = ?", (entity_id,)
            )
            row = await cursor.fetchone()
            if row is None:
                return None
            return await self._row_to_entity(conn, kind, row)
        finally:
            await self._return_connection(conn)

    async def find(
        self, kind: EntityKind, flt: EntityFilter | None = None
    ) -> list[Entity]:
        await self._init_schema()

        where, params = self._where(kind, flt)
        conn = await self._get_connection()
        try:
            cursor = await conn.execute(
                f"SELECT * FROM {_TABLES[kind]}{where} ORDER BY seq", params
            )
            rows = await cursor.fetchall()
            return [await self._row_to_entity(conn, kind, row) for row in rows]
        finally:
            await self._return_connection(conn)

    # ------------------------------------------------------------------
    # Document writes
    # ------------------------------------------------------------------

    async def insert(self, entity: Entity) -> None:
        await self._init_schema()

        schedule = entity.schedule
        conn = await self._get_connection()
        try:
            if isinstance(entity, Project):
                await conn.execute(
                    """
                    INSERT INTO projects
                    (id, title, description, label, creator_id,
                     start_at, end_at, created_at, completed)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        entity.id,
                        entity.title,
                        entity.description,
                        entity.label,
                        entity.creator_id,
                        schedule.start.isoformat(),
                        schedule.end.isoformat(),
                        schedule.created.isoformat(),
                        int(entity.completed),
                    ),
                )
            else:
                await conn.execute(
                    """
                    INSERT INTO tasks
                    (id, title, description, creator_id, project_id,
                     start_at, end_at, created_at, status, completed)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        entity.id,
                        entity.title,
                        entity.description,
                        entity.creator_id,
                        entity.project_id,
                        schedule.start.isoformat(),
                        schedule.end.isoformat(),
                        schedule.created.isoformat(),
                        entity.status.value,
                        int(entity.completed),
                    ),
                )
            await conn.executemany(
                """
                INSERT INTO memberships (kind, entity_id, user_id, accepted)
                VALUES (?, ?, ?, ?)
                """,
                [
                    (entity.kind.value, entity.id, m.user_id, int(m.accepted))
                    for m in entity.collaborators
                ],
            )
            await conn.commit()
        except Exception:
            await conn.rollback()
            raise
        finally:
            await self._return_connection(conn)

    async def update(
        self, kind: EntityKind, entity_id: str, changes: Mapping[str, Any]
    ) -> int:
        validate_changes(kind, changes)
        await self._init_schema()

        assignments, params = self._assignments(changes)
        return await self._write(
            f"UPDATE {_TABLES[kind]} SET {assignments} WHERE id = ?",
            (*params, entity_id),
        )

    async def update_many(
        self, kind: EntityKind, flt: EntityFilter, changes: Mapping[str, Any]
    ) -> int:
        validate_changes(kind, changes)
        await self._init_schema()

        assignments, params = self._assignments(changes)
        where, where_params = self._where(kind, flt)
        return await self._write(
            f"UPDATE {_TABLES[kind]} SET {assignments}{where}",
            (*params, *where_params),
        )

    async def delete(self, kind: EntityKind, entity_id: str) -> int:
        await self._init_schema()

        conn = await self._get_connection()
        try:
            cursor = await conn.execute(
                f"DELETE FROM {_TABLES[kind]} WHERE id = ?", (entity_id,)
            )
            deleted = cursor.rowcount
            await conn.execute(
                "DELETE FROM memberships WHERE kind = ? AND entity_id = ?",
                (kind.value, entity_id),
            )
            await conn.commit()
            return deleted
        except Exception:
            await conn.rollback()
            raise
        finally:
            await self._return_connection(conn)

    async def delete_many(self, kind: EntityKind, flt: EntityFilter) -> int:
        await self._init_schema()

        where, params = self._where(kind, flt)
        conn = await self._get_connection()
        try:
            cursor = await conn.execute(
                f"SELECT id FROM {_TABLES[kind]}{where}", params
            )
            ids = [row["id"] for row in await cursor.fetchall()]
            for entity_id in ids:
                await conn.execute(
                    f"DELETE FROM {_TABLES[kind]} WHERE id = ?", (entity_id,)
                )
                await conn.execute(
                    "DELETE FROM memberships WHERE kind = ? AND entity_id = ?",
                    (kind.value, entity_id),
                )
            await conn.commit()
            return len(ids)
        except Exception:
            await conn.rollback()
            raise
        finally:
            await self._return_connection(conn)

    # ------------------------------------------------------------------
    # Membership writes
    # ------------------------------------------------------------------

    async def add_collaborator(
        self,
        kind: EntityKind,
        entity_id: str,
        user_id: str,
        accepted: bool = False,
    ) -> bool:
        await self._init_schema()

        # INSERT ... SELECT keeps the existence check and the insert in one statement.
        inserted = await self._write(
            f"""
            INSERT OR IGNORE INTO memberships (kind, entity_id, user_id, accepted)
            SELECT ?, id, ?, ? FROM {_TABLES[kind]} WHERE id = ?
            """,
            (kind.value, user_id, int(accepted), entity_id),
        )
        return inserted > 0

    async def accept_collaborator(
        self, kind: EntityKind, entity_id: str, user_id: str
    ) -> int:
        await self._init_schema()

        return await self._write(
            """
            UPDATE memberships SET accepted = 1
            WHERE kind = ? AND entity_id = ? AND user_id = ? AND accepted = 0
            """,
            (kind.value, entity_id, user_id),
        )

    async def remove_collaborator(
        self,
        kind: EntityKind,
        entity_id: str,
        user_id: str,
        pending_only: bool = False,
    ) -> int:
        await self._init_schema()

        query = "DELETE FROM memberships WHERE kind = ? AND entity_id = ? AND user_id = ?"
        if pending_only:
            query += " AND accepted = 0"
        return await self._write(query, (kind.value, entity_id, user_id))

    async def remove_collaborator_many(
        self, kind: EntityKind, flt: EntityFilter, user_id: str
    ) -> int:
        await self._init_schema()

        where, params = self._where(kind, flt)
        return await self._write(
            f"""
            DELETE FROM memberships
            WHERE kind = ? AND user_id = ?
              AND entity_id IN (SELECT id FROM {_TABLES[kind]}{where})
            """,
            (kind.value, user_id, *params),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _write(self, query: str, params: tuple[Any, ...]) -> int:
        conn = await self._get_connection()
        try:
            cursor = await conn.execute(query, params)
            await conn.commit()
            return cursor.rowcount
        finally:
            await self._return_connection(conn)

    @staticmethod
    def _assignments(changes: Mapping[str, Any]) -> tuple[str, list[Any]]:
        columns = [f"{_COLUMNS.get(name, name)} = ?" for name in changes]
        values = [_to_column_value(name, value) for name, value in changes.items()]
        return ", ".join(columns), values

    @staticmethod
    def _where(kind: EntityKind, flt: EntityFilter | None) -> tuple[str, list[Any]]:
        """Translate an EntityFilter into a WHERE clause and its parameters."""
        if flt is None:
            return "", []
        clauses: list[str] = []
        params: list[Any] = []
        if flt.project_id is not None:
            if kind is not EntityKind.TASK:
                # Projects have no project_id; nothing can match.
                return " WHERE 0", []
            clauses.append("project_id = ?")
            params.append(flt.project_id)
        if flt.creator_id is not None:
            clauses.append("creator_id = ?")
            params.append(flt.creator_id)
        if flt.collaborator_id is not None:
            membership = "SELECT entity_id FROM memberships WHERE kind = ? AND user_id = ?"
            params.extend([kind.value, flt.collaborator_id])
            if flt.accepted is not None:
                membership += " AND accepted = ?"
                params.append(int(flt.accepted))
            clauses.append(f"id IN ({membership})")
        if not clauses:
            return "", []
        return " WHERE " + " AND ".join(clauses), params

    async def _row_to_entity(
        self, conn: aiosqlite.Connection, kind: EntityKind, row: aiosqlite.Row
    ) -> Entity:
        cursor = await conn.execute(
            """
            SELECT user_id, accepted FROM memberships
            WHERE kind = ? AND entity_id = ? ORDER BY seq
            """,
            (kind.value, row["id"]),
        )
        collaborators = CollaboratorSet(
            {r["user_id"]: bool(r["accepted"]) for r in await cursor.fetchall()}
        )
        schedule = Schedule(
            start=datetime.fromisoformat(row["start_at"]),
            end=datetime.fromisoformat(row["end_at"]),
            created=datetime.fromisoformat(row["created_at"]),
        )
        if kind is EntityKind.PROJECT:
            return Project(
                id=row["id"],
                title=row["title"],
                description=row["description"],
                label=row["label"],
                creator_id=row["creator_id"],
                schedule=schedule,
                completed=bool(row["completed"]),
                collaborators=collaborators,
            )
        return Task(
            id=row["id"],
            title=row["title"],
            creator_id=row["creator_id"],
            project_id=row["project_id"],
            schedule=schedule,
            description=row["description"],
            status=TaskStatus(row["status"]),
            completed=bool(row["completed"]),
            collaborators=collaborators,
        )
