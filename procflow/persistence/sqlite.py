"""SQLite implementation of the workflow repositories."""

from __future__ import annotations

import asyncio
import sqlite3
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from ..contracts import StepStatus, WorkflowDefinition, WorkflowStatus
from ..utils.clock import ensure_utc, utcnow
from .models import StepInstance, WorkflowInstance
from .repository import (
    DefinitionRepository,
    InstanceRepository,
    RepositorySet,
    StepInstanceRepository,
)


def _ts(value: Optional[datetime]) -> Optional[str]:
    # Fixed-width ISO text so timestamps compare correctly as strings.
    if value is None:
        return None
    return ensure_utc(value).isoformat(timespec="microseconds")


class SQLiteDatabase:
    """Shared SQLite connection and schema for the three repositories.

    Each table keeps the full model as a JSON document next to the columns
    the repositories filter on.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_definitions (
                id TEXT PRIMARY KEY,
                name TEXT,
                version TEXT,
                document TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_instances (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT UNIQUE NOT NULL,
                definition_id TEXT NOT NULL,
                status TEXT NOT NULL,
                correlation_id TEXT,
                document TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS step_instances (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT UNIQUE NOT NULL,
                workflow_instance_id TEXT NOT NULL,
                status TEXT NOT NULL,
                due_at TEXT,
                assigned_to TEXT,
                document TEXT NOT NULL
            )
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def execute(self, query: str, *params: Any) -> None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        self._conn.commit()

    def fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchone()

    def fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchall()

    def close(self) -> None:
        self._conn.close()


class SQLiteDefinitionRepository(DefinitionRepository):
    def __init__(self, db: SQLiteDatabase):
        self._db = db

    async def get_by_id(self, definition_id: str) -> WorkflowDefinition | None:
        row = await asyncio.to_thread(
            self._db.fetchone,
            "SELECT document FROM workflow_definitions WHERE id = ?",
            definition_id,
        )
        return WorkflowDefinition.model_validate_json(row["document"]) if row else None

    async def get_by_name_and_version(
        self, name: str, version: str
    ) -> WorkflowDefinition | None:
        row = await asyncio.to_thread(
            self._db.fetchone,
            "SELECT document FROM workflow_definitions WHERE name = ? AND version = ?",
            name,
            version,
        )
        return WorkflowDefinition.model_validate_json(row["document"]) if row else None

    async def list_definitions(self) -> list[WorkflowDefinition]:
        rows = await asyncio.to_thread(
            self._db.fetchall, "SELECT document FROM workflow_definitions ORDER BY id"
        )
        return [WorkflowDefinition.model_validate_json(r["document"]) for r in rows]

    async def create(self, definition: WorkflowDefinition) -> str:
        await asyncio.to_thread(
            self._db.execute,
            "INSERT INTO workflow_definitions (id, name, version, document) VALUES (?, ?, ?, ?)",
            definition.id,
            definition.name,
            definition.version,
            definition.model_dump_json(),
        )
        return definition.id

    async def update(self, definition: WorkflowDefinition) -> None:
        definition.updated_at = utcnow()
        await asyncio.to_thread(
            self._db.execute,
            "UPDATE workflow_definitions SET name = ?, version = ?, document = ? WHERE id = ?",
            definition.name,
            definition.version,
            definition.model_dump_json(),
            definition.id,
        )

    async def delete(self, definition_id: str) -> None:
        await asyncio.to_thread(
            self._db.execute, "DELETE FROM workflow_definitions WHERE id = ?", definition_id
        )


class SQLiteInstanceRepository(InstanceRepository):
    _SELECT = "SELECT document FROM workflow_instances"

    def __init__(self, db: SQLiteDatabase):
        self._db = db

    @staticmethod
    def _document(instance: WorkflowInstance) -> str:
        return instance.model_dump_json(exclude={"step_history"})

    async def _fetch_many(self, where: str = "", *params: Any) -> list[WorkflowInstance]:
        rows = await asyncio.to_thread(
            self._db.fetchall, f"{self._SELECT} {where} ORDER BY seq", *params
        )
        return [WorkflowInstance.model_validate_json(r["document"]) for r in rows]

    async def get_by_id(self, instance_id: str) -> WorkflowInstance | None:
        row = await asyncio.to_thread(
            self._db.fetchone, f"{self._SELECT} WHERE id = ?", instance_id
        )
        return WorkflowInstance.model_validate_json(row["document"]) if row else None

    async def get_by_status(self, status: WorkflowStatus) -> list[WorkflowInstance]:
        return await self._fetch_many("WHERE status = ?", WorkflowStatus(status).value)

    async def get_by_definition_id(self, definition_id: str) -> list[WorkflowInstance]:
        return await self._fetch_many("WHERE definition_id = ?", definition_id)

    async def get_by_correlation_id(self, correlation_id: str) -> WorkflowInstance | None:
        row = await asyncio.to_thread(
            self._db.fetchone,
            f"{self._SELECT} WHERE correlation_id = ? ORDER BY seq LIMIT 1",
            correlation_id,
        )
        return WorkflowInstance.model_validate_json(row["document"]) if row else None

    async def list_instances(self) -> list[WorkflowInstance]:
        return await self._fetch_many()

    async def create(self, instance: WorkflowInstance) -> str:
        instance.id = instance.id or str(uuid.uuid4())
        await asyncio.to_thread(
            self._db.execute,
            """
            INSERT INTO workflow_instances (id, definition_id, status, correlation_id, document)
            VALUES (?, ?, ?, ?, ?)
            """,
            instance.id,
            instance.definition_id,
            instance.status.value,
            instance.correlation_id,
            self._document(instance),
        )
        return instance.id

    async def update(self, instance: WorkflowInstance) -> None:
        instance.updated_at = utcnow()
        await asyncio.to_thread(
            self._db.execute,
            """
            UPDATE workflow_instances
            SET status = ?, correlation_id = ?, document = ?
            WHERE id = ?
            """,
            instance.status.value,
            instance.correlation_id,
            self._document(instance),
            instance.id,
        )

    async def delete(self, instance_id: str) -> None:
        await asyncio.to_thread(
            self._db.execute, "DELETE FROM workflow_instances WHERE id = ?", instance_id
        )


class SQLiteStepInstanceRepository(StepInstanceRepository):
    _SELECT = "SELECT document FROM step_instances"

    def __init__(self, db: SQLiteDatabase):
        self._db = db

    async def _fetch_many(self, where: str, *params: Any) -> list[StepInstance]:
        rows = await asyncio.to_thread(
            self._db.fetchall, f"{self._SELECT} {where} ORDER BY seq", *params
        )
        return [StepInstance.model_validate_json(r["document"]) for r in rows]

    async def get_by_id(self, step_instance_id: str) -> StepInstance | None:
        row = await asyncio.to_thread(
            self._db.fetchone, f"{self._SELECT} WHERE id = ?", step_instance_id
        )
        return StepInstance.model_validate_json(row["document"]) if row else None

    async def get_by_workflow_instance_id(self, instance_id: str) -> list[StepInstance]:
        return await self._fetch_many("WHERE workflow_instance_id = ?", instance_id)

    async def get_pending(self) -> list[StepInstance]:
        return await self._fetch_many(
            "WHERE status IN (?, ?)",
            StepStatus.PENDING.value,
            StepStatus.WAITING_FOR_INPUT.value,
        )

    async def get_scheduled(self, before: datetime) -> list[StepInstance]:
        return await self._fetch_many(
            "WHERE status = ? AND due_at IS NOT NULL AND due_at <= ?",
            StepStatus.SCHEDULED.value,
            _ts(before),
        )

    async def get_due_retries(self, before: datetime) -> list[StepInstance]:
        return await self._fetch_many(
            "WHERE status = ? AND due_at IS NOT NULL AND due_at <= ?",
            StepStatus.PENDING.value,
            _ts(before),
        )

    async def get_by_assigned_user(self, user_id: str) -> list[StepInstance]:
        return await self._fetch_many(
            "WHERE assigned_to = ? AND status = ?",
            user_id,
            StepStatus.WAITING_FOR_INPUT.value,
        )

    async def create(self, step_instance: StepInstance) -> str:
        step_instance.id = step_instance.id or str(uuid.uuid4())
        await asyncio.to_thread(
            self._db.execute,
            """
            INSERT INTO step_instances
                (id, workflow_instance_id, status, due_at, assigned_to, document)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            step_instance.id,
            step_instance.workflow_instance_id,
            step_instance.status.value,
            _ts(step_instance.due_at),
            step_instance.assigned_to,
            step_instance.model_dump_json(),
        )
        return step_instance.id

    async def update(self, step_instance: StepInstance) -> None:
        await asyncio.to_thread(
            self._db.execute,
            """
            UPDATE step_instances
            SET status = ?, due_at = ?, assigned_to = ?, document = ?
            WHERE id = ?
            """,
            step_instance.status.value,
            _ts(step_instance.due_at),
            step_instance.assigned_to,
            step_instance.model_dump_json(),
            step_instance.id,
        )

    async def delete(self, step_instance_id: str) -> None:
        await asyncio.to_thread(
            self._db.execute, "DELETE FROM step_instances WHERE id = ?", step_instance_id
        )


def create_sqlite_repositories(db_path: str | Path) -> RepositorySet:
    db = SQLiteDatabase(db_path)
    return RepositorySet(
        definitions=SQLiteDefinitionRepository(db),
        instances=SQLiteInstanceRepository(db),
        steps=SQLiteStepInstanceRepository(db),
    )
