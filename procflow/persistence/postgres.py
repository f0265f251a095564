"""PostgreSQL implementation of the workflow repositories."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

import asyncpg

from ..contracts import StepStatus, WorkflowDefinition, WorkflowStatus
from ..utils.clock import ensure_utc, utcnow
from .models import StepInstance, WorkflowInstance
from .repository import (
    DefinitionRepository,
    InstanceRepository,
    RepositorySet,
    StepInstanceRepository,
)


class PostgresDatabase:
    """Connection handling shared by the PostgreSQL repositories.

    A connection is opened per call; the schema is created on first use.
    """

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_definitions (
                id TEXT PRIMARY KEY,
                name TEXT,
                version TEXT,
                document JSONB NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_instances (
                seq BIGSERIAL PRIMARY KEY,
                id TEXT UNIQUE NOT NULL,
                definition_id TEXT NOT NULL,
                status TEXT NOT NULL,
                correlation_id TEXT,
                document JSONB NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS step_instances (
                seq BIGSERIAL PRIMARY KEY,
                id TEXT UNIQUE NOT NULL,
                workflow_instance_id TEXT NOT NULL,
                status TEXT NOT NULL,
                due_at TIMESTAMPTZ,
                assigned_to TEXT,
                document JSONB NOT NULL
            )
            """
        )

    # ------------------------------------------------------------------
    async def execute(self, query: str, *params: Any) -> None:
        conn = await self._connect()
        try:
            await conn.execute(query, *params)
        finally:
            await conn.close()

    async def fetchrow(self, query: str, *params: Any) -> asyncpg.Record | None:
        conn = await self._connect()
        try:
            return await conn.fetchrow(query, *params)
        finally:
            await conn.close()

    async def fetch(self, query: str, *params: Any) -> list[asyncpg.Record]:
        conn = await self._connect()
        try:
            return await conn.fetch(query, *params)
        finally:
            await conn.close()


class PostgresDefinitionRepository(DefinitionRepository):
    def __init__(self, db: PostgresDatabase):
        self._db = db

    async def get_by_id(self, definition_id: str) -> WorkflowDefinition | None:
        row = await self._db.fetchrow(
            "SELECT document FROM workflow_definitions WHERE id = $1", definition_id
        )
        return WorkflowDefinition.model_validate_json(row["document"]) if row else None

    async def get_by_name_and_version(
        self, name: str, version: str
    ) -> WorkflowDefinition | None:
        row = await self._db.fetchrow(
            "SELECT document FROM workflow_definitions WHERE name = $1 AND version = $2",
            name,
            version,
        )
        return WorkflowDefinition.model_validate_json(row["document"]) if row else None

    async def list_definitions(self) -> list[WorkflowDefinition]:
        rows = await self._db.fetch(
            "SELECT document FROM workflow_definitions ORDER BY id"
        )
        return [WorkflowDefinition.model_validate_json(r["document"]) for r in rows]

    async def create(self, definition: WorkflowDefinition) -> str:
        await self._db.execute(
            """
            INSERT INTO workflow_definitions (id, name, version, document)
            VALUES ($1, $2, $3, $4::jsonb)
            """,
            definition.id,
            definition.name,
            definition.version,
            definition.model_dump_json(),
        )
        return definition.id

    async def update(self, definition: WorkflowDefinition) -> None:
        definition.updated_at = utcnow()
        await self._db.execute(
            """
            UPDATE workflow_definitions
            SET name = $1, version = $2, document = $3::jsonb
            WHERE id = $4
            """,
            definition.name,
            definition.version,
            definition.model_dump_json(),
            definition.id,
        )

    async def delete(self, definition_id: str) -> None:
        await self._db.execute(
            "DELETE FROM workflow_definitions WHERE id = $1", definition_id
        )


class PostgresInstanceRepository(InstanceRepository):
    _SELECT = "SELECT document FROM workflow_instances"

    def __init__(self, db: PostgresDatabase):
        self._db = db

    async def _fetch_many(self, where: str = "", *params: Any) -> list[WorkflowInstance]:
        rows = await self._db.fetch(f"{self._SELECT} {where} ORDER BY seq", *params)
        return [WorkflowInstance.model_validate_json(r["document"]) for r in rows]

    async def get_by_id(self, instance_id: str) -> WorkflowInstance | None:
        row = await self._db.fetchrow(f"{self._SELECT} WHERE id = $1", instance_id)
        return WorkflowInstance.model_validate_json(row["document"]) if row else None

    async def get_by_status(self, status: WorkflowStatus) -> list[WorkflowInstance]:
        return await self._fetch_many("WHERE status = $1", WorkflowStatus(status).value)

    async def get_by_definition_id(self, definition_id: str) -> list[WorkflowInstance]:
        return await self._fetch_many("WHERE definition_id = $1", definition_id)

    async def get_by_correlation_id(self, correlation_id: str) -> WorkflowInstance | None:
        row = await self._db.fetchrow(
            f"{self._SELECT} WHERE correlation_id = $1 ORDER BY seq LIMIT 1",
            correlation_id,
        )
        return WorkflowInstance.model_validate_json(row["document"]) if row else None

    async def list_instances(self) -> list[WorkflowInstance]:
        return await self._fetch_many()

    async def create(self, instance: WorkflowInstance) -> str:
        instance.id = instance.id or str(uuid.uuid4())
        await self._db.execute(
            """
            INSERT INTO workflow_instances (id, definition_id, status, correlation_id, document)
            VALUES ($1, $2, $3, $4, $5::jsonb)
            """,
            instance.id,
            instance.definition_id,
            instance.status.value,
            instance.correlation_id,
            instance.model_dump_json(exclude={"step_history"}),
        )
        return instance.id

    async def update(self, instance: WorkflowInstance) -> None:
        instance.updated_at = utcnow()
        await self._db.execute(
            """
            UPDATE workflow_instances
            SET status = $1, correlation_id = $2, document = $3::jsonb
            WHERE id = $4
            """,
            instance.status.value,
            instance.correlation_id,
            instance.model_dump_json(exclude={"step_history"}),
            instance.id,
        )

    async def delete(self, instance_id: str) -> None:
        await self._db.execute("DELETE FROM workflow_instances WHERE id = $1", instance_id)


class PostgresStepInstanceRepository(StepInstanceRepository):
    _SELECT = "SELECT document FROM step_instances"

    def __init__(self, db: PostgresDatabase):
        self._db = db

    async def _fetch_many(self, where: str, *params: Any) -> list[StepInstance]:
        rows = await self._db.fetch(f"{self._SELECT} {where} ORDER BY seq", *params)
        return [StepInstance.model_validate_json(r["document"]) for r in rows]

    async def get_by_id(self, step_instance_id: str) -> StepInstance | None:
        row = await self._db.fetchrow(f"{self._SELECT} WHERE id = $1", step_instance_id)
        return StepInstance.model_validate_json(row["document"]) if row else None

    async def get_by_workflow_instance_id(self, instance_id: str) -> list[StepInstance]:
        return await self._fetch_many("WHERE workflow_instance_id = $1", instance_id)

    async def get_pending(self) -> list[StepInstance]:
        return await self._fetch_many(
            "WHERE status IN ($1, $2)",
            StepStatus.PENDING.value,
            StepStatus.WAITING_FOR_INPUT.value,
        )

    async def get_scheduled(self, before: datetime) -> list[StepInstance]:
        return await self._fetch_many(
            "WHERE status = $1 AND due_at IS NOT NULL AND due_at <= $2",
            StepStatus.SCHEDULED.value,
            ensure_utc(before),
        )

    async def get_due_retries(self, before: datetime) -> list[StepInstance]:
        return await self._fetch_many(
            "WHERE status = $1 AND due_at IS NOT NULL AND due_at <= $2",
            StepStatus.PENDING.value,
            ensure_utc(before),
        )

    async def get_by_assigned_user(self, user_id: str) -> list[StepInstance]:
        return await self._fetch_many(
            "WHERE assigned_to = $1 AND status = $2",
            user_id,
            StepStatus.WAITING_FOR_INPUT.value,
        )

    async def create(self, step_instance: StepInstance) -> str:
        step_instance.id = step_instance.id or str(uuid.uuid4())
        await self._db.execute(
            """
            INSERT INTO step_instances
                (id, workflow_instance_id, status, due_at, assigned_to, document)
            VALUES ($1, $2, $3, $4, $5, $6::jsonb)
            """,
            step_instance.id,
            step_instance.workflow_instance_id,
            step_instance.status.value,
            step_instance.due_at,
            step_instance.assigned_to,
            step_instance.model_dump_json(),
        )
        return step_instance.id

    async def update(self, step_instance: StepInstance) -> None:
        await self._db.execute(
            """
            UPDATE step_instances
            SET status = $1, due_at = $2, assigned_to = $3, document = $4::jsonb
            WHERE id = $5
            """,
            step_instance.status.value,
            step_instance.due_at,
            step_instance.assigned_to,
            step_instance.model_dump_json(),
            step_instance.id,
        )

    async def delete(self, step_instance_id: str) -> None:
        await self._db.execute("DELETE FROM step_instances WHERE id = $1", step_instance_id)


def create_postgres_repositories(dsn: str) -> RepositorySet:
    db = PostgresDatabase(dsn)
    return RepositorySet(
        definitions=PostgresDefinitionRepository(db),
        instances=PostgresInstanceRepository(db),
        steps=PostgresStepInstanceRepository(db),
    )
