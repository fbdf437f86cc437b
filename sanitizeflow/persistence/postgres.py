"""PostgreSQL implementation of the workflow repository."""

from __future__ import annotations

import json
from typing import Any, Optional

import asyncpg

from .models import (
    StepError,
    StepRecord,
    WorkflowInstance,
    WorkflowState,
    WorkflowStatus,
    utcnow,
)
from .repository import WorkflowRepository


def _load_json(value: Any) -> Any:
    if value is None:
        return None
    return json.loads(value) if isinstance(value, str) else value


class PostgresWorkflowRepository(WorkflowRepository):
    """Persist workflow state using PostgreSQL."""

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
            CREATE TABLE IF NOT EXISTS workflows (
                id TEXT PRIMARY KEY,
                object_id TEXT NOT NULL,
                transaction_id TEXT,
                status TEXT NOT NULL,
                state TEXT NOT NULL,
                created_at TIMESTAMPTZ NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS step_history (
                id SERIAL PRIMARY KEY,
                workflow_id TEXT NOT NULL REFERENCES workflows (id),
                step_name TEXT NOT NULL,
                input JSONB,
                result JSONB,
                error JSONB,
                attempts INTEGER NOT NULL,
                completed_at TIMESTAMPTZ NOT NULL,
                UNIQUE (workflow_id, step_name)
            )
            """
        )

    @staticmethod
    def _instance_from_row(row: Any, steps: list[StepRecord]) -> WorkflowInstance:
        return WorkflowInstance(
            id=row["id"],
            object_id=row["object_id"],
            transaction_id=row["transaction_id"],
            status=WorkflowStatus(row["status"]),
            state=WorkflowState(row["state"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            history=steps,
        )

    # ------------------------------------------------------------------
    async def create_workflow(self, instance_id: str, object_id: str) -> WorkflowInstance:
        instance = WorkflowInstance(id=instance_id, object_id=object_id)
        conn = await self._connect()
        try:
            await conn.execute(
                "INSERT INTO workflows (id, object_id, transaction_id, status, state, created_at, updated_at) VALUES ($1, $2, $3, $4, $5, $6, $7)",
                instance.id,
                instance.object_id,
                None,
                instance.status.value,
                instance.state.value,
                instance.created_at,
                instance.updated_at,
            )
        except asyncpg.UniqueViolationError as e:
            raise ValueError(f"Workflow {instance_id} already exists") from e
        finally:
            await conn.close()
        return instance

    async def append_step(self, instance_id: str, record: StepRecord) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO step_history
                    (workflow_id, step_name, input, result, error, attempts, completed_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7)
                ON CONFLICT (workflow_id, step_name) DO NOTHING
                """,
                instance_id,
                record.step_name,
                json.dumps(record.input) if record.input is not None else None,
                json.dumps(record.result) if record.result is not None else None,
                record.error.model_dump_json() if record.error else None,
                record.attempts,
                record.completed_at,
            )
        finally:
            await conn.close()

    async def set_transaction_id(self, instance_id: str, transaction_id: str) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                "UPDATE workflows SET transaction_id = $1, updated_at = $2 WHERE id = $3 AND transaction_id IS NULL",
                transaction_id,
                utcnow(),
                instance_id,
            )
        finally:
            await conn.close()

    async def update_state(self, instance_id: str, state: WorkflowState) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                "UPDATE workflows SET state = $1, updated_at = $2 WHERE id = $3",
                state.value,
                utcnow(),
                instance_id,
            )
        finally:
            await conn.close()

    async def mark_workflow_completed(
        self, instance_id: str, status: WorkflowStatus = WorkflowStatus.COMPLETED
    ) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                "UPDATE workflows SET status = $1, updated_at = $2 WHERE id = $3",
                status.value,
                utcnow(),
                instance_id,
            )
        finally:
            await conn.close()

    async def get_workflow(self, instance_id: str) -> WorkflowInstance | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT id, object_id, transaction_id, status, state, created_at, updated_at FROM workflows WHERE id = $1",
                instance_id,
            )
            if not row:
                return None
            steps_rows = await conn.fetch(
                "SELECT step_name, input, result, error, attempts, completed_at FROM step_history WHERE workflow_id = $1 ORDER BY id",
                instance_id,
            )
        finally:
            await conn.close()
        steps = [
            StepRecord(
                step_name=r["step_name"],
                input=_load_json(r["input"]),
                result=_load_json(r["result"]),
                error=StepError.model_validate(_load_json(r["error"])) if r["error"] else None,
                attempts=r["attempts"],
                completed_at=r["completed_at"],
            )
            for r in steps_rows
        ]
        return self._instance_from_row(row, steps)

    async def list_workflows(
        self, status: Optional[WorkflowStatus] = None
    ) -> list[WorkflowInstance]:
        conn = await self._connect()
        try:
            query = "SELECT id, object_id, transaction_id, status, state, created_at, updated_at FROM workflows"
            if status is not None:
                rows = await conn.fetch(query + " WHERE status = $1 ORDER BY created_at", status.value)
            else:
                rows = await conn.fetch(query + " ORDER BY created_at")
        finally:
            await conn.close()
        return [self._instance_from_row(r, []) for r in rows]
