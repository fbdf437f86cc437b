"""SQLite implementation of the workflow repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from .models import (
    StepError,
    StepRecord,
    WorkflowInstance,
    WorkflowState,
    WorkflowStatus,
    utcnow,
)
from .repository import WorkflowRepository


class SQLiteWorkflowRepository(WorkflowRepository):
    """Persist workflow state using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    def close(self) -> None:
        self._conn.close()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflows (
                id TEXT PRIMARY KEY,
                object_id TEXT NOT NULL,
                transaction_id TEXT,
                status TEXT NOT NULL,
                state TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS step_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                workflow_id TEXT NOT NULL,
                step_name TEXT NOT NULL,
                input TEXT,
                result TEXT,
                error TEXT,
                attempts INTEGER NOT NULL,
                completed_at TEXT NOT NULL,
                UNIQUE (workflow_id, step_name)
            )
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        self._conn.commit()

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchall()

    @staticmethod
    def _dumps(value: Optional[dict]) -> Optional[str]:
        return json.dumps(value) if value is not None else None

    @staticmethod
    def _instance_from_row(row: sqlite3.Row, steps: list[StepRecord]) -> WorkflowInstance:
        return WorkflowInstance(
            id=row["id"],
            object_id=row["object_id"],
            transaction_id=row["transaction_id"],
            status=WorkflowStatus(row["status"]),
            state=WorkflowState(row["state"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
            history=steps,
        )

    # ------------------------------------------------------------------
    # Repository API
    async def create_workflow(self, instance_id: str, object_id: str) -> WorkflowInstance:
        instance = WorkflowInstance(id=instance_id, object_id=object_id)
        try:
            await asyncio.to_thread(
                self._execute,
                "INSERT INTO workflows (id, object_id, transaction_id, status, state, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
                instance.id,
                instance.object_id,
                None,
                instance.status.value,
                instance.state.value,
                instance.created_at.isoformat(),
                instance.updated_at.isoformat(),
            )
        except sqlite3.IntegrityError as e:
            raise ValueError(f"Workflow {instance_id} already exists") from e
        return instance

    async def append_step(self, instance_id: str, record: StepRecord) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT OR IGNORE INTO step_history
                (workflow_id, step_name, input, result, error, attempts, completed_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            instance_id,
            record.step_name,
            self._dumps(record.input),
            self._dumps(record.result),
            record.error.model_dump_json() if record.error else None,
            record.attempts,
            record.completed_at.isoformat(),
        )

    async def set_transaction_id(self, instance_id: str, transaction_id: str) -> None:
        await asyncio.to_thread(
            self._execute,
            "UPDATE workflows SET transaction_id = ?, updated_at = ? WHERE id = ? AND transaction_id IS NULL",
            transaction_id,
            utcnow().isoformat(),
            instance_id,
        )

    async def update_state(self, instance_id: str, state: WorkflowState) -> None:
        await asyncio.to_thread(
            self._execute,
            "UPDATE workflows SET state = ?, updated_at = ? WHERE id = ?",
            state.value,
            utcnow().isoformat(),
            instance_id,
        )

    async def mark_workflow_completed(
        self, instance_id: str, status: WorkflowStatus = WorkflowStatus.COMPLETED
    ) -> None:
        await asyncio.to_thread(
            self._execute,
            "UPDATE workflows SET status = ?, updated_at = ? WHERE id = ?",
            status.value,
            utcnow().isoformat(),
            instance_id,
        )

    async def get_workflow(self, instance_id: str) -> WorkflowInstance | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT id, object_id, transaction_id, status, state, created_at, updated_at FROM workflows WHERE id = ?",
            instance_id,
        )
        if not row:
            return None
        steps_rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT step_name, input, result, error, attempts, completed_at FROM step_history WHERE workflow_id = ? ORDER BY id",
            instance_id,
        )
        steps = [
            StepRecord(
                step_name=r["step_name"],
                input=json.loads(r["input"]) if r["input"] else None,
                result=json.loads(r["result"]) if r["result"] else None,
                error=StepError.model_validate_json(r["error"]) if r["error"] else None,
                attempts=r["attempts"],
                completed_at=datetime.fromisoformat(r["completed_at"]),
            )
            for r in steps_rows
        ]
        return self._instance_from_row(row, steps)

    async def list_workflows(
        self, status: Optional[WorkflowStatus] = None
    ) -> list[WorkflowInstance]:
        query = "SELECT id, object_id, transaction_id, status, state, created_at, updated_at FROM workflows"
        params: tuple = ()
        if status is not None:
            query += " WHERE status = ?"
            params = (status.value,)
        rows = await asyncio.to_thread(self._fetchall, query + " ORDER BY created_at", *params)
        return [self._instance_from_row(row, []) for row in rows]
