"""In-memory implementation of the workflow repository."""

from __future__ import annotations

from typing import Dict, Optional

from .models import (
    StepRecord,
    WorkflowInstance,
    WorkflowState,
    WorkflowStatus,
    utcnow,
)
from .repository import WorkflowRepository


class InMemoryWorkflowRepository(WorkflowRepository):
    """Store workflow state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._workflows: Dict[str, WorkflowInstance] = {}

    # ------------------------------------------------------------------
    async def create_workflow(self, instance_id: str, object_id: str) -> WorkflowInstance:
        if instance_id in self._workflows:
            raise ValueError(f"Workflow {instance_id} already exists")
        instance = WorkflowInstance(id=instance_id, object_id=object_id)
        self._workflows[instance_id] = instance
        return instance.model_copy(deep=True)

    async def append_step(self, instance_id: str, record: StepRecord) -> None:
        wf = self._workflows.get(instance_id)
        if not wf:
            return
        # ignore duplicate records for the same step
        if wf.step(record.step_name) is not None:
            return
        wf.history.append(record.model_copy(deep=True))
        wf.updated_at = utcnow()

    async def set_transaction_id(self, instance_id: str, transaction_id: str) -> None:
        wf = self._workflows.get(instance_id)
        if wf and wf.transaction_id is None:
            wf.transaction_id = transaction_id

    async def update_state(self, instance_id: str, state: WorkflowState) -> None:
        wf = self._workflows.get(instance_id)
        if wf:
            wf.state = state
            wf.updated_at = utcnow()

    async def mark_workflow_completed(
        self, instance_id: str, status: WorkflowStatus = WorkflowStatus.COMPLETED
    ) -> None:
        wf = self._workflows.get(instance_id)
        if wf:
            wf.status = status
            wf.updated_at = utcnow()

    async def get_workflow(self, instance_id: str) -> WorkflowInstance | None:
        wf = self._workflows.get(instance_id)
        return wf.model_copy(deep=True) if wf else None

    async def list_workflows(
        self, status: Optional[WorkflowStatus] = None
    ) -> list[WorkflowInstance]:
        return [
            wf.model_copy(update={"history": []}, deep=True)
            for wf in self._workflows.values()
            if status is None or wf.status == status
        ]
