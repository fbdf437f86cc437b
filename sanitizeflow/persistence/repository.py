"""Repository abstraction for workflow state persistence."""

from __future__ import annotations

from typing import Optional, Protocol

from .models import StepRecord, WorkflowInstance, WorkflowState, WorkflowStatus


class WorkflowRepository(Protocol):
    """Protocol for workflow state persistence backends.

    Each instance is written only by the runner executing it. Step records are
    append-only: a second record for a step name already recorded on the same
    instance is ignored.
    """

    async def create_workflow(self, instance_id: str, object_id: str) -> WorkflowInstance:
        """Persist a new running instance."""

    async def append_step(self, instance_id: str, record: StepRecord) -> None:
        """Append a step record to the instance history."""

    async def set_transaction_id(self, instance_id: str, transaction_id: str) -> None:
        """Store the transaction id generated for the instance."""

    async def update_state(self, instance_id: str, state: WorkflowState) -> None:
        """Move the instance to ``state``."""

    async def mark_workflow_completed(
        self, instance_id: str, status: WorkflowStatus = WorkflowStatus.COMPLETED
    ) -> None:
        """Mark the workflow as finished."""

    async def get_workflow(self, instance_id: str) -> WorkflowInstance | None:
        """Retrieve the workflow instance with its history."""

    async def list_workflows(
        self, status: Optional[WorkflowStatus] = None
    ) -> list[WorkflowInstance]:
        """Return persisted workflows, without history."""
