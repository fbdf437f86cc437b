"""Data models for persisted workflow state."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkflowStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class WorkflowState(str, Enum):
    """Position of an instance in the sanitization state machine."""

    START = "start"
    GRANT_ISSUED = "grant_issued"
    FINGERPRINTED = "fingerprinted"
    CLASSIFIED = "classified"
    SKIPPED = "skipped"
    REBUILD_ATTEMPTED = "rebuild_attempted"
    NOTIFICATION_SENT = "notification_sent"
    NOTIFICATION_FAILED = "notification_failed"


class StepError(BaseModel):
    """Error recorded in place of a step result."""

    type: str
    message: str
    retryable: bool = False
    attempts: int = 1


class StepRecord(BaseModel):
    """Append-only record of a completed step."""

    step_name: str
    input: Optional[dict[str, Any]] = None
    result: Optional[dict[str, Any]] = None
    error: Optional[StepError] = None
    attempts: int = 1
    completed_at: datetime = Field(default_factory=utcnow)

    @property
    def failed(self) -> bool:
        return self.error is not None


class WorkflowInstance(BaseModel):
    """Persisted workflow instance data."""

    id: str
    object_id: str
    transaction_id: Optional[str] = None
    status: WorkflowStatus = WorkflowStatus.RUNNING
    state: WorkflowState = WorkflowState.START
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    history: list[StepRecord] = Field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status != WorkflowStatus.RUNNING

    def step(self, step_name: str) -> Optional[StepRecord]:
        for record in self.history:
            if record.step_name == step_name:
                return record
        return None
