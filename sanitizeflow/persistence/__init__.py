"""Persistence layer for sanitization workflows."""

from __future__ import annotations

import os
from typing import Optional

from ..config import SanitizeflowConfig, load_config
from .inmemory import InMemoryWorkflowRepository
from .models import (
    StepError,
    StepRecord,
    WorkflowInstance,
    WorkflowState,
    WorkflowStatus,
)
from .repository import WorkflowRepository
from .sqlite import SQLiteWorkflowRepository


def get_repository(
    database_url: Optional[str] = None, config: Optional[SanitizeflowConfig] = None
) -> WorkflowRepository:
    """Factory function to obtain a workflow repository.

    The repository backend is selected based on ``database_url`` which can be
    provided explicitly, via environment variable ``SANITIZEFLOW_DATABASE_URL``
    or ``DATABASE_URL``, or from loaded configuration. When no database is
    configured, an in-memory repository is returned.
    """

    if database_url is None:
        config = config or load_config()
        database_url = (
            os.getenv("SANITIZEFLOW_DATABASE_URL")
            or os.getenv("DATABASE_URL")
            or config.database_url
        )

    if not database_url:
        return InMemoryWorkflowRepository()

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        return SQLiteWorkflowRepository(path)
    if database_url.startswith("postgres://") or database_url.startswith("postgresql://"):
        from .postgres import PostgresWorkflowRepository

        return PostgresWorkflowRepository(database_url)
    raise ValueError(f"Unsupported database backend: {database_url}")


__all__ = [
    "StepError",
    "StepRecord",
    "WorkflowInstance",
    "WorkflowRepository",
    "WorkflowState",
    "WorkflowStatus",
    "SQLiteWorkflowRepository",
    "InMemoryWorkflowRepository",
    "get_repository",
]
