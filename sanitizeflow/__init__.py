"""Sanitizeflow: durable file sanitization workflows."""

from .config import SanitizeflowConfig, load_config
from .contracts import (
    AccessGrant,
    ObjectCreatedEvent,
    ProcessingOutcome,
    RebuildOutcome,
    TransactionOutcomeMessage,
)
from .dispatch import WorkflowDispatcher, create_dispatcher, create_runner
from .durable import WorkflowContext, WorkflowRunner
from .notifier import OutcomeConsumer, OutcomeNotifier
from .persistence import get_repository
from .transports import get_transport
from .workflow import FileProcessingWorkflow

__version__ = "0.1.0"
__all__ = [
    "AccessGrant",
    "FileProcessingWorkflow",
    "ObjectCreatedEvent",
    "OutcomeConsumer",
    "OutcomeNotifier",
    "ProcessingOutcome",
    "RebuildOutcome",
    "SanitizeflowConfig",
    "TransactionOutcomeMessage",
    "WorkflowContext",
    "WorkflowDispatcher",
    "WorkflowRunner",
    "create_dispatcher",
    "create_runner",
    "get_repository",
    "get_transport",
    "load_config",
]
