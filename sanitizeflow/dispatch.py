"""Workflow dispatcher for sanitizeflow."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, Optional, Set

from .config import SanitizeflowConfig
from .contracts import ObjectCreatedEvent
from .durable import WorkflowRunner
from .fingerprint import ContentFingerprinter
from .grants import AccessGrantIssuer, BlobSasGrantIssuer
from .notifier import OutcomeNotifier
from .persistence import WorkflowInstance, WorkflowRepository, get_repository
from .services import RebuildCoordinator, TypeClassifier
from .transports import BaseTransport, get_transport
from .workflow import FileProcessingWorkflow

logger = logging.getLogger(__name__)


class WorkflowDispatcher:
    """Starts one workflow instance per discovered object."""

    def __init__(self, runner: WorkflowRunner, max_concurrent: int = 16) -> None:
        self._runner = runner
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._tasks: Set[asyncio.Task] = set()

    @property
    def runner(self) -> WorkflowRunner:
        return self._runner

    async def dispatch(
        self, object_id: str, instance_id: Optional[str] = None
    ) -> WorkflowInstance:
        """Run the workflow for ``object_id``.

        Args:
            object_id: Name of the object within the source container.
            instance_id: Optional instance identifier. Dispatching again with
                the same identifier resumes that instance rather than starting
                a second one.

        Returns:
            The instance as persisted after the run.
        """
        async with self._semaphore:
            instance = await self._runner.start(object_id, instance_id=instance_id)
        logger.info(
            f"Instance {instance.id} for {object_id!r} is {instance.status.value} ({instance.state.value})"
        )
        return instance

    async def dispatch_many(self, object_ids: Iterable[str]) -> list[WorkflowInstance]:
        return list(await asyncio.gather(*(self.dispatch(o) for o in object_ids)))

    async def listen(
        self,
        transport: BaseTransport,
        topic: str,
        lifespan: Optional[float] = None,
    ) -> None:
        """Consume :class:`ObjectCreatedEvent`s from ``topic`` and dispatch them.

        Each event is acknowledged once its instance has run; the event id is
        used as the instance id so a redelivered event resumes its instance.
        """
        async for raw_message, event in transport.subscribe(
            topic, ObjectCreatedEvent, lifespan=lifespan
        ):
            logger.info(f"Received object {event.object_id!r} (event {event.event_id})")
            task = asyncio.create_task(self._handle(transport, raw_message, event))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _handle(
        self, transport: BaseTransport, raw_message: Any, event: ObjectCreatedEvent
    ) -> None:
        try:
            await self.dispatch(event.object_id, instance_id=event.event_id)
        except Exception:
            logger.exception(f"Dispatch of {event.object_id!r} failed; requeueing event")
            await transport.nack(raw_message, requeue=True)
            return
        await transport.ack(raw_message)


def create_runner(
    config: SanitizeflowConfig,
    transport: Optional[BaseTransport] = None,
    repository: Optional[WorkflowRepository] = None,
    grant_issuer: Optional[AccessGrantIssuer] = None,
) -> WorkflowRunner:
    """Wire the workflow and its collaborators from ``config``."""
    transport = transport or get_transport(config=config)
    repository = repository or get_repository(config.database_url or "", config=config)
    workflow = FileProcessingWorkflow(
        grant_issuer or BlobSasGrantIssuer.from_config(config.storage),
        ContentFingerprinter(timeout=config.storage.fetch_timeout),
        TypeClassifier.from_config(config.classifier),
        RebuildCoordinator.from_config(config.rebuild),
        OutcomeNotifier(
            transport,
            config.transport.outcome_queue,
            timeout=config.transport.publish_timeout,
        ),
        source_container=config.storage.source_container,
        rebuild_container=config.storage.rebuild_container,
        grant_ttl=config.storage.grant_ttl,
    )
    return WorkflowRunner(workflow, repository, config.retry)


def create_dispatcher(
    config: SanitizeflowConfig,
    transport: Optional[BaseTransport] = None,
    repository: Optional[WorkflowRepository] = None,
) -> WorkflowDispatcher:
    runner = create_runner(config, transport=transport, repository=repository)
    return WorkflowDispatcher(runner, max_concurrent=config.max_concurrent_instances)
