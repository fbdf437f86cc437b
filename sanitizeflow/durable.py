"""Durable, replay-based execution of workflow instances.

Every step of an instance is committed to the repository as a
:class:`~sanitizeflow.persistence.StepRecord` before the workflow continues.
When an instance is resumed (after a crash, a restart or a failed
notification) the workflow function runs again from the top; steps found in
the history return their recorded result or raise their recorded error
instead of executing, so the replayed run makes exactly the decisions the
original run made and then continues live from the first unrecorded step.

Values that are not a function of recorded inputs, wall-clock time and
generated ids, are themselves recorded through :meth:`WorkflowContext.now` and
:meth:`WorkflowContext.new_id`.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import uuid
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Dict, Optional, Protocol, Set, Type, TypeVar

from pydantic import BaseModel, ValidationError

from .config import RetryConfig
from .errors import (
    RetryExhaustedError,
    SanitizerError,
    StepTimeoutError,
    UnexpectedStepError,
    error_from_record,
)
from .persistence import (
    StepError,
    StepRecord,
    WorkflowInstance,
    WorkflowRepository,
    WorkflowState,
    WorkflowStatus,
)
from .utils.retry import Sleep, schedule_retry

logger = logging.getLogger(__name__)

ResultT = TypeVar("ResultT", bound=BaseModel)
Clock = Callable[[], datetime]
IdFactory = Callable[[], str]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_uuid() -> str:
    return str(uuid.uuid4())


class WorkflowContext:
    """Replay-aware handle a workflow uses to perform its steps."""

    def __init__(
        self,
        instance: WorkflowInstance,
        repository: WorkflowRepository,
        retry: RetryConfig,
        *,
        clock: Clock = _utcnow,
        id_factory: IdFactory = _new_uuid,
        sleep: Sleep = asyncio.sleep,
        step_timeout: Optional[float] = None,
    ) -> None:
        self.instance = instance
        self._repository = repository
        self._retry = retry
        self._clock = clock
        self._id_factory = id_factory
        self._sleep = sleep
        self._step_timeout = step_timeout
        self._recorded: Dict[str, StepRecord] = {r.step_name: r for r in instance.history}
        self._consumed: Set[str] = set()
        self._state = instance.state

    @property
    def instance_id(self) -> str:
        return self.instance.id

    @property
    def is_replaying(self) -> bool:
        """True while recorded history has not been fully consumed."""
        return bool(self._recorded.keys() - self._consumed)

    @property
    def state(self) -> WorkflowState:
        return self._state

    # ------------------------------------------------------------------
    # Deterministic values
    async def now(self, step_name: str) -> datetime:
        """Return wall-clock time, recorded on first use."""
        record = self._replay(step_name)
        if record is not None:
            return datetime.fromisoformat(record.result["value"])
        value = self._clock()
        await self._commit(StepRecord(step_name=step_name, result={"value": value.isoformat()}))
        return value

    async def new_id(self, step_name: str) -> str:
        """Return a generated identifier, recorded on first use."""
        record = self._replay(step_name)
        if record is not None:
            return record.result["value"]
        value = str(self._id_factory())
        await self._commit(StepRecord(step_name=step_name, result={"value": value}))
        return value

    async def bind_transaction(self, transaction_id: str) -> None:
        if self.instance.transaction_id != transaction_id:
            await self._repository.set_transaction_id(self.instance_id, transaction_id)
            self.instance.transaction_id = transaction_id

    async def advance(self, state: WorkflowState) -> None:
        """Move the instance to ``state`` if it is not already there."""
        if state == self._state:
            return
        await self._repository.update_state(self.instance_id, state)
        logger.info(f"Instance {self.instance_id} {self._state.value} -> {state.value}")
        self._state = state
        self.instance.state = state

    # ------------------------------------------------------------------
    # Steps
    async def call(
        self,
        step_name: str,
        fn: Callable[[Any], Any],
        request: BaseModel,
        result_type: Type[ResultT],
        *,
        advance_to: Optional[WorkflowState] = None,
        record_failure: bool = True,
        retry: bool = True,
    ) -> ResultT:
        """Execute ``fn(request)`` as the step ``step_name``, or replay it.

        Retryable :class:`SanitizerError`s are retried with backoff up to the
        configured attempt count. The final result, or the final error when
        ``record_failure`` is set, is committed to the history. Failures that
        are not recorded make the step run again on the next replay.
        """
        payload = request.model_dump(mode="json")
        record = self._replay(step_name)
        if record is not None:
            if record.input is not None and record.input != payload:
                logger.warning(
                    f"Step {step_name} of instance {self.instance_id} replayed with "
                    "an input that differs from the recorded one"
                )
            if record.error is not None:
                raise error_from_record(
                    record.error.type, record.error.message, step_name, record.error.attempts
                )
            result = result_type.model_validate(record.result)
            if advance_to is not None:
                await self.advance(advance_to)
            return result

        max_attempts = self._retry.max_attempts if retry else 1
        attempt = 0
        while True:
            attempt += 1
            try:
                raw = await self._invoke(step_name, fn, request)
                result = self._validate(step_name, raw, result_type)
                break
            except SanitizerError as exc:
                exc.step_name = exc.step_name or step_name
                if exc.retryable and attempt < max_attempts:
                    delay = await schedule_retry(attempt, self._retry, self._sleep)
                    logger.warning(
                        f"Step {step_name} of instance {self.instance_id} failed "
                        f"(attempt {attempt}/{max_attempts}): {exc}; retried after {delay:.2f}s"
                    )
                    continue
                error: SanitizerError = exc
                if exc.retryable:
                    error = RetryExhaustedError(
                        f"{step_name} failed after {attempt} attempts: {exc}",
                        attempts=attempt,
                        last_error=exc,
                        step_name=step_name,
                    )
                logger.warning(f"Step {step_name} of instance {self.instance_id} failed: {error}")
                if record_failure:
                    await self._commit(
                        StepRecord(
                            step_name=step_name,
                            input=payload,
                            error=StepError(
                                type=type(error).__name__,
                                message=str(error),
                                retryable=exc.retryable,
                                attempts=attempt,
                            ),
                            attempts=attempt,
                        )
                    )
                if error is exc:
                    raise
                raise error from exc

        await self._commit(
            StepRecord(
                step_name=step_name,
                input=payload,
                result=result.model_dump(mode="json"),
                attempts=attempt,
            )
        )
        if advance_to is not None:
            await self.advance(advance_to)
        return result

    async def _invoke(self, step_name: str, fn: Callable[[Any], Any], request: BaseModel) -> Any:
        """Run ``fn`` so that every failure surfaces as a :class:`SanitizerError`.

        Exceptions outside the pipeline hierarchy (decoding errors, broker
        client errors, bugs in a collaborator) become
        :class:`UnexpectedStepError` and are recorded like any other failure.
        """
        try:
            outcome = fn(request)
            if not inspect.isawaitable(outcome):
                return outcome
            return await asyncio.wait_for(outcome, self._step_timeout)
        except SanitizerError:
            raise
        except asyncio.TimeoutError as e:
            raise StepTimeoutError(
                f"{step_name} did not complete within {self._step_timeout}s", step_name=step_name
            ) from e
        except Exception as e:
            logger.exception(f"Step {step_name} of instance {self.instance_id} raised unexpectedly")
            raise UnexpectedStepError(
                f"{step_name} raised {type(e).__name__}: {e}", step_name=step_name
            ) from e

    @staticmethod
    def _validate(step_name: str, raw: Any, result_type: Type[ResultT]) -> ResultT:
        if isinstance(raw, result_type):
            return raw
        try:
            return result_type.model_validate(raw)
        except ValidationError as e:
            raise UnexpectedStepError(
                f"{step_name} returned an invalid {result_type.__name__}: {e}", step_name=step_name
            ) from e

    # ------------------------------------------------------------------
    def _replay(self, step_name: str) -> Optional[StepRecord]:
        record = self._recorded.get(step_name)
        if record is not None:
            self._consumed.add(step_name)
            logger.debug(f"Replaying recorded step {step_name} of instance {self.instance_id}")
        return record

    async def _commit(self, record: StepRecord) -> None:
        await self._repository.append_step(self.instance_id, record)
        self._recorded[record.step_name] = record
        self._consumed.add(record.step_name)
        self.instance.history.append(record)


class Workflow(Protocol):
    async def run(self, ctx: WorkflowContext, object_id: str) -> Any:
        """Run the workflow for ``object_id`` using ``ctx`` for every step."""


class WorkflowRunner:
    """Hosts workflow instances: creates, drives and resumes them."""

    def __init__(
        self,
        workflow: Workflow,
        repository: WorkflowRepository,
        retry: Optional[RetryConfig] = None,
        *,
        clock: Clock = _utcnow,
        id_factory: IdFactory = _new_uuid,
        sleep: Sleep = asyncio.sleep,
        step_timeout: Optional[float] = None,
    ) -> None:
        self._workflow = workflow
        self._repository = repository
        self._retry = retry or RetryConfig()
        self._clock = clock
        self._id_factory = id_factory
        self._sleep = sleep
        self._step_timeout = step_timeout
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = defaultdict(int)

    @property
    def repository(self) -> WorkflowRepository:
        return self._repository

    async def start(self, object_id: str, instance_id: Optional[str] = None) -> WorkflowInstance:
        """Start an instance for ``object_id``, or resume it if it already exists."""
        instance_id = instance_id or _new_uuid()
        async with self._instance_lock(instance_id):
            instance = await self._repository.get_workflow(instance_id)
            if instance is None:
                instance = await self._repository.create_workflow(instance_id, object_id)
                logger.info(f"Started instance {instance_id} for object {object_id!r}")
            elif instance.object_id != object_id:
                raise ValueError(
                    f"Instance {instance_id} belongs to object {instance.object_id!r}, not {object_id!r}"
                )
            else:
                logger.info(f"Instance {instance_id} already exists; resuming")
            return await self._drive(instance)

    async def resume(self, instance_id: str) -> WorkflowInstance:
        async with self._instance_lock(instance_id):
            instance = await self._repository.get_workflow(instance_id)
            if instance is None:
                raise KeyError(f"Unknown workflow instance {instance_id}")
            return await self._drive(instance)

    async def resume_pending(self) -> list[WorkflowInstance]:
        """Replay every instance that has not reached a terminal status."""
        pending = await self._repository.list_workflows(status=WorkflowStatus.RUNNING)
        logger.info(f"Resuming {len(pending)} pending instance(s)")
        return [await self.resume(instance.id) for instance in pending]

    @asynccontextmanager
    async def _instance_lock(self, instance_id: str) -> AsyncIterator[None]:
        """Serialize work on one instance; the lock is dropped with its last user."""
        lock = self._locks.setdefault(instance_id, asyncio.Lock())
        self._lock_users[instance_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[instance_id] -= 1
            if not self._lock_users[instance_id]:
                del self._lock_users[instance_id]
                self._locks.pop(instance_id, None)

    async def _drive(self, instance: WorkflowInstance) -> WorkflowInstance:
        if instance.is_terminal:
            logger.info(f"Instance {instance.id} already {instance.status.value}")
            return instance

        ctx = WorkflowContext(
            instance,
            self._repository,
            self._retry,
            clock=self._clock,
            id_factory=self._id_factory,
            sleep=self._sleep,
            step_timeout=self._step_timeout,
        )
        try:
            await self._workflow.run(ctx, instance.object_id)
        except SanitizerError as e:
            logger.warning(f"Instance {instance.id} left pending in state {ctx.state.value}: {e}")
        except Exception:
            logger.exception(f"Instance {instance.id} failed unexpectedly")
            await self._repository.mark_workflow_completed(instance.id, WorkflowStatus.FAILED)
            raise
        else:
            await self._repository.mark_workflow_completed(instance.id, WorkflowStatus.COMPLETED)
            logger.info(f"Instance {instance.id} completed")

        refreshed = await self._repository.get_workflow(instance.id)
        return refreshed or instance
