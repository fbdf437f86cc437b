"""Scripted collaborators for workflow tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional, Sequence

from sanitizeflow.contracts import (
    AccessGrant,
    ClassificationResult,
    ContentFingerprint,
    Envelope,
    GrantRequest,
    ProcessingOutcome,
    RebuildOutcome,
    RebuildRequest,
)
from sanitizeflow.durable import WorkflowRunner
from sanitizeflow.errors import TransientQueueError
from sanitizeflow.fingerprint import digest_bytes
from sanitizeflow.notifier import OutcomeNotifier
from sanitizeflow.persistence import WorkflowRepository
from sanitizeflow.config import RetryConfig
from sanitizeflow.transports import InMemoryTransport
from sanitizeflow.workflow import FileProcessingWorkflow

OUTCOME_QUEUE = "transaction-outcome"
START = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)


class TickingClock:
    """Clock advancing one second per reading."""

    def __init__(self, start: datetime = START) -> None:
        self.current = start
        self.readings: List[datetime] = []

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        self.readings.append(self.current)
        return self.current


class SequentialIds:
    def __init__(self, prefix: str = "txn") -> None:
        self.prefix = prefix
        self.issued = 0

    def __call__(self) -> str:
        self.issued += 1
        return f"{self.prefix}-{self.issued}"


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class Scripted:
    """Returns or raises scripted values in order; the last one repeats."""

    def __init__(self, *script: Any) -> None:
        self.script = list(script)
        self.calls: List[Any] = []

    def next(self, request: Any) -> Any:
        self.calls.append(request)
        index = min(len(self.calls), len(self.script)) - 1
        value = self.script[index]
        if isinstance(value, BaseException):
            raise value
        return value


class FakeGrantIssuer:
    def __init__(self, fail_with: Optional[BaseException] = None) -> None:
        self.requests: List[GrantRequest] = []
        self.fail_with = fail_with

    def issue(self, request: GrantRequest) -> AccessGrant:
        self.requests.append(request)
        if self.fail_with is not None:
            raise self.fail_with
        perms = "".join(sorted(p.value[0] for p in request.permissions))
        return AccessGrant(
            resource_uri=(
                f"https://store.test/{request.container}/{request.blob_name}"
                f"?sp={perms}&st={request.issued_at.isoformat()}&se={request.expiry.isoformat()}"
            ),
            permissions=request.permissions,
            issued_at=request.issued_at,
            expiry=request.expiry,
        )


class FakeFingerprinter:
    def __init__(self, *script: Any, content: bytes = b"file-bytes") -> None:
        default = ContentFingerprint(digest=digest_bytes(content), size=len(content))
        self.scripted = Scripted(*(script or (default,)))

    @property
    def calls(self) -> list:
        return self.scripted.calls

    async def fingerprint(self, grant: AccessGrant) -> ContentFingerprint:
        return self.scripted.next(grant)


class FakeClassifier:
    def __init__(self, *script: Any) -> None:
        self.scripted = Scripted(*script)

    @property
    def calls(self) -> list:
        return self.scripted.calls

    async def classify(self, grant: AccessGrant) -> ClassificationResult:
        value = self.scripted.next(grant)
        return ClassificationResult(type_label=value) if isinstance(value, str) else value


class FakeRebuilder:
    def __init__(self, *script: Any) -> None:
        self.scripted = Scripted(*(script or (RebuildOutcome(status=ProcessingOutcome.REBUILT),)))
        self.completed_at: List[datetime] = []
        self.clock: Optional[TickingClock] = None

    @property
    def calls(self) -> List[RebuildRequest]:
        return self.scripted.calls

    async def rebuild(self, request: RebuildRequest) -> RebuildOutcome:
        value = self.scripted.next(request)
        if self.clock is not None:
            self.completed_at.append(self.clock.current)
        return value


class FlakyTransport(InMemoryTransport):
    """In-memory transport whose first publishes fail."""

    def __init__(self, failures: Sequence[BaseException] = ()) -> None:
        super().__init__()
        self.failures = list(failures)
        self.attempts = 0

    async def publish(self, topic: str, message: Envelope) -> None:
        self.attempts += 1
        if self.failures:
            raise self.failures.pop(0)
        await super().publish(topic, message)


def transient_queue_errors(count: int) -> List[BaseException]:
    return [TransientQueueError("queue unreachable") for _ in range(count)]


class Harness:
    """A workflow runner wired to fakes."""

    def __init__(
        self,
        repository: WorkflowRepository,
        classifier: FakeClassifier,
        rebuilder: Optional[FakeRebuilder] = None,
        fingerprinter: Optional[FakeFingerprinter] = None,
        issuer: Optional[FakeGrantIssuer] = None,
        transport: Optional[InMemoryTransport] = None,
        max_attempts: int = 5,
    ) -> None:
        self.repository = repository
        self.classifier = classifier
        self.rebuilder = rebuilder or FakeRebuilder()
        self.fingerprinter = fingerprinter or FakeFingerprinter()
        self.issuer = issuer or FakeGrantIssuer()
        self.transport = transport or InMemoryTransport()
        self.clock = TickingClock()
        self.ids = SequentialIds()
        self.sleep = RecordingSleep()
        self.rebuilder.clock = self.clock
        self.workflow = FileProcessingWorkflow(
            self.issuer,
            self.fingerprinter,
            self.classifier,
            self.rebuilder,
            OutcomeNotifier(self.transport, OUTCOME_QUEUE),
        )
        self.runner = WorkflowRunner(
            self.workflow,
            repository,
            RetryConfig(max_attempts=max_attempts, base_delay=1.0, max_delay=30.0, jitter=0.0),
            clock=self.clock,
            id_factory=self.ids,
            sleep=self.sleep,
        )

    def published(self) -> List[str]:
        return self.transport.pending(OUTCOME_QUEUE)
