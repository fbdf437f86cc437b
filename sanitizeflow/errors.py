"""Exception hierarchy for the sanitization pipeline.

Every error raised by a pipeline component derives from :class:`SanitizerError`
so the orchestrator can convert it into a ``Failed`` outcome. The ``retryable``
class attribute tells the durable execution layer whether another attempt is
worthwhile.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Type


class SanitizerError(Exception):
    """Base exception for all pipeline errors."""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        step_name: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.step_name = step_name
        self.details = details or {}
        super().__init__(message)


class GrantIssuanceError(SanitizerError):
    """An access grant could not be signed (bad credentials or resource)."""


class TransientError(SanitizerError):
    """Base class for failures worth retrying."""

    retryable = True


class TransientFetchError(TransientError):
    """Downloading object content failed for a network or storage reason."""


class TransientServiceError(TransientError):
    """An external HTTP service timed out or answered with a server error."""


class TransientQueueError(TransientError):
    """The outcome queue could not be reached."""


class StepTimeoutError(TransientError):
    """A step did not complete within its time budget."""


class ObjectNotFoundError(SanitizerError):
    """The object referenced by a grant cannot be retrieved."""


class ClassificationRejectedError(SanitizerError):
    """The classification service refused the request."""


class QueueUnavailableError(SanitizerError):
    """The outcome queue does not exist or the backend is unusable."""


class UnexpectedStepError(SanitizerError):
    """A collaborator raised an exception outside this hierarchy."""


class RetryExhaustedError(SanitizerError):
    """A retryable step failed on every allowed attempt."""

    def __init__(
        self,
        message: str,
        *,
        attempts: int = 0,
        last_error: Optional[BaseException] = None,
        **kwargs: Any,
    ) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(message, **kwargs)


ERROR_TYPES: Dict[str, Type[SanitizerError]] = {
    cls.__name__: cls
    for cls in (
        SanitizerError,
        GrantIssuanceError,
        TransientError,
        TransientFetchError,
        TransientServiceError,
        TransientQueueError,
        StepTimeoutError,
        ObjectNotFoundError,
        ClassificationRejectedError,
        QueueUnavailableError,
        RetryExhaustedError,
        UnexpectedStepError,
    )
}


def error_from_record(
    error_type: str, message: str, step_name: Optional[str] = None, attempts: int = 0
) -> SanitizerError:
    """Rebuild a recorded step error so replay raises what the live run raised."""
    cls = ERROR_TYPES.get(error_type, SanitizerError)
    if cls is RetryExhaustedError:
        return RetryExhaustedError(message, attempts=attempts, step_name=step_name)
    return cls(message, step_name=step_name)
