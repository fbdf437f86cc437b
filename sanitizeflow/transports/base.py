"""Base transport interface for queue messaging."""

from __future__ import annotations

import abc
from typing import AsyncIterator, Generic, Optional, Tuple, Type, TypeVar

from ..contracts import Envelope

RawMessageT = TypeVar("RawMessageT")
EnvelopeT = TypeVar("EnvelopeT", bound=Envelope)


class BaseTransport(Generic[RawMessageT], metaclass=abc.ABCMeta):
    """Abstract base transport for message brokers."""

    async def connect(self) -> None:
        """Open connection to broker (no-op by default)."""
        pass

    async def disconnect(self) -> None:
        """Close connection to broker (no-op by default)."""
        pass

    @abc.abstractmethod
    async def publish(self, topic: str, message: Envelope) -> None:
        """Send a message to a topic/queue."""
        raise NotImplementedError

    @abc.abstractmethod
    def subscribe(
        self,
        topic: str,
        message_type: Type[EnvelopeT],
        lifespan: Optional[float] = None,
    ) -> AsyncIterator[Tuple[RawMessageT, EnvelopeT]]:
        """Yield raw transport message and parsed message pairs.

        Args:
            topic: The topic to subscribe to
            message_type: Envelope subclass used to parse message bodies
            lifespan: Maximum time in seconds to keep connection open. If None, runs indefinitely.
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def ack(self, raw_message: RawMessageT) -> None:
        """Acknowledge successful processing."""
        raise NotImplementedError

    async def nack(self, raw_message: RawMessageT, requeue: bool = True) -> None:
        """Negatively acknowledge (default to ack if unsupported)."""
        await self.ack(raw_message)
