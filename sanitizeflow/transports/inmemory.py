"""In-memory transport for testing."""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from typing import AsyncIterator, Deque, Dict, List, Optional, Tuple, Type

from ..contracts import Envelope
from .base import BaseTransport, EnvelopeT


class InMemoryTransport(BaseTransport[Tuple[str, str]]):
    """Simple in-process queue for unit tests.

    Messages are stored as ``(topic, json body)`` pairs so subscribers parse
    exactly what a broker would have delivered.
    """

    def __init__(self) -> None:
        self._queues: Dict[str, Deque[Tuple[str, str]]] = defaultdict(deque)
        self._lock = asyncio.Lock()

    async def publish(self, topic: str, message: Envelope) -> None:
        """Publish message to in-memory queue."""
        async with self._lock:
            self._queues[topic].append((topic, message.to_json()))

    def pending(self, topic: str) -> List[str]:
        """Return queued message bodies for ``topic`` without consuming them."""
        return [body for _, body in self._queues[topic]]

    async def subscribe(
        self,
        topic: str,
        message_type: Type[EnvelopeT],
        lifespan: Optional[float] = None,
    ) -> AsyncIterator[Tuple[Tuple[str, str], EnvelopeT]]:
        loop = asyncio.get_running_loop()
        start_time = loop.time() if lifespan else None

        while True:
            if lifespan and start_time is not None:
                if loop.time() - start_time >= lifespan:
                    break

            raw_message = None
            async with self._lock:
                if self._queues[topic]:
                    raw_message = self._queues[topic].popleft()
            if raw_message is not None:
                yield raw_message, message_type.from_json(raw_message[1])
                continue

            await asyncio.sleep(0.05)

    async def ack(self, raw_message: Tuple[str, str]) -> None:
        """No-op acknowledgment for in-memory transport."""
        pass

    async def nack(self, raw_message: Tuple[str, str], requeue: bool = True) -> None:
        if requeue:
            async with self._lock:
                self._queues[raw_message[0]].appendleft(raw_message)
