"""Redis transport for cross-process messaging."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Optional, Tuple, Type

import redis.asyncio as redis
from pydantic import ValidationError
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from ..contracts import Envelope
from ..errors import TransientQueueError
from .base import BaseTransport, EnvelopeT

logger = logging.getLogger(__name__)

# (topic, body) of a message parked on the topic's processing list
RedisMessage = Tuple[str, str]


class RedisTransport(BaseTransport[RedisMessage]):
    """Reliable queues on Redis lists.

    Producers ``LPUSH`` onto ``<prefix>:<topic>``. Consumers atomically move
    each message onto ``<prefix>:<topic>:processing`` with ``BLMOVE`` and
    remove it from there on ack, so a consumer that dies mid-message leaves it
    recoverable. Messages still parked when a subscription starts are moved
    back to the queue first; run one consumer per topic when relying on this.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        prefix: str = "sanitizeflow",
        recover_inflight: bool = True,
    ) -> None:
        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self.prefix = prefix
        self.recover_inflight = recover_inflight
        self._redis: Optional[Any] = None

    def _queue_name(self, topic: str) -> str:
        return f"{self.prefix}:{topic}"

    def _processing_name(self, topic: str) -> str:
        return f"{self._queue_name(topic)}:processing"

    async def _client(self) -> Any:
        if not self._redis:
            await self.connect()
        return self._redis

    async def connect(self) -> None:
        self._redis = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
        )
        try:
            await self._redis.ping()
        except (RedisConnectionError, RedisTimeoutError) as e:
            self._redis = None
            raise TransientQueueError(f"Redis unreachable at {self.host}:{self.port}: {e}") from e

    async def disconnect(self) -> None:
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def publish(self, topic: str, message: Envelope) -> None:
        client = await self._client()
        try:
            await client.lpush(self._queue_name(topic), message.to_json())
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise TransientQueueError(f"Redis publish to {topic!r} failed: {e}") from e

    async def requeue_inflight(self, topic: str) -> int:
        """Move messages left on the processing list back onto the queue."""
        client = await self._client()
        moved = 0
        while await client.lmove(
            self._processing_name(topic), self._queue_name(topic), "RIGHT", "RIGHT"
        ):
            moved += 1
        if moved:
            logger.warning(f"Requeued {moved} unacknowledged message(s) on {topic}")
        return moved

    async def subscribe(
        self,
        topic: str,
        message_type: Type[EnvelopeT],
        lifespan: Optional[float] = None,
    ) -> AsyncIterator[Tuple[RedisMessage, EnvelopeT]]:
        client = await self._client()
        if self.recover_inflight:
            await self.requeue_inflight(topic)

        loop = asyncio.get_running_loop()
        start_time = loop.time() if lifespan else None
        while True:
            if lifespan and start_time is not None:
                if loop.time() - start_time >= lifespan:
                    break

            try:
                body = await client.blmove(
                    self._queue_name(topic),
                    self._processing_name(topic),
                    timeout=1,
                    src="RIGHT",
                    dest="LEFT",
                )
            except (RedisConnectionError, RedisTimeoutError) as e:
                raise TransientQueueError(f"Redis receive on {topic!r} failed: {e}") from e
            if body is None:
                continue

            try:
                message = message_type.from_json(body)
            except ValidationError as e:
                logger.warning(f"Dropping unparseable message on {topic}: {e}")
                await client.lrem(self._processing_name(topic), 1, body)
                continue
            yield (topic, body), message

    async def ack(self, raw_message: RedisMessage) -> None:
        topic, body = raw_message
        client = await self._client()
        await client.lrem(self._processing_name(topic), 1, body)

    async def nack(self, raw_message: RedisMessage, requeue: bool = True) -> None:
        topic, body = raw_message
        client = await self._client()
        async with client.pipeline(transaction=True) as pipe:
            pipe.lrem(self._processing_name(topic), 1, body)
            if requeue:
                # consumers read from the right, so this is delivered next
                pipe.rpush(self._queue_name(topic), body)
            await pipe.execute()
