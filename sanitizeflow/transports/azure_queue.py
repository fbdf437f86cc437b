"""Azure Storage Queue transport."""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Dict, Optional, Tuple, Type

from azure.core.exceptions import (
    ClientAuthenticationError,
    HttpResponseError,
    ResourceNotFoundError,
    ServiceRequestError,
    ServiceResponseError,
)
from azure.storage.queue import (
    QueueMessage,
    TextBase64DecodePolicy,
    TextBase64EncodePolicy,
)
from azure.storage.queue.aio import QueueClient
from pydantic import ValidationError

from ..contracts import Envelope
from ..errors import QueueUnavailableError, TransientQueueError
from .base import BaseTransport, EnvelopeT

logger = logging.getLogger(__name__)


class AzureQueueTransport(BaseTransport[Tuple[str, QueueMessage]]):
    """Storage queue transport; one queue per topic.

    Message bodies are base64 encoded text, the format queue-triggered
    consumers expect by default.
    """

    def __init__(
        self,
        connection_string: str,
        visibility_timeout: int = 300,
        create_queues: bool = True,
    ) -> None:
        self.connection_string = connection_string
        self.visibility_timeout = visibility_timeout
        self.create_queues = create_queues
        self._clients: Dict[str, QueueClient] = {}

    async def _client(self, topic: str) -> QueueClient:
        client = self._clients.get(topic)
        if client is None:
            client = QueueClient.from_connection_string(
                self.connection_string,
                topic,
                message_encode_policy=TextBase64EncodePolicy(),
                message_decode_policy=TextBase64DecodePolicy(),
            )
            if self.create_queues:
                await self._ensure_queue(client)
            self._clients[topic] = client
        return client

    @staticmethod
    async def _ensure_queue(client: QueueClient) -> None:
        try:
            await client.create_queue()
        except HttpResponseError as e:
            if e.status_code != 409:
                raise

    async def disconnect(self) -> None:
        for client in self._clients.values():
            await client.close()
        self._clients.clear()

    async def publish(self, topic: str, message: Envelope) -> None:
        try:
            client = await self._client(topic)
            await client.send_message(message.to_json())
        except (ResourceNotFoundError, ClientAuthenticationError) as e:
            raise QueueUnavailableError(f"Queue {topic!r} unavailable: {e}") from e
        except (ServiceRequestError, ServiceResponseError) as e:
            raise TransientQueueError(f"Queue {topic!r} unreachable: {e}") from e
        except HttpResponseError as e:
            if e.status_code is not None and e.status_code >= 500:
                raise TransientQueueError(f"Queue {topic!r} answered {e.status_code}") from e
            raise QueueUnavailableError(f"Queue {topic!r} rejected message: {e}") from e

    async def subscribe(
        self,
        topic: str,
        message_type: Type[EnvelopeT],
        lifespan: Optional[float] = None,
    ) -> AsyncIterator[Tuple[Tuple[str, QueueMessage], EnvelopeT]]:
        client = await self._client(topic)
        loop = asyncio.get_running_loop()
        start_time = loop.time() if lifespan else None

        while True:
            if lifespan and start_time is not None:
                if loop.time() - start_time >= lifespan:
                    break

            received = False
            async for msg in client.receive_messages(
                max_messages=16, visibility_timeout=self.visibility_timeout
            ):
                received = True
                try:
                    parsed = message_type.from_json(msg.content)
                except ValidationError as e:
                    logger.warning(f"Deleting unparseable message on {topic}: {e}")
                    await client.delete_message(msg)
                    continue
                yield (topic, msg), parsed

            if not received:
                await asyncio.sleep(1)

    async def ack(self, raw_message: Tuple[str, QueueMessage]) -> None:
        topic, msg = raw_message
        client = await self._client(topic)
        await client.delete_message(msg)

    async def nack(self, raw_message: Tuple[str, QueueMessage], requeue: bool = True) -> None:
        topic, msg = raw_message
        client = await self._client(topic)
        if requeue:
            await client.update_message(msg, visibility_timeout=0)
        else:
            await client.delete_message(msg)
