"""Outcome notification over a durable queue."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Optional, Set, Tuple

from .contracts import PublishReceipt, TransactionOutcomeMessage
from .errors import QueueUnavailableError, SanitizerError, TransientQueueError
from .transports import BaseTransport

logger = logging.getLogger(__name__)


class OutcomeNotifier:
    """Publishes one :class:`TransactionOutcomeMessage` per transaction."""

    def __init__(
        self, transport: BaseTransport, queue_name: str, timeout: float = 30.0
    ) -> None:
        self._transport = transport
        self.queue_name = queue_name
        self._timeout = timeout

    async def publish(self, message: TransactionOutcomeMessage) -> PublishReceipt:
        """Enqueue ``message`` on the outcome queue.

        Raises:
            TransientQueueError: The queue could not be reached; retry later.
            QueueUnavailableError: The queue is missing or the backend unusable.
        """
        logger.info(
            f"Signalling outcome {message.outcome.value} for "
            f"transaction_id={message.transaction_id} on {self.queue_name}"
        )
        try:
            await asyncio.wait_for(
                self._transport.publish(self.queue_name, message), self._timeout
            )
        except SanitizerError:
            raise
        except asyncio.TimeoutError as e:
            raise TransientQueueError(
                f"Publishing to {self.queue_name} timed out after {self._timeout}s"
            ) from e
        except (ConnectionError, OSError) as e:
            raise TransientQueueError(f"Publishing to {self.queue_name} failed: {e}") from e
        except RuntimeError as e:
            raise QueueUnavailableError(f"Transport unusable: {e}") from e
        except Exception as e:
            # broker client errors that do not derive from OSError
            raise TransientQueueError(
                f"Publishing to {self.queue_name} failed: {type(e).__name__}: {e}"
            ) from e
        return PublishReceipt(transaction_id=message.transaction_id, queue=self.queue_name)


class OutcomeConsumer:
    """Reads outcome messages and drops repeats of a transaction id.

    Publication is at-least-once: a process that crashes after publishing but
    before recording the notification publishes again on replay with the same
    transaction id. This consumer makes such repeats invisible downstream.
    """

    def __init__(
        self,
        transport: BaseTransport,
        queue_name: str,
        seen: Optional[Set[str]] = None,
    ) -> None:
        self._transport = transport
        self.queue_name = queue_name
        self._seen: Set[str] = seen if seen is not None else set()

    async def messages(
        self, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[Any, TransactionOutcomeMessage]]:
        async for raw, message in self._transport.subscribe(
            self.queue_name, TransactionOutcomeMessage, lifespan=lifespan
        ):
            if message.transaction_id in self._seen:
                logger.info(
                    f"Dropping duplicate outcome for transaction_id={message.transaction_id}"
                )
                await self._transport.ack(raw)
                continue
            self._seen.add(message.transaction_id)
            yield raw, message

    async def ack(self, raw: Any) -> None:
        await self._transport.ack(raw)
