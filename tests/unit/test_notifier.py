import asyncio

import pytest

from sanitizeflow.contracts import ProcessingOutcome, TransactionOutcomeMessage
from sanitizeflow.errors import QueueUnavailableError, TransientQueueError
from sanitizeflow.notifier import OutcomeConsumer, OutcomeNotifier
from sanitizeflow.transports.inmemory import InMemoryTransport
from tests.fixtures.fakes import FlakyTransport

QUEUE = "transaction-outcome"


def _message(transaction_id="t-1", outcome=ProcessingOutcome.UNKNOWN):
    return TransactionOutcomeMessage(transaction_id=transaction_id, outcome=outcome)


class SlowTransport(InMemoryTransport):
    async def publish(self, topic, message):
        await asyncio.sleep(1)


@pytest.mark.asyncio
async def test_publish_enqueues_wire_message():
    transport = InMemoryTransport()
    notifier = OutcomeNotifier(transport, QUEUE)

    receipt = await notifier.publish(_message())

    assert receipt.transaction_id == "t-1"
    assert receipt.queue == QUEUE
    assert transport.pending(QUEUE) == [
        '{"TransactionId":"t-1","Outcome":"Unknown","RebuildFileSas":""}'
    ]


@pytest.mark.asyncio
async def test_connection_failure_is_transient():
    transport = FlakyTransport([ConnectionError("refused")])
    with pytest.raises(TransientQueueError):
        await OutcomeNotifier(transport, QUEUE).publish(_message())
    assert transport.pending(QUEUE) == []


@pytest.mark.asyncio
async def test_publish_timeout_is_transient():
    with pytest.raises(TransientQueueError):
        await OutcomeNotifier(SlowTransport(), QUEUE, timeout=0.01).publish(_message())


@pytest.mark.asyncio
async def test_unusable_transport_is_terminal():
    transport = FlakyTransport([RuntimeError("Transport not connected")])
    with pytest.raises(QueueUnavailableError) as exc:
        await OutcomeNotifier(transport, QUEUE).publish(_message())
    assert not exc.value.retryable


@pytest.mark.asyncio
async def test_foreign_client_error_is_transient():
    transport = FlakyTransport([KeyError("channel closed")])
    notifier = OutcomeNotifier(transport, QUEUE)

    with pytest.raises(TransientQueueError) as exc:
        await notifier.publish(_message())
    assert isinstance(exc.value.__cause__, KeyError)

    await notifier.publish(_message())
    assert transport.attempts == 2
    assert len(transport.pending(QUEUE)) == 1


@pytest.mark.asyncio
async def test_transport_errors_pass_through():
    transport = FlakyTransport([QueueUnavailableError("queue missing")])
    with pytest.raises(QueueUnavailableError):
        await OutcomeNotifier(transport, QUEUE).publish(_message())


@pytest.mark.asyncio
async def test_consumer_drops_repeated_transaction_ids():
    transport = InMemoryTransport()
    notifier = OutcomeNotifier(transport, QUEUE)
    await notifier.publish(_message("t-1"))
    await notifier.publish(_message("t-1"))
    await notifier.publish(_message("t-2", ProcessingOutcome.FAILED))

    consumer = OutcomeConsumer(transport, QUEUE)
    received = []
    async for raw, message in consumer.messages(lifespan=0.3):
        received.append(message)
        await consumer.ack(raw)

    assert [m.transaction_id for m in received] == ["t-1", "t-2"]
    assert received[1].outcome == ProcessingOutcome.FAILED


@pytest.mark.asyncio
async def test_consumer_shares_seen_ids_across_instances():
    transport = InMemoryTransport()
    seen = {"t-1"}
    await OutcomeNotifier(transport, QUEUE).publish(_message("t-1"))

    consumer = OutcomeConsumer(transport, QUEUE, seen=seen)
    received = [m async for _, m in consumer.messages(lifespan=0.2)]

    assert received == []
