import json
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from sanitizeflow.contracts import (
    AccessGrant,
    GrantRequest,
    ObjectCreatedEvent,
    Permission,
    ProcessingOutcome,
    RebuildOutcome,
    TransactionOutcomeMessage,
)

NOW = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)


def test_outcome_message_uses_wire_names():
    message = TransactionOutcomeMessage(
        transaction_id="t-1",
        outcome=ProcessingOutcome.REBUILT,
        rebuilt_grant_uri="https://store.test/rebuild-store/abc?sig=x",
    )

    body = json.loads(message.to_json())
    assert body == {
        "TransactionId": "t-1",
        "Outcome": "Rebuilt",
        "RebuildFileSas": "https://store.test/rebuild-store/abc?sig=x",
    }
    assert TransactionOutcomeMessage.from_json(message.to_json()) == message


def test_outcome_message_parses_wire_body():
    message = TransactionOutcomeMessage.from_json(
        '{"TransactionId": "t-2", "Outcome": "Unknown", "RebuildFileSas": ""}'
    )
    assert message.transaction_id == "t-2"
    assert message.outcome == ProcessingOutcome.UNKNOWN


@pytest.mark.parametrize(
    "outcome,uri",
    [
        (ProcessingOutcome.REBUILT, ""),
        (ProcessingOutcome.FAILED, "https://store.test/x"),
        (ProcessingOutcome.UNKNOWN, "https://store.test/x"),
    ],
)
def test_outcome_message_uri_only_when_rebuilt(outcome, uri):
    with pytest.raises(ValidationError):
        TransactionOutcomeMessage(transaction_id="t", outcome=outcome, rebuilt_grant_uri=uri)


def test_rebuild_outcome_rejects_uri_for_failure():
    with pytest.raises(ValidationError):
        RebuildOutcome(status=ProcessingOutcome.FAILED, rebuilt_grant_uri="https://x")
    assert RebuildOutcome().status == ProcessingOutcome.UNKNOWN


def test_grant_permissions_serialize_in_stable_order():
    request = GrantRequest(
        container="c",
        blob_name="b",
        permissions=frozenset({Permission.WRITE, Permission.READ}),
        issued_at=NOW,
        expiry=NOW + timedelta(days=1),
    )
    assert request.model_dump(mode="json")["permissions"] == ["read", "write"]

    grant = AccessGrant(
        resource_uri="https://store.test/c/b?sig",
        permissions=request.permissions,
        issued_at=NOW,
        expiry=request.expiry,
    )
    assert grant.allows(Permission.READ)
    assert AccessGrant.model_validate(grant.model_dump(mode="json")) == grant


def test_object_created_event_gets_an_id():
    first = ObjectCreatedEvent(object_id="invoice.docx")
    second = ObjectCreatedEvent(object_id="invoice.docx")
    assert first.event_id and first.event_id != second.event_id
    assert ObjectCreatedEvent.from_json(first.to_json()) == first
