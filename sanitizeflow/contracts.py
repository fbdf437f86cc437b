"""Message and step contracts for the sanitization workflow."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import FrozenSet, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_serializer, model_validator

EnvelopeT = TypeVar("EnvelopeT", bound="Envelope")


class Permission(str, Enum):
    READ = "read"
    WRITE = "write"


class ProcessingOutcome(str, Enum):
    """Terminal outcome reported for a transaction."""

    UNKNOWN = "Unknown"
    REBUILT = "Rebuilt"
    FAILED = "Failed"


class GrantRequest(BaseModel):
    """Input of a grant issuance step."""

    container: str
    blob_name: str
    permissions: FrozenSet[Permission]
    issued_at: datetime
    expiry: datetime

    @field_serializer("permissions")
    def _sorted_permissions(self, value: FrozenSet[Permission]) -> list:
        return sorted(p.value for p in value)


class AccessGrant(BaseModel):
    """Time-scoped, permission-scoped URI to one storage object."""

    model_config = ConfigDict(frozen=True)

    resource_uri: str
    permissions: FrozenSet[Permission]
    issued_at: datetime
    expiry: datetime

    @field_serializer("permissions")
    def _sorted_permissions(self, value: FrozenSet[Permission]) -> list:
        return sorted(p.value for p in value)

    def allows(self, permission: Permission) -> bool:
        return permission in self.permissions


class ContentFingerprint(BaseModel):
    """MD5 digest of an object's bytes, base64 encoded."""

    digest: str
    size: int = 0


class ClassificationResult(BaseModel):
    type_label: str


class RebuildRequest(BaseModel):
    """Grants and file type handed to the rebuild service."""

    source_grant: AccessGrant
    destination_grant: AccessGrant
    type_label: str


class RebuildOutcome(BaseModel):
    """Result of a rebuild attempt.

    The coordinator only reports ``status``; ``rebuilt_grant_uri`` is filled in
    by the orchestrator once a read grant for the rebuilt artifact exists.
    """

    status: ProcessingOutcome = ProcessingOutcome.UNKNOWN
    rebuilt_grant_uri: str = ""

    @model_validator(mode="after")
    def _uri_only_when_rebuilt(self) -> "RebuildOutcome":
        if self.status != ProcessingOutcome.REBUILT and self.rebuilt_grant_uri:
            raise ValueError("rebuilt_grant_uri must be empty unless status is Rebuilt")
        return self


class Envelope(BaseModel):
    """Base class for messages carried by a transport."""

    def to_json(self) -> str:
        """Serialize message to JSON using wire field names."""
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls: Type[EnvelopeT], data: str | bytes) -> EnvelopeT:
        """Deserialize message from JSON."""
        return cls.model_validate_json(data)


class TransactionOutcomeMessage(Envelope):
    """The single externally visible deliverable of a transaction."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    transaction_id: str = Field(alias="TransactionId")
    outcome: ProcessingOutcome = Field(alias="Outcome")
    rebuilt_grant_uri: str = Field(default="", alias="RebuildFileSas")

    @model_validator(mode="after")
    def _uri_matches_outcome(self) -> "TransactionOutcomeMessage":
        rebuilt = self.outcome == ProcessingOutcome.REBUILT
        if rebuilt != bool(self.rebuilt_grant_uri):
            raise ValueError("RebuildFileSas must be set exactly when Outcome is Rebuilt")
        return self


class ObjectCreatedEvent(Envelope):
    """Trigger announcing a new object in the source container."""

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    object_id: str


class PublishReceipt(BaseModel):
    """Recorded result of a successful notification."""

    transaction_id: str
    queue: str
