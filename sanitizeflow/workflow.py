"""The file sanitization workflow."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import AbstractSet

from .constants import DEFAULT_REBUILD_CONTAINER, DEFAULT_SOURCE_CONTAINER, MIN_GRANT_TTL, UNMANAGED_FILE_TYPE
from .contracts import (
    AccessGrant,
    ClassificationResult,
    ContentFingerprint,
    GrantRequest,
    Permission,
    ProcessingOutcome,
    PublishReceipt,
    RebuildOutcome,
    RebuildRequest,
    TransactionOutcomeMessage,
)
from .durable import WorkflowContext
from .errors import SanitizerError
from .fingerprint import ContentFingerprinter
from .grants import AccessGrantIssuer
from .notifier import OutcomeNotifier
from .persistence import WorkflowState
from .services import RebuildCoordinator, TypeClassifier

logger = logging.getLogger(__name__)


def _redact(uri: str) -> str:
    return uri.split("?", 1)[0]


class FileProcessingWorkflow:
    """Grant, fingerprint, classify, rebuild and report one uploaded object.

    Every call to a collaborator goes through ``ctx`` so that a resumed
    instance replays recorded results instead of calling again. Errors from
    the pipeline steps become a ``Failed`` outcome; only a failed notification
    leaves the instance pending.
    """

    def __init__(
        self,
        grant_issuer: AccessGrantIssuer,
        fingerprinter: ContentFingerprinter,
        classifier: TypeClassifier,
        rebuilder: RebuildCoordinator,
        notifier: OutcomeNotifier,
        *,
        source_container: str = DEFAULT_SOURCE_CONTAINER,
        rebuild_container: str = DEFAULT_REBUILD_CONTAINER,
        grant_ttl: timedelta = MIN_GRANT_TTL,
        unmanaged_label: str = UNMANAGED_FILE_TYPE,
    ) -> None:
        if grant_ttl < MIN_GRANT_TTL:
            raise ValueError(f"grant_ttl must be at least {MIN_GRANT_TTL}")
        self._issuer = grant_issuer
        self._fingerprinter = fingerprinter
        self._classifier = classifier
        self._rebuilder = rebuilder
        self._notifier = notifier
        self.source_container = source_container
        self.rebuild_container = rebuild_container
        self.grant_ttl = grant_ttl
        self.unmanaged_label = unmanaged_label

    async def run(self, ctx: WorkflowContext, object_id: str) -> TransactionOutcomeMessage:
        transaction_id = await ctx.new_id("transaction_id")
        await ctx.bind_transaction(transaction_id)

        try:
            outcome = await self._process(ctx, object_id, transaction_id)
        except SanitizerError as e:
            logger.warning(
                f"Processing {object_id!r} failed at {e.step_name or 'unknown step'} "
                f"for transaction_id={transaction_id}: {e}"
            )
            outcome = RebuildOutcome(status=ProcessingOutcome.FAILED)

        message = TransactionOutcomeMessage(
            transaction_id=transaction_id,
            outcome=outcome.status,
            rebuilt_grant_uri=outcome.rebuilt_grant_uri,
        )
        try:
            await ctx.call(
                "notify",
                self._notifier.publish,
                message,
                PublishReceipt,
                advance_to=WorkflowState.NOTIFICATION_SENT,
                record_failure=False,
            )
        except SanitizerError:
            await ctx.advance(WorkflowState.NOTIFICATION_FAILED)
            raise
        return message

    async def _process(
        self, ctx: WorkflowContext, object_id: str, transaction_id: str
    ) -> RebuildOutcome:
        issued_at = await ctx.now("source_grant_clock")
        source_grant = await self._grant(
            ctx,
            "issue_source_grant",
            self.source_container,
            object_id,
            {Permission.READ, Permission.WRITE},
            issued_at,
            advance_to=WorkflowState.GRANT_ISSUED,
        )
        logger.info(f"Source grant for transaction_id={transaction_id}: {_redact(source_grant.resource_uri)}")

        fingerprint = await ctx.call(
            "fingerprint",
            self._fingerprinter.fingerprint,
            source_grant,
            ContentFingerprint,
            advance_to=WorkflowState.FINGERPRINTED,
        )
        logger.info(f"Stored hash {fingerprint.digest!r} for transaction_id={transaction_id}")

        classification = await ctx.call(
            "classify",
            self._classifier.classify,
            source_grant,
            ClassificationResult,
            advance_to=WorkflowState.CLASSIFIED,
        )
        if classification.type_label == self.unmanaged_label:
            logger.info(f"{object_id!r} is unmanaged; skipping rebuild")
            await ctx.advance(WorkflowState.SKIPPED)
            return RebuildOutcome(status=ProcessingOutcome.UNKNOWN)

        logger.info(f"{object_id!r} classified as {classification.type_label!r}")
        # a resumed instance may reach this point long after the source grant
        rebuild_issued_at = await ctx.now("rebuild_grants_clock")
        source_read = await self._grant(
            ctx,
            "issue_source_read_grant",
            self.source_container,
            object_id,
            {Permission.READ},
            rebuild_issued_at,
        )
        # the digest names the rebuilt blob so retried rebuilds overwrite one object
        destination_write = await self._grant(
            ctx,
            "issue_rebuild_write_grant",
            self.rebuild_container,
            fingerprint.digest,
            {Permission.WRITE},
            rebuild_issued_at,
        )
        rebuild = await ctx.call(
            "rebuild",
            self._rebuilder.rebuild,
            RebuildRequest(
                source_grant=source_read,
                destination_grant=destination_write,
                type_label=classification.type_label,
            ),
            RebuildOutcome,
            advance_to=WorkflowState.REBUILD_ATTEMPTED,
        )
        if rebuild.status != ProcessingOutcome.REBUILT:
            logger.info(f"Rebuild of {object_id!r} reported {rebuild.status.value}")
            return RebuildOutcome(status=ProcessingOutcome.FAILED)

        rebuilt_at = await ctx.now("rebuilt_grant_clock")
        rebuilt_read = await self._grant(
            ctx,
            "issue_rebuilt_read_grant",
            self.rebuild_container,
            fingerprint.digest,
            {Permission.READ},
            rebuilt_at,
        )
        logger.info(f"Rebuilt {object_id!r} to {_redact(rebuilt_read.resource_uri)}")
        return RebuildOutcome(
            status=ProcessingOutcome.REBUILT, rebuilt_grant_uri=rebuilt_read.resource_uri
        )

    async def _grant(
        self,
        ctx: WorkflowContext,
        step_name: str,
        container: str,
        blob_name: str,
        permissions: AbstractSet[Permission],
        issued_at: datetime,
        advance_to: WorkflowState | None = None,
    ) -> AccessGrant:
        request = GrantRequest(
            container=container,
            blob_name=blob_name,
            permissions=frozenset(permissions),
            issued_at=issued_at,
            expiry=issued_at + self.grant_ttl,
        )
        return await ctx.call(
            step_name,
            self._issuer.issue,
            request,
            AccessGrant,
            advance_to=advance_to,
            retry=False,
        )
