"""Webhook receipt bookkeeping: commands and handler.

Callers serialize on the receipt id around these commands, which makes each
one a compare-and-set on the receipt's status.
"""

import json
from datetime import UTC, datetime

from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import Boolean, DateTime, String, Text
from protean.utils.globals import current_domain

from commerce.domain import commerce
from commerce.gateway.port import PaymentEvent, PaymentOutcome
from commerce.utils.locks import KeyedLocks
from commerce.webhook.receipt import ReceiptSource, ReceiptStatus, WebhookReceipt

receipt_locks = KeyedLocks("webhook-receipt")


@commerce.command(part_of="WebhookReceipt")
class RecordWebhookReceipt:
    receipt_id = String(required=True, max_length=64)
    provider = String(required=True, max_length=50)
    external_reference = String(required=True, max_length=255)
    payload_hash = String(required=True, max_length=64)
    raw_body = Text()
    reported_amount = String()
    reported_currency = String(max_length=3)
    outcome = String(required=True, choices=PaymentOutcome)
    metadata = Text()
    source = String(choices=ReceiptSource, default=ReceiptSource.WEBHOOK.value)
    received_at = DateTime(required=True)


@commerce.command(part_of="WebhookReceipt")
class RejectWebhookPayload:
    receipt_id = String(required=True, max_length=64)
    provider = String(required=True, max_length=50)
    payload_hash = String(required=True, max_length=64)
    raw_body = Text()
    reason = Text(required=True)
    received_at = DateTime(required=True)


@commerce.command(part_of="WebhookReceipt")
class ClaimWebhookReceipt:
    receipt_id = String(required=True, max_length=64)
    claimed_at = DateTime(required=True)
    stale_before = DateTime()  # claims older than this have lapsed


@commerce.command(part_of="WebhookReceipt")
class SettleWebhookReceipt:
    receipt_id = String(required=True, max_length=64)
    status = String(required=True, choices=ReceiptStatus)
    caused_transition = Boolean(default=False)
    error = Text()


def find_receipt(receipt_id: str) -> WebhookReceipt | None:
    try:
        return current_domain.repository_for(WebhookReceipt).get(receipt_id)
    except ObjectNotFoundError:
        return None


def record_command(receipt_id: str, event: PaymentEvent, source: ReceiptSource, raw_body: bytes | None):
    return RecordWebhookReceipt(
        receipt_id=receipt_id,
        provider=event.provider,
        external_reference=event.external_reference,
        payload_hash=event.raw_payload_hash,
        raw_body=raw_body.decode("utf-8", errors="replace") if raw_body is not None else None,
        reported_amount=str(event.reported_amount) if event.reported_amount is not None else None,
        reported_currency=event.reported_currency,
        outcome=event.outcome.value,
        metadata=json.dumps(event.metadata, default=str),
        source=source.value,
        received_at=event.received_at,
    )


@commerce.command_handler(part_of=WebhookReceipt)
class WebhookReceiptHandler:
    @handle(RecordWebhookReceipt)
    def record_receipt(self, command):
        """Returns False when the receipt already exists."""
        if find_receipt(command.receipt_id) is not None:
            return False
        current_domain.repository_for(WebhookReceipt).add(
            WebhookReceipt(
                receipt_id=command.receipt_id,
                provider=command.provider,
                external_reference=command.external_reference,
                payload_hash=command.payload_hash,
                raw_body=command.raw_body,
                reported_amount=command.reported_amount,
                reported_currency=command.reported_currency,
                outcome=command.outcome,
                metadata=command.metadata,
                source=command.source,
                status=ReceiptStatus.RECEIVED.value,
                received_at=command.received_at,
            )
        )
        return True

    @handle(RejectWebhookPayload)
    def reject_payload(self, command):
        if find_receipt(command.receipt_id) is not None:
            return False
        current_domain.repository_for(WebhookReceipt).add(
            WebhookReceipt(
                receipt_id=command.receipt_id,
                provider=command.provider,
                payload_hash=command.payload_hash,
                raw_body=command.raw_body,
                status=ReceiptStatus.REJECTED.value,
                error=command.reason,
                received_at=command.received_at,
                processed_at=command.received_at,
            )
        )
        return True

    @handle(ClaimWebhookReceipt)
    def claim_receipt(self, command):
        """Move a RECEIVED (or lapsed PROCESSING) receipt to PROCESSING. Returns False otherwise."""
        repo = current_domain.repository_for(WebhookReceipt)
        receipt = repo.get(command.receipt_id)
        if not receipt.claimable(command.stale_before):
            return False
        receipt.status = ReceiptStatus.PROCESSING.value
        receipt.claimed_at = command.claimed_at
        receipt.attempts = (receipt.attempts or 0) + 1
        repo.add(receipt)
        return True

    @handle(SettleWebhookReceipt)
    def settle_receipt(self, command):
        repo = current_domain.repository_for(WebhookReceipt)
        receipt = repo.get(command.receipt_id)
        receipt.status = command.status
        receipt.caused_transition = bool(command.caused_transition)
        receipt.error = command.error
        receipt.processed_at = datetime.now(UTC)
        repo.add(receipt)
        return receipt.status
