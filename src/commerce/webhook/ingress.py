"""Webhook ingress: authenticate, normalize, record, acknowledge.

``receive()`` never reconciles anything itself. It verifies the raw body with
the provider's adapter, writes a receipt and returns an ``Ack``; the consumer
picks the receipt up afterwards. Every well-addressed delivery is
acknowledged, including forged and malformed ones (recorded as REJECTED), so
providers have no reason to retry.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

import structlog
from protean.utils.globals import current_domain

from commerce.gateway import GatewayName, get_gateway
from commerce.gateway.port import PaymentEvent
from commerce.gateway.signatures import payload_hash
from commerce.shared.errors import MalformedEvent, SignatureInvalid
from commerce.utils.locks import KeyedLocks
from commerce.webhook.receipt import ReceiptSource, receipt_id_for
from commerce.webhook.recording import RejectWebhookPayload, receipt_locks, record_command

logger = structlog.get_logger(__name__)


class AckStatus(Enum):
    ACCEPTED = "accepted"
    DUPLICATE = "duplicate"
    REJECTED = "rejected"


@dataclass(frozen=True)
class Ack:
    status: str
    provider: str
    receipt_id: str
    reference: str | None = None
    reason: str | None = None

    @property
    def needs_processing(self) -> bool:
        return self.status == AckStatus.ACCEPTED.value


class WebhookIngress:
    def __init__(self, locks: KeyedLocks | None = None) -> None:
        self._locks = locks or receipt_locks

    def receive(self, provider: "GatewayName | str", raw_body: bytes, headers: Mapping[str, str]) -> Ack:
        """Record one provider delivery. Raises UnsupportedGateway for an unknown provider."""
        gateway = get_gateway(provider)
        name = gateway.name.value
        try:
            event = gateway.normalize(raw_body, headers)
        except SignatureInvalid as exc:
            logger.warning("Webhook signature rejected", provider=name, reason=str(exc))
            return self._reject(name, raw_body, str(exc))
        except MalformedEvent as exc:
            logger.warning("Malformed webhook payload rejected", provider=name, reason=str(exc))
            return self._reject(name, raw_body, str(exc))

        return self.record(event, source=ReceiptSource.WEBHOOK, raw_body=raw_body)

    def record(
        self,
        event: PaymentEvent,
        source: ReceiptSource = ReceiptSource.WEBHOOK,
        raw_body: bytes | None = None,
    ) -> Ack:
        """Write a receipt for a normalized notification unless it was already seen."""
        receipt_id = receipt_id_for(event.provider, event.external_reference, event.raw_payload_hash)
        with self._locks.hold(receipt_id):
            created = current_domain.process(
                record_command(receipt_id, event, source, raw_body),
                asynchronous=False,
            )

        if not created:
            logger.info(
                "Duplicate payment notification ignored",
                provider=event.provider,
                reference=event.external_reference,
                receipt_id=receipt_id,
            )
            return Ack(AckStatus.DUPLICATE.value, event.provider, receipt_id, event.external_reference)

        logger.info(
            "Payment notification recorded",
            provider=event.provider,
            reference=event.external_reference,
            outcome=event.outcome.value,
            source=source.value,
            receipt_id=receipt_id,
        )
        return Ack(AckStatus.ACCEPTED.value, event.provider, receipt_id, event.external_reference)

    def _reject(self, provider: str, raw_body: bytes, reason: str) -> Ack:
        digest = payload_hash(raw_body)
        receipt_id = receipt_id_for(provider, "rejected", digest)
        with self._locks.hold(receipt_id):
            current_domain.process(
                RejectWebhookPayload(
                    receipt_id=receipt_id,
                    provider=provider,
                    payload_hash=digest,
                    raw_body=raw_body.decode("utf-8", errors="replace"),
                    reason=reason,
                    received_at=datetime.now(UTC),
                ),
                asynchronous=False,
            )
        return Ack(AckStatus.REJECTED.value, provider, receipt_id, reason=reason)
