"""Configurable fake payment gateway for development and testing.

Simulates a provider without any external calls. Webhook bodies are plain
JSON ``{"reference", "amount", "currency", "status"}`` authenticated by a
fixed ``x-fake-signature`` header. Refuses to authenticate anything when
disabled (production).
"""

import json
from collections.abc import Mapping
from datetime import UTC, datetime
from decimal import Decimal

from protean.exceptions import ValidationError

from commerce.gateway.port import (
    GatewayName,
    InitiationRequest,
    InitiationResult,
    PaymentEvent,
    PaymentGateway,
    PaymentOutcome,
    decode_body,
    require,
)
from commerce.gateway.signatures import header_value, payload_hash, verify_static_token
from commerce.shared.errors import GatewayError, MalformedEvent, SignatureInvalid
from commerce.shared.money import quantize

SIGNATURE_HEADER = "x-fake-signature"
TEST_SIGNATURE = "test-signature"


class FakeGateway(PaymentGateway):
    """Configurable fake payment gateway."""

    name = GatewayName.FAKE
    supported_currencies = None

    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled
        self.should_succeed: bool = True
        self.failure_reason: str = "Card declined"
        self.calls: list[dict] = []
        self.initiated: dict[str, InitiationRequest] = {}
        self.verify_outcomes: dict[str, PaymentOutcome] = {}

    def configure(self, should_succeed: bool, failure_reason: str = "Card declined") -> None:
        """Configure gateway behavior at runtime."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    def is_configured(self) -> bool:
        return self.enabled

    def initiate(self, request: InitiationRequest) -> InitiationResult:
        self.calls.append({"method": "initiate", "reference": request.reference, "amount": str(request.amount)})
        if not self.should_succeed:
            raise GatewayError(self.name.value, self.failure_reason)

        self.initiated[request.reference] = request
        return InitiationResult(
            provider_reference=request.reference,
            action_target=f"https://fake-gateway.local/pay/{request.reference}",
            message="Fake payment opened",
        )

    def normalize(self, raw_body: bytes, headers: Mapping[str, str]) -> PaymentEvent:
        if not self.enabled or not verify_static_token(TEST_SIGNATURE, header_value(headers, SIGNATURE_HEADER)):
            raise SignatureInvalid("Fake gateway signature does not match")

        payload = decode_body(raw_body)
        reference = str(require(payload, "reference", "body"))
        status = str(require(payload, "status", "body")).upper()
        try:
            outcome = PaymentOutcome(status)
        except ValueError as exc:
            raise MalformedEvent(f"Unknown status: {status}") from exc

        currency = payload.get("currency")
        amount = payload.get("amount")
        try:
            reported = quantize(amount, currency) if amount is not None and currency else None
        except ValidationError as exc:
            raise MalformedEvent(f"Unreadable amount: {amount!r}") from exc

        return PaymentEvent(
            provider=self.name.value,
            external_reference=reference,
            reported_amount=reported,
            reported_currency=currency.upper() if currency else None,
            outcome=outcome,
            raw_payload_hash=payload_hash(raw_body),
            received_at=datetime.now(UTC),
            metadata=dict(payload.get("metadata") or {}),
        )

    def verify(self, reference: str) -> PaymentEvent:
        self.calls.append({"method": "verify", "reference": reference})
        outcome = self.verify_outcomes.get(reference, PaymentOutcome.PENDING)
        request = self.initiated.get(reference)
        body = {
            "reference": reference,
            "status": outcome.value,
            "amount": str(request.amount) if request else None,
            "currency": request.currency if request else None,
        }
        return PaymentEvent(
            provider=self.name.value,
            external_reference=reference,
            reported_amount=Decimal(body["amount"]) if request else None,
            reported_currency=body["currency"],
            outcome=outcome,
            raw_payload_hash=payload_hash(json.dumps(body, sort_keys=True).encode("utf-8")),
            received_at=datetime.now(UTC),
            metadata={"verified": True},
        )
