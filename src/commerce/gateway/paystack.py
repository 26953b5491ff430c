"""Paystack adapter (card/bank redirect).

Webhooks are signed with HMAC-SHA512 of the raw body, keyed with the account
secret key, and sent in the ``x-paystack-signature`` header. Amounts travel
in the currency's sub-unit (kobo, pesewas, cents).
"""

import hashlib
import json
from collections.abc import Mapping
from datetime import UTC, datetime

import requests
import structlog
from protean.exceptions import ValidationError

from commerce.gateway.http import send
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
from commerce.gateway.signatures import header_value, payload_hash, verify_hmac
from commerce.shared.errors import GatewayError, MalformedEvent, SignatureInvalid
from commerce.shared.money import from_minor_units, to_minor_units

logger = structlog.get_logger(__name__)

PAYSTACK_BASE_URL = "https://api.paystack.co"
SIGNATURE_HEADER = "x-paystack-signature"
CHANNELS = ["card", "bank", "ussd", "qr", "mobile_money", "bank_transfer"]

_EVENT_OUTCOMES = {
    "charge.success": PaymentOutcome.COMPLETED,
    "charge.failed": PaymentOutcome.FAILED,
    "refund.processed": PaymentOutcome.REFUNDED,
    "transfer.reversed": PaymentOutcome.REFUNDED,
}

_STATUS_OUTCOMES = {
    "success": PaymentOutcome.COMPLETED,
    "failed": PaymentOutcome.FAILED,
    "reversed": PaymentOutcome.REFUNDED,
}


class PaystackGateway(PaymentGateway):
    name = GatewayName.PAYSTACK
    supported_currencies = frozenset({"NGN", "GHS", "ZAR", "USD"})

    def __init__(
        self,
        secret_key: str,
        public_key: str,
        callback_url: str = "",
        session: requests.Session | None = None,
        timeout: float = 30.0,
        base_url: str = PAYSTACK_BASE_URL,
    ) -> None:
        self.secret_key = secret_key
        self.public_key = public_key
        self.callback_url = callback_url
        self.session = session or requests.Session()
        self.timeout = timeout
        self.base_url = base_url.rstrip("/")

    def is_configured(self) -> bool:
        return bool(self.secret_key and self.public_key)

    def _call(self, method: str, path: str, **kwargs) -> dict:
        body = send(
            self.session,
            method,
            f"{self.base_url}{path}",
            provider=self.name.value,
            timeout=self.timeout,
            headers={"Authorization": f"Bearer {self.secret_key}"},
            **kwargs,
        )
        if not body.get("status"):
            raise GatewayError(self.name.value, body.get("message") or "request was not successful")
        return body.get("data") or {}

    def initiate(self, request: InitiationRequest) -> InitiationResult:
        if not request.customer_email:
            raise ValidationError({"customer_email": ["Paystack requires a customer email"]})

        payload = {
            "email": request.customer_email,
            "amount": to_minor_units(request.amount, request.currency),
            "currency": request.currency,
            "reference": request.reference,
            "metadata": {"order_id": request.order_id, **request.metadata},
            "channels": CHANNELS,
        }
        if self.callback_url:
            payload["callback_url"] = self.callback_url

        data = self._call("POST", "/transaction/initialize", json=payload)
        authorization_url = data.get("authorization_url")
        if not authorization_url:
            raise GatewayError(self.name.value, "initialize response carried no authorization_url")

        logger.info("Paystack payment initialized", reference=request.reference)
        return InitiationResult(
            provider_reference=data.get("reference") or request.reference,
            action_target=authorization_url,
            message=data.get("access_code"),
            raw=data,
        )

    def normalize(self, raw_body: bytes, headers: Mapping[str, str]) -> PaymentEvent:
        signature = header_value(headers, SIGNATURE_HEADER)
        if not verify_hmac(self.secret_key, raw_body, signature, hashlib.sha512):
            raise SignatureInvalid("Paystack signature does not match body")

        payload = decode_body(raw_body)
        event_type = require(payload, "event", "body")
        data = require(payload, "data", "body")
        if not isinstance(data, dict):
            raise MalformedEvent("`body.data` is not an object")

        reference = data.get("reference") or data.get("transaction_reference")
        if not reference:
            raise MalformedEvent("Missing required field `data.reference`")

        outcome = _EVENT_OUTCOMES.get(event_type, PaymentOutcome.PENDING)
        return self._event(
            data,
            reference=str(reference),
            outcome=outcome,
            digest=payload_hash(raw_body),
            extra={"event": event_type},
        )

    def verify(self, reference: str) -> PaymentEvent:
        data = self._call("GET", f"/transaction/verify/{reference}")
        outcome = _STATUS_OUTCOMES.get(str(data.get("status", "")).lower(), PaymentOutcome.PENDING)
        digest = payload_hash(json.dumps(data, sort_keys=True).encode("utf-8"))
        return self._event(data, reference=reference, outcome=outcome, digest=digest, extra={"verified": True})

    def _event(self, data: dict, reference: str, outcome: PaymentOutcome, digest: str, extra: dict) -> PaymentEvent:
        currency = str(require(data, "currency", "data")).upper()
        try:
            amount = from_minor_units(require(data, "amount", "data"), currency)
        except ValidationError as exc:
            raise MalformedEvent(f"Unreadable amount in Paystack payload: {exc.messages}") from exc

        return PaymentEvent(
            provider=self.name.value,
            external_reference=reference,
            reported_amount=amount,
            reported_currency=currency,
            outcome=outcome,
            raw_payload_hash=digest,
            received_at=datetime.now(UTC),
            metadata={**extra, **_metadata(data, outcome, currency)},
        )


def _metadata(data: dict, outcome: PaymentOutcome, currency: str) -> dict:
    metadata = {"gateway_response": data.get("gateway_response")}
    if outcome == PaymentOutcome.COMPLETED:
        authorization = data.get("authorization") or {}
        customer = data.get("customer") or {}
        fees = data.get("fees")
        metadata.update(
            {
                "channel": data.get("channel"),
                "paid_at": data.get("paid_at") or data.get("paidAt"),
                "fees": str(from_minor_units(fees, currency)) if isinstance(fees, int) else None,
                "customer_email": customer.get("email"),
                "card_type": authorization.get("card_type"),
                "last4": authorization.get("last4"),
                "bank": authorization.get("bank"),
            }
        )
    return {key: value for key, value in metadata.items() if value is not None}
