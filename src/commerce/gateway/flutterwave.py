"""Flutterwave adapter (card/bank/mobile-money redirect).

Webhooks carry either a ``flutterwave-signature`` header (HMAC-SHA256 of the
raw body keyed with the webhook secret, hex encoded) or the legacy
``verif-hash`` header, which is the secret hash itself. Amounts are reported
in major units.
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
from commerce.gateway.signatures import header_value, payload_hash, verify_hmac, verify_static_token
from commerce.shared.errors import GatewayError, MalformedEvent, SignatureInvalid
from commerce.shared.money import format_amount, quantize

logger = structlog.get_logger(__name__)

FLUTTERWAVE_BASE_URL = "https://api.flutterwave.com/v3"
SIGNATURE_HEADER = "flutterwave-signature"
LEGACY_HASH_HEADER = "verif-hash"
PAYMENT_OPTIONS = "card,mobilemoney,ussd,banktransfer"


def _outcome(event_type: str, status: str) -> PaymentOutcome:
    status = status.lower()
    if event_type == "refund.completed":
        return PaymentOutcome.REFUNDED
    if event_type == "charge.failed" or status == "failed":
        return PaymentOutcome.FAILED
    if event_type in ("charge.completed", "verify") and status == "successful":
        return PaymentOutcome.COMPLETED
    return PaymentOutcome.PENDING


class FlutterwaveGateway(PaymentGateway):
    name = GatewayName.FLUTTERWAVE
    supported_currencies = None

    def __init__(
        self,
        secret_key: str,
        public_key: str,
        encryption_key: str,
        webhook_secret: str,
        redirect_url: str = "",
        session: requests.Session | None = None,
        timeout: float = 30.0,
        base_url: str = FLUTTERWAVE_BASE_URL,
    ) -> None:
        self.secret_key = secret_key
        self.public_key = public_key
        self.encryption_key = encryption_key
        self.webhook_secret = webhook_secret
        self.redirect_url = redirect_url
        self.session = session or requests.Session()
        self.timeout = timeout
        self.base_url = base_url.rstrip("/")

    def is_configured(self) -> bool:
        return bool(self.secret_key and self.public_key and self.encryption_key and self.webhook_secret)

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
        if body.get("status") != "success":
            raise GatewayError(self.name.value, body.get("message") or "request was not successful")
        return body.get("data") or {}

    def initiate(self, request: InitiationRequest) -> InitiationResult:
        if not request.customer_email:
            raise ValidationError({"customer_email": ["Flutterwave requires a customer email"]})

        customer = {"email": request.customer_email}
        if request.customer_phone:
            customer["phonenumber"] = request.customer_phone
        if request.customer_name:
            customer["name"] = request.customer_name

        payload = {
            "tx_ref": request.reference,
            "amount": format_amount(request.amount, request.currency),
            "currency": request.currency,
            "redirect_url": self.redirect_url,
            "payment_options": PAYMENT_OPTIONS,
            "customer": customer,
            "customizations": {"title": request.description or f"Order {request.order_id}"},
            "meta": {"order_id": request.order_id, **request.metadata},
        }

        data = self._call("POST", "/payments", json=payload)
        link = data.get("link")
        if not link:
            raise GatewayError(self.name.value, "payment response carried no link")

        logger.info("Flutterwave payment initialized", reference=request.reference)
        return InitiationResult(provider_reference=request.reference, action_target=link, raw=data)

    def normalize(self, raw_body: bytes, headers: Mapping[str, str]) -> PaymentEvent:
        self._authenticate(raw_body, headers)

        payload = decode_body(raw_body)
        event_type = str(require(payload, "event", "body"))
        data = require(payload, "data", "body")
        if not isinstance(data, dict):
            raise MalformedEvent("`body.data` is not an object")

        outcome = _outcome(event_type, str(data.get("status", "")))
        return self._event(data, outcome, payload_hash(raw_body), extra={"event": event_type})

    def _authenticate(self, raw_body: bytes, headers: Mapping[str, str]) -> None:
        signature = header_value(headers, SIGNATURE_HEADER)
        if signature:
            if not verify_hmac(self.webhook_secret, raw_body, signature, hashlib.sha256):
                raise SignatureInvalid("Flutterwave signature does not match body")
            return
        if not verify_static_token(self.webhook_secret, header_value(headers, LEGACY_HASH_HEADER)):
            raise SignatureInvalid("Flutterwave verif-hash does not match")

    def verify(self, reference: str) -> PaymentEvent:
        data = self._call("GET", "/transactions/verify_by_reference", params={"tx_ref": reference})
        outcome = _outcome("verify", str(data.get("status", "")))
        digest = payload_hash(json.dumps(data, sort_keys=True).encode("utf-8"))
        return self._event(data, outcome, digest, extra={"verified": True})

    def _event(self, data: dict, outcome: PaymentOutcome, digest: str, extra: dict) -> PaymentEvent:
        reference = str(require(data, "tx_ref", "data"))
        currency = str(require(data, "currency", "data")).upper()
        try:
            amount = quantize(require(data, "amount", "data"), currency)
        except ValidationError as exc:
            raise MalformedEvent(f"Unreadable amount in Flutterwave payload: {exc.messages}") from exc

        card = data.get("card") or {}
        customer = data.get("customer") or {}
        metadata = {
            **extra,
            "transaction_id": data.get("id"),
            "flw_ref": data.get("flw_ref"),
            "payment_type": data.get("payment_type"),
            "charged_amount": str(data["charged_amount"]) if data.get("charged_amount") is not None else None,
            "app_fee": str(data["app_fee"]) if data.get("app_fee") is not None else None,
            "processor_response": data.get("processor_response"),
            "customer_email": customer.get("email"),
            "card_type": card.get("type"),
            "last4": card.get("last_4digits"),
        }

        return PaymentEvent(
            provider=self.name.value,
            external_reference=reference,
            reported_amount=amount,
            reported_currency=currency,
            outcome=outcome,
            raw_payload_hash=digest,
            received_at=datetime.now(UTC),
            metadata={key: value for key, value in metadata.items() if value is not None},
        )
