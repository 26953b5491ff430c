"""M-Pesa (Daraja) adapter: STK push mobile-money payments.

The customer is prompted on their phone; Safaricom later posts the outcome to
the configured callback URL. Callbacks carry no signature, so the callback
URL includes a pre-shared token that must arrive in the
``x-mpesa-callback-token`` header.

API calls need an OAuth bearer token, held by an ``AccessTokenCache`` that the
adapter receives at construction.
"""

import base64
import json
import re
from collections.abc import Callable, Mapping
from datetime import UTC, datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal

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
from commerce.gateway.signatures import header_value, payload_hash, verify_static_token
from commerce.gateway.token_cache import AccessTokenCache
from commerce.shared.errors import GatewayError, MalformedEvent, SignatureInvalid
from commerce.shared.money import to_decimal

logger = structlog.get_logger(__name__)

TOKEN_HEADER = "x-mpesa-callback-token"
EAST_AFRICA_TIME = timezone(timedelta(hours=3), "EAT")
TRANSACTION_TYPE = "CustomerPayBillOnline"
SUCCESS_RESULT_CODE = 0
# Returned by the status query while the customer has not answered the prompt
_PENDING_ERROR_CODES = {"500.001.1001"}


def normalize_msisdn(phone: str) -> str:
    """Return a Kenyan phone number as ``254XXXXXXXXX``."""
    digits = re.sub(r"[\s\-()+]", "", phone or "")
    if digits.startswith("0") and len(digits) == 10:
        digits = "254" + digits[1:]
    elif len(digits) == 9:
        digits = "254" + digits
    if not re.fullmatch(r"254\d{9}", digits):
        raise ValidationError({"customer_phone": [f"Invalid M-Pesa phone number: {phone!r}"]})
    return digits


def _timestamp(now: datetime) -> str:
    return now.astimezone(EAST_AFRICA_TIME).strftime("%Y%m%d%H%M%S")


class MpesaGateway(PaymentGateway):
    name = GatewayName.MPESA
    supported_currencies = frozenset({"KES", "TZS", "UGX"})

    def __init__(
        self,
        consumer_key: str,
        consumer_secret: str,
        short_code: str,
        passkey: str,
        callback_url: str,
        callback_token: str,
        base_url: str,
        token_cache: AccessTokenCache | None = None,
        session: requests.Session | None = None,
        timeout: float = 30.0,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.short_code = short_code
        self.passkey = passkey
        self.callback_url = callback_url
        self.callback_token = callback_token
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self._clock = clock or (lambda: datetime.now(UTC))
        self.tokens = token_cache or AccessTokenCache(fetch=self.fetch_access_token)

    def is_configured(self) -> bool:
        return bool(
            self.consumer_key and self.consumer_secret and self.short_code and self.passkey and self.callback_token
        )

    # -------------------------------------------------------------------
    # Daraja API
    # -------------------------------------------------------------------
    def fetch_access_token(self) -> tuple[str, int]:
        body = send(
            self.session,
            "GET",
            f"{self.base_url}/oauth/v1/generate",
            provider=self.name.value,
            timeout=self.timeout,
            params={"grant_type": "client_credentials"},
            auth=(self.consumer_key, self.consumer_secret),
        )
        token = body.get("access_token")
        if not token:
            raise GatewayError(self.name.value, "OAuth response carried no access_token")
        return token, int(body.get("expires_in", 3599))

    def _password(self, timestamp: str) -> str:
        return base64.b64encode(f"{self.short_code}{self.passkey}{timestamp}".encode()).decode("ascii")

    def _post(self, path: str, payload: dict) -> dict:
        return send(
            self.session,
            "POST",
            f"{self.base_url}{path}",
            provider=self.name.value,
            timeout=self.timeout,
            json=payload,
            headers={"Authorization": f"Bearer {self.tokens.get()}"},
        )

    def initiate(self, request: InitiationRequest) -> InitiationResult:
        if not request.customer_phone:
            raise ValidationError({"customer_phone": ["M-Pesa requires a customer phone number"]})

        phone = normalize_msisdn(request.customer_phone)
        amount = int(to_decimal(request.amount).quantize(Decimal(1), rounding=ROUND_HALF_UP))
        if amount < 1:
            raise ValidationError({"amount": ["M-Pesa amount must be at least 1"]})

        timestamp = _timestamp(self._clock())
        body = self._post(
            "/mpesa/stkpush/v1/processrequest",
            {
                "BusinessShortCode": self.short_code,
                "Password": self._password(timestamp),
                "Timestamp": timestamp,
                "TransactionType": TRANSACTION_TYPE,
                "Amount": amount,
                "PartyA": phone,
                "PartyB": self.short_code,
                "PhoneNumber": phone,
                "CallBackURL": self.callback_url,
                "AccountReference": request.reference[:12],
                "TransactionDesc": (request.description or f"Order {request.order_id}")[:13],
            },
        )

        if str(body.get("ResponseCode")) != "0" or not body.get("CheckoutRequestID"):
            raise GatewayError(
                self.name.value,
                body.get("ResponseDescription") or body.get("errorMessage") or "STK push was not accepted",
            )

        logger.info(
            "M-Pesa STK push sent",
            reference=request.reference,
            checkout_request_id=body["CheckoutRequestID"],
        )
        return InitiationResult(
            provider_reference=body["CheckoutRequestID"],
            action_target=phone,
            message=body.get("CustomerMessage"),
            charged_amount=Decimal(amount),
            raw=body,
        )

    def normalize(self, raw_body: bytes, headers: Mapping[str, str]) -> PaymentEvent:
        if not verify_static_token(self.callback_token, header_value(headers, TOKEN_HEADER)):
            raise SignatureInvalid("M-Pesa callback token does not match")

        payload = decode_body(raw_body)
        callback = require(require(payload, "Body", "body"), "stkCallback", "Body")
        reference = str(require(callback, "CheckoutRequestID", "stkCallback"))
        result_code = require(callback, "ResultCode", "stkCallback")
        try:
            result_code = int(result_code)
        except (TypeError, ValueError) as exc:
            raise MalformedEvent(f"Unreadable ResultCode: {result_code!r}") from exc

        items = (callback.get("CallbackMetadata") or {}).get("Item") or []
        values = {item.get("Name"): item.get("Value") for item in items if isinstance(item, dict)}

        outcome = PaymentOutcome.COMPLETED if result_code == SUCCESS_RESULT_CODE else PaymentOutcome.FAILED
        amount = None
        if outcome == PaymentOutcome.COMPLETED:
            try:
                amount = to_decimal(require(values, "Amount", "CallbackMetadata"))
            except ValidationError as exc:
                raise MalformedEvent(f"Unreadable amount in M-Pesa callback: {exc.messages}") from exc

        metadata = {
            "merchant_request_id": callback.get("MerchantRequestID"),
            "result_code": result_code,
            "result_desc": callback.get("ResultDesc"),
            "mpesa_receipt_number": values.get("MpesaReceiptNumber"),
            "phone_number": str(values["PhoneNumber"]) if values.get("PhoneNumber") else None,
            "transaction_date": str(values["TransactionDate"]) if values.get("TransactionDate") else None,
        }

        # Daraja callbacks never state a currency
        return PaymentEvent(
            provider=self.name.value,
            external_reference=reference,
            reported_amount=amount,
            reported_currency=None,
            outcome=outcome,
            raw_payload_hash=payload_hash(raw_body),
            received_at=datetime.now(UTC),
            metadata={key: value for key, value in metadata.items() if value is not None},
        )

    def verify(self, reference: str) -> PaymentEvent:
        timestamp = _timestamp(self._clock())
        body = self._post(
            "/mpesa/stkpushquery/v1/query",
            {
                "BusinessShortCode": self.short_code,
                "Password": self._password(timestamp),
                "Timestamp": timestamp,
                "CheckoutRequestID": reference,
            },
        )

        if body.get("errorCode") in _PENDING_ERROR_CODES or body.get("ResultCode") is None:
            outcome = PaymentOutcome.PENDING
        elif str(body.get("ResultCode")) == str(SUCCESS_RESULT_CODE):
            outcome = PaymentOutcome.COMPLETED
        else:
            outcome = PaymentOutcome.FAILED

        metadata = {"verified": True, "result_desc": body.get("ResultDesc") or body.get("errorMessage")}
        return PaymentEvent(
            provider=self.name.value,
            external_reference=reference,
            reported_amount=None,
            reported_currency=None,
            outcome=outcome,
            raw_payload_hash=payload_hash(json.dumps(body, sort_keys=True).encode("utf-8")),
            received_at=datetime.now(UTC),
            metadata={key: value for key, value in metadata.items() if value is not None},
        )

    def acknowledgement(self, ack) -> dict:
        return {"ResultCode": 0, "ResultDesc": "Accepted"}
