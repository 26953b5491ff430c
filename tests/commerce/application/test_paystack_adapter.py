"""Tests for the Paystack adapter against a fake HTTP session."""

import hashlib
import hmac
import json
from decimal import Decimal

import pytest
import requests
from protean.exceptions import ValidationError

from commerce.gateway.port import InitiationRequest, PaymentOutcome
from commerce.gateway.paystack import PaystackGateway
from commerce.shared.errors import GatewayError, MalformedEvent, SignatureInvalid

SECRET = "sk_test_secret"


def _sign(body: bytes, secret: str = SECRET) -> dict:
    return {"X-Paystack-Signature": hmac.new(secret.encode(), body, hashlib.sha512).hexdigest()}


def _charge(event="charge.success", reference="PAY-1", amount=320000, currency="NGN", **data):
    payload = {
        "event": event,
        "data": {
            "reference": reference,
            "amount": amount,
            "currency": currency,
            "status": "success",
            "gateway_response": "Successful",
            "channel": "card",
            "fees": 4800,
            "customer": {"email": "jane@example.com"},
            "authorization": {"card_type": "visa", "last4": "4081", "bank": "TEST BANK"},
            **data,
        },
    }
    return json.dumps(payload).encode("utf-8")


@pytest.fixture()
def gateway(http_session):
    return PaystackGateway(secret_key=SECRET, public_key="pk_test", callback_url="https://shop/cb", session=http_session)


def _request(**overrides):
    values = {
        "reference": "PAY-1",
        "order_id": "ord-1",
        "amount": Decimal("3200.00"),
        "currency": "NGN",
        "customer_email": "jane@example.com",
    }
    values.update(overrides)
    return InitiationRequest(**values)


class TestInitiate:
    def test_sends_amount_in_kobo(self, gateway, http_session):
        http_session.reply(
            {
                "status": True,
                "data": {"authorization_url": "https://checkout.paystack.com/abc", "reference": "PAY-1", "access_code": "abc"},
            }
        )
        result = gateway.initiate(_request())

        call = http_session.calls[0]
        assert call["method"] == "POST"
        assert call["url"] == "https://api.paystack.co/transaction/initialize"
        assert call["json"]["amount"] == 320000
        assert call["json"]["email"] == "jane@example.com"
        assert call["json"]["callback_url"] == "https://shop/cb"
        assert call["json"]["metadata"]["order_id"] == "ord-1"
        assert call["headers"]["Authorization"] == f"Bearer {SECRET}"
        assert result.action_target == "https://checkout.paystack.com/abc"
        assert result.provider_reference == "PAY-1"

    def test_requires_email(self, gateway, http_session):
        with pytest.raises(ValidationError):
            gateway.initiate(_request(customer_email=None))
        assert http_session.calls == []

    def test_unsuccessful_response(self, gateway, http_session):
        http_session.reply({"status": False, "message": "Invalid key"})
        with pytest.raises(GatewayError) as exc:
            gateway.initiate(_request())
        assert "Invalid key" in str(exc.value)

    def test_http_error(self, gateway, http_session):
        http_session.reply({"status": False}, status_code=500)
        with pytest.raises(GatewayError):
            gateway.initiate(_request())

    def test_transport_error(self, gateway, http_session):
        http_session.fail(requests.ConnectionError("connection refused"))
        with pytest.raises(GatewayError):
            gateway.initiate(_request())


class TestNormalize:
    def test_charge_success(self, gateway):
        body = _charge()
        event = gateway.normalize(body, _sign(body))

        assert event.provider == "paystack"
        assert event.external_reference == "PAY-1"
        assert event.outcome == PaymentOutcome.COMPLETED
        assert event.reported_amount == Decimal("3200.00")
        assert event.reported_currency == "NGN"
        assert event.raw_payload_hash == hashlib.sha256(body).hexdigest()
        assert event.metadata["channel"] == "card"
        assert event.metadata["fees"] == "48.00"
        assert event.metadata["last4"] == "4081"

    def test_charge_failed(self, gateway):
        body = _charge(event="charge.failed", gateway_response="Declined")
        event = gateway.normalize(body, _sign(body))
        assert event.outcome == PaymentOutcome.FAILED
        assert event.metadata == {"event": "charge.failed", "gateway_response": "Declined"}

    def test_refund_processed(self, gateway):
        body = _charge(event="refund.processed", amount=100000)
        event = gateway.normalize(body, _sign(body))
        assert event.outcome == PaymentOutcome.REFUNDED
        assert event.reported_amount == Decimal("1000.00")

    def test_unrecognized_event_is_pending(self, gateway):
        body = _charge(event="subscription.create")
        assert gateway.normalize(body, _sign(body)).outcome == PaymentOutcome.PENDING

    def test_signature_over_other_bytes_is_rejected(self, gateway):
        body = _charge()
        tampered = body.replace(b"320000", b"999999")
        with pytest.raises(SignatureInvalid):
            gateway.normalize(tampered, _sign(body))

    def test_wrong_secret_is_rejected(self, gateway):
        body = _charge()
        with pytest.raises(SignatureInvalid):
            gateway.normalize(body, _sign(body, secret="other"))

    def test_missing_signature_is_rejected(self, gateway):
        with pytest.raises(SignatureInvalid):
            gateway.normalize(_charge(), {})

    def test_missing_reference(self, gateway):
        body = json.dumps({"event": "charge.success", "data": {"amount": 100, "currency": "NGN"}}).encode()
        with pytest.raises(MalformedEvent):
            gateway.normalize(body, _sign(body))

    def test_fractional_kobo(self, gateway):
        body = _charge(amount=100.5)
        with pytest.raises(MalformedEvent):
            gateway.normalize(body, _sign(body))


class TestVerify:
    def test_verify_success(self, gateway, http_session):
        http_session.reply({"status": True, "data": {"status": "success", "amount": 320000, "currency": "NGN"}})
        event = gateway.verify("PAY-1")

        assert http_session.calls[0]["url"] == "https://api.paystack.co/transaction/verify/PAY-1"
        assert event.outcome == PaymentOutcome.COMPLETED
        assert event.reported_amount == Decimal("3200.00")
        assert event.metadata["verified"] is True

    def test_verify_abandoned_is_pending(self, gateway, http_session):
        http_session.reply({"status": True, "data": {"status": "abandoned", "amount": 320000, "currency": "NGN"}})
        assert gateway.verify("PAY-1").outcome == PaymentOutcome.PENDING


class TestConfiguration:
    def test_configured(self, gateway):
        assert gateway.is_configured()

    def test_missing_keys(self):
        assert not PaystackGateway(secret_key="", public_key="").is_configured()

    def test_currencies(self, gateway):
        assert gateway.supports_currency("ngn")
        assert not gateway.supports_currency("KES")
