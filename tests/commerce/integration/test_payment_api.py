"""Integration tests for the payment endpoints."""

import inspect

import pytest

from commerce.api import routes
from commerce.gateway.port import PaymentOutcome


def _create(client, order_payload):
    return client.post("/orders", json=order_payload).json()["order_id"]


def _initiate(client, order_id, **overrides):
    body = {"order_id": order_id, "amount": "1000.00", "currency": "KES", "gateway": "fake", "reference": "REF-001"}
    body.update(overrides)
    return client.post("/payments", json=body)


class TestInitiatePaymentEndpoint:
    def test_initiate(self, client, order_payload, fake_gateway):
        order_id = _create(client, order_payload)
        response = _initiate(client, order_id, customer_email="jane@example.com")

        assert response.status_code == 201
        data = response.json()
        assert data["reference"] == "REF-001"
        assert data["provider"] == "fake"
        assert data["action_target"] == "https://fake-gateway.local/pay/REF-001"

    def test_duplicate_reference(self, client, order_payload, fake_gateway):
        order_id = _create(client, order_payload)
        _initiate(client, order_id)
        assert _initiate(client, order_id).status_code == 400

    def test_unconfigured_provider(self, client, order_payload):
        order_id = _create(client, order_payload)
        response = _initiate(client, order_id, gateway="paystack")
        assert response.status_code == 400

    def test_provider_failure_is_bad_gateway(self, client, order_payload, fake_gateway):
        fake_gateway.configure(should_succeed=False, failure_reason="Provider down")
        order_id = _create(client, order_payload)

        response = _initiate(client, order_id)
        assert response.status_code == 502
        assert response.json()["provider"] == "fake"
        assert client.get("/payments/REF-001").status_code == 404

    def test_non_positive_amount_rejected_by_schema(self, client, order_payload, fake_gateway):
        order_id = _create(client, order_payload)
        assert _initiate(client, order_id, amount="0").status_code == 422


class TestPaymentQueries:
    def test_get_payment(self, client, order_payload, fake_gateway):
        order_id = _create(client, order_payload)
        _initiate(client, order_id)

        data = client.get("/payments/REF-001").json()
        assert data["status"] == "PENDING"
        assert data["order_id"] == order_id
        assert data["amount"] == "1000.00"
        assert data["currency"] == "KES"
        assert data["gateway"] == "fake"

    def test_unknown_payment(self, client):
        assert client.get("/payments/NOPE").status_code == 404

    def test_verify(self, client, order_payload, fake_gateway):
        order_id = _create(client, order_payload)
        _initiate(client, order_id)
        fake_gateway.verify_outcomes["REF-001"] = PaymentOutcome.COMPLETED

        response = client.post("/payments/REF-001/verify")
        assert response.status_code == 200
        assert response.json()["status"] == "COMPLETED"
        assert client.get(f"/orders/{order_id}").json()["status"] == "PAID"

    def test_gateways_without_credentials(self, client):
        response = client.get("/payments/gateways", params={"currency": "kes"})
        assert response.json() == {"currency": "KES", "gateways": []}

    def test_gateways_with_credentials(self, client, monkeypatch):
        from commerce.config import get_settings

        monkeypatch.setenv("MPESA_CONSUMER_KEY", "ck")
        monkeypatch.setenv("MPESA_CONSUMER_SECRET", "cs")
        monkeypatch.setenv("MPESA_PASSKEY", "pk")
        monkeypatch.setenv("MPESA_CALLBACK_TOKEN", "cb-token")
        get_settings.cache_clear()

        response = client.get("/payments/gateways", params={"currency": "KES"})
        assert response.json()["gateways"] == ["mpesa"]


class TestProviderCallingRoutes:
    @pytest.mark.parametrize("endpoint", [routes.initiate_payment, routes.verify_payment])
    def test_run_in_threadpool(self, endpoint):
        assert not inspect.iscoroutinefunction(endpoint)

    def test_initiate_reports_amount_charged(self, client, order_payload, fake_gateway):
        order_id = _create(client, order_payload)
        response = _initiate(client, order_id)
        assert response.status_code == 201
        assert response.json()["amount"] == "1000.00"
