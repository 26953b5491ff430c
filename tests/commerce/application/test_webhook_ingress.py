"""Application tests for webhook ingress and the receipt consumer."""

import json
from datetime import UTC, datetime, timedelta

import pytest
from protean import current_domain
from protean.exceptions import ObjectNotFoundError

from commerce.config import get_settings
from commerce.inventory.adjustment import InitializeStock
from commerce.inventory.ledger import InventoryLedger
from commerce.order.creation import CreateOrder
from commerce.order.order import OrderStatus
from commerce.order.state_machine import load_order
from commerce.payment.payment import PaymentStatus
from commerce.payment.reference import find_payment
from commerce.payment.service import initiate_payment
from commerce.shared.errors import UnsupportedGateway
from commerce.webhook.consumer import WebhookConsumer
from commerce.webhook.ingress import AckStatus, WebhookIngress
from commerce.webhook.receipt import ReceiptStatus, WebhookReceipt
from commerce.webhook.recording import ClaimWebhookReceipt, find_receipt

SIGNED = {"x-fake-signature": "test-signature"}


def _open_payment(reference="REF-001"):
    current_domain.process(InitializeStock(key="prod-O1", quantity=5), asynchronous=False)
    lines = [{"product_id": "prod-O1", "unit_price": "500.00", "quantity": 2}]
    order_id = current_domain.process(
        CreateOrder(store_id="store-001", currency="KES", lines=json.dumps(lines)),
        asynchronous=False,
    )
    initiate_payment(order_id, "1000.00", "KES", "fake", reference=reference)
    return order_id


def _body(reference="REF-001", status="COMPLETED", amount="1000.00", currency="KES", **metadata):
    payload = {"reference": reference, "status": status, "amount": amount, "currency": currency}
    if metadata:
        payload["metadata"] = metadata
    return json.dumps(payload).encode("utf-8")


def _receipts(status=None):
    receipts = current_domain.repository_for(WebhookReceipt)._dao.query.all().items
    if status is None:
        return receipts
    return [receipt for receipt in receipts if receipt.status == status.value]


@pytest.fixture()
def ingress(fake_gateway):
    return WebhookIngress()


@pytest.fixture()
def consumer():
    return WebhookConsumer()


class TestReceive:
    def test_signed_body_is_recorded(self, ingress):
        _open_payment()
        ack = ingress.receive("fake", _body(), SIGNED)

        assert ack.status == AckStatus.ACCEPTED.value
        assert ack.needs_processing
        assert ack.reference == "REF-001"
        receipt = find_receipt(ack.receipt_id)
        assert receipt.status == ReceiptStatus.RECEIVED.value
        assert receipt.outcome == "COMPLETED"
        assert receipt.reported_amount == "1000.00"
        assert receipt.raw_body == _body().decode("utf-8")

    def test_recording_does_not_touch_payment(self, ingress):
        order_id = _open_payment()
        ingress.receive("fake", _body(), SIGNED)
        assert find_payment("REF-001").status == PaymentStatus.PENDING.value
        assert load_order(order_id).status == OrderStatus.PENDING.value

    def test_exact_redelivery_is_a_duplicate(self, ingress):
        _open_payment()
        first = ingress.receive("fake", _body(), SIGNED)
        second = ingress.receive("fake", _body(), SIGNED)

        assert second.status == AckStatus.DUPLICATE.value
        assert not second.needs_processing
        assert second.receipt_id == first.receipt_id
        assert len(_receipts()) == 1

    def test_new_payload_for_same_reference_is_recorded(self, ingress):
        _open_payment()
        first = ingress.receive("fake", _body(status="PENDING"), SIGNED)
        second = ingress.receive("fake", _body(status="COMPLETED"), SIGNED)
        assert second.status == AckStatus.ACCEPTED.value
        assert second.receipt_id != first.receipt_id

    def test_unknown_provider(self, ingress):
        with pytest.raises(UnsupportedGateway):
            ingress.receive("bitcoin", _body(), SIGNED)


class TestRejection:
    def test_bad_signature_is_rejected_without_mutation(self, ingress):
        order_id = _open_payment()
        ack = ingress.receive("fake", _body(), {"x-fake-signature": "forged"})

        assert ack.status == AckStatus.REJECTED.value
        assert not ack.needs_processing
        assert find_receipt(ack.receipt_id).status == ReceiptStatus.REJECTED.value
        assert find_payment("REF-001").status == PaymentStatus.PENDING.value
        assert load_order(order_id).status == OrderStatus.PENDING.value
        assert _receipts(ReceiptStatus.RECEIVED) == []

    def test_missing_signature_is_rejected(self, ingress):
        _open_payment()
        ack = ingress.receive("fake", _body(), {})
        assert ack.status == AckStatus.REJECTED.value

    def test_invalid_json_is_rejected(self, ingress):
        ack = ingress.receive("fake", b"{not json", SIGNED)
        assert ack.status == AckStatus.REJECTED.value
        assert "JSON" in ack.reason

    def test_missing_reference_is_rejected(self, ingress):
        ack = ingress.receive("fake", json.dumps({"status": "COMPLETED"}).encode(), SIGNED)
        assert ack.status == AckStatus.REJECTED.value
        assert "reference" in ack.reason

    def test_unknown_status_is_rejected(self, ingress):
        ack = ingress.receive("fake", _body(status="EXPLODED"), SIGNED)
        assert ack.status == AckStatus.REJECTED.value

    def test_repeated_forgery_keeps_one_receipt(self, ingress):
        ingress.receive("fake", _body(), {"x-fake-signature": "forged"})
        ingress.receive("fake", _body(), {"x-fake-signature": "forged"})
        assert len(_receipts(ReceiptStatus.REJECTED)) == 1


class TestConsumer:
    def test_processing_completes_payment_and_order(self, ingress, consumer):
        order_id = _open_payment()
        ack = ingress.receive("fake", _body(receipt_number="QK1"), SIGNED)

        assert consumer.process(ack.receipt_id) == ReceiptStatus.PROCESSED.value
        receipt = find_receipt(ack.receipt_id)
        assert receipt.caused_transition is True
        assert receipt.processed_at is not None
        payment = find_payment("REF-001")
        assert payment.status == PaymentStatus.COMPLETED.value
        assert payment.metadata_dict()["receipt_number"] == "QK1"
        assert load_order(order_id).status == OrderStatus.PAID.value
        assert InventoryLedger().stock_level("prod-O1") == 3

    def test_processed_receipt_is_not_claimed_again(self, ingress, consumer):
        _open_payment()
        ack = ingress.receive("fake", _body(), SIGNED)
        consumer.process(ack.receipt_id)
        assert consumer.process(ack.receipt_id) is None

    def test_distinct_payloads_transition_once(self, ingress, consumer):
        order_id = _open_payment()
        first = ingress.receive("fake", _body(channel="card"), SIGNED)
        second = ingress.receive("fake", _body(channel="card", attempt="2"), SIGNED)

        consumer.process(first.receipt_id)
        consumer.process(second.receipt_id)

        assert find_receipt(first.receipt_id).caused_transition is True
        assert find_receipt(second.receipt_id).caused_transition is False
        assert load_order(order_id).status == OrderStatus.PAID.value
        assert InventoryLedger().stock_level("prod-O1") == 3

    def test_unknown_reference_fails_receipt(self, ingress, consumer):
        ack = ingress.receive("fake", _body(reference="NOPE"), SIGNED)
        assert consumer.process(ack.receipt_id) == ReceiptStatus.FAILED.value
        assert "UnknownReference" in find_receipt(ack.receipt_id).error

    def test_amount_mismatch_fails_receipt(self, ingress, consumer):
        order_id = _open_payment()
        ack = ingress.receive("fake", _body(amount="10.00"), SIGNED)

        assert consumer.process(ack.receipt_id) == ReceiptStatus.FAILED.value
        assert "AmountMismatch" in find_receipt(ack.receipt_id).error
        assert find_payment("REF-001").status == PaymentStatus.PENDING.value
        assert load_order(order_id).status == OrderStatus.PENDING.value

    def test_unknown_receipt(self, consumer):
        with pytest.raises(ObjectNotFoundError):
            consumer.process("missing")


class TestProcessPending:
    def test_processes_received_receipts(self, ingress, consumer):
        order_id = _open_payment()
        ingress.receive("fake", _body(status="AUTHORIZED"), SIGNED)
        ingress.receive("fake", _body(status="COMPLETED"), SIGNED)
        ingress.receive("fake", _body(), {"x-fake-signature": "forged"})

        assert consumer.process_pending() == 2
        assert _receipts(ReceiptStatus.RECEIVED) == []
        assert len(_receipts(ReceiptStatus.PROCESSED)) == 2
        assert len(_receipts(ReceiptStatus.REJECTED)) == 1
        assert load_order(order_id).status == OrderStatus.PAID.value

    def test_respects_limit(self, ingress, consumer):
        _open_payment()
        ingress.receive("fake", _body(status="PENDING"), SIGNED)
        ingress.receive("fake", _body(status="AUTHORIZED"), SIGNED)
        ingress.receive("fake", _body(status="COMPLETED"), SIGNED)

        assert consumer.process_pending(limit=2) == 2
        assert len(_receipts(ReceiptStatus.RECEIVED)) == 1
        assert consumer.process_pending() == 1

    def test_nothing_pending(self, consumer):
        assert consumer.process_pending() == 0


def _claim_without_settling(receipt_id, claimed_at):
    current_domain.process(ClaimWebhookReceipt(receipt_id=receipt_id, claimed_at=claimed_at), asynchronous=False)


class TestLapsedClaims:
    def test_claim_within_lease_is_left_alone(self, ingress, consumer):
        _open_payment()
        ack = ingress.receive("fake", _body(), SIGNED)
        _claim_without_settling(ack.receipt_id, datetime.now(UTC))

        assert consumer.process_pending() == 0
        assert consumer.process(ack.receipt_id) is None
        assert find_receipt(ack.receipt_id).status == ReceiptStatus.PROCESSING.value

    def test_lapsed_claim_is_reclaimed(self, ingress):
        order_id = _open_payment()
        ack = ingress.receive("fake", _body(), SIGNED)
        claimed_at = datetime.now(UTC)
        _claim_without_settling(ack.receipt_id, claimed_at)

        later = WebhookConsumer(clock=lambda: claimed_at + timedelta(seconds=301))
        assert later.process_pending() == 1

        receipt = find_receipt(ack.receipt_id)
        assert receipt.status == ReceiptStatus.PROCESSED.value
        assert receipt.caused_transition is True
        assert receipt.attempts == 2
        assert load_order(order_id).status == OrderStatus.PAID.value

    def test_lease_is_configurable(self, ingress, monkeypatch):
        monkeypatch.setenv("WEBHOOK_CLAIM_LEASE_SECONDS", "5")
        get_settings.cache_clear()
        _open_payment()
        ack = ingress.receive("fake", _body(), SIGNED)
        claimed_at = datetime.now(UTC)
        _claim_without_settling(ack.receipt_id, claimed_at)

        consumer = WebhookConsumer(clock=lambda: claimed_at + timedelta(seconds=6))
        assert consumer.process_pending() == 1

    def test_settled_receipts_are_never_reclaimed(self, ingress, consumer):
        _open_payment()
        ack = ingress.receive("fake", _body(), SIGNED)
        consumer.process(ack.receipt_id)

        much_later = WebhookConsumer(clock=lambda: datetime.now(UTC) + timedelta(days=1))
        assert much_later.process_pending() == 0
        assert find_receipt(ack.receipt_id).attempts == 1
