"""Storage configuration: shared stores in deployment, in-memory adapters under test."""

import tomllib
from pathlib import Path

import commerce.domain as domain_module
from commerce.domain import commerce
from commerce.inventory.stock import StockItem
from commerce.order.order import Order, OrderLine
from commerce.payment.payment import Payment
from commerce.payment.reference import PaymentReference
from commerce.utils.db import _stored_in_tables
from commerce.webhook.receipt import WebhookReceipt


def _declared_config():
    with open(Path(domain_module.__file__).parent / "domain.toml", "rb") as f:
        return tomllib.load(f)


class TestDeclaredStores:
    def test_state_is_kept_in_postgresql(self):
        config = _declared_config()
        assert config["databases"]["default"]["provider"] == "postgresql"
        assert "DATABASE_URL" in config["databases"]["default"]["database_uri"]

    def test_event_streams_are_kept_in_message_db(self):
        config = _declared_config()
        assert config["event_store"]["provider"] == "message_db"
        assert "MESSAGE_DB_URL" in config["event_store"]["database_uri"]

    def test_stale_writes_are_retried(self):
        retry = _declared_config()["server"]["version_retry"]
        assert retry["enabled"] is True
        assert retry["max_retries"] > 0

    def test_commands_are_handled_in_the_caller(self):
        assert commerce.config["command_processing"] == "sync"
        assert commerce.config["event_processing"] == "sync"


class TestTestOverlay:
    def test_in_memory_adapters_under_test(self):
        assert commerce.config["databases"]["default"]["provider"] == "memory"
        assert commerce.config["event_store"]["provider"] == "memory"

    def test_version_retry_survives_the_overlay(self):
        assert commerce.config["server"]["version_retry"]["max_retries"] == 5


class TestRelationalTables:
    def test_state_stored_aggregates_get_tables(self):
        for cls in (StockItem, PaymentReference, WebhookReceipt):
            assert _stored_in_tables(cls, "default"), cls.__name__

    def test_event_sourced_aggregates_do_not(self):
        for cls in (Order, OrderLine, Payment):
            assert not _stored_in_tables(cls, "default"), cls.__name__

    def test_other_providers_are_skipped(self):
        assert not _stored_in_tables(StockItem, "analytics")
