"""Webhook consumer runner.

Drains recorded provider notifications that were not reconciled in-process:
receipts the API acknowledged but never claimed, and receipts whose claim
lapsed because the consumer holding it died. The worker reads the same
database and event store as the API (see ``commerce/domain.toml``), so it
must run with the same ``DATABASE_URL`` and ``MESSAGE_DB_URL``.

Usage:
    python src/worker.py                  # Poll forever
    python src/worker.py --once           # Drain one batch and exit
    python src/worker.py --batch-size 100 --interval 5
"""

import argparse
import time

import structlog

from commerce.config import get_settings
from commerce.domain import commerce
from commerce.utils.logging import add_context, configure_logging
from commerce.webhook.consumer import WebhookConsumer

logger = structlog.get_logger(__name__)


def run(batch_size: int, interval: float, once: bool = False) -> int:
    """Process pending receipts until stopped. Returns the number handled."""
    commerce.init()
    total = 0
    with commerce.domain_context():
        consumer = WebhookConsumer()
        while True:
            handled = consumer.process_pending(limit=batch_size)
            total += handled
            if handled:
                logger.info("Processed pending webhook receipts", count=handled)
            if once:
                return total
            if handled < batch_size:
                time.sleep(interval)


def main():
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Commerce webhook consumer")
    parser.add_argument("--once", action="store_true", help="Drain one batch and exit")
    parser.add_argument("--batch-size", type=int, default=settings.webhook_batch_size)
    parser.add_argument("--interval", type=float, default=settings.worker_poll_interval_seconds)
    args = parser.parse_args()

    configure_logging(level=settings.log_level, format_type=settings.log_format)
    add_context(component="webhook-worker")
    logger.info("Webhook consumer starting", batch_size=args.batch_size, interval=args.interval)
    try:
        run(args.batch_size, args.interval, once=args.once)
    except KeyboardInterrupt:
        logger.info("Webhook consumer stopped")


if __name__ == "__main__":
    main()
