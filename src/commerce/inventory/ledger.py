"""Inventory ledger operations used by the order state machine.

``decrement`` commits stock for a paid order line by line. Each line is an
independent compare-and-adjust under that item's lock, so one under-stocked
line never blocks the others; the lines that could not be backed come back
as a ``PartialShortfall``. ``restore`` has no failure mode.
"""

from collections.abc import Iterable
from dataclasses import dataclass

import structlog
from protean.utils.globals import current_domain

from commerce.inventory.adjustment import DecrementStock, RestoreStock, find_stock_item
from commerce.utils.locks import KeyedLocks

logger = structlog.get_logger(__name__)

_stock_locks = KeyedLocks("stock")


@dataclass(frozen=True)
class LineAdjustment:
    key: str
    quantity: int
    sku: str | None = None


@dataclass(frozen=True)
class Shortfall:
    key: str
    requested: int
    available: int

    def to_dict(self) -> dict:
        return {"key": self.key, "requested": self.requested, "available": self.available}


@dataclass(frozen=True)
class Ok:
    pass


@dataclass(frozen=True)
class PartialShortfall:
    lines: tuple[Shortfall, ...]

    @property
    def keys(self) -> set[str]:
        return {line.key for line in self.lines}


LedgerResult = Ok | PartialShortfall


class InventoryLedger:
    def __init__(self, locks: KeyedLocks | None = None) -> None:
        self._locks = locks or _stock_locks

    def decrement(self, lines: Iterable[LineAdjustment], order_id: str | None = None) -> LedgerResult:
        shortfalls = []
        for line in _merge(lines):
            with self._locks.hold(line.key):
                applied, on_hand = current_domain.process(
                    DecrementStock(key=line.key, quantity=line.quantity, order_id=order_id),
                    asynchronous=False,
                )
            if not applied:
                shortfalls.append(Shortfall(key=line.key, requested=line.quantity, available=on_hand))

        if shortfalls:
            logger.warning(
                "Inventory shortfall on paid order",
                order_id=order_id,
                lines=[shortfall.to_dict() for shortfall in shortfalls],
            )
            return PartialShortfall(lines=tuple(shortfalls))
        return Ok()

    def restore(self, lines: Iterable[LineAdjustment], order_id: str | None = None) -> Ok:
        for line in _merge(lines):
            with self._locks.hold(line.key):
                current_domain.process(
                    RestoreStock(key=line.key, quantity=line.quantity, order_id=order_id, sku=line.sku),
                    asynchronous=False,
                )
        return Ok()

    def stock_level(self, key: str) -> int | None:
        item = find_stock_item(key)
        return item.on_hand if item is not None else None


def _merge(lines: Iterable[LineAdjustment]) -> list[LineAdjustment]:
    """Fold lines sharing an inventory key into one adjustment."""
    merged: dict[str, LineAdjustment] = {}
    for line in lines:
        existing = merged.get(line.key)
        if existing is None:
            merged[line.key] = line
        else:
            merged[line.key] = LineAdjustment(line.key, existing.quantity + line.quantity, existing.sku or line.sku)
    return list(merged.values())
