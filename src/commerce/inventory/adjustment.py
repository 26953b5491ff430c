"""Stock adjustments: commands and handler.

Every change to a StockItem goes through one of these commands. Callers that
need per-key atomicity (the ledger) serialize on the inventory key around
``current_domain.process``.
"""

from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import Identifier, Integer, String
from protean.utils.globals import current_domain

from commerce.domain import commerce
from commerce.inventory.stock import StockItem


@commerce.command(part_of="StockItem")
class InitializeStock:
    """Start tracking stock for a key, or reset the count of an existing one."""

    key = String(required=True, max_length=255)
    quantity = Integer(required=True, min_value=0)
    sku = String(max_length=100)


@commerce.command(part_of="StockItem")
class DecrementStock:
    key = String(required=True, max_length=255)
    quantity = Integer(required=True, min_value=1)
    order_id = Identifier()


@commerce.command(part_of="StockItem")
class RestoreStock:
    key = String(required=True, max_length=255)
    quantity = Integer(required=True, min_value=1)
    order_id = Identifier()
    sku = String(max_length=100)


def find_stock_item(key: str) -> StockItem | None:
    try:
        return current_domain.repository_for(StockItem).get(key)
    except ObjectNotFoundError:
        return None


@commerce.command_handler(part_of=StockItem)
class StockAdjustmentHandler:
    @handle(InitializeStock)
    def initialize_stock(self, command):
        repo = current_domain.repository_for(StockItem)
        item = find_stock_item(command.key)
        if item is None:
            item = StockItem.create(command.key, command.quantity, sku=command.sku)
        else:
            item.reset(command.quantity, sku=command.sku)
        repo.add(item)
        return item.on_hand

    @handle(DecrementStock)
    def decrement_stock(self, command):
        """Returns ``(applied, on_hand)``; a missing item counts as zero on hand."""
        item = find_stock_item(command.key)
        if item is None:
            return False, 0

        applied = item.decrement(command.quantity, order_id=command.order_id)
        if applied:
            current_domain.repository_for(StockItem).add(item)
        return applied, item.on_hand

    @handle(RestoreStock)
    def restore_stock(self, command):
        repo = current_domain.repository_for(StockItem)
        item = find_stock_item(command.key)
        if item is None:
            item = StockItem.create(command.key, 0, sku=command.sku)
        item.restore(command.quantity, order_id=command.order_id)
        repo.add(item)
        return item.on_hand
