"""Domain events for the StockItem aggregate."""

from protean.fields import DateTime, Identifier, Integer, String

from commerce.domain import commerce


@commerce.event(part_of="StockItem")
class StockInitialized:
    """Stock tracking started (or was reset) for an inventory key."""

    __version__ = 1

    key = String(required=True, max_length=255)
    sku = String(max_length=100)
    quantity = Integer(required=True)
    initialized_at = DateTime(required=True)


@commerce.event(part_of="StockItem")
class StockDecremented:
    """Units were committed to a paid order."""

    __version__ = 1

    key = String(required=True, max_length=255)
    order_id = Identifier()
    quantity = Integer(required=True)
    previous_on_hand = Integer(required=True)
    new_on_hand = Integer(required=True)
    decremented_at = DateTime(required=True)


@commerce.event(part_of="StockItem")
class StockRestored:
    """Units came back from a cancelled or returned order."""

    __version__ = 1

    key = String(required=True, max_length=255)
    order_id = Identifier()
    quantity = Integer(required=True)
    previous_on_hand = Integer(required=True)
    new_on_hand = Integer(required=True)
    restored_at = DateTime(required=True)
