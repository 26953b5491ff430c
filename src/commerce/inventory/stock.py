"""StockItem aggregate: sellable units on hand for one inventory key.

The inventory key is the variant id when an order line names one, otherwise
the product id. Stock never goes negative: a decrement that cannot be backed
leaves the item untouched and reports the shortfall to the caller.
"""

from datetime import UTC, datetime

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import DateTime, Integer, String

from commerce.domain import commerce
from commerce.inventory.events import StockDecremented, StockInitialized, StockRestored


@commerce.aggregate
class StockItem:
    key = String(identifier=True, required=True, max_length=255)
    sku = String(max_length=100)
    on_hand = Integer(default=0)
    updated_at = DateTime()

    @invariant.post
    def on_hand_cannot_be_negative(self):
        if self.on_hand is not None and self.on_hand < 0:
            raise ValidationError({"on_hand": ["Stock on hand cannot be negative"]})

    @classmethod
    def create(cls, key: str, quantity: int, sku: str | None = None) -> "StockItem":
        now = datetime.now(UTC)
        item = cls(key=key, sku=sku, on_hand=quantity, updated_at=now)
        item.raise_(StockInitialized(key=key, sku=sku, quantity=quantity, initialized_at=now))
        return item

    def reset(self, quantity: int, sku: str | None = None) -> None:
        now = datetime.now(UTC)
        self.on_hand = quantity
        if sku:
            self.sku = sku
        self.updated_at = now
        self.raise_(StockInitialized(key=self.key, sku=self.sku, quantity=quantity, initialized_at=now))

    def decrement(self, quantity: int, order_id: str | None = None) -> bool:
        """Take ``quantity`` units. Returns False, changing nothing, if not enough are on hand."""
        if quantity <= 0:
            raise ValidationError({"quantity": ["Quantity must be positive"]})
        if self.on_hand < quantity:
            return False

        now = datetime.now(UTC)
        previous = self.on_hand
        self.on_hand = previous - quantity
        self.updated_at = now
        self.raise_(
            StockDecremented(
                key=self.key,
                order_id=order_id,
                quantity=quantity,
                previous_on_hand=previous,
                new_on_hand=self.on_hand,
                decremented_at=now,
            )
        )
        return True

    def restore(self, quantity: int, order_id: str | None = None) -> None:
        if quantity <= 0:
            raise ValidationError({"quantity": ["Quantity must be positive"]})

        now = datetime.now(UTC)
        previous = self.on_hand
        self.on_hand = previous + quantity
        self.updated_at = now
        self.raise_(
            StockRestored(
                key=self.key,
                order_id=order_id,
                quantity=quantity,
                previous_on_hand=previous,
                new_on_hand=self.on_hand,
                restored_at=now,
            )
        )
