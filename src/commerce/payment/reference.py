"""Reference index: maps every reference a payment is known by to the payment.

A payment is quoted back by the provider reference (the M-Pesa checkout id,
the redirect providers' transaction reference) and looked up by operators
with the merchant reference this engine generated. Both are indexed here, and
a reference that is already indexed can never be reused.

The merchant reference is reserved (indexed with no payment yet) before the
provider is called, so two initiations quoting the same reference never both
reach the provider.
"""

from enum import Enum

from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from commerce.domain import commerce
from commerce.payment.payment import Payment
from commerce.shared.errors import DuplicateReference


class ReferenceKind(Enum):
    PROVIDER = "provider"
    MERCHANT = "merchant"


@commerce.aggregate
class PaymentReference:
    reference = String(identifier=True, required=True, max_length=255)
    payment_id = Identifier()  # None while reserved
    kind = String(choices=ReferenceKind, default=ReferenceKind.PROVIDER.value)

    @property
    def is_reservation(self) -> bool:
        return self.payment_id is None


@commerce.command(part_of="PaymentReference")
class ReservePaymentReference:
    reference = String(required=True, max_length=255)


@commerce.command(part_of="PaymentReference")
class ReleasePaymentReference:
    reference = String(required=True, max_length=255)


def find_reference(reference: str) -> PaymentReference | None:
    try:
        return current_domain.repository_for(PaymentReference).get(reference)
    except ObjectNotFoundError:
        return None


def reference_in_use(reference: str) -> bool:
    return find_reference(reference) is not None


def find_payment(reference: str) -> Payment | None:
    """Load the payment known by ``reference``, or None."""
    entry = find_reference(reference)
    if entry is None or entry.is_reservation:
        return None
    return current_domain.repository_for(Payment).get(entry.payment_id)


@commerce.command_handler(part_of=PaymentReference)
class PaymentReferenceHandler:
    @handle(ReservePaymentReference)
    def reserve(self, command):
        if reference_in_use(command.reference):
            raise DuplicateReference(command.reference)
        current_domain.repository_for(PaymentReference).add(
            PaymentReference(reference=command.reference, kind=ReferenceKind.MERCHANT.value)
        )

    @handle(ReleasePaymentReference)
    def release(self, command):
        """Drop a reservation that never became a payment."""
        entry = find_reference(command.reference)
        if entry is not None and entry.is_reservation:
            current_domain.repository_for(PaymentReference)._dao.delete(entry)
