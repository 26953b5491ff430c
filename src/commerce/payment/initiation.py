"""Payment initiation: command and handler.

Records the PENDING payment once the provider has accepted the request. The
provider call itself happens before this command, outside any lock, with the
merchant reference already reserved.
"""

from protean import handle
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from commerce.domain import commerce
from commerce.payment.payment import Payment
from commerce.payment.reference import PaymentReference, ReferenceKind, find_reference
from commerce.shared.errors import DuplicateReference


@commerce.command(part_of="Payment")
class InitiatePayment:
    """Record a payment the provider has opened for an order."""

    reference = String(required=True, max_length=255)
    merchant_reference = String(required=True, max_length=255)
    order_id = Identifier(required=True)
    amount = String(required=True)
    currency = String(required=True, max_length=3)
    gateway = String(required=True, max_length=50)


@commerce.command_handler(part_of=Payment)
class InitiatePaymentHandler:
    @handle(InitiatePayment)
    def initiate_payment(self, command):
        references = {command.reference, command.merchant_reference}
        for reference in references:
            entry = find_reference(reference)
            if entry is None:
                continue
            # The caller's own reservation is the only entry it may take over
            if not (entry.is_reservation and reference == command.merchant_reference):
                raise DuplicateReference(reference)

        payment = Payment.create(
            reference=command.reference,
            merchant_reference=command.merchant_reference,
            order_id=command.order_id,
            amount=command.amount,
            currency=command.currency,
            gateway=command.gateway,
        )
        current_domain.repository_for(Payment).add(payment)

        index = current_domain.repository_for(PaymentReference)
        for reference in references:
            kind = ReferenceKind.MERCHANT if reference == command.merchant_reference else ReferenceKind.PROVIDER
            entry = find_reference(reference)
            if entry is None:
                entry = PaymentReference(reference=reference, kind=kind.value)
            entry.payment_id = str(payment.id)
            index.add(entry)
        return str(payment.id)
