"""Payment gateway port (abstract interface).

Every provider integration is one variant behind this interface, tagged by
``GatewayName``. An adapter turns outbound requests into provider calls and
turns inbound provider payloads into the common ``PaymentEvent`` shape, so
the reconciler never sees a provider-specific field.
"""

import json
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum

from commerce.shared.errors import MalformedEvent


class GatewayName(Enum):
    MPESA = "mpesa"
    PAYSTACK = "paystack"
    FLUTTERWAVE = "flutterwave"
    FAKE = "fake"


class PaymentOutcome(Enum):
    PENDING = "PENDING"
    AUTHORIZED = "AUTHORIZED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


@dataclass(frozen=True)
class InitiationRequest:
    """Everything an adapter may need to open a payment with its provider."""

    reference: str
    order_id: str
    amount: Decimal
    currency: str
    customer_email: str | None = None
    customer_phone: str | None = None
    customer_name: str | None = None
    description: str | None = None
    metadata: dict = field(default_factory=dict)


@dataclass(frozen=True)
class InitiationResult:
    """What the provider accepted.

    ``charged_amount`` is set when the provider will collect a different
    amount from the one requested (M-Pesa only takes whole units).
    """

    provider_reference: str
    action_target: str
    message: str | None = None
    charged_amount: Decimal | None = None
    raw: dict = field(default_factory=dict)


@dataclass(frozen=True)
class PaymentEvent:
    """Normalized provider notification.

    ``reported_amount`` is in major units. ``reported_amount`` and
    ``reported_currency`` are None when the provider does not report them
    for this kind of notification.
    """

    provider: str
    external_reference: str
    reported_amount: Decimal | None
    reported_currency: str | None
    outcome: PaymentOutcome
    raw_payload_hash: str
    received_at: datetime
    metadata: dict = field(default_factory=dict)


class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    name: GatewayName
    # None means any currency
    supported_currencies: frozenset[str] | None = None

    def supports_currency(self, currency: str) -> bool:
        return self.supported_currencies is None or currency.upper() in self.supported_currencies

    @abstractmethod
    def is_configured(self) -> bool:
        """Whether credentials for this provider are present."""
        ...

    @abstractmethod
    def initiate(self, request: InitiationRequest) -> InitiationResult:
        """Open a payment with the provider and return where the customer goes next."""
        ...

    @abstractmethod
    def normalize(self, raw_body: bytes, headers: Mapping[str, str]) -> PaymentEvent:
        """Authenticate a raw webhook body and normalize it.

        Must verify against ``raw_body`` exactly as received, before parsing.
        Raises SignatureInvalid or MalformedEvent.
        """
        ...

    @abstractmethod
    def verify(self, reference: str) -> PaymentEvent:
        """Ask the provider for the current status of ``reference``."""
        ...

    def acknowledgement(self, ack) -> dict:
        """Response body returned to the provider for a received webhook."""
        return {"status": ack.status}


def decode_body(raw_body: bytes) -> dict:
    """Parse a JSON object body, failing closed on anything else."""
    try:
        payload = json.loads(raw_body)
    except (ValueError, TypeError) as exc:
        raise MalformedEvent(f"Body is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise MalformedEvent("Body is not a JSON object")
    return payload


def require(mapping: Mapping, key: str, context: str):
    """Fetch a required field from a provider payload."""
    value = mapping.get(key) if isinstance(mapping, Mapping) else None
    if value is None or value == "":
        raise MalformedEvent(f"Missing required field `{context}.{key}`")
    return value
