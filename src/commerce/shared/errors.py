"""Error taxonomy for the commerce engine.

Business-rule failures subclass protean's ``ValidationError`` (or
``ObjectNotFoundError`` for lookups) so that command processing and the HTTP
layer treat them like any other domain error. Webhook authenticity and shape
failures are plain exceptions: they are caught at ingress and never reach a
caller.
"""

from protean.exceptions import ObjectNotFoundError, ValidationError


class InvalidTransition(ValidationError):
    """Requested status change is not permitted from the current status."""

    def __init__(self, current: str, target: str, subject: str = "status") -> None:
        self.current = current
        self.target = target
        super().__init__({subject: [f"Cannot transition from {current} to {target}"]})


class DuplicateReference(ValidationError):
    def __init__(self, reference: str) -> None:
        self.reference = reference
        super().__init__({"reference": [f"Payment reference already used: {reference}"]})


class UnsupportedGateway(ValidationError):
    def __init__(self, gateway: str, reason: str) -> None:
        self.gateway = gateway
        super().__init__({"gateway": [f"{gateway}: {reason}"]})


class AmountMismatch(ValidationError):
    """Provider-reported amount or currency disagrees with the stored payment."""

    def __init__(self, reference: str, expected: str, reported: str) -> None:
        self.reference = reference
        self.expected = expected
        self.reported = reported
        super().__init__({"amount": [f"Reported {reported} does not match expected {expected} for {reference}"]})


class NotFound(ObjectNotFoundError):
    def __init__(self, kind: str, identifier: str) -> None:
        self.identifier = identifier
        super().__init__({kind: [f"{kind} `{identifier}` does not exist"]})


class UnknownReference(ObjectNotFoundError):
    """A provider reported on a reference no payment was ever recorded for."""

    def __init__(self, provider: str, reference: str) -> None:
        self.provider = provider
        self.reference = reference
        super().__init__({"reference": [f"No payment recorded for {provider} reference {reference}"]})


class SignatureInvalid(Exception):
    """Webhook authenticity check failed against the raw body."""


class MalformedEvent(Exception):
    """Webhook body is missing fields required for normalization."""


class GatewayError(Exception):
    """An outbound call to a payment provider failed."""

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        super().__init__(f"{provider}: {message}")
