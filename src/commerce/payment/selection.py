"""Gateway selection: which providers may be offered for a currency.

A provider is offered only when it supports the currency and its
credentials are configured. The fake gateway is never offered, but can be
chosen explicitly outside production.
"""

from commerce.gateway import GatewayName, PaymentGateway, gateway_name, get_gateway
from commerce.shared.errors import UnsupportedGateway

OFFERED_GATEWAYS = (GatewayName.MPESA, GatewayName.PAYSTACK, GatewayName.FLUTTERWAVE)


def available_gateways(currency: str) -> list[GatewayName]:
    currency = (currency or "").upper()
    offered = []
    for name in OFFERED_GATEWAYS:
        gateway = get_gateway(name)
        if gateway.supports_currency(currency) and gateway.is_configured():
            offered.append(name)
    return offered


def ensure_gateway_available(choice: "GatewayName | str", currency: str) -> PaymentGateway:
    """Return the adapter for ``choice`` or raise UnsupportedGateway."""
    name = gateway_name(choice)
    gateway = get_gateway(name)
    if not gateway.is_configured():
        reason = "not available in this environment" if name == GatewayName.FAKE else "credentials not configured"
        raise UnsupportedGateway(name.value, reason)
    if not gateway.supports_currency(currency):
        raise UnsupportedGateway(name.value, f"does not support {currency.upper()}")
    return gateway
