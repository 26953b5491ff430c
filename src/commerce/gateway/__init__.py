"""Payment gateway registry.

Adapters are built lazily from settings, one per ``GatewayName`` tag.
``set_gateway()`` / ``reset_gateways()`` let tests swap in configured or fake
adapters. Adding a provider means adding one adapter and one builder here.
"""

from commerce.config import EngineSettings, get_settings
from commerce.gateway.fake_adapter import FakeGateway
from commerce.gateway.flutterwave import FlutterwaveGateway
from commerce.gateway.mpesa import MpesaGateway
from commerce.gateway.paystack import PaystackGateway
from commerce.gateway.port import GatewayName, PaymentGateway
from commerce.shared.errors import UnsupportedGateway

_gateways: dict[GatewayName, PaymentGateway] = {}


def _build(name: GatewayName, settings: EngineSettings) -> PaymentGateway:
    if name == GatewayName.MPESA:
        return MpesaGateway(
            consumer_key=settings.mpesa_consumer_key,
            consumer_secret=settings.mpesa_consumer_secret,
            short_code=settings.mpesa_short_code,
            passkey=settings.mpesa_passkey,
            callback_url=settings.mpesa_callback_url,
            callback_token=settings.mpesa_callback_token,
            base_url=settings.mpesa_base_url,
            timeout=settings.http_timeout_seconds,
        )
    if name == GatewayName.PAYSTACK:
        return PaystackGateway(
            secret_key=settings.paystack_secret_key,
            public_key=settings.paystack_public_key,
            callback_url=settings.paystack_callback_url,
            timeout=settings.http_timeout_seconds,
        )
    if name == GatewayName.FLUTTERWAVE:
        return FlutterwaveGateway(
            secret_key=settings.flutterwave_secret_key,
            public_key=settings.flutterwave_public_key,
            encryption_key=settings.flutterwave_encryption_key,
            webhook_secret=settings.flutterwave_webhook_secret,
            redirect_url=settings.flutterwave_redirect_url,
            timeout=settings.http_timeout_seconds,
        )
    return FakeGateway(enabled=not settings.is_production)


def gateway_name(value: "GatewayName | str") -> GatewayName:
    try:
        return value if isinstance(value, GatewayName) else GatewayName(str(value).lower())
    except ValueError as exc:
        raise UnsupportedGateway(str(value), "unknown payment provider") from exc


def get_gateway(name: "GatewayName | str") -> PaymentGateway:
    """Return the adapter for ``name``, building it from settings on first use."""
    key = gateway_name(name)
    if key not in _gateways:
        _gateways[key] = _build(key, get_settings())
    return _gateways[key]


def set_gateway(gateway: PaymentGateway) -> None:
    """Override the adapter registered under the gateway's own tag."""
    _gateways[gateway.name] = gateway


def reset_gateways() -> None:
    _gateways.clear()


__all__ = ["GatewayName", "PaymentGateway", "gateway_name", "get_gateway", "reset_gateways", "set_gateway"]
