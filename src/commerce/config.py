"""Runtime settings for the commerce engine.

Values are read from the environment (or a local ``.env`` file). Provider
credentials default to empty strings; a provider whose credentials are not
set is never offered at checkout.
"""

from decimal import Decimal
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

MPESA_BASE_URLS = {
    "sandbox": "https://sandbox.safaricom.co.ke",
    "production": "https://api.safaricom.co.ke",
}


class EngineSettings(BaseSettings):
    environment: str = Field(default="development")
    log_level: str | None = Field(default=None)
    log_format: str | None = Field(default=None)  # "json" or "console"
    log_dir: str | None = Field(default=None)

    # M-Pesa (mobile-money push)
    mpesa_consumer_key: str = Field(default="")
    mpesa_consumer_secret: str = Field(default="")
    mpesa_short_code: str = Field(default="174379")
    mpesa_passkey: str = Field(default="")
    mpesa_environment: str = Field(default="sandbox")
    mpesa_callback_url: str = Field(default="")
    mpesa_callback_token: str = Field(default="")

    # Paystack
    paystack_secret_key: str = Field(default="")
    paystack_public_key: str = Field(default="")
    paystack_callback_url: str = Field(default="")

    # Flutterwave
    flutterwave_secret_key: str = Field(default="")
    flutterwave_public_key: str = Field(default="")
    flutterwave_encryption_key: str = Field(default="")
    flutterwave_webhook_secret: str = Field(default="")
    flutterwave_redirect_url: str = Field(default="")

    # Reconciliation tolerance, in major currency units / percent of the
    # expected amount. Zero on both means exact match.
    amount_tolerance: Decimal = Field(default=Decimal("0"), ge=0)
    amount_tolerance_percent: Decimal = Field(default=Decimal("0"), ge=0)
    amount_tolerance_overrides: dict[str, Decimal] = Field(default_factory=dict)

    http_timeout_seconds: float = Field(default=30.0, gt=0)
    webhook_batch_size: int = Field(default=50, ge=1)
    worker_poll_interval_seconds: float = Field(default=1.0, gt=0)
    # A PROCESSING receipt whose consumer has not settled it within this long is claimable again
    webhook_claim_lease_seconds: float = Field(default=300.0, gt=0)

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def mpesa_base_url(self) -> str:
        return MPESA_BASE_URLS.get(self.mpesa_environment.lower(), MPESA_BASE_URLS["sandbox"])

    def absolute_tolerance(self, currency: str) -> Decimal:
        """Absolute tolerance for ``currency``; per-currency overrides win."""
        overrides = {code.upper(): value for code, value in self.amount_tolerance_overrides.items()}
        return overrides.get(currency.upper(), self.amount_tolerance)


@lru_cache
def get_settings() -> EngineSettings:
    return EngineSettings()
