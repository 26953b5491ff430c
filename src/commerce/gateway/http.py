"""Outbound HTTP for provider adapters."""

import requests
import structlog

from commerce.shared.errors import GatewayError

logger = structlog.get_logger(__name__)


def send(
    session: requests.Session,
    method: str,
    url: str,
    *,
    provider: str,
    timeout: float,
    **kwargs,
) -> dict:
    """Perform a provider call and return the decoded JSON body.

    Transport failures, non-2xx responses and undecodable bodies all surface
    as GatewayError.
    """
    try:
        response = session.request(method, url, timeout=timeout, **kwargs)
        response.raise_for_status()
        body = response.json()
    except requests.RequestException as exc:
        logger.error("Payment provider request failed", provider=provider, method=method, url=url, error=str(exc))
        raise GatewayError(provider, f"{method} {url} failed: {exc}") from exc

    if not isinstance(body, dict):
        raise GatewayError(provider, f"{method} {url} returned a non-object body")
    return body
