"""Webhook authenticity helpers.

All comparisons are constant time and operate on the raw request bytes.
"""

import hashlib
import hmac
from collections.abc import Callable, Mapping


def payload_hash(raw_body: bytes) -> str:
    return hashlib.sha256(raw_body).hexdigest()


def hmac_hex(secret: str, raw_body: bytes, digestmod: Callable) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, digestmod).hexdigest()


def verify_hmac(secret: str, raw_body: bytes, signature: str | None, digestmod: Callable) -> bool:
    if not secret or not signature:
        return False
    expected = hmac_hex(secret, raw_body, digestmod)
    return hmac.compare_digest(expected, signature.strip().lower())


def verify_static_token(expected: str, presented: str | None) -> bool:
    if not expected or not presented:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), presented.strip().encode("utf-8"))


def header_value(headers: Mapping[str, str], name: str) -> str | None:
    """Case-insensitive header lookup over any mapping."""
    target = name.lower()
    for key, value in headers.items():
        if key.lower() == target:
            return value
    return None
