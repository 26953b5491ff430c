"""Lazily refreshed bearer-token cache.

Owned by the adapter that needs it and handed to it at construction, so a
test can supply a fake fetcher and a fake clock.
"""

import threading
import time
from collections.abc import Callable

DEFAULT_SKEW_SECONDS = 60


class AccessTokenCache:
    """Caches one access token until ``skew_seconds`` before it expires.

    ``fetch`` returns ``(token, expires_in_seconds)``. ``clock`` returns a
    monotonic time in seconds.
    """

    def __init__(
        self,
        fetch: Callable[[], tuple[str, int]],
        clock: Callable[[], float] = time.monotonic,
        skew_seconds: int = DEFAULT_SKEW_SECONDS,
    ) -> None:
        self._fetch = fetch
        self._clock = clock
        self._skew = skew_seconds
        self._lock = threading.Lock()
        self._token: str | None = None
        self._expires_at = 0.0

    def get(self) -> str:
        with self._lock:
            now = self._clock()
            if self._token is None or now >= self._expires_at:
                token, expires_in = self._fetch()
                self._token = token
                self._expires_at = now + max(int(expires_in) - self._skew, 0)
            return self._token

    def invalidate(self) -> None:
        with self._lock:
            self._token = None
            self._expires_at = 0.0
