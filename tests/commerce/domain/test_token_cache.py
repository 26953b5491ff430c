"""Tests for the bearer-token cache with an injected clock."""

from commerce.gateway.token_cache import AccessTokenCache


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _fetcher(tokens):
    calls = []

    def fetch():
        calls.append(True)
        return tokens[len(calls) - 1], 3600

    return fetch, calls


class TestAccessTokenCache:
    def test_fetches_lazily(self):
        fetch, calls = _fetcher(["tok-1"])
        AccessTokenCache(fetch, clock=FakeClock())
        assert calls == []

    def test_reuses_token_until_expiry(self):
        clock = FakeClock()
        fetch, calls = _fetcher(["tok-1", "tok-2"])
        cache = AccessTokenCache(fetch, clock=clock)
        assert cache.get() == "tok-1"
        clock.now += 3000
        assert cache.get() == "tok-1"
        assert len(calls) == 1

    def test_refreshes_within_skew_of_expiry(self):
        clock = FakeClock()
        fetch, calls = _fetcher(["tok-1", "tok-2"])
        cache = AccessTokenCache(fetch, clock=clock, skew_seconds=60)
        cache.get()
        clock.now += 3540
        assert cache.get() == "tok-2"
        assert len(calls) == 2

    def test_invalidate_forces_refresh(self):
        fetch, calls = _fetcher(["tok-1", "tok-2"])
        cache = AccessTokenCache(fetch, clock=FakeClock())
        cache.get()
        cache.invalidate()
        assert cache.get() == "tok-2"
