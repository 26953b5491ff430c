"""Per-key mutual exclusion within one process.

Each aggregate instance (an order, a payment, a stock item, a webhook
receipt) is its own unit of mutual exclusion: work on different keys never
contends, work on the same key is serialized. Locks are only ever held around
local load/check/commit sequences, never around provider network calls.

Across processes, the stored aggregate version decides: a write made from a
stale copy raises ``ExpectedVersionError`` and the command handler reruns
against fresh state.
"""

import threading
from collections.abc import Iterator
from contextlib import contextmanager


class _Entry:
    __slots__ = ("lock", "holders")

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.holders = 0


class KeyedLocks:
    """Re-entrant lock per key, created on first use and dropped when the last holder leaves."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._guard = threading.Lock()
        self._entries: dict[str, _Entry] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        key = str(key)
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _Entry()
            entry.holders += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)
