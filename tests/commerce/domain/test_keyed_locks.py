"""Tests for per-key mutual exclusion."""

import threading
import time

from commerce.utils.locks import KeyedLocks


class TestKeyedLocks:
    def test_entry_exists_only_while_held(self):
        locks = KeyedLocks("test")
        with locks.hold("a"):
            assert len(locks) == 1
        assert len(locks) == 0

    def test_released_keys_are_not_retained(self):
        locks = KeyedLocks("test")
        for index in range(1000):
            with locks.hold(f"order-{index}"):
                pass
        assert len(locks) == 0

    def test_nested_hold_keeps_entry_until_outermost_release(self):
        locks = KeyedLocks("test")
        with locks.hold("a"):
            with locks.hold("a"):
                pass
            assert len(locks) == 1
        assert len(locks) == 0

    def test_entry_released_when_body_raises(self):
        locks = KeyedLocks("test")
        try:
            with locks.hold("a"):
                raise RuntimeError("boom")
        except RuntimeError:
            pass
        assert len(locks) == 0

    def test_same_key_is_serialized(self):
        locks = KeyedLocks("test")
        inside = []
        overlaps = []

        def worker():
            with locks.hold("order-1"):
                if inside:
                    overlaps.append(True)
                inside.append(True)
                time.sleep(0.01)
                inside.pop()

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert overlaps == []

    def test_different_keys_do_not_block(self):
        locks = KeyedLocks("test")
        acquired = threading.Event()

        def other():
            with locks.hold("order-2"):
                acquired.set()

        with locks.hold("order-1"):
            thread = threading.Thread(target=other)
            thread.start()
            assert acquired.wait(timeout=2)
        thread.join()

    def test_waiters_share_one_entry(self):
        locks = KeyedLocks("test")
        waiting = threading.Event()
        done = []

        def waiter():
            waiting.set()
            with locks.hold("order-1"):
                done.append(True)

        with locks.hold("order-1"):
            thread = threading.Thread(target=waiter)
            thread.start()
            waiting.wait(timeout=2)
            time.sleep(0.05)
            assert len(locks) == 1
        thread.join(timeout=2)
        assert done == [True]
        assert len(locks) == 0
