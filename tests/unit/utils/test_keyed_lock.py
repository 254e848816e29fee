"""Test per-key locking."""

import threading
import time

from connector_core.utils.keyed_lock import KeyedLock


class TestKeyedLock:
    """Test mutual exclusion per key."""

    def test_same_key_is_serialized(self):
        locks = KeyedLock()
        active = []
        overlaps = []

        def work():
            with locks.hold("conn-1"):
                active.append(1)
                if len(active) > 1:
                    overlaps.append(True)
                time.sleep(0.01)
                active.pop()

        threads = [threading.Thread(target=work) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert overlaps == []

    def test_different_keys_do_not_block(self):
        locks = KeyedLock()
        entered = threading.Event()

        def other():
            with locks.hold("conn-2"):
                entered.set()

        with locks.hold("conn-1"):
            thread = threading.Thread(target=other)
            thread.start()
            assert entered.wait(timeout=2)
            thread.join()

    def test_locks_are_released_when_unused(self):
        locks = KeyedLock()
        with locks.hold("conn-1"):
            assert len(locks) == 1
        assert len(locks) == 0

    def test_released_on_exception(self):
        locks = KeyedLock()
        try:
            with locks.hold("conn-1"):
                raise RuntimeError("boom")
        except RuntimeError:
            pass
        assert len(locks) == 0
