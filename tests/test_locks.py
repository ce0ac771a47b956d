import threading
import unittest

from storyscout.concurrency.locks import InMemoryLockStore, LockManager, LockRecord


class FakeClock:
    def __init__(self, now=1_000.0):
        self.now = now

    def __call__(self):
        return self.now


class TestLockManager(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.store = InMemoryLockStore()
        self.locks = LockManager(self.store, ttl_seconds=60, clock=self.clock)

    def test_second_acquire_is_skipped_until_release(self):
        self.assertTrue(self.locks.acquire("classify"))
        self.assertFalse(self.locks.acquire("classify"))
        self.assertTrue(self.locks.is_locked("classify"))
        self.locks.release("classify")
        self.assertFalse(self.locks.is_locked("classify"))
        self.assertTrue(self.locks.acquire("classify"))

    def test_locks_are_independent_by_name(self):
        self.assertTrue(self.locks.acquire("classify"))
        self.assertTrue(self.locks.acquire("quality-rating"))

    def test_expired_lock_is_taken_over(self):
        self.assertTrue(self.locks.acquire("classify"))
        stale = self.store.get("classify")
        self.clock.now += 61
        self.assertFalse(self.locks.is_locked("classify"))
        self.assertTrue(self.locks.acquire("classify"))
        fresh = self.store.get("classify")
        self.assertNotEqual(fresh.holder_token, stale.holder_token)
        self.assertEqual(fresh.expires_at, self.clock.now + 60)

    def test_release_of_missing_lock_is_harmless(self):
        self.locks.release("never-taken")
        self.assertFalse(self.locks.is_locked("never-taken"))

    def test_concurrent_acquire_has_one_winner(self):
        barrier = threading.Barrier(8)
        results = []
        results_lock = threading.Lock()

        def contend():
            barrier.wait()
            won = self.locks.acquire("classify")
            with results_lock:
                results.append(won)

        threads = [threading.Thread(target=contend) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(results.count(True), 1)


class TestInMemoryLockStore(unittest.TestCase):
    def test_compare_and_set_checks_holder(self):
        store = InMemoryLockStore()
        first = LockRecord("job", "a", 10.0)
        self.assertTrue(store.compare_and_set("job", None, first))
        self.assertFalse(store.compare_and_set("job", None, LockRecord("job", "b", 20.0)))
        self.assertFalse(store.compare_and_set("job", "stale", LockRecord("job", "b", 20.0)))
        self.assertTrue(store.compare_and_set("job", "a", LockRecord("job", "b", 20.0)))
        self.assertEqual(store.get("job").holder_token, "b")


if __name__ == "__main__":
    unittest.main()
