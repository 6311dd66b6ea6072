"""Tests for the StageLimiter class."""

import threading
import time
import unittest

from domain_funnel.limiter import StageLimiter


class TestStageLimiterBasics(unittest.TestCase):
    """Verify construction and bookkeeping."""

    def test_rejects_non_positive_capacity(self):
        """A capacity below one should raise ValueError."""
        with self.assertRaises(ValueError):
            StageLimiter("dns", 0)

    def test_release_without_acquire_raises(self):
        limiter = StageLimiter("dns", 2)
        with self.assertRaises(RuntimeError):
            limiter.release()

    def test_context_manager_tracks_in_flight(self):
        """Entering should occupy a slot and exiting should free it."""
        limiter = StageLimiter("http", 2)
        with limiter:
            self.assertEqual(limiter.in_flight, 1)
        self.assertEqual(limiter.in_flight, 0)
        self.assertEqual(limiter.peak, 1)

    def test_call_releases_on_exception(self):
        """A failing call should still give its slot back."""
        limiter = StageLimiter("text", 1)

        def boom():
            raise ConnectionError("down")

        with self.assertRaises(ConnectionError):
            limiter.call(boom)
        self.assertEqual(limiter.in_flight, 0)
        self.assertEqual(limiter.call(lambda x: x * 2, 21), 42)


class TestStageLimiterConcurrency(unittest.TestCase):
    """Verify caps and admission order under contention."""

    def test_cap_respected_under_burst(self):
        """In-flight calls should never exceed the configured maximum."""
        limiter = StageLimiter("http", 3)
        lock = threading.Lock()
        state = {"active": 0, "max": 0}

        def work():
            with limiter:
                with lock:
                    state["active"] += 1
                    state["max"] = max(state["max"], state["active"])
                time.sleep(0.01)
                with lock:
                    state["active"] -= 1

        threads = [threading.Thread(target=work) for _ in range(30)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertLessEqual(state["max"], 3)
        self.assertLessEqual(limiter.peak, 3)
        self.assertEqual(limiter.in_flight, 0)
        self.assertEqual(limiter.waiting, 0)

    def test_waiters_admitted_in_arrival_order(self):
        """Queued callers should be admitted first-in, first-out."""
        limiter = StageLimiter("text", 1)
        admitted = []
        limiter.acquire()

        threads = []
        for i in range(5):
            t = threading.Thread(target=lambda i=i: (limiter.acquire(), admitted.append(i), limiter.release()))
            t.start()
            threads.append(t)
            # wait until this thread is queued before starting the next one
            deadline = time.time() + 2
            while limiter.waiting < i + 1 and time.time() < deadline:
                time.sleep(0.001)

        limiter.release()
        for t in threads:
            t.join(timeout=2)

        self.assertEqual(admitted, [0, 1, 2, 3, 4])

    def test_limiters_are_independent(self):
        """A saturated limiter should not block admission into another one."""
        dns = StageLimiter("dns", 1)
        http = StageLimiter("http", 1)
        dns.acquire()
        start = time.time()
        with http:
            pass
        self.assertLess(time.time() - start, 0.1)
        dns.release()


if __name__ == "__main__":
    unittest.main()
