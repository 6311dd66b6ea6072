"""Tests for the BaseStage abstract class."""

import threading
import time
import unittest

from domain_funnel.base import BaseStage
from domain_funnel.limiter import StageLimiter
from domain_funnel.models import ResolveResult, Stage


class DummyStage(BaseStage):
    stage = Stage.DNS

    def __init__(self, limiter, behaviour):
        super().__init__(limiter)
        self._behaviour = behaviour

    def execute(self, subject):
        return self._behaviour(subject)

    def failed(self, error_type):
        return ResolveResult.failed(error_type)


class TestBaseStageRun(unittest.TestCase):
    """Verify that BaseStage.run() never raises and always releases its slot."""

    def test_run_captures_exception_as_error_type(self):
        """If execute() raises, run() should return a failed result."""

        def boom(subject):
            raise ConnectionError("network down")

        stage = DummyStage(StageLimiter("dns", 1), boom)
        result = stage.run("a.test")
        self.assertFalse(result.ok)
        self.assertEqual(result.error_type, "ConnectionError")
        self.assertIsNone(result.dns_ips)
        self.assertEqual(stage.limiter.in_flight, 0)

    def test_run_passes_result_through_with_latency(self):
        stage = DummyStage(StageLimiter("dns", 1), lambda s: ResolveResult(has_dns=True, dns_ips=("192.0.2.5",)))
        result = stage.run("a.test")
        self.assertTrue(result.ok)
        self.assertEqual(result.dns_ips, ("192.0.2.5",))
        self.assertGreaterEqual(result.latency_ms, 0)

    def test_latency_counted_from_admission(self):
        """Time spent queued behind the limiter should not count as latency."""
        limiter = StageLimiter("dns", 1)
        stage = DummyStage(limiter, lambda s: ResolveResult(has_dns=True, dns_ips=("192.0.2.5",)))
        results = []

        limiter.acquire()
        t = threading.Thread(target=lambda: results.append(stage.run("queued.test")))
        t.start()
        time.sleep(0.2)
        limiter.release()
        t.join(timeout=2)

        self.assertEqual(len(results), 1)
        self.assertLess(results[0].latency_ms, 150)


if __name__ == "__main__":
    unittest.main()
