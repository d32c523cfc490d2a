"""
Unit tests for the MaintenanceScheduler.

Tests:
- Cleanup job drops idle buckets
- Stats job logs every tier and purges expired entries
- Failing jobs are logged and do not stop later runs
- Start / stop lifecycle
"""

import threading
import time
import unittest
from unittest.mock import MagicMock

from defi_tools.cache import (
    CacheRegistry,
    Gateway,
    GatewayConfig,
    MaintenanceScheduler,
    ManualClock,
    RateLimitConfig,
    RateLimiter,
)


class TestMaintenanceJobs(unittest.TestCase):
    """Test job bodies run directly."""

    def setUp(self):
        self.clock = ManualClock()
        self.limiter = RateLimiter(
            RateLimitConfig(capacity=5, refill_rate_per_second=1.0, idle_threshold_seconds=60),
            clock=self.clock,
        )
        self.cache = CacheRegistry(GatewayConfig(), clock=self.clock)
        self.gateway = Gateway(self.limiter, self.cache)
        self.scheduler = MaintenanceScheduler.for_gateway(self.gateway)

    def test_cleanup_job(self):
        self.limiter.is_request_allowed("c1")
        self.clock.advance(120)

        self.assertTrue(self.scheduler.run_job("cleanup", self.scheduler.cleanup_rate_limiters))
        self.assertEqual(self.limiter.active_clients, 0)

    def test_stats_job_logs_each_tier(self):
        self.cache.get_or_compute("price", "a", lambda: 1)
        self.clock.advance(31)

        with self.assertLogs("defi_tools.cache.maintenance", level="INFO") as logs:
            self.scheduler.run_job("stats", self.scheduler.log_cache_statistics)

        joined = "\n".join(logs.output)
        for tier in ("fast", "medium", "slow"):
            self.assertIn(f"Cache tier '{tier}'", joined)
        self.assertEqual(self.cache.stats("price")["size"], 0)

    def test_health_job(self):
        with self.assertLogs("defi_tools.cache.maintenance", level="INFO") as logs:
            self.scheduler.run_job("health", self.scheduler.log_health_status)
        self.assertIn("Gateway health: status=up", logs.output[0])

    def test_failure_is_logged_not_raised(self):
        self.limiter.cleanup_expired_limiters = MagicMock(side_effect=RuntimeError("boom"))

        with self.assertLogs("defi_tools.cache.maintenance", level="ERROR") as logs:
            ok = self.scheduler.run_job("cleanup", self.scheduler.cleanup_rate_limiters)

        self.assertFalse(ok)
        self.assertIn("cleanup", logs.output[0])
        self.assertEqual(self.scheduler.failure_counts["cleanup"], 1)
        self.assertEqual(self.scheduler.run_counts["cleanup"], 1)

        # Next run proceeds normally
        self.limiter.cleanup_expired_limiters = MagicMock(return_value=0)
        self.assertTrue(self.scheduler.run_job("cleanup", self.scheduler.cleanup_rate_limiters))
        self.assertEqual(self.scheduler.run_counts["cleanup"], 2)


class TestSchedulerLifecycle(unittest.TestCase):
    """Test background threads."""

    def _wait(self, predicate, timeout=5.0):
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(0.01)
        return False

    def test_jobs_run_repeatedly_despite_failures(self):
        limiter = MagicMock()
        limiter.cleanup_expired_limiters.side_effect = RuntimeError("sweep failed")
        cache = MagicMock()
        cache.all_stats.return_value = {}
        cache.purge_expired.return_value = 0

        config = GatewayConfig(cleanup_interval=0.02, stats_interval=0.02, health_interval=60)
        scheduler = MaintenanceScheduler(limiter, cache, config=config)

        with self.assertLogs("defi_tools.cache.maintenance", level="ERROR"):
            scheduler.start()
            try:
                self.assertTrue(self._wait(lambda: scheduler.failure_counts["cleanup"] >= 3))
                self.assertTrue(self._wait(lambda: scheduler.run_counts["stats"] >= 3))
            finally:
                scheduler.stop()

        self.assertFalse(scheduler.is_running)
        self.assertEqual(scheduler.failure_counts["stats"], 0)

    def test_start_twice_and_context_manager(self):
        config = GatewayConfig(cleanup_interval=60, stats_interval=60, health_interval=60)
        scheduler = MaintenanceScheduler(MagicMock(), MagicMock(), config=config)

        with scheduler:
            self.assertTrue(scheduler.is_running)
            scheduler.start()
            self.assertEqual(len(scheduler._threads), 3)

        self.assertFalse(scheduler.is_running)

    def test_restart_after_timed_out_stop(self):
        """A job still running when stop() gives up exits once it returns."""
        entered = threading.Event()
        gate = threading.Event()

        def slow_cleanup():
            entered.set()
            gate.wait(5)
            return 0

        limiter = MagicMock()
        limiter.cleanup_expired_limiters.side_effect = slow_cleanup
        config = GatewayConfig(cleanup_interval=0.01, stats_interval=60, health_interval=60)
        scheduler = MaintenanceScheduler(limiter, MagicMock(), config=config)

        scheduler.start()
        self.assertTrue(entered.wait(5))
        first_cleanup = scheduler._threads["cleanup"]
        scheduler.stop(timeout=0.01)
        self.assertTrue(first_cleanup.is_alive())

        scheduler.start()
        try:
            gate.set()
            first_cleanup.join(5)
            self.assertFalse(first_cleanup.is_alive())
            self.assertTrue(scheduler.is_running)
        finally:
            scheduler.stop()


if __name__ == "__main__":
    unittest.main()
