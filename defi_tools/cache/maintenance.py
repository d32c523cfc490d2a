"""
Maintenance Scheduler

Background jobs that bound the memory held by the rate limiter and cache:
- every cleanup interval: drop idle client buckets
- every stats interval: log per-tier cache statistics and purge expired entries
- every health interval: log a one-line health summary

Each job runs on its own daemon thread and swallows (after logging) its own
failures, so a bad run never stops the next one or touches request handling.
"""

import logging
import threading
from typing import Callable, Dict, Optional

from .cache_manager import CacheRegistry
from .config import GatewayConfig
from .gateway import Gateway
from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


class MaintenanceScheduler:
    """Runs cleanup, stats and health jobs on fixed intervals."""

    def __init__(
        self,
        rate_limiter: RateLimiter,
        cache: CacheRegistry,
        config: Optional[GatewayConfig] = None,
        gateway: Optional[Gateway] = None,
    ):
        self.rate_limiter = rate_limiter
        self.cache = cache
        self.gateway = gateway
        self.config = config or GatewayConfig()

        self._stop_event = threading.Event()
        self._threads: Dict[str, threading.Thread] = {}
        self._lock = threading.Lock()

        self.run_counts = {"cleanup": 0, "stats": 0, "health": 0}
        self.failure_counts = {"cleanup": 0, "stats": 0, "health": 0}

    @classmethod
    def for_gateway(cls, gateway: Gateway, config: Optional[GatewayConfig] = None) -> "MaintenanceScheduler":
        return cls(gateway.rate_limiter, gateway.cache, config=config, gateway=gateway)

    # ==================== Jobs ====================

    def cleanup_rate_limiters(self) -> None:
        logger.debug("Running rate limiter cleanup...")
        removed = self.rate_limiter.cleanup_expired_limiters()
        logger.debug(
            f"Rate limiter cleanup completed: removed={removed}, "
            f"active={self.rate_limiter.active_clients}"
        )

    def log_cache_statistics(self) -> None:
        logger.debug("Logging cache statistics...")
        for name, stats in self.cache.all_stats().items():
            logger.info(
                f"Cache tier '{name}' (ttl={stats['ttl_seconds']:.0f}s): "
                f"size={stats['size']} hits={stats['hit_count']} "
                f"misses={stats['miss_count']} hit_rate={stats['hit_rate_pct']}% "
                f"coalesced={stats['coalesced_count']} failures={stats['fetch_failure_count']}"
            )
        purged = self.cache.purge_expired()
        if purged:
            logger.debug(f"Purged {purged} expired cache entries")

    def log_health_status(self) -> None:
        if self.gateway is not None:
            health = self.gateway.health()
            metrics = health.get("metrics", {})
            logger.info(
                f"Gateway health: status={health['status']} "
                f"requests={metrics.get('requests_total', 0)} "
                f"rate_limited={metrics.get('requests_rate_limited', 0)} "
                f"failure_rate={metrics.get('failure_rate_pct', 0.0)}%"
            )
        else:
            logger.info(
                f"Gateway health: active_clients={self.rate_limiter.active_clients} "
                f"cached_entries={sum(t.size for t in self.cache.tiers.values())}"
            )

    def run_job(self, name: str, job: Callable[[], None]) -> bool:
        """
        Run one job, logging instead of raising on failure.

        Returns:
            True if the job completed
        """
        try:
            job()
            return True
        except Exception:
            self.failure_counts[name] += 1
            logger.exception(f"Error during maintenance job '{name}'")
            return False
        finally:
            self.run_counts[name] += 1

    # ==================== Lifecycle ====================

    def _loop(self, name: str, interval: float, job: Callable[[], None], stop_event: threading.Event) -> None:
        # Bound to the event of the start() that launched this thread
        while not stop_event.wait(interval):
            self.run_job(name, job)

    def _jobs(self):
        return (
            ("cleanup", self.config.cleanup_interval, self.cleanup_rate_limiters),
            ("stats", self.config.stats_interval, self.log_cache_statistics),
            ("health", self.config.health_interval, self.log_health_status),
        )

    def start(self) -> None:
        """Launch one daemon thread per job. Calling start twice is a no-op."""
        with self._lock:
            if self._threads:
                return
            self._stop_event = threading.Event()
            for name, interval, job in self._jobs():
                thread = threading.Thread(
                    target=self._loop,
                    args=(name, interval, job, self._stop_event),
                    daemon=True,
                    name=f"Maintenance-{name}",
                )
                self._threads[name] = thread
                thread.start()

        logger.info(
            f"Maintenance scheduler started: cleanup every {self.config.cleanup_interval:.0f}s, "
            f"stats every {self.config.stats_interval:.0f}s, "
            f"health every {self.config.health_interval:.0f}s"
        )

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        with self._lock:
            threads = list(self._threads.values())
            self._threads.clear()
            self._stop_event.set()

        for thread in threads:
            thread.join(timeout)

        if threads:
            logger.info("Maintenance scheduler stopped")

    @property
    def is_running(self) -> bool:
        with self._lock:
            return any(t.is_alive() for t in self._threads.values())

    def __enter__(self) -> "MaintenanceScheduler":
        self.start()
        return self

    def __exit__(self, *exc) -> None:
        self.stop()
