"""
Rate Limiter for the DeFi API gateway

Per-client admission control in front of the upstream API quota.
Uses one token bucket per client identifier for smooth rate limiting
with bounded bursts.

Usage:
    from defi_tools.cache import get_rate_limiter

    limiter = get_rate_limiter()

    if limiter.is_request_allowed("api-key-1234"):
        api_call()
    else:
        wait = limiter.get_seconds_until_reset("api-key-1234")
"""

import logging
import math
import threading
from dataclasses import dataclass, field
from typing import Dict, Optional

from .clock import SYSTEM_CLOCK, Clock
from .config import GatewayConfig

logger = logging.getLogger(__name__)


@dataclass
class RateLimitConfig:
    """Configuration shared by every client bucket."""
    capacity: int = 60  # Max burst (token bucket capacity)
    refill_rate_per_second: float = 1.0  # Tokens added per second
    idle_threshold_seconds: float = 3600.0  # Idle time before a bucket is evicted

    @classmethod
    def from_gateway_config(cls, config: GatewayConfig) -> "RateLimitConfig":
        return cls(
            capacity=config.bucket_capacity,
            refill_rate_per_second=config.refill_rate_per_second,
            idle_threshold_seconds=config.effective_idle_threshold,
        )


@dataclass
class TokenBucket:
    """
    Admission state for a single client.

    tokens stays within [0, capacity]; refill and consumption happen
    under the bucket's own lock.
    """
    client_id: str
    capacity: int
    refill_rate_per_second: float
    tokens: float
    last_refill_at: float
    last_access_at: float
    _lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False, compare=False
    )

    def _refill(self, now: float) -> None:
        """Add tokens for the time elapsed since the last refill. Caller holds the lock."""
        elapsed = now - self.last_refill_at
        if elapsed > 0:
            self.tokens = min(
                float(self.capacity),
                self.tokens + elapsed * self.refill_rate_per_second,
            )
        # Never move the refill mark backwards
        self.last_refill_at = max(self.last_refill_at, now)

    def try_consume(self, now: float) -> bool:
        """Refill, then take one token if available."""
        with self._lock:
            self._refill(now)
            self.last_access_at = max(self.last_access_at, now)

            if self.tokens >= 1:
                self.tokens -= 1
                return True
            return False

    def available(self, now: float) -> float:
        """Refill bookkeeping only; nothing is consumed."""
        with self._lock:
            self._refill(now)
            return self.tokens

    def seconds_until_token(self, now: float) -> int:
        with self._lock:
            self._refill(now)
            if self.tokens >= 1:
                return 0
            if self.refill_rate_per_second <= 0:
                return -1  # never refills
            wait = (1 - self.tokens) / self.refill_rate_per_second
            if not math.isfinite(wait):
                return -1  # rate too small to ever refill a token
            return int(math.ceil(wait))


class RateLimiter:
    """
    Token bucket rate limiter keyed by client identifier.

    Buckets are created lazily at full capacity. There is no limiter-wide
    lock: each bucket guards itself, and the idle sweep works on a snapshot
    of the bucket table.
    """

    def __init__(self, config: Optional[RateLimitConfig] = None, clock: Optional[Clock] = None):
        """
        Initialize rate limiter.

        Args:
            config: Rate limit configuration (defaults if omitted)
            clock: Time source (monotonic system clock if omitted)
        """
        self.config = config or RateLimitConfig()
        self.clock = clock or SYSTEM_CLOCK
        self._buckets: Dict[str, TokenBucket] = {}

        # Statistics
        self._stats_lock = threading.Lock()
        self._stats = {
            "allowed": 0,
            "denied": 0,
            "created": 0,
            "evicted": 0,
        }

    def _count(self, name: str) -> None:
        with self._stats_lock:
            self._stats[name] += 1

    def _get_or_create_bucket(self, client_id: str) -> TokenBucket:
        bucket = self._buckets.get(client_id)
        if bucket is not None:
            return bucket

        now = self.clock.now()
        candidate = TokenBucket(
            client_id=client_id,
            capacity=self.config.capacity,
            refill_rate_per_second=self.config.refill_rate_per_second,
            tokens=float(self.config.capacity),
            last_refill_at=now,
            last_access_at=now,
        )
        # dict.setdefault is atomic: concurrent creators all get the winner
        bucket = self._buckets.setdefault(client_id, candidate)
        if bucket is candidate:
            self._count("created")
            logger.debug(f"Creating rate limiter for client: {client_id}")
        return bucket

    def is_request_allowed(self, client_id: str) -> bool:
        """
        Check and consume one token for a client.

        Args:
            client_id: Client identifier (API key, connection id, ...)

        Returns:
            True if the request may proceed, False if rate limited
        """
        bucket = self._get_or_create_bucket(client_id)
        allowed = bucket.try_consume(self.clock.now())

        if allowed:
            self._count("allowed")
        else:
            self._count("denied")
            logger.debug(f"Rate limit exceeded for client: {client_id}")

        return allowed

    def get_remaining_requests(self, client_id: str) -> int:
        """Requests the client could make right now, without consuming any."""
        bucket = self._buckets.get(client_id)
        if bucket is None:
            return self.config.capacity
        return int(math.floor(bucket.available(self.clock.now())))

    def get_seconds_until_reset(self, client_id: str) -> int:
        """
        Seconds until the client has at least one token.

        Returns:
            0 if a token is available (or the client is unknown),
            -1 if the bucket is empty and the refill rate is zero
        """
        bucket = self._buckets.get(client_id)
        if bucket is None:
            return 0
        return bucket.seconds_until_token(self.clock.now())

    def cleanup_expired_limiters(self) -> int:
        """
        Remove buckets idle for longer than the configured threshold.

        A client whose bucket is removed while a request is in flight simply
        gets a fresh, full bucket on its next request.

        Returns:
            Number of buckets removed
        """
        threshold = self.config.idle_threshold_seconds
        removed = 0

        for client_id, bucket in list(self._buckets.items()):
            now = self.clock.now()
            with bucket._lock:
                if now - bucket.last_access_at <= threshold:
                    continue
                # Only drop the bucket we inspected, never a newer replacement
                if self._buckets.get(client_id) is bucket:
                    del self._buckets[client_id]
                    removed += 1
                    logger.debug(f"Removing expired rate limiter for client: {client_id}")

        if removed:
            with self._stats_lock:
                self._stats["evicted"] += removed
            logger.info(f"Rate limiter cleanup removed {removed} idle client(s)")

        return removed

    @property
    def active_clients(self) -> int:
        return len(self._buckets)

    def get_stats(self) -> Dict:
        """Get rate limiter statistics."""
        with self._stats_lock:
            stats = dict(self._stats)

        return {
            "active_clients": self.active_clients,
            "capacity": self.config.capacity,
            "refill_rate_per_second": self.config.refill_rate_per_second,
            "idle_threshold_seconds": self.config.idle_threshold_seconds,
            "allowed": stats["allowed"],
            "denied": stats["denied"],
            "created_total": stats["created"],
            "evicted_total": stats["evicted"],
        }


# Singleton instance
_rate_limiter: Optional[RateLimiter] = None
_rate_limiter_lock = threading.Lock()


def get_rate_limiter() -> RateLimiter:
    """Get singleton rate limiter configured from the environment"""
    global _rate_limiter

    if _rate_limiter is None:
        with _rate_limiter_lock:
            if _rate_limiter is None:
                config = GatewayConfig.from_env()
                config.validate()
                _rate_limiter = RateLimiter(RateLimitConfig.from_gateway_config(config))

    return _rate_limiter
