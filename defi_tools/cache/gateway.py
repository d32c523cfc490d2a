"""
Gateway façade

The single call surface for tools and resources: rate limit first, cache
second, upstream last.

Usage:
    from defi_tools.cache import get_gateway, DataCategory, cache_keys

    gateway = get_gateway()
    prices = gateway.execute(
        client_id="api-key-1234",
        category=DataCategory.SPOT_PRICE,
        key=cache_keys.price_key(1, "0xabc", "USD"),
        fetch_fn=lambda: client.get_spot_prices(1, ["0xabc"], "USD"),
    )

    # Or as a decorator
    @gateway_call("balance", key_func=lambda chain_id, wallet: cache_keys.balance_key(chain_id, wallet))
    def get_balances(chain_id, wallet):
        return client.get_balances(chain_id, wallet)
"""

import functools
import logging
import threading
from typing import Any, Callable, Dict, Optional, TypeVar

from .cache_manager import CacheRegistry, CategoryLike, get_cache_registry
from .errors import (
    GatewayError,
    InvalidClientIdError,
    InvalidKeyError,
    RateLimitedError,
)
from .rate_limiter import RateLimiter, get_rate_limiter

logger = logging.getLogger(__name__)

T = TypeVar("T")


class GatewayMetrics:
    """Thread-safe request counters for the façade."""

    FIELDS = (
        "requests_total",
        "requests_rate_limited",
        "requests_succeeded",
        "requests_failed",
        "validation_errors",
    )

    def __init__(self):
        self._lock = threading.Lock()
        self._counters = {name: 0 for name in self.FIELDS}

    def increment(self, name: str) -> None:
        with self._lock:
            self._counters[name] += 1

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            counters = dict(self._counters)

        admitted = counters["requests_succeeded"] + counters["requests_failed"]
        counters["failure_rate_pct"] = (
            round(counters["requests_failed"] / admitted * 100, 1) if admitted > 0 else 0.0
        )
        return counters


class Gateway:
    """
    Composes the rate limiter and the cache registry.

    An over-quota client is turned away before any cache lookup, so it can
    never force cache population (and upstream calls) by varying its keys.
    """

    def __init__(self, rate_limiter: RateLimiter, cache: CacheRegistry):
        self.rate_limiter = rate_limiter
        self.cache = cache
        self.metrics = GatewayMetrics()

    def _validate(self, client_id: Any, key: Any) -> None:
        if not isinstance(client_id, str) or not client_id.strip():
            self.metrics.increment("validation_errors")
            raise InvalidClientIdError(f"Invalid client id: {client_id!r}")
        if not isinstance(key, str) or not key.strip():
            self.metrics.increment("validation_errors")
            raise InvalidKeyError(f"Invalid cache key: {key!r}")

    def execute(
        self,
        client_id: str,
        category: CategoryLike,
        key: str,
        fetch_fn: Callable[[], T],
    ) -> T:
        """
        Admit, then serve from cache or fetch through the upstream client.

        Args:
            client_id: Caller identity (API key, connection id, ...)
            category: Data category deciding the cache tier
            key: Canonical cache key (see cache_keys)
            fetch_fn: Zero-argument upstream call, invoked only on a miss

        Returns:
            Cached or freshly fetched value

        Raises:
            InvalidClientIdError / InvalidKeyError / InvalidCategoryError: bad input
            RateLimitedError: client is over quota; fetch_fn was not called
            Exception: whatever fetch_fn raised
        """
        self._validate(client_id, key)
        try:
            tier = self.cache.tier_for(category)
        except GatewayError:
            self.metrics.increment("validation_errors")
            raise

        self.metrics.increment("requests_total")

        if not self.rate_limiter.is_request_allowed(client_id):
            self.metrics.increment("requests_rate_limited")
            error = RateLimitedError(
                client_id,
                remaining_requests=self.rate_limiter.get_remaining_requests(client_id),
                retry_after_seconds=self.rate_limiter.get_seconds_until_reset(client_id),
            )
            logger.warning(error.message)
            raise error

        try:
            value = tier.get_or_compute(key, fetch_fn)
        except Exception:
            self.metrics.increment("requests_failed")
            raise

        self.metrics.increment("requests_succeeded")
        return value

    def client_status(self, client_id: str) -> Dict[str, Any]:
        """Backoff guidance for one client"""
        return {
            "client_id": client_id,
            "remaining_requests": self.rate_limiter.get_remaining_requests(client_id),
            "seconds_until_reset": self.rate_limiter.get_seconds_until_reset(client_id),
        }

    def health(self) -> Dict[str, Any]:
        """
        Health snapshot for a status endpoint.

        Returns:
            Dict with overall 'status', per-tier cache stats, limiter stats
            and request metrics
        """
        try:
            tiers = self.cache.all_stats()
            limiter = self.rate_limiter.get_stats()
        except Exception as e:
            logger.error(f"Error during gateway health check: {e}")
            return {
                "status": "error",
                "error": str(e),
                "error_class": e.__class__.__name__,
            }

        return {
            "status": "up",
            "cache": {
                "tiers": tiers,
                "categories": {
                    category.value: tier.value
                    for category, tier in self.cache.category_tiers.items()
                },
            },
            "rate_limiter": limiter,
            "metrics": self.metrics.snapshot(),
        }


# Singleton instance
_gateway: Optional[Gateway] = None
_gateway_lock = threading.Lock()


def get_gateway() -> Gateway:
    """Get singleton gateway built on the singleton limiter and cache"""
    global _gateway

    if _gateway is None:
        with _gateway_lock:
            if _gateway is None:
                _gateway = Gateway(get_rate_limiter(), get_cache_registry())

    return _gateway


def gateway_call(
    category: CategoryLike,
    key_func: Callable[..., str],
    client_id: Optional[str] = None,
    gateway: Optional[Gateway] = None,
):
    """
    Decorator routing a function through Gateway.execute.

    Args:
        category: Data category (decides the cache tier)
        key_func: Builds the canonical cache key from the call's arguments
        client_id: Rate limit identity; defaults to the function's qualified name
        gateway: Gateway to use (singleton if omitted)

    Example:
        @gateway_call("gas", key_func=lambda chain_id: cache_keys.gas_key(chain_id))
        def get_gas_price(chain_id: int) -> Dict:
            return client.get_gas_price(chain_id)
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        identity = client_id or f"{func.__module__}.{func.__qualname__}"

        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> T:
            target = gateway or get_gateway()
            key = key_func(*args, **kwargs)
            return target.execute(identity, category, key, lambda: func(*args, **kwargs))

        return wrapper
    return decorator
