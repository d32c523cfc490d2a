"""
Cache Manager for the DeFi API gateway

Tiered in-memory cache with TTL support for upstream API data.
Each data category maps to one of three tiers (fast / medium / slow) whose
TTL matches how quickly that kind of data goes stale.

Concurrent requests for the same key collapse into a single upstream fetch:
the first caller fetches, everyone else waits for its outcome.

Usage:
    from defi_tools.cache import get_cache_registry, DataCategory

    cache = get_cache_registry()

    price = cache.get_or_compute(
        DataCategory.SPOT_PRICE,
        "1:0xabc:USD",
        lambda: client.get_spot_prices(1, ["0xabc"], "USD"),
    )

    print(cache.stats("price"))
"""

import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, TypeVar, Union

from .clock import SYSTEM_CLOCK, Clock
from .config import GatewayConfig
from .errors import InvalidCategoryError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DataCategory(str, Enum):
    """Logical kinds of upstream data, each bound to a cache tier."""
    SPOT_PRICE = "price"
    SWAP_QUOTE = "quote"
    GAS_ESTIMATE = "gas"
    BALANCE = "balance"
    PORTFOLIO = "portfolio"
    TOKEN_METADATA = "token"
    TRANSACTION_HISTORY = "history"


class TierName(str, Enum):
    FAST = "fast"
    MEDIUM = "medium"
    SLOW = "slow"


# Static routing table; configuration, never computed per request
CATEGORY_TIERS: Dict[DataCategory, TierName] = {
    DataCategory.SPOT_PRICE: TierName.FAST,
    DataCategory.SWAP_QUOTE: TierName.FAST,
    DataCategory.GAS_ESTIMATE: TierName.FAST,
    DataCategory.BALANCE: TierName.MEDIUM,
    DataCategory.PORTFOLIO: TierName.MEDIUM,
    DataCategory.TOKEN_METADATA: TierName.SLOW,
    DataCategory.TRANSACTION_HISTORY: TierName.SLOW,
}


class EntryState(str, Enum):
    PENDING = "pending"
    READY = "ready"


@dataclass
class CacheEntry:
    """A cached entry with metadata"""
    key: str
    state: EntryState = EntryState.PENDING
    value: Any = None
    stored_at: float = 0.0
    expires_at: float = 0.0
    # Resolved with the fetch outcome; waiters block on it
    future: Future = field(default_factory=Future, repr=False, compare=False)

    def is_fresh(self, now: float) -> bool:
        return self.state is EntryState.READY and now < self.expires_at


class CacheTier:
    """
    A named cache pool with a fixed TTL.

    Keys are spread over a fixed set of striped locks so that unrelated keys
    rarely contend. No lock is held while a fetch function runs.
    """

    LOCK_STRIPES = 16

    def __init__(self, name: str, ttl_seconds: float, clock: Optional[Clock] = None):
        """
        Initialize a cache tier.

        Args:
            name: Tier name ("fast", "medium", "slow")
            ttl_seconds: Freshness window for every entry in this tier
            clock: Time source (monotonic system clock if omitted)
        """
        self.name = name
        self.ttl_seconds = float(ttl_seconds)
        self.clock = clock or SYSTEM_CLOCK
        self._entries: Dict[str, CacheEntry] = {}
        self._locks: List[threading.Lock] = [threading.Lock() for _ in range(self.LOCK_STRIPES)]

        self._stats_lock = threading.Lock()
        self._stats = {
            "hits": 0,
            "misses": 0,
            "coalesced": 0,
            "stores": 0,
            "fetch_failures": 0,
            "expirations": 0,
            "invalidations": 0,
        }

    def _lock_for(self, key: str) -> threading.Lock:
        return self._locks[hash(key) % self.LOCK_STRIPES]

    def _count(self, name: str, amount: int = 1) -> None:
        with self._stats_lock:
            self._stats[name] += amount

    def get_or_compute(self, key: str, fetch_fn: Callable[[], T]) -> T:
        """
        Return the cached value for key, fetching it at most once concurrently.

        Args:
            key: Canonical cache key
            fetch_fn: Zero-argument callable producing the value

        Returns:
            The fresh cached value, or the value produced by the single
            in-flight fetch

        Raises:
            Whatever fetch_fn raised; every waiter sees the same exception
        """
        lock = self._lock_for(key)

        with lock:
            now = self.clock.now()
            entry = self._entries.get(key)

            if entry is not None and entry.state is EntryState.READY:
                if entry.is_fresh(now):
                    self._count("hits")
                    return entry.value
                del self._entries[key]
                self._count("expirations")
                entry = None

            if entry is not None:
                # PENDING: someone else is fetching
                is_fetcher = False
                self._count("coalesced")
            else:
                entry = CacheEntry(key=key)
                self._entries[key] = entry
                is_fetcher = True
                self._count("misses")

        if not is_fetcher:
            return entry.future.result()

        logger.debug(f"Cache miss in tier '{self.name}', fetching: {key}")
        try:
            value = fetch_fn()
        except BaseException as e:
            with lock:
                if self._entries.get(key) is entry:
                    del self._entries[key]
            self._count("fetch_failures")
            logger.debug(f"Fetch failed in tier '{self.name}' for {key}: {e}")
            entry.future.set_exception(e)
            raise

        with lock:
            now = self.clock.now()
            entry.value = value
            entry.stored_at = now
            entry.expires_at = now + self.ttl_seconds
            entry.state = EntryState.READY
            # An invalidate() during the fetch means the result is not kept
            stored = self._entries.get(key) is entry
        if stored:
            self._count("stores")
        entry.future.set_result(value)
        return value

    def invalidate(self, key: str) -> bool:
        """
        Remove an entry regardless of TTL.

        Returns:
            True if key was found and removed
        """
        with self._lock_for(key):
            entry = self._entries.pop(key, None)
        if entry is None:
            return False
        self._count("invalidations")
        return True

    def purge_expired(self) -> int:
        """
        Remove all expired ready entries.

        Returns:
            Number of entries removed
        """
        removed = 0
        for key in list(self._entries.keys()):
            with self._lock_for(key):
                entry = self._entries.get(key)
                if entry is None or entry.state is not EntryState.READY:
                    continue
                if not entry.is_fresh(self.clock.now()):
                    del self._entries[key]
                    removed += 1

        if removed:
            self._count("expirations", removed)
        return removed

    def clear(self) -> int:
        """Drop every entry; in-flight fetches still resolve their waiters."""
        count = 0
        for key in list(self._entries.keys()):
            with self._lock_for(key):
                if self._entries.pop(key, None) is not None:
                    count += 1
        return count

    @property
    def size(self) -> int:
        return len(self._entries)

    def stats(self) -> Dict[str, Any]:
        """Get tier statistics"""
        with self._stats_lock:
            stats = dict(self._stats)

        lookups = stats["hits"] + stats["misses"]
        hit_rate = stats["hits"] / lookups * 100 if lookups > 0 else 0

        return {
            "tier": self.name,
            "ttl_seconds": self.ttl_seconds,
            "size": self.size,
            "hit_count": stats["hits"],
            "miss_count": stats["misses"],
            "hit_rate_pct": round(hit_rate, 1),
            "coalesced_count": stats["coalesced"],
            "store_count": stats["stores"],
            "fetch_failure_count": stats["fetch_failures"],
            "expired_count": stats["expirations"],
            "invalidated_count": stats["invalidations"],
        }


CategoryLike = Union[DataCategory, str]


class CacheRegistry:
    """
    Owns the fast / medium / slow tiers and routes categories to them.
    """

    def __init__(
        self,
        config: Optional[GatewayConfig] = None,
        clock: Optional[Clock] = None,
        category_tiers: Optional[Dict[DataCategory, TierName]] = None,
    ):
        config = config or GatewayConfig()
        self.clock = clock or SYSTEM_CLOCK
        self.category_tiers = dict(category_tiers or CATEGORY_TIERS)
        self._tiers: Dict[str, CacheTier] = {
            tier.value: CacheTier(tier.value, config.tier_ttls[tier.value], clock=self.clock)
            for tier in TierName
        }

    @staticmethod
    def resolve_category(category: CategoryLike) -> DataCategory:
        """Accept a DataCategory or its string value ("price", "balance", ...)."""
        if isinstance(category, DataCategory):
            return category
        try:
            return DataCategory(str(category).strip().lower())
        except ValueError:
            raise InvalidCategoryError(
                f"Unknown data category: {category!r}",
                details={"valid_categories": [c.value for c in DataCategory]},
            )

    def tier_for(self, category: CategoryLike) -> CacheTier:
        resolved = self.resolve_category(category)
        tier_name = self.category_tiers.get(resolved)
        if tier_name is None:
            raise InvalidCategoryError(f"No cache tier configured for category '{resolved.value}'")
        return self._tiers[tier_name.value]

    @property
    def tiers(self) -> Dict[str, CacheTier]:
        return dict(self._tiers)

    def get_or_compute(self, category: CategoryLike, key: str, fetch_fn: Callable[[], T]) -> T:
        return self.tier_for(category).get_or_compute(key, fetch_fn)

    def invalidate(self, category: CategoryLike, key: str) -> bool:
        return self.tier_for(category).invalidate(key)

    def stats(self, category: CategoryLike) -> Dict[str, Any]:
        """Statistics of the tier serving a category"""
        return self.tier_for(category).stats()

    def all_stats(self) -> Dict[str, Dict[str, Any]]:
        return {name: tier.stats() for name, tier in self._tiers.items()}

    def purge_expired(self) -> int:
        return sum(tier.purge_expired() for tier in self._tiers.values())

    def clear_all(self) -> int:
        return sum(tier.clear() for tier in self._tiers.values())


# Singleton instance
_cache_registry: Optional[CacheRegistry] = None
_cache_lock = threading.Lock()


def get_cache_registry() -> CacheRegistry:
    """Get singleton cache registry configured from the environment"""
    global _cache_registry

    if _cache_registry is None:
        with _cache_lock:
            if _cache_registry is None:
                config = GatewayConfig.from_env()
                config.validate()
                _cache_registry = CacheRegistry(config)

    return _cache_registry
