"""
Cache Module for the DeFi API gateway

Provides per-client rate limiting and a tiered TTL cache with single-flight
fetches in front of the upstream API, plus the scheduler that keeps both
bounded in memory.
"""

from . import cache_keys
from .cache_manager import (
    CATEGORY_TIERS,
    CacheEntry,
    CacheRegistry,
    CacheTier,
    DataCategory,
    EntryState,
    TierName,
    get_cache_registry,
)
from .clock import Clock, ManualClock
from .config import GatewayConfig, mask_api_key
from .errors import (
    ConfigurationError,
    GatewayError,
    GatewayValidationError,
    InvalidCategoryError,
    InvalidClientIdError,
    InvalidKeyError,
    RateLimitedError,
    UpstreamFetchFailed,
)
from .gateway import Gateway, GatewayMetrics, gateway_call, get_gateway
from .maintenance import MaintenanceScheduler
from .rate_limiter import RateLimitConfig, RateLimiter, TokenBucket, get_rate_limiter

__all__ = [
    # Cache
    "CacheEntry",
    "CacheTier",
    "CacheRegistry",
    "CATEGORY_TIERS",
    "DataCategory",
    "EntryState",
    "TierName",
    "get_cache_registry",
    "cache_keys",
    # Rate Limiting
    "TokenBucket",
    "RateLimiter",
    "RateLimitConfig",
    "get_rate_limiter",
    # Gateway
    "Gateway",
    "GatewayMetrics",
    "gateway_call",
    "get_gateway",
    "MaintenanceScheduler",
    # Configuration
    "Clock",
    "ManualClock",
    "GatewayConfig",
    "mask_api_key",
    # Errors
    "GatewayError",
    "RateLimitedError",
    "UpstreamFetchFailed",
    "GatewayValidationError",
    "InvalidClientIdError",
    "InvalidKeyError",
    "InvalidCategoryError",
    "ConfigurationError",
]
