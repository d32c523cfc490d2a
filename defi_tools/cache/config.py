"""
Gateway Configuration

Reads rate limiting, cache TTL and maintenance settings from the environment
(a local .env file is honoured through python-dotenv).

Usage:
    from defi_tools.cache.config import GatewayConfig

    config = GatewayConfig.from_env()
    config.validate()

Recognised variables:
    GATEWAY_BUCKET_CAPACITY            Max tokens per client bucket (60)
    GATEWAY_REFILL_RATE_PER_SECOND     Tokens added per second (1.0)
    GATEWAY_REQUESTS_PER_MINUTE        Alternative to the refill rate (rpm / 60)
    GATEWAY_IDLE_EVICTION_SECONDS      Idle time before a bucket is dropped
                                       (2x the cleanup interval)
    GATEWAY_CLEANUP_INTERVAL_SECONDS   Rate limiter sweep period (1800)
    GATEWAY_STATS_INTERVAL_SECONDS     Cache statistics log period (3600)
    GATEWAY_HEALTH_INTERVAL_SECONDS    Health summary log period (21600)
    GATEWAY_TTL_FAST / _MEDIUM / _SLOW Tier TTLs in seconds (30 / 300 / 3600)
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Optional

from dotenv import load_dotenv

from .errors import ConfigurationError

load_dotenv()

logger = logging.getLogger(__name__)


DEFAULT_TIER_TTLS: Dict[str, float] = {
    "fast": 30.0,      # spot prices, swap quotes, gas
    "medium": 300.0,   # balances, portfolio snapshots
    "slow": 3600.0,    # token metadata/lists, transaction history
}


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


def mask_api_key(api_key: Optional[str]) -> str:
    """Mask an API key for safe logging (first and last 4 characters kept)."""
    if not api_key or len(api_key) < 8:
        return "***"
    return f"{api_key[:4]}***{api_key[-4:]}"


@dataclass
class GatewayConfig:
    """Deployment-wide settings for the limiter, cache tiers and scheduler."""
    bucket_capacity: int = 60
    refill_rate_per_second: float = 1.0
    cleanup_interval: float = 1800.0  # 30 minutes
    stats_interval: float = 3600.0  # 1 hour
    health_interval: float = 21600.0  # 6 hours
    idle_eviction_threshold: Optional[float] = None  # None = 2x cleanup_interval
    tier_ttls: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_TIER_TTLS))

    @property
    def effective_idle_threshold(self) -> float:
        if self.idle_eviction_threshold is not None:
            return self.idle_eviction_threshold
        return 2 * self.cleanup_interval

    @classmethod
    def from_env(cls) -> "GatewayConfig":
        """Build a config from GATEWAY_* environment variables."""
        refill_rate = _env_float("GATEWAY_REFILL_RATE_PER_SECOND", 1.0)
        rpm = _env_float("GATEWAY_REQUESTS_PER_MINUTE", None)
        if rpm is not None:
            refill_rate = rpm / 60.0

        tier_ttls = {
            tier: _env_float(f"GATEWAY_TTL_{tier.upper()}", default)
            for tier, default in DEFAULT_TIER_TTLS.items()
        }

        return cls(
            bucket_capacity=_env_int("GATEWAY_BUCKET_CAPACITY", 60),
            refill_rate_per_second=refill_rate,
            cleanup_interval=_env_float("GATEWAY_CLEANUP_INTERVAL_SECONDS", 1800.0),
            stats_interval=_env_float("GATEWAY_STATS_INTERVAL_SECONDS", 3600.0),
            health_interval=_env_float("GATEWAY_HEALTH_INTERVAL_SECONDS", 21600.0),
            idle_eviction_threshold=_env_float("GATEWAY_IDLE_EVICTION_SECONDS", None),
            tier_ttls=tier_ttls,
        )

    def validate(self) -> None:
        """
        Validate all settings.

        Raises:
            ConfigurationError: if any setting is out of range
        """
        if self.bucket_capacity < 1:
            raise ConfigurationError("Rate limit bucket capacity must be at least 1")

        if self.refill_rate_per_second < 0:
            raise ConfigurationError("Rate limit refill rate must not be negative")

        for name in ("cleanup_interval", "stats_interval", "health_interval"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive")

        if self.effective_idle_threshold <= 0:
            raise ConfigurationError("idle_eviction_threshold must be positive")

        missing = set(DEFAULT_TIER_TTLS) - set(self.tier_ttls)
        if missing:
            raise ConfigurationError(f"Missing TTL for cache tiers: {sorted(missing)}")

        for tier, ttl in self.tier_ttls.items():
            if ttl < 0:
                raise ConfigurationError(f"TTL for cache tier '{tier}' must not be negative")

        requests_per_minute = self.refill_rate_per_second * 60
        if requests_per_minute > 1000:
            logger.warning(
                f"Rate limit is very high ({requests_per_minute:.0f}/min), "
                f"this may exceed upstream API limits"
            )
        if self.refill_rate_per_second > 0 and self.bucket_capacity > requests_per_minute:
            logger.warning(
                f"Burst capacity ({self.bucket_capacity}) is higher than "
                f"requests per minute ({requests_per_minute:.0f})"
            )

        logger.debug(
            f"Gateway configuration validated: capacity={self.bucket_capacity}, "
            f"refill={self.refill_rate_per_second}/s, ttls={self.tier_ttls}"
        )
