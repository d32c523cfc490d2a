"""
Unit tests for gateway configuration.
"""

import os
import unittest
from unittest.mock import patch

from defi_tools.cache import ConfigurationError, GatewayConfig, RateLimitConfig, mask_api_key


class TestGatewayConfig(unittest.TestCase):

    def test_defaults(self):
        config = GatewayConfig()
        config.validate()
        self.assertEqual(config.bucket_capacity, 60)
        self.assertEqual(config.refill_rate_per_second, 1.0)
        self.assertEqual(config.cleanup_interval, 1800.0)
        self.assertEqual(config.stats_interval, 3600.0)
        self.assertEqual(config.effective_idle_threshold, 3600.0)
        self.assertEqual(config.tier_ttls, {"fast": 30.0, "medium": 300.0, "slow": 3600.0})

    @patch.dict(os.environ, {
        "GATEWAY_BUCKET_CAPACITY": "10",
        "GATEWAY_REFILL_RATE_PER_SECOND": "0.5",
        "GATEWAY_CLEANUP_INTERVAL_SECONDS": "60",
        "GATEWAY_TTL_FAST": "15",
        "GATEWAY_IDLE_EVICTION_SECONDS": "",
    })
    def test_from_env(self):
        config = GatewayConfig.from_env()
        self.assertEqual(config.bucket_capacity, 10)
        self.assertEqual(config.refill_rate_per_second, 0.5)
        self.assertEqual(config.tier_ttls["fast"], 15.0)
        self.assertEqual(config.tier_ttls["medium"], 300.0)
        self.assertEqual(config.effective_idle_threshold, 120.0)

        limits = RateLimitConfig.from_gateway_config(config)
        self.assertEqual(limits.capacity, 10)
        self.assertEqual(limits.idle_threshold_seconds, 120.0)

    @patch.dict(os.environ, {"GATEWAY_REQUESTS_PER_MINUTE": "120"})
    def test_requests_per_minute_overrides_rate(self):
        self.assertEqual(GatewayConfig.from_env().refill_rate_per_second, 2.0)

    @patch.dict(os.environ, {"GATEWAY_BUCKET_CAPACITY": "lots"})
    def test_unparsable_value(self):
        with self.assertRaises(ConfigurationError):
            GatewayConfig.from_env()

    def test_invalid_values(self):
        bad_configs = [
            GatewayConfig(bucket_capacity=0),
            GatewayConfig(refill_rate_per_second=-1),
            GatewayConfig(cleanup_interval=0),
            GatewayConfig(idle_eviction_threshold=-5),
            GatewayConfig(tier_ttls={"fast": -1, "medium": 300, "slow": 3600}),
            GatewayConfig(tier_ttls={"fast": 30}),
        ]
        for config in bad_configs:
            with self.assertRaises(ConfigurationError):
                config.validate()

    def test_high_rate_warns(self):
        with self.assertLogs("defi_tools.cache.config", level="WARNING") as logs:
            GatewayConfig(bucket_capacity=10, refill_rate_per_second=20).validate()
        self.assertIn("very high", logs.output[0])

    def test_mask_api_key(self):
        self.assertEqual(mask_api_key("abcd1234efgh5678"), "abcd***5678")
        self.assertEqual(mask_api_key("short"), "***")
        self.assertEqual(mask_api_key(None), "***")


if __name__ == "__main__":
    unittest.main()
