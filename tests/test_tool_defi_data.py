"""
Unit tests for the MCP tool response shaping.

The tools themselves are registered with FastMCP; these tests drive the
shared _run helper against a private gateway.
"""

import unittest
from unittest.mock import patch

from defi_tools import tool_defi_data
from defi_tools.cache import (
    CacheRegistry,
    DataCategory,
    Gateway,
    GatewayConfig,
    ManualClock,
    RateLimitConfig,
    RateLimiter,
    UpstreamFetchFailed,
)


class TestToolRun(unittest.TestCase):

    def setUp(self):
        clock = ManualClock()
        limiter = RateLimiter(
            RateLimitConfig(capacity=1, refill_rate_per_second=0.5),
            clock=clock,
        )
        self.gateway = Gateway(limiter, CacheRegistry(GatewayConfig(), clock=clock))
        patcher = patch("defi_tools.tool_defi_data.get_gateway", return_value=self.gateway)
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_success_shape(self):
        result = tool_defi_data._run("get_gas_price", DataCategory.GAS_ESTIMATE, "1", lambda: {"fast": 10})

        self.assertEqual(result, {"data": {"fast": 10}, "category": "gas", "cache_key": "1"})

    def test_rate_limited_shape(self):
        tool_defi_data._run("get_gas_price", DataCategory.GAS_ESTIMATE, "1", lambda: 1)
        result = tool_defi_data._run("get_gas_price", DataCategory.GAS_ESTIMATE, "1", lambda: 1)

        self.assertEqual(result["error_type"], "RateLimitedError")
        self.assertEqual(result["retry_after_seconds"], 2)
        self.assertEqual(result["client_id"], tool_defi_data._client_id("get_gas_price"))

    def test_limits_are_per_tool(self):
        tool_defi_data._run("get_gas_price", DataCategory.GAS_ESTIMATE, "1", lambda: 1)
        result = tool_defi_data._run("get_token_price", DataCategory.SPOT_PRICE, "1:0xa:USD", lambda: 2)
        self.assertEqual(result["data"], 2)

    def test_upstream_failure_shape(self):
        def fail():
            raise UpstreamFetchFailed("HTTP 500", status_code=500, endpoint="gas-price/v1.5/1")

        result = tool_defi_data._run("get_gas_price", DataCategory.GAS_ESTIMATE, "1", fail)

        self.assertEqual(result["error_type"], "UpstreamFetchFailed")
        self.assertEqual(result["status_code"], 500)

    def test_unexpected_failure_shape(self):
        def fail():
            raise KeyError("price")

        result = tool_defi_data._run("get_token_price", DataCategory.SPOT_PRICE, "k", fail)
        self.assertIn("get_token_price failed", result["error"])

    def test_parse_amount(self):
        self.assertEqual(tool_defi_data._parse_amount(" 1000000000000000000 "), "1000000000000000000")
        self.assertEqual(tool_defi_data._parse_amount("007"), "7")
        for bad in ("0", "000", "", "-5", "1.5", "1e18", "١٢"):
            self.assertIsNone(tool_defi_data._parse_amount(bad), bad)

    def test_split(self):
        self.assertEqual(tool_defi_data._split(" 0xa, ,0xb,"), ["0xa", "0xb"])


if __name__ == "__main__":
    unittest.main()
