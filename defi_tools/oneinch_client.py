"""
1inch API Client Wrapper

Thin HTTP client for the 1inch developer API. It is the upstream side of the
gateway: every method is a plain blocking call that either returns decoded
JSON or raises UpstreamFetchFailed. Timeouts live here, not
in the cache.
"""

import logging
import os
import threading
from typing import Any, Dict, Iterable, Optional, Union

import requests
from dotenv import load_dotenv

from defi_tools.cache.config import mask_api_key
from defi_tools.cache.errors import ConfigurationError, UpstreamFetchFailed

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.1inch.dev"
DEFAULT_TIMEOUT_SECONDS = 10.0


def _join_addresses(addresses: Union[str, Iterable[str]]) -> str:
    if isinstance(addresses, str):
        return addresses
    return ",".join(addresses)


class OneInchClient:
    """
    1inch API Client Wrapper

    Usage:
        client = OneInchClient()  # Uses environment variables
        client = OneInchClient(api_key="...", timeout=5)

        prices = client.get_spot_prices(1, ["0xa0b8...eb48"], currency="USD")
        quote = client.get_swap_quote(1, src, dst, amount=10**18)
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize 1inch client.

        Args:
            api_key: 1inch API key. Defaults to ONEINCH_API_KEY env var.
            base_url: API base URL. Defaults to ONEINCH_BASE_URL or the public endpoint.
            timeout: Per-request timeout in seconds. Defaults to ONEINCH_TIMEOUT_SECONDS or 10.
            session: Optional requests session (shared connection pool)
        """
        self.api_key = (api_key or os.getenv("ONEINCH_API_KEY") or "").strip()
        self.base_url = (base_url or os.getenv("ONEINCH_BASE_URL") or DEFAULT_BASE_URL).rstrip("/")

        if timeout is None:
            timeout = float(os.getenv("ONEINCH_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS))
        self.timeout = timeout

        if not self.api_key:
            raise ConfigurationError(
                "1inch API key is required but not configured. "
                "Set the ONEINCH_API_KEY environment variable."
            )
        if not self.base_url.startswith(("http://", "https://")):
            raise ConfigurationError("1inch API base URL must start with http:// or https://")
        if len(self.api_key) < 10:
            logger.warning("1inch API key appears to be too short. Please verify it's correct.")

        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {self.api_key}",
            "Accept": "application/json",
        })

        logger.info(f"1inch client ready: base_url={self.base_url}, key={mask_api_key(self.api_key)}")

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """GET a path and decode JSON, mapping every failure to UpstreamFetchFailed."""
        url = f"{self.base_url}/{path.lstrip('/')}"
        if params:
            params = {k: v for k, v in params.items() if v is not None}

        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise UpstreamFetchFailed(f"1inch request failed: {e}", endpoint=path) from e

        if response.status_code != 200:
            raise UpstreamFetchFailed(
                f"1inch API error: {response.status_code} - {response.text[:200]}",
                status_code=response.status_code,
                endpoint=path,
            )

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamFetchFailed(f"1inch API returned invalid JSON: {e}", endpoint=path) from e

    # ==================== Fast tier data ====================

    def get_spot_prices(
        self,
        chain_id: int,
        addresses: Union[str, Iterable[str]],
        currency: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Get spot prices for one or more tokens.

        Returns:
            Mapping of token address to price (in wei, or in currency units
            when currency is given)
        """
        return self._get(
            f"price/v1.1/{chain_id}/{_join_addresses(addresses)}",
            {"currency": currency},
        )

    def get_swap_quote(self, chain_id: int, src: str, dst: str, amount: Union[int, str]) -> Dict[str, Any]:
        """Quote a swap of amount (base units) of src into dst."""
        return self._get(
            f"swap/v6.1/{chain_id}/quote",
            {"src": src, "dst": dst, "amount": str(amount)},
        )

    def get_gas_price(self, chain_id: int) -> Dict[str, Any]:
        return self._get(f"gas-price/v1.5/{chain_id}")

    # ==================== Medium tier data ====================

    def get_balances(self, chain_id: int, wallet: str) -> Dict[str, Any]:
        """Token balances of a wallet: token address -> balance (base units)."""
        return self._get(f"balance/v1.2/{chain_id}/balances/{wallet}")

    def get_portfolio_value(
        self,
        addresses: Union[str, Iterable[str]],
        chain_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        return self._get(
            "portfolio/v5.0/general/current_value",
            {"addresses": _join_addresses(addresses), "chain_id": chain_id},
        )

    # ==================== Slow tier data ====================

    def search_tokens(self, chain_id: int, query: str, limit: int = 10) -> Any:
        return self._get(
            f"token/v1.3/{chain_id}/search",
            {"query": query, "limit": limit},
        )

    def get_token_details(self, chain_id: int, address: str) -> Dict[str, Any]:
        return self._get(f"token-details/v1.0/details/{chain_id}/{address}")

    def get_history(self, address: str, chain_id: Optional[int] = None, limit: Optional[int] = None) -> Dict[str, Any]:
        return self._get(
            f"history/v2.0/history/{address}/events",
            {"chainId": chain_id, "limit": limit},
        )


_client_instance: Optional[OneInchClient] = None
_client_lock = threading.Lock()


def get_oneinch_client() -> OneInchClient:
    """
    Get singleton 1inch client instance.

    Returns:
        OneInchClient instance
    """
    global _client_instance

    if _client_instance is None:
        with _client_lock:
            if _client_instance is None:
                _client_instance = OneInchClient()

    return _client_instance


def reset_oneinch_client():
    """Reset the singleton (for tests or credential rotation)"""
    global _client_instance
    with _client_lock:
        _client_instance = None
