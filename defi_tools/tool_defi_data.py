"""
DeFi Data Tool (MCP)

Exposes 1inch price, quote, gas, balance, portfolio, token and history data
as MCP tools. Every call goes through the gateway: per-tool rate limiting
first, then the tiered cache, and only on a miss the 1inch API.

Features:
- Spot prices, swap quotes and gas prices cached for 30 seconds
- Balances and portfolio value cached for 5 minutes
- Token search/details and transaction history cached for 1 hour
- Gateway health and per-tool quota status
"""

import logging
import os
from typing import Any, Callable, Dict, Optional

from dotenv import load_dotenv
from fastmcp import FastMCP

from defi_tools.cache import (
    DataCategory,
    GatewayConfig,
    GatewayError,
    MaintenanceScheduler,
    cache_keys,
    get_gateway,
)
from defi_tools.oneinch_client import get_oneinch_client

load_dotenv()

logger = logging.getLogger(__name__)

mcp = FastMCP("DeFiData")

CLIENT_ID_PREFIX = os.getenv("MCP_CLIENT_ID", "defi-tools")


def _client_id(tool_name: str) -> str:
    return f"{CLIENT_ID_PREFIX}.{tool_name}"


def _split(values: str) -> list:
    return [v.strip() for v in values.split(",") if v.strip()]


def _parse_amount(amount: str) -> Optional[str]:
    """Canonical base-unit amount, or None unless it is a positive ASCII integer."""
    amount = amount.strip()
    if not (amount.isascii() and amount.isdigit()) or int(amount) <= 0:
        return None
    return str(int(amount))


def _run(tool_name: str, category: DataCategory, key: str, fetch_fn: Callable[[], Any]) -> Dict[str, Any]:
    """Route one tool call through the gateway and shape the result."""
    try:
        data = get_gateway().execute(_client_id(tool_name), category, key, fetch_fn)
        return {"data": data, "category": category.value, "cache_key": key}
    except GatewayError as e:
        return e.to_dict()
    except Exception as e:
        logger.error(f"{tool_name} failed: {e}")
        return {"error": f"{tool_name} failed: {str(e)}"}


# ==================== MCP Tools ====================

@mcp.tool()
def get_token_price(chain_id: int, addresses: str, currency: str = "USD") -> Dict[str, Any]:
    """
    Get spot prices for one or more tokens.

    Args:
        chain_id: Blockchain network ID (1 = Ethereum, 56 = BNB Chain, 137 = Polygon, ...)
        addresses: Comma-separated token contract addresses
        currency: Fiat currency code for the price (e.g. "USD")

    Returns:
        Dict with 'data' mapping token address to price, or 'error'
    """
    address_list = _split(addresses)
    if not address_list:
        return {"error": "No valid token addresses provided"}

    key = cache_keys.price_key(chain_id, address_list, currency)
    return _run(
        "get_token_price",
        DataCategory.SPOT_PRICE,
        key,
        lambda: get_oneinch_client().get_spot_prices(chain_id, address_list, currency),
    )


@mcp.tool()
def get_swap_quote(chain_id: int, src: str, dst: str, amount: str) -> Dict[str, Any]:
    """
    Get a swap quote.

    Args:
        chain_id: Blockchain network ID
        src: Source token address
        dst: Destination token address
        amount: Amount of src in base units (wei), as a decimal string

    Returns:
        Dict with 'data' holding the quote, or 'error'
    """
    parsed = _parse_amount(amount)
    if parsed is None:
        return {"error": f"Amount must be a positive integer in base units, got {amount!r}"}
    amount = parsed

    key = cache_keys.quote_key(chain_id, src, dst, amount)
    return _run(
        "get_swap_quote",
        DataCategory.SWAP_QUOTE,
        key,
        lambda: get_oneinch_client().get_swap_quote(chain_id, src, dst, amount),
    )


@mcp.tool()
def get_gas_price(chain_id: int) -> Dict[str, Any]:
    """Get current gas price tiers for a chain."""
    return _run(
        "get_gas_price",
        DataCategory.GAS_ESTIMATE,
        cache_keys.gas_key(chain_id),
        lambda: get_oneinch_client().get_gas_price(chain_id),
    )


@mcp.tool()
def get_wallet_balances(chain_id: int, wallet: str) -> Dict[str, Any]:
    """
    Get token balances of a wallet.

    Args:
        chain_id: Blockchain network ID
        wallet: Wallet address

    Returns:
        Dict with 'data' mapping token address to balance (base units), or 'error'
    """
    return _run(
        "get_wallet_balances",
        DataCategory.BALANCE,
        cache_keys.balance_key(chain_id, wallet),
        lambda: get_oneinch_client().get_balances(chain_id, wallet),
    )


@mcp.tool()
def get_portfolio_value(addresses: str, chain_id: Optional[int] = None) -> Dict[str, Any]:
    """
    Get the current portfolio value of one or more wallets.

    Args:
        addresses: Comma-separated wallet addresses
        chain_id: Optional chain filter

    Returns:
        Dict with 'data' holding the portfolio snapshot, or 'error'
    """
    address_list = _split(addresses)
    if not address_list:
        return {"error": "No valid wallet addresses provided"}

    return _run(
        "get_portfolio_value",
        DataCategory.PORTFOLIO,
        cache_keys.portfolio_key(address_list, chain_id),
        lambda: get_oneinch_client().get_portfolio_value(address_list, chain_id),
    )


@mcp.tool()
def search_tokens(chain_id: int, query: str, limit: int = 10) -> Dict[str, Any]:
    """Search tokens by name, symbol or address."""
    if not query.strip():
        return {"error": "Search query must not be empty"}

    return _run(
        "search_tokens",
        DataCategory.TOKEN_METADATA,
        cache_keys.make_key(cache_keys.token_key(chain_id, query), limit),
        lambda: get_oneinch_client().search_tokens(chain_id, query.strip(), limit),
    )


@mcp.tool()
def get_token_details(chain_id: int, address: str) -> Dict[str, Any]:
    """Get metadata (name, description, links) for one token."""
    return _run(
        "get_token_details",
        DataCategory.TOKEN_METADATA,
        cache_keys.make_key("details", cache_keys.token_key(chain_id, address)),
        lambda: get_oneinch_client().get_token_details(chain_id, address),
    )


@mcp.tool()
def get_transaction_history(address: str, chain_id: Optional[int] = None, limit: int = 20) -> Dict[str, Any]:
    """Get recent transaction history events for a wallet."""
    return _run(
        "get_transaction_history",
        DataCategory.TRANSACTION_HISTORY,
        cache_keys.history_key(address, chain_id, limit),
        lambda: get_oneinch_client().get_history(address, chain_id, limit),
    )


@mcp.tool()
def get_gateway_health() -> Dict[str, Any]:
    """
    Get gateway health: cache tier statistics, rate limiter state and
    request counters.
    """
    return get_gateway().health()


def main() -> None:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = GatewayConfig.from_env()
    config.validate()

    scheduler = MaintenanceScheduler.for_gateway(get_gateway(), config)
    scheduler.start()

    port = int(os.getenv("DEFI_DATA_PORT", "8020"))
    host = os.getenv("MCP_HOST", "127.0.0.1")
    logger.info(f"Starting DeFi Data MCP server on {host}:{port}...")
    try:
        mcp.run(transport="streamable-http", host=host, port=port)
    finally:
        scheduler.stop()


if __name__ == "__main__":
    main()
