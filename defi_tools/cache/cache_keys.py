"""
Canonical cache keys.

Fields are joined with ":" in a fixed order so that semantically identical
requests always produce byte-identical keys:
- addresses are lower-cased and stripped
- address collections are de-duplicated and sorted
- chain ids and other integers use plain str()
- currency codes are upper-cased
- missing optional fields become the empty string
"""

from typing import Any, Iterable, Optional, Union

KEY_SEPARATOR = ":"
LIST_SEPARATOR = ","

ChainId = Union[int, str]


def normalize_address(address: str) -> str:
    """Lower-case and strip a hex address (0xABC... -> 0xabc...)"""
    return address.strip().lower()


def normalize_addresses(addresses: Union[str, Iterable[str]]) -> str:
    """
    Canonical form of an address set.

    Accepts a comma-separated string or any iterable of addresses.
    """
    if isinstance(addresses, str):
        addresses = addresses.split(LIST_SEPARATOR)
    unique = {normalize_address(a) for a in addresses if a and a.strip()}
    return LIST_SEPARATOR.join(sorted(unique))


def _render(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    return str(value).strip()


def make_key(*fields: Any) -> str:
    """Join already-normalized fields in the order given."""
    return KEY_SEPARATOR.join(_render(f) for f in fields)


def time_bucket(timestamp: float, bucket_seconds: int) -> int:
    """Floor a unix timestamp to the start of its bucket"""
    if bucket_seconds <= 0:
        raise ValueError("bucket_seconds must be positive")
    return int(timestamp // bucket_seconds) * bucket_seconds


# ==================== Per-category builders ====================

def price_key(chain_id: ChainId, addresses: Union[str, Iterable[str]], currency: Optional[str] = None) -> str:
    """
    Example:
        >>> price_key(1, "0xABC", "usd")
        '1:0xabc:USD'
    """
    return make_key(chain_id, normalize_addresses(addresses), (currency or "").strip().upper())


def quote_key(chain_id: ChainId, src: str, dst: str, amount: Union[int, str]) -> str:
    # Amounts are integer base units; str() keeps big values exact
    return make_key(chain_id, normalize_address(src), normalize_address(dst), amount)


def gas_key(chain_id: ChainId) -> str:
    return make_key(chain_id)


def balance_key(chain_id: ChainId, wallet: str, tokens: Optional[Iterable[str]] = None) -> str:
    token_filter = normalize_addresses(tokens) if tokens else None
    return make_key(chain_id, normalize_address(wallet), token_filter)


def portfolio_key(
    addresses: Union[str, Iterable[str]],
    chain_id: Optional[ChainId] = None,
    timestamp: Optional[float] = None,
    bucket_seconds: int = 300,
) -> str:
    """Portfolio snapshot key; an optional timestamp is bucketed so nearby requests collide."""
    bucket = time_bucket(timestamp, bucket_seconds) if timestamp is not None else None
    return make_key(chain_id, normalize_addresses(addresses), bucket)


def token_key(chain_id: ChainId, query: str) -> str:
    """Token metadata/list key; the query is case-insensitive."""
    return make_key(chain_id, query.strip().lower())


def history_key(address: str, chain_id: Optional[ChainId] = None, limit: Optional[int] = None) -> str:
    return make_key(normalize_address(address), chain_id, limit)
