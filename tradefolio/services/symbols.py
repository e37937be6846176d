from __future__ import annotations

import re
from dataclasses import dataclass

# Display labels for asset classes mapped to a tradable proxy with daily history.
ASSET_PROXY_MAP: dict[str, str] = {
    "GOLD": "GLD",
    "BULLION": "GLD",
    "XAU": "GLD",
    "REIT": "VNQ",
    "REAL": "VNQ",
    "REALESTATE": "VNQ",
    "PROPERTY": "VNQ",
    "REALTY": "VNQ",
    "BOND": "BND",
    "BONDS": "BND",
    "TREASURY": "IEF",
    "CASH": "BIL",
    "COMMODITY": "DBC",
    "COMMODITIES": "DBC",
    "OIL": "USO",
    "NATGAS": "UNG",
    "CRYPTO": "BTC-USD",
    "BTC": "BTC-USD",
    "BITCOIN": "BTC-USD",
    "ETH": "ETH-USD",
    "ETHEREUM": "ETH-USD",
    "SOL": "SOL-USD",
    "SOLANA": "SOL-USD",
}

_NON_ALNUM = re.compile(r"[^A-Z0-9]")


@dataclass(frozen=True)
class ProxyContext:
    requested_symbol: str
    market_symbol: str
    proxy_used: bool


def normalize_symbol(symbol: str | None) -> str:
    """Upper-case and strip everything but letters and digits."""
    return _NON_ALNUM.sub("", str(symbol or "").strip().upper())


def resolve_market_symbol(symbol: str | None) -> str:
    """Map a display label to the symbol used for market-data lookups."""
    requested = str(symbol or "").strip().upper()
    normalized = normalize_symbol(symbol)
    if not normalized:
        return requested
    return ASSET_PROXY_MAP.get(normalized, requested)


def proxy_context(symbol: str | None) -> ProxyContext:
    requested = str(symbol or "").strip().upper()
    market_symbol = resolve_market_symbol(symbol)
    return ProxyContext(
        requested_symbol=requested,
        market_symbol=market_symbol,
        proxy_used=bool(requested and market_symbol and market_symbol != requested),
    )
