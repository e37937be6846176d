from __future__ import annotations

import pytest

from tradefolio.services.symbols import normalize_symbol, proxy_context, resolve_market_symbol


@pytest.mark.parametrize(
    ("label", "expected"),
    [
        ("GOLD", "GLD"),
        ("gold", "GLD"),
        (" Real Estate ", "VNQ"),
        ("bonds", "BND"),
        ("Bitcoin", "BTC-USD"),
        ("eth", "ETH-USD"),
        ("CASH", "BIL"),
    ],
)
def test_asset_class_labels_resolve_to_proxies(label: str, expected: str) -> None:
    assert resolve_market_symbol(label) == expected


def test_unknown_symbols_pass_through_upper_cased() -> None:
    assert resolve_market_symbol(" aapl ") == "AAPL"
    assert resolve_market_symbol("BRK-B") == "BRK-B"
    assert resolve_market_symbol("^GSPC") == "^GSPC"


def test_resolution_is_idempotent() -> None:
    for label in ("GOLD", "REIT", "AAPL", "BTC"):
        once = resolve_market_symbol(label)
        assert resolve_market_symbol(once) == once


def test_normalize_symbol_strips_punctuation() -> None:
    assert normalize_symbol("real-estate") == "REALESTATE"
    assert normalize_symbol(None) == ""


def test_empty_label_resolves_to_empty() -> None:
    assert resolve_market_symbol("") == ""
    assert resolve_market_symbol("   ") == ""


def test_proxy_context_flags_proxy_use() -> None:
    context = proxy_context("gold")
    assert context.requested_symbol == "GOLD"
    assert context.market_symbol == "GLD"
    assert context.proxy_used is True

    assert proxy_context("AAPL").proxy_used is False
