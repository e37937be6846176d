from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta

from tradefolio.models import utc_today
from tradefolio.services.performance import carry_forward_closes, day_range
from tradefolio.services.price_cache import HistoricalPriceCache
from tradefolio.services.symbols import resolve_market_symbol


@dataclass
class BenchmarkPoint:
    date: date
    close: float
    return_pct: float


def compute_benchmark_series(
    price_cache: HistoricalPriceCache,
    days: int,
    symbol: str = "^GSPC",
    today: date | None = None,
) -> list[BenchmarkPoint]:
    """Index return per calendar day over a trailing window, relative to its first close."""
    today = today or utc_today()
    start = today - timedelta(days=max(days, 0))
    market_symbol = resolve_market_symbol(symbol)

    price_cache.ensure_range(market_symbol, start, today)
    calendar = day_range(start, today)
    closes = carry_forward_closes(price_cache.store, market_symbol, calendar)

    base_close = next((close for close in closes.values() if close), None)
    if base_close is None:
        return []

    points: list[BenchmarkPoint] = []
    for day in calendar:
        close = closes[day]
        if close is None:
            # Days before the first cached close sit at the baseline.
            close = base_close
        points.append(
            BenchmarkPoint(
                date=day,
                close=close,
                return_pct=(close - base_close) / base_close * 100.0,
            )
        )
    return points
