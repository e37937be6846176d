from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable

from sqlalchemy.orm import Session

from tradefolio.models import Transaction
from tradefolio.services.holdings import (
    load_user_transactions,
    open_holdings,
    replay_by_day,
    symbols_held_between,
)
from tradefolio.services.price_cache import HistoricalPriceCache, PriceStore
from tradefolio.services.symbols import resolve_market_symbol

logger = logging.getLogger(__name__)


@dataclass
class HoldingValuation:
    symbol: str
    shares: float
    average_cost: float
    current_price: float
    value: float
    priced_at_cost: bool = False


@dataclass
class DailyPerformancePoint:
    date: date
    portfolio_value: float
    portfolio_cost: float
    return_pct: float
    holdings: list[HoldingValuation] | None = None


def day_range(start: date, end: date) -> list[date]:
    if start > end:
        return []
    day_count = (end - start).days + 1
    return [start + timedelta(days=idx) for idx in range(day_count)]


def compute_return_pct(value: float, cost: float) -> float:
    """Percentage gain over cost; zero when there is no positive cost basis."""
    if cost > 0:
        return (value - cost) / cost * 100.0
    return 0.0


def carry_forward_closes(
    store: PriceStore,
    market_symbol: str,
    days: list[date],
) -> dict[date, float | None]:
    """Map every calendar day to the latest cached close on or before it."""
    if not days:
        return {}

    rolling_close = store.latest_close(market_symbol, days[0])
    closes = store.closes_between(market_symbol, days[0] + timedelta(days=1), days[-1])

    out: dict[date, float | None] = {}
    for day in days:
        close = closes.get(day)
        if close is not None and close > 0:
            rolling_close = close
        out[day] = rolling_close
    return out


def reconstruct_series(
    transactions: Iterable[Transaction | object],
    start: date,
    end: date,
    store: PriceStore,
) -> list[DailyPerformancePoint]:
    """Rebuild one value/return point per calendar day from the ledger and cached closes.

    Weekends and market holidays take the most recent close on or before the
    day. A holding with no cached close at all is valued at its average cost.
    """
    days = day_range(start, end)
    if not days:
        return []

    tx_list = list(transactions)
    closes_by_symbol = {
        symbol: carry_forward_closes(store, resolve_market_symbol(symbol), days)
        for symbol in sorted(symbols_held_between(tx_list, start, end))
    }

    points: list[DailyPerformancePoint] = []
    for day, positions in replay_by_day(tx_list, days):
        portfolio_value = 0.0
        portfolio_cost = 0.0
        valuations: list[HoldingValuation] = []

        for holding in open_holdings(positions):
            close = closes_by_symbol.get(holding.symbol, {}).get(day)
            priced_at_cost = close is None
            price = holding.average_cost if close is None else close
            value = holding.total_shares * price

            portfolio_value += value
            portfolio_cost += holding.total_cost
            valuations.append(
                HoldingValuation(
                    symbol=holding.symbol,
                    shares=holding.total_shares,
                    average_cost=holding.average_cost,
                    current_price=price,
                    value=value,
                    priced_at_cost=priced_at_cost,
                )
            )

        points.append(
            DailyPerformancePoint(
                date=day,
                portfolio_value=portfolio_value,
                portfolio_cost=portfolio_cost,
                return_pct=compute_return_pct(portfolio_value, portfolio_cost),
                holdings=valuations,
            )
        )
    return points


def price_windows(
    transactions: Iterable[Transaction | object],
    start: date,
    end: date,
) -> dict[str, tuple[date, date]]:
    """Backfill windows for every symbol held at any point in ``[start, end]``."""
    return {symbol: (start, end) for symbol in symbols_held_between(transactions, start, end)}


def get_daily_performance(
    db: Session,
    price_cache: HistoricalPriceCache,
    user_id: int,
    start: date,
    end: date,
    ensure_prices: bool = True,
) -> list[DailyPerformancePoint]:
    """Daily value/return series for one user, backfilling prices once up front."""
    transactions = load_user_transactions(db, user_id)
    if not transactions or start > end:
        return []

    if ensure_prices:
        outcomes = price_cache.ensure_ranges(price_windows(transactions, start, end))
        failed = sorted(symbol for symbol, outcome in outcomes.items() if outcome.error)
        if failed:
            logger.info(
                "Reconstructing user %s with cached prices only for %s",
                user_id,
                ", ".join(failed),
            )

    return reconstruct_series(transactions, start, end, price_cache.store)
