from __future__ import annotations

import json
import logging
from dataclasses import asdict
from datetime import date
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from tradefolio.db import dialect_insert
from tradefolio.models import PortfolioSnapshot, Transaction, utc_now, utc_today
from tradefolio.services.holdings import Holding, compute_holdings, load_user_transactions
from tradefolio.services.performance import (
    HoldingValuation,
    compute_return_pct,
    price_windows,
    reconstruct_series,
)
from tradefolio.services.price_cache import HistoricalPriceCache
from tradefolio.services.pricing import PricingService
from tradefolio.services.symbols import resolve_market_symbol

logger = logging.getLogger(__name__)


def _dump_portfolio_data(portfolio_data: Any) -> str | None:
    if portfolio_data is None:
        return None
    if isinstance(portfolio_data, str):
        return portfolio_data
    return json.dumps(portfolio_data)


def load_portfolio_data(snapshot: PortfolioSnapshot) -> Any:
    """Decode the stored holdings JSON, tolerating legacy non-JSON text."""
    if not snapshot.portfolio_data:
        return None
    try:
        return json.loads(snapshot.portfolio_data)
    except ValueError:
        return snapshot.portfolio_data


def upsert_snapshot(
    db: Session,
    user_id: int,
    total_value: float,
    total_cost: float,
    daily_return: float,
    portfolio_data: Any = None,
    snapshot_date: date | None = None,
) -> PortfolioSnapshot:
    """Write the user's snapshot for a day, overwriting any earlier one for that day."""
    snapshot_date = snapshot_date or utc_today()
    now = utc_now()

    stmt = dialect_insert(db, PortfolioSnapshot.__table__).values(
        user_id=user_id,
        snapshot_date=snapshot_date,
        total_value=float(total_value),
        total_cost=float(total_cost),
        daily_return=float(daily_return),
        portfolio_data=_dump_portfolio_data(portfolio_data),
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["user_id", "snapshot_date"],
        set_={
            "total_value": stmt.excluded.total_value,
            "total_cost": stmt.excluded.total_cost,
            "daily_return": stmt.excluded.daily_return,
            "portfolio_data": stmt.excluded.portfolio_data,
            "updated_at": stmt.excluded.updated_at,
        },
    )
    db.execute(stmt)

    return db.scalars(
        select(PortfolioSnapshot)
        .where(
            PortfolioSnapshot.user_id == user_id,
            PortfolioSnapshot.snapshot_date == snapshot_date,
        )
        .execution_options(populate_existing=True)
    ).one()


def list_snapshots(
    db: Session,
    user_id: int,
    since: date | None = None,
) -> list[PortfolioSnapshot]:
    """Return a user's snapshots in ascending date order."""
    query = select(PortfolioSnapshot).where(PortfolioSnapshot.user_id == user_id)
    if since is not None:
        query = query.where(PortfolioSnapshot.snapshot_date >= since)
    return list(db.scalars(query.order_by(PortfolioSnapshot.snapshot_date.asc())))


def _current_price(
    db: Session,
    pricing_service: PricingService,
    price_cache: HistoricalPriceCache,
    holding: Holding,
    today: date,
) -> tuple[float, str]:
    quote = pricing_service.get_quote(db, holding.symbol)
    if quote is not None:
        return quote.price, "quote"

    close = price_cache.store.latest_close(resolve_market_symbol(holding.symbol), today)
    if close is not None:
        return close, "cache"
    return holding.average_cost, "cost"


def capture_snapshot(
    db: Session,
    pricing_service: PricingService,
    price_cache: HistoricalPriceCache,
    user_id: int,
    today: date | None = None,
) -> PortfolioSnapshot | None:
    """Value today's holdings once and store them as the day's snapshot."""
    today = today or utc_today()
    holdings = compute_holdings(load_user_transactions(db, user_id), as_of=today)
    if not holdings:
        return None

    total_value = 0.0
    total_cost = 0.0
    portfolio_data: list[dict[str, Any]] = []
    for holding in holdings:
        price, source = _current_price(db, pricing_service, price_cache, holding, today)
        value = holding.total_shares * price
        total_value += value
        total_cost += holding.total_cost
        portfolio_data.append(
            {
                "symbol": holding.symbol,
                "shares": holding.total_shares,
                "average_cost": holding.average_cost,
                "current_price": price,
                "value": value,
                "price_source": source,
            }
        )

    return upsert_snapshot(
        db,
        user_id=user_id,
        total_value=total_value,
        total_cost=total_cost,
        daily_return=compute_return_pct(total_value, total_cost),
        portfolio_data=portfolio_data,
        snapshot_date=today,
    )


def _valuation_rows(valuations: list[HoldingValuation]) -> list[dict[str, Any]]:
    return [asdict(row) for row in valuations]


def generate_historical_snapshots(
    db: Session,
    price_cache: HistoricalPriceCache,
    user_id: int,
) -> list[PortfolioSnapshot]:
    """Backfill one snapshot per distinct transaction date from the reconstructed series."""
    transactions = load_user_transactions(db, user_id)
    if not transactions:
        return []

    trade_dates = sorted({tx.transaction_date for tx in transactions})
    start, end = trade_dates[0], trade_dates[-1]
    price_cache.ensure_ranges(price_windows(transactions, start, end))
    series = {point.date: point for point in reconstruct_series(transactions, start, end, price_cache.store)}

    created: list[PortfolioSnapshot] = []
    for trade_date in trade_dates:
        point = series.get(trade_date)
        if point is None or not point.holdings:
            continue
        created.append(
            upsert_snapshot(
                db,
                user_id=user_id,
                total_value=point.portfolio_value,
                total_cost=point.portfolio_cost,
                daily_return=point.return_pct,
                portfolio_data=_valuation_rows(point.holdings),
                snapshot_date=trade_date,
            )
        )
    return created


def capture_all_snapshots(
    db: Session,
    pricing_service: PricingService,
    price_cache: HistoricalPriceCache,
    today: date | None = None,
) -> int:
    """Capture today's snapshot for every user with a ledger; returns how many were written."""
    user_ids = list(
        db.scalars(select(Transaction.user_id).distinct().order_by(Transaction.user_id))
    )
    written = 0
    for user_id in user_ids:
        snapshot = capture_snapshot(db, pricing_service, price_cache, user_id, today=today)
        if snapshot is not None:
            written += 1
    logger.info("Captured %d portfolio snapshots for %d users", written, len(user_ids))
    return written
