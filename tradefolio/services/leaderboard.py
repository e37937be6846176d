from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from tradefolio.models import Transaction, User, utc_today
from tradefolio.services.holdings import first_transaction_date, load_user_transactions
from tradefolio.services.performance import (
    DailyPerformancePoint,
    price_windows,
    reconstruct_series,
)
from tradefolio.services.price_cache import HistoricalPriceCache

logger = logging.getLogger(__name__)


@dataclass
class LeaderboardEntry:
    user_id: int
    username: str
    current_return_pct: float
    share_full_portfolio: bool
    performance_series: list[DailyPerformancePoint]


@dataclass
class _UserPlan:
    user: User
    transactions: list[Transaction]
    start: date


def _merge_window(
    windows: dict[str, tuple[date, date]],
    symbol: str,
    start: date,
    end: date,
) -> None:
    if symbol in windows:
        prev_start, prev_end = windows[symbol]
        windows[symbol] = (min(prev_start, start), max(prev_end, end))
    else:
        windows[symbol] = (start, end)


def build_leaderboard(
    db: Session,
    price_cache: HistoricalPriceCache,
    window_days: int,
    today: date | None = None,
) -> list[LeaderboardEntry]:
    """Rank opted-in users by their latest reconstructed return over a trailing window."""
    today = today or utc_today()
    cutoff = today - timedelta(days=max(window_days, 0))

    users = list(
        db.scalars(
            select(User)
            .where(User.share_daily_returns.is_(True))
            .order_by(User.id.asc())
        )
    )

    plans: list[_UserPlan] = []
    windows: dict[str, tuple[date, date]] = {}
    for user in users:
        transactions = load_user_transactions(db, user.id)
        first_date = first_transaction_date(transactions)
        if first_date is None:
            continue
        start = max(first_date, cutoff)
        if start > today:
            continue
        plans.append(_UserPlan(user=user, transactions=transactions, start=start))
        for symbol, (window_start, window_end) in price_windows(transactions, start, today).items():
            _merge_window(windows, symbol, window_start, window_end)

    # One backfill pass for every symbol on the board.
    if windows:
        price_cache.ensure_ranges(windows)

    entries: list[LeaderboardEntry] = []
    for plan in plans:
        series = reconstruct_series(plan.transactions, plan.start, today, price_cache.store)
        if not series:
            continue
        share_full = bool(plan.user.share_full_portfolio)
        if not share_full:
            for point in series:
                point.holdings = None
        entries.append(
            LeaderboardEntry(
                user_id=plan.user.id,
                username=plan.user.username,
                current_return_pct=series[-1].return_pct,
                share_full_portfolio=share_full,
                performance_series=series,
            )
        )

    entries.sort(key=lambda entry: entry.current_return_pct, reverse=True)
    logger.debug("Built leaderboard with %d of %d opted-in users", len(entries), len(users))
    return entries
