from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, Iterator

from sqlalchemy import select
from sqlalchemy.orm import Session

from tradefolio.models import Transaction, TransactionSide


@dataclass
class PositionState:
    """Running shares and cost for one symbol during a ledger replay."""

    total_shares: float = 0.0
    total_cost: float = 0.0

    @property
    def average_cost(self) -> float:
        if self.total_shares > 0:
            return self.total_cost / self.total_shares
        return 0.0

    def apply(self, side: str, shares: float, price: float) -> None:
        if side == TransactionSide.BUY.value:
            self.total_shares += shares
            self.total_cost += shares * price
        elif side == TransactionSide.SELL.value:
            # Sells relieve cost at the pre-sale average, so the average is unchanged.
            avg_cost = self.average_cost
            self.total_shares -= shares
            self.total_cost -= shares * avg_cost


@dataclass
class Holding:
    symbol: str
    total_shares: float
    total_cost: float

    @property
    def average_cost(self) -> float:
        return self.total_cost / self.total_shares if self.total_shares > 0 else 0.0


def _tx_side(value: Transaction | object) -> str:
    side = getattr(value, "side")
    if isinstance(side, TransactionSide):
        return side.value
    return str(side).lower()


def _tx_date(value: Transaction | object) -> date:
    raw = getattr(value, "transaction_date")
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, str):
        return date.fromisoformat(raw[:10])
    return raw


def _tx_id(value: Transaction | object) -> int:
    tx_id = getattr(value, "id", 0)
    return int(tx_id or 0)


def _tx_symbol(value: Transaction | object) -> str:
    return str(getattr(value, "symbol")).strip().upper()


def _tx_shares(value: Transaction | object) -> float:
    return float(getattr(value, "shares") or 0.0)


def _tx_price(value: Transaction | object) -> float:
    return float(getattr(value, "price_per_share") or 0.0)


def sort_transactions(
    transactions: Iterable[Transaction | object],
) -> list[Transaction | object]:
    """Sort transactions deterministically by transaction date then ID."""
    return sorted(transactions, key=lambda tx: (_tx_date(tx), _tx_id(tx)))


def fold_positions(
    transactions: Iterable[Transaction | object],
    as_of: date | None = None,
) -> dict[str, PositionState]:
    """Replay buys and sells into per-symbol running shares and cost.

    Over-sells are not rejected here; shares and cost may go negative and the
    caller decides what a non-positive position means.
    """
    positions: dict[str, PositionState] = defaultdict(PositionState)
    for tx in sort_transactions(transactions):
        if as_of is not None and _tx_date(tx) > as_of:
            break
        positions[_tx_symbol(tx)].apply(_tx_side(tx), _tx_shares(tx), _tx_price(tx))
    return dict(positions)


def open_holdings(positions: dict[str, PositionState]) -> list[Holding]:
    """Keep only positions with shares still held, ordered by symbol."""
    return [
        Holding(symbol=symbol, total_shares=state.total_shares, total_cost=state.total_cost)
        for symbol, state in sorted(positions.items())
        if state.total_shares > 0
    ]


def compute_holdings(
    transactions: Iterable[Transaction | object],
    as_of: date | None = None,
) -> list[Holding]:
    """Return current positions with average-cost basis as of a date."""
    return open_holdings(fold_positions(transactions, as_of=as_of))


def replay_by_day(
    transactions: Iterable[Transaction | object],
    days: list[date],
) -> Iterator[tuple[date, dict[str, PositionState]]]:
    """Replay the ledger once, yielding end-of-day positions for each day.

    The yielded mapping is updated in place as the replay advances.
    """
    ordered = sort_transactions(transactions)
    positions: dict[str, PositionState] = defaultdict(PositionState)
    tx_index = 0
    total = len(ordered)

    for day in days:
        while tx_index < total and _tx_date(ordered[tx_index]) <= day:
            tx = ordered[tx_index]
            positions[_tx_symbol(tx)].apply(_tx_side(tx), _tx_shares(tx), _tx_price(tx))
            tx_index += 1
        yield day, positions


def symbols_held_between(
    transactions: Iterable[Transaction | object],
    start: date,
    end: date,
) -> set[str]:
    """Symbols with an open position at ``start`` or traded during ``(start, end]``."""
    tx_list = list(transactions)
    held = {holding.symbol for holding in compute_holdings(tx_list, as_of=start)}
    traded = {_tx_symbol(tx) for tx in tx_list if start < _tx_date(tx) <= end}
    return held | traded


def first_transaction_date(transactions: Iterable[Transaction | object]) -> date | None:
    dates = [_tx_date(tx) for tx in transactions]
    return min(dates) if dates else None


def load_user_transactions(db: Session, user_id: int) -> list[Transaction]:
    """Return a user's ledger in replay order."""
    return list(
        db.scalars(
            select(Transaction)
            .where(Transaction.user_id == user_id)
            .order_by(Transaction.transaction_date.asc(), Transaction.id.asc())
        )
    )


def get_holdings(db: Session, user_id: int, as_of: date | None = None) -> list[Holding]:
    """Recompute a user's holdings from the full ledger."""
    return compute_holdings(load_user_transactions(db, user_id), as_of=as_of)
