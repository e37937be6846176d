from __future__ import annotations

from datetime import date, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from tradefolio.db import get_db
from tradefolio.models import PortfolioSnapshot, User, utc_today
from tradefolio.schemas import (
    HoldingOut,
    PerformancePointOut,
    SnapshotCreate,
    SnapshotOut,
    TransactionCreate,
    TransactionOut,
)
from tradefolio.services.holdings import get_holdings
from tradefolio.services.ledger import (
    InvalidTransaction,
    TransactionNotFound,
    TransactionOwnershipError,
    add_transaction,
    delete_transaction,
    list_transactions,
)
from tradefolio.services.performance import get_daily_performance
from tradefolio.services.price_cache import HistoricalPriceCache
from tradefolio.services.pricing import PricingService
from tradefolio.services.snapshots import (
    capture_snapshot,
    generate_historical_snapshots,
    list_snapshots,
    load_portfolio_data,
    upsert_snapshot,
)
from tradefolio.services.symbols import resolve_market_symbol
from tradefolio.web import current_user, get_price_cache, get_pricing_service

router = APIRouter(prefix="/api/portfolio", tags=["portfolio"])


def _snapshot_out(snapshot: PortfolioSnapshot) -> SnapshotOut:
    return SnapshotOut(
        id=snapshot.id,
        snapshot_date=snapshot.snapshot_date,
        total_value=snapshot.total_value,
        total_cost=snapshot.total_cost,
        daily_return=snapshot.daily_return,
        portfolio_data=load_portfolio_data(snapshot),
    )


@router.get("/transactions", response_model=list[TransactionOut])
def get_transactions(user: User = Depends(current_user), db: Session = Depends(get_db)):
    """List the user's ledger, newest first."""
    return list_transactions(db, user.id)


@router.post("/transactions", response_model=TransactionOut, status_code=201)
def create_transaction(
    payload: TransactionCreate,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    """Append one buy or sell to the ledger."""
    try:
        transaction = add_transaction(
            db,
            user_id=user.id,
            symbol=payload.symbol,
            side=payload.side,
            shares=payload.shares,
            price_per_share=payload.price_per_share,
            transaction_date=payload.transaction_date,
        )
    except InvalidTransaction as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    db.commit()
    db.refresh(transaction)
    return transaction


@router.delete("/transactions/{transaction_id}")
def remove_transaction(
    transaction_id: int,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    """Delete one of the user's own transactions."""
    try:
        delete_transaction(db, user.id, transaction_id)
    except TransactionNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except TransactionOwnershipError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc

    db.commit()
    return {"message": "Transaction deleted successfully"}


@router.get("/holdings", response_model=list[HoldingOut])
def holdings(
    as_of: Optional[date] = Query(default=None),
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    """Current positions with average-cost basis, optionally as of a past date."""
    return [
        HoldingOut(
            symbol=holding.symbol,
            market_symbol=resolve_market_symbol(holding.symbol),
            total_shares=holding.total_shares,
            total_cost=holding.total_cost,
            average_cost=holding.average_cost,
        )
        for holding in get_holdings(db, user.id, as_of=as_of)
    ]


@router.get("/performance", response_model=list[PerformancePointOut])
def performance(
    start: Optional[date] = Query(default=None),
    end: Optional[date] = Query(default=None),
    days: int = Query(default=30, ge=0, le=3650),
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
    price_cache: HistoricalPriceCache = Depends(get_price_cache),
):
    """Daily value and return for every calendar day in the range."""
    end = end or utc_today()
    start = start or (end - timedelta(days=days))
    if start > end:
        raise HTTPException(status_code=400, detail="start must be on or before end")

    points = get_daily_performance(db, price_cache, user.id, start, end)
    db.commit()
    return points


@router.post("/snapshot", response_model=SnapshotOut, status_code=201)
def save_snapshot(
    payload: SnapshotCreate,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    """Store today's snapshot, replacing any earlier one from today."""
    snapshot = upsert_snapshot(
        db,
        user_id=user.id,
        total_value=payload.total_value,
        total_cost=payload.total_cost,
        daily_return=payload.daily_return,
        portfolio_data=payload.portfolio_data,
    )
    db.commit()
    return _snapshot_out(snapshot)


@router.post("/snapshots/capture", response_model=Optional[SnapshotOut])
def capture_today(
    user: User = Depends(current_user),
    pricing_service: PricingService = Depends(get_pricing_service),
    db: Session = Depends(get_db),
    price_cache: HistoricalPriceCache = Depends(get_price_cache),
):
    """Value current holdings server-side and store today's snapshot."""
    snapshot = capture_snapshot(db, pricing_service, price_cache, user.id)
    db.commit()
    return _snapshot_out(snapshot) if snapshot is not None else None


@router.get("/snapshots", response_model=list[SnapshotOut])
def snapshots(
    since: Optional[date] = Query(default=None),
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    """Snapshots in ascending date order for charting."""
    return [_snapshot_out(snapshot) for snapshot in list_snapshots(db, user.id, since=since)]


@router.post("/snapshots/generate")
def generate_snapshots(
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
    price_cache: HistoricalPriceCache = Depends(get_price_cache),
):
    """Backfill one snapshot per transaction date from historical prices."""
    created = generate_historical_snapshots(db, price_cache, user.id)
    db.commit()
    return {
        "snapshots_created": len(created),
        "dates": [snapshot.snapshot_date.isoformat() for snapshot in created],
    }
