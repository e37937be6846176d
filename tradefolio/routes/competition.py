from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from tradefolio.config import settings
from tradefolio.db import get_db
from tradefolio.models import User
from tradefolio.schemas import LeaderboardEntryOut, PerformancePointOut, SharingPreferences
from tradefolio.services.leaderboard import build_leaderboard
from tradefolio.services.price_cache import HistoricalPriceCache
from tradefolio.web import current_user, get_price_cache

router = APIRouter(prefix="/api", tags=["competition"])


@router.get("/user/sharing-preferences", response_model=SharingPreferences)
def get_sharing_preferences(user: User = Depends(current_user)):
    return SharingPreferences(
        share_daily_returns=bool(user.share_daily_returns),
        share_full_portfolio=bool(user.share_full_portfolio),
    )


@router.put("/user/sharing-preferences", response_model=SharingPreferences)
def update_sharing_preferences(
    payload: SharingPreferences,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    """Opt in or out of the public leaderboard."""
    user.share_daily_returns = payload.share_daily_returns
    user.share_full_portfolio = payload.share_full_portfolio
    db.commit()
    return payload


@router.get("/leaderboard", response_model=list[LeaderboardEntryOut])
def leaderboard(
    days: int = Query(default=settings.leaderboard_window_days, ge=1, le=3650),
    db: Session = Depends(get_db),
    price_cache: HistoricalPriceCache = Depends(get_price_cache),
):
    """Opted-in users ranked by return over the trailing window."""
    entries = build_leaderboard(db, price_cache, window_days=days)
    db.commit()
    return [
        LeaderboardEntryOut(
            rank=idx,
            user_id=entry.user_id,
            username=entry.username,
            current_return_pct=entry.current_return_pct,
            share_full_portfolio=entry.share_full_portfolio,
            performance_series=[
                PerformancePointOut.model_validate(asdict(point))
                for point in entry.performance_series
            ],
        )
        for idx, entry in enumerate(entries, start=1)
    ]
