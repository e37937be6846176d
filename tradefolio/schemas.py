from __future__ import annotations

from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

from tradefolio.models import TransactionSide


class LoginRequest(BaseModel):
    username: str
    password: str


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    share_daily_returns: bool
    share_full_portfolio: bool


class TransactionCreate(BaseModel):
    symbol: str
    side: str
    shares: float
    price_per_share: float
    transaction_date: Optional[date] = None


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    symbol: str
    side: TransactionSide
    shares: float
    price_per_share: float
    transaction_date: date
    created_at: datetime


class HoldingOut(BaseModel):
    symbol: str
    market_symbol: str
    total_shares: float
    total_cost: float
    average_cost: float


class HoldingValuationOut(BaseModel):
    symbol: str
    shares: float
    average_cost: float
    current_price: float
    value: float
    priced_at_cost: bool = False


class PerformancePointOut(BaseModel):
    date: date
    portfolio_value: float
    portfolio_cost: float
    return_pct: float
    holdings: Optional[list[HoldingValuationOut]] = None


class LeaderboardEntryOut(BaseModel):
    rank: int
    user_id: int
    username: str
    current_return_pct: float
    share_full_portfolio: bool
    performance_series: list[PerformancePointOut]


class SnapshotCreate(BaseModel):
    total_value: float
    total_cost: float
    daily_return: float
    portfolio_data: Any = None


class SnapshotOut(BaseModel):
    id: int
    snapshot_date: date
    total_value: float
    total_cost: float
    daily_return: float
    portfolio_data: Any = None


class SharingPreferences(BaseModel):
    share_daily_returns: bool
    share_full_portfolio: bool


class BenchmarkPointOut(BaseModel):
    date: date
    close: float
    return_pct: float


class QuoteOut(BaseModel):
    symbol: str
    market_symbol: str
    proxy_used: bool
    price: float
    previous_close: Optional[float] = None
    as_of: datetime
    stale: bool = False
    warning: Optional[str] = None
