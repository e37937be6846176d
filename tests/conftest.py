from __future__ import annotations

import sys
import threading
from datetime import date, datetime, timezone
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from tradefolio import create_app
from tradefolio.db import Base, get_db
from tradefolio.models import User
from tradefolio.security import hash_password
from tradefolio.services.price_cache import HistoricalPriceCache, SqlPriceStore
from tradefolio.services.pricing import MarketDataError, PriceBar, PricingService, QuoteResult

TEST_PASSWORD = "password123"


class MockMarketDataProvider:
    """In-memory quotes and daily closes; records every history request."""

    def __init__(self) -> None:
        self.latest: dict[str, float] = {}
        self.closes: dict[str, dict[date, float]] = {}
        self.failing: set[str] = set()
        self.history_calls: list[tuple[str, date, date]] = []
        self._lock = threading.Lock()

    def set_latest(self, symbol: str, price: float) -> None:
        self.latest[symbol.upper()] = float(price)

    def set_history(self, symbol: str, points: list[tuple[date, float]]) -> None:
        self.closes[symbol.upper()] = {day: float(close) for day, close in points}

    def fail(self, symbol: str) -> None:
        self.failing.add(symbol.upper())

    def get_latest_quote(self, symbol: str) -> QuoteResult:
        price = self.latest.get(symbol.upper())
        if price is None:
            raise MarketDataError(f"No latest quote for {symbol.upper()}")
        return QuoteResult(symbol=symbol.upper(), price=price, fetched_at=datetime.now(timezone.utc))

    def fetch_daily_bars(self, symbol: str, start: date, end: date) -> list[PriceBar]:
        key = symbol.upper()
        with self._lock:
            self.history_calls.append((key, start, end))
        if key in self.failing:
            raise MarketDataError(f"Upstream error for {key}")
        return [
            PriceBar(date=day, close=close, open=close, high=close, low=close, volume=1000)
            for day, close in sorted(self.closes.get(key, {}).items())
            if start <= day <= end
        ]


@pytest.fixture()
def db_session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, class_=Session)

    with factory() as db:
        db.add(User(username="tester", password_hash=hash_password(TEST_PASSWORD)))
        db.commit()

    yield factory
    engine.dispose()


@pytest.fixture()
def mock_provider():
    return MockMarketDataProvider()


@pytest.fixture()
def pricing_service(mock_provider):
    return PricingService(provider=mock_provider, ttl_seconds=60)


@pytest.fixture()
def app(db_session_factory, pricing_service):
    application = create_app(pricing_service=pricing_service, enable_startup_init=False)

    def override_get_db():
        with db_session_factory() as db:
            yield db

    application.dependency_overrides[get_db] = override_get_db
    return application


@pytest.fixture()
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def db(db_session_factory):
    with db_session_factory() as session:
        yield session


@pytest.fixture()
def price_cache(db, pricing_service):
    return HistoricalPriceCache(store=SqlPriceStore(db), pricing_service=pricing_service)


@pytest.fixture()
def make_user(db):
    def _make(username: str, share_daily_returns: bool = True, share_full_portfolio: bool = False) -> User:
        user = User(
            username=username,
            password_hash=hash_password(TEST_PASSWORD),
            share_daily_returns=share_daily_returns,
            share_full_portfolio=share_full_portfolio,
        )
        db.add(user)
        db.flush()
        return user

    return _make


@pytest.fixture()
def authed_client(client):
    response = client.post("/api/login", json={"username": "tester", "password": TEST_PASSWORD})
    assert response.status_code == 200
    return client
