from __future__ import annotations

from datetime import date, timedelta
from types import SimpleNamespace

import pytest
from sqlalchemy import select

from tradefolio.models import Transaction, TransactionSide, User
from tradefolio.services.performance import (
    compute_return_pct,
    day_range,
    get_daily_performance,
    reconstruct_series,
)
from tradefolio.services.price_cache import SqlPriceStore
from tradefolio.services.pricing import PriceBar


def make_tx(tx_id, symbol, side, shares, price, tx_date):
    return SimpleNamespace(
        id=tx_id,
        symbol=symbol,
        side=side,
        shares=shares,
        price_per_share=price,
        transaction_date=tx_date,
    )


def test_return_pct_is_zero_without_cost_basis() -> None:
    assert compute_return_pct(0.0, 0.0) == 0.0
    assert compute_return_pct(50.0, -10.0) == 0.0
    assert compute_return_pct(110.0, 100.0) == pytest.approx(10.0)


def test_day_range_is_inclusive() -> None:
    assert day_range(date(2024, 1, 1), date(2024, 1, 3)) == [
        date(2024, 1, 1),
        date(2024, 1, 2),
        date(2024, 1, 3),
    ]
    assert day_range(date(2024, 1, 3), date(2024, 1, 1)) == []


def test_weekend_carries_friday_close(db) -> None:
    store = SqlPriceStore(db)
    # 2024-01-05 is a Friday.
    store.insert_bars(
        "AAPL",
        [
            PriceBar(date=date(2024, 1, 3), close=180.0),
            PriceBar(date=date(2024, 1, 4), close=190.0),
            PriceBar(date=date(2024, 1, 5), close=200.0),
            PriceBar(date=date(2024, 1, 8), close=210.0),
        ],
    )
    txs = [make_tx(1, "AAPL", TransactionSide.BUY, 10, 150, date(2024, 1, 3))]

    series = reconstruct_series(txs, date(2024, 1, 3), date(2024, 1, 8), store)
    by_day = {point.date: point for point in series}

    assert len(series) == 6
    assert by_day[date(2024, 1, 6)].portfolio_value == pytest.approx(2000.0)
    assert by_day[date(2024, 1, 7)].portfolio_value == pytest.approx(2000.0)
    assert by_day[date(2024, 1, 8)].portfolio_value == pytest.approx(2100.0)
    assert by_day[date(2024, 1, 6)].return_pct == pytest.approx((2000 - 1500) / 1500 * 100)


def test_close_before_window_seeds_first_day(db) -> None:
    store = SqlPriceStore(db)
    store.insert_bars("MSFT", [PriceBar(date=date(2024, 1, 2), close=300.0)])
    txs = [make_tx(1, "MSFT", TransactionSide.BUY, 2, 250, date(2024, 1, 1))]

    series = reconstruct_series(txs, date(2024, 1, 6), date(2024, 1, 7), store)

    assert [point.portfolio_value for point in series] == [pytest.approx(600.0)] * 2


def test_missing_prices_fall_back_to_average_cost(db) -> None:
    store = SqlPriceStore(db)
    txs = [make_tx(1, "PRIVATE", TransactionSide.BUY, 4, 25, date(2024, 1, 1))]

    series = reconstruct_series(txs, date(2024, 1, 1), date(2024, 1, 3), store)

    for point in series:
        assert point.portfolio_value == pytest.approx(100.0)
        assert point.portfolio_cost == pytest.approx(100.0)
        assert point.return_pct == 0.0
        assert point.holdings[0].priced_at_cost is True


def test_days_before_first_trade_have_zero_value(db) -> None:
    store = SqlPriceStore(db)
    txs = [make_tx(1, "AAPL", TransactionSide.BUY, 1, 100, date(2024, 1, 3))]

    series = reconstruct_series(txs, date(2024, 1, 1), date(2024, 1, 3), store)

    assert series[0].portfolio_value == 0.0
    assert series[0].return_pct == 0.0
    assert series[0].holdings == []
    assert series[-1].portfolio_cost == pytest.approx(100.0)


def test_proxy_closes_value_asset_class_labels(db) -> None:
    store = SqlPriceStore(db)
    store.insert_bars("GLD", [PriceBar(date=date(2024, 1, 1), close=190.0)])
    txs = [make_tx(1, "GOLD", TransactionSide.BUY, 1, 180, date(2024, 1, 1))]

    series = reconstruct_series(txs, date(2024, 1, 1), date(2024, 1, 2), store)

    assert series[-1].holdings[0].symbol == "GOLD"
    assert series[-1].portfolio_value == pytest.approx(190.0)


def test_get_daily_performance_backfills_and_reconstructs(db, price_cache, mock_provider) -> None:
    user = db.scalar(select(User).where(User.username == "tester"))
    db.add_all(
        [
            Transaction(
                user_id=user.id,
                symbol="AAPL",
                side=TransactionSide.BUY,
                shares=10,
                price_per_share=100,
                transaction_date=date(2024, 1, 2),
            ),
            Transaction(
                user_id=user.id,
                symbol="AAPL",
                side=TransactionSide.BUY,
                shares=10,
                price_per_share=120,
                transaction_date=date(2024, 1, 3),
            ),
        ]
    )
    db.flush()
    mock_provider.set_history(
        "AAPL", [(date(2024, 1, 1) + timedelta(days=idx), 110.0 + idx) for idx in range(10)]
    )

    series = get_daily_performance(db, price_cache, user.id, date(2024, 1, 1), date(2024, 1, 7))

    assert len(series) == 7
    assert series[0].portfolio_value == 0.0
    last = series[-1]
    assert last.portfolio_cost == pytest.approx(2200.0)
    assert last.portfolio_value == pytest.approx(20 * 116.0)
    assert len(mock_provider.history_calls) == 1


def test_get_daily_performance_empty_ledger(db, price_cache, mock_provider) -> None:
    user = db.scalar(select(User).where(User.username == "tester"))

    assert get_daily_performance(db, price_cache, user.id, date(2024, 1, 1), date(2024, 1, 7)) == []
    assert mock_provider.history_calls == []


def test_get_daily_performance_survives_provider_failure(db, price_cache, mock_provider) -> None:
    user = db.scalar(select(User).where(User.username == "tester"))
    db.add(
        Transaction(
            user_id=user.id,
            symbol="FLAKY",
            side=TransactionSide.BUY,
            shares=3,
            price_per_share=10,
            transaction_date=date(2024, 1, 1),
        )
    )
    db.flush()
    mock_provider.fail("FLAKY")

    series = get_daily_performance(db, price_cache, user.id, date(2024, 1, 1), date(2024, 1, 3))

    assert [point.portfolio_value for point in series] == [pytest.approx(30.0)] * 3
