from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from tradefolio.models import Transaction, TransactionSide, User
from tradefolio.security import hash_password


def post_tx(client, symbol="AAPL", side="buy", shares=10, price=100, tx_date="2024-01-02"):
    return client.post(
        "/api/portfolio/transactions",
        json={
            "symbol": symbol,
            "side": side,
            "shares": shares,
            "price_per_share": price,
            "transaction_date": tx_date,
        },
    )


def test_login_rejects_bad_password(client) -> None:
    response = client.post("/api/login", json={"username": "tester", "password": "wrong"})
    assert response.status_code == 401


def test_protected_routes_require_login(client) -> None:
    assert client.get("/api/portfolio/holdings").status_code == 401
    assert client.get("/api/me").status_code == 401
    assert post_tx(client).status_code == 401


def test_login_me_and_logout(authed_client) -> None:
    me = authed_client.get("/api/me")
    assert me.status_code == 200
    assert me.json()["username"] == "tester"

    assert authed_client.post("/api/logout").status_code == 200
    assert authed_client.get("/api/me").status_code == 401


def test_transactions_drive_holdings(authed_client) -> None:
    assert post_tx(authed_client, shares=10, price=100, tx_date="2024-01-02").status_code == 201
    assert post_tx(authed_client, shares=10, price=120, tx_date="2024-01-03").status_code == 201
    created = post_tx(authed_client, side="sell", shares=5, price=150, tx_date="2024-01-04")
    assert created.status_code == 201
    assert created.json()["side"] == "sell"

    holdings = authed_client.get("/api/portfolio/holdings").json()
    assert len(holdings) == 1
    assert holdings[0]["symbol"] == "AAPL"
    assert holdings[0]["total_shares"] == pytest.approx(15)
    assert holdings[0]["average_cost"] == pytest.approx(110)
    assert holdings[0]["total_cost"] == pytest.approx(1650)

    early = authed_client.get("/api/portfolio/holdings", params={"as_of": "2024-01-02"}).json()
    assert early[0]["total_shares"] == pytest.approx(10)

    ledger = authed_client.get("/api/portfolio/transactions").json()
    assert [row["transaction_date"] for row in ledger] == ["2024-01-04", "2024-01-03", "2024-01-02"]


def test_symbol_is_normalized_and_proxied(authed_client) -> None:
    created = post_tx(authed_client, symbol=" gold ", shares=1, price=180)
    assert created.json()["symbol"] == "GOLD"

    holdings = authed_client.get("/api/portfolio/holdings").json()
    assert holdings[0]["market_symbol"] == "GLD"


@pytest.mark.parametrize(
    "overrides",
    [
        {"shares": 0},
        {"price": -5},
        {"side": "hold"},
        {"symbol": ""},
        {"tx_date": (datetime.now(timezone.utc).date() + timedelta(days=2)).isoformat()},
    ],
)
def test_invalid_transactions_are_rejected(authed_client, overrides) -> None:
    response = post_tx(authed_client, **overrides)
    assert response.status_code == 400
    assert authed_client.get("/api/portfolio/transactions").json() == []


def test_delete_checks_existence_and_ownership(authed_client, db_session_factory) -> None:
    with db_session_factory() as db:
        other = User(username="other", password_hash=hash_password("password123"))
        db.add(other)
        db.flush()
        foreign = Transaction(
            user_id=other.id,
            symbol="MSFT",
            side=TransactionSide.BUY,
            shares=1,
            price_per_share=300,
            transaction_date=date(2024, 1, 2),
        )
        db.add(foreign)
        db.commit()
        foreign_id = foreign.id

    assert authed_client.delete(f"/api/portfolio/transactions/{foreign_id}").status_code == 403
    assert authed_client.delete("/api/portfolio/transactions/99999").status_code == 404

    own_id = post_tx(authed_client).json()["id"]
    response = authed_client.delete(f"/api/portfolio/transactions/{own_id}")
    assert response.status_code == 200
    assert response.json() == {"message": "Transaction deleted successfully"}
    assert authed_client.get("/api/portfolio/holdings").json() == []

    with db_session_factory() as db:
        assert db.get(Transaction, foreign_id) is not None


def test_performance_series_has_one_point_per_day(authed_client, mock_provider) -> None:
    post_tx(authed_client, shares=10, price=150, tx_date="2024-01-03")
    mock_provider.set_history(
        "AAPL",
        [(date(2024, 1, 3), 180.0), (date(2024, 1, 4), 190.0), (date(2024, 1, 5), 200.0)],
    )

    response = authed_client.get(
        "/api/portfolio/performance", params={"start": "2024-01-03", "end": "2024-01-07"}
    )
    assert response.status_code == 200
    points = response.json()
    assert [point["date"] for point in points] == [
        "2024-01-03",
        "2024-01-04",
        "2024-01-05",
        "2024-01-06",
        "2024-01-07",
    ]
    assert points[-1]["portfolio_value"] == pytest.approx(2000.0)
    assert points[-1]["holdings"][0]["current_price"] == pytest.approx(200.0)


def test_performance_rejects_inverted_range(authed_client) -> None:
    response = authed_client.get(
        "/api/portfolio/performance", params={"start": "2024-02-01", "end": "2024-01-01"}
    )
    assert response.status_code == 400


def test_snapshot_endpoints(authed_client) -> None:
    payload = {"total_value": 1100.0, "total_cost": 1000.0, "daily_return": 10.0}
    first = authed_client.post("/api/portfolio/snapshot", json=payload)
    assert first.status_code == 201

    payload["total_value"] = 1200.0
    second = authed_client.post("/api/portfolio/snapshot", json=payload)
    assert second.json()["id"] == first.json()["id"]

    listed = authed_client.get("/api/portfolio/snapshots").json()
    assert len(listed) == 1
    assert listed[0]["total_value"] == pytest.approx(1200.0)


def test_generate_snapshots_endpoint(authed_client, mock_provider) -> None:
    post_tx(authed_client, shares=2, price=100, tx_date="2024-01-02")
    post_tx(authed_client, shares=2, price=110, tx_date="2024-01-04")
    mock_provider.set_history("AAPL", [(date(2024, 1, d), 100.0 + d) for d in range(1, 8)])

    response = authed_client.post("/api/portfolio/snapshots/generate")

    assert response.status_code == 200
    assert response.json() == {"snapshots_created": 2, "dates": ["2024-01-02", "2024-01-04"]}


def test_sharing_preferences_and_public_leaderboard(authed_client, client, mock_provider) -> None:
    assert authed_client.get("/api/user/sharing-preferences").json() == {
        "share_daily_returns": False,
        "share_full_portfolio": False,
    }
    today = datetime.now(timezone.utc).date()
    post_tx(authed_client, shares=1, price=100, tx_date=(today - timedelta(days=3)).isoformat())
    mock_provider.set_history(
        "AAPL", [(today - timedelta(days=idx), 125.0) for idx in range(10)]
    )

    assert authed_client.get("/api/leaderboard").json() == []

    updated = authed_client.put(
        "/api/user/sharing-preferences",
        json={"share_daily_returns": True, "share_full_portfolio": False},
    )
    assert updated.status_code == 200

    authed_client.post("/api/logout")
    board = client.get("/api/leaderboard", params={"days": 7}).json()
    assert len(board) == 1
    assert board[0]["rank"] == 1
    assert board[0]["username"] == "tester"
    assert board[0]["current_return_pct"] == pytest.approx(25.0)
    assert len(board[0]["performance_series"]) == 4
    assert all(point["holdings"] is None for point in board[0]["performance_series"])


def test_stock_price_resolves_asset_labels(client, mock_provider) -> None:
    mock_provider.set_latest("GLD", 191.5)

    response = client.get("/api/stock/price/gold")
    assert response.status_code == 200
    body = response.json()
    assert body["symbol"] == "GOLD"
    assert body["market_symbol"] == "GLD"
    assert body["proxy_used"] is True
    assert body["price"] == pytest.approx(191.5)

    assert client.get("/api/stock/price/UNKNOWN").status_code == 404


def test_benchmark_returns_relative_to_window_start(client, mock_provider) -> None:
    today = datetime.now(timezone.utc).date()
    mock_provider.set_history(
        "^GSPC",
        [(today - timedelta(days=10), 4000.0), (today - timedelta(days=1), 4400.0)],
    )

    response = client.get("/api/market/benchmark", params={"days": 7})
    assert response.status_code == 200
    points = response.json()
    assert len(points) == 8
    assert points[0]["close"] == pytest.approx(4000.0)
    assert points[0]["return_pct"] == pytest.approx(0.0)
    assert points[-1]["return_pct"] == pytest.approx(10.0)


def test_benchmark_without_data_is_not_found(client) -> None:
    assert client.get("/api/market/benchmark").status_code == 404


def test_sharing_changes_persist(authed_client, db_session_factory) -> None:
    authed_client.put(
        "/api/user/sharing-preferences",
        json={"share_daily_returns": True, "share_full_portfolio": True},
    )

    with db_session_factory() as db:
        user = db.scalar(select(User).where(User.username == "tester"))
        assert user.share_daily_returns is True
        assert user.share_full_portfolio is True
