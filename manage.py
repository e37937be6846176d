from __future__ import annotations

import argparse
import getpass
from datetime import date, timedelta

from sqlalchemy import select

from tradefolio import default_pricing_service
from tradefolio.db import SessionLocal, init_db, session_scope
from tradefolio.logging_config import setup_logging
from tradefolio.models import User, utc_today
from tradefolio.security import clean_username, hash_password
from tradefolio.services.holdings import load_user_transactions
from tradefolio.services.leaderboard import build_leaderboard
from tradefolio.services.performance import price_windows
from tradefolio.services.price_cache import build_price_cache
from tradefolio.services.pricing import PricingService
from tradefolio.services.snapshots import capture_all_snapshots


def create_user(username: str) -> int:
    """Create one user with a securely hashed password."""
    username = clean_username(username)
    password_hash = hash_password(getpass.getpass(prompt="Password: "))

    with session_scope(SessionLocal) as db:
        existing = db.scalar(select(User).where(User.username == username))
        if existing:
            raise ValueError(f"User '{username}' already exists")

        user = User(username=username, password_hash=password_hash)
        db.add(user)
        db.flush()
        return user.id


def set_sharing(username: str, share_daily_returns: bool, share_full_portfolio: bool) -> None:
    """Update a user's leaderboard opt-in flags."""
    with session_scope(SessionLocal) as db:
        user = db.scalar(select(User).where(User.username == username))
        if user is None:
            raise ValueError(f"User '{username}' does not exist")
        user.share_daily_returns = share_daily_returns
        user.share_full_portfolio = share_full_portfolio


def backfill_prices(pricing_service: PricingService, days: int) -> int:
    """Warm the price cache for every symbol any user held over the last N days."""
    today = utc_today()
    start = today - timedelta(days=days)
    with session_scope(SessionLocal) as db:
        windows: dict[str, tuple[date, date]] = {}
        for user_id in db.scalars(select(User.id)):
            windows.update(price_windows(load_user_transactions(db, user_id), start, today))
        outcomes = build_price_cache(db, pricing_service).ensure_ranges(windows)
    return sum(outcome.inserted for outcome in outcomes.values())


def capture_snapshots(pricing_service: PricingService) -> int:
    """Nightly job: store today's snapshot for every user with a ledger."""
    with session_scope(SessionLocal) as db:
        return capture_all_snapshots(db, pricing_service, build_price_cache(db, pricing_service))


def print_leaderboard(pricing_service: PricingService, days: int) -> None:
    with session_scope(SessionLocal) as db:
        rows = [
            (entry.username, entry.current_return_pct)
            for entry in build_leaderboard(db, build_price_cache(db, pricing_service), window_days=days)
        ]
    for rank, (username, return_pct) in enumerate(rows, start=1):
        print(f"{rank:>3}. {username:<24} {return_pct:>8.2f}%")


def main() -> None:
    parser = argparse.ArgumentParser(description="Tradefolio management commands")
    sub = parser.add_subparsers(dest="command", required=True)

    create_user_parser = sub.add_parser("create-user", help="Create a login user")
    create_user_parser.add_argument(
        "--username", required=True, help="Username for the new user"
    )

    sharing_parser = sub.add_parser("set-sharing", help="Set leaderboard sharing flags")
    sharing_parser.add_argument("--username", required=True)
    sharing_parser.add_argument("--daily-returns", action="store_true")
    sharing_parser.add_argument("--full-portfolio", action="store_true")

    backfill_parser = sub.add_parser(
        "backfill-prices", help="Fetch historical closes for all held symbols"
    )
    backfill_parser.add_argument("--days", type=int, default=30)

    sub.add_parser("capture-snapshots", help="Store today's snapshot for every user")

    leaderboard_parser = sub.add_parser("leaderboard", help="Print the current leaderboard")
    leaderboard_parser.add_argument("--days", type=int, default=30)

    args = parser.parse_args()

    setup_logging()
    init_db()

    if args.command == "create-user":
        user_id = create_user(args.username)
        print(f"Created user id={user_id} username={args.username}")
    elif args.command == "set-sharing":
        set_sharing(args.username, args.daily_returns, args.full_portfolio)
        print(f"Updated sharing preferences for {args.username}")
    elif args.command == "backfill-prices":
        if args.days < 0:
            parser.error("--days must be zero or greater")
        inserted = backfill_prices(default_pricing_service(), args.days)
        print(f"Cached {inserted} new daily close(s)")
    elif args.command == "capture-snapshots":
        written = capture_snapshots(default_pricing_service())
        print(f"Captured {written} snapshot(s)")
    elif args.command == "leaderboard":
        print_leaderboard(default_pricing_service(), args.days)


if __name__ == "__main__":
    main()
