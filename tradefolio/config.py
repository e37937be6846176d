from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    """Application configuration loaded from environment variables."""

    app_name: str = os.getenv("APP_NAME", "Tradefolio")
    secret_key: str = os.getenv("SECRET_KEY", "change-me-in-production")
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./tradefolio.db")
    quote_ttl_seconds: int = int(os.getenv("QUOTE_TTL_SECONDS", "60"))
    session_cookie_name: str = os.getenv("SESSION_COOKIE_NAME", "tradefolio_session")
    session_https_only: bool = (
        os.getenv("SESSION_HTTPS_ONLY", "false").lower() == "true"
    )
    sqlite_busy_timeout_ms: int = int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "30000"))
    sqlite_journal_mode: str = os.getenv("SQLITE_JOURNAL_MODE", "WAL")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Market data
    market_data_provider: str = os.getenv("MARKET_DATA_PROVIDER", "chart")
    market_data_base_url: str = os.getenv(
        "MARKET_DATA_BASE_URL", "https://query1.finance.yahoo.com"
    )
    market_data_timeout_seconds: float = float(
        os.getenv("MARKET_DATA_TIMEOUT_SECONDS", "8")
    )

    # Historical price cache
    history_buffer_days: int = int(os.getenv("HISTORY_BUFFER_DAYS", "5"))
    min_fetch_range_days: int = int(os.getenv("MIN_FETCH_RANGE_DAYS", "30"))
    price_coverage_mode: str = os.getenv("PRICE_COVERAGE_MODE", "any")
    coverage_grace_days: int = int(os.getenv("COVERAGE_GRACE_DAYS", "5"))
    backfill_max_workers: int = int(os.getenv("BACKFILL_MAX_WORKERS", "4"))

    leaderboard_window_days: int = int(os.getenv("LEADERBOARD_WINDOW_DAYS", "30"))
    benchmark_symbol: str = os.getenv("BENCHMARK_SYMBOL", "^GSPC")


settings = Settings()
