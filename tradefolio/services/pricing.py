from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Protocol

import httpx
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tradefolio.models import QuoteCache
from tradefolio.services.symbols import resolve_market_symbol

logger = logging.getLogger(__name__)


@dataclass
class QuoteResult:
    symbol: str
    price: float
    fetched_at: datetime
    previous_close: float | None = None
    stale: bool = False
    warning: str | None = None


@dataclass
class PriceBar:
    date: date
    close: float
    open: float | None = None
    high: float | None = None
    low: float | None = None
    volume: float | None = None


@dataclass
class FetchResult:
    """Outcome of one historical fetch; ``error`` is set instead of raising."""

    symbol: str
    bars: list[PriceBar] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class MarketDataError(Exception):
    """Raised by providers when a payload cannot be fetched or understood."""


class MarketDataProvider(Protocol):
    """Provider interface for live quotes and daily OHLCV history."""

    def get_latest_quote(self, symbol: str) -> QuoteResult:
        ...

    def fetch_daily_bars(self, symbol: str, start: date, end: date) -> list[PriceBar]:
        ...


def _optional_float(values: list[Any] | None, idx: int) -> float | None:
    if not values or idx >= len(values) or values[idx] is None:
        return None
    return float(values[idx])


class YahooChartProvider:
    """Daily chart endpoint client (``/v8/finance/chart/{symbol}``)."""

    def __init__(
        self,
        base_url: str = "https://query1.finance.yahoo.com",
        timeout: float = 8.0,
        min_range_days: int = 30,
        client: httpx.Client | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.min_range_days = min_range_days
        self._client = client

    def _get_chart(self, symbol: str, range_param: str) -> dict[str, Any]:
        url = f"{self.base_url}/v8/finance/chart/{symbol}"
        params = {"interval": "1d", "range": range_param}
        headers = {"User-Agent": "Mozilla/5.0 (tradefolio)"}
        try:
            if self._client is not None:
                response = self._client.get(url, params=params, headers=headers, timeout=self.timeout)
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    response = client.get(url, params=params, headers=headers)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as exc:
            raise MarketDataError(f"Chart request failed for {symbol}: {exc}") from exc
        except ValueError as exc:
            raise MarketDataError(f"Chart payload for {symbol} is not JSON") from exc

        results = (payload.get("chart") or {}).get("result") if isinstance(payload, dict) else None
        if not results:
            raise MarketDataError(f"No chart result for {symbol}")
        return results[0]

    def get_latest_quote(self, symbol: str) -> QuoteResult:
        result = self._get_chart(symbol, "1d")
        meta = result.get("meta") or {}
        price = meta.get("regularMarketPrice")
        previous_close = meta.get("previousClose", meta.get("chartPreviousClose"))
        if price is None:
            price = previous_close
        if price is None:
            raise MarketDataError(f"No quote price found for {symbol}")
        return QuoteResult(
            symbol=symbol.upper(),
            price=float(price),
            fetched_at=datetime.now(timezone.utc),
            previous_close=float(previous_close) if previous_close is not None else None,
        )

    def fetch_daily_bars(self, symbol: str, start: date, end: date) -> list[PriceBar]:
        # The chart range is anchored at today, so span back to the requested start.
        today = datetime.now(timezone.utc).date()
        range_days = max((today - start).days + 1, (end - start).days + 1, self.min_range_days)
        result = self._get_chart(symbol, f"{range_days}d")

        timestamps = result.get("timestamp") or []
        quotes = ((result.get("indicators") or {}).get("quote") or [{}])[0]
        closes = quotes.get("close") or []
        if timestamps and not closes:
            raise MarketDataError(f"Chart for {symbol} has timestamps but no closes")

        bars: list[PriceBar] = []
        for idx, ts in enumerate(timestamps):
            close = _optional_float(closes, idx)
            if close is None or close <= 0:
                continue
            bar_date = datetime.fromtimestamp(int(ts), tz=timezone.utc).date()
            if bar_date > end:
                continue
            bars.append(
                PriceBar(
                    date=bar_date,
                    close=close,
                    open=_optional_float(quotes.get("open"), idx),
                    high=_optional_float(quotes.get("high"), idx),
                    low=_optional_float(quotes.get("low"), idx),
                    volume=_optional_float(quotes.get("volume"), idx),
                )
            )
        return bars


class YFinanceProvider:
    """Best-effort provider backed by the free yfinance library."""

    def __init__(self, timeout: float = 8.0) -> None:
        try:
            import yfinance as yf
        except Exception as exc:  # pragma: no cover - exercised in runtime, not tests
            raise RuntimeError("yfinance is not available") from exc
        self._yf = yf
        self.timeout = timeout

    def get_latest_quote(self, symbol: str) -> QuoteResult:
        ticker = self._yf.Ticker(symbol)
        hist = ticker.history(period="5d", interval="1d", auto_adjust=False, timeout=self.timeout)
        if hist.empty:
            raise MarketDataError(f"No quote data found for {symbol}")

        close_series = hist["Close"].dropna()
        if close_series.empty:
            raise MarketDataError(f"No close data found for {symbol}")

        price = float(close_series.iloc[-1])
        previous_close = float(close_series.iloc[-2]) if len(close_series) > 1 else None
        return QuoteResult(
            symbol=symbol.upper(),
            price=price,
            fetched_at=datetime.now(timezone.utc),
            previous_close=previous_close,
        )

    def fetch_daily_bars(self, symbol: str, start: date, end: date) -> list[PriceBar]:
        ticker = self._yf.Ticker(symbol)
        # yfinance end date is exclusive, so shift by one day.
        hist = ticker.history(
            start=start.isoformat(),
            end=(end + timedelta(days=1)).isoformat(),
            interval="1d",
            auto_adjust=False,
            timeout=self.timeout,
        )
        if hist.empty:
            return []

        bars: list[PriceBar] = []
        for idx, row in hist.dropna(subset=["Close"]).iterrows():
            bar_date = idx.date() if hasattr(idx, "date") else idx
            bars.append(
                PriceBar(
                    date=bar_date,
                    close=float(row["Close"]),
                    open=float(row["Open"]),
                    high=float(row["High"]),
                    low=float(row["Low"]),
                    volume=float(row["Volume"]),
                )
            )
        return bars


def build_provider(name: str, base_url: str, timeout: float, min_range_days: int) -> MarketDataProvider:
    """Create the configured market-data provider."""
    if name.strip().lower() == "yfinance":
        return YFinanceProvider(timeout=timeout)
    return YahooChartProvider(base_url=base_url, timeout=timeout, min_range_days=min_range_days)


class PricingService:
    """Handles quote lookups with a database-backed cache and provider fallback."""

    def __init__(self, provider: MarketDataProvider, ttl_seconds: int = 60) -> None:
        self.provider = provider
        self.ttl_seconds = ttl_seconds

    def get_quote(self, db: Session, symbol: str) -> QuoteResult | None:
        clean_symbol = resolve_market_symbol(symbol)
        now = datetime.now(timezone.utc)

        cached = db.scalar(select(QuoteCache).where(QuoteCache.symbol == clean_symbol))
        cached_quote: QuoteResult | None = None
        if cached:
            cached_quote = QuoteResult(
                symbol=clean_symbol,
                price=float(cached.price),
                fetched_at=self._as_utc(cached.fetched_at),
                previous_close=cached.previous_close,
            )
            age_seconds = (now - cached_quote.fetched_at).total_seconds()
            if age_seconds <= self.ttl_seconds:
                return cached_quote

        try:
            fresh = self.provider.get_latest_quote(clean_symbol)
        except Exception as exc:
            logger.warning("Quote fetch failed for %s: %s", clean_symbol, exc)
            if cached_quote is not None:
                cached_quote.stale = True
                cached_quote.warning = f"Using cached quote due to provider issue: {exc}"
                return cached_quote
            return None

        fetched_at = self._as_utc(fresh.fetched_at)
        # Only the quote write is undone on failure; the caller's pending work stays.
        try:
            with db.begin_nested():
                if cached is None:
                    cached = QuoteCache(
                        symbol=clean_symbol,
                        price=fresh.price,
                        previous_close=fresh.previous_close,
                        fetched_at=fetched_at,
                    )
                    db.add(cached)
                else:
                    cached.price = fresh.price
                    cached.previous_close = fresh.previous_close
                    cached.fetched_at = fetched_at
        except SQLAlchemyError as exc:
            logger.warning("Quote cache write failed for %s: %s", clean_symbol, exc)
            if cached_quote is not None:
                cached_quote.stale = True
                cached_quote.warning = f"Using cached quote due to cache write issue: {exc}"
                return cached_quote
            return None

        return QuoteResult(
            symbol=clean_symbol,
            price=fresh.price,
            fetched_at=fetched_at,
            previous_close=fresh.previous_close,
        )

    def fetch_daily_bars(self, symbol: str, start: date, end: date) -> FetchResult:
        """Fetch daily bars, capturing any provider failure in the result."""
        market_symbol = symbol.strip().upper()
        try:
            bars = self.provider.fetch_daily_bars(market_symbol, start, end)
        except Exception as exc:
            return FetchResult(symbol=market_symbol, error=str(exc) or exc.__class__.__name__)
        return FetchResult(symbol=market_symbol, bars=list(bars))

    @staticmethod
    def _as_utc(value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
