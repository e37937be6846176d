from __future__ import annotations

import logging
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, Protocol

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from tradefolio.config import settings
from tradefolio.db import dialect_insert
from tradefolio.models import HistoricalPrice
from tradefolio.services.pricing import FetchResult, PriceBar, PricingService
from tradefolio.services.symbols import resolve_market_symbol

logger = logging.getLogger(__name__)

COVERAGE_ANY = "any"
COVERAGE_EDGES = "edges"


class PriceStore(Protocol):
    """Storage for daily closes keyed by (market symbol, date)."""

    def has_rows(self, symbol: str, start: date, end: date) -> bool:
        ...

    def date_bounds(self, symbol: str, start: date, end: date) -> tuple[date, date] | None:
        ...

    def latest_close(self, symbol: str, on_or_before: date) -> float | None:
        ...

    def closes_between(self, symbol: str, start: date, end: date) -> dict[date, float]:
        ...

    def insert_bars(self, symbol: str, bars: Iterable[PriceBar]) -> int:
        ...

    def count(self, symbol: str | None = None) -> int:
        ...


class SqlPriceStore:
    """Price store backed by the ``historical_prices`` table."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def has_rows(self, symbol: str, start: date, end: date) -> bool:
        row_id = self.db.scalar(
            select(HistoricalPrice.id)
            .where(
                HistoricalPrice.symbol == symbol,
                HistoricalPrice.price_date >= start,
                HistoricalPrice.price_date <= end,
            )
            .limit(1)
        )
        return row_id is not None

    def date_bounds(self, symbol: str, start: date, end: date) -> tuple[date, date] | None:
        first, last = self.db.execute(
            select(func.min(HistoricalPrice.price_date), func.max(HistoricalPrice.price_date)).where(
                HistoricalPrice.symbol == symbol,
                HistoricalPrice.price_date >= start,
                HistoricalPrice.price_date <= end,
            )
        ).one()
        if first is None or last is None:
            return None
        return first, last

    def latest_close(self, symbol: str, on_or_before: date) -> float | None:
        close = self.db.scalar(
            select(HistoricalPrice.close)
            .where(
                HistoricalPrice.symbol == symbol,
                HistoricalPrice.price_date <= on_or_before,
            )
            .order_by(HistoricalPrice.price_date.desc())
            .limit(1)
        )
        return float(close) if close is not None else None

    def closes_between(self, symbol: str, start: date, end: date) -> dict[date, float]:
        rows = self.db.execute(
            select(HistoricalPrice.price_date, HistoricalPrice.close)
            .where(
                HistoricalPrice.symbol == symbol,
                HistoricalPrice.price_date >= start,
                HistoricalPrice.price_date <= end,
            )
            .order_by(HistoricalPrice.price_date.asc())
        )
        return {price_date: float(close) for price_date, close in rows}

    def insert_bars(self, symbol: str, bars: Iterable[PriceBar]) -> int:
        rows = [
            {
                "symbol": symbol,
                "price_date": bar.date,
                "open": bar.open,
                "close": bar.close,
                "high": bar.high,
                "low": bar.low,
                "volume": bar.volume,
            }
            for bar in bars
            if bar.close is not None and bar.close > 0
        ]
        if not rows:
            return 0

        before = self.count(symbol)
        stmt = dialect_insert(self.db, HistoricalPrice.__table__).on_conflict_do_nothing(
            index_elements=["symbol", "price_date"]
        )
        self.db.execute(stmt, rows)
        return self.count(symbol) - before

    def count(self, symbol: str | None = None) -> int:
        query = select(func.count(HistoricalPrice.id))
        if symbol is not None:
            query = query.where(HistoricalPrice.symbol == symbol)
        return int(self.db.scalar(query) or 0)


@dataclass
class BackfillOutcome:
    symbol: str
    market_symbol: str
    already_covered: bool = False
    fetched: bool = False
    inserted: int = 0
    error: str | None = None


class HistoricalPriceCache:
    """Best-effort, on-demand backfill of daily closes into a price store."""

    def __init__(
        self,
        store: PriceStore,
        pricing_service: PricingService,
        buffer_days: int = 5,
        coverage_mode: str = COVERAGE_ANY,
        coverage_grace_days: int = 5,
        max_workers: int = 4,
    ) -> None:
        if coverage_mode not in (COVERAGE_ANY, COVERAGE_EDGES):
            raise ValueError(f"Unknown coverage mode: {coverage_mode}")
        self.store = store
        self.pricing_service = pricing_service
        self.buffer_days = max(buffer_days, 0)
        self.coverage_mode = coverage_mode
        self.coverage_grace_days = max(coverage_grace_days, 0)
        self.max_workers = max(max_workers, 1)

    def is_covered(self, market_symbol: str, start: date, end: date) -> bool:
        if self.coverage_mode == COVERAGE_ANY:
            return self.store.has_rows(market_symbol, start, end)

        grace = timedelta(days=self.coverage_grace_days)
        bounds = self.store.date_bounds(market_symbol, start - grace, end)
        if bounds is None:
            return False
        first, last = bounds
        return first <= start + grace and last >= end - grace

    def ensure_range(self, symbol: str, start: date, end: date) -> BackfillOutcome:
        """Make sure daily closes for ``[start, end]`` are cached, if they can be fetched."""
        market_symbol = resolve_market_symbol(symbol)
        outcomes = self.ensure_ranges({symbol: (start, end)})
        return outcomes.get(
            market_symbol, BackfillOutcome(symbol=symbol, market_symbol=market_symbol)
        )

    def ensure_ranges(
        self,
        windows: Mapping[str, tuple[date, date]],
    ) -> dict[str, BackfillOutcome]:
        """Backfill several symbols, fetching the uncovered ones concurrently.

        Results are keyed by market symbol. Windows for labels that resolve to
        the same market symbol are merged.
        """
        merged: dict[str, tuple[date, date]] = {}
        labels: dict[str, str] = {}
        for symbol, (start, end) in windows.items():
            if start > end:
                continue
            market_symbol = resolve_market_symbol(symbol)
            labels.setdefault(market_symbol, symbol)
            if market_symbol in merged:
                prev_start, prev_end = merged[market_symbol]
                merged[market_symbol] = (min(prev_start, start), max(prev_end, end))
            else:
                merged[market_symbol] = (start, end)

        outcomes: dict[str, BackfillOutcome] = {}
        pending: list[tuple[str, date, date]] = []
        for market_symbol, (start, end) in sorted(merged.items()):
            outcome = BackfillOutcome(symbol=labels[market_symbol], market_symbol=market_symbol)
            outcomes[market_symbol] = outcome
            if self.is_covered(market_symbol, start, end):
                outcome.already_covered = True
            else:
                pending.append((market_symbol, start, end))

        if not pending:
            return outcomes

        for market_symbol, start, end, result in self._fetch_all(pending):
            self._store_result(outcomes[market_symbol], result, end)

        return outcomes

    def _fetch_all(
        self,
        pending: list[tuple[str, date, date]],
    ) -> list[tuple[str, date, date, FetchResult]]:
        def fetch(item: tuple[str, date, date]) -> tuple[str, date, date, FetchResult]:
            market_symbol, start, end = item
            fetch_start = start - timedelta(days=self.buffer_days)
            return market_symbol, start, end, self.pricing_service.fetch_daily_bars(
                market_symbol, fetch_start, end
            )

        if len(pending) == 1:
            return [fetch(pending[0])]

        workers = min(self.max_workers, len(pending))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="price-backfill") as pool:
            return list(pool.map(fetch, pending))

    def _store_result(self, outcome: BackfillOutcome, result: FetchResult, end: date) -> None:
        if not result.ok:
            outcome.error = result.error
            logger.warning(
                "Price backfill failed for %s (%s): %s",
                outcome.market_symbol,
                outcome.symbol,
                result.error,
            )
            return

        outcome.fetched = True
        bars = [bar for bar in result.bars if bar.date <= end]
        if not bars:
            logger.info("No daily bars returned for %s", outcome.market_symbol)
            return
        outcome.inserted = self.store.insert_bars(outcome.market_symbol, bars)
        logger.debug(
            "Cached %d new closes for %s (%d fetched)",
            outcome.inserted,
            outcome.market_symbol,
            len(bars),
        )


def build_price_cache(db: Session, pricing_service: PricingService) -> HistoricalPriceCache:
    """Create a request-scoped cache over the SQL store using configured policy."""
    return HistoricalPriceCache(
        store=SqlPriceStore(db),
        pricing_service=pricing_service,
        buffer_days=settings.history_buffer_days,
        coverage_mode=settings.price_coverage_mode.strip().lower(),
        coverage_grace_days=settings.coverage_grace_days,
        max_workers=settings.backfill_max_workers,
    )
