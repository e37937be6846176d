from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from tradefolio.config import settings
from tradefolio.db import get_db
from tradefolio.schemas import BenchmarkPointOut, QuoteOut
from tradefolio.services.benchmark import compute_benchmark_series
from tradefolio.services.price_cache import HistoricalPriceCache
from tradefolio.services.pricing import PricingService
from tradefolio.services.symbols import proxy_context
from tradefolio.web import get_price_cache, get_pricing_service

router = APIRouter(prefix="/api", tags=["market"])


@router.get("/stock/price/{symbol}", response_model=QuoteOut)
def stock_price(
    symbol: str,
    db: Session = Depends(get_db),
    pricing_service: PricingService = Depends(get_pricing_service),
):
    """Latest quote for a ticker or asset-class label."""
    # Drop exchange/share suffixes such as "SQ:1".
    clean = symbol.replace("/", ":").split(":")[0].strip().upper()
    context = proxy_context(clean)
    quote = pricing_service.get_quote(db, clean)
    db.commit()
    if quote is None:
        raise HTTPException(status_code=404, detail="Price not found")

    return QuoteOut(
        symbol=context.requested_symbol,
        market_symbol=context.market_symbol,
        proxy_used=context.proxy_used,
        price=quote.price,
        previous_close=quote.previous_close,
        as_of=quote.fetched_at,
        stale=quote.stale,
        warning=quote.warning,
    )


@router.get("/market/benchmark", response_model=list[BenchmarkPointOut])
def benchmark(
    days: int = Query(default=30, ge=1, le=3650),
    db: Session = Depends(get_db),
    price_cache: HistoricalPriceCache = Depends(get_price_cache),
):
    """Benchmark index return per calendar day over the trailing window."""
    points = compute_benchmark_series(price_cache, days=days, symbol=settings.benchmark_symbol)
    db.commit()
    if not points:
        raise HTTPException(status_code=404, detail="Benchmark data not found")
    return points
