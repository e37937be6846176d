from __future__ import annotations

import logging

from fastapi import FastAPI
from starlette.middleware.sessions import SessionMiddleware

from tradefolio.config import settings
from tradefolio.db import init_db
from tradefolio.logging_config import setup_logging
from tradefolio.routes import auth, competition, market, portfolio
from tradefolio.services.pricing import PricingService, build_provider

logger = logging.getLogger(__name__)


def default_pricing_service() -> PricingService:
    """Pricing service over the configured market-data provider."""
    provider = build_provider(
        settings.market_data_provider,
        base_url=settings.market_data_base_url,
        timeout=settings.market_data_timeout_seconds,
        min_range_days=settings.min_fetch_range_days,
    )
    return PricingService(provider=provider, ttl_seconds=settings.quote_ttl_seconds)


def create_app(
    pricing_service: PricingService | None = None,
    enable_startup_init: bool = True,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    setup_logging()
    app = FastAPI(title=settings.app_name)

    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.secret_key,
        session_cookie=settings.session_cookie_name,
        same_site="lax",
        https_only=settings.session_https_only,
        max_age=60 * 60 * 24 * 7,
    )

    app.state.pricing_service = pricing_service or default_pricing_service()

    app.include_router(auth.router)
    app.include_router(portfolio.router)
    app.include_router(competition.router)
    app.include_router(market.router)

    if enable_startup_init:

        @app.on_event("startup")
        def startup() -> None:
            init_db()
            logger.info("%s started with %s market data", settings.app_name, settings.market_data_provider)

    return app
