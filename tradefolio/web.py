from __future__ import annotations

from fastapi import Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from tradefolio.db import get_db
from tradefolio.models import User
from tradefolio.services.price_cache import HistoricalPriceCache, build_price_cache
from tradefolio.services.pricing import PricingService


def get_user_from_session(request: Request, db: Session) -> User | None:
    """Load the authenticated user based on session state."""
    user_id = request.session.get("user_id")
    if not user_id:
        return None
    return db.scalar(select(User).where(User.id == int(user_id)))


def current_user(request: Request, db: Session = Depends(get_db)) -> User:
    """Dependency returning the logged-in user or failing with 401."""
    user = get_user_from_session(request, db)
    if user is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user


def get_pricing_service(request: Request) -> PricingService:
    return request.app.state.pricing_service


def get_price_cache(
    db: Session = Depends(get_db),
    pricing_service: PricingService = Depends(get_pricing_service),
) -> HistoricalPriceCache:
    """Request-scoped historical price cache bound to the request's session."""
    return build_price_cache(db, pricing_service)
