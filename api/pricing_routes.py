"""
Pricing API Routes
==================
Flavor price listing, optionally restricted to one user class and/or to
the prices in effect right now.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

import queries
from auth import require_authentication
from db_pool import get_connection
from models import FlavorPrice, User, UserClass
from server_consumption import utcnow

logger = logging.getLogger("billing.pricing")

router = APIRouter(prefix="/api/pricing", tags=["pricing"])


@router.get("/flavorprices", response_model=List[FlavorPrice])
async def flavor_price_list(
    user_class: Optional[int] = Query(None, ge=0, le=6, description="Only this user class"),
    current: bool = Query(False, description="Only prices in effect now"),
    user: User = Depends(require_authentication),
):
    with get_connection() as conn:
        if current:
            now = utcnow()
            if user_class is not None:
                prices = queries.select_flavor_prices_for_userclass_and_period(
                    conn, UserClass(user_class), now, now,
                )
            else:
                prices = queries.select_flavor_prices_for_period(conn, now, now)
        elif user_class is not None:
            prices = queries.select_flavor_prices_for_userclass(conn, UserClass(user_class))
        else:
            prices = queries.select_all_flavor_prices(conn)
    logger.debug("Listed %d flavor price(s) for %s", len(prices), user.name)
    return prices
