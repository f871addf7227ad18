"""
Flavor price periods

A price period is a point in time together with the complete price table
(user class -> flavor name -> unit price) that stays valid until the next
period starts, or until the end of the requested window for the last one.
"""

from __future__ import annotations

import copy
import logging
from datetime import datetime
from itertools import groupby
from typing import Dict, Iterable, Iterator, List, Tuple

import queries
from models import Flavor, FlavorPrice, UserClass

logger = logging.getLogger("billing.pricing")

Prices = Dict[UserClass, Dict[str, float]]
# Insertion ordered, therefore chronological
PricePeriods = Dict[datetime, Prices]


def _zero_prices(flavors: Iterable[Flavor]) -> Prices:
    names = [flavor.name for flavor in flavors]
    return {user_class: {name: 0.0 for name in names} for user_class in UserClass}


def _apply(prices: Prices, price: FlavorPrice) -> None:
    prices.setdefault(price.user_class, {})[price.flavor_name] = price.unit_price


def build_price_periods(
    flavors: Iterable[Flavor],
    flavor_prices: Iterable[FlavorPrice],
    begin: datetime,
) -> PricePeriods:
    """
    Build the chronological price periods starting at ``begin``.

    Every price that started at or before ``begin`` shapes the first
    period.  Each later distinct start time opens a new period; prices
    sharing a start time land in the same period.
    """
    current = _zero_prices(flavors)
    ordered = sorted(flavor_prices, key=lambda p: p.start_time)

    i = 0
    while i < len(ordered) and ordered[i].start_time <= begin:
        _apply(current, ordered[i])
        i += 1

    periods: PricePeriods = {begin: copy.deepcopy(current)}

    for start_time, changes in groupby(ordered[i:], key=lambda p: p.start_time):
        for price in changes:
            _apply(current, price)
        periods[start_time] = copy.deepcopy(current)

    return periods


def get_flavor_price_periods(conn, begin: datetime, end: datetime) -> PricePeriods:
    flavors = queries.select_all_flavors(conn)
    prices = queries.select_flavor_prices_for_period(conn, begin, end)
    periods = build_price_periods(flavors, prices, begin)
    logger.debug(
        "Built %d price period(s) for %s - %s from %d price(s)",
        len(periods), begin.isoformat(), end.isoformat(), len(prices),
    )
    return periods


def iter_periods(
    periods: PricePeriods, end: datetime,
) -> Iterator[Tuple[datetime, datetime, Prices]]:
    """Yield (period_start, period_end, prices) for every period."""
    starts: List[datetime] = list(periods)
    ends = starts[1:] + [end]
    for start_time, end_time in zip(starts, ends):
        yield start_time, end_time, periods[start_time]


SECONDS_PER_YEAR = 365 * 24 * 60 * 60


def calculate_flavor_consumption_cost(
    flavor_consumption: float,
    prices: Prices,
    user_class: UserClass,
    flavor_name: str,
) -> float:
    """Unit prices are per year of use; consumption is in seconds."""
    price = prices.get(user_class, {}).get(flavor_name)
    if price is None:
        return 0.0
    return flavor_consumption * price / SECONDS_PER_YEAR
