"""
Quota API Routes
================
Whether a user may start ``count`` more servers of a flavor without
exceeding the user's quota for the flavor's group.  Admin only.

Answers are cached per (username, flavor, count) for a few seconds since
the check is hammered by the scheduler while it places a batch.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from typing import Dict, Optional, Tuple

from fastapi import APIRouter, Depends, Query

import queries
from auth import require_admin_user, require_authentication
from db_pool import get_connection
from errors import ValidationError
from flavor_group_usage import flavor_group_usage_for_user
from models import Flavor, FlavorQuotaCheck, User

logger = logging.getLogger("billing.quota")

router = APIRouter(prefix="/api/quota", tags=["quota"])

CacheKey = Tuple[str, int, int]


class QuotaCheckCache:
    """Mutex guarded map of recent answers, stale entries dropped on read."""

    def __init__(self, ttl: float):
        self.ttl = ttl
        self._entries: Dict[CacheKey, Tuple[float, bool]] = {}
        self._lock = threading.Lock()

    def get(self, key: CacheKey) -> Optional[bool]:
        now = time.monotonic()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            stored_at, underquota = entry
            if now - stored_at > self.ttl:
                del self._entries[key]
                return None
            return underquota

    def put(self, key: CacheKey, underquota: bool) -> None:
        with self._lock:
            self._entries[key] = (time.monotonic(), underquota)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


quota_check_cache = QuotaCheckCache(float(os.getenv("QUOTA_CHECK_CACHE_TTL", "5")))


def check_flavor_quota(conn, user: User, flavor: Flavor, count: int) -> bool:
    if flavor.group is None:
        return False
    quota = queries.select_maybe_flavor_quota_by_user_and_group(conn, user.id, flavor.group)
    if quota is None:
        return False
    flavors = {f.id: f for f in queries.select_all_flavors(conn)}
    usage = next(
        (
            entry.usage
            for entry in flavor_group_usage_for_user(conn, user, flavors)
            if entry.flavorgroup_id == flavor.group
        ),
        0,
    )
    return usage + count * flavor.weight <= max(quota.quota, 0)


@router.get("/flavorquotas/check", response_model=FlavorQuotaCheck)
async def flavor_quota_check(
    flavor: int = Query(..., description="Flavor id"),
    user_id: Optional[int] = Query(None, alias="user"),
    openstackproject: Optional[str] = Query(None, description="OpenStack id of the user"),
    count: int = Query(1, ge=0),
    user: User = Depends(require_authentication),
):
    require_admin_user(user)
    if user_id is None and openstackproject is None:
        raise ValidationError("Neither user ID nor Openstack UUID provided.")

    with get_connection() as conn:
        if user_id is not None:
            checked = queries.select_user(conn, user_id)
        else:
            checked = queries.select_user_by_openstack_id(conn, openstackproject)

        key = (checked.name, flavor, count)
        underquota = quota_check_cache.get(key)
        if underquota is None:
            underquota = check_flavor_quota(conn, checked, queries.select_flavor(conn, flavor), count)
            quota_check_cache.put(key, underquota)
        else:
            logger.debug("Quota check cache hit for %s", key)

    return FlavorQuotaCheck(underquota=underquota)
