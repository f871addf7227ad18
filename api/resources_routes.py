"""
Resources API Routes
====================
Flavor group usage of a user, a project or everyone.  Admin only.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from auth import require_admin_user, require_authentication
from db_pool import get_connection
from flavor_group_usage import (
    calculate_flavor_group_usage_for_all, calculate_flavor_group_usage_for_project,
    calculate_flavor_group_usage_for_user,
)
from models import User

router = APIRouter(prefix="/api/resources", tags=["resources"])


@router.get("/flavorgroups/usage")
async def flavor_group_usage(
    user_id: Optional[int] = Query(None, alias="user"),
    project: Optional[int] = Query(None),
    all_: bool = Query(False, alias="all"),
    aggregate: bool = Query(False, description="Sum the usage over all users"),
    user: User = Depends(require_authentication),
):
    require_admin_user(user)
    with get_connection() as conn:
        if all_:
            return await calculate_flavor_group_usage_for_all(conn, aggregate)
        if project is not None:
            return await calculate_flavor_group_usage_for_project(conn, project, aggregate)
        return await calculate_flavor_group_usage_for_user(
            conn, user_id if user_id is not None else user.id, aggregate,
        )
