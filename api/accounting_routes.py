"""
Accounting API Routes
=====================
Server cost and server consumption over a time window.

Scope precedence: ``all`` > ``project`` > ``user`` > ``server`` > the
requesting user.  ``end`` defaults to now and ``begin`` to the start of
the current year.

RBAC
----
  - all      → admin only
  - project  → admin or master of the project
  - user     → admin, the user, or master of the user's project
  - server   → same as the user owning the server
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional, Tuple

from fastapi import APIRouter, Depends, Query

import queries
from auth import (
    require_admin_user, require_authentication, require_master_user_or_return_not_found,
    require_user_or_project_master_or_not_found,
)
from budget_over_tree import start_of_year
from db_pool import get_connection
from errors import NotFoundError, ValidationError
from models import User
from server_consumption import (
    as_utc, calculate_server_consumption_for_all, calculate_server_consumption_for_project,
    calculate_server_consumption_for_server, calculate_server_consumption_for_user, utcnow,
)
from server_cost import (
    calculate_server_cost_for_all, calculate_server_cost_for_project,
    calculate_server_cost_for_server, calculate_server_cost_for_user,
)

logger = logging.getLogger("billing.accounting")

router = APIRouter(prefix="/api/accounting", tags=["accounting"])


def resolve_window(
    begin: Optional[datetime], end: Optional[datetime],
) -> Tuple[datetime, datetime]:
    end = as_utc(end) if end is not None else utcnow()
    begin = as_utc(begin) if begin is not None else start_of_year(utcnow().year)
    if begin > end:
        raise ValidationError("begin must not be after end")
    return begin, end


def authorize_server(conn, user: User, server_uuid: str) -> None:
    """The server's owner decides who may see it; unknown servers are not found."""
    states = queries.select_server_states_by_server(conn, server_uuid)
    if not states:
        raise NotFoundError()
    owner = queries.select_user(conn, states[0].user)
    require_user_or_project_master_or_not_found(user, owner.id, owner.project)


def authorize_user(conn, user: User, user_id: int) -> None:
    queried = queries.select_user(conn, user_id)
    require_user_or_project_master_or_not_found(user, user_id, queried.project)


# ---------------------------------------------------------------------------
# Server cost
# ---------------------------------------------------------------------------

@router.get("/servercost")
async def server_cost(
    begin: Optional[datetime] = Query(None, description="Window start, default start of year"),
    end: Optional[datetime] = Query(None, description="Window end, default now"),
    server: Optional[str] = Query(None, description="Server (instance) UUID"),
    user_id: Optional[int] = Query(None, alias="user"),
    project: Optional[int] = Query(None),
    all_: bool = Query(False, alias="all"),
    detail: bool = Query(False, description="Break the cost down per flavor and child"),
    user: User = Depends(require_authentication),
):
    """Monetary cost of a server, user, project or the whole cloud."""
    begin, end = resolve_window(begin, end)
    with get_connection() as conn:
        if all_:
            require_admin_user(user)
            cost = calculate_server_cost_for_all(conn, begin, end, detail)
        elif project is not None:
            require_master_user_or_return_not_found(user, project)
            cost = calculate_server_cost_for_project(conn, project, begin, end, detail)
        elif user_id is not None:
            authorize_user(conn, user, user_id)
            cost = calculate_server_cost_for_user(conn, user_id, begin, end, detail)
        elif server is not None:
            authorize_server(conn, user, server)
            cost = calculate_server_cost_for_server(conn, server, begin, end, detail)
        else:
            cost = calculate_server_cost_for_user(conn, user.id, begin, end, detail)

    logger.debug(
        "Server cost for %s: %.4f (%s)", user.name, cost.total, cost.variant,
        extra={"user": user.name, "begin": begin, "end": end},
    )
    return cost


# ---------------------------------------------------------------------------
# Server consumption
# ---------------------------------------------------------------------------

@router.get("/serverconsumption")
async def server_consumption(
    begin: Optional[datetime] = Query(None, description="Window start, default start of year"),
    end: Optional[datetime] = Query(None, description="Window end, default now"),
    server: Optional[str] = Query(None, description="Server (instance) UUID"),
    user_id: Optional[int] = Query(None, alias="user"),
    project: Optional[int] = Query(None),
    all_: bool = Query(False, alias="all"),
    detail: bool = Query(False, description="Nest the seconds per child"),
    user: User = Depends(require_authentication),
):
    """Seconds of use per flavor of a server, user, project or the whole cloud."""
    begin, end = resolve_window(begin, end)
    with get_connection() as conn:
        if all_:
            require_admin_user(user)
            return calculate_server_consumption_for_all(conn, begin, end, detail)
        if project is not None:
            require_master_user_or_return_not_found(user, project)
            return calculate_server_consumption_for_project(conn, project, begin, end, detail)
        if user_id is not None:
            authorize_user(conn, user, user_id)
            return calculate_server_consumption_for_user(conn, user_id, begin, end, detail)
        if server is not None:
            authorize_server(conn, user, server)
            return calculate_server_consumption_for_server(conn, server, begin, end)
        return calculate_server_consumption_for_user(conn, user.id, begin, end, detail)
