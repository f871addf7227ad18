"""
Budgeting API Routes
====================
Budget over tree and budget modification.

A budget may not be lowered to or below the cost already incurred in its
year, and past years are frozen.  Admins can override both with
``force``.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query

import queries
from auth import (
    require_admin_user, require_authentication, require_master_user_or_return_not_found,
    require_user_or_project_master_or_not_found,
)
from budget_over_tree import (
    budget_over_tree_for_all, budget_over_tree_for_project, budget_over_tree_for_user,
    start_of_year,
)
from db_pool import get_connection
from errors import AuthorizationError, ValidationError
from models import (
    ProjectBudget, ProjectBudgetModifyData, User, UserBudget, UserBudgetModifyData,
)
from server_consumption import as_utc, utcnow
from server_cost import (
    calculate_server_cost_for_project_detail, calculate_server_cost_for_project_normal,
)

logger = logging.getLogger("billing.budgeting")

router = APIRouter(prefix="/api/budgeting", tags=["budgeting"])

COST_EXCEEDS_MESSAGE = "Cost already exceeds desired budget amount"
PAST_BUDGET_MESSAGE = "Changing past budgets not allowed"


@router.get("/budgetovertree")
async def budget_over_tree(
    end: Optional[datetime] = Query(None, description="Cut-off, default now"),
    project: Optional[int] = Query(None),
    user_id: Optional[int] = Query(None, alias="user"),
    all_: bool = Query(False, alias="all"),
    user: User = Depends(require_authentication),
):
    """Year-to-date cost against budgets for the year of ``end``."""
    end = as_utc(end) if end is not None else utcnow()
    with get_connection() as conn:
        if all_:
            require_admin_user(user)
            return budget_over_tree_for_all(conn, end)
        if project is not None:
            require_master_user_or_return_not_found(user, project)
            return budget_over_tree_for_project(conn, project, end)
        if user_id is not None:
            queried = queries.select_user(conn, user_id)
            require_user_or_project_master_or_not_found(user, user_id, queried.project)
            return budget_over_tree_for_user(conn, user_id, end)
        return budget_over_tree_for_user(conn, user.id, end)


def _check_modify_request(data, budget_id: int, user: User) -> None:
    if data.force:
        require_admin_user(user)
    if data.id != budget_id:
        raise ValidationError("ID in URL does not match ID in body")


@router.patch("/projectbudgets/{budget_id}", response_model=ProjectBudget)
async def project_budget_modify(
    data: ProjectBudgetModifyData,
    budget_id: int = Path(...),
    user: User = Depends(require_authentication),
):
    _check_modify_request(data, budget_id, user)
    with get_connection() as conn:
        budget = queries.select_project_budget(conn, budget_id)
        require_master_user_or_return_not_found(user, budget.project)

        now = utcnow()
        if budget.year < now.year and not data.force:
            raise AuthorizationError(PAST_BUDGET_MESSAGE)

        if data.amount is not None and not data.force:
            cost = calculate_server_cost_for_project_normal(
                conn, budget.project, start_of_year(now.year), now,
            )
            if data.amount <= cost.total:
                raise AuthorizationError(COST_EXCEEDS_MESSAGE)

        updated = queries.update_project_budget(conn, budget_id, data.amount)

    logger.info(
        "Project budget %d of %s modified by %s (force=%s)",
        budget_id, updated.project_name, user.name, data.force,
        extra={"user": user.name},
    )
    return updated


@router.patch("/userbudgets/{budget_id}", response_model=UserBudget)
async def user_budget_modify(
    data: UserBudgetModifyData,
    budget_id: int = Path(...),
    user: User = Depends(require_authentication),
):
    _check_modify_request(data, budget_id, user)
    with get_connection() as conn:
        budget = queries.select_user_budget(conn, budget_id)
        owner = queries.select_user(conn, budget.user)
        require_master_user_or_return_not_found(user, owner.project)

        now = utcnow()
        if budget.year < now.year and not data.force:
            raise AuthorizationError(PAST_BUDGET_MESSAGE)

        if data.amount is not None and not data.force:
            project_cost = calculate_server_cost_for_project_detail(
                conn, owner.project, start_of_year(budget.year), now,
            )
            project_budget = queries.select_maybe_project_budget_by_project_and_year(
                conn, owner.project, budget.year,
            )
            owner_cost = project_cost.users.get(owner.name)
            owner_total = owner_cost.total if owner_cost is not None else 0.0
            project_over = (
                project_budget is not None and project_budget.amount <= project_cost.total
            )
            if data.amount <= owner_total or project_over:
                raise AuthorizationError(COST_EXCEEDS_MESSAGE)

        updated = queries.update_user_budget(conn, budget_id, data.amount)

    logger.info(
        "User budget %d of %s modified by %s (force=%s)",
        budget_id, updated.username, user.name, data.force,
        extra={"user": user.name},
    )
    return updated
