"""
Budget over tree

Year-to-date cost of a scope next to the budgets for the same year.  A
node is ``over`` once its cost reaches its budget amount; nodes without a
budget are never over.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, Optional

import queries
from errors import NotFoundError
from models import (
    BudgetOverTree, BudgetOverTreeProject, BudgetOverTreeServer,
    BudgetOverTreeUser, ProjectBudget, ServerCostProject, ServerCostUser,
    UserBudget,
)
from server_cost import (
    calculate_server_cost_for_all_detail, calculate_server_cost_for_project_detail,
)

logger = logging.getLogger("billing.budgeting")


def start_of_year(year: int) -> datetime:
    return datetime(year, 1, 1, tzinfo=timezone.utc)


def _project_node(
    cost: ServerCostProject, budget: Optional[ProjectBudget],
) -> BudgetOverTreeProject:
    node = BudgetOverTreeProject(cost=cost.total, flavors=cost.flavors)
    if budget is not None:
        node.budget_id = budget.id
        node.budget = budget.amount
        node.over = cost.total >= budget.amount
    return node


def _user_node(cost: ServerCostUser, budget: Optional[UserBudget]) -> BudgetOverTreeUser:
    node = BudgetOverTreeUser(
        cost=cost.total,
        flavors=cost.flavors,
        servers={
            server_uuid: BudgetOverTreeServer(total=server.total, flavors=server.flavors)
            for server_uuid, server in cost.servers.items()
        },
    )
    if budget is not None:
        node.budget_id = budget.id
        node.budget = budget.amount
        node.over = cost.total >= budget.amount
    return node


def budget_over_tree_for_user(conn, user_id: int, end: datetime) -> BudgetOverTree:
    year = end.year
    begin = start_of_year(year)
    user = queries.select_user(conn, user_id)
    project_budget = queries.select_maybe_project_budget_by_project_and_year(
        conn, user.project, year,
    )
    user_budget = queries.select_maybe_user_budget_by_user_and_year(conn, user.id, year)
    project_cost = calculate_server_cost_for_project_detail(conn, user.project, begin, end)

    project_node = _project_node(project_cost, project_budget)
    user_cost = project_cost.users.get(user.name)
    if user_cost is not None:
        project_node.users[user.name] = _user_node(user_cost, user_budget)

    return BudgetOverTree(
        cost=project_cost.total,
        projects={user.project_name: project_node},
    )


def budget_over_tree_for_project(conn, project_id: int, end: datetime) -> BudgetOverTree:
    year = end.year
    begin = start_of_year(year)
    project = queries.select_maybe_project(conn, project_id)
    if project is None:
        raise NotFoundError()
    project_budget = queries.select_maybe_project_budget_by_project_and_year(
        conn, project_id, year,
    )
    user_budgets: Dict[str, UserBudget] = {
        budget.username: budget
        for budget in queries.select_user_budgets_by_project_and_year(conn, project_id, year)
    }
    project_cost = calculate_server_cost_for_project_detail(conn, project_id, begin, end)

    project_node = _project_node(project_cost, project_budget)
    for username, user_cost in project_cost.users.items():
        project_node.users[username] = _user_node(user_cost, user_budgets.get(username))

    return BudgetOverTree(
        cost=project_cost.total,
        projects={project.name: project_node},
    )


def budget_over_tree_for_all(conn, end: datetime) -> BudgetOverTree:
    year = end.year
    begin = start_of_year(year)
    project_budgets = {
        budget.project_name: budget
        for budget in queries.select_project_budgets_by_year(conn, year)
    }
    user_budgets = {
        budget.username: budget
        for budget in queries.select_user_budgets_by_year(conn, year)
    }
    all_cost = calculate_server_cost_for_all_detail(conn, begin, end)

    tree = BudgetOverTree(cost=all_cost.total, flavors=all_cost.flavors)
    for project_name, project_cost in all_cost.projects.items():
        project_node = _project_node(project_cost, project_budgets.get(project_name))
        for username, user_cost in project_cost.users.items():
            project_node.users[username] = _user_node(user_cost, user_budgets.get(username))
        tree.projects[project_name] = project_node

    over = sum(1 for node in tree.projects.values() if node.over)
    logger.debug("Budget over tree for %d: %d project(s), %d over", year, len(tree.projects), over)
    return tree
