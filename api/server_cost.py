"""
Server cost

Cost of a flavor inside one price period is
``seconds * unit_price / SECONDS_PER_YEAR`` with the unit price of the
owning project's user class.  Every scope comes in two shapes:

* normal - ``ServerCostSimple{total}``
* detail - per-flavor maps at every level plus the nested children

Totals only ever accumulate positive costs; the detail flavor maps record
every computed cost, zero included.  When no user class can be resolved
the result is an empty cost of the requested shape.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Union

import queries
from models import (
    Project, ServerCostAll, ServerCostProject, ServerCostServer,
    ServerCostSimple, ServerCostUser, ServerState, UserClass,
)
from price_periods import (
    Prices, calculate_flavor_consumption_cost, get_flavor_price_periods,
    iter_periods,
)
from server_consumption import (
    consumption_for_all, consumption_for_project, consumption_for_server,
    consumption_for_user, utcnow,
)

logger = logging.getLogger("billing.cost")

ServerCostForServer = Union[ServerCostSimple, ServerCostServer]
ServerCostForUser = Union[ServerCostSimple, ServerCostUser]
ServerCostForProject = Union[ServerCostSimple, ServerCostProject]
ServerCostForAll = Union[ServerCostSimple, ServerCostAll]


def _add_flavor_cost(nodes: Iterable, flavor_name: str, cost: float) -> None:
    """Record ``cost`` on each detail node from the leaf up to the root."""
    for node in nodes:
        node.flavors[flavor_name] = node.flavors.get(flavor_name, 0.0) + cost
        if cost > 0:
            node.total += cost


def _add_total(
    cost: ServerCostSimple,
    consumption: Dict[str, float],
    prices: Prices,
    user_class: UserClass,
) -> None:
    for flavor_name, seconds in consumption.items():
        if seconds <= 0:
            continue
        flavor_cost = calculate_flavor_consumption_cost(
            seconds, prices, user_class, flavor_name,
        )
        if flavor_cost > 0:
            cost.total += flavor_cost


def _periods(conn, begin: datetime, end: datetime):
    return list(iter_periods(get_flavor_price_periods(conn, begin, end), end))


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------

def calculate_server_cost_for_server_normal(
    conn, server_uuid: str, begin: datetime, end: datetime,
) -> ServerCostSimple:
    cost = ServerCostSimple()
    user_class = queries.select_user_class_by_server(conn, server_uuid)
    if user_class is None:
        return cost
    now = utcnow()
    states = queries.select_ordered_server_states_by_server_begin_and_end(
        conn, server_uuid, begin, end,
    )
    for start_time, end_time, prices in _periods(conn, begin, end):
        consumption = consumption_for_server(states, start_time, end_time, now)
        _add_total(cost, consumption, prices, user_class)
    return cost


def calculate_server_cost_for_server_detail(
    conn, server_uuid: str, begin: datetime, end: datetime,
) -> ServerCostServer:
    cost = ServerCostServer()
    user_class = queries.select_user_class_by_server(conn, server_uuid)
    if user_class is None:
        return cost
    now = utcnow()
    states = queries.select_ordered_server_states_by_server_begin_and_end(
        conn, server_uuid, begin, end,
    )
    for start_time, end_time, prices in _periods(conn, begin, end):
        consumption = consumption_for_server(states, start_time, end_time, now)
        for flavor_name, seconds in consumption.items():
            flavor_cost = calculate_flavor_consumption_cost(
                seconds, prices, user_class, flavor_name,
            )
            _add_flavor_cost((cost,), flavor_name, flavor_cost)
    return cost


def calculate_server_cost_for_server(
    conn, server_uuid: str, begin: datetime, end: datetime, detail: bool = False,
) -> ServerCostForServer:
    if detail:
        return calculate_server_cost_for_server_detail(conn, server_uuid, begin, end)
    return calculate_server_cost_for_server_normal(conn, server_uuid, begin, end)


# ---------------------------------------------------------------------------
# User
# ---------------------------------------------------------------------------

def _user_cost_detail(
    cost: ServerCostUser,
    states: List[ServerState],
    periods,
    user_class: UserClass,
    now: datetime,
) -> None:
    for start_time, end_time, prices in periods:
        consumption = consumption_for_user(states, start_time, end_time, True, now)
        for server_uuid, server_consumption in consumption.servers.items():
            server_cost = cost.servers.setdefault(server_uuid, ServerCostServer())
            for flavor_name, seconds in server_consumption.items():
                flavor_cost = calculate_flavor_consumption_cost(
                    seconds, prices, user_class, flavor_name,
                )
                _add_flavor_cost((server_cost, cost), flavor_name, flavor_cost)


def calculate_server_cost_for_user_normal(
    conn, user_id: int, begin: datetime, end: datetime,
) -> ServerCostSimple:
    cost = ServerCostSimple()
    user_class = queries.select_user_class_by_user(conn, user_id)
    if user_class is None:
        return cost
    now = utcnow()
    states = queries.select_ordered_server_states_by_user_begin_and_end(
        conn, user_id, begin, end,
    )
    for start_time, end_time, prices in _periods(conn, begin, end):
        consumption = consumption_for_user(states, start_time, end_time, False, now)
        _add_total(cost, consumption, prices, user_class)
    return cost


def calculate_server_cost_for_user_detail(
    conn, user_id: int, begin: datetime, end: datetime,
) -> ServerCostUser:
    cost = ServerCostUser()
    user_class = queries.select_user_class_by_user(conn, user_id)
    if user_class is None:
        return cost
    states = queries.select_ordered_server_states_by_user_begin_and_end(
        conn, user_id, begin, end,
    )
    _user_cost_detail(cost, states, _periods(conn, begin, end), user_class, utcnow())
    return cost


def calculate_server_cost_for_user(
    conn, user_id: int, begin: datetime, end: datetime, detail: bool = False,
) -> ServerCostForUser:
    if detail:
        return calculate_server_cost_for_user_detail(conn, user_id, begin, end)
    return calculate_server_cost_for_user_normal(conn, user_id, begin, end)


# ---------------------------------------------------------------------------
# Project
# ---------------------------------------------------------------------------

def _project_cost_detail(
    cost: ServerCostProject,
    states: List[ServerState],
    periods,
    user_class: UserClass,
    now: datetime,
    parents: tuple = (),
) -> None:
    for start_time, end_time, prices in periods:
        consumption = consumption_for_project(states, start_time, end_time, True, now)
        for username, user_consumption in consumption.users.items():
            user_cost = cost.users.setdefault(username, ServerCostUser())
            for server_uuid, server_consumption in user_consumption.servers.items():
                server_cost = user_cost.servers.setdefault(server_uuid, ServerCostServer())
                for flavor_name, seconds in server_consumption.items():
                    flavor_cost = calculate_flavor_consumption_cost(
                        seconds, prices, user_class, flavor_name,
                    )
                    _add_flavor_cost(
                        (server_cost, user_cost, cost) + parents, flavor_name, flavor_cost,
                    )


def calculate_server_cost_for_project_normal(
    conn, project_id: int, begin: datetime, end: datetime,
) -> ServerCostSimple:
    cost = ServerCostSimple()
    user_class = queries.select_user_class_by_project(conn, project_id)
    if user_class is None:
        return cost
    now = utcnow()
    states = queries.select_ordered_server_states_by_project_begin_and_end(
        conn, project_id, begin, end,
    )
    for start_time, end_time, prices in _periods(conn, begin, end):
        consumption = consumption_for_project(states, start_time, end_time, False, now)
        _add_total(cost, consumption, prices, user_class)
    return cost


def calculate_server_cost_for_project_detail(
    conn, project_id: int, begin: datetime, end: datetime,
) -> ServerCostProject:
    cost = ServerCostProject()
    user_class = queries.select_user_class_by_project(conn, project_id)
    if user_class is None:
        return cost
    states = queries.select_ordered_server_states_by_project_begin_and_end(
        conn, project_id, begin, end,
    )
    _project_cost_detail(cost, states, _periods(conn, begin, end), user_class, utcnow())
    return cost


def calculate_server_cost_for_project(
    conn, project_id: int, begin: datetime, end: datetime, detail: bool = False,
) -> ServerCostForProject:
    if detail:
        return calculate_server_cost_for_project_detail(conn, project_id, begin, end)
    return calculate_server_cost_for_project_normal(conn, project_id, begin, end)


# ---------------------------------------------------------------------------
# All
# ---------------------------------------------------------------------------

def _projects_by_name(conn) -> Dict[str, Project]:
    return {project.name: project for project in queries.select_all_projects(conn)}


def calculate_server_cost_for_all_normal(
    conn, begin: datetime, end: datetime,
) -> ServerCostSimple:
    cost = ServerCostSimple()
    now = utcnow()
    projects = _projects_by_name(conn)
    states = queries.select_ordered_server_states_begin_and_end(conn, begin, end)
    for start_time, end_time, prices in _periods(conn, begin, end):
        consumption = consumption_for_all(states, start_time, end_time, True, now)
        for project_name, project_consumption in consumption.projects.items():
            project: Optional[Project] = projects.get(project_name)
            if project is None:
                logger.debug("Skipping consumption of unknown project %s", project_name)
                continue
            _add_total(cost, project_consumption.total, prices, project.user_class)
    return cost


def calculate_server_cost_for_all_detail(
    conn, begin: datetime, end: datetime,
) -> ServerCostAll:
    cost = ServerCostAll()
    now = utcnow()
    projects = _projects_by_name(conn)
    states = queries.select_ordered_server_states_begin_and_end(conn, begin, end)
    periods = _periods(conn, begin, end)
    by_project: Dict[str, List[ServerState]] = {}
    for state in states:
        by_project.setdefault(state.project_name, []).append(state)
    for project_name, project_states in by_project.items():
        project = projects.get(project_name)
        if project is None:
            logger.debug("Skipping consumption of unknown project %s", project_name)
            continue
        project_cost = cost.projects.setdefault(project_name, ServerCostProject())
        _project_cost_detail(
            project_cost, project_states, periods, project.user_class, now, (cost,),
        )
    return cost


def calculate_server_cost_for_all(
    conn, begin: datetime, end: datetime, detail: bool = False,
) -> ServerCostForAll:
    if detail:
        return calculate_server_cost_for_all_detail(conn, begin, end)
    return calculate_server_cost_for_all_normal(conn, begin, end)
