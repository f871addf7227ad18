"""
Server consumption

Consumption is the number of seconds a flavor was occupied inside a
window.  Server states are half-open intervals [begin, end); an open
state (end is NULL) is still running and is bounded by ``now``.

The ``consumption_for_*`` functions work on already fetched states so
the cost engine can fetch a window once and re-slice it per price
period.  The ``calculate_server_consumption_for_*`` functions fetch the
states for one window themselves.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, List, Optional, Union

import queries
from models import (
    ServerConsumptionAll, ServerConsumptionFlavors, ServerConsumptionProject,
    ServerConsumptionUser, ServerState,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(moment: datetime) -> datetime:
    """Query parameters without an offset are taken as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def overlaps(state: ServerState, begin: datetime, end: datetime) -> bool:
    """Same predicate the ordered server state queries apply in SQL."""
    return (state.end is None or state.end > begin) and state.begin < end


def state_consumption(
    state: ServerState, begin: datetime, end: datetime, now: Optional[datetime] = None,
) -> float:
    state_end = state.end
    if state_end is None:
        state_end = now or utcnow()
    seconds = (min(state_end, end) - max(state.begin, begin)).total_seconds()
    return max(seconds, 0.0)


def _add(flavors: ServerConsumptionFlavors, flavor_name: str, seconds: float) -> None:
    flavors[flavor_name] = flavors.get(flavor_name, 0.0) + seconds


def _matching(
    states: Iterable[ServerState], begin: datetime, end: datetime,
) -> Iterable[ServerState]:
    return (state for state in states if overlaps(state, begin, end))


def consumption_for_server(
    states: Iterable[ServerState], begin: datetime, end: datetime,
    now: Optional[datetime] = None,
) -> ServerConsumptionFlavors:
    consumption: ServerConsumptionFlavors = {}
    for state in _matching(states, begin, end):
        _add(consumption, state.flavor_name, state_consumption(state, begin, end, now))
    return consumption


def consumption_for_user(
    states: Iterable[ServerState], begin: datetime, end: datetime,
    detail: bool = False, now: Optional[datetime] = None,
) -> Union[ServerConsumptionFlavors, ServerConsumptionUser]:
    if not detail:
        return consumption_for_server(states, begin, end, now)
    consumption = ServerConsumptionUser()
    for state in _matching(states, begin, end):
        seconds = state_consumption(state, begin, end, now)
        _add(consumption.servers.setdefault(state.instance_id, {}), state.flavor_name, seconds)
        _add(consumption.total, state.flavor_name, seconds)
    return consumption


def consumption_for_project(
    states: Iterable[ServerState], begin: datetime, end: datetime,
    detail: bool = False, now: Optional[datetime] = None,
) -> Union[ServerConsumptionFlavors, ServerConsumptionProject]:
    if not detail:
        return consumption_for_server(states, begin, end, now)
    consumption = ServerConsumptionProject()
    for state in _matching(states, begin, end):
        seconds = state_consumption(state, begin, end, now)
        user = consumption.users.setdefault(state.username, ServerConsumptionUser())
        _add(user.servers.setdefault(state.instance_id, {}), state.flavor_name, seconds)
        _add(user.total, state.flavor_name, seconds)
        _add(consumption.total, state.flavor_name, seconds)
    return consumption


def consumption_for_all(
    states: Iterable[ServerState], begin: datetime, end: datetime,
    detail: bool = False, now: Optional[datetime] = None,
) -> Union[ServerConsumptionFlavors, ServerConsumptionAll]:
    if not detail:
        return consumption_for_server(states, begin, end, now)
    consumption = ServerConsumptionAll()
    for state in _matching(states, begin, end):
        seconds = state_consumption(state, begin, end, now)
        project = consumption.projects.setdefault(
            state.project_name, ServerConsumptionProject(),
        )
        user = project.users.setdefault(state.username, ServerConsumptionUser())
        _add(user.servers.setdefault(state.instance_id, {}), state.flavor_name, seconds)
        _add(user.total, state.flavor_name, seconds)
        _add(project.total, state.flavor_name, seconds)
        _add(consumption.total, state.flavor_name, seconds)
    return consumption


# ---------------------------------------------------------------------------
# Database backed variants
# ---------------------------------------------------------------------------

def calculate_server_consumption_for_server(
    conn, server_uuid: str, begin: datetime, end: datetime,
) -> ServerConsumptionFlavors:
    states: List[ServerState] = queries.select_ordered_server_states_by_server_begin_and_end(
        conn, server_uuid, begin, end,
    )
    return consumption_for_server(states, begin, end)


def calculate_server_consumption_for_user(
    conn, user_id: int, begin: datetime, end: datetime, detail: bool = False,
):
    states = queries.select_ordered_server_states_by_user_begin_and_end(
        conn, user_id, begin, end,
    )
    return consumption_for_user(states, begin, end, detail)


def calculate_server_consumption_for_project(
    conn, project_id: int, begin: datetime, end: datetime, detail: bool = False,
):
    states = queries.select_ordered_server_states_by_project_begin_and_end(
        conn, project_id, begin, end,
    )
    return consumption_for_project(states, begin, end, detail)


def calculate_server_consumption_for_all(
    conn, begin: datetime, end: datetime, detail: bool = False,
):
    states = queries.select_ordered_server_states_begin_and_end(conn, begin, end)
    return consumption_for_all(states, begin, end, detail)
