"""
Flavor group usage

The usage of a user in a flavor group is the summed weight of the flavors
of the user's running servers (states without an end) belonging to that
group.  Every flavor group known through the flavor table is reported,
with usage 0 where the user runs nothing in it.

Project and all scopes compute one user per worker thread and join all
of them before merging.  A failing worker aborts the whole computation,
but its error is only raised once every other worker has returned, so no
thread still holds the request's connection when it goes back to the
pool.  The workers share that connection, psycopg2 connections being
thread-safe.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List

import queries
from errors import NotFoundError
from models import Flavor, FlavorGroupUsageAggregate, FlavorGroupUsageSimple, User

logger = logging.getLogger("billing.resources")


def _flavors_by_id(conn) -> Dict[int, Flavor]:
    return {flavor.id: flavor for flavor in queries.select_all_flavors(conn)}


def _flavor_groups(flavors: Dict[int, Flavor]) -> Dict[int, str]:
    groups = {
        flavor.group: flavor.group_name
        for flavor in flavors.values()
        if flavor.group is not None
    }
    return dict(sorted(groups.items()))


def flavor_group_usage_for_user(
    conn, user: User, flavors: Dict[int, Flavor],
) -> List[FlavorGroupUsageSimple]:
    names = _flavor_groups(flavors)
    usage = {group_id: 0 for group_id in names}
    for state in queries.select_unfinished_server_states_by_user(conn, user.id):
        flavor = flavors.get(state.flavor)
        if flavor is None or flavor.group is None:
            continue
        usage[flavor.group] += flavor.weight
    return [
        FlavorGroupUsageSimple(
            user_id=user.id,
            user_name=user.name,
            flavorgroup_id=group_id,
            flavorgroup_name=names[group_id],
            usage=group_usage,
        )
        for group_id, group_usage in usage.items()
    ]


def aggregate_usage(usages: List[FlavorGroupUsageSimple]) -> List[FlavorGroupUsageAggregate]:
    aggregate: Dict[int, FlavorGroupUsageAggregate] = {}
    for usage in usages:
        entry = aggregate.setdefault(
            usage.flavorgroup_id,
            FlavorGroupUsageAggregate(
                flavorgroup_id=usage.flavorgroup_id,
                flavorgroup_name=usage.flavorgroup_name,
                usage=0,
            ),
        )
        entry.usage += usage.usage
    return [aggregate[group_id] for group_id in sorted(aggregate)]


async def _usage_for_users(conn, users: List[User]) -> List[FlavorGroupUsageSimple]:
    flavors = _flavors_by_id(conn)
    tasks = [
        asyncio.to_thread(flavor_group_usage_for_user, conn, user, flavors)
        for user in users
    ]
    results = await asyncio.gather(*tasks, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    logger.debug("Computed flavor group usage for %d user(s)", len(users))
    return [usage for user_usage in results for usage in user_usage]


async def calculate_flavor_group_usage_for_user(conn, user_id: int, aggregate: bool = False):
    user = queries.select_user(conn, user_id)
    usages = await _usage_for_users(conn, [user])
    return aggregate_usage(usages) if aggregate else usages


async def calculate_flavor_group_usage_for_project(
    conn, project_id: int, aggregate: bool = False,
):
    if queries.select_maybe_project(conn, project_id) is None:
        raise NotFoundError()
    usages = await _usage_for_users(conn, queries.select_users_by_project(conn, project_id))
    return aggregate_usage(usages) if aggregate else usages


async def calculate_flavor_group_usage_for_all(conn, aggregate: bool = False):
    usages = await _usage_for_users(conn, queries.select_all_users(conn))
    return aggregate_usage(usages) if aggregate else usages
