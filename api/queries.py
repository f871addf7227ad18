"""
Read (and the few write) statements used by the billing engine and routes.

Every function takes an open psycopg2 connection and runs inside the
caller's transaction; none of them commit.  ``select_maybe_*`` return
``None`` for missing rows, plain ``select_*`` raise ``NotFoundError``.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from psycopg2.extras import RealDictCursor

from errors import NotFoundError
from models import (
    Flavor, FlavorPrice, FlavorQuota, Project, ProjectBudget, ServerState,
    User, UserBudget, UserClass,
)

logger = logging.getLogger("billing.queries")


def _fetchall(conn, sql: str, params=()) -> List[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(sql, params)
        return cur.fetchall()


def _fetchone(conn, sql: str, params=()) -> Optional[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(sql, params)
        return cur.fetchone()


# ---------------------------------------------------------------------------
# Server states
# ---------------------------------------------------------------------------

_SERVER_STATE_SELECT = """
    SELECT
        s.id AS id,
        s."begin" AS "begin",
        s."end" AS "end",
        s.instance_id AS instance_id,
        s.instance_name AS instance_name,
        f.id AS flavor,
        f.name AS flavor_name,
        s.status AS status,
        u.id AS "user",
        u.name AS username,
        p.id AS project,
        p.name AS project_name
    FROM accounting_serverstate s
    JOIN resources_flavor f ON s.flavor_id = f.id
    JOIN user_user u ON s.user_id = u.id
    JOIN user_project p ON u.project_id = p.id
"""


def _select_server_states(
    conn,
    where: List[str],
    params: list,
    begin: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> List[ServerState]:
    """Apply the overlap predicate for [begin, end) on top of ``where``."""
    where = list(where)
    params = list(params)
    if begin is not None:
        where.append('(s."end" > %s OR s."end" IS NULL)')
        params.append(begin)
    if end is not None:
        where.append('s."begin" < %s')
        params.append(end)
    sql = _SERVER_STATE_SELECT
    if where:
        sql += " WHERE " + " AND ".join(where)
    sql += " ORDER BY s.id"
    return [ServerState(**row) for row in _fetchall(conn, sql, params)]


def select_server_states_by_server(conn, server_uuid: str) -> List[ServerState]:
    return _select_server_states(conn, ["s.instance_id = %s"], [server_uuid])


def select_ordered_server_states_by_server_begin_and_end(
    conn, server_uuid: str, begin: Optional[datetime] = None, end: Optional[datetime] = None,
) -> List[ServerState]:
    return _select_server_states(conn, ["s.instance_id = %s"], [server_uuid], begin, end)


def select_ordered_server_states_by_user_begin_and_end(
    conn, user_id: int, begin: Optional[datetime] = None, end: Optional[datetime] = None,
) -> List[ServerState]:
    return _select_server_states(conn, ["u.id = %s"], [user_id], begin, end)


def select_ordered_server_states_by_project_begin_and_end(
    conn, project_id: int, begin: Optional[datetime] = None, end: Optional[datetime] = None,
) -> List[ServerState]:
    return _select_server_states(conn, ["p.id = %s"], [project_id], begin, end)


def select_ordered_server_states_begin_and_end(
    conn, begin: Optional[datetime] = None, end: Optional[datetime] = None,
) -> List[ServerState]:
    return _select_server_states(conn, [], [], begin, end)


def select_unfinished_server_states_by_user(conn, user_id: int) -> List[ServerState]:
    return _select_server_states(conn, ["u.id = %s", 's."end" IS NULL'], [user_id])


# ---------------------------------------------------------------------------
# User classes
# ---------------------------------------------------------------------------

def _user_class(row: Optional[dict]) -> Optional[UserClass]:
    if row is None or row["user_class"] is None:
        return None
    return UserClass(row["user_class"])


def select_user_class_by_server(conn, server_uuid: str) -> Optional[UserClass]:
    """User class of the project owning the server's most recent state."""
    return _user_class(_fetchone(conn, """
        SELECT p.user_class AS user_class
        FROM accounting_serverstate s
        JOIN user_user u ON s.user_id = u.id
        JOIN user_project p ON u.project_id = p.id
        WHERE s.instance_id = %s
        ORDER BY s.id DESC
        LIMIT 1
    """, (server_uuid,)))


def select_user_class_by_user(conn, user_id: int) -> Optional[UserClass]:
    return _user_class(_fetchone(conn, """
        SELECT p.user_class AS user_class
        FROM user_user u
        JOIN user_project p ON u.project_id = p.id
        WHERE u.id = %s
    """, (user_id,)))


def select_user_class_by_project(conn, project_id: int) -> Optional[UserClass]:
    return _user_class(_fetchone(conn, """
        SELECT user_class FROM user_project WHERE id = %s
    """, (project_id,)))


# ---------------------------------------------------------------------------
# Users and projects
# ---------------------------------------------------------------------------

_USER_SELECT = """
    SELECT
        u.id, u.name, u.openstack_id,
        p.id AS project, p.name AS project_name,
        u.role, u.is_staff, u.is_active
    FROM user_user u
    JOIN user_project p ON u.project_id = p.id
"""


def select_maybe_user(conn, user_id: int) -> Optional[User]:
    row = _fetchone(conn, _USER_SELECT + " WHERE u.id = %s", (user_id,))
    return User(**row) if row else None


def select_user(conn, user_id: int) -> User:
    user = select_maybe_user(conn, user_id)
    if user is None:
        raise NotFoundError()
    return user


def select_user_by_name(conn, name: str) -> Optional[User]:
    row = _fetchone(conn, _USER_SELECT + " WHERE u.name = %s", (name,))
    return User(**row) if row else None


def select_user_by_openstack_id(conn, openstack_id: str) -> User:
    row = _fetchone(conn, _USER_SELECT + " WHERE u.openstack_id = %s", (openstack_id,))
    if row is None:
        raise NotFoundError()
    return User(**row)


def select_users_by_project(conn, project_id: int) -> List[User]:
    rows = _fetchall(conn, _USER_SELECT + " WHERE p.id = %s ORDER BY u.id", (project_id,))
    return [User(**row) for row in rows]


def select_all_users(conn) -> List[User]:
    return [User(**row) for row in _fetchall(conn, _USER_SELECT + " ORDER BY u.id")]


def select_maybe_project(conn, project_id: int) -> Optional[Project]:
    row = _fetchone(conn, """
        SELECT id, name, openstack_id, user_class FROM user_project WHERE id = %s
    """, (project_id,))
    return Project(**row) if row else None


def select_all_projects(conn) -> List[Project]:
    rows = _fetchall(conn, """
        SELECT id, name, openstack_id, user_class FROM user_project ORDER BY id
    """)
    return [Project(**row) for row in rows]


# ---------------------------------------------------------------------------
# Flavors and prices
# ---------------------------------------------------------------------------

_FLAVOR_SELECT = """
    SELECT
        f.id, f.name, f.openstack_id, f.weight,
        g.id AS "group", g.name AS group_name
    FROM resources_flavor f
    LEFT JOIN resources_flavorgroup g ON f.group_id = g.id
"""


def select_all_flavors(conn) -> List[Flavor]:
    return [Flavor(**row) for row in _fetchall(conn, _FLAVOR_SELECT + " ORDER BY f.id")]


def select_flavor(conn, flavor_id: int) -> Flavor:
    row = _fetchone(conn, _FLAVOR_SELECT + " WHERE f.id = %s", (flavor_id,))
    if row is None:
        raise NotFoundError()
    return Flavor(**row)


_FLAVOR_PRICE_SELECT = """
    SELECT
        p.id,
        p.flavor_id AS flavor,
        f.name AS flavor_name,
        p.user_class,
        p.unit_price,
        p.start_time
    FROM pricing_flavorprice p
    JOIN resources_flavor f ON p.flavor_id = f.id
"""


def _latest_from_begin(rows: List[dict], begin: datetime) -> List[FlavorPrice]:
    """
    Reduce rows ordered by start_time DESC to, per (flavor, user class),
    every price newer than ``begin`` plus the one in effect at ``begin``.
    """
    prices = []
    done: Dict[Tuple[int, int], bool] = {}
    for row in rows:
        price = FlavorPrice(**row)
        key = (price.flavor, int(price.user_class))
        if done.get(key):
            continue
        if price.start_time <= begin:
            done[key] = True
        prices.append(price)
    return prices


def select_all_flavor_prices(conn) -> List[FlavorPrice]:
    rows = _fetchall(conn, _FLAVOR_PRICE_SELECT + " ORDER BY p.id")
    return [FlavorPrice(**row) for row in rows]


def select_flavor_prices_for_userclass(conn, user_class: UserClass) -> List[FlavorPrice]:
    rows = _fetchall(
        conn, _FLAVOR_PRICE_SELECT + " WHERE p.user_class = %s ORDER BY p.id",
        (int(user_class),),
    )
    return [FlavorPrice(**row) for row in rows]


def select_flavor_prices_for_period(conn, begin: datetime, end: datetime) -> List[FlavorPrice]:
    rows = _fetchall(
        conn,
        _FLAVOR_PRICE_SELECT + " WHERE p.start_time <= %s ORDER BY p.start_time DESC",
        (end,),
    )
    return _latest_from_begin(rows, begin)


def select_flavor_prices_for_userclass_and_period(
    conn, user_class: UserClass, begin: datetime, end: datetime,
) -> List[FlavorPrice]:
    rows = _fetchall(
        conn,
        _FLAVOR_PRICE_SELECT
        + " WHERE p.user_class = %s AND p.start_time <= %s ORDER BY p.start_time DESC",
        (int(user_class), end),
    )
    return _latest_from_begin(rows, begin)


# ---------------------------------------------------------------------------
# Budgets
# ---------------------------------------------------------------------------

_PROJECT_BUDGET_SELECT = """
    SELECT b.id, p.id AS project, p.name AS project_name, b.year, b.amount
    FROM budgeting_projectbudget b
    JOIN user_project p ON b.project_id = p.id
"""

_USER_BUDGET_SELECT = """
    SELECT b.id, u.id AS "user", u.name AS username, b.year, b.amount
    FROM budgeting_userbudget b
    JOIN user_user u ON b.user_id = u.id
"""


def select_project_budget(conn, budget_id: int) -> ProjectBudget:
    row = _fetchone(conn, _PROJECT_BUDGET_SELECT + " WHERE b.id = %s", (budget_id,))
    if row is None:
        raise NotFoundError()
    return ProjectBudget(**row)


def select_user_budget(conn, budget_id: int) -> UserBudget:
    row = _fetchone(conn, _USER_BUDGET_SELECT + " WHERE b.id = %s", (budget_id,))
    if row is None:
        raise NotFoundError()
    return UserBudget(**row)


def select_maybe_project_budget_by_project_and_year(
    conn, project_id: int, year: int,
) -> Optional[ProjectBudget]:
    row = _fetchone(
        conn, _PROJECT_BUDGET_SELECT + " WHERE p.id = %s AND b.year = %s",
        (project_id, year),
    )
    return ProjectBudget(**row) if row else None


def select_maybe_user_budget_by_user_and_year(
    conn, user_id: int, year: int,
) -> Optional[UserBudget]:
    row = _fetchone(
        conn, _USER_BUDGET_SELECT + " WHERE u.id = %s AND b.year = %s",
        (user_id, year),
    )
    return UserBudget(**row) if row else None


def select_project_budgets_by_year(conn, year: int) -> List[ProjectBudget]:
    rows = _fetchall(conn, _PROJECT_BUDGET_SELECT + " WHERE b.year = %s ORDER BY b.id", (year,))
    return [ProjectBudget(**row) for row in rows]


def select_user_budgets_by_year(conn, year: int) -> List[UserBudget]:
    rows = _fetchall(conn, _USER_BUDGET_SELECT + " WHERE b.year = %s ORDER BY b.id", (year,))
    return [UserBudget(**row) for row in rows]


def select_user_budgets_by_project_and_year(
    conn, project_id: int, year: int,
) -> List[UserBudget]:
    rows = _fetchall(
        conn,
        _USER_BUDGET_SELECT + " WHERE u.project_id = %s AND b.year = %s ORDER BY b.id",
        (project_id, year),
    )
    return [UserBudget(**row) for row in rows]


def update_project_budget(conn, budget_id: int, amount: Optional[int]) -> ProjectBudget:
    budget = select_project_budget(conn, budget_id)
    if amount is None:
        return budget
    with conn.cursor() as cur:
        cur.execute(
            "UPDATE budgeting_projectbudget SET amount = %s WHERE id = %s",
            (amount, budget_id),
        )
    logger.info("Project budget %d set to %d", budget_id, amount)
    return budget.model_copy(update={"amount": amount})


def update_user_budget(conn, budget_id: int, amount: Optional[int]) -> UserBudget:
    budget = select_user_budget(conn, budget_id)
    if amount is None:
        return budget
    with conn.cursor() as cur:
        cur.execute(
            "UPDATE budgeting_userbudget SET amount = %s WHERE id = %s",
            (amount, budget_id),
        )
    logger.info("User budget %d set to %d", budget_id, amount)
    return budget.model_copy(update={"amount": amount})


# ---------------------------------------------------------------------------
# Quotas
# ---------------------------------------------------------------------------

def select_maybe_flavor_quota_by_user_and_group(
    conn, user_id: int, flavor_group_id: int,
) -> Optional[FlavorQuota]:
    row = _fetchone(conn, """
        SELECT
            q.id, u.id AS "user", u.name AS username, q.quota,
            g.id AS flavor_group, g.name AS flavor_group_name
        FROM quota_flavorquota q
        JOIN user_user u ON q.user_id = u.id
        JOIN resources_flavorgroup g ON q.flavor_group_id = g.id
        WHERE u.id = %s AND g.id = %s
    """, (user_id, flavor_group_id))
    return FlavorQuota(**row) if row else None
