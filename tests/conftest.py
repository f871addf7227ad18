"""
Shared fixtures.

``billing`` is an in-memory stand-in for the database: it is patched over
the ``queries`` module so the engine and the routes run unchanged on top
of plain Python lists.
"""
import os
from contextlib import contextmanager
from datetime import datetime, timezone

import pytest

os.environ.setdefault("BILLING_DB_HOST", "localhost")
os.environ.setdefault("BILLING_DB_PORT", "5432")
os.environ.setdefault("BILLING_DB_NAME", "billing_test")
os.environ.setdefault("BILLING_DB_USER", "billing")
os.environ.setdefault("BILLING_DB_PASSWORD", "billing")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-that-is-long-enough-for-jwt")

import queries  # noqa: E402
from errors import NotFoundError  # noqa: E402
from models import (  # noqa: E402
    Flavor, FlavorPrice, FlavorQuota, Project, ProjectBudget, ServerState,
    User, UserBudget, UserClass,
)


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class FakeBilling:
    """Rows of every table the engine reads, plus the query functions over them."""

    QUERY_FUNCTIONS = (
        "select_server_states_by_server",
        "select_ordered_server_states_by_server_begin_and_end",
        "select_ordered_server_states_by_user_begin_and_end",
        "select_ordered_server_states_by_project_begin_and_end",
        "select_ordered_server_states_begin_and_end",
        "select_unfinished_server_states_by_user",
        "select_user_class_by_server",
        "select_user_class_by_user",
        "select_user_class_by_project",
        "select_maybe_user",
        "select_user",
        "select_user_by_name",
        "select_user_by_openstack_id",
        "select_users_by_project",
        "select_all_users",
        "select_maybe_project",
        "select_all_projects",
        "select_all_flavors",
        "select_flavor",
        "select_all_flavor_prices",
        "select_flavor_prices_for_userclass",
        "select_flavor_prices_for_period",
        "select_flavor_prices_for_userclass_and_period",
        "select_project_budget",
        "select_user_budget",
        "select_maybe_project_budget_by_project_and_year",
        "select_maybe_user_budget_by_user_and_year",
        "select_project_budgets_by_year",
        "select_user_budgets_by_year",
        "select_user_budgets_by_project_and_year",
        "update_project_budget",
        "update_user_budget",
        "select_maybe_flavor_quota_by_user_and_group",
    )

    def __init__(self):
        self.projects = {}
        self.users = {}
        self.flavors = {}
        self.prices = []
        self.states = []
        self.project_budgets = {}
        self.user_budgets = {}
        self.quotas = []
        self.flavor_groups = {}

    # -- builders ----------------------------------------------------------

    def add_project(self, name, user_class=UserClass.UC1):
        project = Project(
            id=len(self.projects) + 1, name=name,
            openstack_id=f"os-{name}", user_class=user_class,
        )
        self.projects[project.id] = project
        return project

    def add_user(self, name, project, role=1, is_staff=False):
        user = User(
            id=len(self.users) + 1, name=name, openstack_id=f"os-{name}",
            project=project.id, project_name=project.name,
            role=role, is_staff=is_staff,
        )
        self.users[user.id] = user
        return user

    def add_flavor_group(self, name):
        group_id = len(self.flavor_groups) + 1
        self.flavor_groups[group_id] = name
        return group_id

    def add_flavor(self, name, weight=0, group=None):
        flavor = Flavor(
            id=len(self.flavors) + 1, name=name, openstack_id=f"os-{name}",
            weight=weight, group=group,
            group_name=self.flavor_groups.get(group),
        )
        self.flavors[flavor.id] = flavor
        return flavor

    def add_price(self, flavor, user_class, unit_price, start_time):
        price = FlavorPrice(
            id=len(self.prices) + 1, flavor=flavor.id, flavor_name=flavor.name,
            user_class=user_class, unit_price=unit_price, start_time=start_time,
        )
        self.prices.append(price)
        return price

    def add_state(self, user, flavor, begin, end=None, instance_id=None):
        state_id = len(self.states) + 1
        instance_id = instance_id or f"server-{state_id}"
        state = ServerState(
            id=state_id, begin=begin, end=end,
            instance_id=instance_id, instance_name=f"name-{instance_id}",
            flavor=flavor.id, flavor_name=flavor.name, status="ACTIVE",
            user=user.id, username=user.name,
            project=user.project, project_name=user.project_name,
        )
        self.states.append(state)
        return state

    def add_project_budget(self, project, year, amount):
        budget = ProjectBudget(
            id=len(self.project_budgets) + 1, project=project.id,
            project_name=project.name, year=year, amount=amount,
        )
        self.project_budgets[budget.id] = budget
        return budget

    def add_user_budget(self, user, year, amount):
        budget = UserBudget(
            id=len(self.user_budgets) + 1, user=user.id,
            username=user.name, year=year, amount=amount,
        )
        self.user_budgets[budget.id] = budget
        return budget

    def add_quota(self, user, group_id, quota):
        entry = FlavorQuota(
            id=len(self.quotas) + 1, user=user.id, username=user.name, quota=quota,
            flavor_group=group_id, flavor_group_name=self.flavor_groups[group_id],
        )
        self.quotas.append(entry)
        return entry

    # -- server states -----------------------------------------------------

    def _states(self, predicate, begin=None, end=None):
        result = []
        for state in self.states:
            if not predicate(state):
                continue
            if begin is not None and not (state.end is None or state.end > begin):
                continue
            if end is not None and not state.begin < end:
                continue
            result.append(state)
        return result

    def select_server_states_by_server(self, conn, server_uuid):
        return self._states(lambda s: s.instance_id == server_uuid)

    def select_ordered_server_states_by_server_begin_and_end(self, conn, server_uuid, begin=None, end=None):
        return self._states(lambda s: s.instance_id == server_uuid, begin, end)

    def select_ordered_server_states_by_user_begin_and_end(self, conn, user_id, begin=None, end=None):
        return self._states(lambda s: s.user == user_id, begin, end)

    def select_ordered_server_states_by_project_begin_and_end(self, conn, project_id, begin=None, end=None):
        return self._states(lambda s: s.project == project_id, begin, end)

    def select_ordered_server_states_begin_and_end(self, conn, begin=None, end=None):
        return self._states(lambda s: True, begin, end)

    def select_unfinished_server_states_by_user(self, conn, user_id):
        return self._states(lambda s: s.user == user_id and s.end is None)

    # -- user classes ------------------------------------------------------

    def select_user_class_by_server(self, conn, server_uuid):
        states = self.select_server_states_by_server(conn, server_uuid)
        if not states:
            return None
        return self.select_user_class_by_user(conn, states[-1].user)

    def select_user_class_by_user(self, conn, user_id):
        user = self.users.get(user_id)
        if user is None:
            return None
        return self.select_user_class_by_project(conn, user.project)

    def select_user_class_by_project(self, conn, project_id):
        project = self.projects.get(project_id)
        return project.user_class if project else None

    # -- users and projects ------------------------------------------------

    def select_maybe_user(self, conn, user_id):
        return self.users.get(user_id)

    def select_user(self, conn, user_id):
        if user_id not in self.users:
            raise NotFoundError()
        return self.users[user_id]

    def select_user_by_name(self, conn, name):
        return next((u for u in self.users.values() if u.name == name), None)

    def select_user_by_openstack_id(self, conn, openstack_id):
        user = next((u for u in self.users.values() if u.openstack_id == openstack_id), None)
        if user is None:
            raise NotFoundError()
        return user

    def select_users_by_project(self, conn, project_id):
        return [u for u in self.users.values() if u.project == project_id]

    def select_all_users(self, conn):
        return list(self.users.values())

    def select_maybe_project(self, conn, project_id):
        return self.projects.get(project_id)

    def select_all_projects(self, conn):
        return list(self.projects.values())

    # -- flavors and prices ------------------------------------------------

    def select_all_flavors(self, conn):
        return list(self.flavors.values())

    def select_flavor(self, conn, flavor_id):
        if flavor_id not in self.flavors:
            raise NotFoundError()
        return self.flavors[flavor_id]

    def select_all_flavor_prices(self, conn):
        return list(self.prices)

    def select_flavor_prices_for_userclass(self, conn, user_class):
        return [p for p in self.prices if p.user_class == user_class]

    def _prices_for_period(self, prices, begin, end):
        rows = sorted(
            (p.model_dump() for p in prices if p.start_time <= end),
            key=lambda row: row["start_time"], reverse=True,
        )
        return queries._latest_from_begin(rows, begin)

    def select_flavor_prices_for_period(self, conn, begin, end):
        return self._prices_for_period(self.prices, begin, end)

    def select_flavor_prices_for_userclass_and_period(self, conn, user_class, begin, end):
        prices = [p for p in self.prices if p.user_class == user_class]
        return self._prices_for_period(prices, begin, end)

    # -- budgets -----------------------------------------------------------

    def select_project_budget(self, conn, budget_id):
        if budget_id not in self.project_budgets:
            raise NotFoundError()
        return self.project_budgets[budget_id]

    def select_user_budget(self, conn, budget_id):
        if budget_id not in self.user_budgets:
            raise NotFoundError()
        return self.user_budgets[budget_id]

    def select_maybe_project_budget_by_project_and_year(self, conn, project_id, year):
        return next(
            (b for b in self.project_budgets.values() if b.project == project_id and b.year == year),
            None,
        )

    def select_maybe_user_budget_by_user_and_year(self, conn, user_id, year):
        return next(
            (b for b in self.user_budgets.values() if b.user == user_id and b.year == year),
            None,
        )

    def select_project_budgets_by_year(self, conn, year):
        return [b for b in self.project_budgets.values() if b.year == year]

    def select_user_budgets_by_year(self, conn, year):
        return [b for b in self.user_budgets.values() if b.year == year]

    def select_user_budgets_by_project_and_year(self, conn, project_id, year):
        return [
            b for b in self.user_budgets.values()
            if b.year == year and self.users[b.user].project == project_id
        ]

    def update_project_budget(self, conn, budget_id, amount):
        budget = self.select_project_budget(conn, budget_id)
        if amount is None:
            return budget
        budget = budget.model_copy(update={"amount": amount})
        self.project_budgets[budget_id] = budget
        return budget

    def update_user_budget(self, conn, budget_id, amount):
        budget = self.select_user_budget(conn, budget_id)
        if amount is None:
            return budget
        budget = budget.model_copy(update={"amount": amount})
        self.user_budgets[budget_id] = budget
        return budget

    # -- quotas ------------------------------------------------------------

    def select_maybe_flavor_quota_by_user_and_group(self, conn, user_id, flavor_group_id):
        return next(
            (q for q in self.quotas if q.user == user_id and q.flavor_group == flavor_group_id),
            None,
        )


@pytest.fixture
def billing(monkeypatch):
    fake = FakeBilling()
    for name in FakeBilling.QUERY_FUNCTIONS:
        monkeypatch.setattr(queries, name, getattr(fake, name))
    return fake


@contextmanager
def _no_connection():
    yield None


@pytest.fixture
def client(billing, monkeypatch):
    """TestClient over the app with the database replaced by ``billing``."""
    from fastapi.testclient import TestClient

    import accounting_routes
    import budgeting_routes
    import main
    import pricing_routes
    import quota_routes
    import resources_routes

    for module in (accounting_routes, budgeting_routes, pricing_routes, quota_routes, resources_routes):
        monkeypatch.setattr(module, "get_connection", _no_connection)
    quota_routes.quota_check_cache.clear()

    with TestClient(main.app) as test_client:
        yield test_client
    main.app.dependency_overrides.clear()


@pytest.fixture
def login(client):
    """Make ``user`` the requesting user of ``client``."""
    import main
    from auth import require_authentication

    def _login(user):
        main.app.dependency_overrides[require_authentication] = lambda: user
        return client

    return _login
