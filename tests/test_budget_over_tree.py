"""Tests for the budget over tree."""

import pytest

from budget_over_tree import (
    budget_over_tree_for_all, budget_over_tree_for_project, budget_over_tree_for_user,
    start_of_year,
)
from conftest import utc
from errors import NotFoundError
from models import UserClass

END = utc(2023, 11, 1)
TEN_MONTHS = 1000.0 * 304 / 365


@pytest.fixture
def cloud(billing):
    physics = billing.add_project("physics", UserClass.UC1)
    alice = billing.add_user("alice", physics, role=2)
    bob = billing.add_user("bob", physics)
    small = billing.add_flavor("small")
    billing.add_price(small, UserClass.UC1, 1000.0, utc(2020, 1, 1))
    billing.add_state(alice, small, utc(2022, 6, 1), instance_id="a1")
    billing.add_state(bob, small, utc(2022, 6, 1), instance_id="b1")
    return billing


def test_start_of_year_is_midnight_utc():
    assert start_of_year(2023) == utc(2023, 1, 1)


def test_user_tree_keeps_only_requested_user(cloud):
    alice = cloud.users[1]
    cloud.add_user_budget(alice, 2023, 900)

    tree = budget_over_tree_for_user(None, alice.id, END)

    project = tree.projects["physics"]
    assert tree.cost == pytest.approx(2 * TEN_MONTHS)
    assert tree.flavors is None
    assert project.cost == pytest.approx(2 * TEN_MONTHS)
    assert set(project.users) == {"alice"}
    assert project.users["alice"].budget == 900
    assert project.users["alice"].over is False
    assert project.users["alice"].servers["a1"].total == pytest.approx(TEN_MONTHS)


def test_user_tree_of_unknown_user_is_not_found(cloud):
    with pytest.raises(NotFoundError):
        budget_over_tree_for_user(None, 42, END)


def test_project_tree_without_budgets_is_never_over(cloud):
    tree = budget_over_tree_for_project(None, 1, END)

    project = tree.projects["physics"]
    assert project.budget_id is None
    assert project.budget is None
    assert project.over is False
    assert all(not user.over for user in project.users.values())
    assert set(project.users) == {"alice", "bob"}


def test_reaching_budget_counts_as_over(cloud):
    bob = cloud.users[2]
    budget = cloud.add_project_budget(cloud.projects[1], 2023, 1665)
    cloud.add_user_budget(bob, 2023, 833)

    tree = budget_over_tree_for_project(None, 1, END)

    project = tree.projects["physics"]
    assert project.budget_id == budget.id
    assert project.over is True
    assert project.users["bob"].over is False

    cloud.add_user_budget(cloud.users[1], 2023, 832)
    tree = budget_over_tree_for_project(None, 1, END)
    assert tree.projects["physics"].users["alice"].over is True


def test_budget_equal_to_cost_is_over(cloud):
    idle = cloud.add_project("idle", UserClass.UC1)
    cloud.add_project_budget(idle, 2023, 0)

    tree = budget_over_tree_for_project(None, idle.id, END)

    assert tree.projects["idle"].cost == 0.0
    assert tree.projects["idle"].over is True


def test_budgets_of_other_years_are_ignored(cloud):
    cloud.add_project_budget(cloud.projects[1], 2022, 1)

    tree = budget_over_tree_for_project(None, 1, END)

    assert tree.projects["physics"].budget is None


def test_unknown_project_is_not_found(cloud):
    with pytest.raises(NotFoundError):
        budget_over_tree_for_project(None, 42, END)


def test_all_tree_has_top_level_flavors(cloud):
    cloud.add_project_budget(cloud.projects[1], 2023, 10000)

    tree = budget_over_tree_for_all(None, END)

    assert tree.cost == pytest.approx(2 * TEN_MONTHS)
    assert tree.flavors["small"] == pytest.approx(2 * TEN_MONTHS)
    assert tree.projects["physics"].over is False


def test_absent_keys_are_omitted_from_json(cloud):
    project_tree = budget_over_tree_for_project(None, 1, END).model_dump()
    all_tree = budget_over_tree_for_all(None, END).model_dump()

    assert "flavors" not in project_tree
    assert "cost" in project_tree
    assert "flavors" in project_tree["projects"]["physics"]
    assert {"cost", "flavors", "projects"} <= set(all_tree)
