"""Tests for server consumption."""

import pytest

from conftest import utc
from models import ServerConsumptionAll, ServerConsumptionProject, ServerConsumptionUser
from server_consumption import (
    as_utc, calculate_server_consumption_for_all, calculate_server_consumption_for_project,
    calculate_server_consumption_for_server, calculate_server_consumption_for_user,
    consumption_for_server, overlaps, state_consumption,
)

HOUR = 3600.0


@pytest.fixture
def cloud(billing):
    project = billing.add_project("physics")
    alice = billing.add_user("alice", project)
    bob = billing.add_user("bob", project)
    small = billing.add_flavor("small")
    large = billing.add_flavor("large")
    billing.add_state(alice, small, utc(2023, 1, 1, 0), utc(2023, 1, 1, 2), instance_id="a1")
    billing.add_state(alice, large, utc(2023, 1, 1, 2), utc(2023, 1, 1, 3), instance_id="a1")
    billing.add_state(bob, small, utc(2023, 1, 1, 1), utc(2023, 1, 1, 5), instance_id="b1")
    return billing


def test_state_is_clamped_to_window(cloud):
    state = cloud.states[2]  # bob, 01:00 - 05:00

    assert state_consumption(state, utc(2023, 1, 1, 2), utc(2023, 1, 1, 4)) == 2 * HOUR
    assert state_consumption(state, utc(2023, 1, 1, 0), utc(2023, 1, 2)) == 4 * HOUR


def test_open_state_runs_until_now(billing):
    project = billing.add_project("p")
    user = billing.add_user("u", project)
    flavor = billing.add_flavor("small")
    state = billing.add_state(user, flavor, utc(2023, 1, 1, 0))

    now = utc(2023, 1, 1, 3)
    assert state_consumption(state, utc(2023, 1, 1), utc(2023, 1, 2), now) == 3 * HOUR
    assert overlaps(state, utc(2024, 1, 1), utc(2024, 2, 1))


def test_window_is_half_open(cloud):
    state = cloud.states[0]  # 00:00 - 02:00

    assert not overlaps(state, utc(2023, 1, 1, 2), utc(2023, 1, 1, 3))
    assert not overlaps(state, utc(2022, 12, 31), utc(2023, 1, 1, 0))
    assert consumption_for_server([state], utc(2023, 1, 1, 2), utc(2023, 1, 1, 3)) == {}


def test_server_consumption_sums_per_flavor(cloud):
    consumption = calculate_server_consumption_for_server(
        None, "a1", utc(2023, 1, 1), utc(2023, 1, 2),
    )

    assert consumption == {"small": 2 * HOUR, "large": HOUR}


def test_user_consumption_detail_nests_servers(cloud):
    consumption = calculate_server_consumption_for_user(
        None, 1, utc(2023, 1, 1), utc(2023, 1, 2), detail=True,
    )

    assert isinstance(consumption, ServerConsumptionUser)
    assert consumption.total == {"small": 2 * HOUR, "large": HOUR}
    assert consumption.servers == {"a1": {"small": 2 * HOUR, "large": HOUR}}


def test_project_consumption_normal_is_flat(cloud):
    consumption = calculate_server_consumption_for_project(
        None, 1, utc(2023, 1, 1), utc(2023, 1, 2),
    )

    assert consumption == {"small": 6 * HOUR, "large": HOUR}


def test_project_consumption_detail_nests_users(cloud):
    consumption = calculate_server_consumption_for_project(
        None, 1, utc(2023, 1, 1, 1), utc(2023, 1, 1, 4), detail=True,
    )

    assert isinstance(consumption, ServerConsumptionProject)
    assert consumption.total == {"small": 4 * HOUR, "large": HOUR}
    assert consumption.users["alice"].servers["a1"] == {"small": HOUR, "large": HOUR}
    assert consumption.users["bob"].total == {"small": 3 * HOUR}


def test_all_consumption_detail_nests_projects(cloud):
    other = cloud.add_project("chemistry")
    carol = cloud.add_user("carol", other)
    cloud.add_state(carol, cloud.flavors[1], utc(2023, 1, 1), utc(2023, 1, 1, 1), instance_id="c1")

    consumption = calculate_server_consumption_for_all(
        None, utc(2023, 1, 1), utc(2023, 1, 2), detail=True,
    )

    assert isinstance(consumption, ServerConsumptionAll)
    assert set(consumption.projects) == {"physics", "chemistry"}
    assert consumption.projects["chemistry"].users["carol"].servers["c1"] == {"small": HOUR}
    assert consumption.total["small"] == 7 * HOUR


def test_slices_add_up_to_whole_window(cloud):
    states = cloud.states
    begin, middle, end = utc(2023, 1, 1), utc(2023, 1, 1, 2, 30), utc(2023, 1, 2)

    whole = consumption_for_server(states, begin, end)
    first = consumption_for_server(states, begin, middle)
    second = consumption_for_server(states, middle, end)

    for flavor_name, seconds in whole.items():
        assert first.get(flavor_name, 0.0) + second.get(flavor_name, 0.0) == pytest.approx(seconds)


def test_as_utc_treats_naive_as_utc():
    from datetime import datetime, timedelta, timezone

    assert as_utc(datetime(2023, 1, 1)) == utc(2023, 1, 1)
    shifted = datetime(2023, 1, 1, 2, tzinfo=timezone(timedelta(hours=2)))
    assert as_utc(shifted) == utc(2023, 1, 1)
