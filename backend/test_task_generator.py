"""
Tests for task generation and the completion pass.
"""
import sys
import os
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock
import pytest

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from decision_engine.models import Prediction, Stop, TaskType, TripLeg, TripPlan, Vehicle
from decision_engine.services.task_generator import (
    STOP_RADIUS_M,
    VEHICLE_RADIUS_M,
    auto_check_tasks,
    check_board_completion,
    generate_tasks,
)
from decision_engine.services.geo import validate_lat_lng


NOW = datetime(2025, 3, 14, 17, 0, 0, tzinfo=timezone.utc)

PARK = Stop(id="place-pktrm", name="Park Street", latitude=42.35639, longitude=-71.0624, route_ids=["Red", "Green-B"])
DTX = Stop(id="place-dwnxg", name="Downtown Crossing", latitude=42.355518, longitude=-71.060225, route_ids=["Red", "Orange"])
STATE = Stop(id="place-state", name="State", latitude=42.358978, longitude=-71.057598, route_ids=["Orange", "Blue"])
STOPS = [PARK, DTX, STATE]


def leg(route_id, route_name, from_stop, to_stop, is_transfer=False):
    return TripLeg(
        route_id=route_id,
        route_name=route_name,
        from_stop_id=from_stop.id,
        from_stop_name=from_stop.name,
        to_stop_id=to_stop.id,
        to_stop_name=to_stop.name,
        is_transfer=is_transfer,
    )


@pytest.fixture
def direct_plan():
    return TripPlan(
        legs=[leg("Red", "Red Line", PARK, DTX)],
        total_distance=200.0,
        has_transfer=False,
    )


@pytest.fixture
def transfer_plan():
    return TripPlan(
        legs=[
            leg("Red", "Red Line", PARK, DTX, is_transfer=True),
            leg("Orange", "Orange Line", DTX, STATE),
        ],
        total_distance=600.0,
        has_transfer=True,
    )


def iso(dt):
    return dt.isoformat().replace("+00:00", "Z")


class TestGenerateTasks:
    """Task expansion from a trip plan"""

    @pytest.mark.asyncio
    async def test_direct_plan_has_three_tasks(self, direct_plan):
        tasks = await generate_tasks(direct_plan, STOPS)

        assert [t.type for t in tasks] == [TaskType.WALK_TO_STOP, TaskType.BOARD, TaskType.RIDE]
        assert [t.id for t in tasks] == [
            "walk-0-place-pktrm",
            "board-0-Red",
            "ride-0-place-dwnxg",
        ]
        assert [t.xp_reward for t in tasks] == [10, 20, 30]
        assert all(not t.completed for t in tasks)

    @pytest.mark.asyncio
    async def test_transfer_leg_gets_fourth_task(self, transfer_plan):
        tasks = await generate_tasks(transfer_plan, STOPS)

        leg0 = [t for t in tasks if t.leg_index == 0]
        leg1 = [t for t in tasks if t.leg_index == 1]
        assert len(leg0) == 4
        assert len(leg1) == 3

        transfer = leg0[-1]
        assert transfer.type == TaskType.TRANSFER
        assert transfer.id == "transfer-0-place-dwnxg"
        assert transfer.route_id == "Orange"
        assert transfer.xp_reward == 50

    @pytest.mark.asyncio
    async def test_geofences(self, direct_plan):
        tasks = await generate_tasks(direct_plan, STOPS)
        walk, board, ride = tasks

        assert walk.geo_fence.radius_meters == STOP_RADIUS_M
        assert board.geo_fence.radius_meters == VEHICLE_RADIUS_M
        assert ride.geo_fence.radius_meters == STOP_RADIUS_M
        assert (walk.geo_fence.latitude, walk.geo_fence.longitude) == (PARK.latitude, PARK.longitude)
        assert (ride.geo_fence.latitude, ride.geo_fence.longitude) == (DTX.latitude, DTX.longitude)
        for task in tasks:
            assert task.geo_fence.radius_meters > 0
            assert validate_lat_lng(task.geo_fence.latitude, task.geo_fence.longitude)

    @pytest.mark.asyncio
    async def test_ids_are_deterministic(self, transfer_plan):
        first = await generate_tasks(transfer_plan, STOPS)
        second = await generate_tasks(transfer_plan, STOPS)
        assert [t.id for t in first] == [t.id for t in second]

    @pytest.mark.asyncio
    async def test_missing_stop_fetched_from_source(self, direct_plan):
        source = AsyncMock()
        source.get_stops_by_route.return_value = [DTX]

        tasks = await generate_tasks(direct_plan, [PARK], stop_source=source)

        source.get_stops_by_route.assert_awaited_once_with("Red")
        assert len(tasks) == 3
        assert tasks[2].geo_fence.latitude == DTX.latitude

    @pytest.mark.asyncio
    async def test_unlocatable_leg_is_skipped(self, transfer_plan):
        source = AsyncMock()
        source.get_stops_by_route.side_effect = Exception("network down")

        # STATE missing from the catalog: leg 1 cannot be located
        tasks = await generate_tasks(transfer_plan, [PARK, DTX], stop_source=source)

        assert len(tasks) == 4
        assert all(t.leg_index == 0 for t in tasks)

    @pytest.mark.asyncio
    async def test_stop_with_bad_coordinates_is_skipped(self, direct_plan):
        broken = Stop(id=DTX.id, name=DTX.name, latitude=95.0, longitude=-71.06, route_ids=["Red"])

        tasks = await generate_tasks(direct_plan, [PARK, broken])

        assert tasks == []


class TestCompletion:
    """Completion predicates and the auto-check pass"""

    @pytest.mark.asyncio
    async def test_walk_completes_inside_fence(self, direct_plan):
        tasks = await generate_tasks(direct_plan, STOPS)

        checked = auto_check_tasks(tasks, PARK.latitude, PARK.longitude, [], [], NOW)

        assert checked[0].completed
        assert not checked[1].completed
        assert not checked[2].completed
        # input untouched
        assert not tasks[0].completed

    @pytest.mark.asyncio
    async def test_walk_incomplete_outside_fence(self, direct_plan):
        tasks = await generate_tasks(direct_plan, STOPS)

        # ~330m north of Park Street
        checked = auto_check_tasks(tasks, PARK.latitude + 0.003, PARK.longitude, [], [], NOW)

        assert not checked[0].completed

    @pytest.mark.asyncio
    async def test_ride_completes_at_destination(self, direct_plan):
        tasks = await generate_tasks(direct_plan, STOPS)

        checked = auto_check_tasks(tasks, DTX.latitude, DTX.longitude, [], [], NOW)

        assert checked[2].completed

    @pytest.mark.asyncio
    async def test_completed_tasks_stay_completed(self, direct_plan):
        tasks = await generate_tasks(direct_plan, STOPS)
        done = [tasks[0].model_copy(update={"completed": True})] + tasks[1:]

        checked = auto_check_tasks(done, 0.0, 0.0, [], [], NOW)

        assert checked[0].completed

    @pytest.mark.asyncio
    async def test_board_needs_vehicle_and_departure(self, direct_plan):
        tasks = await generate_tasks(direct_plan, STOPS)
        board = tasks[1]

        vehicle = Vehicle(id="v1", latitude=PARK.latitude, longitude=PARK.longitude, route_id="Red")
        departing = Prediction(
            id="p1", stop_id=PARK.id, route_id="Red",
            departure_time=iso(NOW + timedelta(seconds=60)),
        )

        assert check_board_completion(board, PARK.latitude, PARK.longitude, [vehicle], [departing], NOW)
        # vehicle alone
        assert not check_board_completion(board, PARK.latitude, PARK.longitude, [vehicle], [], NOW)
        # prediction alone
        assert not check_board_completion(board, PARK.latitude, PARK.longitude, [], [departing], NOW)

    @pytest.mark.asyncio
    async def test_board_rejects_far_departure_and_wrong_route(self, direct_plan):
        tasks = await generate_tasks(direct_plan, STOPS)
        board = tasks[1]

        vehicle = Vehicle(id="v1", latitude=PARK.latitude, longitude=PARK.longitude, route_id="Red")
        later = Prediction(
            id="p1", stop_id=PARK.id, route_id="Red",
            departure_time=iso(NOW + timedelta(seconds=300)),
        )
        departed = Prediction(
            id="p2", stop_id=PARK.id, route_id="Red",
            departure_time=iso(NOW - timedelta(seconds=10)),
        )
        wrong_vehicle = Vehicle(id="v2", latitude=PARK.latitude, longitude=PARK.longitude, route_id="Orange")
        soon = Prediction(
            id="p3", stop_id=PARK.id, route_id="Red",
            departure_time=iso(NOW + timedelta(seconds=30)),
        )

        assert not check_board_completion(board, PARK.latitude, PARK.longitude, [vehicle], [later, departed], NOW)
        assert not check_board_completion(board, PARK.latitude, PARK.longitude, [wrong_vehicle], [soon], NOW)

    @pytest.mark.asyncio
    async def test_board_uses_any_matching_prediction(self, direct_plan):
        tasks = await generate_tasks(direct_plan, STOPS)
        board = tasks[1]

        vehicle = Vehicle(id="v1", latitude=PARK.latitude, longitude=PARK.longitude, route_id="Red")
        later = Prediction(
            id="p1", stop_id=PARK.id, route_id="Red",
            departure_time=iso(NOW + timedelta(seconds=600)),
        )
        soon = Prediction(
            id="p2", stop_id=PARK.id, route_id="Red",
            departure_time=iso(NOW + timedelta(seconds=90)),
        )

        checked = auto_check_tasks(tasks, PARK.latitude, PARK.longitude, [vehicle], [later, soon], NOW)

        assert checked[1].completed

    @pytest.mark.asyncio
    async def test_transfer_completes_at_transfer_stop(self, transfer_plan):
        tasks = await generate_tasks(transfer_plan, STOPS)

        checked = auto_check_tasks(tasks, DTX.latitude, DTX.longitude, [], [], NOW)
        by_id = {t.id: t for t in checked}

        assert by_id["transfer-0-place-dwnxg"].completed
        assert by_id["ride-0-place-dwnxg"].completed
        # leg 1 starts at the transfer stop as well
        assert by_id["walk-1-place-dwnxg"].completed
        assert not by_id["ride-1-place-state"].completed


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
