"""
Task Generator

Expands a TripPlan into geofenced game tasks and decides, from live GPS,
vehicle and prediction snapshots, which of them the rider has completed.

Each leg yields, in order:
- walk-to-stop  (from stop, 100m)
- board         (from stop, 150m - wider to tolerate vehicle GPS noise)
- ride          (to stop, 100m)
- transfer      (to stop, 100m) only on a non-final transfer leg
"""

import logging
from datetime import datetime, timezone
from typing import Awaitable, Dict, List, Optional, Protocol

from ..models import GameTask, Prediction, Stop, TaskGeoFence, TaskType, TripLeg, TripPlan, Vehicle
from .geo import haversine_distance, parse_iso, validate_id, validate_lat_lng

logger = logging.getLogger(__name__)

STOP_RADIUS_M = 100  # Rider must be within 100m of the stop
VEHICLE_RADIUS_M = 150  # Vehicle must be within 150m for boarding
DEPARTURE_WINDOW_SEC = 120  # Departure must be within 2 minutes

XP_WALK = 10
XP_BOARD = 20
XP_RIDE = 30
XP_TRANSFER = 50


class StopSource(Protocol):
    """Anything that can list the stops on a route (the MBTA client in production)."""

    def get_stops_by_route(self, route_id: str) -> Awaitable[List[Stop]]:
        ...


def validate_task(task: GameTask) -> Optional[str]:
    """Return the reason a task is unusable, or None when it is valid."""
    if not task.id:
        return "Task missing ID"
    if not task.type:
        return "Task missing type"
    if task.stop_id is not None and not validate_id(task.stop_id):
        return "Task has invalid stop ID"
    if task.route_id is not None and not validate_id(task.route_id):
        return "Task has invalid route ID"
    if task.geo_fence is None:
        return "Task missing geoFence"
    if not validate_lat_lng(task.geo_fence.latitude, task.geo_fence.longitude):
        return "Task has invalid geoFence coordinates"
    if task.geo_fence.radius_meters <= 0:
        return "Task has invalid geoFence radius"
    return None


async def fetch_stop_coordinates(
    stop_id: str,
    route_id: str,
    stop_source: Optional[StopSource],
) -> Optional[Stop]:
    """One-shot lookup of a stop's coordinates through its route's stop list."""
    if stop_source is None:
        return None

    try:
        stops = await stop_source.get_stops_by_route(route_id)
    except Exception as e:
        logger.error("Error fetching stop coordinates for %s: %s", stop_id, e)
        return None

    stop = next((s for s in stops if s.id == stop_id), None)
    if not stop:
        logger.warning("Stop %s not found in route %s", stop_id, route_id)
        return None

    if not stop.has_valid_coordinates:
        logger.warning("Stop %s has invalid coordinates", stop_id)
        return None

    return stop


async def _resolve_stop(
    stop_id: str,
    stop_name: str,
    route_id: str,
    stops_by_id: Dict[str, Stop],
    stop_source: Optional[StopSource],
) -> Optional[Stop]:
    stop = stops_by_id.get(stop_id)
    if stop and stop.has_valid_coordinates:
        return stop

    logger.warning("Fetching coordinates for stop %s", stop_id)
    fetched = await fetch_stop_coordinates(stop_id, route_id, stop_source)
    if not fetched:
        return None

    return Stop(
        id=stop_id,
        name=stop_name,
        latitude=fetched.latitude,
        longitude=fetched.longitude,
        route_ids=fetched.route_ids,
    )


def _fence(stop: Stop, radius: float) -> TaskGeoFence:
    return TaskGeoFence(latitude=stop.latitude, longitude=stop.longitude, radius_meters=radius)


def build_leg_tasks(
    leg: TripLeg,
    leg_index: int,
    from_stop: Stop,
    to_stop: Stop,
    next_leg: Optional[TripLeg] = None,
) -> List[GameTask]:
    """Tasks for one leg with resolved stops, before validation."""
    tasks = [
        GameTask(
            id=f"walk-{leg_index}-{leg.from_stop_id}",
            type=TaskType.WALK_TO_STOP,
            title=f"Walk to {leg.from_stop_name}",
            description=f"Get to {leg.from_stop_name} to catch the {leg.route_name}",
            stop_id=leg.from_stop_id,
            stop_name=leg.from_stop_name,
            route_id=leg.route_id,
            route_name=leg.route_name,
            geo_fence=_fence(from_stop, STOP_RADIUS_M),
            xp_reward=XP_WALK,
            leg_index=leg_index,
        ),
        GameTask(
            id=f"board-{leg_index}-{leg.route_id}",
            type=TaskType.BOARD,
            title=f"Board {leg.route_name}",
            description=f"Board the {leg.route_name} heading to {leg.to_stop_name}",
            stop_id=leg.from_stop_id,
            stop_name=leg.from_stop_name,
            route_id=leg.route_id,
            route_name=leg.route_name,
            geo_fence=_fence(from_stop, VEHICLE_RADIUS_M),
            xp_reward=XP_BOARD,
            leg_index=leg_index,
        ),
        GameTask(
            id=f"ride-{leg_index}-{leg.to_stop_id}",
            type=TaskType.RIDE,
            title=f"Ride to {leg.to_stop_name}",
            description=f"Stay on the {leg.route_name} until {leg.to_stop_name}",
            stop_id=leg.to_stop_id,
            stop_name=leg.to_stop_name,
            route_id=leg.route_id,
            route_name=leg.route_name,
            geo_fence=_fence(to_stop, STOP_RADIUS_M),
            xp_reward=XP_RIDE,
            leg_index=leg_index,
        ),
    ]

    if leg.is_transfer and next_leg is not None:
        tasks.append(GameTask(
            id=f"transfer-{leg_index}-{leg.to_stop_id}",
            type=TaskType.TRANSFER,
            title=f"Transfer to {next_leg.route_name}",
            description=f"Transfer from {leg.route_name} to {next_leg.route_name}",
            stop_id=leg.to_stop_id,
            stop_name=leg.to_stop_name,
            route_id=next_leg.route_id,
            route_name=next_leg.route_name,
            geo_fence=_fence(to_stop, STOP_RADIUS_M),
            xp_reward=XP_TRANSFER,
            leg_index=leg_index,
        ))

    return tasks


async def generate_tasks(
    trip_plan: TripPlan,
    all_stops: List[Stop],
    stop_source: Optional[StopSource] = None,
) -> List[GameTask]:
    """
    Generate the ordered task list for a trip plan.

    A leg whose stops cannot be located (in the catalog or through
    `stop_source`) is skipped; the remaining legs still produce tasks.
    """
    tasks: List[GameTask] = []
    stops_by_id = {stop.id: stop for stop in all_stops}
    legs = trip_plan.legs

    for leg_index, leg in enumerate(legs):
        from_stop = await _resolve_stop(
            leg.from_stop_id, leg.from_stop_name, leg.route_id, stops_by_id, stop_source
        )
        if not from_stop:
            logger.error(
                "Could not get coordinates for stop %s, skipping tasks", leg.from_stop_id
            )
            continue

        to_stop = await _resolve_stop(
            leg.to_stop_id, leg.to_stop_name, leg.route_id, stops_by_id, stop_source
        )
        if not to_stop:
            logger.error(
                "Could not get coordinates for stop %s, skipping tasks", leg.to_stop_id
            )
            continue

        next_leg = legs[leg_index + 1] if leg_index < len(legs) - 1 else None

        for task in build_leg_tasks(leg, leg_index, from_stop, to_stop, next_leg):
            reason = validate_task(task)
            if reason:
                logger.error("%s task failed validation: %s", task.type.value, reason)
                continue
            tasks.append(task)

    logger.info("Generated %d tasks from trip plan", len(tasks))
    return tasks


# --- Completion predicates ---

def is_within_geofence(task: GameTask, user_lat: float, user_lng: float) -> bool:
    distance = haversine_distance(
        user_lat, user_lng, task.geo_fence.latitude, task.geo_fence.longitude
    )
    return distance <= task.geo_fence.radius_meters


def check_walk_to_stop_completion(task: GameTask, user_lat: float, user_lng: float) -> bool:
    if task.type != TaskType.WALK_TO_STOP:
        return False
    return is_within_geofence(task, user_lat, user_lng)


def check_ride_completion(task: GameTask, user_lat: float, user_lng: float) -> bool:
    """Ride and transfer tasks both complete on arrival at the to-stop."""
    if task.type not in (TaskType.RIDE, TaskType.TRANSFER):
        return False
    return is_within_geofence(task, user_lat, user_lng)


def _departs_within_window(prediction: Prediction, now: datetime) -> bool:
    departure = parse_iso(prediction.departure_time)
    if departure is None:
        return False
    seconds_until = (departure - now).total_seconds()
    return 0 <= seconds_until <= DEPARTURE_WINDOW_SEC


def check_board_completion(
    task: GameTask,
    user_lat: float,
    user_lng: float,
    vehicles: List[Vehicle],
    predictions: List[Prediction],
    now: Optional[datetime] = None,
) -> bool:
    """
    Boarding needs a vehicle on the task's route next to the rider AND a
    prediction for this stop/route that departs within two minutes. A vehicle
    alone is not enough: a parked or terminating train is also nearby.
    """
    if task.type != TaskType.BOARD:
        return False
    if not task.route_id or not task.stop_id:
        return False

    route_vehicles = [v for v in vehicles if v.route_id == task.route_id]
    if not route_vehicles:
        return False

    if now is None:
        now = datetime.now(timezone.utc)

    departing_soon = any(
        p.stop_id == task.stop_id
        and p.route_id == task.route_id
        and _departs_within_window(p, now)
        for p in predictions
    )
    if not departing_soon:
        return False

    for vehicle in route_vehicles:
        if not validate_lat_lng(vehicle.latitude, vehicle.longitude):
            continue
        distance = haversine_distance(user_lat, user_lng, vehicle.latitude, vehicle.longitude)
        if distance <= VEHICLE_RADIUS_M:
            return True

    return False


def auto_check_tasks(
    tasks: List[GameTask],
    user_lat: float,
    user_lng: float,
    vehicles: List[Vehicle],
    predictions: List[Prediction],
    now: Optional[datetime] = None,
) -> List[GameTask]:
    """Return a new task list with `completed` updated. The input is left untouched."""
    if now is None:
        now = datetime.now(timezone.utc)

    checked = []
    for task in tasks:
        if task.completed:
            checked.append(task)
            continue

        if task.type == TaskType.WALK_TO_STOP:
            completed = check_walk_to_stop_completion(task, user_lat, user_lng)
        elif task.type == TaskType.BOARD:
            completed = check_board_completion(
                task, user_lat, user_lng, vehicles, predictions, now
            )
        elif task.type in (TaskType.RIDE, TaskType.TRANSFER):
            completed = check_ride_completion(task, user_lat, user_lng)
        else:
            completed = False

        if completed:
            logger.info("Task completed: %s (+%d XP)", task.title, task.xp_reward)

        checked.append(task.model_copy(update={"completed": completed}))

    return checked
