"""
Trip Planner

Resolves a rider position and a destination stop into a one- or two-leg
TripPlan:
- Direct trip when the nearest stop and the destination share a route
- One transfer, found greedily, when they don't
- A degraded single-leg plan when no transfer exists
"""

import logging
from typing import List, Optional, Tuple

from ..models import Route, Stop, TripLeg, TripPlan, TripPlanResult
from .geo import haversine_distance, validate_id, validate_lat_lng

logger = logging.getLogger(__name__)

MAX_TRANSFER_DISTANCE_M = 500  # Max walk between two stops used as a transfer

FALLBACK_WARNING = "No transfer found - showing direct route only as guidance"


def find_nearest_stop(lat: float, lng: float, all_stops: List[Stop]) -> Optional[Stop]:
    """Linear scan for the closest stop with usable coordinates. Ties keep the earlier stop."""
    nearest = None
    min_distance = float("inf")

    for stop in all_stops:
        if not stop.has_valid_coordinates:
            continue

        distance = haversine_distance(lat, lng, stop.latitude, stop.longitude)
        if distance < min_distance:
            min_distance = distance
            nearest = stop

    if nearest:
        logger.info("Nearest stop: %s (%.0fm away)", nearest.name, min_distance)

    return nearest


def get_routes_for_stop(stop: Stop, all_routes: List[Route]) -> List[Route]:
    """Routes from the catalog serving this stop, in the stop's own order."""
    by_id = {route.id: route for route in all_routes}
    routes = []
    for route_id in stop.route_ids:
        route = by_id.get(route_id)
        if route and route not in routes:
            routes.append(route)

    if not stop.route_ids:
        logger.warning("No route relationships for stop %s", stop.id)

    return routes


def find_common_routes(start_routes: List[Route], dest_routes: List[Route]) -> List[Route]:
    dest_ids = {route.id for route in dest_routes}
    return [route for route in start_routes if route.id in dest_ids]


def _stops_on_route(route: Route, all_stops: List[Stop]) -> List[Stop]:
    return [stop for stop in all_stops if route.id in stop.route_ids]


def find_transfer_stop(route1: Route, route2: Route, all_stops: List[Stop]) -> Optional[Stop]:
    """
    Find where a rider can change from route1 to route2.

    A stop served by both routes wins. Otherwise the first pair of stops
    (one per route) within MAX_TRANSFER_DISTANCE_M, returning the route1 stop.
    """
    route1_stops = _stops_on_route(route1, all_stops)
    route2_stops = _stops_on_route(route2, all_stops)
    route2_ids = {stop.id for stop in route2_stops}

    for stop in route1_stops:
        if stop.id in route2_ids and stop.has_valid_coordinates:
            logger.info("Found direct transfer stop: %s", stop.name)
            return stop

    for stop1 in route1_stops:
        if not stop1.has_valid_coordinates:
            continue
        for stop2 in route2_stops:
            if not stop2.has_valid_coordinates:
                continue

            distance = haversine_distance(
                stop1.latitude, stop1.longitude, stop2.latitude, stop2.longitude
            )
            if distance <= MAX_TRANSFER_DISTANCE_M:
                logger.info(
                    "Found nearby transfer: %s -> %s (%.0fm)", stop1.name, stop2.name, distance
                )
                return stop1

    return None


def validate_trip_leg(leg: TripLeg) -> bool:
    if not validate_id(leg.route_id):
        logger.error("Invalid route ID in leg")
        return False
    if not validate_id(leg.from_stop_id) or not validate_id(leg.to_stop_id):
        logger.error("Invalid stop IDs in leg")
        return False
    if not leg.route_name or not leg.from_stop_name or not leg.to_stop_name:
        logger.error("Missing names in leg")
        return False
    return True


def _build_leg(route: Route, from_stop: Stop, to_stop: Stop, is_transfer: bool = False) -> TripLeg:
    return TripLeg(
        route_id=route.id,
        route_name=route.name,
        from_stop_id=from_stop.id,
        from_stop_name=from_stop.name,
        to_stop_id=to_stop.id,
        to_stop_name=to_stop.name,
        is_transfer=is_transfer,
    )


def _distance_between(a: Stop, b: Stop) -> float:
    return haversine_distance(a.latitude, a.longitude, b.latitude, b.longitude)


def _search_transfer(
    start_stop: Stop,
    destination: Stop,
    start_routes: List[Route],
    dest_routes: List[Route],
    all_stops: List[Stop],
) -> Optional[Tuple[TripLeg, TripLeg, float]]:
    """Greedy search: the first (start route, dest route) pair with a valid transfer wins."""
    for start_route in start_routes:
        for dest_route in dest_routes:
            transfer_stop = find_transfer_stop(start_route, dest_route, all_stops)
            if not transfer_stop:
                continue

            leg1 = _build_leg(start_route, start_stop, transfer_stop, is_transfer=True)
            leg2 = _build_leg(dest_route, transfer_stop, destination)

            if not validate_trip_leg(leg1) or not validate_trip_leg(leg2):
                logger.warning("Transfer legs failed validation, continuing search")
                continue

            total_distance = (
                _distance_between(start_stop, transfer_stop)
                + _distance_between(transfer_stop, destination)
            )
            logger.info("Transfer route found: %s -> %s", start_route.name, dest_route.name)
            return leg1, leg2, total_distance

    return None


def plan_trip(
    user_lat: float,
    user_lng: float,
    destination_stop: Stop,
    all_stops: List[Stop],
    all_routes: List[Route],
) -> TripPlanResult:
    """
    Plan a trip from the stop nearest the rider to the destination stop.

    Failures are returned, not raised. `recoverable=False` means the input
    must change before retrying; `recoverable=True` means the same request
    may succeed once transit data has loaded.
    """
    warnings: List[str] = []

    try:
        if not validate_lat_lng(user_lat, user_lng):
            return TripPlanResult.failure("Invalid user location coordinates", recoverable=False)

        if not validate_id(destination_stop.id):
            return TripPlanResult.failure("Invalid destination stop", recoverable=False)

        start_stop = find_nearest_stop(user_lat, user_lng, all_stops)
        if not start_stop:
            logger.warning("No stops available for nearest stop search")
            return TripPlanResult.failure("Could not find nearby start stop", recoverable=False)

        if start_stop.id == destination_stop.id:
            return TripPlanResult.failure(
                "Start and destination are the same stop", recoverable=False
            )

        if not destination_stop.has_valid_coordinates:
            return TripPlanResult.failure(
                "Destination stop has no coordinates", recoverable=True
            )

        start_routes = get_routes_for_stop(start_stop, all_routes)
        dest_routes = get_routes_for_stop(destination_stop, all_routes)

        if not start_routes:
            return TripPlanResult.failure("No routes found at start stop", recoverable=True)
        if not dest_routes:
            return TripPlanResult.failure("No routes found at destination stop", recoverable=True)

        common_routes = find_common_routes(start_routes, dest_routes)
        if common_routes:
            route = common_routes[0]
            leg = _build_leg(route, start_stop, destination_stop)

            if not validate_trip_leg(leg):
                return TripPlanResult.failure(
                    "Generated trip leg failed validation", recoverable=True
                )

            logger.info("Direct route found: %s", route.name)
            return TripPlanResult.success(TripPlan(
                legs=[leg],
                total_distance=_distance_between(start_stop, destination_stop),
                has_transfer=False,
                warnings=warnings,
                missing_shapes=False,
            ))

        logger.info("No direct route, searching for transfers...")
        transfer = _search_transfer(
            start_stop, destination_stop, start_routes, dest_routes, all_stops
        )
        if transfer:
            leg1, leg2, total_distance = transfer
            return TripPlanResult.success(TripPlan(
                legs=[leg1, leg2],
                total_distance=total_distance,
                has_transfer=True,
                warnings=warnings,
                missing_shapes=False,
            ))

        # Best effort: any route out of the start stop, flagged as degraded
        logger.warning("Transfer search failed, falling back to best-effort")
        warnings.append(FALLBACK_WARNING)

        leg = _build_leg(start_routes[0], start_stop, destination_stop)
        return TripPlanResult.success(TripPlan(
            legs=[leg],
            total_distance=_distance_between(start_stop, destination_stop),
            has_transfer=False,
            warnings=warnings,
            missing_shapes=True,
        ))

    except Exception as e:
        message = str(e) or "Trip planning failed"
        logger.exception("Trip planning error: %s", message)
        return TripPlanResult.failure(message, recoverable=True)

