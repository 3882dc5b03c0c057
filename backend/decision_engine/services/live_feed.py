"""
Live vehicle and prediction feed for the active trip.

Polls every MBTA_POLL_SECONDS, backs off to BACKOFF_POLL_SECONDS after
repeated failures and returns to the normal rate once vehicles come back.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Callable, List, Optional

from ..models import Prediction, TripPlan, Vehicle
from .geo import parse_iso

logger = logging.getLogger(__name__)

EMPTY_VEHICLE_THRESHOLD = 3  # Low coverage after 3 empty cycles
FAILURES_BEFORE_BACKOFF = 2
STALE_PREDICTION_SECONDS = 120


def plan_route_ids(trip_plan: Optional[TripPlan]) -> List[str]:
    if not trip_plan:
        return []
    return list(dict.fromkeys(leg.route_id for leg in trip_plan.legs))


def plan_stop_ids(trip_plan: Optional[TripPlan]) -> List[str]:
    if not trip_plan:
        return []
    ids = []
    for leg in trip_plan.legs:
        ids.extend([leg.from_stop_id, leg.to_stop_id])
    return list(dict.fromkeys(ids))


def are_predictions_stale(predictions: List[Prediction], now: Optional[datetime] = None) -> bool:
    """True when any prediction's time is already more than two minutes past."""
    if now is None:
        now = datetime.now(timezone.utc)

    for prediction in predictions:
        predicted = parse_iso(prediction.arrival_time or prediction.departure_time)
        if predicted is None:
            continue
        if (now - predicted).total_seconds() > STALE_PREDICTION_SECONDS:
            return True
    return False


class LiveFeed:
    def __init__(
        self,
        client,
        poll_seconds: float = 8.0,
        backoff_seconds: float = 15.0,
        clock: Callable[[], float] = time.time,
        on_update: Optional[Callable[[float], None]] = None,
    ):
        self.client = client
        self.on_update = on_update
        self.poll_seconds = poll_seconds
        self.backoff_seconds = backoff_seconds
        self._clock = clock

        self.vehicles: List[Vehicle] = []
        self.predictions: List[Prediction] = []
        self.last_update: Optional[float] = None
        self.consecutive_failures = 0
        self.empty_vehicle_cycles = 0
        self.stale_predictions = False
        self.poll_interval = poll_seconds

        self._task: Optional[asyncio.Task] = None

    @property
    def low_coverage(self) -> bool:
        return self.empty_vehicle_cycles >= EMPTY_VEHICLE_THRESHOLD

    @property
    def polling(self) -> bool:
        return self._task is not None

    def _record_failure(self):
        self.consecutive_failures += 1
        if self.consecutive_failures >= FAILURES_BEFORE_BACKOFF and self.poll_interval != self.backoff_seconds:
            logger.warning("Multiple failures, backing off to %ss polling", self.backoff_seconds)
            self.poll_interval = self.backoff_seconds

    async def refresh(self, trip_plan: Optional[TripPlan]) -> bool:
        """
        Fetch vehicles for the plan's routes and predictions for its stops.

        Returns False when there is no trip to poll for. Fetch errors are
        counted toward backoff and re-raised.
        """
        route_ids = plan_route_ids(trip_plan)
        stop_ids = plan_stop_ids(trip_plan)
        if not route_ids and not stop_ids:
            logger.info("No trip plan, skipping poll")
            return False

        try:
            vehicles = await self.client.get_vehicles(route_ids)
            batches = await asyncio.gather(
                *(self.client.get_predictions(stop_id, route_ids) for stop_id in stop_ids)
            )
        except Exception:
            self._record_failure()
            raise

        predictions = [prediction for batch in batches for prediction in batch]

        if not vehicles:
            self.empty_vehicle_cycles += 1
            if self.low_coverage:
                logger.warning(
                    "Low vehicle coverage detected (%d+ empty cycles)", EMPTY_VEHICLE_THRESHOLD
                )
        else:
            self.empty_vehicle_cycles = 0
            if self.poll_interval == self.backoff_seconds:
                logger.info("Recovering to normal %ss polling", self.poll_seconds)
                self.poll_interval = self.poll_seconds

        self.vehicles = vehicles
        self.predictions = predictions
        self.stale_predictions = are_predictions_stale(predictions)
        self.consecutive_failures = 0
        self.last_update = self._clock()

        logger.info(
            "Updated: %d vehicles, %d predictions%s",
            len(vehicles), len(predictions), " (STALE)" if self.stale_predictions else "",
        )
        if self.on_update is not None:
            self.on_update(self.last_update)
        return True

    async def _poll_loop(self, plan_provider: Callable[[], Optional[TripPlan]]):
        while True:
            try:
                await self.refresh(plan_provider())
            except Exception as e:
                logger.error("Poll error: %s", e)
            await asyncio.sleep(self.poll_interval)

    def start_polling(self, plan_provider: Callable[[], Optional[TripPlan]]) -> asyncio.Task:
        self.stop_polling()
        logger.info("Starting polling at %ss intervals", self.poll_interval)
        self._task = asyncio.get_running_loop().create_task(self._poll_loop(plan_provider))
        return self._task

    def stop_polling(self):
        if self._task is not None:
            self._task.cancel()
            self._task = None
