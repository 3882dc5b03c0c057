"""
Trip session: one rider's engine state and the concrete supervisor callbacks.

The session owns the stop/route catalog, the GPS tracker and the live feed.
The current plan and task list live on the supervisor, which is their only
writer after the initial request.
"""

import logging
import time
from datetime import datetime
from typing import Callable, List, Optional
from zoneinfo import ZoneInfo

from ..config import Settings
from ..models import GameTask, Route, Stop, TransferConfidence, TripPlan, TripPlanResult
from .confidence import (
    compute_transfer_confidence,
    compute_transfer_confidence_with_schedules,
    drop_departed,
)
from .gps import GPSTracker
from .live_feed import LiveFeed, plan_route_ids
from .mbta import SERVICE_TIMEZONE, MBTAClient
from .supervisor import DiagnosticSink, Supervisor
from .task_generator import auto_check_tasks, generate_tasks
from .trip_planner import plan_trip

logger = logging.getLogger(__name__)


class SessionError(Exception):
    """A correction or request the session could not carry out."""


class TripSession:
    def __init__(
        self,
        client: MBTAClient,
        settings: Optional[Settings] = None,
        sink: Optional[DiagnosticSink] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.client = client
        self._clock = clock
        self.settings = settings or Settings()
        self.stops: List[Stop] = []
        self.routes: List[Route] = []

        self.gps = GPSTracker(clock=clock)
        self.supervisor = Supervisor(self, self.settings, sink=sink, clock=clock)
        self.live_feed = LiveFeed(
            client,
            poll_seconds=self.settings.mbta_poll_seconds,
            backoff_seconds=self.settings.backoff_poll_seconds,
            clock=clock,
            on_update=self.supervisor.report_feed_update,
        )

    @property
    def trip_plan(self) -> Optional[TripPlan]:
        return self.supervisor.trip_plan

    @property
    def tasks(self) -> List[GameTask]:
        return self.supervisor.tasks

    def find_stop(self, stop_id: str) -> Optional[Stop]:
        return next((stop for stop in self.stops if stop.id == stop_id), None)

    async def load_catalog(self):
        self.routes = await self.client.get_routes()
        self.stops = await self.client.get_stops(self.routes)
        logger.info("Loaded %d routes and %d stops", len(self.routes), len(self.stops))

    # --- Requests from the UI layer ---

    def report_gps(
        self,
        latitude: float,
        longitude: float,
        accuracy: float = 0.0,
        timestamp: Optional[float] = None,
        heading: Optional[float] = None,
        speed: Optional[float] = None,
    ) -> bool:
        if not self.gps.tracking:
            self.gps.start()
        accepted = self.gps.accept(latitude, longitude, accuracy, timestamp, heading, speed)
        self.supervisor.set_gps_tracking(self.gps.tracking)
        if accepted:
            fix = self.gps.last_fix
            self.supervisor.report_gps(fix.latitude, fix.longitude, fix.timestamp)
        return accepted

    def plan_trip(self, user_lat: float, user_lng: float, destination_stop_id: str) -> TripPlanResult:
        destination = self.find_stop(destination_stop_id)
        if destination is None:
            return TripPlanResult.failure(
                f"Unknown destination stop {destination_stop_id}",
                recoverable=not self.stops,
            )

        result = plan_trip(user_lat, user_lng, destination, self.stops, self.routes)
        if result.ok:
            self.supervisor.update_trip_plan(result.plan, destination_stop_id)
        return result

    async def generate_tasks(self) -> List[GameTask]:
        if self.trip_plan is None:
            raise SessionError("No trip plan to generate tasks from")
        await self.regenerate_tasks(self.trip_plan, preserve_completed=True)
        return self.tasks

    def check_tasks(self, user_lat: float, user_lng: float, now: Optional[datetime] = None) -> List[GameTask]:
        tasks = auto_check_tasks(
            self.tasks, user_lat, user_lng, self.live_feed.vehicles, self.live_feed.predictions, now
        )
        self.supervisor.update_tasks(tasks)
        return tasks

    async def transfer_confidence(self, use_schedules: bool = False) -> List[TransferConfidence]:
        plan = self.trip_plan
        if plan is None:
            return []

        predictions = self.live_feed.predictions
        confidences = compute_transfer_confidence(plan, predictions)
        missing = [c for c in confidences if c.missing_data]
        if not use_schedules or not missing:
            return confidences

        now = datetime.fromtimestamp(self._clock(), tz=ZoneInfo(SERVICE_TIMEZONE))
        schedules = []
        for confidence in missing:
            schedules.extend(await self.client.get_schedules(
                confidence.transfer_stop_id,
                plan_route_ids(plan),
                min_time=now.strftime("%H:%M"),
            ))
        schedules = drop_departed(schedules, now)
        return compute_transfer_confidence_with_schedules(plan, predictions, schedules)

    # --- Supervisor callbacks ---

    async def restart_gps(self):
        self.gps.restart()
        self.supervisor.set_gps_tracking(self.gps.tracking)

    async def refresh_mbta(self):
        await self.live_feed.refresh(self.trip_plan)

    async def regenerate_trip_plan(self, destination_stop_id: str):
        fix = self.gps.last_fix
        if fix is None:
            raise SessionError("No GPS position to plan from")

        result = self.plan_trip(fix.latitude, fix.longitude, destination_stop_id)
        if not result.ok:
            raise SessionError(result.error)

    async def regenerate_tasks(self, trip_plan: TripPlan, preserve_completed: bool):
        tasks = await generate_tasks(trip_plan, self.stops, self.client)

        if preserve_completed:
            # Task ids are stable per leg, so progress carries over by id
            done = {task.id for task in self.tasks if task.completed}
            tasks = [
                task.model_copy(update={"completed": True}) if task.id in done else task
                for task in tasks
            ]

        self.supervisor.update_tasks(tasks)

    # --- Lifecycle ---

    def start(self):
        self.supervisor.start()
        self.live_feed.start_polling(lambda: self.trip_plan)

    def stop(self):
        self.live_feed.stop_polling()
        self.supervisor.stop()
