"""
Supervisor

A periodic control loop that watches four things for drift:
- GPS: tracking enabled, valid coordinates, recent fix
- Live feed: recent vehicle/prediction refresh while a trip is active
- Trip plan: has legs, every leg has route and stop ids
- Tasks: a task list exists for the current plan

Each tick runs all health checks first, then the auto-corrections in a
fixed order (GPS, feed, plan, tasks). Corrections are delegated to injected
callbacks; the supervisor itself holds no planning logic. A failing
callback is recorded as a failed AutoFix and never stops the loop.
"""

import asyncio
import logging
import time
from collections import deque
from typing import Awaitable, Callable, List, Optional, Protocol, Tuple, Union

from ..config import Settings
from ..models import (
    AutoFix,
    DiagnosticLog,
    GameTask,
    GPSHealth,
    LogCategory,
    LogLevel,
    MBTAHealth,
    SupervisorState,
    SystemHealth,
    TaskHealth,
    TripPlan,
    TripPlanHealth,
)
from .geo import validate_lat_lng

logger = logging.getLogger(__name__)

MAX_LOG_ENTRIES = 50
MAX_AUTO_FIX_HISTORY = 20

_LOG_LEVELS = {
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "info": logging.INFO,
}

SupervisorEvent = Union[DiagnosticLog, AutoFix]


class SupervisorCallbacks(Protocol):
    """Corrections the supervisor may request. All are async and may raise."""

    async def restart_gps(self) -> None:
        ...

    async def refresh_mbta(self) -> None:
        ...

    async def regenerate_trip_plan(self, destination_stop_id: str) -> None:
        ...

    async def regenerate_tasks(self, trip_plan: TripPlan, preserve_completed: bool) -> None:
        ...


class DiagnosticSink:
    """
    Fan-out for supervisor events. Subscribers (UI, telemetry) receive every
    DiagnosticLog and AutoFix as it is recorded.
    """

    def __init__(self):
        self._subscribers: List[Callable[[SupervisorEvent], None]] = []

    def subscribe(self, callback: Callable[[SupervisorEvent], None]) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, event: SupervisorEvent) -> None:
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.exception("Diagnostic subscriber failed")


class Supervisor:
    def __init__(
        self,
        callbacks: SupervisorCallbacks,
        settings: Optional[Settings] = None,
        sink: Optional[DiagnosticSink] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.callbacks = callbacks
        self.settings = settings or Settings()
        self.sink = sink or DiagnosticSink()
        self._clock = clock

        self._health = SystemHealth()
        self._errors: deque = deque(maxlen=MAX_LOG_ENTRIES)
        self._warnings: deque = deque(maxlen=MAX_LOG_ENTRIES)
        self._auto_fixes: deque = deque(maxlen=MAX_AUTO_FIX_HISTORY)

        self._running = False
        self._task: Optional[asyncio.Task] = None

        # Externally reported state
        self._trip_plan: Optional[TripPlan] = None
        self._destination_stop_id: Optional[str] = None
        self._tasks: List[GameTask] = []
        self._gps_tracking = False
        self._gps_position: Optional[Tuple[float, float]] = None
        self._gps_last_update: Optional[float] = None
        self._feed_last_update: Optional[float] = None

    # --- State setters ---

    def update_trip_plan(self, trip_plan: Optional[TripPlan], destination_stop_id: Optional[str]):
        self._trip_plan = trip_plan
        self._destination_stop_id = destination_stop_id

    def update_tasks(self, tasks: List[GameTask]):
        self._tasks = list(tasks)

    def set_gps_tracking(self, active: bool):
        self._gps_tracking = active

    def report_gps(self, latitude: float, longitude: float, timestamp: Optional[float] = None):
        self._gps_position = (latitude, longitude)
        self._gps_last_update = timestamp if timestamp is not None else self._clock()

    def report_feed_update(self, timestamp: Optional[float] = None):
        self._feed_last_update = timestamp if timestamp is not None else self._clock()

    @property
    def trip_plan(self) -> Optional[TripPlan]:
        return self._trip_plan

    @property
    def tasks(self) -> List[GameTask]:
        return list(self._tasks)

    @property
    def destination_stop_id(self) -> Optional[str]:
        return self._destination_stop_id

    # --- Logging ---

    def _add_log(
        self,
        level: LogLevel,
        category: LogCategory,
        message: str,
        action: Optional[str] = None,
    ):
        log = DiagnosticLog(
            timestamp=self._clock(),
            level=level,
            category=category,
            message=message,
            action=action,
        )
        if level == "error":
            self._errors.append(log)
        elif level == "warning":
            self._warnings.append(log)

        suffix = f" -> {action}" if action else ""
        logger.log(_LOG_LEVELS[level], "[%s] %s%s", category, message, suffix)
        self.sink.publish(log)

    def _add_auto_fix(self, fix: AutoFix):
        self._auto_fixes.append(fix)
        logger.log(
            logging.INFO if fix.success else logging.WARNING,
            "AUTO-FIX [%s] %s -> %s (%s)",
            fix.category, fix.issue, fix.action, "SUCCESS" if fix.success else "FAILED",
        )
        self.sink.publish(fix)

    # --- Health checks ---

    def check_gps_health(self):
        now = self._clock()
        active = self._gps_tracking
        last_update = self._gps_last_update

        if last_update is None:
            stale = True
        else:
            stale = now - last_update > self.settings.gps_stale_threshold_seconds

        valid = False
        if self._gps_position is not None:
            valid = validate_lat_lng(*self._gps_position)

        self._health.gps = GPSHealth(active=active, valid=valid, stale=stale, last_update=last_update)

        if not active:
            self._add_log("warning", "gps", "GPS tracking is not active", "Will attempt restart")
        elif not valid:
            self._add_log("error", "gps", "GPS coordinates are invalid", "Will attempt restart")
        elif stale:
            age = int(now - last_update)
            self._add_log("warning", "gps", f"GPS data is stale ({age}s old)", "Will attempt restart")

    def check_mbta_health(self):
        now = self._clock()
        last_update = self._feed_last_update

        if last_update is None:
            stale = True
        else:
            stale = now - last_update > self.settings.mbta_stale_threshold_seconds
        has_trip_plan = self._trip_plan is not None and len(self._trip_plan.legs) > 0

        self._health.mbta = MBTAHealth(
            polling=not stale,
            stale=stale,
            last_update=last_update,
            has_trip_plan=has_trip_plan,
        )

        # Live data only matters once a trip is underway
        if has_trip_plan and stale:
            age = int(now - (last_update if last_update is not None else now))
            self._add_log(
                "warning", "mbta", f"MBTA data is stale ({age}s old)", "Will trigger refresh"
            )

    def check_trip_plan_health(self):
        if self._trip_plan is None:
            self._health.trip_plan = TripPlanHealth()
            return

        legs = self._trip_plan.legs
        has_legs = len(legs) > 0
        ids_present = all(leg.route_id and leg.from_stop_id and leg.to_stop_id for leg in legs)
        valid = has_legs and ids_present

        self._health.trip_plan = TripPlanHealth(valid=valid, has_legs=has_legs, ids_present=ids_present)

        if not has_legs:
            self._add_log(
                "error", "tripPlan", "TripPlan has no legs",
                "Will regenerate if destination available",
            )
        elif not ids_present:
            self._add_log(
                "error", "tripPlan", "TripPlan has missing route/stop IDs",
                "Will regenerate if destination available",
            )

    def check_tasks_health(self):
        count = len(self._tasks)
        synced = count > 0 and self._trip_plan is not None

        self._health.tasks = TaskHealth(synced=synced, count=count)

        if self._trip_plan is not None and count == 0:
            self._add_log(
                "warning", "tasks", "No tasks generated despite having TripPlan",
                "Will regenerate tasks",
            )
        elif self._trip_plan is None and count > 0:
            self._add_log("warning", "tasks", "Tasks exist but no TripPlan", "Tasks are orphaned")

    def run_health_checks(self):
        self.check_gps_health()
        self.check_mbta_health()
        self.check_trip_plan_health()
        self.check_tasks_health()

    # --- Auto-corrections ---

    async def _attempt(
        self,
        category: LogCategory,
        issue: str,
        action: str,
        failed_action: str,
        correction: Callable[[], Awaitable[None]],
    ):
        try:
            await correction()
        except Exception as e:
            self._add_auto_fix(AutoFix(
                timestamp=self._clock(),
                category=category,
                issue=issue,
                action=failed_action,
                success=False,
                error=str(e),
            ))
            return

        self._add_auto_fix(AutoFix(
            timestamp=self._clock(),
            category=category,
            issue=issue,
            action=action,
            success=True,
        ))

    async def auto_correct_gps(self):
        gps = self._health.gps
        if gps.active and gps.valid and not gps.stale:
            return

        if not gps.active:
            issue = "GPS not active"
        elif not gps.valid:
            issue = "Invalid GPS coords"
        else:
            issue = "Stale GPS data"

        await self._attempt(
            "gps", issue, "Restarted GPS tracking", "Attempted GPS restart",
            self.callbacks.restart_gps,
        )

    async def auto_correct_mbta(self):
        mbta = self._health.mbta
        if not (mbta.has_trip_plan and mbta.stale):
            return

        await self._attempt(
            "mbta", "Stale MBTA data", "Triggered immediate refresh", "Attempted MBTA refresh",
            self.callbacks.refresh_mbta,
        )

    async def auto_correct_trip_plan(self):
        destination = self._destination_stop_id
        if not destination or self._health.trip_plan.valid:
            return

        await self._attempt(
            "tripPlan", "Invalid TripPlan", "Regenerated trip plan",
            "Attempted trip plan regeneration",
            lambda: self.callbacks.regenerate_trip_plan(destination),
        )

    async def auto_correct_tasks(self):
        # Read the plan now, not at check time: a plan regenerated earlier
        # in this tick is the one tasks must follow.
        trip_plan = self._trip_plan
        if trip_plan is None or self._health.tasks.synced:
            return

        await self._attempt(
            "tasks", "Tasks desynced", "Regenerated tasks (preserved completed)",
            "Attempted task regeneration",
            lambda: self.callbacks.regenerate_tasks(trip_plan, True),
        )

    async def run_auto_corrections(self):
        await self.auto_correct_gps()
        await self.auto_correct_mbta()
        await self.auto_correct_trip_plan()
        await self.auto_correct_tasks()

    async def tick(self):
        """One full pass: every health check, then every correction."""
        self.run_health_checks()
        await self.run_auto_corrections()

    # --- Loop control ---

    @property
    def is_running(self) -> bool:
        return self._running

    async def _run(self):
        interval = self.settings.supervisor_interval_seconds
        while self._running:
            try:
                await self.tick()
            except Exception:
                logger.exception("Supervisor tick failed")
            # The next tick is scheduled only after this one finished
            await asyncio.sleep(interval)

    def start(self) -> asyncio.Task:
        """
        Start the loop on the running event loop and return its handle.
        The first tick runs immediately. Starting twice returns the same handle.
        """
        if self._running and self._task is not None:
            logger.info("Supervisor already running")
            return self._task

        self._running = True
        logger.info(
            "Starting health monitoring (every %ss)", self.settings.supervisor_interval_seconds
        )
        self._task = asyncio.get_running_loop().create_task(self._run())
        return self._task

    def stop(self):
        if self._task is not None:
            self._task.cancel()
            self._task = None
        self._running = False
        logger.info("Supervisor stopped")

    # --- Inspection ---

    def get_state(self) -> SupervisorState:
        return SupervisorState(
            health=self._health.model_copy(deep=True),
            errors=list(self._errors),
            warnings=list(self._warnings),
            last_auto_fix=list(self._auto_fixes),
            is_running=self._running,
        )

    def clear_logs(self):
        self._errors.clear()
        self._warnings.clear()
        self._auto_fixes.clear()
        logger.info("Supervisor logs cleared")
