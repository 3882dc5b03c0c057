"""
GPS fix intake.

Positions are pushed by the platform location service. Each fix is checked
for valid coordinates and run through an anti-jitter filter before it
becomes the rider's current position.
"""

import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Optional

from .geo import haversine_distance, validate_lat_lng

logger = logging.getLogger(__name__)

MAX_JUMP_DISTANCE_M = 250  # Ignore jumps > 250m ...
MIN_JUMP_INTERVAL_S = 2.0  # ... within 2s
POOR_ACCURACY_THRESHOLD_M = 50
ACCURACY_SAMPLES = 10


@dataclass
class GPSFix:
    latitude: float
    longitude: float
    accuracy: float
    timestamp: float  # epoch seconds
    heading: Optional[float] = None
    speed: Optional[float] = None


class GPSTracker:
    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self.tracking = False
        self.last_fix: Optional[GPSFix] = None
        self.error: Optional[str] = None
        self._accuracy_history: deque = deque(maxlen=ACCURACY_SAMPLES)

    @property
    def average_accuracy(self) -> Optional[float]:
        if not self._accuracy_history:
            return None
        return sum(self._accuracy_history) / len(self._accuracy_history)

    def start(self):
        self.tracking = True
        self.error = None
        logger.info("GPS tracking started")

    def stop(self):
        self.tracking = False
        logger.info("GPS tracking stopped")

    def restart(self):
        """Drop the jitter history and resume tracking from the next fix."""
        self.last_fix = None
        self._accuracy_history.clear()
        self.start()

    def _is_glitch(self, fix: GPSFix) -> bool:
        """A large jump in a short time with good reported accuracy is a glitch."""
        if self.last_fix is None:
            return False

        elapsed = fix.timestamp - self.last_fix.timestamp
        distance = haversine_distance(
            self.last_fix.latitude, self.last_fix.longitude, fix.latitude, fix.longitude
        )

        if (
            distance > MAX_JUMP_DISTANCE_M
            and elapsed < MIN_JUMP_INTERVAL_S
            and fix.accuracy < POOR_ACCURACY_THRESHOLD_M
        ):
            logger.warning("Ignoring jump: %.0fm in %.1fs (likely glitch)", distance, elapsed)
            return True

        return False

    def accept(
        self,
        latitude: float,
        longitude: float,
        accuracy: float = 0.0,
        timestamp: Optional[float] = None,
        heading: Optional[float] = None,
        speed: Optional[float] = None,
    ) -> bool:
        """Take a pushed fix. Returns True when it became the current position."""
        if not validate_lat_lng(latitude, longitude):
            self.error = "Invalid GPS coordinates received"
            logger.error("Invalid coordinates: %s, %s", latitude, longitude)
            return False

        fix = GPSFix(
            latitude=latitude,
            longitude=longitude,
            accuracy=accuracy,
            timestamp=timestamp if timestamp is not None else self._clock(),
            heading=heading,
            speed=speed,
        )

        self._accuracy_history.append(accuracy)

        if self._is_glitch(fix):
            return False

        self.last_fix = fix
        self.error = None
        logger.debug("Updated: %.6f, %.6f (accuracy %.1fm)", latitude, longitude, accuracy)
        return True
