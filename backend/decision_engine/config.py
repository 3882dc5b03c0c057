"""
Engine configuration.

Values come from the environment (a .env file is honored through
python-dotenv). Defaults match the intervals the mobile client was tuned for.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional


DEFAULT_BASE_URL = "https://api-v3.mbta.com"


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


@dataclass
class Settings:
    mbta_api_key: Optional[str] = None
    mbta_api_base_url: str = DEFAULT_BASE_URL

    # Supervisor
    supervisor_interval_seconds: float = 3.0
    gps_stale_threshold_seconds: float = 10.0
    mbta_stale_threshold_seconds: float = 20.0

    # Producers the supervisor watches
    gps_min_seconds: float = 5.0
    mbta_poll_seconds: float = 8.0
    backoff_poll_seconds: float = 15.0

    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables."""
        return cls(
            mbta_api_key=os.getenv("MBTA_API_KEY") or None,
            mbta_api_base_url=os.getenv("MBTA_API_BASE_URL", DEFAULT_BASE_URL),
            supervisor_interval_seconds=_float_env("SUPERVISOR_INTERVAL_SECONDS", 3.0),
            gps_stale_threshold_seconds=_float_env("GPS_STALE_THRESHOLD_SECONDS", 10.0),
            mbta_stale_threshold_seconds=_float_env("MBTA_STALE_THRESHOLD_SECONDS", 20.0),
            gps_min_seconds=_float_env("GPS_MIN_SECONDS", 5.0),
            mbta_poll_seconds=_float_env("MBTA_POLL_SECONDS", 8.0),
            backoff_poll_seconds=_float_env("BACKOFF_POLL_SECONDS", 15.0),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


@dataclass
class ContractReport:
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.errors


def validate_settings(settings: Settings) -> ContractReport:
    """
    Check that the configured intervals are consistent with each other.

    Stale thresholds must cover at least two intervals of the producer they watch.
    """
    report = ContractReport()

    if not 1.0 <= settings.gps_min_seconds <= 30.0:
        report.errors.append(
            f"GPS_MIN_SECONDS out of range: {settings.gps_min_seconds} (expected 1-30)"
        )

    if not 5.0 <= settings.mbta_poll_seconds <= 30.0:
        report.errors.append(
            f"MBTA_POLL_SECONDS out of range: {settings.mbta_poll_seconds} (expected 5-30)"
        )

    if settings.backoff_poll_seconds <= settings.mbta_poll_seconds:
        report.errors.append(
            f"BACKOFF_POLL_SECONDS must be > MBTA_POLL_SECONDS "
            f"({settings.backoff_poll_seconds} vs {settings.mbta_poll_seconds})"
        )

    if not 1.0 <= settings.supervisor_interval_seconds <= 10.0:
        report.errors.append(
            f"SUPERVISOR_INTERVAL_SECONDS out of range: "
            f"{settings.supervisor_interval_seconds} (expected 1-10)"
        )

    if settings.gps_stale_threshold_seconds < settings.gps_min_seconds * 2:
        report.errors.append(
            f"GPS_STALE_THRESHOLD_SECONDS too low: {settings.gps_stale_threshold_seconds} "
            f"(should be at least 2x GPS_MIN_SECONDS = {settings.gps_min_seconds * 2})"
        )

    if settings.mbta_stale_threshold_seconds < settings.mbta_poll_seconds * 2:
        report.errors.append(
            f"MBTA_STALE_THRESHOLD_SECONDS too low: {settings.mbta_stale_threshold_seconds} "
            f"(should be at least 2x MBTA_POLL_SECONDS = {settings.mbta_poll_seconds * 2})"
        )

    if not settings.mbta_api_key:
        report.warnings.append("MBTA_API_KEY not set - using unauthenticated requests")
    elif len(settings.mbta_api_key) < 10:
        report.warnings.append("MBTA_API_KEY seems too short - verify it is correct")

    if not settings.mbta_api_base_url:
        report.errors.append("MBTA_API_BASE_URL not set")
    elif not settings.mbta_api_base_url.startswith("https://"):
        report.errors.append("MBTA_API_BASE_URL must use HTTPS")

    return report
