import math
from datetime import datetime, timezone
from typing import Optional

EARTH_RADIUS_M = 6371000

MAX_ID_LENGTH = 256


def haversine_distance(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Calculate distance in meters between two points"""
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lng = math.radians(lng2 - lng1)

    a = (math.sin(delta_lat / 2) ** 2 +
         math.cos(lat1_rad) * math.cos(lat2_rad) *
         math.sin(delta_lng / 2) ** 2)
    c = 2 * math.asin(math.sqrt(min(1.0, a)))

    return EARTH_RADIUS_M * c


def validate_lat_lng(lat, lng) -> bool:
    """True when both values are real numbers inside the WGS84 ranges."""
    if isinstance(lat, bool) or isinstance(lng, bool):
        return False
    if not isinstance(lat, (int, float)) or not isinstance(lng, (int, float)):
        return False
    if math.isnan(lat) or math.isnan(lng):
        return False
    return -90 <= lat <= 90 and -180 <= lng <= 180


def validate_id(value) -> bool:
    if not isinstance(value, str):
        return False
    return 0 < len(value) < MAX_ID_LENGTH


def parse_iso(timestamp: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp from the MBTA API.

    Returns None for empty or malformed values instead of raising, since a
    missing time is an ordinary condition in live data.
    """
    if not timestamp or not isinstance(timestamp, str):
        return None
    if timestamp.endswith("Z"):
        timestamp = timestamp.replace("Z", "+00:00")
    try:
        parsed = datetime.fromisoformat(timestamp)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
