from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from .services.geo import validate_lat_lng


def _related_ids(record: Dict[str, Any], name: str) -> List[str]:
    """
    Pull ids out of a JSON:API relationship that may be a single
    resource identifier, a list of them, or absent.
    """
    data = (record.get("relationships") or {}).get(name, {}) or {}
    data = data.get("data")
    if not data:
        return []
    if isinstance(data, list):
        return [item["id"] for item in data if item and item.get("id")]
    return [data["id"]] if data.get("id") else []


def _related_id(record: Dict[str, Any], name: str) -> Optional[str]:
    ids = _related_ids(record, name)
    return ids[0] if ids else None


# --- Transit catalog snapshots ---

class Stop(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    route_ids: List[str] = Field(default_factory=list)

    @property
    def has_valid_coordinates(self) -> bool:
        return validate_lat_lng(self.latitude, self.longitude)

    @classmethod
    def from_api(cls, record: Dict[str, Any], route_ids: Optional[List[str]] = None) -> "Stop":
        """
        Build a Stop from a JSON:API stop record.

        `route_ids` adds memberships known from the request itself, e.g. a
        /stops?filter[route]=Red response does not repeat the route on each stop.
        """
        attrs = record.get("attributes", {}) or {}
        ids = _related_ids(record, "route")
        for route_id in route_ids or []:
            if route_id not in ids:
                ids.append(route_id)
        return cls(
            id=record.get("id", ""),
            name=attrs.get("name") or "",
            latitude=attrs.get("latitude"),
            longitude=attrs.get("longitude"),
            route_ids=ids,
        )


class Route(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str

    @classmethod
    def from_api(cls, record: Dict[str, Any]) -> "Route":
        attrs = record.get("attributes", {}) or {}
        return cls(
            id=record.get("id", ""),
            name=attrs.get("long_name") or attrs.get("short_name") or "",
        )


class Vehicle(BaseModel):
    id: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    route_id: Optional[str] = None

    @classmethod
    def from_api(cls, record: Dict[str, Any]) -> "Vehicle":
        attrs = record.get("attributes", {}) or {}
        return cls(
            id=record.get("id"),
            latitude=attrs.get("latitude"),
            longitude=attrs.get("longitude"),
            route_id=_related_id(record, "route"),
        )


class Prediction(BaseModel):
    """Live prediction; schedule records are parsed into the same shape."""
    id: Optional[str] = None
    stop_id: Optional[str] = None
    route_id: Optional[str] = None
    arrival_time: Optional[str] = None  # ISO 8601
    departure_time: Optional[str] = None  # ISO 8601
    status: Optional[str] = None

    @classmethod
    def from_api(cls, record: Dict[str, Any]) -> "Prediction":
        attrs = record.get("attributes", {}) or {}
        return cls(
            id=record.get("id"),
            stop_id=_related_id(record, "stop"),
            route_id=_related_id(record, "route"),
            arrival_time=attrs.get("arrival_time"),
            departure_time=attrs.get("departure_time"),
            status=attrs.get("status"),
        )


# --- Trip planning ---

class TripLeg(BaseModel):
    model_config = ConfigDict(frozen=True)

    route_id: str
    route_name: str
    from_stop_id: str
    from_stop_name: str
    to_stop_id: str
    to_stop_name: str
    is_transfer: bool = False


class TripPlan(BaseModel):
    model_config = ConfigDict(frozen=True)

    legs: List[TripLeg]
    total_distance: float  # meters
    has_transfer: bool
    warnings: List[str] = Field(default_factory=list)
    missing_shapes: bool = False


class TripPlanResult(BaseModel):
    ok: bool
    plan: Optional[TripPlan] = None
    error: Optional[str] = None
    recoverable: Optional[bool] = None

    @classmethod
    def success(cls, plan: TripPlan) -> "TripPlanResult":
        return cls(ok=True, plan=plan)

    @classmethod
    def failure(cls, error: str, recoverable: bool) -> "TripPlanResult":
        return cls(ok=False, error=error, recoverable=recoverable)


# --- Game tasks ---

class TaskType(str, Enum):
    WALK_TO_STOP = "walk-to-stop"
    BOARD = "board"
    RIDE = "ride"
    TRANSFER = "transfer"


class TaskGeoFence(BaseModel):
    latitude: float
    longitude: float
    radius_meters: float


class GameTask(BaseModel):
    id: str
    type: TaskType
    title: str
    description: str
    stop_id: Optional[str] = None
    stop_name: Optional[str] = None
    route_id: Optional[str] = None
    route_name: Optional[str] = None
    geo_fence: TaskGeoFence
    completed: bool = False
    xp_reward: int
    leg_index: int


# --- Transfer confidence ---

class ConfidenceBadge(str, Enum):
    LIKELY = "Likely"
    RISKY = "Risky"
    UNLIKELY = "Unlikely"
    UNKNOWN = "Unknown"


class TransferConfidence(BaseModel):
    badge: ConfidenceBadge
    margin_seconds: Optional[float] = None
    arrival_time: Optional[str] = None
    departure_time: Optional[str] = None
    walk_time_seconds: int
    missing_data: bool
    used_scheduled_times: bool = False
    transfer_stop_id: Optional[str] = None


# --- Supervisor ---

LogLevel = Literal["error", "warning", "info"]
LogCategory = Literal["gps", "mbta", "tripPlan", "tasks"]


class GPSHealth(BaseModel):
    active: bool = False
    valid: bool = False
    stale: bool = False
    last_update: Optional[float] = None  # epoch seconds


class MBTAHealth(BaseModel):
    polling: bool = False
    stale: bool = False
    last_update: Optional[float] = None
    has_trip_plan: bool = False


class TripPlanHealth(BaseModel):
    valid: bool = False
    has_legs: bool = False
    ids_present: bool = False


class TaskHealth(BaseModel):
    synced: bool = False
    count: int = 0


class SystemHealth(BaseModel):
    gps: GPSHealth = Field(default_factory=GPSHealth)
    mbta: MBTAHealth = Field(default_factory=MBTAHealth)
    trip_plan: TripPlanHealth = Field(default_factory=TripPlanHealth)
    tasks: TaskHealth = Field(default_factory=TaskHealth)


class DiagnosticLog(BaseModel):
    timestamp: float
    level: LogLevel
    category: LogCategory
    message: str
    action: Optional[str] = None


class AutoFix(BaseModel):
    timestamp: float
    category: LogCategory
    issue: str
    action: str
    success: bool
    error: Optional[str] = None


class SupervisorState(BaseModel):
    health: SystemHealth = Field(default_factory=SystemHealth)
    errors: List[DiagnosticLog] = Field(default_factory=list)
    warnings: List[DiagnosticLog] = Field(default_factory=list)
    last_auto_fix: List[AutoFix] = Field(default_factory=list)
    is_running: bool = False


# --- HTTP request bodies ---

class PlanTripRequest(BaseModel):
    user_lat: float
    user_lng: float
    destination_stop_id: str


class PositionRequest(BaseModel):
    user_lat: float
    user_lng: float


class GPSFixRequest(BaseModel):
    latitude: float
    longitude: float
    accuracy: float = 0.0
    heading: Optional[float] = None
    speed: Optional[float] = None
    timestamp: Optional[float] = None  # epoch seconds


class GPSFixResponse(BaseModel):
    accepted: bool
    tracking: bool
