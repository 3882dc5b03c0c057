import httpx
import logging
import time
from typing import Any, Dict, List, Optional, Tuple

from ..config import DEFAULT_BASE_URL
from ..models import Prediction, Route, Stop, Vehicle
from .geo import validate_id

logger = logging.getLogger(__name__)

# Subway + light rail, the modes the game is played on
RAIL_ROUTE_TYPES = "0,1"

# Schedule min_time filters are in service-day local time
SERVICE_TIMEZONE = "America/New_York"


class MBTAAPIError(Exception):
    """Raised when the MBTA V3 API cannot be reached or rejects a request."""


class MBTAClient:
    """
    Thin client for the MBTA V3 API.

    Every method returns typed models; JSON:API relationship quirks (single
    vs. list route memberships) are normalized here so the engine never sees
    them. Responses are cached briefly to respect rate limits.
    """

    CACHE_TTL = 45  # seconds

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers = {"x-api-key": api_key} if api_key else {}
        self._transport = transport

        # {cache_key: (data, timestamp)}
        self._cache: Dict[str, Tuple[Any, float]] = {}

    def _get_cache_key(self, endpoint: str, params: Dict) -> str:
        param_str = "&".join(f"{k}={v}" for k, v in sorted(params.items()))
        return f"{endpoint}?{param_str}"

    def _get_from_cache(self, cache_key: str) -> Optional[Any]:
        entry = self._cache.get(cache_key)
        if entry is None:
            return None
        data, timestamp = entry
        if time.time() - timestamp < self.CACHE_TTL:
            return data
        del self._cache[cache_key]
        return None

    async def _get(self, endpoint: str, params: Optional[Dict] = None, use_cache: bool = True) -> Dict:
        if params is None:
            params = {}

        cache_key = self._get_cache_key(endpoint, params)
        if use_cache:
            cached = self._get_from_cache(cache_key)
            if cached is not None:
                return cached

        url = f"{self.base_url}{endpoint}"
        started = time.monotonic()

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(url, params=params, headers=self.headers)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status == 403:
                raise MBTAAPIError("MBTA API authentication failed. Check your API key.") from e
            elif status == 429:
                raise MBTAAPIError("MBTA API rate limit exceeded. Please wait before retrying.") from e
            raise MBTAAPIError(f"MBTA API error: {status} - {e.response.text}") from e
        except httpx.TimeoutException as e:
            raise MBTAAPIError("MBTA API request timed out") from e
        except httpx.HTTPError as e:
            raise MBTAAPIError(f"Error calling MBTA API: {e}") from e

        logger.debug("%s | %d | %.0fms", endpoint, response.status_code, (time.monotonic() - started) * 1000)

        if use_cache:
            self._cache[cache_key] = (data, time.time())
        return data

    async def get_routes(self, route_types: str = RAIL_ROUTE_TYPES) -> List[Route]:
        data = await self._get("/routes", {"filter[type]": route_types})
        return [Route.from_api(item) for item in data.get("data", [])]

    async def get_stops_by_route(self, route_id: str) -> List[Stop]:
        """
        Stops served by one route. Stops with unusable coordinates are dropped.
        """
        if not validate_id(route_id):
            raise MBTAAPIError("Invalid route ID")

        data = await self._get("/stops", {"filter[route]": route_id})
        stops = []
        for item in data.get("data", []):
            stop = Stop.from_api(item, route_ids=[route_id])
            if not stop.has_valid_coordinates:
                logger.warning("Invalid coords for stop %s", stop.id)
                continue
            stops.append(stop)
        return stops

    async def get_stops(self, routes: List[Route]) -> List[Stop]:
        """
        Catalog of stops for the given routes, with route memberships merged
        across routes (a transfer station lists every route serving it).
        """
        merged: Dict[str, Stop] = {}
        for route in routes:
            for stop in await self.get_stops_by_route(route.id):
                existing = merged.get(stop.id)
                if existing is None:
                    merged[stop.id] = stop
                elif route.id not in existing.route_ids:
                    merged[stop.id] = existing.model_copy(
                        update={"route_ids": existing.route_ids + [route.id]}
                    )
        return list(merged.values())

    async def get_vehicles(self, route_ids: List[str]) -> List[Vehicle]:
        if not route_ids:
            return []
        data = await self._get(
            "/vehicles", {"filter[route]": ",".join(route_ids)}, use_cache=False
        )
        return [Vehicle.from_api(item) for item in data.get("data", [])]

    async def get_predictions(
        self,
        stop_id: str,
        route_ids: Optional[List[str]] = None,
        limit: int = 10
    ) -> List[Prediction]:
        params = {
            "filter[stop]": stop_id,
            "page[limit]": str(limit),
            "sort": "departure_time",
        }
        if route_ids:
            params["filter[route]"] = ",".join(route_ids)

        data = await self._get("/predictions", params, use_cache=False)
        return [Prediction.from_api(item) for item in data.get("data", [])]

    async def get_schedules(
        self,
        stop_id: str,
        route_ids: Optional[List[str]] = None,
        min_time: Optional[str] = None,
        limit: int = 10
    ) -> List[Prediction]:
        """Timetable entries in the same shape as predictions, for fallback scoring."""
        params = {
            "filter[stop]": stop_id,
            "page[limit]": str(limit),
            "sort": "departure_time",
        }
        if route_ids:
            params["filter[route]"] = ",".join(route_ids)
        if min_time:
            # HH:MM in service-day local time
            params["filter[min_time]"] = min_time

        data = await self._get("/schedules", params)
        return [Prediction.from_api(item) for item in data.get("data", [])]

    def clear_cache(self):
        self._cache.clear()
