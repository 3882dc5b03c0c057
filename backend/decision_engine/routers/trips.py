from fastapi import APIRouter, HTTPException, Request

from ..models import PlanTripRequest, TripPlan
from .deps import get_session

router = APIRouter(prefix="/api/trips", tags=["trips"])


@router.post("/plan", response_model=TripPlan)
async def plan_trip(req: PlanTripRequest, request: Request):
    session = get_session(request)
    if session.stops and session.find_stop(req.destination_stop_id) is None:
        raise HTTPException(
            status_code=404,
            detail=f"Unknown destination stop {req.destination_stop_id}"
        )

    result = session.plan_trip(req.user_lat, req.user_lng, req.destination_stop_id)
    if not result.ok:
        # Recoverable failures depend on transit data, not on the request
        raise HTTPException(
            status_code=503 if result.recoverable else 400,
            detail=result.error
        )

    return result.plan
