from fastapi import APIRouter, Request

from ..models import GPSFixRequest, GPSFixResponse
from .deps import get_session

router = APIRouter(prefix="/api", tags=["gps"])


@router.post("/gps", response_model=GPSFixResponse)
async def report_gps(fix: GPSFixRequest, request: Request):
    session = get_session(request)
    accepted = session.report_gps(
        fix.latitude,
        fix.longitude,
        accuracy=fix.accuracy,
        timestamp=fix.timestamp,
        heading=fix.heading,
        speed=fix.speed,
    )
    return GPSFixResponse(accepted=accepted, tracking=session.gps.tracking)
