from typing import List

from fastapi import APIRouter, HTTPException, Request

from ..models import GameTask, PositionRequest
from ..services.geo import validate_lat_lng
from ..services.session import SessionError
from .deps import get_session

router = APIRouter(prefix="/api/tasks", tags=["tasks"])


@router.post("/generate", response_model=List[GameTask])
async def generate_tasks(request: Request):
    session = get_session(request)
    try:
        return await session.generate_tasks()
    except SessionError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/check", response_model=List[GameTask])
async def check_tasks(req: PositionRequest, request: Request):
    """Run the completion pass against the latest live snapshot."""
    session = get_session(request)
    if not validate_lat_lng(req.user_lat, req.user_lng):
        raise HTTPException(status_code=400, detail="Invalid coordinates")

    return session.check_tasks(req.user_lat, req.user_lng)
