from typing import List

from fastapi import APIRouter, HTTPException, Request

from ..models import TransferConfidence
from ..services.mbta import MBTAAPIError
from .deps import get_session

router = APIRouter(prefix="/api/transfers", tags=["transfers"])


@router.get("/confidence", response_model=List[TransferConfidence])
async def transfer_confidence(request: Request, use_schedules: bool = False):
    """
    Confidence badge for every transfer in the active plan.

    With `use_schedules`, transfers lacking live predictions are re-scored
    from the published timetable.
    """
    session = get_session(request)
    try:
        return await session.transfer_confidence(use_schedules=use_schedules)
    except MBTAAPIError as e:
        raise HTTPException(status_code=503, detail=str(e))
