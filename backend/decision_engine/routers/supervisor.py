from fastapi import APIRouter, Request

from ..models import SupervisorState
from .deps import get_session

router = APIRouter(prefix="/api/supervisor", tags=["supervisor"])


@router.get("/state", response_model=SupervisorState)
async def supervisor_state(request: Request):
    session = get_session(request)
    return session.supervisor.get_state()


@router.post("/clear-logs")
async def clear_logs(request: Request):
    session = get_session(request)
    session.supervisor.clear_logs()
    return {"status": "cleared"}
