from fastapi import Request

from ..services.session import TripSession


def get_session(request: Request) -> TripSession:
    return request.app.state.session
