import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings, validate_settings
from .routers import gps, supervisor, tasks, transfers, trips
from .services.mbta import MBTAAPIError, MBTAClient
from .services.session import TripSession

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(session: Optional[TripSession] = None, settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    if session is None:
        client = MBTAClient(api_key=settings.mbta_api_key, base_url=settings.mbta_api_base_url)
        session = TripSession(client, settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        report = validate_settings(settings)
        for warning in report.warnings:
            logger.warning("Config: %s", warning)
        if not report.passed:
            for error in report.errors:
                logger.error("Config: %s", error)
            raise RuntimeError(f"Invalid configuration: {'; '.join(report.errors)}")

        try:
            await session.load_catalog()
        except MBTAAPIError as e:
            # Planning answers 503 until the catalog is available
            logger.error("Could not load stop catalog: %s", e)

        session.start()
        yield
        session.stop()

    app = FastAPI(title="Transit Quest Decision Engine", lifespan=lifespan)
    app.state.session = session

    app.add_middleware(
        CORSMiddleware,
        allow_origins=os.getenv("CORS_ORIGINS", "http://localhost:5173").split(","),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(trips.router)
    app.include_router(tasks.router)
    app.include_router(transfers.router)
    app.include_router(gps.router)
    app.include_router(supervisor.router)

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "service": "transit-quest-engine",
            "supervisor_running": session.supervisor.is_running,
        }

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
