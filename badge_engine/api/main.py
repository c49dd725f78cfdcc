"""
Status API for the badge scheduler.
Exposes health, scheduler status and a manual trigger.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, status
from fastapi.responses import JSONResponse

import structlog

from ..core.config import settings
from ..scheduler.badge_scheduler import BadgeScheduler
from .schemas.common import HealthCheckResponse, SchedulerStatusResponse, TriggerResponse


logger = structlog.get_logger(__name__)


def create_app(scheduler: Optional[BadgeScheduler] = None, manage_scheduler: bool = True) -> FastAPI:
    """
    Create the status API.

    Args:
        scheduler: Scheduler to report on and trigger
        manage_scheduler: Start the scheduler on startup and stop it on shutdown
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting badge status server", project=scheduler.config.project_name if scheduler else None)
        if scheduler is not None and manage_scheduler:
            await scheduler.start()

        yield

        logger.info("Shutting down badge status server")
        if scheduler is not None and manage_scheduler:
            await scheduler.stop()

    app = FastAPI(
        title=settings.app_name,
        description="Status and manual trigger for the holder badge scheduler.",
        version=settings.app_version,
        lifespan=lifespan,
    )
    app.state.scheduler = scheduler

    def _require_scheduler() -> BadgeScheduler:
        if app.state.scheduler is None:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Scheduler not configured")
        return app.state.scheduler

    @app.get("/health", response_model=HealthCheckResponse, tags=["System"], summary="Health Check")
    async def health_check():
        current = app.state.scheduler
        return HealthCheckResponse(
            status="healthy",
            version=settings.app_version,
            scheduler=current.status.value if current else "not_configured",
        )

    @app.get("/status", response_model=SchedulerStatusResponse, tags=["Scheduler"], summary="Scheduler Status")
    async def scheduler_status():
        return SchedulerStatusResponse(**_require_scheduler().get_status())

    @app.post(
        "/trigger",
        response_model=TriggerResponse,
        status_code=status.HTTP_202_ACCEPTED,
        tags=["Scheduler"],
        summary="Trigger a badge run",
    )
    async def trigger_run():
        current = _require_scheduler()
        if not current.trigger():
            return JSONResponse(
                status_code=status.HTTP_409_CONFLICT,
                content=TriggerResponse(
                    success=False,
                    accepted=False,
                    message="A badge run is already in progress",
                ).model_dump(mode="json"),
            )
        logger.info("Manual badge run triggered", project=current.config.project_name)
        return TriggerResponse(message="Badge run started")

    return app
