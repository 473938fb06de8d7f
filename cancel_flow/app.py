"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from cancel_flow.config import APP_NAME, APP_VERSION
from cancel_flow.routers import analytics, cancel_flow
from cancel_flow.services.analytics import AnalyticsClient

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    # Start the scheduler for the daily ETL
    try:
        from cancel_flow.scheduler import scheduler
        scheduler.start()
        logger.info("Scheduler started — daily ETL job registered")
    except Exception as e:
        logger.warning("Scheduler failed to start: %s", e)

    yield

    # Shutdown
    from cancel_flow.scheduler import scheduler
    if scheduler.running:
        scheduler.shutdown(wait=False)


def create_app(analytics_client: AnalyticsClient | None = None) -> FastAPI:
    app = FastAPI(
        title=f"{APP_NAME} Cancel Flow",
        description="Subscription cancellation flow, A/B downsell test and analytics.",
        version=APP_VERSION,
        lifespan=lifespan,
    )

    # One analytics buffer per process, one wizard controller per open modal
    app.state.analytics = analytics_client or AnalyticsClient()
    app.state.sessions = {}

    @app.get("/health", include_in_schema=False)
    async def health():
        return {"status": "ok"}

    for r in [cancel_flow, analytics]:
        app.include_router(r.router)

    return app
