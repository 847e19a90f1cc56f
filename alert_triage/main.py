import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.engine import Engine

from alert_triage import __version__
from alert_triage.config import settings
from alert_triage.core.error_handling import register_error_handlers
from alert_triage.database import Base
from alert_triage.routers import alerts
from alert_triage.services.alert_engine.engine import AlertEngine

logger = logging.getLogger(__name__)


def create_app(alert_engine: AlertEngine, db_engine: Optional[Engine] = None) -> FastAPI:
    """
    Build the API around a running AlertEngine.

    The host supplies the engine (with its collaborators); the lifespan
    starts and stops its scheduler. When ``db_engine`` is given, missing
    tables are created at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting Alert Triage service...")

        if db_engine is not None:
            try:
                Base.metadata.create_all(bind=db_engine)
                logger.info("Database tables created")
            except Exception as e:
                logger.error(f"Failed to create tables: {e}")

        app.state.alert_engine = alert_engine
        alert_engine.start()
        try:
            yield
        finally:
            alert_engine.stop()
            logger.info("Alert Triage service stopped")

    app = FastAPI(
        title="Clinical Alert Triage",
        description="Alert triage engine for remote patient monitoring",
        version=__version__,
        lifespan=lifespan
    )
    app.state.alert_engine = alert_engine

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app)

    app.include_router(alerts.router)

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "scheduler_running": alert_engine.scheduler.running,
            "live_streams": alert_engine.fanout.connection_count(),
        }

    return app


def run(app: FastAPI, host: str = "0.0.0.0", port: int = 8000) -> None:
    """Serve an app built by create_app; the host process wires the collaborators."""
    import uvicorn
    uvicorn.run(app, host=host, port=port, log_level="info")
