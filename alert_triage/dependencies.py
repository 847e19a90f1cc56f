from typing import Iterator

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from alert_triage.config import settings
from alert_triage.services.alert_engine.engine import AlertEngine
from alert_triage.services.alert_engine.lifecycle_service import Actor, AlertLifecycleManager


def get_alert_engine(request: Request) -> AlertEngine:
    engine = getattr(request.app.state, "alert_engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Alert engine is not running"
        )
    return engine


def get_engine_db(engine: AlertEngine = Depends(get_alert_engine)) -> Iterator[Session]:
    db = engine.session_factory()
    try:
        yield db
    finally:
        db.close()


def get_lifecycle_manager(
    engine: AlertEngine = Depends(get_alert_engine),
    db: Session = Depends(get_engine_db)
) -> AlertLifecycleManager:
    return engine.lifecycle_manager(db)


async def get_current_user(request: Request) -> dict:
    """Current user as set by the upstream auth layer, or dev headers outside production"""
    if hasattr(request.state, "user"):
        return request.state.user

    if settings.ENVIRONMENT != "production":
        user_id = request.headers.get("X-User-ID")
        if user_id:
            return {
                "id": user_id,
                "role": request.headers.get("X-User-Role", "CLINICIAN"),
                "organization_id": request.headers.get("X-Organization-ID"),
                "clinician_id": request.headers.get("X-Clinician-ID"),
            }

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Not authenticated"
    )


async def get_current_actor(current_user: dict = Depends(get_current_user)) -> Actor:
    return Actor(
        user_id=current_user["id"],
        role=current_user.get("role") or "CLINICIAN",
        organization_id=current_user.get("organization_id")
    )
