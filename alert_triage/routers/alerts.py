"""
Alert Triage API Router

- GET /api/alerts/stream: live SSE feed of alert events for the caller
- Lifecycle endpoints (claim, acknowledge, resolve, snooze, suppress, escalate)

Lifecycle endpoints are plain ``def`` handlers; they run in the threadpool
and hand events to the SSE streams through the thread-safe fan-out.
Engine errors map to JSON through the registered exception handlers.
"""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from alert_triage.dependencies import (
    get_alert_engine,
    get_current_actor,
    get_current_user,
    get_lifecycle_manager,
)
from alert_triage.schemas.alert_schemas import (
    AlertSnapshot,
    DismissAlertRequest,
    EscalateAlertRequest,
    ForceClaimRequest,
    ResolveAlertRequest,
    SnoozeAlertRequest,
    SuppressAlertRequest,
)
from alert_triage.services.alert_engine.engine import AlertEngine
from alert_triage.services.alert_engine.fanout import build_alert_payload
from alert_triage.services.alert_engine.interfaces import FollowUpRequest
from alert_triage.services.alert_engine.lifecycle_service import Actor, AlertLifecycleManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/alerts", tags=["alerts"])


@router.get("/stream")
async def stream_alerts(
    request: Request,
    user: dict = Depends(get_current_user),
    engine: AlertEngine = Depends(get_alert_engine)
):
    """Server-sent events: ``connected``, then ``alert`` / ``alert-update``, heartbeats while idle"""
    stream = engine.fanout.connect(user["id"], clinician_id=user.get("clinician_id"))

    async def event_generator():
        try:
            async for message in stream.events():
                if await request.is_disconnected():
                    break
                yield message
        finally:
            engine.fanout.disconnect(stream)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no"
        }
    )


def _view(alert, actor: Actor, engine: AlertEngine) -> dict:
    return build_alert_payload(
        AlertSnapshot.model_validate(alert),
        actor.user_id,
        engine.clock(),
        engine.config.sla_approaching_minutes
    )


@router.get("/{alert_id}")
def get_alert(
    alert_id: str,
    actor: Actor = Depends(get_current_actor),
    engine: AlertEngine = Depends(get_alert_engine),
    lifecycle: AlertLifecycleManager = Depends(get_lifecycle_manager)
):
    return _view(lifecycle.get_alert(alert_id, actor), actor, engine)


@router.post("/{alert_id}/claim")
def claim_alert(
    alert_id: str,
    actor: Actor = Depends(get_current_actor),
    engine: AlertEngine = Depends(get_alert_engine),
    lifecycle: AlertLifecycleManager = Depends(get_lifecycle_manager)
):
    return _view(lifecycle.claim(alert_id, actor), actor, engine)


@router.post("/{alert_id}/force-claim")
def force_claim_alert(
    alert_id: str,
    body: ForceClaimRequest,
    actor: Actor = Depends(get_current_actor),
    engine: AlertEngine = Depends(get_alert_engine),
    lifecycle: AlertLifecycleManager = Depends(get_lifecycle_manager)
):
    return _view(lifecycle.force_claim(alert_id, actor, body.reason), actor, engine)


@router.post("/{alert_id}/unclaim")
def unclaim_alert(
    alert_id: str,
    actor: Actor = Depends(get_current_actor),
    engine: AlertEngine = Depends(get_alert_engine),
    lifecycle: AlertLifecycleManager = Depends(get_lifecycle_manager)
):
    return _view(lifecycle.unclaim(alert_id, actor), actor, engine)


@router.post("/{alert_id}/acknowledge")
def acknowledge_alert(
    alert_id: str,
    actor: Actor = Depends(get_current_actor),
    engine: AlertEngine = Depends(get_alert_engine),
    lifecycle: AlertLifecycleManager = Depends(get_lifecycle_manager)
):
    return _view(lifecycle.acknowledge(alert_id, actor), actor, engine)


@router.post("/{alert_id}/resolve")
def resolve_alert(
    alert_id: str,
    body: ResolveAlertRequest,
    actor: Actor = Depends(get_current_actor),
    engine: AlertEngine = Depends(get_alert_engine),
    lifecycle: AlertLifecycleManager = Depends(get_lifecycle_manager)
):
    follow_up = None
    if body.follow_up_title:
        follow_up = FollowUpRequest(
            title=body.follow_up_title,
            due_at=body.follow_up_due_at or engine.clock(),
            notes=body.follow_up_notes
        )
    alert = lifecycle.resolve(
        alert_id,
        actor,
        body.resolution_notes,
        body.intervention_type,
        body.patient_outcome,
        body.time_spent_minutes,
        follow_up=follow_up,
        create_encounter_note=body.create_encounter_note
    )
    return _view(alert, actor, engine)


@router.post("/{alert_id}/dismiss")
def dismiss_alert(
    alert_id: str,
    body: DismissAlertRequest,
    actor: Actor = Depends(get_current_actor),
    engine: AlertEngine = Depends(get_alert_engine),
    lifecycle: AlertLifecycleManager = Depends(get_lifecycle_manager)
):
    return _view(lifecycle.dismiss(alert_id, actor, body.notes), actor, engine)


@router.post("/{alert_id}/snooze")
def snooze_alert(
    alert_id: str,
    body: SnoozeAlertRequest,
    actor: Actor = Depends(get_current_actor),
    engine: AlertEngine = Depends(get_alert_engine),
    lifecycle: AlertLifecycleManager = Depends(get_lifecycle_manager)
):
    return _view(lifecycle.snooze(alert_id, actor, body.duration_minutes), actor, engine)


@router.post("/{alert_id}/unsnooze")
def unsnooze_alert(
    alert_id: str,
    actor: Actor = Depends(get_current_actor),
    engine: AlertEngine = Depends(get_alert_engine),
    lifecycle: AlertLifecycleManager = Depends(get_lifecycle_manager)
):
    return _view(lifecycle.unsnooze(alert_id, actor), actor, engine)


@router.post("/{alert_id}/suppress")
def suppress_alert(
    alert_id: str,
    body: SuppressAlertRequest,
    actor: Actor = Depends(get_current_actor),
    engine: AlertEngine = Depends(get_alert_engine),
    lifecycle: AlertLifecycleManager = Depends(get_lifecycle_manager)
):
    return _view(lifecycle.suppress(alert_id, actor, body.reason, body.notes), actor, engine)


@router.post("/{alert_id}/unsuppress")
def unsuppress_alert(
    alert_id: str,
    actor: Actor = Depends(get_current_actor),
    engine: AlertEngine = Depends(get_alert_engine),
    lifecycle: AlertLifecycleManager = Depends(get_lifecycle_manager)
):
    return _view(lifecycle.unsuppress(alert_id, actor), actor, engine)


@router.post("/{alert_id}/escalate")
def escalate_alert(
    alert_id: str,
    body: EscalateAlertRequest,
    actor: Actor = Depends(get_current_actor),
    engine: AlertEngine = Depends(get_alert_engine),
    lifecycle: AlertLifecycleManager = Depends(get_lifecycle_manager)
):
    return _view(lifecycle.escalate(alert_id, actor, body.target_user_id, body.reason), actor, engine)
