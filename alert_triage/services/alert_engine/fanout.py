"""
Alert Fan-out - pushes lifecycle events to connected clinicians over SSE.

Each connected browser tab is one AlertStream bound to the event loop that
serves it. Lifecycle events arrive from request handlers and scheduler
threads alike; delivery hops onto the stream's loop with
call_soon_threadsafe, so publishers never block on a slow client.

Recipients of an event:
- the user behind the alert's assigned clinician
- the claimer
- the escalation target
"""

import asyncio
import json
import logging
import threading
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Dict, Optional, Set

from alert_triage.schemas.alert_schemas import AlertSnapshot
from .events import AlertEvent, AlertEventType
from .interfaces import ClinicianDirectory
from .sla import risk_level, sla_status, time_remaining_minutes

logger = logging.getLogger(__name__)

EVENT_CREATED = "alert"
EVENT_UPDATED = "alert-update"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def format_sse(event: str, data: Dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(data, default=str)}\n\n"


def build_alert_payload(
    alert: AlertSnapshot,
    viewer_user_id: Optional[str],
    now: datetime,
    approaching_minutes: int = 30
) -> Dict[str, Any]:
    """Client view of an alert with the live SLA/claim labels for one viewer"""
    return {
        "id": alert.id,
        "severity": alert.severity,
        "status": alert.status,
        "message": alert.message,
        "patientId": alert.patient_id,
        "riskScore": alert.risk_score,
        "priorityRank": alert.priority_rank,
        "slaBreachTime": _iso(alert.sla_breach_time),
        "triggeredAt": _iso(alert.triggered_at),
        "acknowledgedAt": _iso(alert.acknowledged_at),
        "resolvedAt": _iso(alert.resolved_at),
        "facts": alert.facts,
        "claimedById": alert.claimed_by_id,
        "claimedAt": _iso(alert.claimed_at),
        "snoozedUntil": _iso(alert.snoozed_until),
        "isSuppressed": alert.is_suppressed,
        "suppressReason": alert.suppress_reason,
        "isEscalated": alert.is_escalated,
        "escalatedToId": alert.escalated_to_id,
        "escalationLevel": alert.escalation_level,
        "computed": {
            "timeRemainingMinutes": time_remaining_minutes(alert.sla_breach_time, now),
            "slaStatus": sla_status(alert.sla_breach_time, now, approaching_minutes),
            "riskLevel": risk_level(alert.risk_score),
            "isClaimed": alert.claimed_by_id is not None,
            "isClaimedByMe": viewer_user_id is not None and alert.claimed_by_id == viewer_user_id,
        },
    }


class AlertStream:
    """One live SSE connection"""

    def __init__(
        self,
        user_id: str,
        loop: asyncio.AbstractEventLoop,
        heartbeat_seconds: float = 30.0,
        queue_size: int = 100
    ):
        self.user_id = user_id
        self.loop = loop
        self.heartbeat_seconds = heartbeat_seconds
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self.closed = False

    def _offer(self, message: Optional[str]) -> None:
        try:
            self.queue.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning(f"Alert stream for user {self.user_id} is full; dropping event")

    def push(self, message: str) -> None:
        """Thread-safe, non-blocking enqueue of a formatted SSE message"""
        if self.closed:
            return
        try:
            self.loop.call_soon_threadsafe(self._offer, message)
        except RuntimeError:
            # loop already closed
            self.closed = True

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            self.loop.call_soon_threadsafe(self._offer, None)
        except RuntimeError:
            pass

    async def events(self) -> AsyncIterator[str]:
        while True:
            try:
                message = await asyncio.wait_for(self.queue.get(), timeout=self.heartbeat_seconds)
            except asyncio.TimeoutError:
                yield ": heartbeat\n\n"
                continue
            if message is None:
                return
            yield message


class AlertFanout:
    """Registry of live streams, owned by the running engine instance"""

    def __init__(
        self,
        clinicians: Optional[ClinicianDirectory] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
        heartbeat_seconds: float = 30.0,
        queue_size: int = 100,
        approaching_minutes: int = 30
    ):
        self.clinicians = clinicians
        self.clock = clock
        self.heartbeat_seconds = heartbeat_seconds
        self.queue_size = queue_size
        self.approaching_minutes = approaching_minutes
        self._streams: Dict[str, Set[AlertStream]] = {}
        self._clinician_users: Dict[str, str] = {}
        self._lock = threading.Lock()

    def connect(self, user_id: str, clinician_id: Optional[str] = None) -> AlertStream:
        """Register a stream for the running loop; it starts with a connected event"""
        stream = AlertStream(
            user_id,
            asyncio.get_running_loop(),
            heartbeat_seconds=self.heartbeat_seconds,
            queue_size=self.queue_size
        )
        with self._lock:
            self._streams.setdefault(user_id, set()).add(stream)
            if clinician_id:
                self._clinician_users[clinician_id] = user_id
        stream._offer(format_sse("connected", {
            "userId": user_id,
            "connectedAt": _iso(self.clock()),
        }))
        logger.info(f"Alert stream connected for user {user_id}")
        return stream

    def disconnect(self, stream: AlertStream) -> None:
        with self._lock:
            streams = self._streams.get(stream.user_id)
            if streams is not None:
                streams.discard(stream)
                if not streams:
                    del self._streams[stream.user_id]
        stream.close()
        logger.info(f"Alert stream disconnected for user {stream.user_id}")

    def register_clinician(self, clinician_id: str, user_id: str) -> None:
        with self._lock:
            self._clinician_users[clinician_id] = user_id

    def connection_count(self, user_id: Optional[str] = None) -> int:
        with self._lock:
            if user_id is not None:
                return len(self._streams.get(user_id, ()))
            return sum(len(streams) for streams in self._streams.values())

    def _clinician_user(self, clinician_id: Optional[str]) -> Optional[str]:
        if not clinician_id:
            return None
        with self._lock:
            user_id = self._clinician_users.get(clinician_id)
        if user_id is not None or self.clinicians is None:
            return user_id

        try:
            clinician = self.clinicians.get_clinician(clinician_id)
        except Exception as e:
            logger.warning(f"Could not resolve user for clinician {clinician_id}: {e}")
            return None
        if clinician is None or not clinician.user_id:
            return None
        self.register_clinician(clinician_id, clinician.user_id)
        return clinician.user_id

    def recipients(self, alert: AlertSnapshot) -> Set[str]:
        candidates = {
            self._clinician_user(alert.clinician_id),
            alert.claimed_by_id,
            alert.escalated_to_id,
        }
        return {user_id for user_id in candidates if user_id}

    def handle_event(self, event: AlertEvent) -> int:
        """AlertEventBus listener; returns the number of streams reached"""
        event_name = EVENT_CREATED if event.type == AlertEventType.CREATED else EVENT_UPDATED
        now = self.clock()
        delivered = 0

        for user_id in self.recipients(event.alert):
            with self._lock:
                streams = list(self._streams.get(user_id, ()))
            if not streams:
                continue

            payload = build_alert_payload(event.alert, user_id, now, self.approaching_minutes)
            payload["action"] = event.action
            message = format_sse(event_name, payload)
            for stream in streams:
                stream.push(message)
                delivered += 1

        if delivered:
            logger.debug(f"Delivered {event.action} for alert {event.alert.id} to {delivered} streams")
        return delivered
