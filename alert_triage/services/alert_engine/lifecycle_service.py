"""
Alert Lifecycle Service - the only writer of alert state.

State machine:
    PENDING -> ACKNOWLEDGED | RESOLVED | DISMISSED
    ACKNOWLEDGED -> RESOLVED | DISMISSED
Orthogonal sub-states: claimed, snoozed, suppressed (implies DISMISSED),
escalated (with level).

Every transition is one conditional UPDATE plus one audit entry committed
together. A zero-row UPDATE means another writer changed the alert first and
is reported as a conflict. Audit sink mirroring, lifecycle events, side
effects and notifications run only after commit and never fail the call.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Type, Union

from pydantic import BaseModel
from sqlalchemy.orm import Session

from alert_triage.models.alert_models import Alert, AlertAuditEntry
from alert_triage.schemas.alert_schemas import (
    AlertSnapshot,
    AlertStatus,
    InterventionType,
    OPEN_STATUSES,
    PatientOutcome,
    SuppressReason,
    dump_facts,
)
from .config_service import AlertEngineConfig, AlertConfigService
from .engagement_timers import EngagementTimerRegistry
from .errors import (
    AlertConflictError,
    AlertForbiddenError,
    AlertNotFoundError,
    AlertValidationError,
)
from .events import AlertEvent, AlertEventBus, AlertEventType
from .interfaces import Collaborators, FollowUpRequest, TimeLogEntry, UserContact
from .notification_service import AlertNotifier
from .risk_scoring import RiskScoreResult
from .sla import calculate_sla_breach_time

logger = logging.getLogger(__name__)


@dataclass
class Actor:
    """Authenticated caller of a lifecycle operation"""
    user_id: str
    role: str = "CLINICIAN"
    organization_id: Optional[str] = None


@dataclass
class AlertDraft:
    """Everything needed to open a new alert"""
    organization_id: str
    patient_id: str
    rule_id: Optional[str]
    severity: str
    message: str
    facts: BaseModel
    risk: Optional[RiskScoreResult] = None
    risk_score: Optional[float] = None
    clinician_id: Optional[str] = None
    triggered_at: Optional[datetime] = None


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


def _coerce_enum(enum_cls: Type[Enum], value: Any, label: str) -> Enum:
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise AlertValidationError(f"Invalid {label} {value!r}; expected one of: {allowed}")


class AlertLifecycleManager:
    """Service applying lifecycle transitions to alerts"""

    def __init__(
        self,
        db: Session,
        collaborators: Collaborators,
        event_bus: Optional[AlertEventBus] = None,
        notifier: Optional[AlertNotifier] = None,
        timers: Optional[EngagementTimerRegistry] = None,
        config: Optional[AlertEngineConfig] = None,
        clock: Callable[[], datetime] = datetime.utcnow
    ):
        self.db = db
        self.collaborators = collaborators
        self.config = config or AlertConfigService().config
        self.event_bus = event_bus or AlertEventBus()
        self.notifier = notifier or AlertNotifier(collaborators.notifications, self.config)
        self.timers = timers
        self.clock = clock

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def get_alert(self, alert_id: str, actor: Optional[Actor] = None) -> Alert:
        query = self.db.query(Alert).filter(Alert.id == alert_id)
        if actor is not None and actor.organization_id:
            query = query.filter(Alert.organization_id == actor.organization_id)
        alert = query.first()
        if alert is None:
            raise AlertNotFoundError(f"Alert {alert_id} not found", alert_id)
        return alert

    def _audit_record(
        self,
        alert: Alert,
        action: str,
        actor_id: Optional[str],
        old_values: Optional[Dict[str, Any]],
        new_values: Dict[str, Any],
        details: Optional[Dict[str, Any]],
        now: datetime
    ) -> Dict[str, Any]:
        return {
            "id": str(uuid.uuid4()),
            "alert_id": alert.id,
            "organization_id": alert.organization_id,
            "actor_id": actor_id,
            "action": action,
            "old_values": old_values,
            "new_values": new_values,
            "details": details or {},
            "created_at": now,
        }

    def _transition(
        self,
        alert: Alert,
        action: str,
        actor_id: Optional[str],
        changes: Dict[str, Any],
        now: datetime,
        guards: Sequence[Any] = (),
        conflict: Union[str, Callable[[Alert], str]] = "Alert was modified concurrently",
        details: Optional[Dict[str, Any]] = None
    ) -> AlertSnapshot:
        """Apply ``changes`` where ``guards`` still hold, with its audit entry, in one commit"""
        old_values = {field: _jsonable(getattr(alert, field)) for field in changes}
        new_values = {field: _jsonable(value) for field, value in changes.items()}
        record = self._audit_record(alert, action, actor_id, old_values, new_values, details, now)
        values = {field: (value.value if isinstance(value, Enum) else value) for field, value in changes.items()}

        try:
            updated = (
                self.db.query(Alert)
                .filter(Alert.id == alert.id, *guards)
                .update(values, synchronize_session=False)
            )
            if updated == 0:
                self.db.rollback()
                self.db.refresh(alert)
                message = conflict(alert) if callable(conflict) else conflict
                raise AlertConflictError(message, alert.id)

            self.db.add(AlertAuditEntry(**record))
            self.db.commit()
        except AlertConflictError:
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to apply {action} to alert {alert.id}: {e}")
            raise

        self.db.refresh(alert)
        logger.info(f"{action} applied to alert {alert.id} by {actor_id or 'system'}")
        return self._after_commit(alert, record, AlertEventType.UPDATED)

    def _after_commit(self, alert: Alert, record: Dict[str, Any], event_type: AlertEventType) -> AlertSnapshot:
        snapshot = AlertSnapshot.model_validate(alert)

        try:
            self.collaborators.audit_sink.record({**record, "created_at": _jsonable(record["created_at"])})
        except Exception as e:
            logger.error(f"Audit sink failed for {record['action']} on alert {alert.id}: {e}")

        try:
            self.event_bus.publish(AlertEvent(
                type=event_type,
                alert=snapshot,
                action=record["action"],
                occurred_at=record["created_at"],
                actor_id=record["actor_id"]
            ))
        except Exception as e:
            logger.error(f"Broadcast failed for {record['action']} on alert {alert.id}: {e}")

        return snapshot

    def _lookup_user(self, user_id: Optional[str]) -> Optional[UserContact]:
        if not user_id:
            return None
        try:
            return self.collaborators.supervisors.get_user(user_id)
        except Exception as e:
            logger.warning(f"Could not look up user {user_id}: {e}")
            return None

    def _require_open_for(self, alert: Alert, operation: str) -> None:
        if alert.status in (AlertStatus.RESOLVED.value, AlertStatus.DISMISSED.value):
            raise AlertConflictError(
                f"Cannot {operation} an alert with status {alert.status}", alert.id
            )

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_alert(self, draft: AlertDraft) -> Alert:
        now = self.clock()
        triggered_at = draft.triggered_at or now
        risk_score = draft.risk.risk_score if draft.risk else draft.risk_score

        alert = Alert(
            id=str(uuid.uuid4()),
            organization_id=draft.organization_id,
            patient_id=draft.patient_id,
            rule_id=draft.rule_id,
            clinician_id=draft.clinician_id,
            severity=draft.severity,
            status=AlertStatus.PENDING.value,
            message=draft.message,
            facts=dump_facts(draft.facts),
            risk_score=risk_score,
            risk_components=draft.risk.components() if draft.risk else None,
            triggered_at=triggered_at,
            sla_breach_time=calculate_sla_breach_time(draft.severity, triggered_at, self.config),
            is_suppressed=False,
            is_escalated=False,
            escalation_level=0
        )
        record = self._audit_record(
            alert,
            "ALERT_CREATED",
            None,
            None,
            {
                "status": alert.status,
                "severity": alert.severity,
                "risk_score": risk_score,
                "sla_breach_time": _jsonable(alert.sla_breach_time),
            },
            {"rule_id": draft.rule_id, "facts_type": alert.facts.get("type")},
            now
        )

        try:
            self.db.add(alert)
            self.db.flush()
            self.db.add(AlertAuditEntry(**record))
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to create alert for patient {draft.patient_id}: {e}")
            raise

        self.db.refresh(alert)
        logger.info(f"Created {alert.severity} alert {alert.id} for patient {alert.patient_id}")
        snapshot = self._after_commit(alert, record, AlertEventType.CREATED)

        if draft.clinician_id:
            try:
                clinician = self.collaborators.clinicians.get_clinician(draft.clinician_id)
                self.notifier.notify_alert_created(snapshot, clinician)
            except Exception as e:
                logger.error(f"New-alert notification failed for alert {alert.id}: {e}")
        return alert

    # ------------------------------------------------------------------
    # Claims
    # ------------------------------------------------------------------

    def claim(self, alert_id: str, actor: Actor) -> Alert:
        alert = self.get_alert(alert_id, actor)
        now = self.clock()

        def claim_conflict(current: Alert) -> str:
            if current.claimed_by_id == actor.user_id:
                return "You have already claimed this alert"
            return "Alert is already claimed by another clinician"

        if alert.claimed_by_id is not None:
            raise AlertConflictError(claim_conflict(alert), alert.id)

        self._transition(
            alert,
            "ALERT_CLAIMED",
            actor.user_id,
            {"claimed_by_id": actor.user_id, "claimed_at": now},
            now,
            guards=[Alert.claimed_by_id.is_(None)],
            conflict=claim_conflict
        )
        if self.timers is not None:
            self.timers.start(actor.user_id, alert.patient_id, now, source_alert_id=alert.id)
        return alert

    def force_claim(self, alert_id: str, actor: Actor, reason: str) -> Alert:
        if actor.role not in self.config.supervisory_roles:
            raise AlertForbiddenError("Only supervisors can force-claim alerts", alert_id)

        reason = (reason or "").strip()
        if len(reason) < self.config.min_reason_length:
            raise AlertValidationError(
                f"A reason of at least {self.config.min_reason_length} characters is required to force-claim an alert",
                alert_id
            )

        alert = self.get_alert(alert_id, actor)
        if alert.status == AlertStatus.RESOLVED.value:
            raise AlertConflictError("Cannot force-claim a resolved alert", alert.id)
        if alert.claimed_by_id == actor.user_id:
            raise AlertConflictError("You have already claimed this alert", alert.id)

        now = self.clock()
        previous_claimer_id = alert.claimed_by_id
        if previous_claimer_id is None:
            claim_guard = Alert.claimed_by_id.is_(None)
        else:
            claim_guard = Alert.claimed_by_id == previous_claimer_id

        snapshot = self._transition(
            alert,
            "ALERT_FORCE_CLAIMED",
            actor.user_id,
            {"claimed_by_id": actor.user_id, "claimed_at": now},
            now,
            guards=[claim_guard, Alert.status != AlertStatus.RESOLVED.value],
            conflict="Alert claim changed while force-claiming; reload and retry",
            details={"reason": reason, "previous_claimer_id": previous_claimer_id}
        )

        if self.timers is not None:
            if previous_claimer_id:
                self.timers.discard(previous_claimer_id, alert.patient_id)
            self.timers.start(actor.user_id, alert.patient_id, now, source_alert_id=alert.id)

        prior = self._lookup_user(previous_claimer_id)
        if prior is not None:
            try:
                self.notifier.notify_force_claim(snapshot, prior, reason)
            except Exception as e:
                logger.error(f"Force-claim notification failed for alert {alert.id}: {e}")
        return alert

    def unclaim(self, alert_id: str, actor: Actor) -> Alert:
        alert = self.get_alert(alert_id, actor)
        if alert.claimed_by_id is None:
            raise AlertConflictError("Alert is not claimed", alert.id)
        if alert.claimed_by_id != actor.user_id:
            raise AlertForbiddenError("Only the clinician who claimed this alert can unclaim it", alert.id)

        now = self.clock()
        self._transition(
            alert,
            "ALERT_UNCLAIMED",
            actor.user_id,
            {"claimed_by_id": None, "claimed_at": None},
            now,
            guards=[Alert.claimed_by_id == actor.user_id],
            conflict="Alert claim changed before it could be released"
        )
        if self.timers is not None:
            self.timers.discard(actor.user_id, alert.patient_id)
        return alert

    # ------------------------------------------------------------------
    # Primary state
    # ------------------------------------------------------------------

    def acknowledge(self, alert_id: str, actor: Actor) -> Alert:
        alert = self.get_alert(alert_id, actor)
        if alert.status == AlertStatus.ACKNOWLEDGED.value:
            raise AlertConflictError("Alert is already acknowledged", alert.id)
        if alert.status == AlertStatus.RESOLVED.value:
            raise AlertConflictError("Alert is already resolved", alert.id)
        if alert.status != AlertStatus.PENDING.value:
            raise AlertConflictError(f"Cannot acknowledge an alert with status {alert.status}", alert.id)

        now = self.clock()
        self._transition(
            alert,
            "ALERT_ACKNOWLEDGED",
            actor.user_id,
            {
                "status": AlertStatus.ACKNOWLEDGED,
                "acknowledged_at": now,
                "acknowledged_by_id": actor.user_id,
            },
            now,
            guards=[Alert.status == AlertStatus.PENDING.value],
            conflict=lambda current: f"Alert status changed to {current.status}"
        )
        return alert

    def resolve(
        self,
        alert_id: str,
        actor: Actor,
        resolution_notes: str,
        intervention_type: Union[str, InterventionType],
        patient_outcome: Union[str, PatientOutcome],
        time_spent_minutes: int,
        follow_up: Optional[FollowUpRequest] = None,
        create_encounter_note: bool = False
    ) -> Alert:
        notes = (resolution_notes or "").strip()
        if len(notes) < self.config.min_reason_length:
            raise AlertValidationError(
                f"Resolution notes must be at least {self.config.min_reason_length} characters",
                alert_id
            )
        intervention = _coerce_enum(InterventionType, intervention_type, "intervention type")
        outcome = _coerce_enum(PatientOutcome, patient_outcome, "patient outcome")
        if isinstance(time_spent_minutes, bool) or not isinstance(time_spent_minutes, int) or time_spent_minutes < 1:
            raise AlertValidationError("Time spent must be a whole number of at least 1 minute", alert_id)

        alert = self.get_alert(alert_id, actor)
        if alert.status == AlertStatus.RESOLVED.value:
            raise AlertConflictError("Alert is already resolved", alert.id)
        self._require_open_for(alert, "resolve")

        now = self.clock()
        engaged_minutes = None
        if self.timers is not None:
            timer = self.timers.get(actor.user_id, alert.patient_id)
            if timer is not None:
                engaged_minutes = timer.elapsed_minutes(now)

        snapshot = self._transition(
            alert,
            "ALERT_RESOLVED",
            actor.user_id,
            {
                "status": AlertStatus.RESOLVED,
                "resolved_at": now,
                "resolved_by_id": actor.user_id,
                "resolution_notes": notes,
                "intervention_type": intervention,
                "patient_outcome": outcome,
                "time_spent_minutes": time_spent_minutes,
            },
            now,
            guards=[Alert.status.in_(OPEN_STATUSES)],
            conflict=lambda current: f"Alert status changed to {current.status}",
            details={
                "follow_up_requested": follow_up is not None,
                "encounter_note": create_encounter_note,
                "engaged_minutes": engaged_minutes,
            }
        )

        if engaged_minutes is not None:
            self.timers.stop(actor.user_id, alert.patient_id, now)

        self._run_resolution_side_effects(
            snapshot, actor, notes, intervention, outcome, time_spent_minutes, now,
            follow_up, create_encounter_note, engaged_minutes
        )
        return alert

    def _run_resolution_side_effects(
        self,
        alert: AlertSnapshot,
        actor: Actor,
        notes: str,
        intervention: InterventionType,
        outcome: PatientOutcome,
        time_spent_minutes: int,
        now: datetime,
        follow_up: Optional[FollowUpRequest],
        create_encounter_note: bool,
        engaged_minutes: Optional[int] = None
    ) -> None:
        records = self.collaborators.clinical_records
        if records is None:
            logger.info(f"No clinical records gateway configured; skipping side effects for alert {alert.id}")
            return

        billing_enrollment_id = None
        if self.collaborators.billing is not None:
            try:
                billing_enrollment_id = self.collaborators.billing.billing_enrollment_id(
                    alert.patient_id, alert.organization_id
                )
            except Exception as e:
                logger.warning(f"Billing enrollment lookup failed for alert {alert.id}: {e}")

        try:
            records.log_time(TimeLogEntry(
                alert_id=alert.id,
                patient_id=alert.patient_id,
                organization_id=alert.organization_id,
                user_id=actor.user_id,
                activity=intervention.value,
                duration_minutes=time_spent_minutes,
                logged_at=now,
                billing_enrollment_id=billing_enrollment_id,
                notes=notes,
                engaged_minutes=engaged_minutes
            ))
        except Exception as e:
            logger.error(f"Time log failed for resolved alert {alert.id}: {e}")

        if follow_up is not None:
            try:
                records.create_follow_up_task(alert.id, alert.patient_id, actor.user_id, follow_up)
            except Exception as e:
                logger.error(f"Follow-up task creation failed for alert {alert.id}: {e}")

        if create_encounter_note:
            try:
                records.create_encounter_note(
                    alert.id, alert.patient_id, actor.user_id, intervention.value, outcome.value, notes
                )
            except Exception as e:
                logger.error(f"Encounter note creation failed for alert {alert.id}: {e}")

        observation_id = alert.facts.get("observation_id")
        if observation_id:
            try:
                records.mark_observation_reviewed(observation_id, actor.user_id, now)
            except Exception as e:
                logger.error(f"Marking observation {observation_id} reviewed failed: {e}")

    def dismiss(self, alert_id: str, actor: Actor, notes: Optional[str] = None) -> Alert:
        alert = self.get_alert(alert_id, actor)
        self._require_open_for(alert, "dismiss")

        now = self.clock()
        self._transition(
            alert,
            "ALERT_DISMISSED",
            actor.user_id,
            {
                "status": AlertStatus.DISMISSED,
                "resolved_at": now,
                "resolved_by_id": actor.user_id,
                "resolution_notes": (notes or "").strip() or None,
            },
            now,
            guards=[Alert.status.in_(OPEN_STATUSES)],
            conflict=lambda current: f"Alert status changed to {current.status}"
        )
        return alert

    # ------------------------------------------------------------------
    # Snooze
    # ------------------------------------------------------------------

    def snooze(self, alert_id: str, actor: Actor, duration_minutes: int) -> Alert:
        low, high = self.config.min_snooze_minutes, self.config.max_snooze_minutes
        if (
            isinstance(duration_minutes, bool)
            or not isinstance(duration_minutes, int)
            or not low <= duration_minutes <= high
        ):
            raise AlertValidationError(
                f"Snooze duration must be between {low} and {high} minutes", alert_id
            )

        alert = self.get_alert(alert_id, actor)
        self._require_open_for(alert, "snooze")

        now = self.clock()
        self._transition(
            alert,
            "ALERT_SNOOZED",
            actor.user_id,
            {
                "snoozed_until": now + timedelta(minutes=duration_minutes),
                "snoozed_by_id": actor.user_id,
                "snoozed_at": now,
            },
            now,
            guards=[Alert.status.in_(OPEN_STATUSES)],
            conflict=lambda current: f"Cannot snooze an alert with status {current.status}",
            details={"duration_minutes": duration_minutes}
        )
        return alert

    def unsnooze(self, alert_id: str, actor: Actor) -> Alert:
        alert = self.get_alert(alert_id, actor)
        if alert.snoozed_until is None:
            return alert

        now = self.clock()
        self._transition(
            alert,
            "ALERT_UNSNOOZED",
            actor.user_id,
            {"snoozed_until": None, "snoozed_by_id": None, "snoozed_at": None},
            now
        )
        return alert

    # ------------------------------------------------------------------
    # Suppression
    # ------------------------------------------------------------------

    def suppress(
        self,
        alert_id: str,
        actor: Actor,
        reason: Union[str, SuppressReason],
        notes: Optional[str] = None
    ) -> Alert:
        suppress_reason = _coerce_enum(SuppressReason, reason, "suppression reason")
        notes = (notes or "").strip() or None
        if suppress_reason == SuppressReason.OTHER and len(notes or "") < self.config.min_reason_length:
            raise AlertValidationError(
                f"Notes of at least {self.config.min_reason_length} characters are required "
                f"when the suppression reason is OTHER",
                alert_id
            )

        alert = self.get_alert(alert_id, actor)
        if alert.status == AlertStatus.RESOLVED.value:
            raise AlertConflictError("Cannot suppress a resolved alert", alert.id)
        if alert.is_suppressed:
            raise AlertConflictError("Alert is already suppressed", alert.id)

        now = self.clock()
        self._transition(
            alert,
            "ALERT_SUPPRESSED",
            actor.user_id,
            {
                "is_suppressed": True,
                "suppress_reason": suppress_reason,
                "suppress_notes": notes,
                "suppressed_at": now,
                "suppressed_by_id": actor.user_id,
                "status": AlertStatus.DISMISSED,
            },
            now,
            guards=[Alert.is_suppressed.is_(False), Alert.status != AlertStatus.RESOLVED.value],
            conflict=lambda current: (
                "Alert is already suppressed" if current.is_suppressed
                else f"Cannot suppress an alert with status {current.status}"
            )
        )
        return alert

    def unsuppress(self, alert_id: str, actor: Actor) -> Alert:
        alert = self.get_alert(alert_id, actor)
        if not alert.is_suppressed:
            raise AlertConflictError("Alert is not suppressed", alert.id)

        now = self.clock()
        self._transition(
            alert,
            "ALERT_UNSUPPRESSED",
            actor.user_id,
            {
                "is_suppressed": False,
                "suppress_reason": None,
                "suppress_notes": None,
                "suppressed_at": None,
                "suppressed_by_id": None,
                "status": AlertStatus.PENDING,
            },
            now,
            guards=[Alert.is_suppressed.is_(True)],
            conflict="Alert is not suppressed"
        )
        return alert

    # ------------------------------------------------------------------
    # Escalation
    # ------------------------------------------------------------------

    def escalate(
        self,
        alert_id: str,
        actor: Actor,
        target_user_id: str,
        reason: Optional[str] = None
    ) -> Alert:
        if not target_user_id:
            raise AlertValidationError("An escalation target user is required", alert_id)

        target = self._lookup_user(target_user_id)
        if target is None:
            raise AlertNotFoundError(f"Escalation target user {target_user_id} not found", alert_id)

        alert = self.get_alert(alert_id, actor)
        if alert.status == AlertStatus.RESOLVED.value:
            raise AlertConflictError("Cannot escalate a resolved alert", alert.id)

        now = self.clock()
        current_level = alert.escalation_level or 0
        reason = (reason or "").strip() or "Manual escalation"
        snapshot = self._transition(
            alert,
            "ALERT_ESCALATED",
            actor.user_id,
            {
                "is_escalated": True,
                "escalated_to_id": target_user_id,
                "escalated_at": now,
                "escalation_level": current_level + 1,
                "escalation_reason": reason,
            },
            now,
            guards=[Alert.status != AlertStatus.RESOLVED.value, Alert.escalation_level == current_level],
            conflict="Alert escalation changed concurrently; reload and retry",
            details={"automatic": False}
        )

        try:
            self.notifier.notify_escalation(snapshot, [target], reason)
        except Exception as e:
            logger.error(f"Escalation notification failed for alert {alert.id}: {e}")
        return alert

    # ------------------------------------------------------------------
    # Scheduler-driven transitions (actor is the system)
    # ------------------------------------------------------------------

    def auto_dismiss_stale(self, alert: Alert, now: datetime, note: str) -> Optional[AlertSnapshot]:
        try:
            return self._transition(
                alert,
                "ALERT_AUTO_DISMISSED",
                None,
                {"status": AlertStatus.DISMISSED, "resolved_at": now, "resolution_notes": note},
                now,
                guards=[Alert.status == AlertStatus.PENDING.value],
                details={"stale_after_hours": self.config.stale_alert_hours}
            )
        except AlertConflictError:
            logger.info(f"Alert {alert.id} changed before stale cleanup; skipped")
            return None

    def reactivate_snooze(self, alert: Alert, now: datetime) -> Optional[AlertSnapshot]:
        try:
            return self._transition(
                alert,
                "ALERT_SNOOZE_EXPIRED",
                None,
                {"snoozed_until": None, "snoozed_by_id": None, "snoozed_at": None},
                now,
                guards=[Alert.snoozed_until.isnot(None), Alert.snoozed_until <= now]
            )
        except AlertConflictError:
            logger.info(f"Snooze on alert {alert.id} changed before reactivation; skipped")
            return None

    def auto_release_claim(self, alert: Alert, now: datetime, minutes_claimed: int) -> Optional[AlertSnapshot]:
        claimer_id = alert.claimed_by_id
        if claimer_id is None:
            return None
        try:
            snapshot = self._transition(
                alert,
                "ALERT_AUTO_RELEASED",
                None,
                {"claimed_by_id": None, "claimed_at": None},
                now,
                guards=[Alert.claimed_by_id == claimer_id],
                details={"previous_claimer_id": claimer_id, "minutes_claimed": minutes_claimed}
            )
        except AlertConflictError:
            logger.info(f"Claim on alert {alert.id} changed before auto-release; skipped")
            return None

        if self.timers is not None:
            self.timers.discard(claimer_id, alert.patient_id)

        claimer = self._lookup_user(claimer_id)
        if claimer is not None:
            try:
                self.notifier.notify_auto_release(snapshot, claimer)
            except Exception as e:
                logger.error(f"Auto-release notification failed for alert {alert.id}: {e}")
        return snapshot

    def auto_escalate(
        self,
        alert: Alert,
        now: datetime,
        target: UserContact,
        reason: str,
        notify: List[UserContact]
    ) -> Optional[AlertSnapshot]:
        current_level = alert.escalation_level or 0
        try:
            snapshot = self._transition(
                alert,
                "ALERT_ESCALATED",
                None,
                {
                    "is_escalated": True,
                    "escalated_to_id": target.id,
                    "escalated_at": now,
                    "escalation_level": current_level + 1,
                    "escalation_reason": reason,
                },
                now,
                guards=[
                    Alert.is_escalated.is_(False),
                    Alert.is_suppressed.is_(False),
                    Alert.status.in_(OPEN_STATUSES),
                ],
                details={"automatic": True}
            )
        except AlertConflictError:
            logger.info(f"Alert {alert.id} changed before SLA escalation; skipped")
            return None

        try:
            self.notifier.notify_escalation(snapshot, notify, reason)
        except Exception as e:
            logger.error(f"Escalation notification failed for alert {alert.id}: {e}")
        return snapshot
