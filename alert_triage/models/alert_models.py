"""
Alert Triage Database Models
Alert rules, alerts with claim/snooze/suppression/escalation sub-state,
append-only audit trail and assessment reminder log
"""

import uuid

from sqlalchemy import Column, Integer, String, Float, DateTime, Boolean, JSON, Text, ForeignKey, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from alert_triage.database import Base
from alert_triage.schemas.alert_schemas import AlertStatus, Severity


def _uuid() -> str:
    return str(uuid.uuid4())


class AlertRule(Base):
    """Define alert triggering rules"""
    __tablename__ = "alert_rules"

    id = Column(String, primary_key=True, default=_uuid)
    organization_id = Column(String, index=True)  # NULL = applies to every organization

    name = Column(String, nullable=False)
    description = Column(Text)

    # Tagged condition payload, see alert_schemas.AlertCondition
    conditions = Column(JSON, nullable=False)
    severity = Column(String, nullable=False, default=Severity.MEDIUM.value)

    is_active = Column(Boolean, default=True)
    is_system = Column(Boolean, default=False)  # Owned by a scheduler sweep
    cooldown_minutes = Column(Integer, default=60)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, onupdate=func.now())

    alerts = relationship("Alert", back_populates="rule")


class Alert(Base):
    """Triage work item raised for one patient by one rule"""
    __tablename__ = "alerts"

    id = Column(String, primary_key=True, default=_uuid)
    organization_id = Column(String, nullable=False, index=True)
    patient_id = Column(String, nullable=False, index=True)
    rule_id = Column(String, ForeignKey("alert_rules.id"), index=True)
    clinician_id = Column(String, index=True)  # Clinical role the alert is addressed to

    severity = Column(String, nullable=False)
    status = Column(String, nullable=False, default=AlertStatus.PENDING.value)
    message = Column(Text, nullable=False)
    facts = Column(JSON, nullable=False, default=dict)

    # Scoring
    risk_score = Column(Float)
    risk_components = Column(JSON)
    priority_rank = Column(Integer)

    # Timeline
    triggered_at = Column(DateTime, nullable=False)
    sla_breach_time = Column(DateTime)
    acknowledged_at = Column(DateTime)
    acknowledged_by_id = Column(String)
    resolved_at = Column(DateTime)
    resolved_by_id = Column(String)

    # Claim
    claimed_by_id = Column(String, index=True)
    claimed_at = Column(DateTime)

    # Snooze
    snoozed_until = Column(DateTime)
    snoozed_by_id = Column(String)
    snoozed_at = Column(DateTime)

    # Suppression
    is_suppressed = Column(Boolean, nullable=False, default=False)
    suppress_reason = Column(String)
    suppress_notes = Column(Text)
    suppressed_at = Column(DateTime)
    suppressed_by_id = Column(String)

    # Escalation
    is_escalated = Column(Boolean, nullable=False, default=False)
    escalated_to_id = Column(String)
    escalated_at = Column(DateTime)
    escalation_level = Column(Integer, nullable=False, default=0)
    escalation_reason = Column(Text)

    # Resolution documentation
    resolution_notes = Column(Text)
    intervention_type = Column(String)
    patient_outcome = Column(String)
    time_spent_minutes = Column(Integer)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, onupdate=func.now())

    rule = relationship("AlertRule", back_populates="alerts")
    audit_entries = relationship(
        "AlertAuditEntry",
        back_populates="alert",
        order_by="AlertAuditEntry.created_at"
    )

    __table_args__ = (
        Index("idx_alerts_org_status", "organization_id", "status"),
        Index("idx_alerts_patient_rule_triggered", "patient_id", "rule_id", "triggered_at"),
        Index("idx_alerts_sla_breach", "status", "sla_breach_time"),
    )


class AlertAuditEntry(Base):
    """Append-only record of one alert state transition"""
    __tablename__ = "alert_audit_entries"

    id = Column(String, primary_key=True, default=_uuid)
    alert_id = Column(String, ForeignKey("alerts.id"), nullable=False, index=True)
    organization_id = Column(String, index=True)

    actor_id = Column(String)  # NULL for scheduler-driven transitions
    action = Column(String, nullable=False)  # ALERT_CLAIMED, ALERT_RESOLVED, ...
    old_values = Column(JSON)
    new_values = Column(JSON)
    details = Column("metadata", JSON)

    created_at = Column(DateTime, nullable=False)

    alert = relationship("Alert", back_populates="audit_entries")


class AssessmentReminderLog(Base):
    """Reminder sent to a patient for an upcoming assessment"""
    __tablename__ = "assessment_reminder_logs"

    id = Column(String, primary_key=True, default=_uuid)
    patient_id = Column(String, nullable=False)
    enrollment_id = Column(String)
    template_id = Column(String, nullable=False)
    channel = Column(String, default="email")
    sent_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index("idx_reminder_patient_template_sent", "patient_id", "template_id", "sent_at"),
    )
