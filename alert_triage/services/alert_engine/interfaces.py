"""
Collaborator interfaces consumed by the alert engine.

Patient, clinician and organization records, observations, medications and
billing live outside the engine; it reaches them only through these
protocols. Records crossing the boundary are plain dataclasses.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Set, runtime_checkable

from alert_triage.core.logging import log_audit


# =============================================================================
# Records
# =============================================================================

@dataclass
class NormalRange:
    min: Optional[float] = None
    max: Optional[float] = None


@dataclass
class MetricDefinition:
    key: str
    display_name: str
    unit: Optional[str] = None
    normal_range: Optional[NormalRange] = None


@dataclass
class Observation:
    id: str
    patient_id: str
    organization_id: str
    metric_key: str
    value: Any
    recorded_at: datetime
    enrollment_id: Optional[str] = None


@dataclass
class RequiredAssessment:
    template_id: str
    template_name: str
    frequency: str


@dataclass
class Enrollment:
    id: str
    patient_id: str
    organization_id: str
    enrolled_at: datetime
    clinician_id: Optional[str] = None
    required_assessments: List[RequiredAssessment] = field(default_factory=list)


@dataclass
class PatientContact:
    id: str
    organization_id: str
    first_name: str
    last_name: str
    email: Optional[str] = None
    phone: Optional[str] = None

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass
class MedicationRecord:
    id: str
    patient_id: str
    organization_id: str
    drug_name: str
    frequency: Optional[str]
    start_date: datetime
    doses_taken_at: List[datetime] = field(default_factory=list)
    clinician_id: Optional[str] = None


@dataclass
class ClinicianContact:
    id: str
    user_id: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None


@dataclass
class UserContact:
    id: str
    name: str
    role: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


@dataclass
class ApplicableRule:
    """An active rule together with the assignment context for one patient"""
    rule: Any  # alert_models.AlertRule
    enrollment_id: Optional[str] = None
    clinician_id: Optional[str] = None


@dataclass
class TimeLogEntry:
    alert_id: str
    patient_id: str
    organization_id: str
    user_id: str
    activity: str
    duration_minutes: int
    logged_at: datetime
    billing_enrollment_id: Optional[str] = None
    notes: Optional[str] = None
    # Minutes measured by the engagement timer started at claim time
    engaged_minutes: Optional[int] = None


@dataclass
class FollowUpRequest:
    title: str
    due_at: datetime
    notes: Optional[str] = None


# =============================================================================
# Protocols
# =============================================================================

@runtime_checkable
class ObservationSource(Protocol):
    def get_metric(self, metric_key: str) -> Optional[MetricDefinition]: ...

    def observations_for_metric(
        self, patient_id: str, metric_key: str, since: datetime
    ) -> List[Observation]:
        """Observations of one metric recorded at or after ``since``, oldest first"""
        ...

    def observations_since(self, patient_id: str, since: datetime) -> List[Observation]: ...


@runtime_checkable
class RuleDirectory(Protocol):
    def applicable_rules(self, patient_id: str, organization_id: str) -> List[ApplicableRule]: ...


@runtime_checkable
class PatientDirectory(Protocol):
    def active_enrollments(self, exclude_organization_ids: Set[str]) -> List[Enrollment]: ...

    def enrollments_for_patient(self, patient_id: str, organization_id: str) -> List[Enrollment]: ...

    def get_patient(self, patient_id: str) -> Optional[PatientContact]: ...

    def last_completed_assessment(self, patient_id: str, template_id: str) -> Optional[datetime]: ...


@runtime_checkable
class MedicationSource(Protocol):
    def active_medications(self, patient_id: Optional[str] = None) -> List[MedicationRecord]: ...


@runtime_checkable
class ClinicianDirectory(Protocol):
    def get_clinician(self, clinician_id: str) -> Optional[ClinicianContact]: ...


@runtime_checkable
class SupervisorDirectory(Protocol):
    def supervisors_for(self, organization_id: str) -> List[UserContact]:
        """Organization supervisors, preferred escalation target first"""
        ...

    def get_user(self, user_id: str) -> Optional[UserContact]: ...


@runtime_checkable
class OrganizationDirectory(Protocol):
    def platform_organization_ids(self) -> Set[str]: ...


@runtime_checkable
class AuditSink(Protocol):
    def record(self, entry: Dict[str, Any]) -> None: ...


@runtime_checkable
class NotificationSender(Protocol):
    def send_email(self, to: str, subject: str, body: str) -> bool: ...

    def send_sms(self, to: str, body: str) -> bool: ...


@runtime_checkable
class BillingLinkResolver(Protocol):
    def billing_enrollment_id(self, patient_id: str, organization_id: str) -> Optional[str]: ...


@runtime_checkable
class ClinicalRecordsGateway(Protocol):
    def log_time(self, entry: TimeLogEntry) -> None: ...

    def create_follow_up_task(
        self, alert_id: str, patient_id: str, assignee_id: str, request: FollowUpRequest
    ) -> None: ...

    def create_encounter_note(
        self, alert_id: str, patient_id: str, author_id: str, intervention_type: str,
        patient_outcome: str, notes: str
    ) -> None: ...

    def mark_observation_reviewed(self, observation_id: str, reviewer_id: str, reviewed_at: datetime) -> None: ...


class LoggingAuditSink:
    """Mirrors audit entries onto the structured audit logger"""

    def record(self, entry: Dict[str, Any]) -> None:
        log_audit(entry.get("action", "ALERT_EVENT"), entry.get("actor_id"), entry)


@dataclass
class Collaborators:
    """Everything the engine needs from the surrounding system"""
    observations: ObservationSource
    patients: PatientDirectory
    medications: MedicationSource
    clinicians: ClinicianDirectory
    supervisors: SupervisorDirectory
    organizations: OrganizationDirectory
    rules: Optional[RuleDirectory] = None  # None: rules come from the alert_rules table
    notifications: Optional[NotificationSender] = None
    billing: Optional[BillingLinkResolver] = None
    clinical_records: Optional[ClinicalRecordsGateway] = None
    audit_sink: AuditSink = field(default_factory=LoggingAuditSink)
