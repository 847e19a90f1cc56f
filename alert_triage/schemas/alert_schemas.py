"""
Alert triage schemas

Enumerations shared by the ORM models and services, plus typed payloads for
the JSON columns:
- rule conditions, discriminated by ``type``
- alert facts, discriminated by ``type``
- AlertSnapshot, a detached copy of an alert handed to event listeners
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class AlertStatus(str, Enum):
    PENDING = "PENDING"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    RESOLVED = "RESOLVED"
    DISMISSED = "DISMISSED"


TERMINAL_STATUSES = (AlertStatus.RESOLVED.value, AlertStatus.DISMISSED.value)
OPEN_STATUSES = (AlertStatus.PENDING.value, AlertStatus.ACKNOWLEDGED.value)


class InterventionType(str, Enum):
    PHONE_CALL = "PHONE_CALL"
    VIDEO_CALL = "VIDEO_CALL"
    IN_PERSON_VISIT = "IN_PERSON_VISIT"
    SECURE_MESSAGE = "SECURE_MESSAGE"
    MEDICATION_ADJUSTMENT = "MEDICATION_ADJUSTMENT"
    REFERRAL = "REFERRAL"
    PATIENT_EDUCATION = "PATIENT_EDUCATION"
    CARE_COORDINATION = "CARE_COORDINATION"
    MEDICATION_RECONCILIATION = "MEDICATION_RECONCILIATION"
    NO_PATIENT_CONTACT = "NO_PATIENT_CONTACT"


class PatientOutcome(str, Enum):
    IMPROVED = "IMPROVED"
    STABLE = "STABLE"
    DECLINED = "DECLINED"
    NO_CHANGE = "NO_CHANGE"
    PATIENT_UNREACHABLE = "PATIENT_UNREACHABLE"


class SuppressReason(str, Enum):
    FALSE_POSITIVE = "FALSE_POSITIVE"
    PATIENT_CONTACTED = "PATIENT_CONTACTED"
    DUPLICATE_ALERT = "DUPLICATE_ALERT"
    PLANNED_INTERVENTION = "PLANNED_INTERVENTION"
    PATIENT_HOSPITALIZED = "PATIENT_HOSPITALIZED"
    DEVICE_MALFUNCTION = "DEVICE_MALFUNCTION"
    DATA_ENTRY_ERROR = "DATA_ENTRY_ERROR"
    CLINICAL_JUDGMENT = "CLINICAL_JUDGMENT"
    OTHER = "OTHER"


# =============================================================================
# Rule conditions
# =============================================================================

class UnsupportedConditionError(ValueError):
    """Raised when a stored condition names an operator the evaluator lacks"""


class ThresholdCondition(BaseModel):
    type: Literal["threshold"] = "threshold"
    metric: Optional[str] = None
    operator: Literal["gt", "gte", "lt", "lte"]
    value: float


class EqualityCondition(BaseModel):
    type: Literal["equality"] = "equality"
    metric: Optional[str] = None
    operator: Literal["eq", "neq"]
    value: Any


class MembershipCondition(BaseModel):
    type: Literal["membership"] = "membership"
    metric: Optional[str] = None
    operator: Literal["in"] = "in"
    value: List[Any]


class TrendCondition(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["trend"] = "trend"
    metric: Optional[str] = None
    operator: Literal["increase", "decrease"]
    value: float
    time_window: Optional[str] = Field(default=None, alias="timeWindow")


class SystemCondition(BaseModel):
    """Placeholder condition for rules owned by the scheduler sweeps"""
    type: Literal["missed_assessment", "medication_adherence", "trend_analysis"]
    metric: Optional[str] = None
    operator: Optional[str] = None


AlertCondition = Annotated[
    Union[ThresholdCondition, EqualityCondition, MembershipCondition, TrendCondition, SystemCondition],
    Field(discriminator="type"),
]

_condition_adapter = TypeAdapter(AlertCondition)

OPERATOR_CONDITION_TYPES = {
    "gt": "threshold",
    "gte": "threshold",
    "lt": "threshold",
    "lte": "threshold",
    "eq": "equality",
    "neq": "equality",
    "in": "membership",
    "increase": "trend",
    "decrease": "trend",
}


def parse_condition(raw: Union[Dict[str, Any], BaseModel]) -> AlertCondition:
    """Parse a stored condition; untagged dicts are tagged from their operator."""
    if isinstance(raw, BaseModel):
        return raw

    data = dict(raw or {})
    if "type" not in data:
        operator = data.get("operator")
        if operator not in OPERATOR_CONDITION_TYPES:
            raise UnsupportedConditionError(f"Unknown operator: {operator!r}")
        data["type"] = OPERATOR_CONDITION_TYPES[operator]

    return _condition_adapter.validate_python(data)


# =============================================================================
# Alert facts
# =============================================================================

class ObservationFacts(BaseModel):
    type: Literal["observation"] = "observation"
    observation_id: str
    metric_key: str
    value: Any
    recorded_at: datetime
    enrollment_id: Optional[str] = None
    condition: Optional[Dict[str, Any]] = None


class MissedAssessmentFacts(BaseModel):
    type: Literal["missed_assessment"] = "missed_assessment"
    enrollment_id: str
    template_id: str
    template_name: str
    frequency: str
    expected_hours: int
    last_completed_at: Optional[datetime] = None
    hours_since_last: float
    days_overdue: int


class MedicationAdherenceFacts(BaseModel):
    type: Literal["medication_adherence"] = "medication_adherence"
    medication_id: str
    drug_name: str
    frequency: Optional[str] = None
    adherence_percentage: float
    doses_taken: int
    doses_expected: int
    days_evaluated: int = 30


class TrendFacts(BaseModel):
    type: Literal["trend"] = "trend"
    metric_key: str
    metric_name: str
    direction: Literal["increasing", "decreasing"]
    change_percentage: float
    data_points: int
    earliest_value: float
    latest_value: float
    window_days: int = 7


AlertFacts = Annotated[
    Union[ObservationFacts, MissedAssessmentFacts, MedicationAdherenceFacts, TrendFacts],
    Field(discriminator="type"),
]

_facts_adapter = TypeAdapter(AlertFacts)


def parse_facts(raw: Dict[str, Any]) -> AlertFacts:
    return _facts_adapter.validate_python(raw)


def dump_facts(facts: BaseModel) -> Dict[str, Any]:
    return facts.model_dump(mode="json")


# =============================================================================
# Snapshot handed to lifecycle event listeners
# =============================================================================

class AlertSnapshot(BaseModel):
    """Detached, read-only copy of an alert taken right after commit"""
    model_config = ConfigDict(from_attributes=True)

    id: str
    organization_id: str
    patient_id: str
    rule_id: Optional[str] = None
    clinician_id: Optional[str] = None
    severity: str
    status: str
    message: str
    facts: Dict[str, Any] = Field(default_factory=dict)
    risk_score: Optional[float] = None
    priority_rank: Optional[int] = None
    triggered_at: datetime
    sla_breach_time: Optional[datetime] = None
    acknowledged_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    claimed_by_id: Optional[str] = None
    claimed_at: Optional[datetime] = None
    snoozed_until: Optional[datetime] = None
    is_suppressed: bool = False
    suppress_reason: Optional[str] = None
    is_escalated: bool = False
    escalated_to_id: Optional[str] = None
    escalation_level: int = 0


# =============================================================================
# HTTP request bodies
# =============================================================================

class ForceClaimRequest(BaseModel):
    reason: str


class ResolveAlertRequest(BaseModel):
    resolution_notes: str
    intervention_type: str
    patient_outcome: str
    time_spent_minutes: int
    create_encounter_note: bool = False
    follow_up_title: Optional[str] = None
    follow_up_due_at: Optional[datetime] = None
    follow_up_notes: Optional[str] = None


class DismissAlertRequest(BaseModel):
    notes: Optional[str] = None


class SnoozeAlertRequest(BaseModel):
    duration_minutes: int


class SuppressAlertRequest(BaseModel):
    reason: str
    notes: Optional[str] = None


class EscalateAlertRequest(BaseModel):
    target_user_id: str
    reason: Optional[str] = None
