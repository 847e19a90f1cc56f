"""
Pytest configuration for alert triage tests

- In-memory SQLite database shared across sessions (StaticPool)
- In-memory fakes for every collaborator the engine talks to
- A fixed, advanceable clock so time-based sweeps run without waiting
"""

import os
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Set

import pytest

# Settings are read at import time; keep the test run local and quiet
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["NODE_ENV"] = "test"
os.environ.pop("AWS_ACCESS_KEY_ID", None)
os.environ.pop("TWILIO_ACCOUNT_SID", None)

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from alert_triage.config import Settings
from alert_triage.database import Base
from alert_triage.schemas.alert_schemas import ObservationFacts
from alert_triage.services.alert_engine.config_service import AlertEngineConfig
from alert_triage.services.alert_engine.engine import AlertEngine
from alert_triage.services.alert_engine.interfaces import (
    ClinicianContact,
    Collaborators,
    Enrollment,
    FollowUpRequest,
    MedicationRecord,
    MetricDefinition,
    Observation,
    PatientContact,
    TimeLogEntry,
    UserContact,
)
from alert_triage.services.alert_engine.lifecycle_service import Actor, AlertDraft


START = datetime(2026, 3, 2, 12, 0, 0)
ORG_ID = "org-1"
PLATFORM_ORG_ID = "org-platform"


class FixedClock:
    """Callable clock that only moves when told to"""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


# =============================================================================
# Collaborator fakes
# =============================================================================

class FakeObservationSource:
    def __init__(self):
        self.metrics: Dict[str, MetricDefinition] = {}
        self.observations: List[Observation] = []

    def add(self, observation: Observation) -> Observation:
        self.observations.append(observation)
        return observation

    def get_metric(self, metric_key: str) -> Optional[MetricDefinition]:
        return self.metrics.get(metric_key)

    def observations_for_metric(self, patient_id: str, metric_key: str, since: datetime) -> List[Observation]:
        return sorted(
            (o for o in self.observations
             if o.patient_id == patient_id and o.metric_key == metric_key and o.recorded_at >= since),
            key=lambda o: o.recorded_at
        )

    def observations_since(self, patient_id: str, since: datetime) -> List[Observation]:
        return sorted(
            (o for o in self.observations if o.patient_id == patient_id and o.recorded_at >= since),
            key=lambda o: o.recorded_at
        )


class FakePatientDirectory:
    def __init__(self):
        self.enrollments: List[Enrollment] = []
        self.patients: Dict[str, PatientContact] = {}
        self.completions: Dict[tuple, datetime] = {}

    def active_enrollments(self, exclude_organization_ids: Set[str]) -> List[Enrollment]:
        return [e for e in self.enrollments if e.organization_id not in exclude_organization_ids]

    def enrollments_for_patient(self, patient_id: str, organization_id: str) -> List[Enrollment]:
        return [
            e for e in self.enrollments
            if e.patient_id == patient_id and e.organization_id == organization_id
        ]

    def get_patient(self, patient_id: str) -> Optional[PatientContact]:
        return self.patients.get(patient_id)

    def last_completed_assessment(self, patient_id: str, template_id: str) -> Optional[datetime]:
        return self.completions.get((patient_id, template_id))


class FakeMedicationSource:
    def __init__(self):
        self.medications: List[MedicationRecord] = []

    def active_medications(self, patient_id: Optional[str] = None) -> List[MedicationRecord]:
        if patient_id is None:
            return list(self.medications)
        return [m for m in self.medications if m.patient_id == patient_id]


class FakeClinicianDirectory:
    def __init__(self):
        self.clinicians: Dict[str, ClinicianContact] = {}

    def get_clinician(self, clinician_id: str) -> Optional[ClinicianContact]:
        return self.clinicians.get(clinician_id)


class FakeSupervisorDirectory:
    def __init__(self):
        self.supervisors: Dict[str, List[UserContact]] = {}
        self.users: Dict[str, UserContact] = {}

    def supervisors_for(self, organization_id: str) -> List[UserContact]:
        return list(self.supervisors.get(organization_id, []))

    def get_user(self, user_id: str) -> Optional[UserContact]:
        return self.users.get(user_id)


class FakeOrganizationDirectory:
    def __init__(self, platform_ids: Optional[Set[str]] = None):
        self.platform_ids = set(platform_ids or ())

    def platform_organization_ids(self) -> Set[str]:
        return set(self.platform_ids)


class RecordingAuditSink:
    def __init__(self):
        self.entries: List[dict] = []

    def record(self, entry: dict) -> None:
        self.entries.append(entry)

    def actions(self) -> List[str]:
        return [entry["action"] for entry in self.entries]


class RecordingSender:
    def __init__(self):
        self.emails: List[tuple] = []
        self.sms: List[tuple] = []

    def send_email(self, to: str, subject: str, body: str) -> bool:
        self.emails.append((to, subject, body))
        return True

    def send_sms(self, to: str, body: str) -> bool:
        self.sms.append((to, body))
        return True


class RecordingClinicalRecords:
    def __init__(self):
        self.time_logs: List[TimeLogEntry] = []
        self.follow_ups: List[tuple] = []
        self.encounter_notes: List[tuple] = []
        self.reviewed: List[tuple] = []

    def log_time(self, entry: TimeLogEntry) -> None:
        self.time_logs.append(entry)

    def create_follow_up_task(self, alert_id: str, patient_id: str, assignee_id: str, request: FollowUpRequest) -> None:
        self.follow_ups.append((alert_id, patient_id, assignee_id, request))

    def create_encounter_note(self, alert_id, patient_id, author_id, intervention_type, patient_outcome, notes) -> None:
        self.encounter_notes.append((alert_id, patient_id, author_id, intervention_type, patient_outcome, notes))

    def mark_observation_reviewed(self, observation_id: str, reviewer_id: str, reviewed_at: datetime) -> None:
        self.reviewed.append((observation_id, reviewer_id, reviewed_at))


class FakeBilling:
    def __init__(self, enrollment_id: Optional[str] = "billing-1"):
        self.enrollment_id = enrollment_id

    def billing_enrollment_id(self, patient_id: str, organization_id: str) -> Optional[str]:
        return self.enrollment_id


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db_session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def config():
    return AlertEngineConfig()


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def audit_sink():
    return RecordingAuditSink()


@pytest.fixture
def clinical_records():
    return RecordingClinicalRecords()


@pytest.fixture
def collaborators(sender, audit_sink, clinical_records):
    clinicians = FakeClinicianDirectory()
    clinicians.clinicians["clin-1"] = ClinicianContact(
        id="clin-1", user_id="user-clin-1", name="Dana Reyes",
        email="dana@example.org", phone="+15550001111"
    )

    supervisors = FakeSupervisorDirectory()
    supervisor = UserContact(
        id="user-sup-1", name="Sam Okafor", role="CLINICAL_SUPERVISOR",
        email="sam@example.org", phone="+15550002222"
    )
    supervisors.supervisors[ORG_ID] = [supervisor]
    supervisors.users[supervisor.id] = supervisor
    for user_id in ("user-clin-1", "user-clin-2"):
        supervisors.users[user_id] = UserContact(
            id=user_id, name=user_id, role="CLINICIAN", email=f"{user_id}@example.org"
        )

    return Collaborators(
        observations=FakeObservationSource(),
        patients=FakePatientDirectory(),
        medications=FakeMedicationSource(),
        clinicians=clinicians,
        supervisors=supervisors,
        organizations=FakeOrganizationDirectory({PLATFORM_ORG_ID}),
        notifications=sender,
        billing=FakeBilling(),
        clinical_records=clinical_records,
        audit_sink=audit_sink
    )


@pytest.fixture
def test_settings():
    return Settings(
        DATABASE_URL="sqlite://",
        SCHEDULER_ENABLED=False,
        SSE_HEARTBEAT_SECONDS=0.05,
        FRONTEND_URL="https://portal.example.org"
    )


@pytest.fixture
def alert_engine(collaborators, session_factory, config, test_settings, clock):
    return AlertEngine(
        collaborators,
        session_factory,
        config=config,
        settings=test_settings,
        clock=clock
    )


@pytest.fixture
def lifecycle(alert_engine, db_session):
    return alert_engine.lifecycle_manager(db_session)


@pytest.fixture
def clinician():
    return Actor(user_id="user-clin-1", role="CLINICIAN", organization_id=ORG_ID)


@pytest.fixture
def other_clinician():
    return Actor(user_id="user-clin-2", role="CLINICIAN", organization_id=ORG_ID)


@pytest.fixture
def supervisor():
    return Actor(user_id="user-sup-1", role="CLINICAL_SUPERVISOR", organization_id=ORG_ID)


@pytest.fixture
def make_alert(lifecycle, clock):
    """Open an alert directly through the lifecycle manager"""
    counter = {"n": 0}

    def _make(
        severity: str = "MEDIUM",
        risk_score: Optional[float] = 5.0,
        patient_id: str = "patient-1",
        organization_id: str = ORG_ID,
        clinician_id: Optional[str] = "clin-1",
        triggered_at: Optional[datetime] = None
    ):
        counter["n"] += 1
        facts = ObservationFacts(
            observation_id=f"obs-{counter['n']}",
            metric_key="heart_rate",
            value=120,
            recorded_at=triggered_at or clock()
        )
        return lifecycle.create_alert(AlertDraft(
            organization_id=organization_id,
            patient_id=patient_id,
            rule_id=None,
            severity=severity,
            message="Heart rate high: 120 bpm",
            facts=facts,
            risk_score=risk_score,
            clinician_id=clinician_id,
            triggered_at=triggered_at
        ))

    return _make
