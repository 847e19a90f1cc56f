"""
Clinical Monitoring Service - alerts derived from enrollment data on a schedule.

Sweeps:
1. Missed assessments - required assessment overdue for its frequency
2. Medication adherence - 30-day adherence below 80%
3. Concerning trends - more than 15% change over 7 days in a metric
4. Assessment reminders - patient reminded when an assessment is due within 24h

Each sweep is deduplicated against recent PENDING alerts (or reminder log
rows) and processes patients independently, so one bad record does not stop
the rest of the sweep. Platform organizations are skipped.
"""

import logging
import math
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Set

from sqlalchemy.orm import Session

from alert_triage.models.alert_models import Alert, AlertRule, AssessmentReminderLog
from alert_triage.schemas.alert_schemas import (
    AlertStatus,
    MedicationAdherenceFacts,
    MissedAssessmentFacts,
    Severity,
    TrendFacts,
)
from .config_service import AlertEngineConfig, AlertConfigService
from .interfaces import Collaborators, Enrollment, MedicationRecord, RequiredAssessment
from .lifecycle_service import AlertDraft, AlertLifecycleManager
from .priority_ranking import PriorityRankingService
from .risk_scoring import calculate_medication_adherence, extract_scalar, to_number
from .rule_engine import get_or_create_system_rule

logger = logging.getLogger(__name__)

ASSESSMENT_FREQUENCY_HOURS = {
    "hourly": 1,
    "every_4_hours": 4,
    "every_6_hours": 6,
    "every_8_hours": 8,
    "every_12_hours": 12,
    "twice_daily": 12,
    "daily": 24,
    "weekly": 168,
    "biweekly": 336,
    "monthly": 720,
}
DEFAULT_ASSESSMENT_HOURS = ASSESSMENT_FREQUENCY_HOURS["weekly"]


def expected_interval_hours(frequency: Optional[str]) -> int:
    key = (frequency or "").strip().lower().replace("-", "_").replace(" ", "_")
    return ASSESSMENT_FREQUENCY_HOURS.get(key, DEFAULT_ASSESSMENT_HOURS)


def missed_assessment_severity(days_overdue: int) -> str:
    if days_overdue >= 3:
        return Severity.HIGH.value
    if days_overdue >= 1:
        return Severity.MEDIUM.value
    return Severity.LOW.value


class ClinicalMonitoringService:
    """Service running the enrollment-driven detection sweeps"""

    def __init__(
        self,
        db: Session,
        collaborators: Collaborators,
        lifecycle: AlertLifecycleManager,
        config: Optional[AlertEngineConfig] = None
    ):
        self.db = db
        self.collaborators = collaborators
        self.lifecycle = lifecycle
        self.config = config or AlertConfigService().config
        self.ranking = PriorityRankingService(db)

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    def _platform_ids(self) -> Set[str]:
        return set(self.collaborators.organizations.platform_organization_ids())

    def _enrollments(self) -> List[Enrollment]:
        return self.collaborators.patients.active_enrollments(self._platform_ids())

    def _has_recent_pending(
        self,
        patient_id: str,
        rule: AlertRule,
        since: datetime,
        fact_key: str,
        fact_value: str
    ) -> bool:
        recent = (
            self.db.query(Alert)
            .filter(
                Alert.patient_id == patient_id,
                Alert.rule_id == rule.id,
                Alert.status == AlertStatus.PENDING.value,
                Alert.triggered_at >= since
            )
            .all()
        )
        return any((alert.facts or {}).get(fact_key) == fact_value for alert in recent)

    def _rerank(self, organizations: Set[str]) -> None:
        for organization_id in organizations:
            try:
                self.ranking.recalculate(organization_id)
            except Exception as e:
                logger.error(f"Priority re-rank failed for organization {organization_id}: {e}")

    def _reference_time(self, enrollment: Enrollment, assessment: RequiredAssessment) -> datetime:
        last = self.collaborators.patients.last_completed_assessment(
            enrollment.patient_id, assessment.template_id
        )
        return last or enrollment.enrolled_at

    # ------------------------------------------------------------------
    # Missed assessments
    # ------------------------------------------------------------------

    def detect_missed_assessments(self, now: datetime) -> int:
        rule = get_or_create_system_rule(self.db, "missed_assessment")
        created = 0
        organizations: Set[str] = set()

        for enrollment in self._enrollments():
            for assessment in enrollment.required_assessments:
                try:
                    if self._check_missed_assessment(rule, enrollment, assessment, now):
                        created += 1
                        organizations.add(enrollment.organization_id)
                except Exception as e:
                    logger.error(
                        f"Missed-assessment check failed for enrollment {enrollment.id}, "
                        f"template {assessment.template_id}: {e}"
                    )
                    self.db.rollback()

        self._rerank(organizations)
        logger.info(f"Missed-assessment sweep created {created} alerts")
        return created

    def _check_missed_assessment(
        self,
        rule: AlertRule,
        enrollment: Enrollment,
        assessment: RequiredAssessment,
        now: datetime
    ) -> bool:
        last_completed = self.collaborators.patients.last_completed_assessment(
            enrollment.patient_id, assessment.template_id
        )
        reference = last_completed or enrollment.enrolled_at
        expected_hours = expected_interval_hours(assessment.frequency)
        hours_since = (now - reference).total_seconds() / 3600
        if hours_since <= expected_hours:
            return False

        since = now - timedelta(hours=self.config.missed_assessment_dedupe_hours)
        if self._has_recent_pending(enrollment.patient_id, rule, since, "template_id", assessment.template_id):
            return False

        days_overdue = math.floor(hours_since / 24)
        severity = missed_assessment_severity(days_overdue)
        facts = MissedAssessmentFacts(
            enrollment_id=enrollment.id,
            template_id=assessment.template_id,
            template_name=assessment.template_name,
            frequency=assessment.frequency,
            expected_hours=expected_hours,
            last_completed_at=last_completed,
            hours_since_last=round(hours_since, 1),
            days_overdue=days_overdue
        )
        self.lifecycle.create_alert(AlertDraft(
            organization_id=enrollment.organization_id,
            patient_id=enrollment.patient_id,
            rule_id=rule.id,
            severity=severity,
            message=f"Missed {assessment.template_name} assessment ({days_overdue} days overdue)",
            facts=facts,
            risk_score=float(min(10, 5 + days_overdue)),
            clinician_id=enrollment.clinician_id,
            triggered_at=now
        ))
        return True

    # ------------------------------------------------------------------
    # Medication adherence
    # ------------------------------------------------------------------

    def detect_low_adherence(self, now: datetime) -> int:
        rule = get_or_create_system_rule(self.db, "medication_adherence")
        platform_ids = self._platform_ids()
        created = 0
        organizations: Set[str] = set()

        for medication in self.collaborators.medications.active_medications():
            if medication.organization_id in platform_ids:
                continue
            try:
                if self._check_adherence(rule, medication, now):
                    created += 1
                    organizations.add(medication.organization_id)
            except Exception as e:
                logger.error(f"Adherence check failed for medication {medication.id}: {e}")
                self.db.rollback()

        self._rerank(organizations)
        logger.info(f"Adherence sweep created {created} alerts")
        return created

    def _check_adherence(self, rule: AlertRule, medication: MedicationRecord, now: datetime) -> bool:
        summary = calculate_medication_adherence(
            [medication], now, window_days=self.config.adherence_window_days
        )
        if summary is None or summary.percentage >= self.config.adherence_alert_threshold:
            return False

        since = now - timedelta(hours=self.config.adherence_dedupe_hours)
        if self._has_recent_pending(medication.patient_id, rule, since, "medication_id", medication.id):
            return False

        pct = summary.percentage
        if pct < self.config.adherence_high_threshold:
            severity = Severity.HIGH.value
        elif pct < self.config.adherence_medium_threshold:
            severity = Severity.MEDIUM.value
        else:
            severity = Severity.LOW.value

        clinician_id = medication.clinician_id
        if clinician_id is None:
            enrollments = self.collaborators.patients.enrollments_for_patient(
                medication.patient_id, medication.organization_id
            )
            clinician_id = enrollments[0].clinician_id if enrollments else None

        facts = MedicationAdherenceFacts(
            medication_id=medication.id,
            drug_name=medication.drug_name,
            frequency=medication.frequency,
            adherence_percentage=pct,
            doses_taken=summary.doses_taken,
            doses_expected=summary.doses_expected,
            days_evaluated=self.config.adherence_window_days
        )
        self.lifecycle.create_alert(AlertDraft(
            organization_id=medication.organization_id,
            patient_id=medication.patient_id,
            rule_id=rule.id,
            severity=severity,
            message=f"Low adherence to {medication.drug_name}: {pct}% over {self.config.adherence_window_days} days",
            facts=facts,
            risk_score=max(3.0, min(10.0, 10 - pct / 10)),
            clinician_id=clinician_id,
            triggered_at=now
        ))
        return True

    # ------------------------------------------------------------------
    # Trends
    # ------------------------------------------------------------------

    def detect_concerning_trends(self, now: datetime) -> int:
        rule = get_or_create_system_rule(self.db, "trend_analysis")
        since = now - timedelta(days=self.config.trend_lookback_days)
        created = 0
        organizations: Set[str] = set()

        for enrollment in self._enrollments():
            try:
                observations = self.collaborators.observations.observations_since(enrollment.patient_id, since)
                by_metric: Dict[str, list] = defaultdict(list)
                for observation in observations:
                    value = to_number(extract_scalar(observation.value))
                    if value is not None:
                        by_metric[observation.metric_key].append((observation.recorded_at, value))

                for metric_key, points in by_metric.items():
                    if self._check_trend(rule, enrollment, metric_key, sorted(points, key=lambda p: p[0]), now):
                        created += 1
                        organizations.add(enrollment.organization_id)
            except Exception as e:
                logger.error(f"Trend check failed for enrollment {enrollment.id}: {e}")
                self.db.rollback()

        self._rerank(organizations)
        logger.info(f"Trend sweep created {created} alerts")
        return created

    def _check_trend(self, rule: AlertRule, enrollment: Enrollment, metric_key: str, points: list, now: datetime) -> bool:
        if len(points) < self.config.trend_sweep_min_points:
            return False

        earliest, latest = points[0][1], points[-1][1]
        if earliest == 0:
            return False
        change_pct = (latest - earliest) / abs(earliest) * 100
        if abs(change_pct) <= self.config.trend_change_threshold_pct:
            return False

        since = now - timedelta(hours=self.config.trend_dedupe_hours)
        if self._has_recent_pending(enrollment.patient_id, rule, since, "metric_key", metric_key):
            return False

        metric_name = metric_key
        try:
            metric = self.collaborators.observations.get_metric(metric_key)
            if metric is not None:
                metric_name = metric.display_name
        except Exception as e:
            logger.warning(f"Could not load metric {metric_key}: {e}")

        direction = "increasing" if change_pct > 0 else "decreasing"
        severity = Severity.HIGH.value if abs(change_pct) > self.config.trend_high_threshold_pct else Severity.MEDIUM.value
        facts = TrendFacts(
            metric_key=metric_key,
            metric_name=metric_name,
            direction=direction,
            change_percentage=round(change_pct, 1),
            data_points=len(points),
            earliest_value=earliest,
            latest_value=latest,
            window_days=self.config.trend_lookback_days
        )
        self.lifecycle.create_alert(AlertDraft(
            organization_id=enrollment.organization_id,
            patient_id=enrollment.patient_id,
            rule_id=rule.id,
            severity=severity,
            message=(
                f"{metric_name} {direction} {abs(round(change_pct, 1))}% "
                f"over {self.config.trend_lookback_days} days"
            ),
            facts=facts,
            risk_score=min(10.0, 5 + abs(change_pct) / 10),
            clinician_id=enrollment.clinician_id,
            triggered_at=now
        ))
        return True

    # ------------------------------------------------------------------
    # Reminders
    # ------------------------------------------------------------------

    def send_assessment_reminders(self, now: datetime) -> int:
        sent = 0
        for enrollment in self._enrollments():
            for assessment in enrollment.required_assessments:
                try:
                    if self._remind(enrollment, assessment, now):
                        sent += 1
                except Exception as e:
                    logger.error(
                        f"Reminder failed for enrollment {enrollment.id}, template {assessment.template_id}: {e}"
                    )
                    self.db.rollback()

        logger.info(f"Sent {sent} assessment reminders")
        return sent

    def _remind(self, enrollment: Enrollment, assessment: RequiredAssessment, now: datetime) -> bool:
        reference = self._reference_time(enrollment, assessment)
        next_due = reference + timedelta(hours=expected_interval_hours(assessment.frequency))
        hours_until_due = (next_due - now).total_seconds() / 3600
        if not 0 < hours_until_due <= self.config.reminder_horizon_hours:
            return False

        since = now - timedelta(hours=self.config.reminder_dedupe_hours)
        already_sent = (
            self.db.query(AssessmentReminderLog.id)
            .filter(
                AssessmentReminderLog.patient_id == enrollment.patient_id,
                AssessmentReminderLog.template_id == assessment.template_id,
                AssessmentReminderLog.sent_at >= since
            )
            .first()
        )
        if already_sent is not None:
            return False

        patient = self.collaborators.patients.get_patient(enrollment.patient_id)
        if patient is None or not patient.email:
            return False

        if not self.lifecycle.notifier.send_assessment_reminder(patient, assessment, hours_until_due):
            return False

        try:
            self.db.add(AssessmentReminderLog(
                patient_id=enrollment.patient_id,
                enrollment_id=enrollment.id,
                template_id=assessment.template_id,
                channel="email",
                sent_at=now
            ))
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to log reminder for patient {enrollment.patient_id}: {e}")
            raise
        return True
