"""
Rule-Based Alert Engine - matches incoming observations against alert rules.

Operators:
1. gt / gte / lt / lte - numeric threshold
2. eq / neq - equality, string-coerced
3. in - membership, string-coerced
4. increase / decrease - delta from the earliest value inside a time window

Includes:
- Per (patient, rule) cooldown against duplicate open alerts
- Risk scoring and SLA deadline for every created alert
- Priority re-ranking of the organization queue after creation
- Global system rules owned by the scheduler sweeps
"""

import logging
import re
from datetime import datetime, timedelta
from typing import Any, Callable, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from alert_triage.models.alert_models import Alert, AlertRule
from alert_triage.schemas.alert_schemas import (
    EqualityCondition,
    MembershipCondition,
    ObservationFacts,
    SystemCondition,
    TERMINAL_STATUSES,
    ThresholdCondition,
    TrendCondition,
    parse_condition,
)
from .config_service import AlertEngineConfig, AlertConfigService
from .interfaces import ApplicableRule, Collaborators, Observation, ObservationSource, PatientDirectory
from .lifecycle_service import AlertDraft, AlertLifecycleManager
from .priority_ranking import PriorityRankingService
from .risk_scoring import RiskScorer, extract_scalar, to_number

logger = logging.getLogger(__name__)

_WINDOW_PATTERN = re.compile(r"^\s*(\d+)")


def parse_time_window(window: Optional[str]) -> Optional[timedelta]:
    """
    Parse the leading whole number of a window as hours ("24h", "48", "72d" -> 72h).

    Returns None when the window is missing or has no leading number.
    """
    match = _WINDOW_PATTERN.match(str(window)) if window is not None else None
    if match is None:
        logger.warning(f"Invalid time window {window!r}")
        return None
    return timedelta(hours=int(match.group(1)))


def _values_equal(left: Any, right: Any) -> bool:
    return left == right or str(left) == str(right)


class ConditionEvaluator:
    """Evaluates one rule condition against one observation"""

    def __init__(
        self,
        observations: ObservationSource,
        config: Optional[AlertEngineConfig] = None
    ):
        self.observations = observations
        self.config = config or AlertConfigService().config

    def matches(self, raw_condition: Any, observation: Observation) -> bool:
        try:
            condition = parse_condition(raw_condition)
        except ValueError as e:
            logger.warning(f"Skipping unsupported condition {raw_condition!r}: {e}")
            return False

        if isinstance(condition, SystemCondition):
            return False
        if condition.metric and condition.metric != observation.metric_key:
            return False

        value = extract_scalar(observation.value)

        if isinstance(condition, ThresholdCondition):
            return self._check_threshold(condition, value)
        if isinstance(condition, EqualityCondition):
            equal = _values_equal(value, condition.value)
            return equal if condition.operator == "eq" else not equal
        if isinstance(condition, MembershipCondition):
            return any(_values_equal(value, candidate) for candidate in condition.value)
        if isinstance(condition, TrendCondition):
            return self._check_trend(condition, observation, value)

        logger.warning(f"No evaluator for condition type {type(condition).__name__}")
        return False

    def _check_threshold(self, condition: ThresholdCondition, value: Any) -> bool:
        number = to_number(value)
        if number is None:
            return False
        if condition.operator == "gt":
            return number > condition.value
        if condition.operator == "gte":
            return number >= condition.value
        if condition.operator == "lt":
            return number < condition.value
        return number <= condition.value

    def _check_trend(self, condition: TrendCondition, observation: Observation, value: Any) -> bool:
        current = to_number(value)
        if current is None:
            return False

        window = parse_time_window(condition.time_window)
        if window is None:
            return False
        since = observation.recorded_at - window
        try:
            history = self.observations.observations_for_metric(
                observation.patient_id, observation.metric_key, since
            )
        except Exception as e:
            logger.warning(f"Could not load trend history for patient {observation.patient_id}: {e}")
            return False

        earlier = [
            o for o in history
            if o.id != observation.id and o.recorded_at <= observation.recorded_at
        ]
        if not earlier:
            return False

        earliest = min(earlier, key=lambda o: o.recorded_at)
        baseline = to_number(extract_scalar(earliest.value))
        if baseline is None:
            return False

        delta = current - baseline
        if condition.operator == "increase":
            return delta >= condition.value
        return -delta >= condition.value


class SqlRuleDirectory:
    """RuleDirectory over the alert_rules table: global and organization rules"""

    def __init__(self, db: Session, patients: PatientDirectory):
        self.db = db
        self.patients = patients

    def applicable_rules(self, patient_id: str, organization_id: str) -> List[ApplicableRule]:
        rules = (
            self.db.query(AlertRule)
            .filter(
                AlertRule.is_active.is_(True),
                AlertRule.is_system.is_(False),
                or_(AlertRule.organization_id.is_(None), AlertRule.organization_id == organization_id)
            )
            .all()
        )
        if not rules:
            return []

        enrollments = self.patients.enrollments_for_patient(patient_id, organization_id)
        enrollment = enrollments[0] if enrollments else None
        return [
            ApplicableRule(
                rule=rule,
                enrollment_id=enrollment.id if enrollment else None,
                clinician_id=enrollment.clinician_id if enrollment else None
            )
            for rule in rules
        ]


SYSTEM_RULES = {
    "missed_assessment": ("Missed Assessment", "Required assessment not completed on schedule", "MEDIUM"),
    "medication_adherence": ("Medication Adherence", "30-day medication adherence below threshold", "MEDIUM"),
    "trend_analysis": ("Concerning Trend", "Sustained directional change in a monitored metric", "MEDIUM"),
}


def get_or_create_system_rule(db: Session, kind: str) -> AlertRule:
    """Global rule that sweep-created alerts of ``kind`` hang off"""
    rule = (
        db.query(AlertRule)
        .filter(AlertRule.is_system.is_(True), AlertRule.organization_id.is_(None))
        .filter(AlertRule.name == SYSTEM_RULES[kind][0])
        .first()
    )
    if rule is not None:
        return rule

    name, description, severity = SYSTEM_RULES[kind]
    rule = AlertRule(
        name=name,
        description=description,
        conditions=SystemCondition(type=kind).model_dump(),
        severity=severity,
        is_active=True,
        is_system=True,
        cooldown_minutes=0
    )
    try:
        db.add(rule)
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to create system rule {kind}: {e}")
        raise
    db.refresh(rule)
    logger.info(f"Created system alert rule {rule.name} ({rule.id})")
    return rule


class RuleBasedAlertEngine:
    """Service turning observations into alerts"""

    def __init__(
        self,
        db: Session,
        collaborators: Collaborators,
        lifecycle: AlertLifecycleManager,
        scorer: Optional[RiskScorer] = None,
        config: Optional[AlertEngineConfig] = None,
        clock: Callable[[], datetime] = datetime.utcnow
    ):
        self.db = db
        self.collaborators = collaborators
        self.lifecycle = lifecycle
        self.config = config or AlertConfigService().config
        self.scorer = scorer or RiskScorer(self.config)
        self.clock = clock
        self.evaluator = ConditionEvaluator(collaborators.observations, self.config)
        self.rules = collaborators.rules or SqlRuleDirectory(db, collaborators.patients)
        self.ranking = PriorityRankingService(db)

    def is_in_cooldown(self, patient_id: str, rule: AlertRule, now: datetime) -> bool:
        minutes = rule.cooldown_minutes if rule.cooldown_minutes is not None else self.config.default_cooldown_minutes
        if minutes <= 0:
            return False
        cutoff = now - timedelta(minutes=minutes)
        existing = (
            self.db.query(Alert.id)
            .filter(
                Alert.patient_id == patient_id,
                Alert.rule_id == rule.id,
                Alert.triggered_at >= cutoff,
                Alert.status.notin_(TERMINAL_STATUSES)
            )
            .first()
        )
        return existing is not None

    def evaluate_observation(self, observation: Observation) -> List[Alert]:
        """Evaluate all applicable rules; returns the alerts created"""
        now = self.clock()
        try:
            applicable = self.rules.applicable_rules(observation.patient_id, observation.organization_id)
        except Exception as e:
            logger.error(f"Could not load rules for patient {observation.patient_id}: {e}")
            raise

        created: List[Alert] = []
        for item in applicable:
            rule = item.rule
            if not rule.is_active:
                continue
            if not self.evaluator.matches(rule.conditions, observation):
                continue
            if self.is_in_cooldown(observation.patient_id, rule, now):
                logger.info(f"Rule {rule.id} in cooldown for patient {observation.patient_id}; not re-alerting")
                continue

            alert = self._create_from_rule(item, observation, now)
            created.append(alert)

        if created:
            try:
                self.ranking.recalculate(observation.organization_id)
            except Exception as e:
                logger.error(f"Priority re-rank failed for organization {observation.organization_id}: {e}")
        return created

    def _create_from_rule(self, item: ApplicableRule, observation: Observation, now: datetime) -> Alert:
        rule = item.rule
        value = extract_scalar(observation.value)
        risk = self.scorer.score_observation(
            observation,
            value,
            rule.severity,
            self.collaborators.observations,
            self.collaborators.medications,
            now
        )
        facts = ObservationFacts(
            observation_id=observation.id,
            metric_key=observation.metric_key,
            value=value,
            recorded_at=observation.recorded_at,
            enrollment_id=observation.enrollment_id or item.enrollment_id,
            condition=rule.conditions
        )
        return self.lifecycle.create_alert(AlertDraft(
            organization_id=observation.organization_id,
            patient_id=observation.patient_id,
            rule_id=rule.id,
            severity=rule.severity,
            message=self._build_message(rule, observation, value),
            facts=facts,
            risk=risk,
            clinician_id=item.clinician_id,
            triggered_at=now
        ))

    def _build_message(self, rule: AlertRule, observation: Observation, value: Any) -> str:
        label = observation.metric_key
        try:
            metric = self.collaborators.observations.get_metric(observation.metric_key)
            if metric is not None:
                label = metric.display_name
                if metric.unit:
                    return f"{rule.name}: {label} {value} {metric.unit}"
        except Exception as e:
            logger.warning(f"Could not load metric {observation.metric_key} for message: {e}")
        return f"{rule.name}: {label} {value}"
