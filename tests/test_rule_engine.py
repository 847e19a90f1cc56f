"""
Rule engine tests: condition operators, cooldown and rule applicability
"""

from datetime import timedelta

import pytest

from alert_triage.models.alert_models import Alert, AlertRule
from alert_triage.services.alert_engine.interfaces import (
    Enrollment,
    MetricDefinition,
    NormalRange,
    Observation,
)
from alert_triage.services.alert_engine.rule_engine import (
    get_or_create_system_rule,
    parse_time_window,
)

from conftest import ORG_ID, START


def add_rule(db, conditions, severity="HIGH", organization_id=ORG_ID, is_active=True, cooldown_minutes=60, name="High HR"):
    rule = AlertRule(
        name=name,
        organization_id=organization_id,
        conditions=conditions,
        severity=severity,
        is_active=is_active,
        is_system=False,
        cooldown_minutes=cooldown_minutes
    )
    db.add(rule)
    db.commit()
    db.refresh(rule)
    return rule


def observe(clock, value=120, metric_key="heart_rate", obs_id="obs-1", organization_id=ORG_ID, recorded_at=None):
    return Observation(
        id=obs_id,
        patient_id="patient-1",
        organization_id=organization_id,
        metric_key=metric_key,
        value=value,
        recorded_at=recorded_at or clock()
    )


@pytest.fixture
def engine(alert_engine, db_session):
    return alert_engine.rule_engine(db_session)


@pytest.fixture
def enrolled(collaborators):
    collaborators.patients.enrollments.append(Enrollment(
        id="enr-1", patient_id="patient-1", organization_id=ORG_ID,
        enrolled_at=START - timedelta(days=30), clinician_id="clin-1"
    ))
    collaborators.observations.metrics["heart_rate"] = MetricDefinition(
        "heart_rate", "Heart Rate", "bpm", NormalRange(min=60, max=100)
    )


class TestParseTimeWindow:

    def test_hours_suffix(self):
        assert parse_time_window("6h") == timedelta(hours=6)

    def test_bare_number(self):
        assert parse_time_window("48") == timedelta(hours=48)

    def test_leading_number_is_hours(self):
        assert parse_time_window("72d") == timedelta(hours=72)
        assert parse_time_window("2 weeks") == timedelta(hours=2)

    def test_missing_or_unparseable(self):
        assert parse_time_window(None) is None
        assert parse_time_window("weekly") is None
        assert parse_time_window("") is None


class TestConditions:

    def test_threshold_match_creates_alert(self, engine, db_session, clock, enrolled):
        add_rule(db_session, {"metric": "heart_rate", "operator": "gt", "value": 100})
        created = engine.evaluate_observation(observe(clock, 120))

        assert len(created) == 1
        alert = created[0]
        assert alert.severity == "HIGH"
        assert alert.clinician_id == "clin-1"
        assert alert.message == "High HR: Heart Rate 120 bpm"
        assert alert.risk_score == pytest.approx(1.5)
        assert alert.sla_breach_time == clock() + timedelta(minutes=120)
        assert alert.facts["observation_id"] == "obs-1"
        assert alert.facts["enrollment_id"] == "enr-1"

    def test_threshold_not_met(self, engine, db_session, clock):
        add_rule(db_session, {"metric": "heart_rate", "operator": "gt", "value": 100})
        assert engine.evaluate_observation(observe(clock, 95)) == []

    def test_non_numeric_value_never_matches_threshold(self, engine, db_session, clock):
        add_rule(db_session, {"metric": "heart_rate", "operator": "gte", "value": 100})
        assert engine.evaluate_observation(observe(clock, "elevated")) == []

    def test_other_metric_ignored(self, engine, db_session, clock):
        add_rule(db_session, {"metric": "spo2", "operator": "lt", "value": 90})
        assert engine.evaluate_observation(observe(clock, 80)) == []

    def test_equality_is_string_coerced(self, engine, db_session, clock):
        add_rule(db_session, {"metric": "symptom", "operator": "eq", "value": "3"})
        created = engine.evaluate_observation(observe(clock, {"value": 3}, metric_key="symptom"))
        assert len(created) == 1

    def test_not_equal(self, engine, db_session, clock):
        add_rule(db_session, {"metric": "symptom", "operator": "neq", "value": "none"})
        assert engine.evaluate_observation(observe(clock, "none", metric_key="symptom")) == []
        assert len(engine.evaluate_observation(observe(clock, "cough", metric_key="symptom", obs_id="obs-2"))) == 1

    def test_membership(self, engine, db_session, clock):
        add_rule(db_session, {"metric": "rhythm", "operator": "in", "value": ["afib", "vtach"]})
        assert len(engine.evaluate_observation(observe(clock, "afib", metric_key="rhythm"))) == 1

    def test_unknown_operator_is_skipped(self, engine, db_session, clock):
        add_rule(db_session, {"metric": "heart_rate", "operator": "between", "value": [60, 100]})
        add_rule(db_session, {"metric": "heart_rate", "operator": "gt", "value": 100}, name="Valid")
        created = engine.evaluate_observation(observe(clock, 120))
        assert [alert.message.split(":")[0] for alert in created] == ["Valid"]

    def test_increase_trend_against_earliest_in_window(self, engine, db_session, clock, collaborators):
        observations = collaborators.observations
        observations.add(observe(clock, 80, obs_id="obs-a", recorded_at=clock() - timedelta(hours=20)))
        observations.add(observe(clock, 90, obs_id="obs-b", recorded_at=clock() - timedelta(hours=10)))
        current = observations.add(observe(clock, 96, obs_id="obs-c"))

        add_rule(db_session, {"metric": "heart_rate", "operator": "increase", "value": 15, "timeWindow": "24h"})
        assert len(engine.evaluate_observation(current)) == 1

    def test_trend_outside_window_ignored(self, engine, db_session, clock, collaborators):
        observations = collaborators.observations
        observations.add(observe(clock, 60, obs_id="obs-a", recorded_at=clock() - timedelta(hours=30)))
        observations.add(observe(clock, 90, obs_id="obs-b", recorded_at=clock() - timedelta(hours=5)))
        current = observations.add(observe(clock, 96, obs_id="obs-c"))

        add_rule(db_session, {"metric": "heart_rate", "operator": "increase", "value": 15, "timeWindow": "24h"})
        assert engine.evaluate_observation(current) == []

    def test_decrease_trend(self, engine, db_session, clock, collaborators):
        observations = collaborators.observations
        observations.add(observe(clock, 98, metric_key="spo2", obs_id="obs-a", recorded_at=clock() - timedelta(hours=3)))
        current = observations.add(observe(clock, 91, metric_key="spo2", obs_id="obs-b"))

        add_rule(db_session, {"metric": "spo2", "operator": "decrease", "value": 5, "time_window": "6h"})
        assert len(engine.evaluate_observation(current)) == 1

    def test_trend_without_history_does_not_fire(self, engine, db_session, clock, collaborators):
        current = collaborators.observations.add(observe(clock, 140))
        add_rule(db_session, {"metric": "heart_rate", "operator": "increase", "value": 10, "timeWindow": "24h"})
        assert engine.evaluate_observation(current) == []

    @pytest.mark.parametrize("window", [None, "recent"])
    def test_trend_without_usable_window_does_not_fire(self, engine, db_session, clock, collaborators, window):
        observations = collaborators.observations
        observations.add(observe(clock, 80, obs_id="obs-a", recorded_at=clock() - timedelta(hours=2)))
        current = observations.add(observe(clock, 120, obs_id="obs-b"))

        conditions = {"metric": "heart_rate", "operator": "increase", "value": 15}
        if window is not None:
            conditions["timeWindow"] = window
        add_rule(db_session, conditions)
        assert engine.evaluate_observation(current) == []

    def test_system_rules_never_match_observations(self, engine, db_session, clock):
        get_or_create_system_rule(db_session, "missed_assessment")
        assert engine.evaluate_observation(observe(clock, 120)) == []


class TestCooldown:

    def test_repeat_within_cooldown_suppressed(self, engine, db_session, clock):
        add_rule(db_session, {"metric": "heart_rate", "operator": "gt", "value": 100})
        assert len(engine.evaluate_observation(observe(clock, 120))) == 1

        clock.advance(minutes=30)
        assert engine.evaluate_observation(observe(clock, 125, obs_id="obs-2")) == []

    def test_fires_again_after_cooldown(self, engine, db_session, clock):
        add_rule(db_session, {"metric": "heart_rate", "operator": "gt", "value": 100})
        engine.evaluate_observation(observe(clock, 120))

        clock.advance(minutes=61)
        assert len(engine.evaluate_observation(observe(clock, 125, obs_id="obs-2"))) == 1

    def test_terminal_alert_does_not_block(self, engine, db_session, clock, lifecycle, clinician):
        add_rule(db_session, {"metric": "heart_rate", "operator": "gt", "value": 100})
        first = engine.evaluate_observation(observe(clock, 120))[0]
        lifecycle.dismiss(first.id, clinician, notes="Cuff slipped")

        clock.advance(minutes=5)
        assert len(engine.evaluate_observation(observe(clock, 125, obs_id="obs-2"))) == 1

    def test_zero_cooldown_always_fires(self, engine, db_session, clock):
        add_rule(db_session, {"metric": "heart_rate", "operator": "gt", "value": 100}, cooldown_minutes=0)
        engine.evaluate_observation(observe(clock, 120))
        assert len(engine.evaluate_observation(observe(clock, 121, obs_id="obs-2"))) == 1


class TestApplicability:

    def test_global_rule_applies_to_every_organization(self, engine, db_session, clock):
        add_rule(db_session, {"metric": "heart_rate", "operator": "gt", "value": 100}, organization_id=None)
        assert len(engine.evaluate_observation(observe(clock, 120, organization_id="org-2"))) == 1

    def test_other_organization_rule_ignored(self, engine, db_session, clock):
        add_rule(db_session, {"metric": "heart_rate", "operator": "gt", "value": 100}, organization_id="org-2")
        assert engine.evaluate_observation(observe(clock, 120)) == []

    def test_inactive_rule_ignored(self, engine, db_session, clock):
        add_rule(db_session, {"metric": "heart_rate", "operator": "gt", "value": 100}, is_active=False)
        assert engine.evaluate_observation(observe(clock, 120)) == []

    def test_system_rule_is_created_once(self, db_session):
        first = get_or_create_system_rule(db_session, "trend_analysis")
        second = get_or_create_system_rule(db_session, "trend_analysis")
        assert first.id == second.id
        assert first.is_system is True
        assert first.organization_id is None


class TestSideEffects:

    def test_clinician_emailed_and_audited(self, engine, db_session, clock, enrolled, sender, audit_sink):
        add_rule(db_session, {"metric": "heart_rate", "operator": "gt", "value": 100})
        engine.evaluate_observation(observe(clock, 120))

        assert [to for to, _, _ in sender.emails] == ["dana@example.org"]
        assert audit_sink.actions() == ["ALERT_CREATED"]

    def test_queue_reranked_after_creation(self, engine, db_session, clock, enrolled):
        add_rule(db_session, {"metric": "heart_rate", "operator": "gt", "value": 100})
        alert = engine.evaluate_observation(observe(clock, 120))[0]
        db_session.refresh(alert)
        assert alert.priority_rank == 1

    def test_persisted(self, engine, db_session, clock):
        add_rule(db_session, {"metric": "heart_rate", "operator": "gt", "value": 100})
        engine.evaluate_observation(observe(clock, 120))
        assert db_session.query(Alert).count() == 1
