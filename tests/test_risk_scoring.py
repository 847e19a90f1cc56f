"""
Risk scoring tests: components, clamping and severity multipliers
"""

from datetime import timedelta

import pytest

from alert_triage.services.alert_engine.config_service import AlertEngineConfig
from alert_triage.services.alert_engine.interfaces import (
    MedicationRecord,
    MetricDefinition,
    NormalRange,
    Observation,
)
from alert_triage.services.alert_engine.risk_scoring import (
    RiskScorer,
    calculate_adherence_penalty,
    calculate_medication_adherence,
    calculate_trend_velocity,
    calculate_vitals_deviation,
    extract_scalar,
    parse_daily_doses,
    to_number,
)

from conftest import START


HR_RANGE = NormalRange(min=60, max=100)


class TestVitalsDeviation:

    def test_inside_range_is_zero(self):
        assert calculate_vitals_deviation(80, HR_RANGE) == 0.0
        assert calculate_vitals_deviation(100, HR_RANGE) == 0.0

    def test_above_range_is_relative_to_upper_bound(self):
        assert calculate_vitals_deviation(120, HR_RANGE) == pytest.approx(2.0)

    def test_below_range_is_relative_to_lower_bound(self):
        assert calculate_vitals_deviation(45, HR_RANGE) == pytest.approx(2.5)

    def test_capped_at_ten(self):
        assert calculate_vitals_deviation(1000, HR_RANGE) == 10.0

    def test_zero_bound_gives_maximum(self):
        assert calculate_vitals_deviation(5, NormalRange(min=0, max=0)) == 10.0

    def test_missing_range_or_non_numeric_value(self):
        assert calculate_vitals_deviation(120, None) == 0.0
        assert calculate_vitals_deviation("high", HR_RANGE) == 0.0


class TestTrendVelocity:

    def test_one_unit_per_day_maps_to_reference(self):
        points = [(START + timedelta(days=d), 100 + d) for d in range(3)]
        assert calculate_trend_velocity(points) == pytest.approx(5.0)

    def test_improving_trend_is_zero(self):
        points = [(START + timedelta(days=d), 100 - d) for d in range(3)]
        assert calculate_trend_velocity(points) == 0.0

    def test_too_few_points(self):
        assert calculate_trend_velocity([]) == 0.0
        assert calculate_trend_velocity([(START, 100)]) == 0.0

    def test_points_at_one_timestamp(self):
        assert calculate_trend_velocity([(START, 100), (START, 140)]) == 0.0

    def test_non_numeric_points_ignored(self):
        points = [(START, "n/a"), (START + timedelta(days=1), 100)]
        assert calculate_trend_velocity(points) == 0.0

    def test_capped_at_ten(self):
        points = [(START, 0), (START + timedelta(days=1), 50)]
        assert calculate_trend_velocity(points) == 10.0


class TestAdherence:

    def _med(self, frequency="once daily", days_ago=10, doses=5):
        return MedicationRecord(
            id="med-1",
            patient_id="patient-1",
            organization_id="org-1",
            drug_name="Metoprolol",
            frequency=frequency,
            start_date=START - timedelta(days=days_ago),
            doses_taken_at=[START - timedelta(hours=12 * i + 1) for i in range(doses)]
        )

    def test_daily_doses_parsing(self):
        assert parse_daily_doses("once daily") == 1
        assert parse_daily_doses("twice daily") == 2
        assert parse_daily_doses("3x/day") == 3
        assert parse_daily_doses(None) == 1

    def test_percentage_of_expected_doses(self):
        summary = calculate_medication_adherence([self._med()], START)
        assert summary.doses_expected == 10
        assert summary.doses_taken == 5
        assert summary.percentage == 50.0

    def test_no_medications(self):
        assert calculate_medication_adherence([], START) is None

    def test_nothing_expected_yet_is_full_adherence(self):
        summary = calculate_medication_adherence([self._med(days_ago=0, doses=0)], START)
        assert summary.percentage == 100.0

    def test_penalty(self):
        assert calculate_adherence_penalty(None) == 0.0
        assert calculate_adherence_penalty(100) == 0.0
        assert calculate_adherence_penalty(50) == 5.0
        assert calculate_adherence_penalty(0) == 10.0


class TestScalars:

    def test_extract_scalar(self):
        assert extract_scalar({"value": 7}) == 7
        assert extract_scalar({"code": "LA6576-8"}) == "LA6576-8"
        assert extract_scalar(3.5) == 3.5

    def test_to_number(self):
        assert to_number("12.5") == 12.5
        assert to_number(True) is None
        assert to_number(None) is None
        assert to_number(float("nan")) is None
        assert to_number("abc") is None


class TestRiskScorer:

    def test_reference_medium_score(self):
        result = RiskScorer(AlertEngineConfig()).score("MEDIUM", value=120, normal_range=HR_RANGE)
        assert result.vitals_deviation == 2.0
        assert result.risk_score == 1.0
        assert result.severity_multiplier == 1.0

    def test_critical_doubles_medium(self):
        scorer = RiskScorer(AlertEngineConfig())
        medium = scorer.score("MEDIUM", value=120, normal_range=HR_RANGE)
        critical = scorer.score("CRITICAL", value=120, normal_range=HR_RANGE)
        assert critical.risk_score == pytest.approx(2 * medium.risk_score)

    def test_score_clamped_to_ten(self):
        result = RiskScorer(AlertEngineConfig()).score(
            "CRITICAL", value=1000, normal_range=HR_RANGE, adherence_percentage=0
        )
        assert result.risk_score == 10.0

    def test_score_never_negative(self):
        result = RiskScorer(AlertEngineConfig()).score("LOW")
        assert result.risk_score == 0.0

    def test_configurable_multipliers(self):
        config = AlertEngineConfig(severity_multipliers={"CRITICAL": 1.5, "HIGH": 1.2, "MEDIUM": 1.0, "LOW": 0.8})
        result = RiskScorer(config).score("CRITICAL", value=120, normal_range=HR_RANGE)
        assert result.risk_score == 1.5

    def test_components_exclude_total(self):
        result = RiskScorer(AlertEngineConfig()).score("HIGH", value=120, normal_range=HR_RANGE)
        assert set(result.components()) == {
            "vitals_deviation", "trend_velocity", "adherence_penalty", "severity_multiplier"
        }

    def test_score_observation_gathers_context(self, collaborators):
        observations = collaborators.observations
        observations.metrics["heart_rate"] = MetricDefinition("heart_rate", "Heart Rate", "bpm", HR_RANGE)
        for day in range(3):
            observations.add(Observation(
                id=f"obs-{day}", patient_id="patient-1", organization_id="org-1",
                metric_key="heart_rate", value=100 + day,
                recorded_at=START - timedelta(days=2 - day)
            ))
        current = observations.observations[-1]

        result = RiskScorer(AlertEngineConfig()).score_observation(
            current, 120, "MEDIUM", observations, collaborators.medications, START
        )
        assert result.vitals_deviation == 2.0
        assert result.trend_velocity == pytest.approx(5.0)
        assert result.adherence_penalty == 0.0
        assert result.risk_score == pytest.approx(2.5)
