"""
Risk Scoring Service - 0-10 composite risk score for triage ordering.

riskScore = clamp(0, 10, (deviation*0.5 + velocity*0.3 + adherencePenalty*0.2) * severityMultiplier)

Components:
1. Vitals deviation - relative distance outside the metric's normal range
2. Trend velocity - least-squares slope over the last 7 days, worsening only
3. Adherence penalty - 30-day medication adherence shortfall
4. Severity multiplier - CRITICAL 2.0, HIGH 1.5, MEDIUM 1.0, LOW 0.5

The score and all four components are persisted on the alert.
"""

import logging
import math
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from .config_service import AlertEngineConfig, AlertConfigService
from .interfaces import (
    MedicationRecord,
    MedicationSource,
    NormalRange,
    Observation,
    ObservationSource,
)

logger = logging.getLogger(__name__)

MAX_COMPONENT = 10.0
MIN_SCORE = 0.0
MAX_SCORE = 10.0


def extract_scalar(value: Any) -> Any:
    """Unwrap one level of structured observation value ({"value": x} or {"code": x})"""
    if isinstance(value, dict):
        if "value" in value:
            return value["value"]
        return value.get("code")
    return value


def to_number(value: Any) -> Optional[float]:
    """Coerce an observation scalar to float; None when not numeric"""
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def parse_daily_doses(frequency: Optional[str]) -> int:
    """Doses per day implied by a free-text frequency ("twice daily", "3x/day")"""
    text = (frequency or "").lower()
    if "twice" in text or "2" in text:
        return 2
    if "three" in text or "3" in text:
        return 3
    if "four" in text or "4" in text:
        return 4
    return 1


def calculate_vitals_deviation(value: Any, normal_range: Optional[NormalRange]) -> float:
    """0 inside [min, max]; otherwise distance past the nearer bound relative to it, x10, capped"""
    number = to_number(value)
    if number is None or normal_range is None:
        return 0.0

    low, high = normal_range.min, normal_range.max
    if low is not None and number < low:
        if low == 0:
            return MAX_COMPONENT
        return min(MAX_COMPONENT, (low - number) / abs(low) * 10)
    if high is not None and number > high:
        if high == 0:
            return MAX_COMPONENT
        return min(MAX_COMPONENT, (number - high) / abs(high) * 10)
    return 0.0


def calculate_trend_velocity(
    points: Sequence[Tuple[datetime, Any]],
    reference_per_day: float = 5.0
) -> float:
    """
    Fit value ~ days linearly and normalize the slope.

    A slope of 1 unit/day maps to ``reference_per_day``. Flat or improving
    trends, fewer than two numeric points, or points sharing one timestamp
    all give 0.
    """
    numeric = [(ts, to_number(v)) for ts, v in points]
    numeric = sorted(((ts, v) for ts, v in numeric if v is not None), key=lambda p: p[0])
    if len(numeric) < 2:
        return 0.0

    origin = numeric[0][0]
    days = np.array([(ts - origin).total_seconds() / 86400.0 for ts, _ in numeric])
    values = np.array([v for _, v in numeric])
    if np.ptp(days) == 0:
        return 0.0

    slope = float(np.polyfit(days, values, 1)[0])
    if slope <= 0:
        return 0.0
    return min(MAX_COMPONENT, slope * reference_per_day)


@dataclass
class AdherenceSummary:
    percentage: float
    doses_taken: int
    doses_expected: int


def calculate_medication_adherence(
    medications: Iterable[MedicationRecord],
    now: datetime,
    window_days: int = 30
) -> Optional[AdherenceSummary]:
    """Doses taken over doses expected in the window; None without medications"""
    medications = list(medications)
    if not medications:
        return None

    window_start = now - timedelta(days=window_days)
    taken = 0
    expected = 0
    for medication in medications:
        start = max(medication.start_date, window_start)
        active_days = max(0, math.ceil((now - start).total_seconds() / 86400.0))
        expected += active_days * parse_daily_doses(medication.frequency)
        taken += sum(1 for ts in medication.doses_taken_at if window_start <= ts <= now)

    if expected == 0:
        percentage = 100.0
    else:
        percentage = min(100.0, taken / expected * 100)
    return AdherenceSummary(
        percentage=round(percentage, 1),
        doses_taken=taken,
        doses_expected=expected
    )


def calculate_adherence_penalty(adherence_percentage: Optional[float]) -> float:
    if adherence_percentage is None:
        return 0.0
    pct = max(0.0, min(100.0, adherence_percentage))
    return 10 - pct / 10


@dataclass
class RiskScoreResult:
    risk_score: float
    vitals_deviation: float
    trend_velocity: float
    adherence_penalty: float
    severity_multiplier: float

    def components(self) -> Dict[str, float]:
        data = asdict(self)
        data.pop("risk_score")
        return data


class RiskScorer:
    """Service computing composite alert risk scores"""

    def __init__(self, config: Optional[AlertEngineConfig] = None):
        self.config = config or AlertConfigService().config

    def severity_multiplier(self, severity: str) -> float:
        return self.config.severity_multipliers.get(severity, 1.0)

    def score(
        self,
        severity: str,
        value: Any = None,
        normal_range: Optional[NormalRange] = None,
        trend_points: Optional[Sequence[Tuple[datetime, Any]]] = None,
        adherence_percentage: Optional[float] = None
    ) -> RiskScoreResult:
        deviation = calculate_vitals_deviation(value, normal_range)
        velocity = calculate_trend_velocity(
            trend_points or [],
            reference_per_day=self.config.trend_reference_per_day
        )
        penalty = calculate_adherence_penalty(adherence_percentage)
        multiplier = self.severity_multiplier(severity)

        base = (
            deviation * self.config.deviation_weight
            + velocity * self.config.trend_weight
            + penalty * self.config.adherence_weight
        )
        risk = max(MIN_SCORE, min(MAX_SCORE, base * multiplier))

        return RiskScoreResult(
            risk_score=round(risk, 2),
            vitals_deviation=round(deviation, 2),
            trend_velocity=round(velocity, 2),
            adherence_penalty=round(penalty, 2),
            severity_multiplier=multiplier
        )

    def score_observation(
        self,
        observation: Observation,
        value: Any,
        severity: str,
        observations: ObservationSource,
        medications: MedicationSource,
        now: datetime
    ) -> RiskScoreResult:
        """Gather range, recent history and adherence for an observation, then score it"""
        normal_range = None
        trend_points: List[Tuple[datetime, Any]] = []
        adherence = None

        try:
            metric = observations.get_metric(observation.metric_key)
            if metric is not None:
                normal_range = metric.normal_range
        except Exception as e:
            logger.warning(f"Could not load metric {observation.metric_key}: {e}")

        try:
            since = now - timedelta(days=self.config.trend_lookback_days)
            history = observations.observations_for_metric(
                observation.patient_id, observation.metric_key, since
            )
            trend_points = [(o.recorded_at, extract_scalar(o.value)) for o in history]
        except Exception as e:
            logger.warning(f"Could not load trend history for patient {observation.patient_id}: {e}")

        try:
            summary = calculate_medication_adherence(
                medications.active_medications(observation.patient_id),
                now,
                window_days=self.config.adherence_window_days
            )
            if summary is not None:
                adherence = summary.percentage
        except Exception as e:
            logger.warning(f"Could not compute adherence for patient {observation.patient_id}: {e}")

        return self.score(
            severity,
            value=value,
            normal_range=normal_range,
            trend_points=trend_points,
            adherence_percentage=adherence
        )
