"""
Alert Engine Configuration Service - Admin-configurable thresholds and policies.

Provides centralized configuration for:
- Rule cooldown
- Risk score severity multipliers and SLA windows
- SLA escalation delays
- Claim timeout and warning
- Snooze bounds and stale-alert expiry
- Sweep thresholds (assessment, adherence, trend)
"""

import logging
from typing import Dict, Any, Optional, Tuple
from dataclasses import dataclass, field, asdict, fields
from datetime import timedelta

logger = logging.getLogger(__name__)


def _default_severity_multipliers() -> Dict[str, float]:
    return {"CRITICAL": 2.0, "HIGH": 1.5, "MEDIUM": 1.0, "LOW": 0.5}


def _default_sla_windows() -> Dict[str, int]:
    return {"CRITICAL": 30, "HIGH": 120, "MEDIUM": 480, "LOW": 1440}


def _default_escalation_delays() -> Dict[str, Optional[int]]:
    # LOW alerts are never auto-escalated
    return {"CRITICAL": 30, "HIGH": 120, "MEDIUM": 240, "LOW": None}


@dataclass
class AlertEngineConfig:
    """Complete Alert Engine configuration"""

    # Evaluation
    default_cooldown_minutes: int = 60

    # Risk scoring
    deviation_weight: float = 0.5
    trend_weight: float = 0.3
    adherence_weight: float = 0.2
    trend_lookback_days: int = 7
    trend_reference_per_day: float = 5.0  # 1 unit/day of worsening maps to this velocity
    adherence_window_days: int = 30
    severity_multipliers: Dict[str, float] = field(default_factory=_default_severity_multipliers)

    # SLA
    sla_window_minutes: Dict[str, int] = field(default_factory=_default_sla_windows)
    sla_approaching_minutes: int = 30
    escalation_delay_minutes: Dict[str, Optional[int]] = field(default_factory=_default_escalation_delays)

    # Lifecycle guards
    min_reason_length: int = 10
    min_snooze_minutes: int = 1
    max_snooze_minutes: int = 10080
    supervisory_roles: Tuple[str, ...] = ("ORG_ADMIN", "SUPER_ADMIN", "CLINICAL_SUPERVISOR")

    # Claims
    claim_timeout_minutes: int = 60
    claim_warning_minutes: int = 45

    # Stale alerts
    stale_alert_hours: int = 72

    # Missed assessments
    missed_assessment_dedupe_hours: int = 24

    # Medication adherence
    adherence_alert_threshold: float = 80.0
    adherence_high_threshold: float = 50.0
    adherence_medium_threshold: float = 70.0
    adherence_dedupe_hours: int = 48

    # Trend sweep
    trend_sweep_min_points: int = 3
    trend_change_threshold_pct: float = 15.0
    trend_high_threshold_pct: float = 30.0
    trend_dedupe_hours: int = 48

    # Reminders
    reminder_horizon_hours: int = 24
    reminder_dedupe_hours: int = 12

    # Engagement timers
    engagement_timer_max_age_hours: int = 12

    # Notifications
    email_enabled: bool = True
    sms_enabled: bool = True

    def sla_window(self, severity: str) -> timedelta:
        return timedelta(minutes=self.sla_window_minutes.get(severity, self.sla_window_minutes["MEDIUM"]))

    def escalation_delay(self, severity: str) -> Optional[timedelta]:
        """Delay past SLA breach before auto-escalation; None means never"""
        minutes = self.escalation_delay_minutes.get(severity)
        if minutes is None:
            return None
        return timedelta(minutes=minutes)

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary for storage/API"""
        data = asdict(self)
        data["supervisory_roles"] = list(self.supervisory_roles)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AlertEngineConfig':
        """Create config from dictionary, ignoring unknown keys"""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            logger.warning(f"Ignoring unknown alert engine config keys: {sorted(unknown)}")
        values = {k: v for k, v in data.items() if k in known}
        if "supervisory_roles" in values:
            values["supervisory_roles"] = tuple(values["supervisory_roles"])
        return cls(**values)


class AlertConfigService:
    """Service for managing Alert Engine configuration"""

    _instance: Optional['AlertConfigService'] = None
    _config: AlertEngineConfig = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._config = AlertEngineConfig()
        return cls._instance

    @property
    def config(self) -> AlertEngineConfig:
        """Get current configuration"""
        return self._config

    def update_config(self, updates: Dict[str, Any]) -> AlertEngineConfig:
        """Update configuration with new values"""
        try:
            current_dict = self._config.to_dict()
            current_dict.update(updates)
            self._config = AlertEngineConfig.from_dict(current_dict)
            logger.info(f"Alert Engine config updated: {list(updates.keys())}")
            return self._config
        except Exception as e:
            logger.error(f"Error updating config: {e}")
            raise

    def reset_to_defaults(self) -> AlertEngineConfig:
        """Reset to default configuration"""
        self._config = AlertEngineConfig()
        logger.info("Alert Engine config reset to defaults")
        return self._config
