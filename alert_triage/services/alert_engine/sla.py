"""
SLA helpers - breach deadline at creation plus the live labels pushed to clinicians.
"""

import math
from datetime import datetime
from typing import Optional

from .config_service import AlertEngineConfig


def calculate_sla_breach_time(severity: str, triggered_at: datetime, config: AlertEngineConfig) -> datetime:
    """Deadline for first action; fixed at creation and never recalculated"""
    return triggered_at + config.sla_window(severity)


def time_remaining_minutes(sla_breach_time: Optional[datetime], now: datetime) -> Optional[int]:
    if sla_breach_time is None:
        return None
    return math.floor((sla_breach_time - now).total_seconds() / 60)


def sla_status(sla_breach_time: Optional[datetime], now: datetime, approaching_minutes: int = 30) -> str:
    remaining = time_remaining_minutes(sla_breach_time, now)
    if remaining is None:
        return "ok"
    if remaining <= 0:
        return "breached"
    if remaining < approaching_minutes:
        return "approaching"
    return "ok"


def risk_level(risk_score: Optional[float]) -> str:
    score = risk_score or 0.0
    if score >= 8:
        return "critical"
    if score >= 6:
        return "high"
    if score >= 4:
        return "medium"
    return "low"
