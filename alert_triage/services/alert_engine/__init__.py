"""
Alert Engine Service Package - Clinical alert triage for remote patient monitoring.

Components:
1. RuleBasedAlertEngine - Observation rules (threshold, equality, membership, trend) with cooldown
2. RiskScorer - 0-10 risk score from deviation, trend velocity and adherence
3. AlertLifecycleManager - Claim, acknowledge, resolve, snooze, suppress, escalate
4. PriorityRankingService - Per-organization queue order
5. EscalationService - SLA-breach escalation to supervisors
6. AlertMaintenanceService - Stale alerts, expired snoozes, stale claims
7. ClinicalMonitoringService - Missed assessments, adherence, trends, reminders
8. AlertNotifier / NotificationService - Email (AWS SES) and SMS (Twilio)
9. AlertFanout - Live SSE delivery to connected clinicians
10. AlertScheduler - APScheduler jobs with a manual ticker
11. AlertConfigService - Engine tunables
12. AlertEngine - Process-wide owner of the above
"""

from .config_service import AlertConfigService, AlertEngineConfig
from .engagement_timers import EngagementTimerRegistry
from .engine import AlertEngine
from .errors import (
    AlertConflictError,
    AlertEngineError,
    AlertForbiddenError,
    AlertNotFoundError,
    AlertValidationError,
)
from .escalation_service import EscalationService
from .events import AlertEvent, AlertEventBus, AlertEventType
from .fanout import AlertFanout, AlertStream
from .background_worker import AlertScheduler
from .interfaces import Collaborators
from .lifecycle_service import Actor, AlertDraft, AlertLifecycleManager
from .maintenance_service import AlertMaintenanceService
from .monitoring_service import ClinicalMonitoringService
from .notification_service import AlertNotifier, NotificationService
from .priority_ranking import PriorityRankingService
from .risk_scoring import RiskScorer
from .rule_engine import RuleBasedAlertEngine

__all__ = [
    'Actor',
    'AlertConfigService',
    'AlertConflictError',
    'AlertDraft',
    'AlertEngine',
    'AlertEngineConfig',
    'AlertEngineError',
    'AlertEvent',
    'AlertEventBus',
    'AlertEventType',
    'AlertFanout',
    'AlertForbiddenError',
    'AlertLifecycleManager',
    'AlertMaintenanceService',
    'AlertNotFoundError',
    'AlertNotifier',
    'AlertScheduler',
    'AlertStream',
    'AlertValidationError',
    'ClinicalMonitoringService',
    'Collaborators',
    'EngagementTimerRegistry',
    'EscalationService',
    'NotificationService',
    'PriorityRankingService',
    'RiskScorer',
    'RuleBasedAlertEngine',
]
