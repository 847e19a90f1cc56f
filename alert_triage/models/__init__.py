from alert_triage.models.alert_models import (
    AlertRule,
    Alert,
    AlertAuditEntry,
    AssessmentReminderLog
)

__all__ = [
    "AlertRule",
    "Alert",
    "AlertAuditEntry",
    "AssessmentReminderLog",
]
