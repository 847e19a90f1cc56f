"""
Escalation Service - automatic escalation of alerts left past their SLA.

An open alert is escalated once it is past sla_breach_time plus a
severity-specific delay:
- CRITICAL: 30 minutes
- HIGH: 2 hours
- MEDIUM: 4 hours
- LOW: never

Only alerts that are not already escalated and not suppressed qualify. The
first organization supervisor becomes the escalation target and every
supervisor is notified.
"""

import logging
import math
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Query, Session

from alert_triage.models.alert_models import Alert
from alert_triage.schemas.alert_schemas import OPEN_STATUSES
from .config_service import AlertEngineConfig, AlertConfigService
from .interfaces import Collaborators
from .lifecycle_service import AlertLifecycleManager

logger = logging.getLogger(__name__)


def exclude_platform_organizations(query: Query, collaborators: Collaborators) -> Query:
    """Drop alerts of platform-level (non patient-care) organizations"""
    platform_ids = collaborators.organizations.platform_organization_ids()
    if platform_ids:
        query = query.filter(Alert.organization_id.notin_(list(platform_ids)))
    return query


class EscalationService:
    """Service for SLA-breach escalation"""

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

    def check_and_escalate_alerts(self, now: datetime) -> int:
        """Escalate every qualifying alert; returns the number escalated"""
        query = self.db.query(Alert).filter(
            Alert.status.in_(OPEN_STATUSES),
            Alert.sla_breach_time.isnot(None),
            Alert.sla_breach_time < now,
            Alert.is_escalated.is_(False),
            Alert.is_suppressed.is_(False)
        )
        candidates = exclude_platform_organizations(query, self.collaborators).all()

        escalated = 0
        for alert in candidates:
            try:
                if self._escalate_if_due(alert, now):
                    escalated += 1
            except Exception as e:
                logger.error(f"Error escalating alert {alert.id}: {e}")
                self.db.rollback()

        if escalated:
            logger.info(f"Escalated {escalated} alerts past SLA")
        return escalated

    def _escalate_if_due(self, alert: Alert, now: datetime) -> bool:
        delay = self.config.escalation_delay(alert.severity)
        if delay is None:
            return False
        if now < alert.sla_breach_time + delay:
            return False

        supervisors = self.collaborators.supervisors.supervisors_for(alert.organization_id)
        if not supervisors:
            logger.warning(f"No supervisors for organization {alert.organization_id}; alert {alert.id} not escalated")
            return False

        minutes_overdue = math.floor((now - alert.sla_breach_time).total_seconds() / 60)
        reason = f"Automatic escalation: SLA breach ({minutes_overdue} minutes overdue)"
        snapshot = self.lifecycle.auto_escalate(alert, now, supervisors[0], reason, supervisors)
        return snapshot is not None
