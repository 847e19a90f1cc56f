"""
Alert Maintenance Service - age-based transitions run by the scheduler.

- Stale cleanup: PENDING alerts untouched for 72 hours are dismissed
- Snooze reactivation: expired snoozes are cleared and re-broadcast
- Stale claims: claims held over 60 minutes are released, claimers are
  warned from 45 minutes
"""

import logging
import math
from datetime import datetime, timedelta
from typing import Optional, Set

from sqlalchemy.orm import Session

from alert_triage.models.alert_models import Alert
from alert_triage.schemas.alert_schemas import AlertSnapshot, AlertStatus, OPEN_STATUSES
from .config_service import AlertEngineConfig, AlertConfigService
from .escalation_service import exclude_platform_organizations
from .interfaces import Collaborators
from .lifecycle_service import AlertLifecycleManager
from .priority_ranking import PriorityRankingService

logger = logging.getLogger(__name__)

STALE_ALERT_NOTE = "Auto-resolved: Alert expired after {hours} hours without action"


class AlertMaintenanceService:
    """Service for scheduler-driven alert housekeeping"""

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

    def cleanup_stale_alerts(self, now: datetime) -> int:
        cutoff = now - timedelta(hours=self.config.stale_alert_hours)
        query = self.db.query(Alert).filter(
            Alert.status == AlertStatus.PENDING.value,
            Alert.triggered_at < cutoff
        )
        stale = exclude_platform_organizations(query, self.collaborators).all()

        note = STALE_ALERT_NOTE.format(hours=self.config.stale_alert_hours)
        dismissed = 0
        organizations: Set[str] = set()
        for alert in stale:
            try:
                if self.lifecycle.auto_dismiss_stale(alert, now, note) is not None:
                    dismissed += 1
                    organizations.add(alert.organization_id)
            except Exception as e:
                logger.error(f"Error dismissing stale alert {alert.id}: {e}")
                self.db.rollback()

        ranking = PriorityRankingService(self.db)
        for organization_id in organizations:
            try:
                ranking.recalculate(organization_id)
            except Exception as e:
                logger.error(f"Priority re-rank failed for organization {organization_id}: {e}")

        if dismissed:
            logger.info(f"Auto-dismissed {dismissed} stale alerts")
        return dismissed

    def reactivate_snoozed_alerts(self, now: datetime) -> int:
        query = self.db.query(Alert).filter(
            Alert.snoozed_until.isnot(None),
            Alert.snoozed_until <= now,
            Alert.status.in_(OPEN_STATUSES)
        )
        expired = exclude_platform_organizations(query, self.collaborators).all()

        reactivated = 0
        for alert in expired:
            try:
                if self.lifecycle.reactivate_snooze(alert, now) is not None:
                    reactivated += 1
            except Exception as e:
                logger.error(f"Error reactivating snoozed alert {alert.id}: {e}")
                self.db.rollback()

        if reactivated:
            logger.info(f"Reactivated {reactivated} snoozed alerts")
        return reactivated

    def release_stale_claims(self, now: datetime) -> int:
        """Release expired claims and warn claimers nearing the limit; returns releases"""
        query = self.db.query(Alert).filter(
            Alert.claimed_by_id.isnot(None),
            Alert.claimed_at.isnot(None),
            Alert.status.in_(OPEN_STATUSES)
        )
        claimed = exclude_platform_organizations(query, self.collaborators).all()

        released = 0
        for alert in claimed:
            minutes_claimed = math.floor((now - alert.claimed_at).total_seconds() / 60)
            try:
                if minutes_claimed > self.config.claim_timeout_minutes:
                    if self.lifecycle.auto_release_claim(alert, now, minutes_claimed) is not None:
                        released += 1
                elif minutes_claimed >= self.config.claim_warning_minutes:
                    self._warn_claimer(alert, minutes_claimed)
            except Exception as e:
                logger.error(f"Error processing stale claim on alert {alert.id}: {e}")
                self.db.rollback()

        if released:
            logger.info(f"Auto-released {released} stale claims")
        return released

    def _warn_claimer(self, alert: Alert, minutes_claimed: int) -> None:
        claimer = self.collaborators.supervisors.get_user(alert.claimed_by_id)
        if claimer is None:
            logger.warning(f"Claimer {alert.claimed_by_id} of alert {alert.id} not found; no warning sent")
            return
        self.lifecycle.notifier.notify_claim_warning(
            AlertSnapshot.model_validate(alert), claimer, minutes_claimed
        )
        logger.info(f"Warned claimer of alert {alert.id} after {minutes_claimed} minutes")
