"""
Priority Ranking Service - dense 1..N queue order for an organization.

Order: risk score descending (missing scores last), then oldest first.
Ranks are only meaningful across the organization's PENDING alerts at the
time of the last recalculation.
"""

import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from alert_triage.models.alert_models import Alert
from alert_triage.schemas.alert_schemas import AlertStatus

logger = logging.getLogger(__name__)


class PriorityRankingService:
    """Service recomputing priority_rank over pending alerts"""

    def __init__(self, db: Session):
        self.db = db

    def recalculate(self, organization_id: str) -> int:
        """Returns the number of alerts ranked"""
        pending = (
            self.db.query(Alert)
            .filter(
                Alert.organization_id == organization_id,
                Alert.status == AlertStatus.PENDING.value
            )
            .order_by(
                func.coalesce(Alert.risk_score, 0).desc(),
                Alert.triggered_at.asc(),
                Alert.id.asc()
            )
            .all()
        )

        try:
            for rank, alert in enumerate(pending, start=1):
                if alert.priority_rank != rank:
                    alert.priority_rank = rank
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error recalculating priority ranks for organization {organization_id}: {e}")
            raise

        logger.info(f"Recalculated priority ranks for {len(pending)} pending alerts in organization {organization_id}")
        return len(pending)
