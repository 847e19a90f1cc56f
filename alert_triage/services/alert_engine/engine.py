"""
Alert Engine - the running triage engine and the registries it owns.

One AlertEngine per process wires the collaborators to the lifecycle event
bus, the SSE fan-out, the engagement timers and the scheduler. Services are
built per database session.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Iterator, List, Optional

from sqlalchemy.orm import Session

from alert_triage.config import Settings, settings as default_settings
from alert_triage.schemas.alert_schemas import AlertSnapshot
from .background_worker import AlertScheduler
from .config_service import AlertEngineConfig, AlertConfigService
from .engagement_timers import EngagementTimerRegistry
from .escalation_service import EscalationService
from .events import AlertEventBus
from .fanout import AlertFanout
from .interfaces import Collaborators, Observation
from .lifecycle_service import AlertLifecycleManager
from .maintenance_service import AlertMaintenanceService
from .monitoring_service import ClinicalMonitoringService
from .notification_service import AlertNotifier
from .priority_ranking import PriorityRankingService
from .risk_scoring import RiskScorer
from .rule_engine import RuleBasedAlertEngine

logger = logging.getLogger(__name__)


class AlertEngine:
    """Process-wide owner of the triage engine state"""

    def __init__(
        self,
        collaborators: Collaborators,
        session_factory: Callable[[], Session],
        config: Optional[AlertEngineConfig] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = datetime.utcnow
    ):
        self.collaborators = collaborators
        self.session_factory = session_factory
        self.config = config or AlertConfigService().config
        self.settings = settings or default_settings
        self.clock = clock

        self.event_bus = AlertEventBus()
        self.timers = EngagementTimerRegistry()
        self.fanout = AlertFanout(
            clinicians=collaborators.clinicians,
            clock=clock,
            heartbeat_seconds=self.settings.SSE_HEARTBEAT_SECONDS,
            queue_size=self.settings.SSE_QUEUE_SIZE,
            approaching_minutes=self.config.sla_approaching_minutes
        )
        self.event_bus.subscribe(self.fanout.handle_event)
        self.notifier = AlertNotifier(collaborators.notifications, self.config, self.settings.FRONTEND_URL)
        self.scorer = RiskScorer(self.config)
        self.scheduler = AlertScheduler(self, timezone=self.settings.SCHEDULER_TIMEZONE)

    @contextmanager
    def session(self) -> Iterator[Session]:
        db = self.session_factory()
        try:
            yield db
        finally:
            db.close()

    def lifecycle_manager(self, db: Session) -> AlertLifecycleManager:
        return AlertLifecycleManager(
            db,
            self.collaborators,
            event_bus=self.event_bus,
            notifier=self.notifier,
            timers=self.timers,
            config=self.config,
            clock=self.clock
        )

    def rule_engine(self, db: Session) -> RuleBasedAlertEngine:
        return RuleBasedAlertEngine(
            db,
            self.collaborators,
            self.lifecycle_manager(db),
            scorer=self.scorer,
            config=self.config,
            clock=self.clock
        )

    def escalation_service(self, db: Session) -> EscalationService:
        return EscalationService(db, self.collaborators, self.lifecycle_manager(db), self.config)

    def maintenance_service(self, db: Session) -> AlertMaintenanceService:
        return AlertMaintenanceService(db, self.collaborators, self.lifecycle_manager(db), self.config)

    def monitoring_service(self, db: Session) -> ClinicalMonitoringService:
        return ClinicalMonitoringService(db, self.collaborators, self.lifecycle_manager(db), self.config)

    def evaluate_observation(self, observation: Observation) -> List[AlertSnapshot]:
        """Evaluate one stored observation in a fresh session"""
        with self.session() as db:
            alerts = self.rule_engine(db).evaluate_observation(observation)
            return [AlertSnapshot.model_validate(alert) for alert in alerts]

    def recalculate_priorities(self, organization_id: str) -> int:
        with self.session() as db:
            return PriorityRankingService(db).recalculate(organization_id)

    def start(self) -> None:
        if not self.settings.SCHEDULER_ENABLED:
            logger.info("Alert scheduler disabled by configuration")
            return
        self.scheduler.start()

    def stop(self) -> None:
        self.scheduler.stop()
