"""
Alert Engine Background Worker - scheduled sweeps of the triage engine.

Jobs:
1. missed_assessments - hourly
2. medication_adherence - every 6 hours
3. trend_analysis - daily 02:00
4. stale_alert_cleanup - daily 03:00
5. assessment_reminders - 09:00 and 18:00
6. snooze_reactivation - every 5 minutes
7. sla_escalation - every minute
8. stale_claim_release - every 10 minutes
9. engagement_timer_sweep - hourly

Can be run as:
- APScheduler BackgroundScheduler (start/stop, used by the FastAPI lifespan)
- Manual ticker (run_due_jobs) driven by an injectable clock

Every job opens its own database session and runs isolated: a failing job
is logged and never affects the others.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import Any, Callable, Dict, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


@dataclass
class JobSpec:
    id: str
    name: str
    func: Callable[[Session, datetime], Any]
    interval: Optional[timedelta] = None
    cron: Optional[Dict[str, Any]] = None


def _cron_values(field: Any) -> List[int]:
    return [int(part) for part in str(field).split(",")]


class AlertScheduler:
    """Manages the background jobs of one AlertEngine"""

    def __init__(self, engine, timezone: Optional[str] = None):
        """
        Args:
            engine: AlertEngine providing the session factory, clock and services
            timezone: zone for cron jobs under APScheduler
        """
        self.engine = engine
        self.db_session_factory = engine.session_factory
        self.clock = engine.clock
        self.timezone = timezone
        self.scheduler: Optional[BackgroundScheduler] = None
        self.jobs: Dict[str, JobSpec] = {spec.id: spec for spec in self._default_jobs()}
        self._last_run: Dict[str, datetime] = {}
        self._last_tick: Optional[datetime] = None

    def _default_jobs(self) -> List[JobSpec]:
        return [
            JobSpec('missed_assessments', 'Missed Assessment Detection', self._detect_missed_assessments,
                    interval=timedelta(hours=1)),
            JobSpec('medication_adherence', 'Medication Adherence Check', self._check_medication_adherence,
                    interval=timedelta(hours=6)),
            JobSpec('trend_analysis', 'Trend Analysis', self._analyze_trends,
                    cron={'hour': 2, 'minute': 0}),
            JobSpec('stale_alert_cleanup', 'Stale Alert Cleanup', self._cleanup_stale_alerts,
                    cron={'hour': 3, 'minute': 0}),
            JobSpec('assessment_reminders', 'Assessment Reminders', self._send_assessment_reminders,
                    cron={'hour': '9,18', 'minute': 0}),
            JobSpec('snooze_reactivation', 'Snooze Reactivation', self._reactivate_snoozed,
                    interval=timedelta(minutes=5)),
            JobSpec('sla_escalation', 'SLA Escalation', self._escalate_sla_breaches,
                    interval=timedelta(minutes=1)),
            JobSpec('stale_claim_release', 'Stale Claim Release', self._release_stale_claims,
                    interval=timedelta(minutes=10)),
            JobSpec('engagement_timer_sweep', 'Engagement Timer Sweep', self._sweep_engagement_timers,
                    interval=timedelta(hours=1)),
        ]

    # ------------------------------------------------------------------
    # Job bodies
    # ------------------------------------------------------------------

    def _detect_missed_assessments(self, db: Session, now: datetime) -> int:
        return self.engine.monitoring_service(db).detect_missed_assessments(now)

    def _check_medication_adherence(self, db: Session, now: datetime) -> int:
        return self.engine.monitoring_service(db).detect_low_adherence(now)

    def _analyze_trends(self, db: Session, now: datetime) -> int:
        return self.engine.monitoring_service(db).detect_concerning_trends(now)

    def _cleanup_stale_alerts(self, db: Session, now: datetime) -> int:
        return self.engine.maintenance_service(db).cleanup_stale_alerts(now)

    def _send_assessment_reminders(self, db: Session, now: datetime) -> int:
        return self.engine.monitoring_service(db).send_assessment_reminders(now)

    def _reactivate_snoozed(self, db: Session, now: datetime) -> int:
        return self.engine.maintenance_service(db).reactivate_snoozed_alerts(now)

    def _escalate_sla_breaches(self, db: Session, now: datetime) -> int:
        return self.engine.escalation_service(db).check_and_escalate_alerts(now)

    def _release_stale_claims(self, db: Session, now: datetime) -> int:
        return self.engine.maintenance_service(db).release_stale_claims(now)

    def _sweep_engagement_timers(self, db: Session, now: datetime) -> int:
        max_age = timedelta(hours=self.engine.config.engagement_timer_max_age_hours)
        return self.engine.timers.sweep_stale(now, max_age)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def run_job(self, job_id: str, now: Optional[datetime] = None) -> Any:
        """Run one job in its own session; failures are logged, never raised"""
        spec = self.jobs.get(job_id)
        if spec is None:
            raise KeyError(f"Unknown scheduled job: {job_id}")

        now = now or self.clock()
        db = self.db_session_factory()
        try:
            result = spec.func(db, now)
            logger.info(f"Scheduled job {job_id} finished: {result}")
            return result
        except Exception as e:
            logger.error(f"Scheduled job {job_id} failed: {e}")
            db.rollback()
            return None
        finally:
            db.close()
            self._last_run[job_id] = now

    def _cron_due(self, spec: JobSpec, since: Optional[datetime], now: datetime) -> bool:
        start = since if since is not None else now - timedelta(minutes=1)
        hours = _cron_values(spec.cron.get('hour', 0))
        minutes = _cron_values(spec.cron.get('minute', 0))

        day = start.date()
        while day <= now.date():
            for hour in hours:
                for minute in minutes:
                    fire_at = datetime.combine(day, time(hour, minute))
                    if start < fire_at <= now:
                        return True
            day += timedelta(days=1)
        return False

    def is_due(self, job_id: str, now: datetime) -> bool:
        spec = self.jobs[job_id]
        if spec.interval is not None:
            last = self._last_run.get(job_id)
            return last is None or now - last >= spec.interval
        return self._cron_due(spec, self._last_tick, now)

    def run_due_jobs(self, now: Optional[datetime] = None) -> List[str]:
        """
        Manual ticker: run every job due at ``now``.

        Interval jobs are due on the first tick and then once their interval
        has elapsed since the last run; cron jobs are due when a fire time
        falls after the previous tick (or within the last minute on the
        first tick). Cron times are read in the clock's own frame.
        """
        now = now or self.clock()
        due = [job_id for job_id in self.jobs if self.is_due(job_id, now)]
        for job_id in due:
            self.run_job(job_id, now)
        self._last_tick = now
        return due

    # ------------------------------------------------------------------
    # APScheduler
    # ------------------------------------------------------------------

    def start(self):
        """Start the background scheduler."""
        if self.scheduler is not None and self.scheduler.running:
            return

        self.scheduler = BackgroundScheduler(timezone=self.timezone) if self.timezone else BackgroundScheduler()
        for spec in self.jobs.values():
            if spec.interval is not None:
                trigger = IntervalTrigger(seconds=int(spec.interval.total_seconds()))
            else:
                trigger = CronTrigger(timezone=self.timezone, **spec.cron) if self.timezone else CronTrigger(**spec.cron)
            self.scheduler.add_job(
                self.run_job,
                trigger,
                args=[spec.id],
                id=spec.id,
                replace_existing=True,
                name=spec.name,
                max_instances=1,
                coalesce=True
            )

        self.scheduler.start()
        logger.info(f"Alert scheduler started with {len(self.jobs)} background jobs")

    def stop(self):
        """Stop the background scheduler."""
        if self.scheduler is not None and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Alert scheduler stopped")

    @property
    def running(self) -> bool:
        return self.scheduler is not None and self.scheduler.running

    def get_jobs(self) -> List[Dict]:
        """Get list of scheduled jobs."""
        if self.scheduler is None:
            return [
                {"id": spec.id, "name": spec.name, "next_run_time": None,
                 "trigger": str(spec.interval or spec.cron)}
                for spec in self.jobs.values()
            ]

        jobs = []
        for job in self.scheduler.get_jobs():
            jobs.append({
                "id": job.id,
                "name": job.name,
                "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
                "trigger": str(job.trigger)
            })
        return jobs
