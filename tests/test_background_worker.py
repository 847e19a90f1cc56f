"""
Scheduler tests: job registry, isolation and the manual ticker
"""

from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest

from alert_triage.models.alert_models import Alert

from conftest import START

INTERVAL_JOBS = [
    "missed_assessments",
    "medication_adherence",
    "snooze_reactivation",
    "sla_escalation",
    "stale_claim_release",
    "engagement_timer_sweep",
]


@pytest.fixture
def scheduler(alert_engine):
    return alert_engine.scheduler


class TestJobRegistry:

    def test_all_jobs_listed_before_start(self, scheduler):
        """Job list is available without starting APScheduler"""
        jobs = scheduler.get_jobs()
        assert {job["id"] for job in jobs} == set(INTERVAL_JOBS) | {
            "trend_analysis", "stale_alert_cleanup", "assessment_reminders"
        }
        assert all(job["next_run_time"] is None for job in jobs)
        assert scheduler.running is False

    def test_unknown_job(self, scheduler):
        """Unknown job ids are a caller error"""
        with pytest.raises(KeyError):
            scheduler.run_job("defragment_disk")

    def test_start_and_stop(self, scheduler):
        """APScheduler registers every job with a next run time"""
        scheduler.start()
        try:
            assert scheduler.running is True
            jobs = scheduler.get_jobs()
            assert len(jobs) == 9
            assert all(job["next_run_time"] for job in jobs)
        finally:
            scheduler.stop()
        assert scheduler.running is False


class TestJobIsolation:

    def test_failing_job_is_contained(self, scheduler, clock):
        """A job that raises returns None and does not stop later jobs"""
        scheduler.jobs["missed_assessments"].func = MagicMock(side_effect=RuntimeError("boom"))
        escalate = MagicMock(return_value=0)
        scheduler.jobs["sla_escalation"].func = escalate

        ran = scheduler.run_due_jobs(clock())
        assert "missed_assessments" in ran
        escalate.assert_called_once()
        assert scheduler.run_job("missed_assessments") is None

    def test_job_gets_own_session_and_clock_time(self, scheduler, clock):
        """Jobs receive a fresh session and the engine clock's time"""
        job = MagicMock(return_value=3)
        scheduler.jobs["stale_claim_release"].func = job

        assert scheduler.run_job("stale_claim_release") == 3
        db, now = job.call_args[0]
        assert now == clock()
        assert db.query(Alert).count() == 0

    def test_real_jobs_run_against_database(self, scheduler, make_alert, clock, db_session):
        """The stale cleanup job dismisses through its own session"""
        alert = make_alert(severity="LOW", triggered_at=clock() - timedelta(hours=80))
        assert scheduler.run_job("stale_alert_cleanup") == 1

        db_session.expire_all()
        assert db_session.query(Alert).filter(Alert.id == alert.id).one().status == "DISMISSED"


class TestManualTicker:

    @pytest.fixture(autouse=True)
    def stub_jobs(self, scheduler):
        for spec in scheduler.jobs.values():
            spec.func = MagicMock(return_value=0)

    def test_first_tick_runs_interval_jobs(self, scheduler):
        """Interval jobs are due immediately; cron jobs wait for their time"""
        assert scheduler.run_due_jobs(START) == INTERVAL_JOBS

    def test_interval_jobs_wait_for_their_interval(self, scheduler):
        scheduler.run_due_jobs(START)
        assert scheduler.run_due_jobs(START + timedelta(minutes=1)) == ["sla_escalation"]
        assert set(scheduler.run_due_jobs(START + timedelta(minutes=5))) == {
            "sla_escalation", "snooze_reactivation"
        }
        assert "stale_claim_release" in scheduler.run_due_jobs(START + timedelta(minutes=10))

    def test_cron_job_fires_when_tick_crosses_its_time(self, scheduler):
        scheduler.run_due_jobs(datetime(2026, 3, 3, 8, 59))
        assert "assessment_reminders" in scheduler.run_due_jobs(datetime(2026, 3, 3, 9, 0))
        assert "assessment_reminders" not in scheduler.run_due_jobs(datetime(2026, 3, 3, 9, 1))

    def test_cron_jobs_caught_up_across_long_gap(self, scheduler):
        """Every cron time between two ticks counts, once"""
        scheduler.run_due_jobs(START)
        ran = scheduler.run_due_jobs(START + timedelta(hours=16))
        assert {"trend_analysis", "stale_alert_cleanup", "assessment_reminders"} <= set(ran)
        scheduler.jobs["trend_analysis"].func.assert_called_once()

    def test_first_tick_at_cron_time(self, scheduler):
        """A first tick exactly on a cron time runs the job"""
        assert "trend_analysis" in scheduler.run_due_jobs(datetime(2026, 3, 3, 2, 0))
