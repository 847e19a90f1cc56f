"""
Engagement timers - in-process clock of clinician time spent on a patient.

Keyed by (user, patient). Timers live only in this process and are lost on
restart; timers older than 12 hours are dropped by the scheduler sweep.
"""

import logging
import math
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass
class EngagementTimer:
    user_id: str
    patient_id: str
    started_at: datetime
    activity: str = "ALERT_REVIEW"
    source_alert_id: Optional[str] = None

    def elapsed_minutes(self, now: datetime) -> int:
        return max(1, math.ceil((now - self.started_at).total_seconds() / 60))


class EngagementTimerRegistry:
    """Lock-protected registry owned by the running engine instance"""

    def __init__(self):
        self._timers: Dict[Tuple[str, str], EngagementTimer] = {}
        self._lock = threading.Lock()

    def start(
        self,
        user_id: str,
        patient_id: str,
        now: datetime,
        activity: str = "ALERT_REVIEW",
        source_alert_id: Optional[str] = None
    ) -> EngagementTimer:
        """Start a timer; an already running timer for the pair is kept"""
        key = (user_id, patient_id)
        with self._lock:
            timer = self._timers.get(key)
            if timer is None:
                timer = EngagementTimer(
                    user_id=user_id,
                    patient_id=patient_id,
                    started_at=now,
                    activity=activity,
                    source_alert_id=source_alert_id
                )
                self._timers[key] = timer
            return timer

    def stop(self, user_id: str, patient_id: str, now: datetime) -> Optional[int]:
        """Stop a timer and return the elapsed minutes (at least 1)"""
        with self._lock:
            timer = self._timers.pop((user_id, patient_id), None)
        if timer is None:
            return None
        return timer.elapsed_minutes(now)

    def discard(self, user_id: str, patient_id: str) -> bool:
        with self._lock:
            return self._timers.pop((user_id, patient_id), None) is not None

    def get(self, user_id: str, patient_id: str) -> Optional[EngagementTimer]:
        with self._lock:
            return self._timers.get((user_id, patient_id))

    def for_user(self, user_id: str) -> List[EngagementTimer]:
        with self._lock:
            return [t for (uid, _), t in self._timers.items() if uid == user_id]

    def sweep_stale(self, now: datetime, max_age: timedelta = timedelta(hours=12)) -> int:
        cutoff = now - max_age
        with self._lock:
            stale = [key for key, timer in self._timers.items() if timer.started_at < cutoff]
            for key in stale:
                del self._timers[key]
        if stale:
            logger.info(f"Dropped {len(stale)} stale engagement timers")
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._timers)
