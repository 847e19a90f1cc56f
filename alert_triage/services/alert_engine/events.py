"""
In-process alert lifecycle events.

Published strictly after the transition has committed; every listener runs
in isolation so a failing listener never affects the caller or its siblings.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional

from alert_triage.schemas.alert_schemas import AlertSnapshot

logger = logging.getLogger(__name__)


class AlertEventType(str, Enum):
    CREATED = "alert.created"
    UPDATED = "alert.updated"


@dataclass
class AlertEvent:
    type: AlertEventType
    alert: AlertSnapshot
    action: str
    occurred_at: datetime
    actor_id: Optional[str] = None


AlertEventListener = Callable[[AlertEvent], None]


class AlertEventBus:
    """Fan-in point between the lifecycle manager and its observers"""

    def __init__(self):
        self._listeners: List[AlertEventListener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: AlertEventListener) -> None:
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def unsubscribe(self, listener: AlertEventListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def publish(self, event: AlertEvent) -> None:
        with self._lock:
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Alert event listener failed for {event.action} on alert {event.alert.id}: {e}")
