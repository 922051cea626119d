"""Best-effort audit log of evolution events."""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Any, Callable

from codevolve.control.models import EventSeverity, EventType, EvolutionEvent
from codevolve.core.errors import EvolutionError
from codevolve.core.models import SYSTEM_ACTOR, utcnow
from codevolve.storage.store import EvolutionStore

logger = logging.getLogger(__name__)

_LOG_LEVELS = {
    EventSeverity.INFO: logging.INFO,
    EventSeverity.WARNING: logging.WARNING,
    EventSeverity.ERROR: logging.ERROR,
    EventSeverity.CRITICAL: logging.CRITICAL,
}


class EventLog:
    """Writes events to the store and to the log.

    A failed store write is logged and dropped; it never propagates to the
    operation that emitted the event.
    """

    def __init__(self, store: EvolutionStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock

    def emit(
        self,
        tenant: str,
        type: EventType,
        severity: EventSeverity,
        title: str,
        description: str = "",
        data: dict[str, Any] | None = None,
        triggered_by: str = SYSTEM_ACTOR,
    ) -> EvolutionEvent:
        event = EvolutionEvent(
            tenant=tenant,
            type=type,
            severity=severity,
            title=title,
            description=description,
            data=dict(data or {}),
            triggered_by=triggered_by,
            created_at=self.clock(),
        )
        logger.log(_LOG_LEVELS[severity], "[%s] %s: %s", tenant, type.value, title)
        try:
            self.store.save_event(event)
        except (sqlite3.Error, OSError, EvolutionError) as exc:
            logger.warning("Could not record event %s for %s: %s", type.value, tenant, exc)
        return event

    def recent(self, tenant: str, limit: int = 50) -> list[EvolutionEvent]:
        return self.store.list_events(tenant, limit=limit)

    def acknowledge(self, event_id: str, actor: str) -> EvolutionEvent | None:
        event = self.store.get_event(event_id)
        if event is None:
            return None
        event.acknowledged_at = self.clock()
        event.acknowledged_by = actor
        self.store.save_event(event)
        return event
