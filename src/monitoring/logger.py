# JSON logger subscribing to EventBus
"""
Structured session logging.

Provides:
- JsonFileLogger: subscribes to an EventBus and writes MonitoringEvents as JSONL.
- log_event: convenience helper for publishing MonitoringEvents via the EventBus.

Usage patterns:

    from pathlib import Path
    from monitoring.bus import EventBus
    from monitoring.logger import JsonFileLogger, log_event
    from monitoring.events import EventType

    bus = EventBus()
    events = JsonFileLogger(Path("logs/session/events.log"), bus)

    log_event(
        bus=bus,
        module="agent.controller",
        event_type=EventType.KICKED,
        message="Kicked: You are banned from this server",
        payload={"classification": "BAN"},
    )
"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, Optional

from .bus import EventBus
from .events import EventType, MonitoringEvent

log = logging.getLogger(__name__)


# ============================================================
# JSONL File Logger
# ============================================================

class JsonFileLogger:
    """
    JSON-lines logger for MonitoringEvent instances.

    - Subscribes to an EventBus and writes one JSON object per line.
    - Ensures UTF-8 encoding and that the parent directory exists.
    - A failed write is reported once through `logging` and then the
      logger stops writing; it never takes the session down.
    """

    def __init__(self, path: Path, bus: EventBus) -> None:
        self._path = path
        self._bus = bus
        path.parent.mkdir(parents=True, exist_ok=True)
        self._file = path.open("a", encoding="utf-8")
        self._broken = False
        bus.subscribe(self._on_event)

    @property
    def path(self) -> Path:
        return self._path

    def _on_event(self, event: MonitoringEvent) -> None:
        if self._broken:
            return
        line = json.dumps(event.to_dict(), ensure_ascii=False, default=str)
        try:
            self._file.write(line + "\n")
            self._file.flush()
        except (OSError, ValueError):
            self._broken = True
            log.exception("Event log %s is not writable; structured logging disabled", self._path)

    def close(self) -> None:
        """Unsubscribe and close the file handle. Call at shutdown."""
        self._bus.unsubscribe(self._on_event)
        try:
            self._file.close()
        except OSError:
            log.exception("Failed to close event log %s", self._path)


# ============================================================
# Convenience helper for emitting events
# ============================================================

def log_event(
    bus: EventBus,
    module: str,
    event_type: EventType,
    message: str,
    payload: Optional[Dict[str, Any]] = None,
    correlation_id: Optional[str] = None,
) -> MonitoringEvent:
    """
    Create and publish a MonitoringEvent, returning it.

    Parameters
    ----------
    bus:
        EventBus instance to publish the event to.
    module:
        Source module ("agent.controller", "monitoring.controller", "relay").
    event_type:
        EventType member describing what kind of event this is.
    message:
        Short human-readable description.
    payload:
        Structured JSON-safe data attached to this event.
    correlation_id:
        Optional ID linking related events (one per connection attempt).
    """
    event = MonitoringEvent(
        ts=time.time(),
        module=module,
        event_type=event_type,
        message=message,
        payload=payload or {},
        correlation_id=correlation_id,
    )
    bus.publish(event)
    return event
