# EventBus for monitoring events and operator commands
"""
Event bus for session monitoring.

Provides a minimal, thread-safe, in-process pub/sub mechanism:

- Subscribers receive MonitoringEvent objects.
- Command handlers receive ControlCommand objects.
- Used by:
    - console reporter (rich)
    - JSONL file logger
    - relay bridge (operator notifications)
    - session controller and command dispatcher
"""

from __future__ import annotations

import logging
from threading import Lock
from typing import Callable, List

from .events import ControlCommand, MonitoringEvent

log = logging.getLogger(__name__)


# ============================================================
# Type aliases
# ============================================================

SubscriberFn = Callable[[MonitoringEvent], None]
CommandHandlerFn = Callable[[ControlCommand], None]


# ============================================================
# Event Bus
# ============================================================

class EventBus:
    """
    In-process event bus for monitoring events and operator commands.

    - Subscriber lists are protected by a Lock, so front-end threads may
      subscribe while the tick loop publishes.
    - Each publish iterates over a snapshot of subscribers.
    - A failing subscriber is logged and skipped; the others still run.
    """

    def __init__(self) -> None:
        self._subscribers: List[SubscriberFn] = []
        self._cmd_handlers: List[CommandHandlerFn] = []
        self._lock = Lock()

    # --------------------------------------------------------
    # Monitoring events
    # --------------------------------------------------------

    def subscribe(self, fn: SubscriberFn) -> None:
        with self._lock:
            self._subscribers.append(fn)

    def unsubscribe(self, fn: SubscriberFn) -> None:
        """Safe to call even if `fn` is not present."""
        with self._lock:
            if fn in self._subscribers:
                self._subscribers.remove(fn)

    def publish(self, event: MonitoringEvent) -> None:
        with self._lock:
            subscribers = list(self._subscribers)

        for fn in subscribers:
            try:
                fn(event)
            except Exception:
                log.exception("Monitoring subscriber %r failed on %s", fn, event.event_type.name)

    # --------------------------------------------------------
    # Operator commands
    # --------------------------------------------------------

    def subscribe_commands(self, fn: CommandHandlerFn) -> None:
        with self._lock:
            self._cmd_handlers.append(fn)

    def unsubscribe_commands(self, fn: CommandHandlerFn) -> None:
        with self._lock:
            if fn in self._cmd_handlers:
                self._cmd_handlers.remove(fn)

    def publish_command(self, cmd: ControlCommand) -> None:
        """
        Deliver a command to every handler, in registration order.

        Handler exceptions propagate: a command that blows up should be
        reported to the operator who issued it, not dropped.
        """
        with self._lock:
            handlers = list(self._cmd_handlers)

        for fn in handlers:
            fn(cmd)

    def clear(self) -> None:
        """Mostly useful for tests."""
        with self._lock:
            self._subscribers.clear()
            self._cmd_handlers.clear()
