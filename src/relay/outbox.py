# src/relay/outbox.py
"""
Outbound notification batching for the chat relay.

Lines are queued from the tick loop thread and drained from the relay
client's own thread, so the Outbox is lock-protected. Each flush sends
one chunk: as many whole queued lines as fit in MAX_CHUNK characters,
newline-joined. A single line longer than the limit is split.

NotificationForwarder is the EventBus side: it decides which monitoring
events become relay lines.
"""

from __future__ import annotations

from collections import deque
from threading import Lock
from typing import Deque, List, Optional

from monitoring.bus import EventBus
from monitoring.events import EventType, MonitoringEvent


MAX_CHUNK = 1900
FLUSH_INTERVAL_S = 2.0


class Outbox:
    def __init__(self, max_chunk: int = MAX_CHUNK) -> None:
        self._max_chunk = max_chunk
        self._lines: Deque[str] = deque()
        self._lock = Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._lines)

    def put(self, text: str) -> None:
        text = text.strip()
        if not text:
            return
        with self._lock:
            for start in range(0, len(text), self._max_chunk):
                self._lines.append(text[start:start + self._max_chunk])

    def drain_chunk(self) -> Optional[str]:
        """Pop the next chunk, or None when nothing is queued."""
        with self._lock:
            if not self._lines:
                return None
            taken: List[str] = []
            size = 0
            while self._lines:
                line = self._lines[0]
                # +1 for the joining newline
                extra = len(line) + (1 if taken else 0)
                if taken and size + extra > self._max_chunk:
                    break
                taken.append(self._lines.popleft())
                size += extra
            return "\n".join(taken)

    def drain_all(self) -> List[str]:
        chunks: List[str] = []
        while True:
            chunk = self.drain_chunk()
            if chunk is None:
                return chunks
            chunks.append(chunk)


class NotificationForwarder:
    """
    Subscribes to the EventBus and queues operator-relevant events.

    Notifications and transport hints always go out; in-game chat only
    when `forward_chat` is set.
    """

    def __init__(self, bus: EventBus, outbox: Outbox, *, forward_chat: bool = False) -> None:
        self._bus = bus
        self._outbox = outbox
        self._forward_chat = forward_chat
        bus.subscribe(self._on_event)

    def _on_event(self, event: MonitoringEvent) -> None:
        et = event.event_type
        if et == EventType.NOTIFICATION:
            self._outbox.put(event.message)
        elif et == EventType.TRANSPORT_ERROR:
            self._outbox.put(f"⚠️ {event.message}")
        elif et == EventType.CHAT and self._forward_chat:
            self._outbox.put(event.message)

    def close(self) -> None:
        self._bus.unsubscribe(self._on_event)
