# src/agent/scheduler.py
"""
Cancellable timers pumped from the main tick loop.

Everything time-based in the agent (stealth delay, reconnect backoff,
idle ticks, staggered replies, control-state releases) is a TimerHandle
on one Scheduler. Nothing sleeps; the runtime calls `run_due()` once per
tick and due callbacks run on the loop thread, earliest first.

The clock is injectable so tests can drive time by hand with
ManualClock.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import time
from typing import Any, Callable, List, Optional, Tuple

log = logging.getLogger(__name__)

Clock = Callable[[], float]


class TimerHandle:
    """A scheduled callback. `cancel()` is idempotent."""

    __slots__ = ("due", "callback", "args", "label", "_cancelled", "_fired")

    def __init__(self, due: float, callback: Callable[..., Any], args: Tuple[Any, ...], label: str) -> None:
        self.due = due
        self.callback = callback
        self.args = args
        self.label = label
        self._cancelled = False
        self._fired = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def pending(self) -> bool:
        return not self._cancelled and not self._fired

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else ("fired" if self._fired else "pending")
        return f"TimerHandle({self.label!r}, due={self.due:.3f}, {state})"


class Scheduler:
    """Min-heap of TimerHandles keyed by (due, sequence)."""

    def __init__(self, clock: Clock = time.monotonic) -> None:
        self._clock = clock
        self._heap: List[Tuple[float, int, TimerHandle]] = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self._clock()

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any, label: str = "") -> TimerHandle:
        """Run `callback(*args)` once, `delay` seconds from now."""
        handle = TimerHandle(self._clock() + max(0.0, delay), callback, args, label or getattr(callback, "__name__", "timer"))
        heapq.heappush(self._heap, (handle.due, next(self._seq), handle))
        return handle

    def run_due(self) -> int:
        """
        Run every pending timer whose due time has passed.

        Timers scheduled by a callback run in the same pass if they are
        already due. Returns the number of callbacks run.
        """
        ran = 0
        while self._heap:
            due, _, handle = self._heap[0]
            if due > self._clock():
                break
            heapq.heappop(self._heap)
            if handle.cancelled:
                continue
            handle._fired = True
            try:
                handle.callback(*handle.args)
            except Exception:
                log.exception("Timer %s raised", handle.label)
            ran += 1
        return ran

    def pending(self) -> List[TimerHandle]:
        return sorted((h for _, _, h in self._heap if h.pending), key=lambda h: h.due)

    def next_due(self) -> Optional[float]:
        pending = self.pending()
        return pending[0].due if pending else None

    def cancel_all(self) -> None:
        for _, _, handle in self._heap:
            handle.cancel()
        self._heap.clear()


class ManualClock:
    """Deterministic clock for tests: time only moves on advance()."""

    def __init__(self, start: float = 1000.0) -> None:
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds
