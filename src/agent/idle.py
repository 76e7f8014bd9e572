# src/agent/idle.py
"""
Idle behaviour scheduler.

While the session is active and AFK mode is on, performs one small
action every few seconds so the server's idle-kick never fires. The
interval is redrawn every tick; there is only ever one pending idle
timer, and it is replaced rather than stacked.

The scheduler is suspended by named reasons ("navigation",
"verification", "stopped"). It runs only when no reason is held.
"""

from __future__ import annotations

import logging
import math
import random
from enum import Enum
from typing import Callable, Optional, Set, Tuple

from bot_core.net import GameTransport, TransportError

from .scheduler import Scheduler, TimerHandle

log = logging.getLogger(__name__)

JUMP_HOLD_S = 0.35
SNEAK_HOLD_S = 0.8
LOOK_YAW_DEG = 180.0
LOOK_PITCH_DEG = 45.0

SUSPEND_NAVIGATION = "navigation"
SUSPEND_VERIFICATION = "verification"
SUSPEND_STOPPED = "stopped"


class IdleAction(Enum):
    JUMP = "jump"
    SWING = "swing"
    LOOK = "look"
    SNEAK = "sneak"
    JUMP_SWING = "jump_swing"


TransportGetter = Callable[[], Optional[GameTransport]]


class IdleScheduler:
    """
    Owns the idle timer.

    `transport_getter` is read on every tick so the scheduler always acts
    on the controller's current transport, never a stale one.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        transport_getter: TransportGetter,
        *,
        interval: Tuple[float, float] = (3.0, 5.0),
        skew: float = 1.0,
        rng: Optional[random.Random] = None,
        on_action: Optional[Callable[[IdleAction], None]] = None,
    ) -> None:
        self._scheduler = scheduler
        self._transport = transport_getter
        self._interval = interval
        self._skew = skew
        self._rng = rng or random.Random()
        self._on_action = on_action
        self._enabled = True
        self._started = False
        self._suspended: Set[str] = set()
        self._timer: Optional[TimerHandle] = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def suspended_by(self) -> Set[str]:
        return set(self._suspended)

    @property
    def running(self) -> bool:
        return self._timer is not None and self._timer.pending

    def set_enabled(self, enabled: bool) -> None:
        self._enabled = enabled
        self._sync()

    def start(self) -> None:
        """Session became active."""
        self._started = True
        self._sync()

    def stop(self) -> None:
        """Session ended. Suspension reasons are kept until `reset()`."""
        self._started = False
        self._cancel()

    def reset(self) -> None:
        """Drop every suspension reason and start fresh (used on spawn)."""
        self._suspended.clear()
        self.start()

    def suspend(self, reason: str) -> None:
        if reason not in self._suspended:
            log.debug("Idle suspended: %s", reason)
        self._suspended.add(reason)
        self._cancel()

    def resume(self, reason: str) -> None:
        if reason in self._suspended:
            log.debug("Idle resumed: %s", reason)
        self._suspended.discard(reason)
        self._sync()

    # ------------------------------------------------------------------
    # Timer
    # ------------------------------------------------------------------

    def next_interval(self) -> float:
        low, high = self._interval
        base = self._rng.uniform(low, high)
        jitter = self._rng.uniform(-self._skew, self._skew) if self._skew > 0 else 0.0
        return max(0.5, base + jitter)

    def _should_run(self) -> bool:
        return self._started and self._enabled and not self._suspended

    def _sync(self) -> None:
        if not self._should_run():
            self._cancel()
        elif not self.running:
            self._schedule()

    def _schedule(self) -> None:
        self._cancel()
        self._timer = self._scheduler.call_later(self.next_interval(), self._tick, label="idle")

    def _cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _tick(self) -> None:
        self._timer = None
        if not self._should_run():
            return
        transport = self._transport()
        if transport is not None and transport.has_entity():
            action = self._rng.choice(list(IdleAction))
            self.perform(transport, action)
        self._schedule()

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def perform(self, transport: GameTransport, action: IdleAction) -> None:
        """Run one idle action. Transport failures are logged and dropped."""
        try:
            if action is IdleAction.JUMP:
                self._pulse(transport, "jump", JUMP_HOLD_S)
            elif action is IdleAction.SWING:
                transport.swing_arm()
            elif action is IdleAction.LOOK:
                yaw = math.radians(self._rng.uniform(-LOOK_YAW_DEG, LOOK_YAW_DEG))
                pitch = math.radians(self._rng.uniform(-LOOK_PITCH_DEG, LOOK_PITCH_DEG))
                transport.look(yaw, pitch)
            elif action is IdleAction.SNEAK:
                self._pulse(transport, "sneak", SNEAK_HOLD_S)
            else:
                self._pulse(transport, "jump", JUMP_HOLD_S)
                transport.swing_arm()
        except (TransportError, OSError) as exc:
            log.debug("Idle action %s failed: %s", action.value, exc)
            return

        if self._on_action is not None:
            self._on_action(action)

    def _pulse(self, transport: GameTransport, control: str, hold: float) -> None:
        transport.set_control_state(control, True)
        self._scheduler.call_later(hold, self._release, transport, control, label=f"idle-release-{control}")

    @staticmethod
    def _release(transport: GameTransport, control: str) -> None:
        try:
            transport.set_control_state(control, False)
        except (TransportError, OSError) as exc:
            log.debug("Releasing %s failed: %s", control, exc)
