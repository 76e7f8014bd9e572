#"src/agent/state.py"

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class SessionState(Enum):
    """
    Lifecycle states of the single session the agent maintains.

        DISCONNECTED -> CONNECTING -> ACTIVE -> (RECONNECTING | BANNED | DISCONNECTED)

    BANNED is terminal for automatic behaviour: only an operator
    reconnect leaves it.
    """

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    ACTIVE = "active"
    RECONNECTING = "reconnecting"
    BANNED = "banned"


@dataclass(frozen=True)
class ConnectionAttempt:
    """
    One connection attempt, created on every entry into CONNECTING.

    Fields
    ------
    attempt_id:
        Monotonic counter; used as correlation id for monitoring events.
    host, port:
        Target server.
    identity:
        Username presented to the server.
    created_at:
        Wall-clock time the attempt was scheduled.
    delay:
        Jittered stealth delay before the transport is asked to connect.
    reason:
        Why the connect was requested ("startup", "setip", "retry", ...).
    """

    attempt_id: int
    host: str
    port: int
    identity: str
    created_at: float
    delay: float
    reason: str

    @property
    def correlation_id(self) -> str:
        return f"attempt-{self.attempt_id}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempt_id": self.attempt_id,
            "host": self.host,
            "port": self.port,
            "identity": self.identity,
            "created_at": self.created_at,
            "delay": round(self.delay, 3),
            "reason": self.reason,
        }


@dataclass
class SessionStatus:
    """Read-only view handed to the status command and the console."""

    state: SessionState
    address: str
    username: str
    uptime_s: Optional[float]
    afk_enabled: bool
    idle_running: bool
    navigating: bool
    health: Optional[float] = None
    food: Optional[float] = None
    trigger_count: int = 0


def format_duration(seconds: Optional[float]) -> str:
    """`3723.4` -> `"1h 02m 03s"`."""
    if seconds is None:
        return "-"
    total = int(seconds)
    hours, rem = divmod(total, 3600)
    minutes, secs = divmod(rem, 60)
    if hours:
        return f"{hours}h {minutes:02d}m {secs:02d}s"
    if minutes:
        return f"{minutes}m {secs:02d}s"
    return f"{secs}s"
