# path: src/monitoring/events.py
"""
Event and command schemas for session monitoring.

This module defines:
- EventType enum
- MonitoringEvent (structured session events)
- ControlCommand for operator-issued command lines

All events are JSON-serializable via `.to_dict()` and are intended
for use with monitoring.bus.EventBus and monitoring.logger.JsonFileLogger.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum, auto
from typing import Any, Callable, Dict, List, Optional


# ============================================================
# Event Types
# ============================================================

class EventType(Enum):
    """Typed monitoring events emitted by the session engine."""

    # Session lifecycle
    SESSION_STATE_CHANGE = auto()
    CONNECT_ATTEMPT = auto()
    KICKED = auto()
    TRANSPORT_ERROR = auto()

    # Inbound text
    CHAT = auto()             # player chat line
    SERVER_MESSAGE = auto()   # any rendered server message

    # Automatic reactions
    CHALLENGE_SOLVED = auto()
    TRIGGER_FIRED = auto()
    IDLE_ACTION = auto()
    NAVIGATION = auto()

    # Operator surface
    COMMAND = auto()
    NOTIFICATION = auto()     # operator-facing notice, mirrored to the relay

    # Generic log messages
    LOG = auto()


# ============================================================
# Monitoring Event Structure
# ============================================================

@dataclass
class MonitoringEvent:
    """
    Runtime event emitted by the session controller, dispatcher or relay.

    All fields must be JSON-safe.
    """

    ts: float                   # UNIX timestamp (seconds)
    module: str                 # Source module ("agent.controller", "relay", ...)
    event_type: EventType
    message: str                # Short human-readable description
    payload: Dict[str, Any]
    correlation_id: Optional[str] = None  # groups events of one session attempt

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-safe dict for loggers."""
        data = asdict(self)
        data["event_type"] = self.event_type.name  # store name, not enum
        return data


# ============================================================
# Control Commands
# ============================================================

ReplyFn = Callable[[str], None]


def _discard_reply(text: str) -> None:
    return None


@dataclass
class ControlCommand:
    """
    One parsed operator command line.

    `source` names the front end ("console", "relay", "game"); `reply`
    sends text back to that same front end.
    """

    name: str
    args: List[str]
    raw: str                                    # line without the prefix
    source: str = "console"
    user: str = ""
    reply: ReplyFn = field(default=_discard_reply, repr=False, compare=False)

    @property
    def rest(self) -> str:
        """Everything after the command name, whitespace-trimmed."""
        parts = self.raw.split(None, 1)
        return parts[1].strip() if len(parts) > 1 else ""


def parse_command(
    line: str,
    prefix: str = "!",
    *,
    source: str = "console",
    user: str = "",
    reply: Optional[ReplyFn] = None,
) -> Optional[ControlCommand]:
    """
    Parse `<prefix><name> [args...]`. Returns None for non-command lines.
    """
    text = line.strip()
    if not text.startswith(prefix):
        return None
    body = text[len(prefix):].strip()
    if not body:
        return None
    tokens = body.split()
    return ControlCommand(
        name=tokens[0].lower(),
        args=tokens[1:],
        raw=body,
        source=source,
        user=user,
        reply=reply or _discard_reply,
    )
