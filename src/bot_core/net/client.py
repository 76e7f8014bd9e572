# external game-protocol transport contract
# src/bot_core/net/client.py
"""
Transport abstraction for the presence agent.

Defines the GameTransport protocol the session controller talks to, the
event names it subscribes to, and a factory that builds the concrete
bridge client from operator settings.

The transport owns the wire connection, the world model and the
pathfinder. The agent only ever:
  - registers handlers for inbound events (`on`)
  - issues single, self-contained outbound calls (chat, look, ...)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Protocol, Tuple

from env.schema import AgentSettings

# Handlers receive the decoded event payload.
EventHandler = Callable[[Mapping[str, Any]], None]


class TransportEvent:
    """Inbound event names emitted by a GameTransport."""

    LOGIN = "login"
    SPAWN = "spawn"
    CHAT = "chat"                  # {"username", "message"}
    MESSAGE = "message"            # {"text", "position"}
    WINDOW_OPEN = "window_open"    # {"title", "slots": [...]}
    KICKED = "kicked"              # {"reason": <str | component tree>}
    END = "end"                    # {"reason"}
    DEATH = "death"
    ERROR = "error"                # {"code", "message"}
    GOAL_REACHED = "goal_reached"
    STATE = "state"                # {"health", "food", "position", "players", "entity"}

    ALL = (
        LOGIN, SPAWN, CHAT, MESSAGE, WINDOW_OPEN, KICKED,
        END, DEATH, ERROR, GOAL_REACHED, STATE,
    )


class TransportError(RuntimeError):
    """Raised by outbound calls the transport cannot carry out."""


@dataclass(frozen=True)
class ConnectOptions:
    host: str
    port: int
    username: str
    version: Optional[str] = None   # None -> auto-detect
    auth: str = "offline"


class GameTransport(Protocol):
    """
    Abstract interface for a game client session.

    One instance represents one connection attempt; the controller builds
    a fresh transport for every attempt and drops it afterwards.
    """

    def connect(self, options: ConnectOptions) -> None:
        """Start connecting. Failures are reported as ERROR then END events."""
        ...

    def disconnect(self, reason: str = "") -> None:
        """Tear the session down. Must not emit END to the caller afterwards."""
        ...

    def tick(self) -> None:
        """Pump I/O and dispatch pending events. Called from the main loop."""
        ...

    def on(self, event: str, handler: EventHandler) -> None:
        """Register the handler for one event name (replaces any previous one)."""
        ...

    def is_alive(self) -> bool:
        ...

    def has_entity(self) -> bool:
        """True once the player entity exists in the world."""
        ...

    def snapshot(self) -> Dict[str, Any]:
        """Latest cached state (health, food, position, players)."""
        ...

    def player_position(self, name: str) -> Optional[Tuple[float, float, float]]:
        ...

    # outbound primitives

    def chat(self, text: str) -> None: ...

    def set_control_state(self, control: str, state: bool) -> None: ...

    def look(self, yaw: float, pitch: float) -> None:
        """Yaw/pitch in radians."""
        ...

    def swing_arm(self) -> None: ...

    def click_window(self, slot: int, button: int = 0, shift: bool = False) -> None: ...

    def activate_block(self, position: Tuple[int, int, int]) -> None: ...

    def set_navigation_goal(self, goal: Optional[Mapping[str, Any]]) -> None: ...

    def respawn(self) -> None: ...


TransportFactory = Callable[[], GameTransport]


def create_transport_factory(settings: AgentSettings) -> TransportFactory:
    """
    Return a zero-arg factory building a bridge client per connection attempt.

    Bridge host/port are read at call time so `settings` edits apply on
    the next attempt.
    """

    def _factory() -> GameTransport:
        # Lazy import to avoid cycles.
        from .ipc import IpcTransport

        return IpcTransport(settings.bridge)

    return _factory
