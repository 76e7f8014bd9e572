# rich-based console reporter
#src/monitoring/console.py
"""
Terminal front end for session monitoring.

A `rich` Console subscriber that prints what an operator watching the
terminal cares about:

- Startup banner with target address and identity
- Server messages and player chat, timestamped in the configured timezone
- Operator notifications (joined, kicked, banned)
- Transport hints and solved verification challenges
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from .bus import EventBus
from .events import EventType, MonitoringEvent


def resolve_timezone(name: str) -> ZoneInfo:
    """Raise ValueError for unknown zone names."""
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"unknown timezone {name!r}") from exc


# ============================================================
# Console reporter
# ============================================================

class ConsoleReporter:
    """
    Prints MonitoringEvents to a rich Console as they arrive.

    Event handling is cheap and non-blocking; nothing is buffered.
    """

    def __init__(self, bus: EventBus, console: Optional[Console] = None, tz_name: str = "UTC") -> None:
        self._bus = bus
        self._console = console or Console()
        self._tz = resolve_timezone(tz_name)
        self._bus.subscribe(self._on_event)

    @property
    def console(self) -> Console:
        return self._console

    def set_timezone(self, tz_name: str) -> None:
        self._tz = resolve_timezone(tz_name)

    def close(self) -> None:
        self._bus.unsubscribe(self._on_event)

    # --------------------------------------------------------
    # Event handler
    # --------------------------------------------------------

    def _on_event(self, event: MonitoringEvent) -> None:
        et = event.event_type

        if et == EventType.SERVER_MESSAGE:
            self._line(event, Text(event.message))

        elif et == EventType.NOTIFICATION:
            self._line(event, Text(event.message, style="bold cyan"))

        elif et == EventType.KICKED:
            style = "bold red" if event.payload.get("classification") == "BAN" else "yellow"
            self._line(event, Text(event.message, style=style))

        elif et == EventType.TRANSPORT_ERROR:
            self._line(event, Text(event.message, style="red"))

        elif et == EventType.CHALLENGE_SOLVED:
            self._line(event, Text(event.message, style="magenta"))

        elif et == EventType.TRIGGER_FIRED:
            self._line(event, Text(event.message, style="dim"))

    def _line(self, event: MonitoringEvent, body: Text) -> None:
        stamp = datetime.fromtimestamp(event.ts, tz=timezone.utc).astimezone(self._tz)
        line = Text(stamp.strftime("[%H:%M:%S] "), style="dim")
        line.append_text(body)
        self._console.print(line)

    # --------------------------------------------------------
    # Rendering helpers
    # --------------------------------------------------------

    def print_banner(self, username: str, address: str, bridge: str) -> None:
        txt = Text()
        txt.append("Identity: ", style="bold")
        txt.append(f"{username}\n")
        txt.append("Server:   ", style="bold")
        txt.append(f"{address}\n")
        txt.append("Bridge:   ", style="bold")
        txt.append(bridge)
        self._console.print(Panel(txt, title="AFK Agent", border_style="cyan"))
