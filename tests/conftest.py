# tests/conftest.py

from __future__ import annotations

import random
import sys
from pathlib import Path
from typing import List

import pytest

# Ensure src/ is on sys.path for test imports like `import env`, `import agent`.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = PROJECT_ROOT / "src"

if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from agent.controller import SessionController  # noqa: E402
from agent.scheduler import ManualClock, Scheduler  # noqa: E402
from bot_core.testing.fakes import FakeTransport  # noqa: E402
from env.loader import ConfigStore  # noqa: E402
from env.schema import AgentSettings  # noqa: E402
from monitoring.bus import EventBus  # noqa: E402
from monitoring.controller import CommandDispatcher  # noqa: E402
from monitoring.events import EventType, MonitoringEvent, parse_command  # noqa: E402


class SessionHarness:
    """
    SessionController wired to fakes: ManualClock-driven Scheduler, a
    FakeTransport per connection attempt, a private EventBus and a
    ConfigStore under tmp_path.
    """

    def __init__(self, tmp_path: Path, host: str = "play.example.com") -> None:
        self.clock = ManualClock()
        self.scheduler = Scheduler(self.clock)
        self.bus = EventBus()
        self.events: List[MonitoringEvent] = []
        self.bus.subscribe(self.events.append)

        settings = AgentSettings()
        settings.server.host = host
        settings.identity.username = "AFK_Bot"
        settings.identity.operator = "Boss"
        self.store = ConfigStore(tmp_path / "agent.yaml", settings)

        self.transports: List[FakeTransport] = []
        self.session = SessionController(
            self.store,
            self.scheduler,
            self._make_transport,
            self.bus,
            rng=random.Random(7),
        )
        self.dispatcher = CommandDispatcher(self.session, self.store, self.bus)

    def _make_transport(self) -> FakeTransport:
        transport = FakeTransport()
        self.transports.append(transport)
        return transport

    @property
    def transport(self) -> FakeTransport:
        return self.transports[-1]

    def advance(self, seconds: float) -> None:
        self.clock.advance(seconds)
        self.scheduler.run_due()

    def connect(self) -> FakeTransport:
        """Request a connection and run past the longest stealth delay."""
        self.session.request_connect()
        self.advance(5.0)
        return self.transport

    def spawn(self) -> FakeTransport:
        transport = self.connect()
        transport.emit("spawn")
        return transport

    def states(self) -> List[str]:
        return [e.payload["to"] for e in self.events if e.event_type is EventType.SESSION_STATE_CHANGE]

    def of_type(self, event_type: EventType) -> List[MonitoringEvent]:
        return [e for e in self.events if e.event_type is event_type]

    def command(self, line: str, source: str = "console") -> List[str]:
        """Publish one command line and return the replies it produced."""
        replies: List[str] = []
        cmd = parse_command(line, self.store.settings.command_prefix, source=source, reply=replies.append)
        assert cmd is not None, f"not a command line: {line!r}"
        self.bus.publish_command(cmd)
        return replies


@pytest.fixture
def harness(tmp_path: Path) -> SessionHarness:
    return SessionHarness(tmp_path)


@pytest.fixture
def make_harness(tmp_path: Path):
    def _make(**kwargs) -> SessionHarness:
        return SessionHarness(tmp_path, **kwargs)

    return _make
