#tests/test_runtime_main.py
"""
Tests for runtime.agent_runtime_main

Covers:
- Console lines: commands vs. plain chat
- pump_once draining console and relay queues
- Exit code 2 on configuration errors
"""

from __future__ import annotations

from pathlib import Path
from typing import List

from env.schema import RelayConfig
from relay.discord_bridge import DiscordRelay
from relay.outbox import Outbox
from runtime.agent_runtime_main import FrontEnds, handle_console_line, pump_once, run_agent_runtime


def test_plain_console_line_is_said_in_game(harness):
    transport = harness.spawn()
    replies: List[str] = []

    handle_console_line("hello all", harness.session, harness.bus, replies.append)

    assert transport.chats() == ["hello all"]
    assert replies == []


def test_plain_line_without_session_reports_back(harness):
    replies: List[str] = []
    handle_console_line("hello all", harness.session, harness.bus, replies.append)
    assert replies == ["Not sent: not connected to a server."]


def test_pump_once_routes_console_and_relay_commands(harness):
    harness.spawn()
    outbox = Outbox()
    relay = DiscordRelay(RelayConfig(enabled=True, token="t", channel_id=1), outbox=outbox)
    front_ends = FrontEnds(relay=relay, relay_outbox=outbox)
    console: List[str] = []

    front_ends.console_lines.put("!afk off")
    relay.accept_inbound("!uptime", "op")
    pump_once(harness.session, harness.scheduler, harness.bus, front_ends, console.append)

    assert console == ["AFK mode off."]
    relayed = outbox.drain_all()
    assert len(relayed) == 1
    assert relayed[0].startswith("Uptime: ")


def test_failing_command_does_not_escape_the_loop(harness):
    def explode(_cmd) -> None:
        raise RuntimeError("bad handler")

    harness.bus.subscribe_commands(explode)
    front_ends = FrontEnds()
    console: List[str] = []
    front_ends.console_lines.put("!help")

    pump_once(harness.session, harness.scheduler, harness.bus, front_ends, console.append)

    assert console[-1] == "Command failed: bad handler"


def test_missing_config_exits_with_2(tmp_path: Path):
    code = run_agent_runtime(
        [
            "--config", str(tmp_path / "missing.yaml"),
            "--events-log", str(tmp_path / "events.log"),
            "--no-relay",
        ]
    )
    assert code == 2
    assert "CONFIG_ERROR" in (tmp_path / "events.log").read_text(encoding="utf-8")
