#tests/test_command_dispatcher.py
"""
Tests for monitoring.controller.CommandDispatcher.

Covers:
- setip parsing, history and persistence
- setreply / replylist round-trip, stopreply
- Usage replies for malformed input
- Persistence failures roll back and are reported
- Unknown commands pass through as server commands
"""

from __future__ import annotations

import pytest

from env.loader import ConfigPersistError, load_settings
from monitoring.controller import parse_address, split_reply_rule
from monitoring.events import EventType


@pytest.mark.parametrize(
    "args,expected",
    [
        (["play.example.com"], ("play.example.com", 25565)),
        (["play.example.com:25566"], ("play.example.com", 25566)),
        (["play.example.com", "19132"], ("play.example.com", 19132)),
    ],
)
def test_parse_address(args, expected):
    assert parse_address(args) == expected


@pytest.mark.parametrize("args", [[], ["host:port"], ["host", "0"], ["a", "b", "c"], [":25565"]])
def test_parse_address_rejects_bad_input(args):
    with pytest.raises(ValueError):
        parse_address(args)


def test_setip_persists_and_records_history(harness):
    replies = harness.command("!setip mc.one.net:25570")

    assert replies == ["Server set to mc.one.net:25570. Reconnecting..."]
    saved = load_settings(harness.store.path)
    assert saved.server.host == "mc.one.net"
    assert saved.server.port == 25570
    assert saved.address_history == ["mc.one.net:25570"]


def test_history_is_capped_and_most_recent_first(harness):
    for i in range(12):
        harness.command(f"!setip host{i}.net")
    harness.command("!setip host5.net")

    history = harness.store.settings.address_history
    assert len(history) == 10
    assert history[0] == "host5.net:25565"
    assert history.count("host5.net:25565") == 1

    replies = harness.command("!history")
    assert replies[0] == "1. host5.net:25565"


def test_setip_usage_on_bad_port(harness):
    replies = harness.command("!setip host.net 99999")
    assert replies[0].startswith("Usage: !setip")
    assert harness.store.settings.server.host == "play.example.com"


def test_setreply_then_replylist_round_trip(harness):
    replies = harness.command("!setreply   Hello There  |  hi && how are you  ")
    assert replies == ["Reply set: 'Hello There' -> 'hi && how are you'"]

    assert harness.command("!replylist") == ["1. 'Hello There' -> 'hi && how are you'"]
    saved = load_settings(harness.store.path)
    assert [(r.trigger, r.reply) for r in saved.triggers] == [("Hello There", "hi && how are you")]


def test_setreply_accepts_and_separator(harness):
    assert harness.command("!setreply hello and hi there") == ["Reply set: 'hello' -> 'hi there'"]
    assert harness.command("!setreply gm | morning && coffee") == ["Reply set: 'gm' -> 'morning && coffee'"]
    assert [(r.trigger, r.reply) for r in harness.store.settings.triggers] == [
        ("hello", "hi there"),
        ("gm", "morning && coffee"),
    ]


@pytest.mark.parametrize(
    "text,expected",
    [
        ("hello and hi there", ("hello", "hi there")),
        ("hi and hello and welcome", ("hi", "hello and welcome")),
        ("salt and pepper | spicy", ("salt and pepper", "spicy")),
        ("brand new | shiny", ("brand new", "shiny")),
        ("android", None),
        ("and hi", None),
        ("hello |   ", None),
    ],
)
def test_split_reply_rule(text, expected):
    assert split_reply_rule(text) == expected


def test_setreply_usage(harness):
    assert harness.command("!setreply no delimiter here")[0].startswith("Usage: !setreply")
    assert harness.store.settings.triggers == []


def test_stopreply_by_index_and_text(harness):
    harness.command("!setreply a | 1")
    harness.command("!setreply b | 2")

    assert harness.command("!stopreply 1") == ["Reply removed: 'a'"]
    assert harness.command("!stopreply B") == ["Reply removed: 'b'"]
    assert harness.command("!stopreply b") == ["No reply matches 'b'."]
    assert harness.command("!replylist") == ["No replies set."]


def test_stopreply_quoted_selector_is_trigger_text(harness):
    harness.command("!setreply a | 1")
    harness.command("!setreply 42 | answer")

    assert harness.command("!stopreply \"42\"") == ["Reply removed: '42'"]
    assert harness.command("!stopreply 1") == ["Reply removed: 'a'"]
    assert harness.command("!replylist") == ["No replies set."]


def test_persist_failure_rolls_back_and_reports(harness, monkeypatch):
    def broken_save() -> None:
        raise ConfigPersistError("read-only file system")

    monkeypatch.setattr(harness.store, "save", broken_save)

    replies = harness.command("!setip other.net")
    assert replies[0].startswith("Could not save settings")
    assert harness.store.settings.server.host == "play.example.com"
    assert harness.store.settings.address_history == []

    replies = harness.command("!setreply hi | hello")
    assert replies[0].startswith("Could not save settings")
    assert harness.store.settings.triggers == []

    subtypes = [e.payload.get("subtype") for e in harness.of_type(EventType.LOG)]
    assert subtypes.count("PERSIST_ERROR") == 2


def test_setversion_persists_and_reconnects(harness):
    replies = harness.command("!setversion 1.20.4")
    assert replies == ["Protocol version set to 1.20.4. Reconnecting..."]
    assert harness.store.settings.server.protocol_version() == "1.20.4"

    harness.advance(5.0)
    assert harness.transport.connect_calls[0].version == "1.20.4"

    harness.command("!setversion AUTO")
    assert harness.store.settings.server.protocol_version() is None


def test_afk_toggle(harness):
    harness.spawn()
    assert harness.command("!afk off") == ["AFK mode off."]
    assert not harness.session.idle.running
    assert harness.command("!afk on") == ["AFK mode on."]
    assert harness.session.idle.running
    assert harness.command("!afk maybe") == ["Usage: !afk on|off"]


def test_goto_coordinates_and_player(harness):
    transport = harness.spawn()
    transport.state["players"]["Steve"] = (1.0, 64.0, 2.0)

    assert harness.command("!goto 10 64 -3") == ["Heading to 10 64 -3."]
    assert harness.command("!goto Steve") == ["Following Steve."]
    assert harness.command("!goto Nobody") == ["Player Nobody not found nearby."]
    assert harness.command("!goto 1 two 3")[0].startswith("Usage: !goto")


def test_actions_need_a_session(harness):
    assert harness.command("!jump") == ["Cannot do that: not connected to a server."]


def test_gestures(harness):
    transport = harness.spawn()
    harness.command("!wave")
    harness.command("!spin")
    harness.advance(2.0)
    assert len(transport.actions("swing_arm")) >= 3
    assert len(transport.actions("look")) >= 8


def test_unknown_command_passes_through(harness):
    transport = harness.spawn()
    assert harness.command("!spawn now") == ["Sent /spawn now"]
    assert transport.chats() == ["/spawn now"]


def test_status_and_uptime_when_disconnected(harness):
    assert harness.command("!uptime") == ["Not connected."]
    status = harness.command("!status")[0]
    assert "State: disconnected" in status
    assert "Server: play.example.com:25565" in status


def test_time_set_validates_and_persists(harness):
    changed = []
    harness.dispatcher._on_timezone_change = changed.append

    assert harness.command("!time set Europe/Berlin") == ["Timezone set to Europe/Berlin."]
    assert changed == ["Europe/Berlin"]
    assert load_settings(harness.store.path).timezone == "Europe/Berlin"

    assert harness.command("!time set Mars/Olympus") == ["Unknown timezone 'Mars/Olympus'."]
    assert harness.command("!time") == ["Timezone: Europe/Berlin"]


def test_quit_command(harness):
    harness.spawn()
    assert harness.command("!quit") == ["Shutting down."]
    assert harness.session.quit_requested


def test_help_lists_commands(harness):
    replies = harness.command("!help")
    assert replies[0] == "Commands (prefix !):"
    assert any("setreply" in line for line in replies)


def test_every_command_is_logged(harness):
    harness.command("!uptime")
    (event,) = harness.of_type(EventType.COMMAND)
    assert event.payload["name"] == "uptime"
    assert event.payload["source"] == "console"
