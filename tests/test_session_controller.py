#tests/test_session_controller.py
"""
Tests for agent.controller.SessionController

Covers:
- Connect lifecycle and stealth delay
- Idempotent connect requests
- Ban latch vs. single reconnect timer
- Inbound message routing (solver, triggers, own lines)
- Operator in-game commands
- Transport error classification and the known-defect guard
- Navigation / stop / quit
"""

from __future__ import annotations

from agent.state import SessionState
from env.schema import TriggerRule
from monitoring.events import EventType


def reconnect_timers(harness):
    return [h for h in harness.scheduler.pending() if h.label == "reconnect"]


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


def test_end_to_end_connect_end_and_reconnect(harness):
    harness.command("!setip play.example.com:25565")
    assert harness.session.state is SessionState.CONNECTING

    harness.advance(5.0)
    transport = harness.transport
    assert transport.connect_calls[0].host == "play.example.com"
    assert transport.connect_calls[0].port == 25565

    transport.emit("spawn")
    assert harness.session.state is SessionState.ACTIVE

    transport.emit("end", {"reason": "socketClosed"})
    assert harness.session.state is SessionState.RECONNECTING
    assert len(reconnect_timers(harness)) == 1

    harness.advance(10.0)
    assert harness.session.state is SessionState.CONNECTING
    harness.advance(5.0)
    assert len(harness.transports) == 2

    assert harness.states() == ["connecting", "active", "reconnecting", "connecting"]


def test_attempt_waits_for_stealth_delay(harness):
    harness.session.request_connect()
    assert harness.transports == []

    delay = harness.session.attempt.delay
    assert 1.0 <= delay <= 5.0
    harness.advance(delay + 0.01)
    assert len(harness.transports) == 1


def test_connect_is_idempotent_while_connecting_or_active(harness):
    harness.session.request_connect()
    assert harness.session.request_connect() is False

    harness.advance(5.0)
    harness.transport.emit("spawn")
    assert harness.session.request_connect() is False
    harness.advance(30.0)

    assert len(harness.transports) == 1


def test_no_address_stays_disconnected(make_harness):
    harness = make_harness(host="")
    assert harness.session.request_connect() is False
    assert harness.session.state is SessionState.DISCONNECTED
    notes = [e.message for e in harness.of_type(EventType.NOTIFICATION)]
    assert "No server address set! Use !setip <ip>" in notes


def test_spawn_sends_joined_notification_and_starts_idle(harness):
    harness.spawn()
    notes = [e.message for e in harness.of_type(EventType.NOTIFICATION)]
    assert notes == ["Joined play.example.com:25565 as AFK_Bot"]
    assert harness.session.idle.running


# ---------------------------------------------------------------------------
# Kicks, bans, reconnect timer
# ---------------------------------------------------------------------------


def test_ban_kick_latches_and_never_reconnects(harness):
    transport = harness.spawn()
    transport.emit("kicked", {"reason": {"translate": "multiplayer.disconnect.banned"}})
    transport.emit("end", {"reason": "kicked"})

    assert harness.session.state is SessionState.BANNED
    assert reconnect_timers(harness) == []
    harness.advance(120.0)
    assert len(harness.transports) == 1

    # Automatic paths stay refused
    assert harness.session.request_connect("retry") is False


def test_operator_reconnect_clears_ban(harness):
    transport = harness.spawn()
    transport.emit("kicked", {"reason": "You are banned"})
    transport.emit("end", {})

    replies = harness.command("!reconnect")
    assert replies == ["Reconnecting..."]
    assert not harness.session.banned
    assert harness.session.state is SessionState.CONNECTING


def test_generic_kick_schedules_one_reconnect(harness):
    transport = harness.spawn()
    transport.emit("kicked", {"reason": "Server restarting"})
    transport.emit("end", {"reason": "kicked"})

    assert harness.session.state is SessionState.RECONNECTING
    assert len(reconnect_timers(harness)) == 1
    kicked = harness.of_type(EventType.KICKED)
    assert kicked[0].payload["classification"] == "GENERIC"


def test_scheduling_twice_leaves_one_pending_timer(harness):
    first = harness.session.schedule_reconnect()
    second = harness.session.schedule_reconnect()

    assert first.cancelled
    assert reconnect_timers(harness) == [second]


def test_late_events_from_dropped_transport_are_ignored(harness):
    old = harness.spawn()
    harness.session.force_restart("test")
    harness.advance(5.0)
    new = harness.transport
    assert new is not old

    old.emit("end", {"reason": "late"})
    assert harness.session.state is SessionState.CONNECTING
    assert reconnect_timers(harness) == []


def test_failed_connect_goes_to_reconnecting(harness):
    harness.session.request_connect()
    harness.advance(5.0)
    transport = harness.transport
    transport.emit("error", {"code": "ECONNREFUSED", "message": "connect ECONNREFUSED"})
    assert harness.session.state is SessionState.CONNECTING  # errors never transition

    transport.emit("end", {"reason": "connect failed"})
    assert harness.session.state is SessionState.RECONNECTING


# ---------------------------------------------------------------------------
# Transport errors
# ---------------------------------------------------------------------------


def test_transport_error_emits_hint(harness):
    transport = harness.spawn()
    transport.emit("error", {"code": "ENOTFOUND", "message": "getaddrinfo ENOTFOUND"})

    (event,) = harness.of_type(EventType.TRANSPORT_ERROR)
    assert event.payload["kind"] == "address_not_found"
    assert "!setip" in event.payload["hint"]
    assert harness.session.state is SessionState.ACTIVE


def test_known_slot_defect_is_silent(harness):
    transport = harness.spawn()
    transport.emit("error", {"code": None, "message": "AssertionError: slot >= 0"})
    assert harness.of_type(EventType.TRANSPORT_ERROR) == []


# ---------------------------------------------------------------------------
# Inbound text
# ---------------------------------------------------------------------------


def test_arithmetic_challenge_answered_immediately(harness):
    transport = harness.spawn()
    transport.emit("message", {"text": "Anti-bot: 12 + 7 = ?", "position": "system"})
    assert transport.chats() == ["19"]
    assert len(harness.of_type(EventType.CHALLENGE_SOLVED)) == 1


def test_trigger_replies_are_staggered(harness):
    harness.store.settings.triggers = [TriggerRule(trigger="hello", reply="hi && how are you")]
    transport = harness.spawn()

    transport.emit("message", {"text": "<Steve> Hello everyone", "position": "chat"})
    assert transport.chats() == []

    harness.advance(0.5)
    assert transport.chats() == ["hi"]
    harness.advance(0.5)
    assert transport.chats() == ["hi", "how are you"]


def test_own_lines_and_action_bar_are_ignored(harness):
    harness.store.settings.triggers = [TriggerRule(trigger="hello", reply="hi")]
    transport = harness.spawn()

    transport.emit("message", {"text": "<AFK_Bot> hello", "position": "chat"})
    transport.emit("message", {"text": "hello", "position": "game_info"})
    harness.advance(2.0)
    assert transport.chats() == []


def test_instruction_challenge_holds_control_and_suspends_idle(harness):
    transport = harness.spawn()
    transport.emit("message", {"text": "Jump to verify", "position": "system"})

    assert transport.actions("set_control_state")[-1].data == {"control": "jump", "state": True}
    assert "verification" in harness.session.idle.suspended_by

    harness.advance(0.5)
    assert {"control": "jump", "state": False} in [a.data for a in transport.actions("set_control_state")]
    assert "verification" not in harness.session.idle.suspended_by


def test_gui_challenge_clicks_single_item(harness):
    transport = harness.spawn()
    transport.emit(
        "window_open",
        {"title": "Verify", "slots": [{"slot": 0, "name": ""}, {"slot": 13, "name": "emerald"}]},
    )
    assert transport.actions("click_window")[0].data == {"slot": 13, "button": 0, "shift": False}


def test_gui_challenge_with_several_items_does_nothing(harness):
    transport = harness.spawn()
    transport.emit(
        "window_open",
        {"title": "Verify", "slots": [{"slot": 0, "name": "stone"}, {"slot": 1, "name": "dirt"}]},
    )
    assert transport.actions("click_window") == []


def test_disconnect_phrase_restarts_session(harness):
    transport = harness.spawn()
    transport.emit("message", {"text": "You were kicked from the queue", "position": "system"})

    harness.advance(0.0)
    assert transport.disconnect_reasons == ["disconnect phrase"]
    assert harness.session.state is SessionState.CONNECTING


def test_player_chat_mentioning_leaving_does_not_restart(harness):
    transport = harness.spawn()
    transport.emit("message", {"text": "<Steve> lol you left your sword at spawn", "position": "chat"})
    transport.emit("message", {"text": "[Member] Alex: you were kicked lol", "position": "system"})

    harness.advance(0.0)
    assert transport.disconnect_reasons == []
    assert harness.session.state is SessionState.ACTIVE


def test_own_echo_with_rank_prefix_does_not_retrigger(harness):
    harness.store.settings.triggers = [TriggerRule(trigger="hello", reply="hello there")]
    transport = harness.spawn()

    transport.emit("message", {"text": "[Member] Steve: hello", "position": "chat"})
    harness.advance(0.5)
    assert transport.chats() == ["hello there"]

    transport.emit("message", {"text": "[Member] AFK_Bot: hello there", "position": "chat"})
    transport.emit("message", {"text": "afk_bot » hello there", "position": "system"})
    harness.advance(2.0)
    assert transport.chats() == ["hello there"]


def test_operator_chat_command_is_dispatched(harness):
    transport = harness.spawn()
    transport.emit("chat", {"username": "Boss", "message": "!uptime"})
    assert transport.chats()[-1].startswith("Uptime: ")


def test_other_players_cannot_command(harness):
    transport = harness.spawn()
    transport.emit("chat", {"username": "Mallory", "message": "!quit"})
    assert not harness.session.quit_requested


# ---------------------------------------------------------------------------
# Operator actions
# ---------------------------------------------------------------------------


def test_navigation_suspends_idle_until_goal_reached(harness):
    transport = harness.spawn()
    harness.session.navigate_to(10, 64, -5)

    assert transport.actions("set_navigation_goal")[-1].data["goal"] == {"type": "block", "x": 10, "y": 64, "z": -5}
    assert not harness.session.idle.running
    assert harness.session.status().navigating

    transport.emit("goal_reached")
    assert harness.session.idle.running
    assert not harness.session.status().navigating


def test_stop_cancels_goal_and_idle_but_not_reconnects(harness):
    transport = harness.spawn()
    harness.session.navigate_to(1, 2, 3)
    harness.session.stop_movement()

    assert transport.actions("set_navigation_goal")[-1].data["goal"] is None
    assert not harness.session.idle.running

    transport.emit("end", {"reason": "lost"})
    assert len(reconnect_timers(harness)) == 1


def test_death_triggers_respawn(harness):
    transport = harness.spawn()
    transport.emit("death")
    assert len(transport.actions("respawn")) == 1


def test_status_reports_health_and_uptime(harness):
    transport = harness.spawn()
    transport.state["health"] = 17.0
    harness.advance(65.0)

    status = harness.session.status()
    assert status.state is SessionState.ACTIVE
    assert status.health == 17.0
    assert status.uptime_s >= 65.0


def test_quit_tears_down_and_runs_hooks(harness):
    flushed = []
    harness.session.add_shutdown_hook(lambda: flushed.append(True))
    transport = harness.spawn()

    harness.session.quit()

    assert harness.session.quit_requested
    assert transport.disconnect_reasons == ["quit"]
    assert flushed == [True]
    assert harness.scheduler.pending() == []
