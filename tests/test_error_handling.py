#tests/test_error_handling.py
"""
Tests for runtime.error_handling and runtime.failure_mitigation.
"""

from __future__ import annotations

import errno
from typing import List

import pytest

from monitoring.bus import EventBus
from monitoring.events import EventType, MonitoringEvent, parse_command
from runtime.error_handling import classify_transport_error, is_known_transport_defect, safe_dispatch
from runtime.failure_mitigation import emit_config_error, emit_transport_fault


@pytest.mark.parametrize(
    "code,message,kind",
    [
        ("ENOTFOUND", "getaddrinfo ENOTFOUND nowhere", "address_not_found"),
        ("EAI_AGAIN", "", "address_not_found"),
        ("ECONNREFUSED", "", "refused"),
        ("ECONNRESET", "", "reset"),
        ("ETIMEDOUT", "", "timeout"),
        (None, "Unsupported protocol version 999", "version_mismatch"),
        (None, "Client version outdated", "version_mismatch"),
        (None, "read timed out", "timeout"),
        (None, "something odd", "other"),
    ],
)
def test_classify_transport_error(code, message, kind):
    fault = classify_transport_error(code, message)
    assert fault.kind == kind
    assert fault.hint
    assert fault.message == message


def test_numeric_errno_is_classified():
    assert classify_transport_error(errno.ECONNREFUSED).kind == "refused"
    assert classify_transport_error(errno.ETIMEDOUT, "").kind == "timeout"
    assert classify_transport_error(99999, "x").kind == "other"


def test_refused_hint_mentions_server_start():
    assert "server is started" in classify_transport_error("ECONNREFUSED").hint


def test_known_defect_guard_is_narrow():
    assert is_known_transport_defect("AssertionError [ERR_ASSERTION]: slot >= 0")
    assert not is_known_transport_defect("ECONNRESET")


def test_safe_dispatch_reports_and_keeps_going():
    bus = EventBus()
    events: List[MonitoringEvent] = []
    bus.subscribe(events.append)
    replies: List[str] = []
    cmd = parse_command("!boom", reply=replies.append)

    def dispatch(_cmd) -> None:
        raise RuntimeError("kaput")

    assert safe_dispatch(dispatch, cmd, bus) is False
    assert replies == ["Command failed: kaput"]
    assert events[0].payload["subtype"] == "COMMAND_EXCEPTION"


def test_safe_dispatch_success():
    bus = EventBus()
    seen = []
    cmd = parse_command("!ok")
    assert safe_dispatch(seen.append, cmd, bus) is True
    assert seen == [cmd]


def test_emit_helpers_publish_structured_events():
    bus = EventBus()
    events: List[MonitoringEvent] = []
    bus.subscribe(events.append)

    emit_config_error(bus, "bad config", config_path="x.yaml", error_repr="ConfigError()")
    emit_transport_fault(bus, classify_transport_error("ECONNRESET"), code="ECONNRESET")

    assert events[0].event_type is EventType.LOG
    assert events[0].payload["subtype"] == "CONFIG_ERROR"
    assert events[1].event_type is EventType.TRANSPORT_ERROR
    assert events[1].payload["kind"] == "reset"
