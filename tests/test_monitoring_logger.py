#tests/test_monitoring_logger.py
"""
Tests for monitoring.logger.JsonFileLogger and log_event.

Covers:
- JSON structure validity
- Parent directory creation
- A broken log file disables the logger without raising
"""

from __future__ import annotations

import json
from pathlib import Path

from monitoring.bus import EventBus
from monitoring.events import EventType
from monitoring.logger import JsonFileLogger, log_event


def test_json_file_logger_writes_valid_json(tmp_path: Path):
    bus = EventBus()
    log_path = tmp_path / "events.log"
    logger = JsonFileLogger(log_path, bus)

    log_event(
        bus=bus,
        module="agent.controller",
        event_type=EventType.KICKED,
        message="Kicked: You are banned from this server",
        payload={"classification": "BAN"},
        correlation_id="attempt-3",
    )
    logger.close()

    lines = log_path.read_text(encoding="utf-8").strip().splitlines()
    assert len(lines) == 1

    data = json.loads(lines[0])
    assert data["module"] == "agent.controller"
    assert data["event_type"] == "KICKED"
    assert data["payload"]["classification"] == "BAN"
    assert data["correlation_id"] == "attempt-3"
    assert isinstance(data["ts"], (int, float))


def test_logger_creates_parent_dir_and_keeps_unicode(tmp_path: Path):
    log_path = tmp_path / "nested" / "logs" / "events.log"
    bus = EventBus()
    logger = JsonFileLogger(log_path, bus)

    log_event(bus, "relay", EventType.NOTIFICATION, "Grüße ✅")
    logger.close()

    assert "Grüße ✅" in log_path.read_text(encoding="utf-8")


def test_closed_file_disables_logger(tmp_path: Path, caplog):
    bus = EventBus()
    logger = JsonFileLogger(tmp_path / "events.log", bus)
    logger._file.close()

    log_event(bus, "test", EventType.LOG, "first")
    log_event(bus, "test", EventType.LOG, "second")

    assert caplog.text.count("structured logging disabled") == 1
    bus.unsubscribe(logger._on_event)


def test_close_unsubscribes(tmp_path: Path):
    bus = EventBus()
    log_path = tmp_path / "events.log"
    logger = JsonFileLogger(log_path, bus)
    logger.close()

    log_event(bus, "test", EventType.LOG, "after close")
    assert log_path.read_text(encoding="utf-8") == ""
