# path: src/runtime/failure_mitigation.py

"""
Failure handling helpers for the presence agent.

This module centralizes how we turn failures into structured monitoring
events.

It DOES NOT try to detect failures itself. Instead, it provides small,
explicit helpers that other modules can call when they hit trouble.

Failure classes covered:

1) Config load failures at startup
   - runtime main calls emit_config_error(...) before exiting with code 2.

2) Config persistence failures
   - The command dispatcher calls emit_persistence_error(...) when
     ConfigStore.save() raises; the mutation has been rolled back.

3) Transport connectivity errors
   - The session controller calls emit_transport_fault(...) with the
     classified TransportFault. Never fatal.
"""

from __future__ import annotations  # forward type references in type hints

from typing import Any, Dict, Optional, Union  # type hints

from monitoring.bus import EventBus                    # event bus used across system
from monitoring.events import EventType                # monitoring event type enum
from monitoring.logger import log_event                # convenience helper for JSONL logging

from .error_handling import TransportFault


JsonDict = Dict[str, Any]


# ------------------------------------------------------------------------------
# 1. Config load
# ------------------------------------------------------------------------------

def emit_config_error(
    bus: EventBus,
    message: str,
    *,
    config_path: Optional[str] = None,
    error_repr: Optional[str] = None,
) -> None:
    """
    Emit a LOG event for a configuration error.

    Typical usage:

        try:
            store = ConfigStore.load(path)
        except ConfigError as exc:
            emit_config_error(bus, "Failed to load config", error_repr=repr(exc))
            return 2

    This does NOT exit the process by itself; caller decides whether to abort.
    """
    payload: JsonDict = {
        "subtype": "CONFIG_ERROR",
        "config_path": config_path,
        "error": error_repr,
    }

    log_event(
        bus=bus,
        module="runtime.config",
        event_type=EventType.LOG,
        message=message,
        payload=payload,
    )


# ------------------------------------------------------------------------------
# 2. Config persistence
# ------------------------------------------------------------------------------

def emit_persistence_error(
    bus: EventBus,
    *,
    command: str,
    config_path: str,
    error_repr: str,
) -> None:
    """
    Emit a LOG event when a config-mutating command could not be saved.

    The in-memory change has already been undone by the caller, so the
    running session and the file on disk agree.
    """
    payload: JsonDict = {
        "subtype": "PERSIST_ERROR",
        "command": command,
        "config_path": config_path,
        "error": error_repr,
    }

    log_event(
        bus=bus,
        module="monitoring.controller",
        event_type=EventType.LOG,
        message=f"Could not save settings for '{command}'",
        payload=payload,
    )


# ------------------------------------------------------------------------------
# 3. Transport connectivity
# ------------------------------------------------------------------------------

def emit_transport_fault(
    bus: EventBus,
    fault: TransportFault,
    *,
    code: Union[str, int, None] = None,
    correlation_id: Optional[str] = None,
) -> None:
    """Emit a TRANSPORT_ERROR event carrying the operator hint."""
    payload: JsonDict = {
        "kind": fault.kind,
        "code": code,
        "error": fault.message,
        "hint": fault.hint,
    }

    log_event(
        bus=bus,
        module="agent.controller",
        event_type=EventType.TRANSPORT_ERROR,
        message=fault.hint,
        payload=payload,
        correlation_id=correlation_id,
    )
