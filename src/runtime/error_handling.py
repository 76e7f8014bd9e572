# path: src/runtime/error_handling.py

"""
Error handling helpers for the presence agent runtime.

- Classify transport connectivity errors into operator-facing hints.
  These never drive a state transition; reconnection is driven by the
  session's end event alone.
- The one named compatibility guard for a known transport defect.
- Wrap front-end command dispatch in a guard that logs
  COMMAND_EXCEPTION events so one bad command cannot stop the loop.
"""

from __future__ import annotations

import errno
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Union

from monitoring.bus import EventBus
from monitoring.events import ControlCommand, EventType
from monitoring.logger import log_event

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransportFault:
    """Operator-facing view of one transport error."""

    kind: str       # "address_not_found", "refused", "reset", "timeout", "version_mismatch", "other"
    message: str
    hint: str


_CODE_KINDS = {
    "ENOTFOUND": "address_not_found",
    "EAI_AGAIN": "address_not_found",
    "ECONNREFUSED": "refused",
    "ECONNRESET": "reset",
    "EPIPE": "reset",
    "ETIMEDOUT": "timeout",
}

_HINTS = {
    "address_not_found": "Address not found. Check the server address with !setip.",
    "refused": "Connection refused. Check the server is started and the port is right.",
    "reset": "Connection reset by the server.",
    "timeout": "Connection timed out. The server may be offline or unreachable.",
    "version_mismatch": "Protocol version mismatch. Try !setversion <version> or !setversion auto.",
    "other": "Transport error.",
}


def classify_transport_error(code: Union[str, int, None], message: str = "") -> TransportFault:
    """
    Map a transport error (errno-style code plus message) to a fault kind
    and an operator hint. Numeric errno values are accepted too.
    """
    if isinstance(code, int):
        code = errno.errorcode.get(code, str(code))
    kind = _CODE_KINDS.get(str(code or "").upper())
    if kind is None:
        lowered = message.lower()
        if "unsupported protocol" in lowered or (
            "version" in lowered and any(w in lowered for w in ("mismatch", "outdated", "unsupported"))
        ):
            kind = "version_mismatch"
        elif "timed out" in lowered or "timeout" in lowered:
            kind = "timeout"
        else:
            kind = "other"
    return TransportFault(kind=kind, message=message, hint=_HINTS[kind])


def is_known_transport_defect(message: str) -> bool:
    """
    Compatibility shim for the bridge's inventory-slot assertion.

    Some servers send window updates with negative slot ids and the
    bridge library asserts `slot >= 0` instead of ignoring them. The
    session is unaffected, so this error alone is dropped.
    """
    return "slot >= 0" in message


def safe_dispatch(
    dispatch: Callable[[ControlCommand], None],
    cmd: ControlCommand,
    bus: EventBus,
) -> bool:
    """
    Call `dispatch(cmd)` inside a try/except block.

    On failure, emit a LOG event with subtype "COMMAND_EXCEPTION", tell
    the issuing front end, and return False. The tick loop keeps going.
    """
    try:
        dispatch(cmd)
    except Exception as exc:
        log.exception("Command %r failed", cmd.raw)
        log_event(
            bus=bus,
            module="runtime.safe_dispatch",
            event_type=EventType.LOG,
            message=f"Command '{cmd.name}' raised an exception",
            payload={
                "subtype": "COMMAND_EXCEPTION",
                "command": cmd.raw,
                "source": cmd.source,
                "exception_repr": repr(exc),
            },
        )
        cmd.reply(f"Command failed: {exc}")
        return False
    return True
