# IPC bridge to the protocol sidecar process
# src/bot_core/net/ipc.py
"""
IPC-based transport for the protocol bridge.

The bridge is a separate process that runs the actual game client
(protocol decoding, physics, pathfinder). This transport talks to it
over one TCP socket with a line protocol:

  - Each message is a single line of UTF-8 JSON.
  - JSON object:
      {
        "type": "<event or action name>",
        "payload": { ... }
      }

Outbound "create_bot" starts a game session; every other outbound
message is one primitive action. Inbound messages are TransportEvent
names.
"""

from __future__ import annotations

import errno
import json
import logging
import socket
from threading import Lock
from typing import Any, Dict, Mapping, Optional, Tuple

from env.schema import BridgeConfig
from .client import ConnectOptions, EventHandler, TransportError, TransportEvent

log = logging.getLogger(__name__)

_ERRNO_CODES = {
    errno.ECONNREFUSED: "ECONNREFUSED",
    errno.ECONNRESET: "ECONNRESET",
    errno.ETIMEDOUT: "ETIMEDOUT",
    errno.EHOSTUNREACH: "EHOSTUNREACH",
}


def _error_code(exc: OSError) -> str:
    if isinstance(exc, socket.gaierror):
        return "ENOTFOUND"
    if isinstance(exc, (socket.timeout, TimeoutError)):
        return "ETIMEDOUT"
    if isinstance(exc, ConnectionRefusedError):
        return "ECONNREFUSED"
    if isinstance(exc, ConnectionResetError):
        return "ECONNRESET"
    return _ERRNO_CODES.get(exc.errno or 0, "EIO")


class IpcTransport:
    """GameTransport implementation backed by the bridge process."""

    def __init__(self, config: BridgeConfig) -> None:
        self._config = config
        self._sock: socket.socket | None = None
        self._handlers: Dict[str, EventHandler] = {}
        self._lock = Lock()
        self._connected = False
        self._ended = False

        # Buffer for partial lines
        self._recv_buffer = b""

        # State cache fed by STATE events
        self._state: Dict[str, Any] = {
            "health": None,
            "food": None,
            "position": None,
            "players": {},
            "entity": False,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def connect(self, options: ConnectOptions) -> None:
        """Open the bridge socket and ask the bridge to create a game session."""
        if self._connected:
            return

        log.info("IpcTransport connecting to bridge %s:%d", self._config.host, self._config.port)
        try:
            sock = socket.create_connection(
                (self._config.host, self._config.port),
                timeout=self._config.connect_timeout,
            )
        except OSError as exc:
            self._fail(_error_code(exc), f"bridge unreachable: {exc}")
            return
        sock.setblocking(False)

        self._sock = sock
        self._connected = True
        self._send(
            "create_bot",
            {
                "host": options.host,
                "port": options.port,
                "username": options.username,
                "version": options.version,
                "auth": options.auth,
            },
        )

    def disconnect(self, reason: str = "") -> None:
        """Close the bridge connection. No END event is emitted afterwards."""
        with self._lock:
            self._ended = True
            if not self._connected:
                return
            log.info("IpcTransport disconnecting (%s)", reason or "requested")
            try:
                if self._sock is not None:
                    try:
                        self._sock.sendall(self._encode("quit", {"reason": reason}))
                    except OSError as exc:
                        log.debug("IpcTransport quit notice not delivered: %s", exc)
                    self._sock.close()
            finally:
                self._sock = None
                self._connected = False

    def tick(self) -> None:
        """
        Pump the socket and dispatch any complete messages.

        Reads whatever is available, splits on newline, decodes JSON and
        dispatches on the "type" field.
        """
        if not self._connected or self._sock is None:
            return

        while True:
            try:
                chunk = self._sock.recv(65536)
            except BlockingIOError:
                break
            except OSError as exc:
                log.warning("IpcTransport socket error: %s", exc)
                self._fail(_error_code(exc), str(exc))
                return

            if not chunk:
                log.info("IpcTransport received EOF from bridge")
                self._fail(None, "bridge closed the connection")
                return

            self._recv_buffer += chunk

        while b"\n" in self._recv_buffer:
            line, self._recv_buffer = self._recv_buffer.split(b"\n", 1)
            line = line.strip()
            if not line:
                continue
            self._handle_raw_line(line)

    def on(self, event: str, handler: EventHandler) -> None:
        self._handlers[event] = handler

    def is_alive(self) -> bool:
        return self._connected and not self._ended

    def has_entity(self) -> bool:
        return self.is_alive() and bool(self._state.get("entity"))

    def snapshot(self) -> Dict[str, Any]:
        return dict(self._state)

    def player_position(self, name: str) -> Optional[Tuple[float, float, float]]:
        players = self._state.get("players") or {}
        for player, pos in players.items():
            if player.lower() == name.lower() and pos:
                return (float(pos["x"]), float(pos["y"]), float(pos["z"]))
        return None

    # ------------------------------------------------------------------
    # Outbound primitives
    # ------------------------------------------------------------------

    def chat(self, text: str) -> None:
        self._send("chat", {"text": text})

    def set_control_state(self, control: str, state: bool) -> None:
        self._send("set_control_state", {"control": control, "state": bool(state)})

    def look(self, yaw: float, pitch: float) -> None:
        self._send("look", {"yaw": yaw, "pitch": pitch})

    def swing_arm(self) -> None:
        self._send("swing_arm", {})

    def click_window(self, slot: int, button: int = 0, shift: bool = False) -> None:
        self._send("click_window", {"slot": slot, "button": button, "mode": 1 if shift else 0})

    def activate_block(self, position: Tuple[int, int, int]) -> None:
        x, y, z = position
        self._send("activate_block", {"x": x, "y": y, "z": z})

    def set_navigation_goal(self, goal: Optional[Mapping[str, Any]]) -> None:
        self._send("set_goal", {"goal": dict(goal) if goal is not None else None})

    def respawn(self) -> None:
        self._send("respawn", {})

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _encode(msg_type: str, payload: Mapping[str, Any]) -> bytes:
        msg = {"type": msg_type, "payload": dict(payload)}
        return json.dumps(msg, separators=(",", ":")).encode("utf-8") + b"\n"

    def _send(self, msg_type: str, payload: Mapping[str, Any]) -> None:
        if not self._connected or self._sock is None:
            raise TransportError(f"cannot send {msg_type!r}: bridge not connected")
        encoded = self._encode(msg_type, payload)
        try:
            with self._lock:
                self._sock.sendall(encoded)
        except BlockingIOError as exc:
            raise TransportError(f"bridge send buffer full while sending {msg_type!r}") from exc
        except OSError as exc:
            raise TransportError(f"bridge send failed: {exc}") from exc

    def _fail(self, code: Optional[str], message: str) -> None:
        """Report an I/O failure the way the bridge reports game errors: ERROR then END."""
        if self._sock is not None:
            try:
                self._sock.close()
            except OSError as exc:
                log.debug("IpcTransport socket close failed: %s", exc)
        self._sock = None
        self._connected = False
        if code is not None:
            self._dispatch(TransportEvent.ERROR, {"code": code, "message": message})
        self._emit_end(message)

    def _emit_end(self, reason: str) -> None:
        if self._ended:
            return
        self._ended = True
        self._dispatch(TransportEvent.END, {"reason": reason})

    def _handle_raw_line(self, line: bytes) -> None:
        """Decode a JSON line and dispatch to the appropriate handler."""
        try:
            obj = json.loads(line.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            log.exception("IpcTransport failed to decode JSON line: %r", line)
            return

        if not isinstance(obj, dict):
            log.warning("IpcTransport received non-object message: %r", obj)
            return

        msg_type = obj.get("type")
        payload = obj.get("payload", {})

        if not isinstance(msg_type, str):
            log.warning("IpcTransport received message without valid type: %r", obj)
            return
        if not isinstance(payload, dict):
            log.warning("IpcTransport received message with non-dict payload: %r", obj)
            return

        if msg_type == TransportEvent.STATE:
            self._state.update(payload)
        if msg_type == TransportEvent.SPAWN:
            self._state["entity"] = True

        if msg_type == TransportEvent.END:
            self._emit_end(str(payload.get("reason", "")))
            return

        self._dispatch(msg_type, payload)

    def _dispatch(self, msg_type: str, payload: Mapping[str, Any]) -> None:
        handler = self._handlers.get(msg_type)
        if handler is None:
            log.debug("IpcTransport no handler for %s", msg_type)
            return

        try:
            handler(payload)
        except Exception:
            log.exception("Error in transport handler for %s", msg_type)
