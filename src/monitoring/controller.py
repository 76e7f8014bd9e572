# CommandDispatcher linking operator commands to the session controller
#src/monitoring/controller.py
"""
Operator command surface.

CommandDispatcher listens for ControlCommand messages on the EventBus
(console, relay and in-game operator chat all publish there) and maps
them onto SessionController operations.

Supported commands (prefix `!` by default):
- afk on|off                  -> enable / disable idle behaviour (persisted)
- jump | wave | spin          -> one-off gestures
- goto <x> <y> <z>            -> navigate to a block
- goto <player>               -> follow a player
- stop                        -> cancel navigation and idle
- uptime | status | botinfo   -> session info
- setip <host[:port]> [port]  -> change server (persisted, history, reconnect)
- setversion <ver|auto>       -> change protocol version (persisted, reconnect)
- setreply <trigger> and <reply>   (or <trigger> | <reply>)
- stopreply <index|"trigger">
- replylist
- time [set <Zone>]           -> show or set the display timezone (persisted)
- history                     -> recent server addresses
- reconnect | quit | help

Anything else is sent to the server as `/<line>`.

Config-mutating commands persist before acknowledging. When the write
fails the in-memory change is rolled back, the operator is told, and a
PERSIST_ERROR event is emitted.
"""

from __future__ import annotations

import copy
import logging
import re
from typing import Callable, Dict, List, Optional

from agent.controller import SessionController
from agent.state import format_duration
from bot_core.net import TransportError
from env.loader import ConfigPersistError, ConfigStore
from env.schema import DEFAULT_PORT
from runtime.failure_mitigation import emit_persistence_error

from .bus import EventBus
from .console import resolve_timezone
from .events import ControlCommand, EventType
from .logger import log_event

log = logging.getLogger(__name__)

_AND_SEPARATOR = re.compile(r"\s+and\s+")

HELP_LINES = [
    "afk on|off, jump, wave, spin, stop",
    "goto <x> <y> <z> | goto <player>",
    "uptime, status, history, reconnect, quit",
    "setip <host[:port]> [port], setversion <ver|auto>",
    "setreply <trigger> and <reply>, stopreply <n|\"trigger\">, replylist",
    "time [set <Zone>]",
]


def parse_address(args: List[str]) -> tuple[str, int]:
    """
    `["play.example.com:25566"]`, `["play.example.com", "25566"]` or
    `["play.example.com"]` -> (host, port). Raises ValueError.
    """
    if not args or len(args) > 2:
        raise ValueError("expected <host[:port]> [port]")

    host, port_text = args[0], None
    if ":" in host:
        host, port_text = host.rsplit(":", 1)
    if len(args) == 2:
        port_text = args[1]
    if not host:
        raise ValueError("empty host")

    if port_text is None:
        return host, DEFAULT_PORT
    if not port_text.isdigit() or not 0 < int(port_text) <= 65535:
        raise ValueError(f"invalid port {port_text!r}")
    return host, int(port_text)


def split_reply_rule(text: str) -> Optional[tuple[str, str]]:
    """
    `"hello and hi there"` -> ("hello", "hi there"), split on the first
    " and ". A `|` separator takes precedence, for triggers that contain
    the word "and". Returns None when either side is empty.
    """
    if "|" in text:
        trigger, _, reply = text.partition("|")
    else:
        parts = _AND_SEPARATOR.split(text, maxsplit=1)
        if len(parts) != 2:
            return None
        trigger, reply = parts
    trigger, reply = trigger.strip(), reply.strip()
    if not trigger or not reply:
        return None
    return trigger, reply


class CommandDispatcher:
    """
    Maps operator commands to session operations.

    Every handler takes the ControlCommand and answers through
    `cmd.reply`, so the answer goes back to the front end that asked.
    """

    def __init__(
        self,
        session: SessionController,
        store: ConfigStore,
        bus: EventBus,
        *,
        on_timezone_change: Optional[Callable[[str], None]] = None,
    ) -> None:
        self._session = session
        self._store = store
        self._bus = bus
        self._on_timezone_change = on_timezone_change

        self._handlers: Dict[str, Callable[[ControlCommand], None]] = {
            "afk": self._cmd_afk,
            "jump": self._cmd_jump,
            "wave": self._cmd_wave,
            "spin": self._cmd_spin,
            "goto": self._cmd_goto,
            "stop": self._cmd_stop,
            "uptime": self._cmd_uptime,
            "status": self._cmd_status,
            "botinfo": self._cmd_status,
            "setip": self._cmd_setip,
            "setversion": self._cmd_setversion,
            "setreply": self._cmd_setreply,
            "stopreply": self._cmd_stopreply,
            "replylist": self._cmd_replylist,
            "time": self._cmd_time,
            "history": self._cmd_history,
            "reconnect": self._cmd_reconnect,
            "quit": self._cmd_quit,
            "help": self._cmd_help,
            "commands": self._cmd_help,
        }

        self._bus.subscribe_commands(self.dispatch)

    @property
    def commands(self) -> List[str]:
        return sorted(self._handlers)

    # --------------------------------------------------------
    # Dispatch
    # --------------------------------------------------------

    def dispatch(self, cmd: ControlCommand) -> None:
        log.info("Command from %s%s: %s", cmd.source, f" ({cmd.user})" if cmd.user else "", cmd.raw)
        log_event(
            bus=self._bus,
            module="monitoring.controller",
            event_type=EventType.COMMAND,
            message=f"Command: {cmd.raw}",
            payload={"name": cmd.name, "args": list(cmd.args), "source": cmd.source, "user": cmd.user},
        )

        handler = self._handlers.get(cmd.name, self._cmd_passthrough)
        try:
            handler(cmd)
        except TransportError as exc:
            cmd.reply(f"Cannot do that: {exc}.")

    # --------------------------------------------------------
    # Movement and gestures
    # --------------------------------------------------------

    def _cmd_afk(self, cmd: ControlCommand) -> None:
        if len(cmd.args) != 1 or cmd.args[0].lower() not in ("on", "off"):
            cmd.reply("Usage: !afk on|off")
            return
        enabled = cmd.args[0].lower() == "on"
        settings = self._store.settings
        previous = settings.afk_enabled
        settings.afk_enabled = enabled

        def undo() -> None:
            settings.afk_enabled = previous

        if not self._persist(cmd, undo):
            return
        self._session.set_afk(enabled)
        cmd.reply(f"AFK mode {'on' if enabled else 'off'}.")

    def _cmd_jump(self, cmd: ControlCommand) -> None:
        self._session.jump()
        cmd.reply("Jumped.")

    def _cmd_wave(self, cmd: ControlCommand) -> None:
        self._session.wave()
        cmd.reply("Waved.")

    def _cmd_spin(self, cmd: ControlCommand) -> None:
        self._session.spin()
        cmd.reply("Spinning.")

    def _cmd_goto(self, cmd: ControlCommand) -> None:
        if len(cmd.args) == 3:
            try:
                x, y, z = (float(a) for a in cmd.args)
            except ValueError:
                cmd.reply("Usage: !goto <x> <y> <z> | !goto <player>")
                return
            self._session.navigate_to(x, y, z)
            cmd.reply(f"Heading to {x:g} {y:g} {z:g}.")
        elif len(cmd.args) == 1:
            player = cmd.args[0]
            if self._session.follow(player):
                cmd.reply(f"Following {player}.")
            else:
                cmd.reply(f"Player {player} not found nearby.")
        else:
            cmd.reply("Usage: !goto <x> <y> <z> | !goto <player>")

    def _cmd_stop(self, cmd: ControlCommand) -> None:
        self._session.stop_movement()
        cmd.reply("Stopped. Use !afk on to resume idling.")

    # --------------------------------------------------------
    # Info
    # --------------------------------------------------------

    def _cmd_uptime(self, cmd: ControlCommand) -> None:
        uptime = self._session.uptime()
        if uptime is None:
            cmd.reply("Not connected.")
        else:
            cmd.reply(f"Uptime: {format_duration(uptime)}")

    def _cmd_status(self, cmd: ControlCommand) -> None:
        status = self._session.status()
        parts = [
            f"State: {status.state.value}",
            f"Server: {status.address}",
            f"User: {status.username}",
            f"Uptime: {format_duration(status.uptime_s)}",
            f"AFK: {'on' if status.afk_enabled else 'off'}",
        ]
        if status.health is not None:
            parts.append(f"Health: {status.health:g}")
        if status.food is not None:
            parts.append(f"Food: {status.food:g}")
        cmd.reply(" | ".join(parts))

    def _cmd_history(self, cmd: ControlCommand) -> None:
        history = self._store.settings.address_history
        if not history:
            cmd.reply("No server history.")
            return
        for i, address in enumerate(history, start=1):
            cmd.reply(f"{i}. {address}")

    def _cmd_help(self, cmd: ControlCommand) -> None:
        prefix = self._store.settings.command_prefix
        cmd.reply(f"Commands (prefix {prefix}):")
        for line in HELP_LINES:
            cmd.reply(line)

    # --------------------------------------------------------
    # Config-mutating commands
    # --------------------------------------------------------

    def _cmd_setip(self, cmd: ControlCommand) -> None:
        try:
            host, port = parse_address(cmd.args)
        except ValueError as exc:
            cmd.reply(f"Usage: !setip <host[:port]> [port] ({exc})")
            return

        settings = self._store.settings
        previous_server = copy.copy(settings.server)
        previous_history = list(settings.address_history)
        self._store.record_address(host, port)

        def undo() -> None:
            settings.server = previous_server
            settings.address_history = previous_history

        if not self._persist(cmd, undo):
            return
        cmd.reply(f"Server set to {host}:{port}. Reconnecting...")
        self._session.reconnect("setip")

    def _cmd_setversion(self, cmd: ControlCommand) -> None:
        if len(cmd.args) != 1:
            cmd.reply("Usage: !setversion <version|auto>")
            return
        version = cmd.args[0]
        if version.lower() == "auto":
            version = "auto"

        server = self._store.settings.server
        previous = server.version
        server.version = version

        def undo() -> None:
            server.version = previous

        if not self._persist(cmd, undo):
            return
        cmd.reply(f"Protocol version set to {version}. Reconnecting...")
        self._session.reconnect("setversion")

    def _cmd_setreply(self, cmd: ControlCommand) -> None:
        parsed = split_reply_rule(cmd.rest)
        if parsed is None:
            cmd.reply("Usage: !setreply <trigger> and <reply>  (use && between multiple replies)")
            return
        trigger, reply = parsed
        try:
            rule = self._session.triggers.add(trigger, reply)
        except ConfigPersistError as exc:
            self._report_persist_error(cmd, exc)
            return
        cmd.reply(f"Reply set: '{rule.trigger}' -> '{rule.reply}'")

    def _cmd_stopreply(self, cmd: ControlCommand) -> None:
        selector = cmd.rest
        if not selector:
            cmd.reply("Usage: !stopreply <number|\"trigger\">")
            return
        try:
            removed = self._session.triggers.remove(selector)
        except ConfigPersistError as exc:
            self._report_persist_error(cmd, exc)
            return
        if removed is None:
            cmd.reply(f"No reply matches '{selector}'.")
        else:
            cmd.reply(f"Reply removed: '{removed.trigger}'")

    def _cmd_replylist(self, cmd: ControlCommand) -> None:
        rules = self._session.triggers.rules
        if not rules:
            cmd.reply("No replies set.")
            return
        for i, rule in enumerate(rules, start=1):
            cmd.reply(f"{i}. '{rule.trigger}' -> '{rule.reply}'")

    def _cmd_time(self, cmd: ControlCommand) -> None:
        settings = self._store.settings
        if not cmd.args:
            cmd.reply(f"Timezone: {settings.timezone}")
            return
        if len(cmd.args) != 2 or cmd.args[0].lower() != "set":
            cmd.reply("Usage: !time set <Zone>  (e.g. Europe/Berlin)")
            return
        zone = cmd.args[1]
        try:
            resolve_timezone(zone)
        except ValueError:
            cmd.reply(f"Unknown timezone '{zone}'.")
            return

        previous = settings.timezone
        settings.timezone = zone

        def undo() -> None:
            settings.timezone = previous

        if not self._persist(cmd, undo):
            return
        if self._on_timezone_change is not None:
            self._on_timezone_change(zone)
        cmd.reply(f"Timezone set to {zone}.")

    # --------------------------------------------------------
    # Session control
    # --------------------------------------------------------

    def _cmd_reconnect(self, cmd: ControlCommand) -> None:
        if self._session.reconnect("operator"):
            cmd.reply("Reconnecting...")
        else:
            cmd.reply("Cannot reconnect: no server address set. Use !setip <ip>")

    def _cmd_quit(self, cmd: ControlCommand) -> None:
        cmd.reply("Shutting down.")
        self._session.quit()

    def _cmd_passthrough(self, cmd: ControlCommand) -> None:
        self._session.say(f"/{cmd.raw}")
        cmd.reply(f"Sent /{cmd.raw}")

    # --------------------------------------------------------
    # Persistence helpers
    # --------------------------------------------------------

    def _persist(self, cmd: ControlCommand, undo: Callable[[], None]) -> bool:
        try:
            self._store.save()
        except ConfigPersistError as exc:
            undo()
            self._report_persist_error(cmd, exc)
            return False
        return True

    def _report_persist_error(self, cmd: ControlCommand, exc: ConfigPersistError) -> None:
        log.error("Settings not saved: %s", exc)
        emit_persistence_error(
            self._bus,
            command=cmd.name,
            config_path=str(self._store.path),
            error_repr=repr(exc),
        )
        cmd.reply(f"Could not save settings, change undone: {exc}")
