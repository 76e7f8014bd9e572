# path: src/runtime/agent_runtime_main.py

"""
Unified runtime wiring the session controller, monitoring and front ends.

This script shows:
- How the EventBus, JSONL logger, console reporter and relay fit together.
- How operator command lines reach the CommandDispatcher.
- Where the tick loop pumps the transport and the Scheduler.

Exit codes:
    0  operator quit or Ctrl+C
    2  configuration could not be loaded
"""

from __future__ import annotations  # allow forward type references in type hints

import argparse                     # command-line options
import logging                      # module logger
import queue                        # console lines handed to the tick loop
import sys                          # stdin for the console reader
import threading                    # console reader runs on a daemon thread
import time                         # sleep timing in the main loop
from dataclasses import dataclass, field
from pathlib import Path            # for filesystem path handling
from typing import TYPE_CHECKING, List, Optional, Sequence

from rich.text import Text

from agent.controller import SessionController       # the session aggregate
from agent.logging_config import configure_logging   # rich logging setup
from agent.scheduler import Scheduler                # timers pumped once per tick
from bot_core.net import TransportError, create_transport_factory
from env.loader import DEFAULT_CONFIG_PATH, ConfigError, ConfigStore
from monitoring.bus import EventBus                  # central in-process event bus type
from monitoring.console import ConsoleReporter       # rich terminal output
from monitoring.controller import CommandDispatcher  # operator command surface
from monitoring.events import ControlCommand, parse_command
from monitoring.logger import JsonFileLogger         # JSONL file logger for MonitoringEvents
from relay.outbox import NotificationForwarder, Outbox

# Runtime-level error handling helpers
from runtime.error_handling import safe_dispatch
from runtime.failure_mitigation import emit_config_error

if TYPE_CHECKING:
    from relay.discord_bridge import DiscordRelay

log = logging.getLogger(__name__)

TICK_SLEEP_S = 0.05
DEFAULT_EVENTS_LOG = Path("logs") / "session" / "events.log"


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="afk-agent", description="Keep a game session alive while you are away.")
    parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH, help="settings YAML file")
    parser.add_argument("--username", help="override identity.username")
    parser.add_argument("--host", help="override server.host")
    parser.add_argument("--port", type=int, help="override server.port")
    parser.add_argument("--log-level", default="INFO", help="DEBUG, INFO, WARNING, ...")
    parser.add_argument("--no-relay", action="store_true", help="do not start the Discord relay")
    parser.add_argument("--events-log", type=Path, default=DEFAULT_EVENTS_LOG, help="JSONL event log path")
    return parser


def build_monitoring_stack(log_path: Path) -> tuple[EventBus, JsonFileLogger]:
    """
    Construct the monitoring stack used by the runtime.

    Returns:
        (bus, logger)
    """
    # One private bus per process
    bus = EventBus()

    # Create a JSON-lines logger subscribed to the bus
    logger = JsonFileLogger(
        path=log_path,  # file where MonitoringEvents will be appended as JSONL
        bus=bus,        # EventBus instance to subscribe to
    )
    return bus, logger


def apply_overrides(store: ConfigStore, args: argparse.Namespace) -> None:
    """CLI overrides apply to this run only; they are saved only if a command persists."""
    settings = store.settings
    if args.username:
        settings.identity.username = args.username
    if args.host:
        settings.server.host = args.host
    if args.port is not None:
        if not 0 < args.port <= 65535:
            raise ConfigError(f"--port out of range: {args.port}")
        settings.server.port = args.port


def start_console_reader(lines: "queue.Queue[str]") -> threading.Thread:
    """
    Read stdin lines on a daemon thread and hand them to the tick loop.

    EOF ends the reader quietly; the agent keeps running headless.
    """

    def _run() -> None:
        for line in sys.stdin:
            lines.put(line.rstrip("\n"))
        log.debug("Console input closed")

    t = threading.Thread(target=_run, name="ConsoleReaderThread", daemon=True)
    t.start()
    return t


@dataclass
class FrontEnds:
    """Queues and reply sinks the tick loop drains every iteration."""

    console_lines: "queue.Queue[str]" = field(default_factory=queue.Queue)
    relay: Optional["DiscordRelay"] = None
    relay_outbox: Optional[Outbox] = None


def console_reply(reporter: ConsoleReporter):
    def _reply(text: str) -> None:
        reporter.console.print(Text.assemble(("> ", "bold cyan"), text), highlight=False)

    return _reply


def handle_console_line(
    line: str,
    session: SessionController,
    bus: EventBus,
    reply,
) -> None:
    """Prefixed lines are commands; anything else is said in game chat."""
    text = line.strip()
    if not text:
        return
    cmd = parse_command(text, session.settings.command_prefix, source="console", reply=reply)
    if cmd is not None:
        safe_dispatch(bus.publish_command, cmd, bus)
        return
    try:
        session.say(text)
    except TransportError as exc:
        reply(f"Not sent: {exc}.")


def pump_once(
    session: SessionController,
    scheduler: Scheduler,
    bus: EventBus,
    front_ends: FrontEnds,
    reply_console,
) -> None:
    """One tick: transport I/O, due timers, then queued operator lines."""
    session.tick()
    scheduler.run_due()

    while True:
        try:
            line = front_ends.console_lines.get_nowait()
        except queue.Empty:
            break
        handle_console_line(line, session, bus, reply_console)

    relay = front_ends.relay
    if relay is not None and front_ends.relay_outbox is not None:
        for line, author in relay.drain_inbox():
            cmd: Optional[ControlCommand] = parse_command(
                line,
                session.settings.command_prefix,
                source="relay",
                user=author,
                reply=front_ends.relay_outbox.put,
            )
            if cmd is not None:
                safe_dispatch(bus.publish_command, cmd, bus)


def run_agent_runtime(argv: Optional[Sequence[str]] = None) -> int:
    """
    Main entrypoint.

    Runtime responsibilities:
    - Load settings (exit 2 on ConfigError).
    - Build the monitoring stack, console reporter and optional relay.
    - Build the SessionController and CommandDispatcher on one Scheduler.
    - Pump the tick loop until the operator quits.
    """
    args = build_arg_parser().parse_args(argv)

    # Build monitoring infrastructure: event bus + JSONL file logger
    bus, logger = build_monitoring_stack(args.events_log)

    try:
        store = ConfigStore.load(args.config)
        apply_overrides(store, args)
        reporter = ConsoleReporter(bus, tz_name=store.settings.timezone)
    except (ConfigError, ValueError) as exc:
        configure_logging(args.log_level)
        log.error("Configuration error: %s", exc)
        emit_config_error(bus, "Failed to load settings", config_path=str(args.config), error_repr=repr(exc))
        logger.close()
        return 2

    configure_logging(args.log_level, console=reporter.console)
    settings = store.settings

    scheduler = Scheduler()
    session = SessionController(store, scheduler, create_transport_factory(settings), bus)
    CommandDispatcher(session, store, bus, on_timezone_change=reporter.set_timezone)

    front_ends = FrontEnds()
    start_console_reader(front_ends.console_lines)

    relay_cfg = settings.relay
    if relay_cfg.is_usable() and not args.no_relay:
        # Imported here so discord stays off the import path of relay-less runs
        from relay.discord_bridge import DiscordRelay

        outbox = Outbox()
        NotificationForwarder(bus, outbox, forward_chat=relay_cfg.forward_chat)
        relay = DiscordRelay(relay_cfg, prefix=settings.command_prefix, outbox=outbox)
        relay.start()
        session.add_shutdown_hook(lambda: relay.close(flush=True))
        front_ends.relay = relay
        front_ends.relay_outbox = outbox
    elif relay_cfg.enabled:
        log.info("Relay skipped (token or channel id missing)")

    reporter.print_banner(
        username=settings.identity.username,
        address=settings.server.address if settings.server.host else "<not set>",
        bridge=f"{settings.bridge.host}:{settings.bridge.port}",
    )

    session.request_connect("startup")
    reply_console = console_reply(reporter)

    # Main loop: pump transport, timers and front ends
    try:
        while not session.quit_requested:
            pump_once(session, scheduler, bus, front_ends, reply_console)
            # Sleep briefly to avoid pegging a CPU core
            time.sleep(TICK_SLEEP_S)
    except KeyboardInterrupt:
        log.info("Interrupted")
        session.quit()
    finally:
        # Close the JSONL logger so buffered events are flushed to disk
        logger.close()
    return 0


def main(argv: Optional[List[str]] = None) -> None:
    sys.exit(run_agent_runtime(argv))


if __name__ == "__main__":
    # python -m runtime.agent_runtime_main
    main()
