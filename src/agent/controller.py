# src/agent/controller.py
"""
Session controller: the one owner of the game transport.

Drives the session state machine

    DISCONNECTED -> CONNECTING -> ACTIVE -> (RECONNECTING | BANNED | DISCONNECTED)

and routes every inbound transport event:

    kicked   -> disconnect normalizer (BAN latches and stops retries)
    end      -> RECONNECTING + one reconnect timer, unless banned
    message  -> challenge solver, then trigger engine
    window   -> challenge solver (GUI item)
    error    -> operator hint, never a state transition

A fresh transport is built for every connection attempt. Handlers are
bound to the transport instance they were registered on, so late events
from a transport we already dropped are ignored.

Everything runs on the tick loop thread: `tick()` pumps the transport,
the runtime pumps the Scheduler right after.
"""

from __future__ import annotations

import logging
import math
import random
import time
from typing import Any, Callable, Dict, List, Mapping, Optional

from bot_core.net import ConnectOptions, GameTransport, TransportError, TransportEvent, TransportFactory
from env.loader import ConfigStore
from env.schema import AgentSettings
from monitoring.bus import EventBus
from monitoring.events import EventType, parse_command
from monitoring.logger import log_event
from runtime.error_handling import classify_transport_error, is_known_transport_defect, safe_dispatch
from runtime.failure_mitigation import emit_transport_fault

from . import triggers
from .challenges import ChallengeEvent, ChallengeSolver, ResponseType, WindowSlot, chat_speaker
from .disconnect import normalize
from .idle import SUSPEND_NAVIGATION, SUSPEND_STOPPED, SUSPEND_VERIFICATION, IdleAction, IdleScheduler
from .scheduler import Scheduler, TimerHandle
from .state import ConnectionAttempt, SessionState, SessionStatus

log = logging.getLogger(__name__)

MODULE = "agent.controller"

MOVEMENT_CONTROLS = ("forward", "back", "left", "right", "jump", "sprint", "sneak")
JUMP_PULSE_S = 0.4
WAVE_SWINGS = 3
WAVE_GAP_S = 0.25
SPIN_STEPS = 8
SPIN_GAP_S = 0.15
FOLLOW_RANGE = 2

NO_ADDRESS_MESSAGE = "No server address set! Use !setip <ip>"


class NotConnectedError(TransportError):
    """An operator action needs a live session and there is none."""

    def __init__(self) -> None:
        super().__init__("not connected to a server")


class SessionController:
    """
    The session aggregate.

    Owns the transport handle, the stealth-connect timer, the reconnect
    timer (at most one pending) and the idle scheduler. Collaborators get
    a reference to this object; nothing reaches the transport any other
    way.
    """

    def __init__(
        self,
        store: ConfigStore,
        scheduler: Scheduler,
        transport_factory: TransportFactory,
        bus: EventBus,
        *,
        solver: Optional[ChallengeSolver] = None,
        rng: Optional[random.Random] = None,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._scheduler = scheduler
        self._factory = transport_factory
        self._bus = bus
        self._rng = rng or random.Random()
        self._solver = solver or ChallengeSolver(self._rng)
        self._wall_clock = wall_clock

        timing = store.settings.timing
        self.idle = IdleScheduler(
            scheduler,
            lambda: self._transport,
            interval=timing.idle_interval,
            skew=timing.idle_skew,
            rng=self._rng,
            on_action=self._on_idle_action,
        )
        self.idle.set_enabled(store.settings.afk_enabled)
        self.triggers = triggers.TriggerBook(store)

        self._state = SessionState.DISCONNECTED
        self._transport: Optional[GameTransport] = None
        self._attempt: Optional[ConnectionAttempt] = None
        self._attempt_seq = 0
        self._connect_timer: Optional[TimerHandle] = None
        self._reconnect_timer: Optional[TimerHandle] = None
        self._banned = False
        self._active_since: Optional[float] = None
        self._navigating = False
        self._shutdown_hooks: List[Callable[[], None]] = []
        self.quit_requested = False

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def transport(self) -> Optional[GameTransport]:
        return self._transport

    @property
    def attempt(self) -> Optional[ConnectionAttempt]:
        return self._attempt

    @property
    def banned(self) -> bool:
        return self._banned

    @property
    def reconnect_timer(self) -> Optional[TimerHandle]:
        return self._reconnect_timer

    @property
    def settings(self) -> AgentSettings:
        return self._store.settings

    @property
    def store(self) -> ConfigStore:
        return self._store

    def uptime(self) -> Optional[float]:
        if self._state is not SessionState.ACTIVE or self._active_since is None:
            return None
        return self._scheduler.now() - self._active_since

    def status(self) -> SessionStatus:
        snap: Mapping[str, Any] = {}
        if self._transport is not None and self._transport.is_alive():
            snap = self._transport.snapshot()
        return SessionStatus(
            state=self._state,
            address=self.settings.server.address if self.settings.server.host else "-",
            username=self.settings.identity.username,
            uptime_s=self.uptime(),
            afk_enabled=self.idle.enabled,
            idle_running=self.idle.running,
            navigating=self._navigating,
            health=snap.get("health"),
            food=snap.get("food"),
            trigger_count=len(self.triggers.rules),
        )

    # ------------------------------------------------------------------
    # Main-loop hook
    # ------------------------------------------------------------------

    def tick(self) -> None:
        transport = self._transport
        if transport is not None:
            transport.tick()

    def add_shutdown_hook(self, fn: Callable[[], None]) -> None:
        self._shutdown_hooks.append(fn)

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def request_connect(self, reason: str = "startup", *, operator: bool = False) -> bool:
        """
        Move to CONNECTING and schedule the attempt after a stealth delay.

        No-op (returns False) when an attempt is already in flight, when
        the session is ACTIVE with a live transport, when no server
        address is configured, or when the ban latch is set and the
        request is not from the operator.
        """
        if self._state is SessionState.BANNED and not operator:
            log.info("Connect request (%s) ignored: banned, waiting for operator reconnect", reason)
            return False
        if self._state is SessionState.CONNECTING:
            log.debug("Connect request (%s) ignored: already connecting", reason)
            return False
        if (
            self._state is SessionState.ACTIVE
            and self._transport is not None
            and self._transport.is_alive()
        ):
            log.debug("Connect request (%s) ignored: already active", reason)
            return False

        server = self.settings.server
        if not server.host:
            log.warning(NO_ADDRESS_MESSAGE)
            self.notify(NO_ADDRESS_MESSAGE)
            self._set_state(SessionState.DISCONNECTED, "no address")
            return False

        self._cancel_reconnect()
        self._cancel_connect()

        low, high = self.settings.timing.stealth_delay
        delay = self._rng.uniform(low, high)
        self._attempt_seq += 1
        self._attempt = ConnectionAttempt(
            attempt_id=self._attempt_seq,
            host=server.host,
            port=server.port,
            identity=self.settings.identity.username,
            created_at=self._wall_clock(),
            delay=delay,
            reason=reason,
        )
        self._set_state(SessionState.CONNECTING, reason)
        log_event(
            bus=self._bus,
            module=MODULE,
            event_type=EventType.CONNECT_ATTEMPT,
            message=f"Connecting to {server.address} in {delay:.1f}s",
            payload=self._attempt.to_dict(),
            correlation_id=self._attempt.correlation_id,
        )
        self._connect_timer = self._scheduler.call_later(
            delay, self._open_transport, self._attempt, label="stealth-connect"
        )
        return True

    def schedule_reconnect(self) -> TimerHandle:
        """Arm the reconnect timer, replacing any pending one."""
        self._cancel_reconnect()
        backoff = self.settings.timing.reconnect_backoff
        log.info("Reconnecting in %.0fs", backoff)
        self._reconnect_timer = self._scheduler.call_later(backoff, self._reconnect_due, label="reconnect")
        return self._reconnect_timer

    def force_restart(self, reason: str = "restart") -> bool:
        """Drop the current session and start a new attempt right away."""
        if self._state is SessionState.BANNED:
            log.info("Restart (%s) ignored: banned", reason)
            return False
        log.info("Restarting session: %s", reason)
        self._teardown(reason)
        return self.request_connect(reason)

    def reconnect(self, reason: str = "operator") -> bool:
        """Operator reconnect: clears the ban latch and reconnects from scratch."""
        if self._banned:
            log.info("Ban latch cleared by operator")
        self._banned = False
        self._teardown(reason)
        return self.request_connect(reason, operator=True)

    def quit(self) -> None:
        """Tear down, flush front ends and ask the runtime loop to exit."""
        log.info("Shutting down session")
        self._teardown("quit")
        self._scheduler.cancel_all()
        for hook in list(self._shutdown_hooks):
            try:
                hook()
            except Exception:
                log.exception("Shutdown hook %r failed", hook)
        self.quit_requested = True

    def _open_transport(self, attempt: ConnectionAttempt) -> None:
        self._connect_timer = None
        if attempt is not self._attempt or self._state is not SessionState.CONNECTING:
            return

        transport = self._factory()
        self._bind(transport)
        self._transport = transport
        options = ConnectOptions(
            host=attempt.host,
            port=attempt.port,
            username=attempt.identity,
            version=self.settings.server.protocol_version(),
            auth=self.settings.server.auth,
        )
        log.info("Connecting to %s:%d as %s", attempt.host, attempt.port, attempt.identity)
        try:
            transport.connect(options)
        except TransportError as exc:
            log.warning("Connect failed: %s", exc)
            self._handle_end(transport, {"reason": str(exc)})

    def _reconnect_due(self) -> None:
        self._reconnect_timer = None
        if self._state is SessionState.RECONNECTING:
            self.request_connect("retry")

    def _teardown(self, reason: str) -> None:
        self._cancel_connect()
        self._cancel_reconnect()
        self.idle.stop()
        transport, self._transport = self._transport, None
        if transport is not None:
            try:
                transport.disconnect(reason)
            except TransportError as exc:
                log.debug("Disconnect failed: %s", exc)
        self._navigating = False
        self._active_since = None
        self._set_state(SessionState.DISCONNECTED, reason)

    def _cancel_connect(self) -> None:
        if self._connect_timer is not None:
            self._connect_timer.cancel()
            self._connect_timer = None

    def _cancel_reconnect(self) -> None:
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None

    def _set_state(self, new: SessionState, reason: str = "") -> None:
        old = self._state
        if old is new:
            return
        self._state = new
        log.info("Session %s -> %s (%s)", old.value, new.value, reason or "-")
        log_event(
            bus=self._bus,
            module=MODULE,
            event_type=EventType.SESSION_STATE_CHANGE,
            message=f"{old.value} -> {new.value}",
            payload={"from": old.value, "to": new.value, "reason": reason},
            correlation_id=self._attempt.correlation_id if self._attempt else None,
        )

    # ------------------------------------------------------------------
    # Transport events
    # ------------------------------------------------------------------

    def _bind(self, transport: GameTransport) -> None:
        handlers: Dict[str, Callable[[GameTransport, Mapping[str, Any]], None]] = {
            TransportEvent.LOGIN: self._handle_login,
            TransportEvent.SPAWN: self._handle_spawn,
            TransportEvent.CHAT: self._handle_chat,
            TransportEvent.MESSAGE: self._handle_message,
            TransportEvent.WINDOW_OPEN: self._handle_window_open,
            TransportEvent.KICKED: self._handle_kicked,
            TransportEvent.END: self._handle_end,
            TransportEvent.DEATH: self._handle_death,
            TransportEvent.ERROR: self._handle_error,
            TransportEvent.GOAL_REACHED: self._handle_goal_reached,
        }
        for event, handler in handlers.items():
            transport.on(event, self._guarded(transport, event, handler))

    def _guarded(self, transport: GameTransport, event: str, handler):
        def _on_event(payload: Mapping[str, Any]) -> None:
            if transport is not self._transport:
                log.debug("Ignoring %s from a dropped transport", event)
                return
            handler(transport, payload)

        return _on_event

    def _handle_login(self, transport: GameTransport, payload: Mapping[str, Any]) -> None:
        log.info("Logged in as %s", self.settings.identity.username)

    def _handle_spawn(self, transport: GameTransport, payload: Mapping[str, Any]) -> None:
        if self._state is SessionState.ACTIVE:
            # Respawn after death.
            self.idle.start()
            return
        self._banned = False
        self._active_since = self._scheduler.now()
        self._set_state(SessionState.ACTIVE, "spawn")
        self.idle.reset()
        self.notify(f"Joined {self.settings.server.address} as {self.settings.identity.username}")

    def _handle_kicked(self, transport: GameTransport, payload: Mapping[str, Any]) -> None:
        reason = normalize(payload.get("reason"))
        log_event(
            bus=self._bus,
            module=MODULE,
            event_type=EventType.KICKED,
            message=f"Kicked: {reason.text}",
            payload={"reason": reason.text, "classification": reason.classification.name},
            correlation_id=self._attempt.correlation_id if self._attempt else None,
        )
        if reason.is_ban:
            self._banned = True
            self._cancel_reconnect()
            self.idle.stop()
            self._set_state(SessionState.BANNED, "ban")
            self.notify(f"Banned: {reason.text}. Use !reconnect to try again.")
        else:
            self.notify(f"Kicked: {reason.text}")

    def _handle_end(self, transport: GameTransport, payload: Mapping[str, Any]) -> None:
        self._transport = None
        self.idle.stop()
        self._navigating = False
        self._active_since = None
        log.info("Session ended: %s", payload.get("reason") or "-")

        if self._banned:
            self._set_state(SessionState.BANNED, "ended while banned")
            return
        if self._state not in (SessionState.ACTIVE, SessionState.CONNECTING):
            return
        self._set_state(SessionState.RECONNECTING, "end")
        self.schedule_reconnect()

    def _handle_message(self, transport: GameTransport, payload: Mapping[str, Any]) -> None:
        if payload.get("position") == "game_info":
            return
        text = str(payload.get("text") or "")
        if not text.strip():
            return
        log_event(
            bus=self._bus,
            module=MODULE,
            event_type=EventType.SERVER_MESSAGE,
            message=text,
            payload={"position": payload.get("position")},
        )
        speaker = chat_speaker(text)
        if speaker is not None and speaker.lower() == self.settings.identity.username.lower():
            # Our own line, echoed back by the server.
            return
        self.handle_inbound_text(text, player_chat=speaker is not None or payload.get("position") == "chat")

    def handle_inbound_text(self, text: str, *, player_chat: bool = False) -> None:
        """Challenge solver first, then the trigger rules."""
        for event in self._solver.inspect_text(text, player_chat=player_chat):
            self._execute_challenge(event)

        stagger = self.settings.timing.reply_stagger
        for action in triggers.match(text, self.triggers.rules, stagger):
            log_event(
                bus=self._bus,
                module=MODULE,
                event_type=EventType.TRIGGER_FIRED,
                message=f"Trigger {action.trigger!r} -> {action.text!r}",
                payload={"trigger": action.trigger, "reply": action.text, "delay": action.delay},
            )
            self._scheduler.call_later(action.delay, self._send_chat, action.text, label="trigger-reply")

    def _handle_chat(self, transport: GameTransport, payload: Mapping[str, Any]) -> None:
        username = str(payload.get("username") or "")
        message = str(payload.get("message") or "")
        if not username or username == self.settings.identity.username:
            return
        log_event(
            bus=self._bus,
            module=MODULE,
            event_type=EventType.CHAT,
            message=f"<{username}> {message}",
            payload={"username": username, "message": message},
        )

        operator = self.settings.identity.operator
        if not operator or username.lower() != operator.lower():
            return
        cmd = parse_command(
            message,
            self.settings.command_prefix,
            source="game",
            user=username,
            reply=self._send_chat,
        )
        if cmd is not None:
            safe_dispatch(self._bus.publish_command, cmd, self._bus)

    def _handle_window_open(self, transport: GameTransport, payload: Mapping[str, Any]) -> None:
        title = str(payload.get("title") or "")
        raw_slots = payload.get("slots") or []
        slots = [
            WindowSlot.from_payload(raw, i)
            for i, raw in enumerate(raw_slots)
            if isinstance(raw, Mapping)
        ]
        event = self._solver.inspect_window(title, slots)
        if event is not None:
            self._execute_challenge(event)

    def _handle_error(self, transport: GameTransport, payload: Mapping[str, Any]) -> None:
        code = payload.get("code")
        message = str(payload.get("message") or "")
        if is_known_transport_defect(message):
            log.debug("Ignoring known bridge defect: %s", message)
            return
        fault = classify_transport_error(code, message)
        log.warning("%s (%s)", fault.hint, message or code)
        emit_transport_fault(
            self._bus,
            fault,
            code=code,
            correlation_id=self._attempt.correlation_id if self._attempt else None,
        )

    def _handle_death(self, transport: GameTransport, payload: Mapping[str, Any]) -> None:
        log.info("Died; respawning")
        self._navigating = False
        self.idle.resume(SUSPEND_NAVIGATION)
        try:
            transport.respawn()
        except TransportError as exc:
            log.warning("Respawn failed: %s", exc)

    def _handle_goal_reached(self, transport: GameTransport, payload: Mapping[str, Any]) -> None:
        self._navigating = False
        self.idle.resume(SUSPEND_NAVIGATION)
        log_event(
            bus=self._bus,
            module=MODULE,
            event_type=EventType.NAVIGATION,
            message="Goal reached",
            payload={"reached": True},
        )

    # ------------------------------------------------------------------
    # Challenge responses
    # ------------------------------------------------------------------

    def _execute_challenge(self, event: ChallengeEvent) -> None:
        response = event.response
        log.info("Verification challenge (%s) detected", event.kind.value)
        log_event(
            bus=self._bus,
            module=MODULE,
            event_type=EventType.CHALLENGE_SOLVED,
            message=f"Challenge {event.kind.value}: {response.type.value}",
            payload=event.to_dict(),
            correlation_id=self._attempt.correlation_id if self._attempt else None,
        )

        if response.type is ResponseType.RESTART:
            # Not from inside the transport's own dispatch.
            self._scheduler.call_later(0.0, self.force_restart, "disconnect phrase", label="challenge-restart")
            return

        transport = self._transport
        if transport is None:
            return
        try:
            if response.type is ResponseType.CHAT:
                transport.chat(response.payload["text"])
            elif response.type is ResponseType.CLICK:
                transport.click_window(int(response.payload["slot"]), 0, False)
            elif response.type is ResponseType.CONTROL:
                control = response.payload["control"]
                self.idle.suspend(SUSPEND_VERIFICATION)
                transport.set_control_state(control, True)
                self._scheduler.call_later(
                    float(response.payload["duration"]),
                    self._release_challenge_control,
                    transport,
                    control,
                    label=f"challenge-release-{control}",
                )
        except TransportError as exc:
            log.warning("Challenge response failed: %s", exc)
            self.idle.resume(SUSPEND_VERIFICATION)

    def _release_challenge_control(self, transport: GameTransport, control: str) -> None:
        try:
            if transport is self._transport:
                transport.set_control_state(control, False)
        except TransportError as exc:
            log.debug("Releasing %s failed: %s", control, exc)
        finally:
            self.idle.resume(SUSPEND_VERIFICATION)

    # ------------------------------------------------------------------
    # Operator actions
    # ------------------------------------------------------------------

    def _require_entity(self) -> GameTransport:
        transport = self._transport
        if transport is None or not transport.has_entity():
            raise NotConnectedError()
        return transport

    def say(self, text: str) -> None:
        self._require_entity().chat(text)

    def set_afk(self, enabled: bool) -> None:
        self.idle.set_enabled(enabled)
        if enabled:
            self.idle.resume(SUSPEND_STOPPED)

    def jump(self) -> None:
        transport = self._require_entity()
        transport.set_control_state("jump", True)
        self._scheduler.call_later(JUMP_PULSE_S, self._release_control, transport, "jump", label="jump-release")

    def wave(self) -> None:
        transport = self._require_entity()
        transport.swing_arm()
        for i in range(1, WAVE_SWINGS):
            self._scheduler.call_later(i * WAVE_GAP_S, self._swing, transport, label="wave")

    def spin(self) -> None:
        transport = self._require_entity()
        for i in range(SPIN_STEPS):
            yaw = -math.pi + (2 * math.pi) * (i + 1) / SPIN_STEPS
            self._scheduler.call_later(i * SPIN_GAP_S, self._look, transport, yaw, label="spin")

    def navigate_to(self, x: float, y: float, z: float) -> None:
        transport = self._require_entity()
        self.idle.suspend(SUSPEND_NAVIGATION)
        self.idle.resume(SUSPEND_STOPPED)
        goal = {"type": "block", "x": x, "y": y, "z": z}
        try:
            transport.set_navigation_goal(goal)
        except TransportError:
            self.idle.resume(SUSPEND_NAVIGATION)
            raise
        self._navigating = True
        self._log_navigation(f"Navigating to {x:g} {y:g} {z:g}", goal)

    def follow(self, player: str) -> bool:
        """Follow a visible player. Returns False when the player is not in view."""
        transport = self._require_entity()
        if transport.player_position(player) is None:
            return False
        self.idle.suspend(SUSPEND_NAVIGATION)
        self.idle.resume(SUSPEND_STOPPED)
        goal = {"type": "follow", "player": player, "range": FOLLOW_RANGE}
        try:
            transport.set_navigation_goal(goal)
        except TransportError:
            self.idle.resume(SUSPEND_NAVIGATION)
            raise
        self._navigating = True
        self._log_navigation(f"Following {player}", goal)
        return True

    def stop_movement(self) -> None:
        """Cancel navigation, release every control and park the idle scheduler."""
        transport = self._require_entity()
        self.idle.suspend(SUSPEND_STOPPED)
        self.idle.resume(SUSPEND_NAVIGATION)
        transport.set_navigation_goal(None)
        for control in MOVEMENT_CONTROLS:
            transport.set_control_state(control, False)
        self._navigating = False
        self._log_navigation("Stopped", None)

    def notify(self, message: str) -> None:
        """Operator-facing notice; the relay bridge mirrors these."""
        log_event(
            bus=self._bus,
            module=MODULE,
            event_type=EventType.NOTIFICATION,
            message=message,
            payload={},
            correlation_id=self._attempt.correlation_id if self._attempt else None,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _send_chat(self, text: str) -> None:
        transport = self._transport
        if transport is None:
            log.debug("Dropping chat %r: no session", text)
            return
        try:
            transport.chat(text)
        except TransportError as exc:
            log.warning("Chat failed: %s", exc)

    def _release_control(self, transport: GameTransport, control: str) -> None:
        if transport is not self._transport:
            return
        try:
            transport.set_control_state(control, False)
        except TransportError as exc:
            log.debug("Releasing %s failed: %s", control, exc)

    def _swing(self, transport: GameTransport) -> None:
        if transport is not self._transport:
            return
        try:
            transport.swing_arm()
        except TransportError as exc:
            log.debug("Swing failed: %s", exc)

    def _look(self, transport: GameTransport, yaw: float) -> None:
        if transport is not self._transport:
            return
        try:
            transport.look(yaw, 0.0)
        except TransportError as exc:
            log.debug("Look failed: %s", exc)

    def _log_navigation(self, message: str, goal: Optional[Mapping[str, Any]]) -> None:
        log_event(
            bus=self._bus,
            module=MODULE,
            event_type=EventType.NAVIGATION,
            message=message,
            payload={"goal": dict(goal) if goal is not None else None},
        )

    def _on_idle_action(self, action: IdleAction) -> None:
        log_event(
            bus=self._bus,
            module=MODULE,
            event_type=EventType.IDLE_ACTION,
            message=f"Idle: {action.value}",
            payload={"action": action.value},
        )
