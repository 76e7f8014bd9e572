from __future__ import annotations

import os
import tempfile
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List

import yaml

from .schema import (
    DEFAULT_PORT,
    MAX_ADDRESS_HISTORY,
    AgentSettings,
    BridgeConfig,
    IdentityConfig,
    RelayConfig,
    ServerConfig,
    TimingConfig,
    TriggerRule,
)


PROJECT_ROOT = Path(__file__).resolve().parents[2]
CONFIG_ROOT = PROJECT_ROOT / "config"
DEFAULT_CONFIG_PATH = CONFIG_ROOT / "agent.yaml"


class ConfigError(ValueError):
    """Settings file is missing or malformed. Fatal at startup."""


class ConfigPersistError(OSError):
    """Settings could not be written back to disk."""


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _load_yaml(path: Path) -> Dict[str, Any]:
    """Load a YAML mapping, treating an empty file as an empty mapping."""
    if not path.exists():
        raise ConfigError(f"Missing config file: {path}")
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Expected mapping at top of {path}, got {type(data).__name__}")
    return data


def _section(raw: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{name}' must be a mapping, got {type(value).__name__}")
    return value


def _pair(value: Any, name: str, default: tuple[float, float]) -> tuple[float, float]:
    if value is None:
        return default
    if not isinstance(value, (list, tuple)) or len(value) != 2:
        raise ConfigError(f"timing.{name} must be a [min, max] pair")
    low, high = float(value[0]), float(value[1])
    if low < 0 or high < low:
        raise ConfigError(f"timing.{name} must satisfy 0 <= min <= max, got {value!r}")
    return low, high


def _parse_triggers(raw: Any) -> List[TriggerRule]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ConfigError("'triggers' must be a list")
    rules: List[TriggerRule] = []
    for entry in raw:
        if not isinstance(entry, dict) or "trigger" not in entry or "reply" not in entry:
            raise ConfigError(f"Invalid trigger entry: {entry!r}")
        rules.append(TriggerRule(trigger=str(entry["trigger"]), reply=str(entry["reply"])))
    return rules


def settings_from_dict(raw: Dict[str, Any]) -> AgentSettings:
    """Build AgentSettings from a raw mapping, validating as we go."""
    server_raw = _section(raw, "server")
    identity_raw = _section(raw, "identity")
    relay_raw = _section(raw, "relay")
    bridge_raw = _section(raw, "bridge")
    timing_raw = _section(raw, "timing")

    try:
        server = ServerConfig(
            host=str(server_raw.get("host") or ""),
            port=int(server_raw.get("port") or DEFAULT_PORT),
            version=str(server_raw.get("version") or "auto"),
            auth=str(server_raw.get("auth") or "offline"),
        )
        relay = RelayConfig(
            enabled=bool(relay_raw.get("enabled", False)),
            token=str(relay_raw.get("token") or ""),
            channel_id=int(relay_raw.get("channel_id") or 0),
            forward_chat=bool(relay_raw.get("forward_chat", False)),
        )
        bridge = BridgeConfig(
            host=str(bridge_raw.get("host") or "127.0.0.1"),
            port=int(bridge_raw.get("port") or 25599),
            connect_timeout=float(bridge_raw.get("connect_timeout") or 5.0),
        )
        defaults = TimingConfig()
        timing = TimingConfig(
            stealth_delay=_pair(timing_raw.get("stealth_delay"), "stealth_delay", defaults.stealth_delay),
            reconnect_backoff=float(timing_raw.get("reconnect_backoff", defaults.reconnect_backoff)),
            idle_interval=_pair(timing_raw.get("idle_interval"), "idle_interval", defaults.idle_interval),
            idle_skew=float(timing_raw.get("idle_skew", defaults.idle_skew)),
            reply_stagger=float(timing_raw.get("reply_stagger", defaults.reply_stagger)),
        )
    except (TypeError, ValueError) as exc:
        if isinstance(exc, ConfigError):
            raise
        raise ConfigError(f"Invalid value in settings: {exc}") from exc

    if not 0 < server.port < 65536:
        raise ConfigError(f"server.port out of range: {server.port}")

    history = [str(a) for a in (raw.get("address_history") or [])][:MAX_ADDRESS_HISTORY]

    prefix = str(raw.get("command_prefix") or "!")
    if len(prefix) != 1 or prefix.isspace():
        raise ConfigError(f"command_prefix must be a single character, got {prefix!r}")

    return AgentSettings(
        server=server,
        identity=IdentityConfig(
            username=str(identity_raw.get("username") or "AFK_Bot"),
            operator=str(identity_raw.get("operator") or ""),
        ),
        timezone=str(raw.get("timezone") or "UTC"),
        afk_enabled=bool(raw.get("afk_enabled", True)),
        command_prefix=prefix,
        triggers=_parse_triggers(raw.get("triggers")),
        address_history=history,
        relay=relay,
        bridge=bridge,
        timing=timing,
    )


def settings_to_dict(settings: AgentSettings) -> Dict[str, Any]:
    """Inverse of settings_from_dict, YAML-safe (tuples become lists)."""
    data = asdict(settings)
    timing = data["timing"]
    timing["stealth_delay"] = list(timing["stealth_delay"])
    timing["idle_interval"] = list(timing["idle_interval"])
    return data


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_settings(path: Path | None = None) -> AgentSettings:
    """Main entry point: returns fully resolved AgentSettings."""
    return settings_from_dict(_load_yaml(path or DEFAULT_CONFIG_PATH))


class ConfigStore:
    """
    Owns the live AgentSettings and writes them back to disk.

    Mutating commands change `settings` in place and then call save().
    save() raises ConfigPersistError when the write fails, so callers can
    report it and roll back instead of pretending the change stuck.
    """

    def __init__(self, path: Path, settings: AgentSettings) -> None:
        self.path = path
        self.settings = settings

    @classmethod
    def load(cls, path: Path | None = None) -> "ConfigStore":
        path = path or DEFAULT_CONFIG_PATH
        return cls(path, load_settings(path))

    def save(self) -> None:
        """Persist settings atomically (temp file + replace)."""
        data = settings_to_dict(self.settings)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent)
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    yaml.safe_dump(data, f, sort_keys=False, allow_unicode=True)
                os.replace(tmp_name, self.path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as exc:
            raise ConfigPersistError(f"Failed to write {self.path}: {exc}") from exc

    def record_address(self, host: str, port: int) -> None:
        """Set the active server and push it onto the capped history (no save)."""
        self.settings.server.host = host
        self.settings.server.port = port
        address = f"{host}:{port}"
        history = [a for a in self.settings.address_history if a != address]
        history.insert(0, address)
        self.settings.address_history = history[:MAX_ADDRESS_HISTORY]
