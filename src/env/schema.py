# Operator settings dataclasses
# src/env/schema.py

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Tuple


MAX_ADDRESS_HISTORY = 10
DEFAULT_PORT = 25565


@dataclass
class ServerConfig:
    """Game server the agent connects to."""
    host: str = ""            # empty means "not configured yet"
    port: int = DEFAULT_PORT
    version: str = "auto"     # protocol version, "auto" lets the bridge detect it
    auth: str = "offline"     # "offline" or "microsoft"

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    def protocol_version(self) -> Optional[str]:
        """Version string to hand to the transport, None for auto-detect."""
        if not self.version or self.version.lower() == "auto":
            return None
        return self.version


@dataclass
class IdentityConfig:
    username: str = "AFK_Bot"
    operator: str = ""        # in-game player allowed to issue commands


@dataclass
class TriggerRule:
    """Operator-defined (match-text, response-text) pair."""
    trigger: str
    reply: str


@dataclass
class RelayConfig:
    enabled: bool = False
    token: str = ""
    channel_id: int = 0
    forward_chat: bool = False

    def is_usable(self) -> bool:
        return self.enabled and bool(self.token) and "PASTE" not in self.token and self.channel_id > 0


@dataclass
class BridgeConfig:
    """Where the protocol bridge process listens."""
    host: str = "127.0.0.1"
    port: int = 25599
    connect_timeout: float = 5.0


@dataclass
class TimingConfig:
    stealth_delay: Tuple[float, float] = (1.0, 5.0)
    reconnect_backoff: float = 10.0
    idle_interval: Tuple[float, float] = (3.0, 5.0)
    idle_skew: float = 1.0
    reply_stagger: float = 0.5


@dataclass
class AgentSettings:
    """Resolved operator settings, one instance per process."""
    server: ServerConfig = field(default_factory=ServerConfig)
    identity: IdentityConfig = field(default_factory=IdentityConfig)
    timezone: str = "UTC"
    afk_enabled: bool = True
    command_prefix: str = "!"
    triggers: List[TriggerRule] = field(default_factory=list)
    address_history: List[str] = field(default_factory=list)  # most recent first
    relay: RelayConfig = field(default_factory=RelayConfig)
    bridge: BridgeConfig = field(default_factory=BridgeConfig)
    timing: TimingConfig = field(default_factory=TimingConfig)
