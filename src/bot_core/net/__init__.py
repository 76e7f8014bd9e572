# bot_core.net package
# src/bot_core/net/__init__.py
"""
Network layer for the presence agent.

This package provides:
- GameTransport protocol (common interface) and event names
- IpcTransport: JSON-lines client for the protocol bridge process
- create_transport_factory wired to operator settings
"""

from __future__ import annotations

from .client import (
    ConnectOptions,
    EventHandler,
    GameTransport,
    TransportError,
    TransportEvent,
    TransportFactory,
    create_transport_factory,
)

__all__ = [
    "ConnectOptions",
    "EventHandler",
    "GameTransport",
    "TransportError",
    "TransportEvent",
    "TransportFactory",
    "create_transport_factory",
]
