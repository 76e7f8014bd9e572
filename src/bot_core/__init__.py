# bot_core package
# src/bot_core/__init__.py
"""
Game transport layer.

Exports:
    - GameTransport: protocol every transport implements
    - TransportEvent: inbound event names
    - TransportError: raised by outbound calls that cannot be carried out
    - ConnectOptions: per-attempt connection parameters
"""

from __future__ import annotations

from .net import ConnectOptions, GameTransport, TransportError, TransportEvent

__all__ = [
    "ConnectOptions",
    "GameTransport",
    "TransportError",
    "TransportEvent",
]
