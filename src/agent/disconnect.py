# src/agent/disconnect.py
"""
Disconnect-reason normalization.

Kick and disconnect payloads arrive either as a plain string, as a JSON
string, or as a chat-component tree:

    {"text": "...", "extra": [...], "translate": "key", "with": [...]}

`parse_payload` turns any of those into a small tagged tree (Leaf,
TranslatedKey, Sequence) with a depth bound and a cycle guard; `render`
flattens it; `normalize` classifies the flat text. `normalize` never
raises: anything unexpected falls back to a raw serialization and
GENERIC.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Set, Tuple, Union

log = logging.getLogger(__name__)

MAX_DEPTH = 32
MAX_NODES = 2048

# Canonical English phrases for the translation keys we know about.
TRANSLATIONS = {
    "multiplayer.disconnect.banned": "You are banned from this server",
    "multiplayer.disconnect.banned.reason": "You are banned from this server. Reason:",
    "multiplayer.disconnect.kicked": "Kicked by an operator",
    "multiplayer.disconnect.generic": "Disconnected",
    "multiplayer.disconnect.duplicate_login": "You logged in from another location",
}

_BAN_RE = re.compile(r"ban|blacklist", re.IGNORECASE)
_ANTI_BOT_RE = re.compile(
    r"anti[\s_-]?bot|bot[\s_-]?(?:check|detect|protection|filter)|captcha|verif(?:y|ication)|not a robot",
    re.IGNORECASE,
)


class DisconnectClass(Enum):
    BAN = "ban"
    ANTI_BOT_CHALLENGE = "anti_bot_challenge"
    GENERIC = "generic"


@dataclass(frozen=True)
class DisconnectReason:
    text: str
    classification: DisconnectClass

    @property
    def is_ban(self) -> bool:
        return self.classification is DisconnectClass.BAN


# ---------------------------------------------------------------------------
# Tagged tree
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Leaf:
    text: str


@dataclass(frozen=True)
class TranslatedKey:
    key: str
    children: Tuple["Node", ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class Sequence:
    children: Tuple["Node", ...] = field(default_factory=tuple)


Node = Union[Leaf, TranslatedKey, Sequence]


def parse_payload(raw: Any) -> Node:
    """Convert a raw kick payload into a Node tree."""
    if isinstance(raw, str):
        stripped = raw.strip()
        if stripped[:1] in ("{", "["):
            try:
                raw = json.loads(stripped)
            except json.JSONDecodeError:
                return Leaf(raw)
        else:
            return Leaf(raw)
    return _parse(raw, 0, _Walk())


class _Walk:
    """Traversal state: containers on the current path and the node budget left."""

    def __init__(self, budget: int = MAX_NODES) -> None:
        self.active: Set[int] = set()
        self.budget = budget


def _parse(raw: Any, depth: int, walk: _Walk) -> Node:
    # Shared subtrees are walked once per reference, so cap the total.
    walk.budget -= 1
    if depth > MAX_DEPTH or walk.budget < 0:
        return Leaf("")
    if raw is None:
        return Leaf("")
    if isinstance(raw, str):
        return Leaf(raw)
    if isinstance(raw, (int, float, bool)):
        return Leaf(str(raw))

    if isinstance(raw, (dict, list, tuple)):
        if id(raw) in walk.active:
            # Cycle back to an ancestor: stop here.
            return Leaf("")
        walk.active.add(id(raw))
        try:
            if isinstance(raw, dict):
                return _parse_component(raw, depth, walk)
            return Sequence(tuple(_parse(item, depth + 1, walk) for item in raw))
        finally:
            walk.active.discard(id(raw))

    return Leaf(str(raw))


def _parse_component(raw: dict, depth: int, walk: _Walk) -> Node:
    parts: List[Node] = []
    text = raw.get("text")
    if text is not None:
        parts.append(_parse(text, depth + 1, walk))

    key = raw.get("translate")
    if isinstance(key, str):
        args = raw.get("with") or []
        if not isinstance(args, (list, tuple)):
            args = [args]
        parts.append(TranslatedKey(key, tuple(_parse(a, depth + 1, walk) for a in args)))

    extra = raw.get("extra")
    if extra is not None:
        if not isinstance(extra, (list, tuple)):
            extra = [extra]
        parts.extend(_parse(e, depth + 1, walk) for e in extra)

    if len(parts) == 1:
        return parts[0]
    return Sequence(tuple(parts))


def render(node: Node) -> str:
    """Flatten a Node tree into whitespace-collapsed text."""
    pieces: List[str] = []
    _render(node, pieces)
    return " ".join(" ".join(pieces).split())


def _render(node: Node, out: List[str]) -> None:
    if isinstance(node, Leaf):
        out.append(node.text)
    elif isinstance(node, TranslatedKey):
        out.append(TRANSLATIONS.get(node.key, node.key))
        for child in node.children:
            _render(child, out)
    else:
        for child in node.children:
            _render(child, out)


def classify(text: str) -> DisconnectClass:
    if _BAN_RE.search(text):
        return DisconnectClass.BAN
    if _ANTI_BOT_RE.search(text):
        return DisconnectClass.ANTI_BOT_CHALLENGE
    return DisconnectClass.GENERIC


def _raw_text(payload: Any) -> str:
    if isinstance(payload, str):
        return payload
    try:
        return json.dumps(payload, default=str)
    except (TypeError, ValueError):
        # Circular containers and the like.
        try:
            return repr(payload)
        except Exception:
            return "<unrenderable disconnect reason>"


def normalize(payload: Any) -> DisconnectReason:
    """
    Flatten and classify a disconnect/kick payload.

    Never raises; unexpected shapes fall back to a raw serialization of
    the input, classified GENERIC.
    """
    try:
        text = render(parse_payload(payload))
        return DisconnectReason(text=text, classification=classify(text))
    except Exception:
        log.debug("Disconnect payload normalization failed", exc_info=True)
        return DisconnectReason(text=_raw_text(payload), classification=DisconnectClass.GENERIC)
