# src/agent/challenges.py
"""
Verification challenge detection.

Each text matcher is a pure function `str -> Optional[ChallengeResponse]`;
ChallengeSolver runs all of them, in order, against every inbound line
and returns one ChallengeEvent per matcher that fired. Window-open
events go through `inspect_window`.

The solver only decides. Executing the response (chat, control pulse,
window click, session restart) is the controller's job, since it owns
the transport.
"""

from __future__ import annotations

import random
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple


class ChallengeKind(Enum):
    COMMAND = "command"
    ARITHMETIC = "arithmetic"
    INSTRUCTION = "instruction"
    GUI_ITEM = "gui_item"
    DISCONNECT_PHRASE = "disconnect_phrase"


class ResponseType(Enum):
    CHAT = "chat"            # payload: {"text"}
    CONTROL = "control"      # payload: {"control", "duration"}
    CLICK = "click"          # payload: {"slot"}
    RESTART = "restart"      # payload: {}


@dataclass(frozen=True)
class ChallengeResponse:
    kind: ChallengeKind
    type: ResponseType
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ChallengeEvent:
    """Transient record of one detected challenge. Never persisted."""

    source: str
    kind: ChallengeKind
    response: ChallengeResponse

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "kind": self.kind.value,
            "response": self.response.type.value,
            "payload": dict(self.response.payload),
        }


@dataclass(frozen=True)
class WindowSlot:
    index: int
    name: str = ""
    display_name: str = ""
    lore: Tuple[str, ...] = ()

    @property
    def empty(self) -> bool:
        return not self.name

    def text(self) -> str:
        return " ".join((self.display_name, self.name, *self.lore)).lower()

    @classmethod
    def from_payload(cls, raw: Mapping[str, Any], default_index: int) -> "WindowSlot":
        lore = raw.get("lore") or ()
        if isinstance(lore, str):
            lore = (lore,)
        return cls(
            index=int(raw.get("slot", default_index)),
            name=str(raw.get("name") or ""),
            display_name=str(raw.get("display_name") or raw.get("displayName") or ""),
            lore=tuple(str(line) for line in lore),
        )


# ---------------------------------------------------------------------------
# Text matchers
# ---------------------------------------------------------------------------

_COMMAND_RE = re.compile(r"(/(?:verify|captcha|register|confirm)\s+[A-Za-z0-9_\-]+)", re.IGNORECASE)
_ARITHMETIC_RE = re.compile(r"(-?\d+)\s*([^\s\d=?])\s*(-?\d+)\s*=\s*\?")
_DISCONNECT_RE = re.compile(
    r"\byou\s+(?:left|were\s+kicked|(?:were\s+|have\s+been\s+)?disconnected)\b",
    re.IGNORECASE,
)
# Leading speaker of a chat line, after any "[Rank]" tags:
#   "<Steve> hi", "[Member] Steve: hi", "[VIP] <Steve> hi", "Steve » hi"
_SPEAKER_RE = re.compile(
    r"^\s*(?:\[[^\]]{1,32}\]\s*)*(?:<([A-Za-z0-9_]{1,16})>|([A-Za-z0-9_]{1,16})\s*(?::|»|>>)(?=\s|$))"
)

# Only these three are supported; anything else (e.g. "/") gets no answer.
_OPERATORS: Dict[str, Callable[[int, int], int]] = {
    "+": lambda a, b: a + b,
    "-": lambda a, b: a - b,
    "−": lambda a, b: a - b,  # unicode minus
    "*": lambda a, b: a * b,
    "x": lambda a, b: a * b,
    "×": lambda a, b: a * b,  # multiplication sign
}

JUMP_PULSE_S = 0.4
SNEAK_PULSE_RANGE_S = (1.5, 2.0)

GUI_TITLE_KEYWORDS = ("verify", "verification", "captcha", "bot", "human")
GUI_ITEM_KEYWORDS = ("click", "verify", "confirm", "captcha", "human", "robot")


def match_command(text: str) -> Optional[ChallengeResponse]:
    m = _COMMAND_RE.search(text)
    if m is None:
        return None
    return ChallengeResponse(ChallengeKind.COMMAND, ResponseType.CHAT, {"text": m.group(1)})


def match_arithmetic(text: str) -> Optional[ChallengeResponse]:
    m = _ARITHMETIC_RE.search(text)
    if m is None:
        return None
    op = _OPERATORS.get(m.group(2).lower())
    if op is None:
        return None
    result = op(int(m.group(1)), int(m.group(3)))
    return ChallengeResponse(ChallengeKind.ARITHMETIC, ResponseType.CHAT, {"text": str(result)})


def make_instruction_matcher(rng: random.Random) -> Callable[[str], Optional[ChallengeResponse]]:
    """The sneak pulse length is randomized, so this matcher carries an rng."""

    def match_instruction(text: str) -> Optional[ChallengeResponse]:
        lowered = text.lower()
        if "jump to verify" in lowered:
            return ChallengeResponse(
                ChallengeKind.INSTRUCTION,
                ResponseType.CONTROL,
                {"control": "jump", "duration": JUMP_PULSE_S},
            )
        if "sneak to verify" in lowered:
            return ChallengeResponse(
                ChallengeKind.INSTRUCTION,
                ResponseType.CONTROL,
                {"control": "sneak", "duration": rng.uniform(*SNEAK_PULSE_RANGE_S)},
            )
        return None

    return match_instruction


def chat_speaker(text: str) -> Optional[str]:
    """Name of the player a rendered chat line is attributed to, if any."""
    m = _SPEAKER_RE.match(text)
    if m is None:
        return None
    return m.group(1) or m.group(2)


def match_disconnect_phrase(text: str) -> Optional[ChallengeResponse]:
    if _DISCONNECT_RE.search(text) is None:
        return None
    return ChallengeResponse(ChallengeKind.DISCONNECT_PHRASE, ResponseType.RESTART, {})


def choose_window_slot(title: str, slots: Sequence[WindowSlot]) -> Optional[int]:
    """
    Pick the slot to click in a verification window, or None.

    First slot whose name/lore carries a click keyword wins. With no
    keyword hit, a lone item is clicked; several items are ambiguous and
    left alone.
    """
    if not any(k in title.lower() for k in GUI_TITLE_KEYWORDS):
        return None

    filled = [s for s in slots if not s.empty]
    for slot in filled:
        text = slot.text()
        if any(k in text for k in GUI_ITEM_KEYWORDS):
            return slot.index
    if len(filled) == 1:
        return filled[0].index
    return None


# ---------------------------------------------------------------------------
# Solver
# ---------------------------------------------------------------------------


class ChallengeSolver:
    """
    Ordered list of independent matchers; more than one may fire per line.

    The disconnect phrase only counts when the server says it. Player
    chat never restarts the session.
    """

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self._server_matchers: List[Callable[[str], Optional[ChallengeResponse]]] = [
            match_disconnect_phrase,
        ]
        self._matchers: List[Callable[[str], Optional[ChallengeResponse]]] = [
            match_command,
            match_arithmetic,
            make_instruction_matcher(rng or random.Random()),
        ]

    def inspect_text(self, text: str, *, player_chat: bool = False) -> List[ChallengeEvent]:
        matchers = self._matchers if player_chat else self._server_matchers + self._matchers
        events: List[ChallengeEvent] = []
        for matcher in matchers:
            response = matcher(text)
            if response is not None:
                events.append(ChallengeEvent(source=text, kind=response.kind, response=response))
        return events

    def inspect_window(self, title: str, slots: Sequence[WindowSlot]) -> Optional[ChallengeEvent]:
        index = choose_window_slot(title, slots)
        if index is None:
            return None
        response = ChallengeResponse(ChallengeKind.GUI_ITEM, ResponseType.CLICK, {"slot": index})
        return ChallengeEvent(source=title, kind=ChallengeKind.GUI_ITEM, response=response)
