# src/agent/triggers.py
"""
Trigger-reply engine.

Matching: trigger and incoming text are whitespace-collapsed and
case-folded, then compared as substrings. Every matching rule fires.

A reply may carry several segments separated by REPLY_DELIMITER; they
go out in order, `stagger` seconds apart, starting one stagger after
the triggering line.

TriggerBook is the mutable side: add/remove/list against the rule list
held in the ConfigStore, persisted before the call returns.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional

from env.loader import ConfigStore
from env.schema import TriggerRule

log = logging.getLogger(__name__)

REPLY_DELIMITER = "&&"
DEFAULT_STAGGER_S = 0.5


@dataclass(frozen=True)
class ResponseAction:
    """One outbound chat line and how long after the trigger to send it."""

    text: str
    delay: float
    trigger: str


def normalize_text(text: str) -> str:
    return " ".join(text.split()).casefold()


def split_reply(reply: str) -> List[str]:
    return [seg.strip() for seg in reply.split(REPLY_DELIMITER) if seg.strip()]


def match(incoming: str, rules: Iterable[TriggerRule], stagger: float = DEFAULT_STAGGER_S) -> List[ResponseAction]:
    """Return the response actions for every rule matching `incoming`."""
    haystack = normalize_text(incoming)
    actions: List[ResponseAction] = []
    if not haystack:
        return actions

    for rule in rules:
        needle = normalize_text(rule.trigger)
        if not needle or needle not in haystack:
            continue
        for i, segment in enumerate(split_reply(rule.reply)):
            actions.append(ResponseAction(text=segment, delay=stagger * (i + 1), trigger=rule.trigger))
    return actions


class TriggerBook:
    """Operator-facing rule mutation; every change is persisted synchronously."""

    def __init__(self, store: ConfigStore) -> None:
        self._store = store

    @property
    def rules(self) -> List[TriggerRule]:
        return self._store.settings.triggers

    def add(self, trigger: str, reply: str) -> TriggerRule:
        """
        Add or replace the rule for `trigger` (case-insensitive exact match).

        Raises ValueError on empty input and ConfigPersistError if the
        write fails, in which case the in-memory list is restored.
        """
        trigger, reply = trigger.strip(), reply.strip()
        if not trigger or not reply:
            raise ValueError("trigger and reply must both be non-empty")

        previous = list(self.rules)
        rule = TriggerRule(trigger=trigger, reply=reply)
        key = trigger.casefold()
        self._store.settings.triggers = [r for r in previous if r.trigger.casefold() != key] + [rule]
        self._persist(previous)
        log.info("Trigger set: %r -> %r", trigger, reply)
        return rule

    def remove(self, selector: str) -> Optional[TriggerRule]:
        """
        Remove by 1-based list index ("2") or by trigger text. A quoted
        selector ('"42"') is always trigger text.

        Returns the removed rule, or None when nothing matched.
        """
        selector = selector.strip()
        quoted = len(selector) >= 2 and selector[0] == selector[-1] and selector[0] in "\"'"
        if quoted:
            selector = selector[1:-1].strip()
        previous = list(self.rules)
        removed: Optional[TriggerRule] = None

        if selector.isdigit() and not quoted:
            index = int(selector) - 1
            if 0 <= index < len(previous):
                removed = previous[index]
                remaining = previous[:index] + previous[index + 1:]
            else:
                return None
        else:
            key = selector.casefold()
            remaining = [r for r in previous if r.trigger.casefold() != key]
            if len(remaining) == len(previous):
                return None
            removed = next(r for r in previous if r.trigger.casefold() == key)

        self._store.settings.triggers = remaining
        self._persist(previous)
        log.info("Trigger removed: %r", removed.trigger)
        return removed

    def _persist(self, previous: List[TriggerRule]) -> None:
        try:
            self._store.save()
        except Exception:
            self._store.settings.triggers = previous
            raise
