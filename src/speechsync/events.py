# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Word events and a small typed observer channel.

Components publish results through an EventChannel; subscribers get back an
unsubscribe callable that is safe to call any number of times.
"""

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Unsubscribe = Callable[[], None]


@dataclass(frozen=True)
class WordEvent:
    """A single recognized word from the recognition collaborator."""
    word: str
    confidence: float
    timestamp_ms: float
    is_final: bool = True


def sanitize_word_event(event: object) -> WordEvent | None:
    """
    Validate an incoming word event.

    Confidence outside [0, 1] is clamped. Events with a non-string word or a
    non-finite timestamp/confidence are rejected.

    Returns:
        A usable WordEvent, or None if the event is malformed.
    """
    if not isinstance(event, WordEvent):
        return None
    if not isinstance(event.word, str) or not event.word.strip():
        return None
    try:
        timestamp = float(event.timestamp_ms)
        confidence = float(event.confidence)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(timestamp) or not math.isfinite(confidence):
        return None

    clamped = min(max(confidence, 0.0), 1.0)
    if clamped == event.confidence and timestamp == event.timestamp_ms:
        return event
    return WordEvent(event.word, clamped, timestamp, event.is_final)


class EventChannel(Generic[T]):
    """
    Typed publish/subscribe channel.

    Usage:
        channel: EventChannel[WordMatch] = EventChannel("matches")
        unsubscribe = channel.subscribe(handle_match)
        channel.emit(match)
        unsubscribe()
    """

    def __init__(self, name: str = "") -> None:
        self.name = name
        self._subscribers: list[Callable[[T], None]] = []

    def subscribe(self, callback: Callable[[T], None]) -> Unsubscribe:
        """
        Register a callback.

        Returns:
            Idempotent function removing this subscription.
        """
        self._subscribers.append(callback)
        active = True

        def unsubscribe() -> None:
            nonlocal active
            if not active:
                return
            active = False
            try:
                self._subscribers.remove(callback)
            except ValueError:
                pass

        return unsubscribe

    def emit(self, value: T) -> None:
        """Deliver value to every subscriber, in subscription order."""
        for callback in list(self._subscribers):
            try:
                callback(value)
            except Exception as e:
                logger.error("Subscriber error on channel %s: %s", self.name, e,
                             exc_info=True)

    def clear(self) -> None:
        """Drop all subscribers."""
        self._subscribers.clear()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
