# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Adapters between speech recognizers and the engine's WordEvent stream.

Recognizers usually report cumulative text ("hello", "hello world", ...)
rather than single words. TranscriptWordSplitter turns that into WordEvents,
and ReplaySource plays recorded WordEvents back through the same
subscribe/unsubscribe contract a live recognizer uses.
"""

import json
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .events import EventChannel, Unsubscribe, WordEvent
from .script_index import normalize_word

logger = logging.getLogger(__name__)


@dataclass
class TranscriptionResult:
    """Represents a transcription result from any recognizer."""

    text: str
    is_partial: bool
    confidence: float = 1.0

    def __repr__(self) -> str:
        status: str = "partial" if self.is_partial else "final"
        return f"TranscriptionResult({status}: '{self.text}')"


class TranscriptWordSplitter:
    """
    Splits cumulative transcripts into per-word events.

    Partial results emit interim events for the words past the part that is
    unchanged since the previous partial. A final result emits every word of
    the utterance as final events and starts a new utterance. Timestamps are
    spread word_spacing_ms apart, ending at the result's timestamp, and are
    kept strictly increasing.
    """

    def __init__(self, word_spacing_ms: float = 200.0) -> None:
        self.word_spacing_ms = word_spacing_ms
        self.reset()

    def reset(self) -> None:
        self._partial_words: list[str] = []
        self._last_ts: float | None = None

    def split(self, result: TranscriptionResult, timestamp_ms: float) -> list[WordEvent]:
        words = [w for w in result.text.split() if w.strip()]
        if result.is_partial:
            previous = self._partial_words
            common = 0
            for cur, last in zip(words, previous):
                if normalize_word(cur) != normalize_word(last):
                    break
                common += 1
            new_words = words[common:]
            self._partial_words = words
        else:
            new_words = words
            self._partial_words = []

        events: list[WordEvent] = []
        base = timestamp_ms - (len(new_words) - 1) * self.word_spacing_ms
        for i, word in enumerate(new_words):
            ts = base + i * self.word_spacing_ms
            if self._last_ts is not None and ts <= self._last_ts:
                ts = self._last_ts + 1.0
            self._last_ts = ts
            events.append(WordEvent(word, result.confidence, ts, is_final=not result.is_partial))
        return events


class ReplaySource:
    """Recognition source that replays recorded WordEvents."""

    def __init__(self, events: Iterable[WordEvent]) -> None:
        self.events: list[WordEvent] = list(events)
        self._channel: EventChannel[WordEvent] = EventChannel("replay.words")

    def subscribe(self, callback: Callable[[WordEvent], None]) -> Unsubscribe:
        return self._channel.subscribe(callback)

    @property
    def subscriber_count(self) -> int:
        return self._channel.subscriber_count

    def play(self, before_each: Callable[[WordEvent], None] | None = None) -> int:
        """
        Emit every event in order.

        Args:
            before_each: Called before each event is emitted (e.g. to run
                display ticks up to the event's time)

        Returns:
            Number of events emitted
        """
        for event in self.events:
            if before_each is not None:
                before_each(event)
            self._channel.emit(event)
        return len(self.events)


def _event_from_dict(item: Any) -> WordEvent | None:
    if not isinstance(item, dict):
        return None
    word = item.get("word")
    timestamp = item.get("timestampMs", item.get("timestamp_ms", item.get("timestamp")))
    confidence = item.get("confidence", 1.0)
    is_final = item.get("isFinal", item.get("is_final", True))
    if not isinstance(word, str) or not isinstance(timestamp, (int, float)):
        return None
    if not isinstance(confidence, (int, float)):
        return None
    return WordEvent(word, float(confidence), float(timestamp), bool(is_final))


def load_word_events(path: Path) -> list[WordEvent]:
    """
    Load recorded word events.

    Accepts a JSON list, a JSON object with an "events" list, or JSON lines.
    Each item needs "word" and "timestampMs" (or "timestamp_ms");
    "confidence" defaults to 1.0 and "isFinal" to true. Malformed items are
    skipped with a warning.

    Raises:
        OSError: If the file cannot be read
        ValueError: If the file is not valid JSON / JSON lines
    """
    text = Path(path).read_text(encoding='utf-8')
    stripped = text.strip()
    items: list[Any]
    if not stripped:
        items = []
    elif stripped[0] in '[{' and not (stripped[0] == '{' and '\n{' in stripped):
        data = json.loads(stripped)
        items = data.get("events", []) if isinstance(data, dict) else data
    else:
        items = [json.loads(line) for line in stripped.splitlines() if line.strip()]

    events: list[WordEvent] = []
    for n, item in enumerate(items):
        event = _event_from_dict(item)
        if event is None:
            logger.warning("Skipping malformed word event #%d in %s", n, path)
            continue
        events.append(event)
    return events


def save_word_events(events: Iterable[WordEvent], path: Path) -> Path:
    """Write word events as a JSON list (the format load_word_events reads)."""
    payload = [
        {"word": e.word, "confidence": e.confidence,
         "timestampMs": e.timestamp_ms, "isFinal": e.is_final}
        for e in events
    ]
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2), encoding='utf-8')
    return path
