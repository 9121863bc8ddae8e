# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Filler word detection.

Two detectors feed the same statistics:
- STT path: per recognized word, gated by recognition confidence and a
  fuzzy match against the configured filler list.
- Rule-based path: batch over a transcript fragment, using list membership
  and regex families for hesitations and habitual words.
"""

import logging
import re
from collections import Counter, deque
from dataclasses import dataclass
from enum import Enum

from rapidfuzz.distance import Levenshtein

from .config import DEFAULT_FILLER_WORDS
from .events import EventChannel
from .script_index import normalize_word

logger = logging.getLogger(__name__)

SENSITIVITY_THRESHOLDS: dict[str, float] = {
    "low": 0.8,
    "medium": 0.6,
    "high": 0.4,
}

RULE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r'^(um+|uh+|er+|ah+)$'),  # Vocal hesitations
    re.compile(r'^(like|you know|so|well)$'),
    re.compile(r'^(basically|actually|literally)$'),
    re.compile(r'^(kinda|sorta|gonna|wanna)$'),
)

RULE_CONFIDENCE: float = 0.8
MAX_ELONGATION: int = 3
VOWELS: frozenset[str] = frozenset("aeiou")


class DetectionMethod(str, Enum):
    STT = "stt"
    RULE_BASED = "rule-based"


@dataclass(frozen=True)
class FillerWordDetection:
    """One detected filler."""
    word: str  # Canonical filler, or the spoken form for regex-only hits
    timestamp: float  # ms
    word_index: int
    confidence: float
    detection_method: DetectionMethod
    position: tuple[int, int]  # Character span within the spoken fragment
    spoken: str = ""


@dataclass(frozen=True)
class FillerWordState:
    detected_fillers: tuple[FillerWordDetection, ...]
    total_filler_count: int
    filler_rate: float  # per minute
    common_fillers: dict[str, int]


def fuzzy_filler_match(word: str, filler: str, min_typo_length: int = 0) -> bool:
    """
    Check whether a spoken word is a form of a canonical filler.

    Matches exactly, as an elongation of a short filler ("ummm" for "um",
    "uhh" for "uh"), or within one edit of the filler ("lik" for "like",
    "hm" for "hmm"). Fillers shorter than min_typo_length only match
    exactly or as elongations.
    """
    if word == filler:
        return True
    if len(filler) <= 3 and word.startswith(filler):
        tail = word[len(filler):]
        if len(tail) <= MAX_ELONGATION and all(
                ch in VOWELS or ch == filler[-1] for ch in tail):
            return True
    return len(filler) >= min_typo_length and Levenshtein.distance(word, filler) <= 1


class FillerWordDetector:
    """
    Accumulates filler-word detections for one session.

    Usage:
        detector = FillerWordDetector(sensitivity="medium")
        detector.start_session(start_ms=0)
        detector.process_stt_word("umm", confidence=0.9, timestamp_ms=1200)
        detector.process_transcript_text("so you know it was like", 5000)
    """

    def __init__(
        self,
        filler_words: list[str] | None = None,
        sensitivity: str = "medium",
        cross_detector_window_ms: float = 0,
        word_spacing_ms: float = 200,
        min_typo_length: int = 0
    ):
        self.filler_words: list[str] = []
        self.set_filler_words(filler_words if filler_words is not None else DEFAULT_FILLER_WORDS)
        self.sensitivity = sensitivity if sensitivity in SENSITIVITY_THRESHOLDS else "medium"
        self.cross_detector_window_ms = max(0.0, float(cross_detector_window_ms))
        self.word_spacing_ms = word_spacing_ms
        self.min_typo_length = max(0, int(min_typo_length))
        self.on_filler: EventChannel[FillerWordDetection] = EventChannel("fillers.detected")
        self.start_session()

    def set_filler_words(self, filler_words: list[str]) -> None:
        words = [normalize_word(w) for w in filler_words]
        self.filler_words = [w for w in dict.fromkeys(words) if w]

    def start_session(self, start_ms: float | None = None) -> None:
        """Clear detections and statistics."""
        self.detections: list[FillerWordDetection] = []
        self.counts: Counter[str] = Counter()
        self.session_start = start_ms
        self.last_timestamp: float | None = None
        self.suppressed_count = 0
        self._recent_stt: deque[FillerWordDetection] = deque(maxlen=64)

    @property
    def confidence_threshold(self) -> float:
        return SENSITIVITY_THRESHOLDS[self.sensitivity]

    def _touch(self, timestamp_ms: float) -> None:
        if self.session_start is None:
            self.session_start = timestamp_ms
        if self.last_timestamp is None or timestamp_ms > self.last_timestamp:
            self.last_timestamp = timestamp_ms

    def match_filler(self, word: str) -> str | None:
        """Canonical filler the word is a form of, if any (single words only)."""
        norm = normalize_word(word)
        if not norm:
            return None
        single = [f for f in self.filler_words if ' ' not in f]
        # Exact and elongated forms win over a one-edit match on another filler
        for filler in single:
            if fuzzy_filler_match(norm, filler, min_typo_length=len(filler) + 1):
                return filler
        typos = [f for f in single if fuzzy_filler_match(norm, f, self.min_typo_length)]
        if not typos:
            return None
        # Same first letter wins a tie ("hm" is "hmm", not "um")
        return min(typos, key=lambda f: f[0] != norm[0])

    def process_stt_word(
        self,
        word: str,
        confidence: float,
        timestamp_ms: float,
        word_index: int = -1
    ) -> FillerWordDetection | None:
        """
        Event-based detection for one recognized word.

        Returns:
            The detection, or None if the word is not a confident filler.
        """
        self._touch(timestamp_ms)
        if confidence < self.confidence_threshold:
            return None
        filler = self.match_filler(word)
        if filler is None:
            return None
        detection = FillerWordDetection(
            word=filler,
            timestamp=timestamp_ms,
            word_index=word_index,
            confidence=confidence,
            detection_method=DetectionMethod.STT,
            position=(0, len(word)),
            spoken=word,
        )
        self._recent_stt.append(detection)
        self._add(detection)
        return detection

    def _rule_match(self, token: str) -> bool:
        return token in self.filler_words or any(p.match(token) for p in RULE_PATTERNS)

    def process_transcript_text(
        self,
        text: str,
        timestamp_ms: float,
        word_index: int = -1
    ) -> list[FillerWordDetection]:
        """
        Rule-based detection over a transcript fragment.

        Token timestamps are interpolated from timestamp_ms at word_spacing_ms
        per token since the fragment has no per-word timing.

        Returns:
            New detections, in fragment order.
        """
        self._touch(timestamp_ms)
        tokens = [(m.start(), m.end(), normalize_word(m.group()))
                  for m in re.finditer(r'\S+', text)]
        found: list[FillerWordDetection] = []
        i = 0
        while i < len(tokens):
            start, end, token = tokens[i]
            consumed = 1
            candidate = None
            # Two-word fillers ("you know") take precedence over their parts
            if i + 1 < len(tokens):
                pair = f"{token} {tokens[i + 1][2]}"
                if self._rule_match(pair):
                    candidate, end, consumed = pair, tokens[i + 1][1], 2
            if candidate is None and token and self._rule_match(token):
                candidate = token

            if candidate is not None:
                ts = timestamp_ms + i * self.word_spacing_ms
                detection = FillerWordDetection(
                    word=candidate,
                    timestamp=ts,
                    word_index=word_index,
                    confidence=RULE_CONFIDENCE,
                    detection_method=DetectionMethod.RULE_BASED,
                    position=(start, end),
                    spoken=text[start:end],
                )
                if self._is_duplicate(detection):
                    self.suppressed_count += 1
                    logger.debug("Suppressed rule-based '%s' (already detected by STT)", candidate)
                else:
                    self._add(detection)
                    found.append(detection)
            i += consumed
        return found

    def _is_duplicate(self, detection: FillerWordDetection) -> bool:
        if self.cross_detector_window_ms <= 0:
            return False
        return any(
            prior.word == detection.word
            and abs(prior.timestamp - detection.timestamp) <= self.cross_detector_window_ms
            for prior in self._recent_stt
        )

    def _add(self, detection: FillerWordDetection) -> None:
        self.detections.append(detection)
        self.counts[detection.word] += 1
        self.on_filler.emit(detection)

    @property
    def total_filler_count(self) -> int:
        return len(self.detections)

    def filler_rate(self, now_ms: float | None = None) -> float:
        """Fillers per minute of session time."""
        now = now_ms if now_ms is not None else self.last_timestamp
        if self.session_start is None or now is None:
            return 0.0
        minutes = (now - self.session_start) / 60000.0
        if minutes <= 0:
            return 0.0
        return len(self.detections) / minutes

    def get_recent_fillers(self, seconds: float = 30, now_ms: float | None = None
                           ) -> list[FillerWordDetection]:
        """Detections within the last `seconds` of session time."""
        now = now_ms if now_ms is not None else self.last_timestamp
        if now is None:
            return []
        cutoff = now - seconds * 1000.0
        return [d for d in self.detections if d.timestamp >= cutoff]

    def get_most_common_fillers(self, limit: int = 5) -> list[tuple[str, int]]:
        return self.counts.most_common(limit)

    def state(self, now_ms: float | None = None) -> FillerWordState:
        return FillerWordState(
            detected_fillers=tuple(self.detections),
            total_filler_count=self.total_filler_count,
            filler_rate=self.filler_rate(now_ms),
            common_fillers=dict(self.counts),
        )
