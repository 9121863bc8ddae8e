# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Karaoke alignment: places each recognized word at a position in the script.

The aligner keeps a forward cursor (the next expected script word) and only
looks a few words ahead of it, so misrecognitions cannot drag the display
backwards or across the script. Numeric script tokens match their spoken
forms, and a run of unmatched words triggers a forward-only re-sync against
the upcoming script text.
"""

import logging
import math
from collections import deque
from dataclasses import dataclass

from rapidfuzz import fuzz

from .events import EventChannel, WordEvent
from .expansions import ExpansionMatcher
from .script_index import ScriptIndex, normalize_word

logger = logging.getLogger(__name__)

MIN_MATCH_THRESHOLD: float = 0.3
MAX_MATCH_THRESHOLD: float = 1.0


@dataclass(frozen=True)
class WordMatch:
    """Verdict for one spoken word."""
    word_index: int  # Matched script index, or the cursor when unmatched
    similarity: float  # 0.0 - 1.0
    matched: bool
    is_exact: bool
    spoken_word: str
    script_word: str
    timestamp: float  # ms, from the word event
    confidence: float = 1.0
    advanced: bool = False  # True if this verdict moved the cursor
    resync: bool = False  # True if found by forward re-sync


@dataclass(frozen=True)
class KaraokeState:
    """Snapshot of alignment progress."""
    current_word_index: int
    highlighted_words: frozenset[int]
    accuracy: float  # percent, 0 - 100
    words_per_minute: float
    matched_count: int = 0
    unmatched_count: int = 0
    current_sentence: int = 0
    current_paragraph: int = 0


class KaraokeAligner:
    """
    Matches a stream of spoken words against a ScriptIndex.

    Usage:
        aligner = KaraokeAligner(script)
        match = aligner.process_word(WordEvent("hello", 0.9, 1200.0))
        state = aligner.state(now_ms=1300.0)
    """

    def __init__(
        self,
        script: ScriptIndex,
        match_threshold: float = 0.7,
        window_size: int = 10,
        highlight_duration: float = 1500,
        fade_out_delay: float = 500,
        max_unmatched_before_skip: int = 4,
        max_skip_distance: int = 30,
        history_capacity: int = 1000
    ):
        """
        Initialize the aligner.

        Args:
            script: Indexed script to align against
            match_threshold: Minimum similarity (0.3 - 1.0) to accept a match
            window_size: Number of script words searched ahead of the cursor
            highlight_duration: How long a matched word stays fully highlighted (ms)
            fade_out_delay: Fade time after highlight_duration (ms)
            max_unmatched_before_skip: Consecutive misses before a forward
                re-sync is tried (0 disables re-sync)
            max_skip_distance: Furthest the re-sync may move the cursor
            history_capacity: Number of WordMatch verdicts kept
        """
        self.script = script
        self.match_threshold = self._clamp_threshold(match_threshold)
        self.window_size = max(1, int(window_size))
        self.highlight_duration = max(0.0, float(highlight_duration))
        self.fade_out_delay = max(0.0, float(fade_out_delay))
        self.max_unmatched_before_skip = max(0, int(max_unmatched_before_skip))
        self.max_skip_distance = max(1, int(max_skip_distance))

        self.on_match: EventChannel[WordMatch] = EventChannel("karaoke.match")
        self.history: deque[WordMatch] = deque(maxlen=history_capacity)

        self._expansions = ExpansionMatcher(script)
        self._recent_unmatched: deque[str] = deque(
            maxlen=max(1, self.max_unmatched_before_skip))
        self.reset()

    @staticmethod
    def _clamp_threshold(value: float) -> float:
        if not math.isfinite(value):
            return 0.7
        clamped = min(max(value, MIN_MATCH_THRESHOLD), MAX_MATCH_THRESHOLD)
        if clamped != value:
            logger.warning("match_threshold %.2f clamped to %.2f", value, clamped)
        return clamped

    def reset(self, start_ms: float | None = None) -> None:
        """Return to the start of the script and clear all counters."""
        self.cursor = 0
        self.matched_count = 0
        self.unmatched_count = 0
        self.consecutive_unmatched = 0
        self.resync_count = 0
        self.start_ms = start_ms
        self.last_timestamp: float | None = None
        self._highlights: dict[int, float] = {}
        self._recent_unmatched.clear()
        self._expansions.clear()
        self.history.clear()

    def jump_to(self, word_index: int) -> None:
        """
        Move the cursor to an explicit script position.

        Args:
            word_index: Index of the next word expected to be spoken
        """
        self.cursor = min(max(0, word_index), len(self.script))
        self.consecutive_unmatched = 0
        self._recent_unmatched.clear()
        self._expansions.clear()
        logger.debug("Aligner jumped to %d", self.cursor)

    def set_match_threshold(self, value: float) -> None:
        self.match_threshold = self._clamp_threshold(value)

    def _similarity(self, spoken: str, index: int) -> tuple[float, bool, bool]:
        """
        Score a spoken word against one script word.

        Returns:
            Tuple of (similarity 0-1, is_exact, via_expansion)
        """
        script_word = self.script[index].word
        if spoken == script_word:
            return 1.0, True, False
        if spoken in self._expansions.first_words(index):
            return 1.0, True, True
        return fuzz.ratio(spoken, script_word) / 100.0, False, False

    def _search_window(self, spoken: str) -> tuple[int, float, bool, bool]:
        """Best match in [cursor, cursor + window_size). Earliest wins ties."""
        best_index = -1
        best_score = 0.0
        best_exact = False
        best_expansion = False
        end = min(self.cursor + self.window_size, len(self.script))
        for i in range(self.cursor, end):
            score, exact, via_expansion = self._similarity(spoken, i)
            if exact:
                return i, score, True, via_expansion
            if score > best_score:
                best_index, best_score = i, score
                best_exact, best_expansion = exact, via_expansion
        return best_index, best_score, best_exact, best_expansion

    def process_word(self, event: WordEvent) -> WordMatch:
        """
        Align one spoken word.

        Args:
            event: Recognized word (already validated)

        Returns:
            WordMatch verdict. Unmatched verdicts carry the unchanged cursor.
        """
        if self.start_ms is None:
            self.start_ms = event.timestamp_ms
        self.last_timestamp = event.timestamp_ms
        spoken = normalize_word(event.word)

        # Continue a numeric token that is being spoken as several words
        if self._expansions.is_active:
            index = self._expansions.active_index
            if self._expansions.continue_with(spoken) and index is not None:
                return self._record(WordMatch(
                    word_index=index, similarity=1.0, matched=True, is_exact=True,
                    spoken_word=event.word, script_word=self.script[index].word,
                    timestamp=event.timestamp_ms, confidence=event.confidence,
                ), count=False)

        index, score, exact, via_expansion = (
            self._search_window(spoken) if spoken else (-1, 0.0, False, False))

        if index >= 0 and score >= self.match_threshold:
            if via_expansion:
                self._expansions.start(index, spoken)
            self.cursor = index + 1
            self.consecutive_unmatched = 0
            self._recent_unmatched.clear()
            return self._record(WordMatch(
                word_index=index, similarity=score, matched=True, is_exact=exact,
                spoken_word=event.word, script_word=self.script[index].word,
                timestamp=event.timestamp_ms, confidence=event.confidence,
                advanced=True,
            ))

        self.consecutive_unmatched += 1
        if spoken:
            self._recent_unmatched.append(spoken)

        if (self.max_unmatched_before_skip
                and self.consecutive_unmatched >= self.max_unmatched_before_skip):
            resync = self._try_resync(event)
            if resync is not None:
                return resync

        logger.debug("No alignment for '%s' near %d (best %.2f)", spoken, self.cursor, score)
        return self._record(WordMatch(
            word_index=self.cursor, similarity=max(score, 0.0), matched=False,
            is_exact=False, spoken_word=event.word,
            script_word=self.script[self.cursor].word if self.cursor < len(self.script) else "",
            timestamp=event.timestamp_ms, confidence=event.confidence,
        ))

    def _try_resync(self, event: WordEvent) -> WordMatch | None:
        """
        Look for the recent unmatched words further ahead in the script.

        Scores windows with token_set_ratio like a phrase search, then
        requires at least half the spoken words to match individually so a
        single common word cannot trigger a skip.
        """
        spoken_words = list(self._recent_unmatched)
        if not spoken_words:
            return None
        spoken_text = ' '.join(spoken_words)
        span = len(spoken_words)
        words = self.script.normalized_words
        search_end = min(len(words), self.cursor + self.max_skip_distance)
        needed = max(1, math.ceil(span / 2))
        word_threshold = self.match_threshold * 100

        best: tuple[float, int] | None = None
        for i in range(self.cursor, search_end):
            window = words[i:i + span]
            score = fuzz.token_set_ratio(spoken_text, ' '.join(window))
            if len(window) < span:
                score *= len(window) / span
            if score < word_threshold or (best is not None and score <= best[0]):
                continue
            hits = sum(1 for w in spoken_words
                       if any(w == s or fuzz.ratio(w, s) >= word_threshold for s in window))
            if hits >= needed:
                best = (score, i)

        if best is None:
            return None

        score, start = best
        window_end = min(start + span, len(words))
        # Land after the last window word the speaker actually said
        landing = window_end - 1
        for j in range(window_end - 1, start - 1, -1):
            if spoken_words[-1] == words[j] or fuzz.ratio(spoken_words[-1], words[j]) >= word_threshold:
                landing = j
                break

        logger.info("Re-sync: cursor %d -> %d after %d unmatched words (score %.0f)",
                    self.cursor, landing + 1, self.consecutive_unmatched, score)
        self.cursor = landing + 1
        self.consecutive_unmatched = 0
        self.resync_count += 1
        self._recent_unmatched.clear()
        self._expansions.clear()
        return self._record(WordMatch(
            word_index=landing, similarity=score / 100.0, matched=True, is_exact=False,
            spoken_word=event.word, script_word=words[landing],
            timestamp=event.timestamp_ms, confidence=event.confidence,
            advanced=True, resync=True,
        ))

    def _record(self, match: WordMatch, count: bool = True) -> WordMatch:
        self.history.append(match)
        if match.matched:
            if count:
                self.matched_count += 1
            self._highlights[match.word_index] = match.timestamp
            self.on_match.emit(match)
        else:
            self.unmatched_count += 1
        return match

    @property
    def current_word_index(self) -> int:
        return self.cursor

    @property
    def accuracy(self) -> float:
        """Matched words as a percentage of script words covered so far."""
        if self.cursor == 0:
            return 0.0
        return min(100.0, 100.0 * self.matched_count / self.cursor)

    def words_per_minute(self, now_ms: float | None = None) -> float:
        """Matched words per minute since the session started (event time)."""
        now = now_ms if now_ms is not None else self.last_timestamp
        if self.start_ms is None or now is None:
            return 0.0
        elapsed_min = (now - self.start_ms) / 60000.0
        if elapsed_min <= 0:
            return 0.0
        return self.matched_count / elapsed_min

    def highlight_opacity(self, index: int, now_ms: float) -> float:
        """
        Fade level for a highlighted word: 1.0 during highlight_duration,
        then linear down to 0.0 over fade_out_delay.
        """
        matched_at = self._highlights.get(index)
        if matched_at is None:
            return 0.0
        age = now_ms - matched_at
        if age <= self.highlight_duration:
            return 1.0
        if self.fade_out_delay <= 0:
            return 0.0
        return max(0.0, 1.0 - (age - self.highlight_duration) / self.fade_out_delay)

    def highlighted_words(self, now_ms: float | None = None) -> frozenset[int]:
        """Indices still within their highlight + fade window at now_ms."""
        now = now_ms if now_ms is not None else self.last_timestamp
        if now is None:
            return frozenset()
        lifetime = self.highlight_duration + self.fade_out_delay
        expired = [i for i, ts in self._highlights.items() if now - ts > lifetime]
        for i in expired:
            del self._highlights[i]
        return frozenset(self._highlights)

    def state(self, now_ms: float | None = None) -> KaraokeState:
        """Current KaraokeState."""
        anchor = self.script.get(max(0, self.cursor - 1))
        return KaraokeState(
            current_word_index=self.cursor,
            highlighted_words=self.highlighted_words(now_ms),
            accuracy=self.accuracy,
            words_per_minute=self.words_per_minute(now_ms),
            matched_count=self.matched_count,
            unmatched_count=self.unmatched_count,
            current_sentence=anchor.sentence_index if anchor else 0,
            current_paragraph=anchor.paragraph_index if anchor else 0,
        )
