# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
A practice session: one script, one speaker, one report.

PracticeSession owns every mutable piece of engine state (aligner cursor,
pace and filler buffers, scroll state) so sessions can be created, run side
by side and thrown away without touching each other.
"""

import logging
import math
import time
import uuid
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

from rapidfuzz import fuzz

from . import diagnostics as diag
from .aligner import KaraokeAligner, KaraokeState, WordMatch
from .config import Config, count_out_of_range, merge_with_defaults
from .diagnostics import Diagnostics
from .events import EventChannel, Unsubscribe, WordEvent, sanitize_word_event
from .fillers import FillerWordDetection, FillerWordDetector, FillerWordState
from .pacing import PaceAnalyzer, PacingState
from .report import SessionReportGenerator, SessionSummaryReport
from .script_index import ScriptIndex, normalize_word
from .scroll import AdaptiveScrollController, LayoutCache, LayoutProvider, ScrollState, WordRect

logger = logging.getLogger(__name__)

# Interims not confirmed by a final within this time were revised away
INTERIM_MAX_AGE_MS: float = 5000.0
INTERIM_CONFIRM_RATIO: float = 80.0


class InterimPolicy(str, Enum):
    """How interim (non-final) recognition results are treated."""
    FINAL_ONLY = "final_only"  # Interims are ignored
    PROVISIONAL = "provisional"  # Interims drive the engine; finals confirm them


class SessionStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    ENDED = "ended"


class RecognitionSource(Protocol):
    """Anything that pushes WordEvents to subscribers."""

    def subscribe(self, callback: Callable[[WordEvent], None]) -> Unsubscribe:
        ...


@dataclass(frozen=True)
class RenderUpdate:
    """Per-frame output for the renderer."""
    position: float
    velocity: float
    highlighted_indices: tuple[int, ...]
    current_word_index: int
    pace_status: str
    current_wpm: float = 0.0
    is_user_controlled: bool = False
    is_paused: bool = True

    def to_message(self) -> dict[str, Any]:
        return {
            "type": "render",
            "position": round(self.position, 2),
            "velocity": round(self.velocity, 2),
            "highlightedIndices": list(self.highlighted_indices),
            "currentWordIndex": self.current_word_index,
            "paceStatus": self.pace_status,
            "currentWpm": round(self.current_wpm, 1),
            "isUserControlled": self.is_user_controlled,
            "isPaused": self.is_paused,
        }


class PracticeSession:
    """
    Composes the aligner, pace analyzer, filler detector, scroll controller
    and report generator for one practice run.

    Usage:
        session = PracticeSession(build_script_index(text))
        session.start()
        unsubscribe = session.attach(recognizer)
        ...
        update = session.tick()  # every display frame
        ...
        report = session.end()
    """

    def __init__(
        self,
        script: ScriptIndex,
        config: Config | None = None,
        clock: Callable[[], float] = time.monotonic,
        layout: LayoutProvider | None = None,
        log_dir: Path | None = None,
        session_id: str | None = None
    ):
        """
        Initialize the session.

        Args:
            script: Indexed script being practiced
            config: Full configuration (defaults if None); values are clamped
            clock: Monotonic clock in seconds, used for scroll timing
            layout: Word rectangle lookup; defaults to an internal LayoutCache
                filled through update_layout()
            log_dir: If set, write a per-session word log there
            session_id: Identifier for logs and the report
        """
        self.script = script
        self.config: Config = merge_with_defaults(dict(config or {}))
        self.clock = clock
        self.session_id = session_id or uuid.uuid4().hex[:12]
        self._config_clamped = count_out_of_range(dict(config)) if config else 0

        karaoke = self.config["karaoke"]
        pacing = self.config["pacing"]
        scroll = self.config["adaptive_scroll"]
        fillers = self.config["filler_words"]
        session = self.config["session"]
        capacity = session["history_capacity"]

        self.interim_policy = InterimPolicy(session["interim_policy"])
        self.karaoke_enabled = karaoke["enabled"]
        self.scroll_enabled = scroll["enabled"]
        self.fillers_enabled = fillers["enabled"]

        self.aligner = KaraokeAligner(
            script,
            match_threshold=karaoke["match_threshold"],
            window_size=karaoke["window_size"],
            highlight_duration=karaoke["highlight_duration"],
            fade_out_delay=karaoke["fade_out_delay"],
            max_unmatched_before_skip=karaoke["max_unmatched_before_skip"],
            max_skip_distance=karaoke["max_skip_distance"],
            history_capacity=capacity,
        )
        self.pacing = PaceAnalyzer(
            target_wpm=pacing["target_wpm"],
            tolerance=pacing["tolerance_range"],
            window_words=pacing["window_words"],
            history_capacity=capacity,
        )
        self.fillers = FillerWordDetector(
            filler_words=fillers["filler_words"],
            sensitivity=fillers["sensitivity"],
            cross_detector_window_ms=fillers["cross_detector_window_ms"],
            min_typo_length=fillers["min_typo_length"],
        )
        self.layout_cache = LayoutCache()
        self.scroll = AdaptiveScrollController(
            base_scroll_speed=scroll["base_scroll_speed"],
            responsiveness=scroll["responsiveness"],
            smoothing_factor=scroll["smoothing_factor"],
            pause_threshold=scroll["pause_threshold"],
            acceleration_limit=scroll["acceleration_limit"],
            deceleration_limit=scroll["deceleration_limit"],
            look_ahead_words=scroll["look_ahead_words"],
            target_wpm=pacing["target_wpm"],
            layout=layout if layout is not None else self.layout_cache,
            clock=clock,
        )
        self.reporter = SessionReportGenerator(
            target_wpm=pacing["target_wpm"],
            tolerance=pacing["tolerance_range"],
            filler_rate_warning=session["filler_rate_warning"],
        )
        self.diagnostics = Diagnostics(self.session_id, log_dir=log_dir)

        self.on_render: EventChannel[RenderUpdate] = EventChannel("session.render")
        self.on_report: EventChannel[SessionSummaryReport] = EventChannel("session.report")
        self.on_match = self.aligner.on_match
        self.on_filler = self.fillers.on_filler

        self.status = SessionStatus.IDLE
        self._report: SessionSummaryReport | None = None
        self._sources: list[Unsubscribe] = []
        self._pending_interims: deque[tuple[str, float]] = deque(maxlen=capacity)
        self._last_update: RenderUpdate | None = None
        self._reset_counters(None)

    def _reset_counters(self, start_ms: float | None) -> None:
        self.start_ms = start_ms
        self.last_timestamp: float | None = None
        self._last_word_clock: float | None = None
        self.word_count = 0
        self._pending_interims.clear()

    def start(self, start_ms: float | None = None, now: float | None = None) -> None:
        """
        Begin (or restart) the session with empty buffers.

        Args:
            start_ms: Session start in event time. Defaults to the first
                event's timestamp.
            now: Clock time for the scroll controller.
        """
        if self.status is SessionStatus.RUNNING:
            logger.info("Restarting session %s", self.session_id)
        self._reset_counters(start_ms)
        self.aligner.reset(start_ms)
        self.pacing.start_session(start_ms)
        self.fillers.start_session(start_ms)
        self.scroll.start(self.clock() if now is None else now)
        self.diagnostics.counters.clear()
        if self._config_clamped:
            self.diagnostics.set_count(diag.CONFIG_OUT_OF_RANGE, self._config_clamped)
        self.diagnostics.start()
        self._report = None
        self._last_update = None
        self.status = SessionStatus.RUNNING
        logger.info("Session %s started (%d script words)", self.session_id, len(self.script))

    def attach(self, source: RecognitionSource) -> Unsubscribe:
        """Subscribe to a recognition source until the session ends."""
        unsubscribe = source.subscribe(self.handle_word_event)
        self._sources.append(unsubscribe)
        return unsubscribe

    def handle_word(self, word: str, confidence: float, timestamp_ms: float,
                    is_final: bool = True) -> WordMatch | None:
        """Callback-style entry point: onWord(word, confidence, timestampMs)."""
        return self.handle_word_event(WordEvent(word, confidence, timestamp_ms, is_final))

    def _is_superseded(self, event: WordEvent) -> bool:
        """
        A final result confirming an interim that was already processed.

        Pending interims skipped over by the match, or older than
        INTERIM_MAX_AGE_MS, were revised away by the recognizer and are
        discarded.
        """
        pending = self._pending_interims
        while pending and pending[0][1] < event.timestamp_ms - INTERIM_MAX_AGE_MS:
            pending.popleft()

        spoken = normalize_word(event.word)
        for k, (word, _) in enumerate(list(pending)):
            if spoken == word or fuzz.ratio(spoken, word) >= INTERIM_CONFIRM_RATIO:
                for _ in range(k + 1):
                    pending.popleft()
                return True
        return False

    def handle_word_event(self, event: WordEvent) -> WordMatch | None:
        """
        Feed one recognized word through the engine.

        Order: aligner, then pace analyzer (with the aligned index), then the
        filler detector, then the scroll controller's word edge.

        Returns:
            The aligner's verdict, or None if the event was not processed.
        """
        if self.status is not SessionStatus.RUNNING:
            self.diagnostics.count(diag.IGNORED_EVENT)
            return None

        clean = sanitize_word_event(event)
        if clean is None:
            self.diagnostics.count(diag.MALFORMED_EVENT)
            logger.debug("Dropped malformed word event %r", event)
            return None

        if not clean.is_final:
            if self.interim_policy is InterimPolicy.FINAL_ONLY:
                return None
        elif self.interim_policy is InterimPolicy.PROVISIONAL and self._is_superseded(clean):
            self.diagnostics.count(diag.SUPERSEDED_EVENT)
            return None

        if self.last_timestamp is not None and clean.timestamp_ms <= self.last_timestamp:
            self.diagnostics.count(diag.OUT_OF_ORDER)
            logger.debug("Dropped out-of-order event '%s' at %s (last %s)",
                         clean.word, clean.timestamp_ms, self.last_timestamp)
            return None

        if self.start_ms is None:
            self.start_ms = clean.timestamp_ms
        self.last_timestamp = clean.timestamp_ms
        self._last_word_clock = self.clock()
        if not clean.is_final:
            self._pending_interims.append((normalize_word(clean.word), clean.timestamp_ms))

        match: WordMatch | None = None
        if self.karaoke_enabled:
            old_cursor = self.aligner.cursor
            match = self.aligner.process_word(clean)
            self._log_match(match, old_cursor)
            word_index = match.word_index
        else:
            word_index = self.word_count

        self.pacing.process_word_timing(word_index, clean.word, clean.timestamp_ms,
                                        clean.confidence)

        if self.fillers_enabled:
            detection = self.fillers.process_stt_word(
                clean.word, clean.confidence, clean.timestamp_ms, word_index)
            if detection is not None:
                self.diagnostics.log_word(word_index, clean.word, "filler")

        if self.scroll_enabled:
            cursor = self.aligner.cursor if self.karaoke_enabled else word_index
            self.scroll.on_word(self.pacing.current_wpm, cursor, now=self._last_word_clock)

        self.word_count += 1
        return match

    def _log_match(self, match: WordMatch, old_cursor: int) -> None:
        if match.resync:
            self.diagnostics.count(diag.RESYNC)
            self.diagnostics.log_position_update(old_cursor, self.aligner.cursor, "resync")
        elif not match.matched:
            self.diagnostics.count(diag.NO_ALIGNMENT)
            self.diagnostics.log_word(match.word_index, match.spoken_word, "unmatched")
            return
        event = "match" if match.advanced else "absorbed"
        self.diagnostics.log_word(match.word_index, match.spoken_word, event)

    def handle_transcript_fragment(self, text: str, timestamp_ms: float
                                   ) -> list[FillerWordDetection]:
        """Run the rule-based filler detector over a transcript fragment."""
        if self.status is not SessionStatus.RUNNING or not self.fillers_enabled:
            return []
        if not isinstance(text, str) or not math.isfinite(timestamp_ms):
            self.diagnostics.count(diag.MALFORMED_EVENT)
            return []
        index = self.aligner.cursor if self.karaoke_enabled else self.word_count
        return self.fillers.process_transcript_text(text, timestamp_ms, index)

    def update_layout(self, rects: dict[int, WordRect]) -> None:
        """Store word rectangles reported by the renderer."""
        self.layout_cache.update(rects)

    def begin_user_scroll(self, position: float) -> None:
        self.scroll.begin_user_scroll(position)

    def update_user_scroll(self, position: float) -> None:
        self.scroll.update_user_scroll(position)

    def end_user_scroll(self, now: float | None = None) -> None:
        self.scroll.end_user_scroll(self.pacing.current_wpm, now=now)

    def jump_to(self, word_index: int) -> None:
        """Manually reposition the aligner (e.g. the user clicked a word)."""
        old = self.aligner.cursor
        self.aligner.jump_to(word_index)
        self.diagnostics.log_position_update(old, self.aligner.cursor, "manual")

    def event_time_at(self, now: float) -> float | None:
        """Map a clock time onto the event timeline (ms)."""
        if self.last_timestamp is None or self._last_word_clock is None:
            return self.last_timestamp
        return self.last_timestamp + max(0.0, now - self._last_word_clock) * 1000.0

    def tick(self, now: float | None = None) -> RenderUpdate:
        """
        Advance the display by one frame and publish a RenderUpdate.

        After the session ends the last update is returned unchanged.
        """
        if self.status is not SessionStatus.RUNNING and self._last_update is not None:
            return self._last_update

        now = self.clock() if now is None else now
        scroll_state: ScrollState = (
            self.scroll.tick(now) if self.scroll_enabled else self.scroll.state)
        self.diagnostics.set_count(diag.MISSING_LAYOUT, self.scroll.missing_layout_count)

        highlighted: frozenset[int] = frozenset()
        if self.karaoke_enabled:
            highlighted = self.aligner.highlighted_words(self.event_time_at(now))

        update = RenderUpdate(
            position=scroll_state.position,
            velocity=scroll_state.velocity,
            highlighted_indices=tuple(sorted(highlighted)),
            current_word_index=self.aligner.cursor,
            pace_status=self.pacing.status.value,
            current_wpm=self.pacing.current_wpm,
            is_user_controlled=scroll_state.is_user_controlled,
            is_paused=scroll_state.is_paused,
        )
        self._last_update = update
        self.on_render.emit(update)
        return update

    def end(self, end_ms: float | None = None) -> SessionSummaryReport:
        """
        Finish the session and return its report.

        Calling end() again returns the same report object.
        """
        if self._report is not None:
            return self._report

        for unsubscribe in self._sources:
            unsubscribe()
        self._sources.clear()
        self.scroll.stop()
        self.status = SessionStatus.ENDED

        start = self.start_ms if self.start_ms is not None else 0.0
        end = end_ms if end_ms is not None else (
            self.last_timestamp if self.last_timestamp is not None else start)

        self.diagnostics.set_count(diag.OUT_OF_ORDER, self.diagnostics.counters[diag.OUT_OF_ORDER]
                                   + self.pacing.rejected_count)
        self.diagnostics.set_count(diag.ZERO_DURATION, self.pacing.zero_duration_count)
        self.diagnostics.set_count(diag.MISSING_LAYOUT, self.scroll.missing_layout_count)

        self._report = self.reporter.generate(
            start_time=start,
            end_time=end,
            wpm_history=self.pacing.history,
            segments=self.pacing.segments,
            fillers=self.fillers.detections,
            total_words=self.word_count,
            average_wpm=self.pacing.average_wpm,
            optimal_points=self.pacing.optimal_points,
            total_points=self.pacing.total_points,
            filler_rate=self.fillers.filler_rate(end),
            common_fillers=self.fillers.get_most_common_fillers(),
            accuracy=self.aligner.accuracy,
            session_id=self.session_id,
            script_id=self.script.script_id,
            diagnostics=self.diagnostics.snapshot(),
        )
        self.diagnostics.log_summary()
        logger.info("Session %s ended", self.session_id)
        self.on_report.emit(self._report)
        return self._report

    @property
    def report(self) -> SessionSummaryReport | None:
        return self._report

    def karaoke_state(self, now: float | None = None) -> KaraokeState:
        now = self.clock() if now is None else now
        return self.aligner.state(self.event_time_at(now))

    def pacing_state(self) -> PacingState:
        return self.pacing.snapshot()

    def filler_state(self) -> FillerWordState:
        return self.fillers.state()
