# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Pace analysis: words-per-minute over a sliding window, pace zones and
contiguous pace segments.
"""

import logging
import math
from collections import deque
from dataclasses import dataclass, replace
from enum import Enum

from .events import EventChannel

logger = logging.getLogger(__name__)


class PaceStatus(str, Enum):
    """Pace zone relative to the target WPM."""
    OPTIMAL = "optimal"
    TOO_FAST = "too-fast"
    TOO_SLOW = "too-slow"


@dataclass(frozen=True)
class WPMDataPoint:
    """One pace sample, taken when a word arrives."""
    timestamp: float  # ms
    wpm: float
    word_index: int
    is_optimal: bool


@dataclass(frozen=True)
class PaceAnalysisSegment:
    """A run of consecutive samples sharing one pace zone."""
    start_word_index: int
    end_word_index: int
    average_wpm: float
    status: PaceStatus
    duration: float  # ms from the first to the last sample
    start_timestamp: float = 0.0
    point_count: int = 1


@dataclass(frozen=True)
class PacingState:
    """Read-only view of the analyzer for renderers and reports."""
    current_wpm: float
    average_wpm: float
    status: PaceStatus
    target_wpm: float
    tolerance: float
    total_points: int
    optimal_points: int
    rejected_events: int
    segments: tuple[PaceAnalysisSegment, ...]


def classify_wpm(wpm: float, target_wpm: float, tolerance: float) -> PaceStatus:
    """Pace zone for a WPM value. Both bounds are inside the optimal zone."""
    if wpm < target_wpm - tolerance:
        return PaceStatus.TOO_SLOW
    if wpm > target_wpm + tolerance:
        return PaceStatus.TOO_FAST
    return PaceStatus.OPTIMAL


class PaceAnalyzer:
    """
    Derives pacing metrics from word timestamps.

    Averages and the optimal ratio are kept as running totals over the whole
    session, so they stay exact after the bounded history drops old points.
    """

    def __init__(
        self,
        target_wpm: float = 150,
        tolerance: float = 20,
        window_words: int = 10,
        history_capacity: int = 1000
    ):
        self.target_wpm = float(target_wpm)
        self.tolerance = float(tolerance)
        self.window_words = max(2, int(window_words))
        self.history: deque[WPMDataPoint] = deque(maxlen=history_capacity)
        self.segments: list[PaceAnalysisSegment] = []
        self.on_pace_change: EventChannel[tuple[PaceStatus, float]] = EventChannel(
            "pacing.change")
        self.start_session()

    def start_session(self, start_ms: float | None = None) -> None:
        """Clear all buffers for a new session."""
        self.history.clear()
        self.segments = []
        self.session_start = start_ms
        self.current_wpm = 0.0
        self.total_points = 0
        self.optimal_points = 0
        self.rejected_count = 0
        self.zero_duration_count = 0
        self._wpm_sum = 0.0
        self._last_timestamp: float | None = None
        self._status: PaceStatus | None = None

    def update_settings(self, target_wpm: float | None = None,
                        tolerance: float | None = None) -> None:
        if target_wpm is not None:
            self.target_wpm = float(target_wpm)
        if tolerance is not None:
            self.tolerance = float(tolerance)

    def _window_wpm(self, now: float) -> float:
        """WPM over the last window_words samples, ending at now."""
        if len(self.history) < 2:
            return 0.0
        start = max(0, len(self.history) - self.window_words)
        first = self.history[start]
        count = len(self.history) - start
        elapsed_s = (now - first.timestamp) / 1000.0
        if elapsed_s <= 0:
            self.zero_duration_count += 1
            return 0.0
        return count / elapsed_s * 60.0

    def process_word_timing(
        self,
        word_index: int,
        word: str,
        timestamp_ms: float,
        confidence: float = 1.0
    ) -> WPMDataPoint | None:
        """
        Record one spoken word and update pace metrics.

        Args:
            word_index: Script index the word was aligned to
            word: The spoken word
            timestamp_ms: Event time in milliseconds
            confidence: Recognition confidence (kept for symmetry with other analyzers)

        Returns:
            The new data point, or None if the timestamp was rejected.
        """
        if not math.isfinite(timestamp_ms) or (
                self._last_timestamp is not None and timestamp_ms <= self._last_timestamp):
            self.rejected_count += 1
            logger.debug("Rejected out-of-order timestamp %s for '%s' (last %s)",
                         timestamp_ms, word, self._last_timestamp)
            return None

        if self.session_start is None:
            self.session_start = timestamp_ms
        self._last_timestamp = timestamp_ms

        wpm = self._window_wpm(timestamp_ms)
        self.current_wpm = wpm
        status = classify_wpm(wpm, self.target_wpm, self.tolerance)
        point = WPMDataPoint(
            timestamp=timestamp_ms,
            wpm=wpm,
            word_index=word_index,
            is_optimal=status is PaceStatus.OPTIMAL,
        )

        self.history.append(point)
        self.total_points += 1
        self._wpm_sum += wpm
        if point.is_optimal:
            self.optimal_points += 1

        self._update_segments(point, status)
        return point

    def _update_segments(self, point: WPMDataPoint, status: PaceStatus) -> None:
        if not self.segments or self.segments[-1].status is not status:
            self.segments.append(PaceAnalysisSegment(
                start_word_index=point.word_index,
                end_word_index=point.word_index,
                average_wpm=point.wpm,
                status=status,
                duration=0.0,
                start_timestamp=point.timestamp,
                point_count=1,
            ))
            previous = self._status
            self._status = status
            if previous is not None:
                logger.debug("Pace changed %s -> %s at %.0f WPM",
                             previous.value, status.value, point.wpm)
            self.on_pace_change.emit((status, point.wpm))
            return

        # Extend the open segment; its mean is the exact mean of its points
        open_segment = self.segments[-1]
        count = open_segment.point_count + 1
        self.segments[-1] = replace(
            open_segment,
            end_word_index=point.word_index,
            average_wpm=open_segment.average_wpm + (point.wpm - open_segment.average_wpm) / count,
            duration=point.timestamp - open_segment.start_timestamp,
            point_count=count,
        )

    @property
    def average_wpm(self) -> float:
        """Mean WPM over every data point of the session."""
        if self.total_points == 0:
            return 0.0
        return self._wpm_sum / self.total_points

    @property
    def status(self) -> PaceStatus:
        return classify_wpm(self.current_wpm, self.target_wpm, self.tolerance)

    @property
    def optimal_percentage(self) -> float:
        if self.total_points == 0:
            return 0.0
        return 100.0 * self.optimal_points / self.total_points

    def snapshot(self) -> PacingState:
        return PacingState(
            current_wpm=self.current_wpm,
            average_wpm=self.average_wpm,
            status=self.status,
            target_wpm=self.target_wpm,
            tolerance=self.tolerance,
            total_points=self.total_points,
            optimal_points=self.optimal_points,
            rejected_events=self.rejected_count,
            segments=tuple(self.segments),
        )
