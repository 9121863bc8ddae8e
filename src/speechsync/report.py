# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
End-of-session report: pacing and filler statistics plus recommendations.
"""

import logging
import uuid
from collections.abc import Iterable, Sequence
from dataclasses import asdict, dataclass, field
from typing import Any

import numpy as np

from .fillers import FillerWordDetection
from .pacing import PaceAnalysisSegment, PaceStatus, WPMDataPoint

logger = logging.getLogger(__name__)

CONSISTENCY_STD_DEV: float = 30.0


@dataclass(frozen=True)
class SessionSummaryReport:
    """Immutable summary of one practice session."""
    start_time: float  # ms
    end_time: float  # ms
    total_words: int
    average_wpm: float
    target_wpm: float
    optimal_percentage: float
    segments: tuple[PaceAnalysisSegment, ...]
    filler_words: tuple[FillerWordDetection, ...]
    recommendations: tuple[str, ...]
    session_id: str = ""
    script_id: str | None = None
    wpm_std_dev: float = 0.0
    pace_range: tuple[float, float] = (0.0, 0.0)  # 10th / 90th percentile WPM
    filler_rate: float = 0.0
    common_fillers: tuple[tuple[str, int], ...] = ()
    accuracy: float = 0.0
    diagnostics: dict[str, int] = field(default_factory=dict)

    @property
    def duration_ms(self) -> float:
        return max(0.0, self.end_time - self.start_time)

    def to_dict(self) -> dict[str, Any]:
        """Plain-data form (enums as their values) for JSON export."""
        data = asdict(self)
        for segment in data["segments"]:
            segment["status"] = PaceStatus(segment["status"]).value
        for filler in data["filler_words"]:
            filler["detection_method"] = str(filler["detection_method"].value)
            filler["position"] = list(filler["position"])
        data["pace_range"] = list(self.pace_range)
        data["common_fillers"] = [list(item) for item in self.common_fillers]
        data["duration_ms"] = self.duration_ms
        return data


class SessionReportGenerator:
    """Builds SessionSummaryReport objects from analyzer output."""

    def __init__(self, target_wpm: float = 150, tolerance: float = 20,
                 filler_rate_warning: float = 5.0):
        self.target_wpm = float(target_wpm)
        self.tolerance = float(tolerance)
        self.filler_rate_warning = filler_rate_warning

    def recommendations(
        self,
        average_wpm: float,
        wpm_std_dev: float,
        segments: Sequence[PaceAnalysisSegment],
        filler_rate: float = 0.0,
        total_points: int = 0
    ) -> list[str]:
        """Recommendation strings, in rule order."""
        recs: list[str] = []
        if total_points == 0:
            return ["Not enough speech was recognized to analyze your pacing."]

        low = self.target_wpm - self.tolerance
        high = self.target_wpm + self.tolerance
        if average_wpm < low:
            recs.append(
                f"Try to speak faster. Your average pace ({round(average_wpm)} WPM) "
                f"is below the target ({round(self.target_wpm)} WPM).")
            recs.append("Practice with a metronome or backing track to maintain consistent pacing.")
        elif average_wpm > high:
            recs.append(
                f"Try to slow down. Your average pace ({round(average_wpm)} WPM) "
                f"is above the target ({round(self.target_wpm)} WPM).")
            recs.append("Focus on clear enunciation and natural pauses between sentences.")
        else:
            recs.append("Great job! Your pacing is within the optimal range.")

        if wpm_std_dev > CONSISTENCY_STD_DEV:
            recs.append("Work on maintaining more consistent pacing throughout your delivery.")

        problem_segments = sum(1 for s in segments if s.status is not PaceStatus.OPTIMAL)
        if problem_segments > 0:
            recs.append(
                f"{problem_segments} segments had pacing issues. Review the highlighted sections.")

        if self.filler_rate_warning > 0 and filler_rate > self.filler_rate_warning:
            recs.append(
                f"You used {filler_rate:.1f} filler words per minute. "
                "Try pausing silently instead of filling the gap.")
        return recs

    def generate(
        self,
        start_time: float,
        end_time: float,
        wpm_history: Iterable[WPMDataPoint],
        segments: Sequence[PaceAnalysisSegment],
        fillers: Sequence[FillerWordDetection] = (),
        *,
        total_words: int | None = None,
        average_wpm: float | None = None,
        optimal_points: int | None = None,
        total_points: int | None = None,
        filler_rate: float = 0.0,
        common_fillers: Sequence[tuple[str, int]] = (),
        accuracy: float = 0.0,
        session_id: str | None = None,
        script_id: str | None = None,
        diagnostics: dict[str, int] | None = None
    ) -> SessionSummaryReport:
        """
        Build a report.

        Session-wide totals (average, optimal and point counts) may be passed
        in when the analyzer's history is bounded. Otherwise they are derived
        from wpm_history.
        """
        points = list(wpm_history)
        wpms = np.array([p.wpm for p in points], dtype=float)

        if total_points is None:
            total_points = len(points)
        if optimal_points is None:
            optimal_points = sum(1 for p in points if p.is_optimal)
        if average_wpm is None:
            average_wpm = float(wpms.mean()) if wpms.size else 0.0
        if total_words is None:
            total_words = total_points

        optimal_percentage = 100.0 * optimal_points / total_points if total_points else 0.0
        std_dev = float(np.std(wpms)) if wpms.size else 0.0
        pace_range = (
            (float(np.percentile(wpms, 10)), float(np.percentile(wpms, 90)))
            if wpms.size else (0.0, 0.0))

        report = SessionSummaryReport(
            start_time=start_time,
            end_time=end_time,
            total_words=total_words,
            average_wpm=average_wpm,
            target_wpm=self.target_wpm,
            optimal_percentage=optimal_percentage,
            segments=tuple(segments),
            filler_words=tuple(fillers),
            recommendations=tuple(self.recommendations(
                average_wpm, std_dev, segments, filler_rate, total_points)),
            session_id=session_id or uuid.uuid4().hex,
            script_id=script_id,
            wpm_std_dev=std_dev,
            pace_range=pace_range,
            filler_rate=filler_rate,
            common_fillers=tuple(common_fillers),
            accuracy=accuracy,
            diagnostics=dict(diagnostics or {}),
        )
        logger.info("Session report: %d words, %.0f WPM avg, %.0f%% optimal, %d fillers",
                    report.total_words, report.average_wpm, report.optimal_percentage,
                    len(report.filler_words))
        return report
