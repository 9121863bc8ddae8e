# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Tests for the end-of-session report and its recommendations.
"""

import json

import pytest

from speechsync.fillers import DetectionMethod, FillerWordDetection
from speechsync.pacing import PaceAnalysisSegment, PaceStatus, WPMDataPoint
from speechsync.report import SessionReportGenerator


def points(wpms: list[float], target: float = 150, tolerance: float = 20) -> list[WPMDataPoint]:
    return [WPMDataPoint(timestamp=i * 400.0, wpm=w, word_index=i,
                         is_optimal=target - tolerance <= w <= target + tolerance)
            for i, w in enumerate(wpms)]


def segment(status: PaceStatus, start: int = 0, end: int = 1) -> PaceAnalysisSegment:
    return PaceAnalysisSegment(start_word_index=start, end_word_index=end,
                               average_wpm=150.0, status=status, duration=400.0)


class TestGenerate:
    """Report statistics."""

    def test_optimal_percentage(self):
        history = points([150] * 7 + [200] * 3)
        report = SessionReportGenerator().generate(0.0, 4000.0, history, [])

        assert report.optimal_percentage == pytest.approx(70.0)
        assert report.total_words == 10
        assert report.average_wpm == pytest.approx(165.0)

    def test_session_totals_override_history(self):
        report = SessionReportGenerator().generate(
            0.0, 60000.0, points([150, 150]), [],
            total_words=100, average_wpm=140.0, optimal_points=80, total_points=100)

        assert report.total_words == 100
        assert report.average_wpm == 140.0
        assert report.optimal_percentage == pytest.approx(80.0)

    def test_spread_statistics(self):
        report = SessionReportGenerator().generate(0.0, 1000.0, points([100, 200]), [])

        assert report.wpm_std_dev == pytest.approx(50.0)
        assert report.pace_range == (pytest.approx(110.0), pytest.approx(190.0))

    def test_empty_session(self):
        report = SessionReportGenerator().generate(5000.0, 5000.0, [], [])

        assert report.total_words == 0
        assert report.optimal_percentage == 0.0
        assert report.duration_ms == 0.0
        assert report.recommendations == (
            "Not enough speech was recognized to analyze your pacing.",)

    def test_to_dict_is_json_serializable(self):
        filler = FillerWordDetection(word="um", timestamp=100.0, word_index=2, confidence=0.9,
                                     detection_method=DetectionMethod.STT, position=(0, 2))
        report = SessionReportGenerator().generate(
            0.0, 2000.0, points([150, 150]), [segment(PaceStatus.OPTIMAL)], [filler],
            session_id="s1", script_id="demo.md", diagnostics={"resync": 1})

        data = json.loads(json.dumps(report.to_dict()))
        assert data["session_id"] == "s1"
        assert data["segments"][0]["status"] == "optimal"
        assert data["filler_words"][0]["detection_method"] == "stt"
        assert data["duration_ms"] == 2000.0
        assert data["diagnostics"] == {"resync": 1}


class TestRecommendations:
    """Recommendation rules."""

    def setup_method(self):
        self.generator = SessionReportGenerator(target_wpm=150, tolerance=20)

    def test_within_range(self):
        recs = self.generator.recommendations(150, 10, [], total_points=10)
        assert recs == ["Great job! Your pacing is within the optimal range."]

    def test_too_slow(self):
        recs = self.generator.recommendations(100, 10, [], total_points=10)
        assert recs[0] == ("Try to speak faster. Your average pace (100 WPM) "
                           "is below the target (150 WPM).")
        assert "metronome" in recs[1]

    def test_too_fast(self):
        recs = self.generator.recommendations(200, 10, [], total_points=10)
        assert recs[0].startswith("Try to slow down. Your average pace (200 WPM)")
        assert "enunciation" in recs[1]

    def test_inconsistent_pacing(self):
        recs = self.generator.recommendations(150, 45, [], total_points=10)
        assert ("Work on maintaining more consistent pacing throughout your delivery."
                in recs)

    def test_problem_segments_counted(self):
        segments = [segment(PaceStatus.OPTIMAL), segment(PaceStatus.TOO_FAST, 2, 3),
                    segment(PaceStatus.TOO_SLOW, 4, 5)]
        recs = self.generator.recommendations(150, 10, segments, total_points=10)
        assert "2 segments had pacing issues. Review the highlighted sections." in recs

    def test_filler_rate_warning(self):
        recs = self.generator.recommendations(150, 10, [], filler_rate=8.0, total_points=10)
        assert recs[-1].startswith("You used 8.0 filler words per minute.")
