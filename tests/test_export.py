# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Tests for exporting session reports and filler detections.
"""

import csv
import json
import tempfile
from pathlib import Path

import pytest

from speechsync.export import (
    FILLER_COLUMNS,
    export_fillers_csv,
    export_report_json,
    export_segments_csv,
    render_report,
)
from speechsync.fillers import DetectionMethod, FillerWordDetection
from speechsync.pacing import PaceAnalysisSegment, PaceStatus, WPMDataPoint
from speechsync.report import SessionReportGenerator, SessionSummaryReport


@pytest.fixture
def detections() -> list[FillerWordDetection]:
    return [
        FillerWordDetection("um", 1200.0, 3, 0.9, DetectionMethod.STT, (0, 3), "umm"),
        FillerWordDetection("you know", 5000.0, 8, 0.8, DetectionMethod.RULE_BASED,
                            (7, 15), "you know"),
    ]


@pytest.fixture
def report(detections) -> SessionSummaryReport:
    history = [WPMDataPoint(i * 400.0, 150.0, i, True) for i in range(5)]
    segments = [
        PaceAnalysisSegment(0, 1, 0.0, PaceStatus.TOO_SLOW, 400.0, 0.0, 2),
        PaceAnalysisSegment(2, 4, 150.0, PaceStatus.OPTIMAL, 800.0, 800.0, 3),
    ]
    return SessionReportGenerator().generate(
        0.0, 2000.0, history, segments, detections, session_id="abc")


def test_report_json(report):
    """The JSON export holds the full report."""
    with tempfile.TemporaryDirectory() as tmpdir:
        path = export_report_json(report, Path(tmpdir) / "out" / "report.json")
        data = json.loads(path.read_text(encoding="utf-8"))

    assert data["session_id"] == "abc"
    assert len(data["segments"]) == 2
    assert data["filler_words"][1]["word"] == "you know"


def test_segments_csv(report):
    """One CSV row per pace segment."""
    with tempfile.TemporaryDirectory() as tmpdir:
        path = export_segments_csv(report, Path(tmpdir) / "segments.csv")
        with open(path, newline="", encoding="utf-8") as f:
            rows = list(csv.DictReader(f))

    assert [r["status"] for r in rows] == ["too-slow", "optimal"]
    assert rows[1]["average_wpm"] == "150.0"
    assert rows[1]["point_count"] == "3"


def test_fillers_csv(detections):
    """Raw detections with their method and span."""
    with tempfile.TemporaryDirectory() as tmpdir:
        path = export_fillers_csv(detections, Path(tmpdir) / "fillers.csv")
        with open(path, newline="", encoding="utf-8") as f:
            reader = csv.DictReader(f)
            rows = list(reader)
            assert reader.fieldnames == FILLER_COLUMNS

    assert rows[0]["spoken"] == "umm"
    assert rows[1]["detection_method"] == "rule-based"
    assert (rows[1]["position_start"], rows[1]["position_end"]) == ("7", "15")


def test_unknown_format(report):
    """Unsupported formats are rejected."""
    with pytest.raises(ValueError):
        render_report(report, "xml")
