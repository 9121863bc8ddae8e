# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Export of finished sessions: the summary report as JSON or CSV, and the raw
filler detections as CSV.
"""

import csv
import json
from collections.abc import Sequence
from io import StringIO
from pathlib import Path

from .fillers import FillerWordDetection
from .report import SessionSummaryReport

FILLER_COLUMNS: list[str] = [
    "word", "spoken", "timestamp_ms", "word_index", "confidence",
    "detection_method", "position_start", "position_end",
]


def render_report(report: SessionSummaryReport, fmt: str = "json") -> str:
    """
    Render a report as text.

    Args:
        report: Finished session report
        fmt: "json" for the full report, "csv" for one row per pace segment

    Returns:
        The rendered report
    """
    if fmt == "json":
        return json.dumps(report.to_dict(), indent=2, ensure_ascii=False)

    if fmt == "csv":
        output = StringIO()
        writer = csv.writer(output)
        writer.writerow([
            "start_word_index", "end_word_index", "status", "average_wpm",
            "duration_ms", "point_count",
        ])
        for segment in report.segments:
            writer.writerow([
                segment.start_word_index, segment.end_word_index, segment.status.value,
                round(segment.average_wpm, 1), round(segment.duration, 1), segment.point_count,
            ])
        return output.getvalue()

    raise ValueError(f"Unsupported report format: {fmt}")


def render_fillers_csv(detections: Sequence[FillerWordDetection]) -> str:
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(FILLER_COLUMNS)
    for d in detections:
        writer.writerow([
            d.word, d.spoken, d.timestamp, d.word_index, d.confidence,
            d.detection_method.value, d.position[0], d.position[1],
        ])
    return output.getvalue()


def export_report_json(report: SessionSummaryReport, path: Path) -> Path:
    """Write the full report as JSON and return the path written."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_report(report, "json"), encoding="utf-8")
    return path


def export_segments_csv(report: SessionSummaryReport, path: Path) -> Path:
    """Write the report's pace segments as CSV and return the path written."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_report(report, "csv"), encoding="utf-8")
    return path


def export_fillers_csv(detections: Sequence[FillerWordDetection], path: Path) -> Path:
    """Write raw filler detections as CSV and return the path written."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_fillers_csv(detections), encoding="utf-8")
    return path
