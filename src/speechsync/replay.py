# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Offline replay of recorded word events against a script.

Drives a PracticeSession with a simulated clock that follows the event
timestamps, ticking the display between events the way a live renderer
would, then prints the session report.
"""

import argparse
import logging
import sys
from pathlib import Path

from .aligner import WordMatch
from .config import Config, load_config
from .events import WordEvent
from .export import export_fillers_csv, export_report_json, export_segments_csv
from .fillers import FillerWordDetection
from .recognition import ReplaySource, load_word_events
from .report import SessionSummaryReport
from .script_index import build_script_index
from .session import PracticeSession

logger = logging.getLogger(__name__)


class SimulatedClock:
    """Monotonic clock in seconds that only moves when told to."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance_to(self, t: float) -> None:
        self.now = max(self.now, t)


def replay_session(
    script_text: str,
    events: list[WordEvent],
    config: Config | None = None,
    verbose: bool = False,
    script_id: str | None = None
) -> tuple[PracticeSession, SessionSummaryReport]:
    """
    Replay events through a fresh session.

    Returns:
        Tuple of (session, report)
    """
    script = build_script_index(script_text, script_id=script_id)
    clock = SimulatedClock()
    session = PracticeSession(script, config=config, clock=clock)
    tick_interval = 1.0 / session.config["session"]["tick_hz"]

    if verbose:
        def show_match(match: WordMatch) -> None:
            mark = "✓" if match.matched else "✗"
            extra = " (resync)" if match.resync else ""
            print(f"{match.timestamp:>10.0f}ms {mark} {match.spoken_word!r} -> "
                  f"#{match.word_index} {match.script_word!r} "
                  f"{match.similarity:.2f}{extra}")

        def show_filler(detection: FillerWordDetection) -> None:
            print(f"{detection.timestamp:>10.0f}ms   filler {detection.word!r} "
                  f"({detection.detection_method.value})")

        session.on_match.subscribe(show_match)
        session.on_filler.subscribe(show_filler)

    first_ts = events[0].timestamp_ms / 1000.0 if events else 0.0
    clock.advance_to(first_ts)
    session.start(now=clock())

    def tick_until(event: WordEvent) -> None:
        target = event.timestamp_ms / 1000.0
        while clock() + tick_interval < target:
            clock.advance_to(clock() + tick_interval)
            session.tick()
        clock.advance_to(target)

    source = ReplaySource(events)
    session.attach(source)
    source.play(before_each=tick_until)
    session.tick()

    report = session.end()
    return session, report


def print_report(report: SessionSummaryReport) -> None:
    """Print a human-readable summary of a report."""
    print("\nSession summary")
    print("-" * 60)
    print(f"  Duration:       {report.duration_ms / 1000.0:.1f}s")
    print(f"  Words:          {report.total_words}")
    print(f"  Accuracy:       {report.accuracy:.1f}%")
    print(f"  Average pace:   {report.average_wpm:.0f} WPM (target {report.target_wpm:.0f})")
    print(f"  Optimal pace:   {report.optimal_percentage:.0f}% of the time")
    print(f"  Fillers:        {len(report.filler_words)} ({report.filler_rate:.1f}/min)")
    if report.common_fillers:
        common = ", ".join(f"{word} x{count}" for word, count in report.common_fillers)
        print(f"  Most common:    {common}")
    print(f"  Pace segments:  {len(report.segments)}")
    for segment in report.segments:
        print(f"    words {segment.start_word_index}-{segment.end_word_index}: "
              f"{segment.status.value} ({segment.average_wpm:.0f} WPM)")
    issues = {k: v for k, v in report.diagnostics.items() if v}
    if issues:
        print("  Diagnostics:    " + ", ".join(f"{k}={v}" for k, v in sorted(issues.items())))
    print("\nRecommendations")
    print("-" * 60)
    for rec in report.recommendations:
        print(f"  - {rec}")


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S"
    )

    parser = argparse.ArgumentParser(
        description="Replay recorded word events against a script and print the report"
    )
    parser.add_argument("script", type=Path, help="Script file (plain text or markdown)")
    parser.add_argument("events", type=Path, help="Recorded word events (JSON or JSON lines)")
    parser.add_argument("--config", type=Path, default=None,
                        help="Config file (default: ./.speechsync.yaml)")
    parser.add_argument("--quiet", "-q", action="store_true",
                        help="Only print the report")
    parser.add_argument("--report-json", type=Path, default=None,
                        help="Write the full report as JSON")
    parser.add_argument("--segments-csv", type=Path, default=None,
                        help="Write pace segments as CSV")
    parser.add_argument("--fillers-csv", type=Path, default=None,
                        help="Write filler detections as CSV")
    args = parser.parse_args(argv)

    try:
        script_text = args.script.read_text(encoding='utf-8')
        events = load_word_events(args.events)
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    config = load_config(args.config)
    _session, report = replay_session(
        script_text, events, config=config, verbose=not args.quiet,
        script_id=args.script.name)
    print_report(report)

    if args.report_json:
        print(f"\nReport written to {export_report_json(report, args.report_json)}")
    if args.segments_csv:
        print(f"Segments written to {export_segments_csv(report, args.segments_csv)}")
    if args.fillers_csv:
        print(f"Fillers written to {export_fillers_csv(report.filler_words, args.fillers_csv)}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
