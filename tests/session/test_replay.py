# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Tests for offline replay of recorded word events.
"""

import json
import tempfile
from pathlib import Path

from speechsync.events import WordEvent
from speechsync.recognition import save_word_events
from speechsync.replay import SimulatedClock, main, replay_session

SCRIPT = "The quick brown fox jumps over the lazy dog"


def pangram_events(spacing_ms: float = 400.0) -> list[WordEvent]:
    return [WordEvent(w, 0.9, 1000.0 + i * spacing_ms) for i, w in enumerate(SCRIPT.split())]


class TestSimulatedClock:
    """The clock never moves backwards."""

    def test_advance(self):
        clock = SimulatedClock(1.0)
        clock.advance_to(2.5)
        clock.advance_to(2.0)
        assert clock() == 2.5


class TestReplaySession:
    """Replaying events through a session."""

    def test_full_read(self):
        session, report = replay_session(SCRIPT, pangram_events(), script_id="pangram")

        assert report.total_words == 9
        assert report.accuracy == 100.0
        assert report.script_id == "pangram"
        assert session.aligner.cursor == 9

    def test_fillers_in_replay(self):
        events = pangram_events()
        events.insert(3, WordEvent("um", 0.9, 2150.0))
        _session, report = replay_session(SCRIPT, events)

        assert [d.word for d in report.filler_words] == ["um"]

    def test_verbose_prints_matches(self, capsys):
        replay_session(SCRIPT, pangram_events()[:2], verbose=True)

        out = capsys.readouterr().out
        assert "✓ 'The' -> #0" in out
        assert "✓ 'quick' -> #1" in out

    def test_empty_events(self):
        _session, report = replay_session(SCRIPT, [])
        assert report.total_words == 0


class TestReplayMain:
    """The replay command line."""

    def test_writes_exports(self, capsys):
        with tempfile.TemporaryDirectory() as tmpdir:
            tmp = Path(tmpdir)
            (tmp / "script.md").write_text(SCRIPT, encoding="utf-8")
            save_word_events(pangram_events(), tmp / "events.json")

            code = main([str(tmp / "script.md"), str(tmp / "events.json"), "--quiet",
                         "--config", str(tmp / "missing.yaml"),
                         "--report-json", str(tmp / "report.json"),
                         "--segments-csv", str(tmp / "segments.csv"),
                         "--fillers-csv", str(tmp / "fillers.csv")])

            assert code == 0
            report = json.loads((tmp / "report.json").read_text(encoding="utf-8"))
            assert report["script_id"] == "script.md"
            assert (tmp / "segments.csv").exists()
            assert (tmp / "fillers.csv").exists()

        out = capsys.readouterr().out
        assert "Session summary" in out
        assert "✓" not in out

    def test_missing_events_file(self, capsys):
        with tempfile.TemporaryDirectory() as tmpdir:
            tmp = Path(tmpdir)
            (tmp / "script.md").write_text(SCRIPT, encoding="utf-8")
            code = main([str(tmp / "script.md"), str(tmp / "nope.json")])

        assert code == 1
        assert "Error" in capsys.readouterr().err
