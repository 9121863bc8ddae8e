# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Tests for karaoke alignment of spoken words against the script.
"""

import pytest

from speechsync.aligner import KaraokeAligner, WordMatch
from speechsync.events import WordEvent
from speechsync.script_index import build_script_index

PANGRAM = "The quick brown fox jumps over the lazy dog"
NATO = ("Alpha bravo charlie delta echo foxtrot golf hotel india juliet "
        "kilo lima mike november oscar papa quebec romeo sierra tango")


def speak(aligner: KaraokeAligner, words: list[str], start_ms: float = 1000.0,
          spacing_ms: float = 400.0) -> list[WordMatch]:
    return [aligner.process_word(WordEvent(w, 0.9, start_ms + i * spacing_ms))
            for i, w in enumerate(words)]


class TestInOrderReading:
    """Reading the script exactly as written."""

    def test_cursor_advances_one_per_word(self) -> None:
        aligner = KaraokeAligner(build_script_index(PANGRAM))

        for i, word in enumerate(PANGRAM.split()):
            match = aligner.process_word(WordEvent(word, 0.9, 1000.0 + i * 400))
            assert match.matched
            assert match.is_exact
            assert match.word_index == i
            assert aligner.cursor == i + 1

    def test_accuracy_is_100(self) -> None:
        aligner = KaraokeAligner(build_script_index(PANGRAM))
        speak(aligner, PANGRAM.split())

        assert aligner.accuracy == 100.0
        assert aligner.matched_count == 9
        assert aligner.unmatched_count == 0

    def test_repeated_word_matches_next_occurrence(self) -> None:
        aligner = KaraokeAligner(build_script_index(PANGRAM))
        matches = speak(aligner, PANGRAM.split())

        assert matches[6].word_index == 6
        assert matches[6].script_word == "the"


class TestMatching:
    """Fuzzy, skipped and unmatched words."""

    def test_fuzzy_match(self) -> None:
        aligner = KaraokeAligner(build_script_index(PANGRAM))
        speak(aligner, ["the"])
        match = aligner.process_word(WordEvent("quik", 0.8, 2000.0))

        assert match.matched
        assert not match.is_exact
        assert match.word_index == 1
        assert match.similarity == pytest.approx(8 / 9)

    def test_skipped_word_lowers_accuracy(self) -> None:
        aligner = KaraokeAligner(build_script_index(PANGRAM))
        matches = speak(aligner, ["the", "quick", "fox"])

        assert matches[2].word_index == 3
        assert aligner.cursor == 4
        assert aligner.accuracy == pytest.approx(75.0)

    def test_unmatched_word_keeps_cursor(self) -> None:
        aligner = KaraokeAligner(build_script_index(PANGRAM))
        speak(aligner, ["the"])
        match = aligner.process_word(WordEvent("zebra", 0.9, 2000.0))

        assert not match.matched
        assert match.word_index == 1
        assert match.script_word == "quick"
        assert aligner.cursor == 1
        assert aligner.unmatched_count == 1

    def test_word_beyond_window_is_not_matched(self) -> None:
        aligner = KaraokeAligner(build_script_index(NATO), window_size=10)
        match = aligner.process_word(WordEvent("oscar", 0.9, 1000.0))

        assert not match.matched
        assert aligner.cursor == 0

    def test_numeric_token_spoken_as_words(self) -> None:
        aligner = KaraokeAligner(build_script_index("I have 100 apples"))
        matches = speak(aligner, ["I", "have", "one", "hundred", "apples"])

        assert [m.word_index for m in matches] == [0, 1, 2, 2, 3]
        assert matches[3].advanced is False
        assert aligner.cursor == 4
        assert aligner.accuracy == 100.0

    def test_end_of_script_is_unmatched(self) -> None:
        aligner = KaraokeAligner(build_script_index("short script"))
        matches = speak(aligner, ["short", "script", "extra"])

        assert not matches[2].matched
        assert matches[2].script_word == ""
        assert aligner.cursor == 2


class TestResync:
    """Forward re-sync after a run of unmatched words."""

    def test_resync_jumps_forward(self) -> None:
        aligner = KaraokeAligner(build_script_index(NATO), max_unmatched_before_skip=4)
        matches = speak(aligner, ["november", "oscar", "papa", "quebec"])

        assert [m.matched for m in matches[:3]] == [False, False, False]
        last = matches[3]
        assert last.matched
        assert last.resync
        assert last.word_index == 16
        assert aligner.cursor == 17
        assert aligner.resync_count == 1

    def test_reading_continues_after_resync(self) -> None:
        aligner = KaraokeAligner(build_script_index(NATO))
        speak(aligner, ["november", "oscar", "papa", "quebec"])
        match = aligner.process_word(WordEvent("romeo", 0.9, 9000.0))

        assert match.word_index == 17
        assert match.is_exact

    def test_resync_disabled(self) -> None:
        aligner = KaraokeAligner(build_script_index(NATO), max_unmatched_before_skip=0)
        matches = speak(aligner, ["november", "oscar", "papa", "quebec", "romeo"])

        assert not any(m.matched for m in matches)
        assert aligner.cursor == 0

    def test_unrelated_words_do_not_resync(self) -> None:
        aligner = KaraokeAligner(build_script_index(NATO))
        speak(aligner, ["zzz", "qqq", "xxx", "www"])

        assert aligner.cursor == 0
        assert aligner.resync_count == 0


class TestThresholdAndControls:
    """Threshold clamping, jumps and resets."""

    def test_threshold_clamped(self) -> None:
        script = build_script_index(PANGRAM)
        assert KaraokeAligner(script, match_threshold=0.1).match_threshold == 0.3
        assert KaraokeAligner(script, match_threshold=1.5).match_threshold == 1.0

        aligner = KaraokeAligner(script)
        aligner.set_match_threshold(-2)
        assert aligner.match_threshold == 0.3

    def test_strict_threshold_rejects_fuzzy(self) -> None:
        aligner = KaraokeAligner(build_script_index(PANGRAM), match_threshold=1.0)
        speak(aligner, ["the"])
        assert not aligner.process_word(WordEvent("quik", 0.8, 2000.0)).matched

    def test_jump_to_clamps(self) -> None:
        aligner = KaraokeAligner(build_script_index(PANGRAM))
        aligner.jump_to(5)
        assert aligner.cursor == 5
        aligner.jump_to(100)
        assert aligner.cursor == 9
        aligner.jump_to(-3)
        assert aligner.cursor == 0

    def test_reset_clears_progress(self) -> None:
        aligner = KaraokeAligner(build_script_index(PANGRAM))
        speak(aligner, ["the", "quick"])
        aligner.reset()

        assert aligner.cursor == 0
        assert aligner.accuracy == 0.0
        assert len(aligner.history) == 0


class TestHighlighting:
    """Highlight lifetime and fade."""

    def test_highlight_expires(self) -> None:
        aligner = KaraokeAligner(build_script_index(PANGRAM),
                                 highlight_duration=1500, fade_out_delay=500)
        aligner.process_word(WordEvent("the", 0.9, 1000.0))

        assert aligner.highlighted_words(1000.0) == frozenset({0})
        assert aligner.highlight_opacity(0, 2000.0) == 1.0
        assert aligner.highlight_opacity(0, 2750.0) == pytest.approx(0.5)
        assert aligner.highlighted_words(3001.0) == frozenset()

    def test_state_snapshot(self) -> None:
        aligner = KaraokeAligner(build_script_index("One two. Three four.\n\nFive six."))
        speak(aligner, ["one", "two", "three"], start_ms=0.0, spacing_ms=1000.0)

        state = aligner.state(2000.0)
        assert state.current_word_index == 3
        assert state.current_sentence == 1
        assert state.current_paragraph == 0
        assert state.matched_count == 3
        assert state.words_per_minute == pytest.approx(90.0)
        assert state.highlighted_words == frozenset({0, 1, 2})

    def test_on_match_channel(self) -> None:
        aligner = KaraokeAligner(build_script_index(PANGRAM))
        seen: list[int] = []
        unsubscribe = aligner.on_match.subscribe(lambda m: seen.append(m.word_index))

        speak(aligner, ["the", "zebra"])
        unsubscribe()
        unsubscribe()
        speak(aligner, ["quick"], start_ms=5000.0)

        assert seen == [0]
