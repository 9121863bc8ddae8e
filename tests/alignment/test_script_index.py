# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Tests for script segmentation into paragraphs, sentences and words.
"""

from speechsync.script_index import (
    ScriptIndex,
    build_script_index,
    normalize_word,
    split_paragraphs,
)


SCRIPT = "Hello, world! This is a test.\n\nSecond paragraph here."


class TestNormalizeWord:
    """Tests for word normalization."""

    def test_lowercases_and_strips_punctuation(self) -> None:
        assert normalize_word("Hello,") == "hello"
        assert normalize_word("don't") == "dont"
        assert normalize_word('"Quoted."') == "quoted"

    def test_punctuation_only_is_empty(self) -> None:
        assert normalize_word("-") == ""
        assert normalize_word("...") == ""


class TestBuildScriptIndex:
    """Tests for the flattened script index."""

    def test_word_entries_are_contiguous(self) -> None:
        script: ScriptIndex = build_script_index(SCRIPT)

        assert len(script) == 9
        assert [e.global_index for e in script] == list(range(9))
        assert script.normalized_words == [
            "hello", "world", "this", "is", "a", "test", "second", "paragraph", "here"]

    def test_paragraph_and_sentence_indices(self) -> None:
        script = build_script_index(SCRIPT)

        assert script.paragraph_count == 2
        assert script.sentence_count == 3
        assert [e.paragraph_index for e in script] == [0] * 6 + [1] * 3
        assert [e.sentence_index for e in script] == [0, 0, 1, 1, 1, 1, 2, 2, 2]

    def test_char_offsets_point_into_text(self) -> None:
        script = build_script_index(SCRIPT)

        for entry in script:
            assert script.text[entry.char_start:entry.char_end] == entry.text
        assert script[0].text == "Hello,"

    def test_markdown_is_rendered(self) -> None:
        script = build_script_index("# Title\n\nSome **bold** text.")

        assert script.normalized_words == ["title", "some", "bold", "text"]
        assert [e.paragraph_index for e in script] == [0, 1, 1, 1]

    def test_punctuation_tokens_are_not_indexed(self) -> None:
        script = build_script_index("Wait - what ... now")

        assert script.normalized_words == ["wait", "what", "now"]

    def test_decimal_point_does_not_end_sentence(self) -> None:
        script = build_script_index("Pi is 3.14 exactly.")

        assert script.sentence_count == 1
        assert script.normalized_words == ["pi", "is", "314", "exactly"]
        assert script[2].text == "3.14"

    def test_plain_text_splits_on_blank_lines(self) -> None:
        script = build_script_index("*one* line\n\n\ntwo", render_markdown=False)

        assert script.paragraph_count == 2
        assert script.normalized_words == ["one", "line", "two"]

    def test_empty_script(self) -> None:
        script = build_script_index("   \n\n  ")

        assert len(script) == 0
        assert script.paragraph_count == 0
        assert script.get(0) is None

    def test_lookup_helpers(self) -> None:
        script = build_script_index(SCRIPT, script_id="demo")

        assert script.script_id == "demo"
        assert script.get(8).word == "here"
        assert script.get(9) is None
        assert script.get(-1) is None
        assert [e.word for e in script.paragraph_words(1)] == ["second", "paragraph", "here"]
        assert [e.word for e in script.sentence_words(1)] == ["this", "is", "a", "test"]


def test_split_paragraphs_uses_block_elements() -> None:
    """Headings and list items become separate paragraphs."""
    paragraphs = split_paragraphs("## Intro\n\n- first point\n- second point")

    assert paragraphs == ["Intro", "first point", "second point"]
