# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Tests for spoken forms of numeric script tokens.
"""

import pytest

from speechsync.expansions import ExpansionMatcher, get_number_expansions, strip_token
from speechsync.script_index import build_script_index


class TestGetNumberExpansions:
    """Tests for listing spoken alternatives."""

    def test_non_numeric_returns_none(self):
        assert get_number_expansions("hello") is None
        assert get_number_expansions("") is None

    @pytest.mark.parametrize("token,expected", [
        ("100", ["one", "hundred"]),
        ("100", ["a", "hundred"]),
        ("100", ["one", "zero", "zero"]),
        ("1,500", ["fifteen", "hundred"]),
        ("1,500", ["one", "thousand", "five", "hundred"]),
        ("1984", ["nineteen", "eighty", "four"]),
        ("3.5", ["three", "point", "five"]),
        ("0.5", ["half"]),
        ("0.5", ["a", "half"]),
        ("2nd", ["second"]),
        ("50%", ["fifty", "percent"]),
        ("4K", ["four", "thousand"]),
        ("4K", ["four", "k"]),
        ("(100),", ["one", "hundred"]),
    ])
    def test_includes_alternative(self, token, expected):
        assert expected in get_number_expansions(token)

    def test_negative_numbers(self):
        assert ["minus", "five"] in get_number_expansions("-5")

    def test_strip_token_keeps_internal_separators(self):
        assert strip_token("(1,500.25).") == "1,500.25"


class TestExpansionMatcher:
    """Tests for tracking a partially spoken numeric word."""

    def setup_method(self):
        self.script = build_script_index("I have 100 apples")
        self.matcher = ExpansionMatcher(self.script)

    def test_first_words(self):
        firsts = self.matcher.first_words(2)
        assert "one" in firsts
        assert "a" in firsts
        assert self.matcher.first_words(0) == []

    def test_multi_word_match_completes(self):
        assert self.matcher.start(2, "one")
        assert self.matcher.is_active
        assert self.matcher.active_index == 2

        assert self.matcher.continue_with("hundred")
        assert not self.matcher.is_active

    def test_wrong_continuation_clears(self):
        assert self.matcher.start(2, "one")
        assert not self.matcher.continue_with("banana")
        assert not self.matcher.is_active

    def test_wrong_first_word(self):
        assert not self.matcher.start(2, "banana")
        assert not self.matcher.is_active

    def test_expansions_are_cached(self):
        first = self.matcher.expansions_for(2)
        assert self.matcher.expansions_for(2) is first
