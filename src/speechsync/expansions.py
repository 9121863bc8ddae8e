# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Spoken forms of numeric script tokens.

A script token such as "100", "1,500", "3.5", "2nd" or "4K" is said as
several words ("one hundred", "fifteen hundred", ...). This module lists the
plausible spoken alternatives for a token and tracks a partially spoken
alternative so the aligner can treat "one hundred" as a single script word.
"""

import re
from re import Pattern

from num2words import num2words
from rapidfuzz import fuzz

from .script_index import ScriptIndex, normalize_word

PATTERNS: dict[str, Pattern[str]] = {
    'integer': re.compile(r'^-?\d+$'),
    'comma_integer': re.compile(r'^-?\d{1,3}(,\d{3})+$'),
    'decimal': re.compile(r'^-?\d+\.\d+$'),
    'ordinal': re.compile(r'^(\d+)(st|nd|rd|th)$', re.IGNORECASE),
    'percent': re.compile(r'^(\d+(?:\.\d+)?)%$'),
    'suffix_unit': re.compile(r'^(\d+(?:\.\d+)?)([A-Za-z]+)$'),
}

DIGIT_WORDS: dict[str, str] = {
    '0': 'zero', '1': 'one', '2': 'two', '3': 'three', '4': 'four',
    '5': 'five', '6': 'six', '7': 'seven', '8': 'eight', '9': 'nine'
}

FRACTIONS: dict[str, list[list[str]]] = {
    '0.5': [['half'], ['a', 'half']],
    '0.25': [['quarter'], ['a', 'quarter']],
    '0.75': [['three', 'quarters']],
}

# Units only expand when attached to a number
UNIT_WORDS: dict[str, list[list[str]]] = {
    'k': [['k'], ['thousand']],
    'm': [['m'], ['million'], ['metres'], ['meters']],
    'km': [['k', 'm'], ['kilometres'], ['kilometers']],
    'kg': [['k', 'g'], ['kilograms'], ['kilos']],
    'mb': [['m', 'b'], ['megabytes'], ['megs']],
    'gb': [['g', 'b'], ['gigabytes'], ['gigs']],
    'ms': [['m', 's'], ['milliseconds']],
    's': [['s'], ['seconds']],
    'x': [['x'], ['times']],
    'am': [['a', 'm']],
    'pm': [['p', 'm']],
}

EXPANSION_WORD_THRESHOLD: float = 75.0

_SURROUNDING = '"\'()[]{}<>,.;:!?'


def _words(text: str) -> list[str]:
    # num2words joins compounds with hyphens and large numbers with commas
    return text.replace('-', ' ').replace(',', '').split()


def _cardinal(num: int) -> list[str]:
    return _words(num2words(num))


def _digits(digit_str: str, use_oh: bool = False) -> list[str]:
    return ['oh' if d == '0' and use_oh else DIGIT_WORDS[d] for d in digit_str]


def _add(alternatives: list[list[str]], alt: list[str]) -> None:
    if alt and alt not in alternatives:
        alternatives.append(alt)


def expand_integer(num: int) -> list[list[str]]:
    """Spoken alternatives for an integer.

    Examples:
        100 -> [["one", "hundred"], ["a", "hundred"], ["one", "zero", "zero"]]
        1500 -> [["one", "thousand", "five", "hundred"], ["a", ...],
                 ["fifteen", "hundred"], ["one", "five", "zero", "zero"]]
    """
    sign = ['minus'] if num < 0 else []
    value = abs(num)
    alternatives: list[list[str]] = []

    primary = _cardinal(value)
    _add(alternatives, sign + primary)

    if num > 0:
        if primary[0] == 'one' and (100 <= value < 200 or 1000 <= value < 2000):
            _add(alternatives, ['a'] + primary[1:])
        if 1100 <= value <= 9999 and (value // 100) % 10 != 0:
            hundreds, rest = divmod(value, 100)
            tail = _cardinal(rest) if rest else []
            _add(alternatives, _cardinal(hundreds) + ['hundred'] + tail)
        if 1900 <= value <= 2099 and value % 100:
            # Year style: 1984 -> nineteen eighty four
            _add(alternatives, _cardinal(value // 100) + _cardinal(value % 100))

    _add(alternatives, sign + _digits(str(value)))
    return alternatives


def expand_decimal(num_str: str) -> list[list[str]]:
    """Spoken alternatives for a decimal such as "3.07" or "0.5"."""
    sign: list[str] = []
    if num_str.startswith('-'):
        sign, num_str = ['minus'], num_str[1:]
    int_part, dec_part = num_str.split('.', 1)
    int_words = ['zero'] if int(int_part) == 0 else _cardinal(int(int_part))

    alternatives: list[list[str]] = []
    _add(alternatives, sign + int_words + ['point'] + _digits(dec_part))
    _add(alternatives, sign + int_words + ['point'] + _digits(dec_part, use_oh=True))
    if int(int_part) == 0 and not sign:
        _add(alternatives, ['point'] + _digits(dec_part))
        for alt in FRACTIONS.get(num_str, []):
            _add(alternatives, alt)
    return alternatives


def expand_ordinal(num: int) -> list[list[str]]:
    """Spoken alternatives for an ordinal such as "23rd"."""
    return [_words(num2words(num, to='ordinal'))]


def _expand_number(num_str: str) -> list[list[str]]:
    if '.' in num_str:
        return expand_decimal(num_str)
    return expand_integer(int(num_str))


def strip_token(token: str) -> str:
    """Strip surrounding punctuation, keeping internal commas and points."""
    return token.strip().strip(_SURROUNDING)


def get_number_expansions(token: str) -> list[list[str]] | None:
    """
    Get all plausible spoken forms of a script token.

    Args:
        token: Script token as written (surrounding punctuation allowed).

    Returns:
        List of alternatives (each a list of words), or None if the token
        is not numeric.
    """
    stripped = strip_token(token)
    if not stripped or not any(ch.isdigit() for ch in stripped):
        return None

    match = PATTERNS['ordinal'].match(stripped)
    if match:
        return expand_ordinal(int(match.group(1)))

    if PATTERNS['comma_integer'].match(stripped):
        return expand_integer(int(stripped.replace(',', '')))

    if PATTERNS['decimal'].match(stripped):
        return expand_decimal(stripped)

    if PATTERNS['integer'].match(stripped):
        return expand_integer(int(stripped))

    match = PATTERNS['percent'].match(stripped)
    if match:
        return [alt + ['percent'] for alt in _expand_number(match.group(1))]

    match = PATTERNS['suffix_unit'].match(stripped)
    if match:
        unit = match.group(2).lower()
        unit_forms = UNIT_WORDS.get(unit, [list(unit)])
        alternatives: list[list[str]] = []
        for number_form in _expand_number(match.group(1)):
            for unit_form in unit_forms:
                _add(alternatives, number_form + unit_form)
        return alternatives

    return None


class ExpansionMatcher:
    """
    Tracks a multi-word spoken form of one numeric script word.

    The first spoken word of an alternative is enough to match the script
    word. Following words are checked against the alternatives still alive
    until one of them is complete.

    Example for "100":
      - "one" matches the script word, alternatives ["one", "hundred"] and
        ["one", "zero", "zero"] stay alive
      - "hundred" continues ["one", "hundred"], which is now complete
    """

    def __init__(self, script: ScriptIndex) -> None:
        self.script = script
        self._cache: dict[int, list[list[str]] | None] = {}
        self.active_index: int | None = None
        self.active_expansions: list[list[str]] = []
        self.match_position: int = 0

    def expansions_for(self, index: int) -> list[list[str]] | None:
        """Spoken alternatives for the script word at index (cached)."""
        if index not in self._cache:
            entry = self.script.get(index)
            self._cache[index] = get_number_expansions(entry.text) if entry else None
        return self._cache[index]

    def first_words(self, index: int) -> list[str]:
        """Possible first spoken words for the script word at index."""
        firsts: list[str] = []
        for exp in self.expansions_for(index) or []:
            if exp[0] not in firsts:
                firsts.append(exp[0])
        return firsts

    def start(self, index: int, spoken_word: str) -> bool:
        """
        Begin matching an expansion at index with the first spoken word.

        Returns:
            True if the spoken word starts at least one alternative.
        """
        spoken = normalize_word(spoken_word)
        alive = [exp for exp in self.expansions_for(index) or []
                 if self._word_matches(spoken, exp[0])]
        if not alive:
            self.clear()
            return False
        self.active_index = index
        self.active_expansions = alive
        self.match_position = 1
        if self.is_complete():
            self.clear()
        return True

    def continue_with(self, spoken_word: str) -> bool:
        """
        Feed the next spoken word to the active expansion.

        Returns:
            True if the word continued an alternative. The matcher clears
            itself once an alternative is complete or none continue.
        """
        if not self.is_active:
            return False
        spoken = normalize_word(spoken_word)
        pos = self.match_position
        alive = [exp for exp in self.active_expansions
                 if pos < len(exp) and self._word_matches(spoken, exp[pos])]
        if not alive:
            self.clear()
            return False
        self.active_expansions = alive
        self.match_position += 1
        if self.is_complete():
            self.clear()
        return True

    def is_complete(self) -> bool:
        """True if any alive alternative has been fully spoken."""
        return any(self.match_position >= len(exp) for exp in self.active_expansions)

    def clear(self) -> None:
        """Clear the expansion matching state."""
        self.active_index = None
        self.active_expansions = []
        self.match_position = 0

    @property
    def is_active(self) -> bool:
        """Check if currently matching an expansion."""
        return self.active_index is not None and bool(self.active_expansions)

    @staticmethod
    def _word_matches(spoken: str, expected: str) -> bool:
        return bool(spoken) and (
            spoken == expected or fuzz.ratio(spoken, expected) >= EXPANSION_WORD_THRESHOLD)
