# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Per-session diagnostics.

Counts the non-fatal conditions the engine absorbs (rejected events, missed
alignments, missing layout, ...) and, when a log directory is given, writes
a timestamped word log for the session:
- <session_id>_words.log: alignment verdicts, position changes, fillers
"""

import logging
from collections import Counter
from datetime import datetime
from pathlib import Path

logger = logging.getLogger(__name__)

# Default location for session word logs
LOG_DIR: Path = Path.cwd() / "logs"

OUT_OF_ORDER = "out_of_order_event"
NO_ALIGNMENT = "no_alignment_match"
ZERO_DURATION = "zero_duration_window"
MISSING_LAYOUT = "missing_layout"
CONFIG_OUT_OF_RANGE = "config_out_of_range"
MALFORMED_EVENT = "malformed_event"
SUPERSEDED_EVENT = "superseded_event"
IGNORED_EVENT = "ignored_event"
RESYNC = "resync"


def _timestamp() -> str:
    """Get current timestamp."""
    return datetime.now().strftime("%H:%M:%S.%f")[:-3]


class Diagnostics:
    """
    Session-scoped counters plus an optional word log file.

    Usage:
        diag = Diagnostics("abc123", log_dir=Path("logs"))
        diag.count(OUT_OF_ORDER)
        diag.log_word(12, "hello", "match")
    """

    def __init__(self, session_id: str, log_dir: Path | None = None) -> None:
        self.session_id = session_id
        self.counters: Counter[str] = Counter()
        self.log_path: Path | None = None
        if log_dir is not None:
            self.log_path = Path(log_dir) / f"{session_id}_words.log"

    @property
    def enabled(self) -> bool:
        """Whether the word log file is being written."""
        return self.log_path is not None

    def count(self, condition: str, amount: int = 1) -> None:
        self.counters[condition] += amount

    def set_count(self, condition: str, value: int) -> None:
        """Overwrite a counter tracked elsewhere (e.g. by a component)."""
        self.counters[condition] = value

    def snapshot(self) -> dict[str, int]:
        return dict(self.counters)

    def _write(self, line: str) -> None:
        if self.log_path is None:
            return
        try:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.log_path, 'a', encoding='utf-8') as f:
                f.write(line)
        except OSError as e:
            logger.warning("Disabling word log %s: %s", self.log_path, e)
            self.log_path = None

    def start(self) -> None:
        """Truncate the log for a fresh session."""
        if self.log_path is None:
            return
        try:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.log_path, 'w', encoding='utf-8') as f:
                f.write(f"=== Session {self.session_id} started at "
                        f"{datetime.now().isoformat()} ===\n\n")
        except OSError as e:
            logger.warning("Disabling word log %s: %s", self.log_path, e)
            self.log_path = None

    def log_word(self, word_index: int, word: str, event: str = "match") -> None:
        """
        Log an alignment verdict.

        Args:
            word_index: The position in the script
            word: The spoken word
            event: Type of event (match, unmatched, resync, absorbed, filler)
        """
        self._write(f"[{_timestamp()}] {event:15} pos={word_index:4d} word=\"{word}\"\n")

    def log_position_update(self, old_pos: int, new_pos: int, reason: str) -> None:
        self._write(f"[{_timestamp()}] POSITION CHANGE: {old_pos} -> {new_pos} ({reason})\n")

    def log_summary(self) -> None:
        """Append the final counters to the log."""
        if not self.counters:
            return
        summary = ', '.join(f"{k}={v}" for k, v in sorted(self.counters.items()))
        self._write(f"[{_timestamp()}] SUMMARY: {summary}\n")
