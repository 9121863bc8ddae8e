# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Adaptive scroll control.

Two input edges drive one ScrollState and must be called from the same
thread (or through one ordered queue):
- on_word(): a word arrived, re-target the velocity from the current pace
- tick(): a display frame, smooth the velocity and integrate the position

Pause detection is a deadline re-checked on every tick against a monotonic
clock, so nothing is left scheduled once the controller stops.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from .config import clamp_setting

logger = logging.getLogger(__name__)

MAX_TICK_SECONDS: float = 0.1


@dataclass(frozen=True)
class WordRect:
    """On-screen layout of one script word, in scroll-content pixels."""
    top: float
    height: float = 0.0
    left: float = 0.0
    width: float = 0.0


LayoutProvider = Callable[[int], "WordRect | None"]


class LayoutCache:
    """Word rectangles pushed by the renderer, usable as a LayoutProvider."""

    def __init__(self) -> None:
        self._rects: dict[int, WordRect] = {}

    def update(self, rects: dict[int, WordRect]) -> None:
        self._rects.update(rects)

    def clear(self) -> None:
        self._rects.clear()

    def __call__(self, word_index: int) -> WordRect | None:
        return self._rects.get(word_index)

    def __len__(self) -> int:
        return len(self._rects)


@dataclass(frozen=True)
class ScrollState:
    """Published scroll output for one frame."""
    position: float
    velocity: float
    is_user_controlled: bool
    base_position: float = 0.0
    look_ahead_offset: float = 0.0
    target_velocity: float = 0.0
    is_paused: bool = True


class AdaptiveScrollController:
    """
    Pace-following scroll velocity with smoothing, limits, pause handling
    and a look-ahead bias.

    While words are flowing the smoothed velocity stays within
    [base * deceleration_limit, base * acceleration_limit]. After a pause the
    velocity ramps up from zero through the same smoothing, so it is briefly
    below the lower limit instead of stepping.
    """

    def __init__(
        self,
        base_scroll_speed: float = 50.0,
        responsiveness: float = 0.7,
        smoothing_factor: float = 0.8,
        pause_threshold: float = 2.0,
        acceleration_limit: float = 3.0,
        deceleration_limit: float = 0.1,
        look_ahead_words: int = 5,
        target_wpm: float = 150.0,
        layout: LayoutProvider | None = None,
        clock: Callable[[], float] = time.monotonic,
        look_ahead_easing: float = 0.2
    ):
        """
        Initialize the controller.

        Args:
            base_scroll_speed: Velocity at target pace (px/s), 10 - 200
            responsiveness: How strongly pace deviations change velocity, 0.1 - 1.0
            smoothing_factor: EMA weight of the new target per tick, 0.1 - 1.0
            pause_threshold: Seconds without words before scrolling stops, 0.5 - 5.0
            acceleration_limit: Max velocity as a multiple of base, 1 - 5
            deceleration_limit: Min velocity as a multiple of base, 0.1 - 1
            look_ahead_words: Words of look-ahead bias, 1 - 20
            target_wpm: Pace at which velocity equals base_scroll_speed
            layout: Word index -> WordRect lookup supplied by the renderer
            clock: Monotonic clock in seconds
            look_ahead_easing: Fraction of the look-ahead error closed per tick
        """
        self.base_scroll_speed = clamp_setting("adaptive_scroll", "base_scroll_speed", base_scroll_speed)
        self.responsiveness = clamp_setting("adaptive_scroll", "responsiveness", responsiveness)
        self.smoothing_factor = clamp_setting("adaptive_scroll", "smoothing_factor", smoothing_factor)
        self.pause_threshold = clamp_setting("adaptive_scroll", "pause_threshold", pause_threshold)
        self.acceleration_limit = clamp_setting("adaptive_scroll", "acceleration_limit", acceleration_limit)
        self.deceleration_limit = clamp_setting("adaptive_scroll", "deceleration_limit", deceleration_limit)
        self.look_ahead_words = clamp_setting("adaptive_scroll", "look_ahead_words", look_ahead_words)
        self.target_wpm = float(target_wpm)
        self.layout = layout
        self.clock = clock
        self.look_ahead_easing = look_ahead_easing
        self.missing_layout_count = 0
        self.start()

    @property
    def min_velocity(self) -> float:
        return self.base_scroll_speed * self.deceleration_limit

    @property
    def max_velocity(self) -> float:
        return self.base_scroll_speed * self.acceleration_limit

    def start(self, now: float | None = None) -> None:
        """Reset to the top of the script, paused until the first word."""
        self.running = True
        self.velocity = 0.0
        self.target_velocity = self.base_scroll_speed
        self.base_position = 0.0
        self.look_ahead_offset = 0.0
        self.current_index = 0
        self.is_paused = True
        self.is_user_controlled = False
        self.last_word_time: float | None = None
        self.pause_deadline: float | None = None
        self.last_tick: float | None = now
        self.missing_layout_count = 0

    def stop(self) -> None:
        """Freeze the controller and cancel the pause deadline."""
        self.running = False
        self.pause_deadline = None
        self.velocity = 0.0

    def pace_multiplier(self, current_wpm: float) -> float:
        """1.0 at target pace, scaled by responsiveness away from it."""
        if current_wpm <= 0 or self.target_wpm <= 0:
            return 1.0
        ratio = current_wpm / self.target_wpm
        return 1.0 + self.responsiveness * (ratio - 1.0)

    def compute_target_velocity(self, current_wpm: float) -> float:
        velocity = self.base_scroll_speed * self.pace_multiplier(current_wpm)
        return min(max(velocity, self.min_velocity), self.max_velocity)

    def on_word(self, current_wpm: float, word_index: int, now: float | None = None) -> None:
        """
        Word edge: re-target velocity and push the pause deadline out.

        Args:
            current_wpm: Latest sliding-window pace
            word_index: Aligner cursor after this word
            now: Clock time (seconds); defaults to the injected clock
        """
        if not self.running:
            return
        now = self.clock() if now is None else now
        self.target_velocity = self.compute_target_velocity(current_wpm)
        self.current_index = max(0, word_index)
        self.last_word_time = now
        self.pause_deadline = now + self.pause_threshold
        if self.is_paused:
            logger.debug("Scroll resumed at word %d", self.current_index)
            self.is_paused = False

    def tick(self, now: float | None = None) -> ScrollState:
        """
        Display edge: smooth, integrate and publish.

        Returns:
            The ScrollState for this frame.
        """
        now = self.clock() if now is None else now
        dt = 0.0
        if self.last_tick is not None:
            dt = min(max(now - self.last_tick, 0.0), MAX_TICK_SECONDS)
        self.last_tick = now

        if not self.running or self.is_user_controlled:
            return self.state

        if self.pause_deadline is not None and now >= self.pause_deadline:
            logger.debug("Scroll paused: no words for %.1fs", self.pause_threshold)
            self.is_paused = True
            self.pause_deadline = None

        if self.is_paused:
            self.velocity = 0.0
        else:
            alpha = self.smoothing_factor
            self.velocity = alpha * self.target_velocity + (1 - alpha) * self.velocity

        self.base_position += self.velocity * dt
        self._update_look_ahead()
        return self.state

    def _update_look_ahead(self) -> None:
        if self.layout is None:
            return
        current = self.layout(self.current_index)
        ahead = self.layout(self.current_index + self.look_ahead_words)
        if ahead is None and current is not None:
            # Near the end of the script: look ahead to the last laid-out word
            for idx in range(self.current_index + self.look_ahead_words - 1, self.current_index, -1):
                ahead = self.layout(idx)
                if ahead is not None:
                    break
            else:
                ahead = current
        if current is None or ahead is None:
            self.missing_layout_count += 1
            return
        desired = ahead.top - current.top
        self.look_ahead_offset += self.look_ahead_easing * (desired - self.look_ahead_offset)

    def begin_user_scroll(self, position: float) -> None:
        """Suspend automatic scrolling while the user drags."""
        self.is_user_controlled = True
        self.base_position = position - self.look_ahead_offset

    def update_user_scroll(self, position: float) -> None:
        if self.is_user_controlled:
            self.base_position = position - self.look_ahead_offset

    def end_user_scroll(self, current_wpm: float, now: float | None = None) -> None:
        """
        Resume automatic scrolling from where the user left off, with the
        velocity re-seeded from the current pace.
        """
        if not self.is_user_controlled:
            return
        now = self.clock() if now is None else now
        self.is_user_controlled = False
        self.target_velocity = self.compute_target_velocity(current_wpm)
        self.velocity = 0.0 if self.is_paused else self.target_velocity
        self.last_tick = now

    @property
    def position(self) -> float:
        return self.base_position + self.look_ahead_offset

    @property
    def state(self) -> ScrollState:
        return ScrollState(
            position=self.position,
            velocity=self.velocity,
            is_user_controlled=self.is_user_controlled,
            base_position=self.base_position,
            look_ahead_offset=self.look_ahead_offset,
            target_velocity=self.target_velocity,
            is_paused=self.is_paused,
        )
