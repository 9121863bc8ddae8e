# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Threaded wrapper for PracticeSession.

Recognition callbacks can arrive on any thread. This wrapper funnels word
events, transcript fragments and control commands through one ordered queue
consumed by a single worker thread, which also runs the display ticks. The
worker is therefore the only writer of session state.
"""

import logging
import queue
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .config import Config
from .events import Unsubscribe, WordEvent
from .report import SessionSummaryReport
from .script_index import ScriptIndex
from .session import PracticeSession, RecognitionSource, RenderUpdate

logger = logging.getLogger(__name__)


@dataclass
class TranscriptFragment:
    """A raw transcript fragment for rule-based filler detection."""
    text: str
    timestamp_ms: float


@dataclass
class ControlCommand:
    """Control command for the worker thread."""
    command: str  # 'start', 'end', 'layout', 'user_scroll_*', 'jump_to', 'shutdown'
    param: Any = None
    reply: "queue.Queue[Any] | None" = None


class ThreadedSession:
    """
    Thread-safe front end for a PracticeSession.

    Features:
    - Non-blocking submit_word() from recognizer threads
    - Backpressure handling (interim events are dropped when the queue is full)
    - Worker thread ticks the display at tick_hz between events
    - Cached render update for immediate access

    Usage:
        session = ThreadedSession(script)
        session.start()
        session.submit_word(WordEvent("hello", 0.9, 1200.0))

        update = session.get_latest_update()
        if update:
            send_to_ui(update)

        report = session.end_session()
        session.shutdown()
    """

    def __init__(
        self,
        script: ScriptIndex,
        config: Config | None = None,
        tick_hz: float | None = None,
        max_queue_size: int = 256,
        put_timeout: float = 0.05,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize the threaded session.

        Args:
            script: The indexed script to practice
            config: Session configuration (defaults if None)
            tick_hz: Display tick rate; defaults to session.tick_hz from config
            max_queue_size: Maximum queue size before backpressure kicks in
            put_timeout: How long a final event may wait for queue space (s)
            clock: Monotonic clock in seconds
        """
        self.session = PracticeSession(script, config=config, clock=clock)
        rate = tick_hz if tick_hz is not None else self.session.config["session"]["tick_hz"]
        self.tick_interval = 1.0 / max(1.0, float(rate))
        self.put_timeout = put_timeout
        self.clock = clock

        # Queues for communication
        self.request_queue: queue.Queue[WordEvent | TranscriptFragment | ControlCommand] = (
            queue.Queue(maxsize=max_queue_size))
        self.update_queue: queue.Queue[RenderUpdate] = queue.Queue(maxsize=4)

        # Thread control
        self.worker_thread: threading.Thread | None = None
        self.shutdown_flag = threading.Event()
        self.started = threading.Event()

        # Cached state (thread-safe with lock)
        self.state_lock = threading.Lock()
        self.latest_update: RenderUpdate | None = None
        self.dropped_count = 0
        self._sources: list[Unsubscribe] = []

        self._start_worker()

        self.started.wait(timeout=5.0)
        if not self.started.is_set():
            raise RuntimeError("Worker thread failed to start")

    def _start_worker(self) -> None:
        """Start the worker thread."""
        self.worker_thread = threading.Thread(
            target=self._worker_loop,
            name="SessionWorker",
            daemon=True
        )
        self.worker_thread.start()

    def _worker_loop(self) -> None:
        """Main loop for the worker thread."""
        try:
            logger.info("ThreadedSession worker started")
            self.started.set()
            next_tick = self.clock()

            while not self.shutdown_flag.is_set():
                timeout = max(0.0, next_tick - self.clock())
                try:
                    item = self.request_queue.get(timeout=min(timeout, 0.1))
                    if isinstance(item, ControlCommand):
                        self._handle_control_command(item)
                    elif isinstance(item, TranscriptFragment):
                        self.session.handle_transcript_fragment(item.text, item.timestamp_ms)
                    elif isinstance(item, WordEvent):
                        self.session.handle_word_event(item)
                except queue.Empty:
                    pass
                except Exception as e:
                    logger.error("Error in worker loop: %s", e, exc_info=True)

                now = self.clock()
                if now >= next_tick:
                    self._publish(self.session.tick(now))
                    next_tick = now + self.tick_interval

        finally:
            logger.info("ThreadedSession worker stopped")

    def _publish(self, update: RenderUpdate) -> None:
        with self.state_lock:
            self.latest_update = update
        try:
            self.update_queue.put_nowait(update)
        except queue.Full:
            # Drop oldest update and try again
            try:
                self.update_queue.get_nowait()
                self.update_queue.put_nowait(update)
            except (queue.Empty, queue.Full):
                pass

    def _handle_control_command(self, cmd: ControlCommand) -> None:
        """Handle control commands."""
        result: Any = None
        if cmd.command == 'start':
            self.session.start(start_ms=cmd.param)
        elif cmd.command == 'end':
            result = self.session.end(end_ms=cmd.param)
        elif cmd.command == 'layout':
            self.session.update_layout(cmd.param)
        elif cmd.command == 'user_scroll_start':
            self.session.begin_user_scroll(cmd.param)
        elif cmd.command == 'user_scroll':
            self.session.update_user_scroll(cmd.param)
        elif cmd.command == 'user_scroll_end':
            self.session.end_user_scroll()
        elif cmd.command == 'jump_to':
            self.session.jump_to(cmd.param)
        elif cmd.command == 'shutdown':
            self.shutdown_flag.set()
        else:
            logger.warning("Unknown control command: %s", cmd.command)

        if cmd.reply is not None:
            cmd.reply.put(result)

    def _send_command(self, command: str, param: Any = None) -> None:
        try:
            self.request_queue.put(ControlCommand(command, param), timeout=1.0)
        except queue.Full:
            logger.warning("Failed to queue %s command (queue full)", command)

    def submit_word(self, event: WordEvent) -> bool:
        """
        Submit a recognized word (non-blocking for interims).

        Returns:
            True if the event was queued, False if it was dropped
        """
        try:
            if event.is_final:
                self.request_queue.put(event, timeout=self.put_timeout)
            else:
                self.request_queue.put_nowait(event)
            return True
        except queue.Full:
            with self.state_lock:
                self.dropped_count += 1
            if event.is_final:
                logger.warning("Backpressure: dropping final word '%s' (queue full)", event.word)
            else:
                logger.debug("Backpressure: dropping interim word '%s'", event.word)
            return False

    def submit_transcript(self, text: str, timestamp_ms: float) -> bool:
        """Submit a transcript fragment for rule-based filler detection."""
        try:
            self.request_queue.put_nowait(TranscriptFragment(text, timestamp_ms))
            return True
        except queue.Full:
            logger.warning("Backpressure: dropping transcript fragment")
            return False

    def attach(self, source: RecognitionSource) -> Unsubscribe:
        """Subscribe to a recognition source; events go through the queue."""
        unsubscribe = source.subscribe(self.submit_word)
        self._sources.append(unsubscribe)
        return unsubscribe

    def start(self, start_ms: float | None = None) -> None:
        self._send_command('start', start_ms)

    def update_layout(self, rects: dict) -> None:
        self._send_command('layout', rects)

    def begin_user_scroll(self, position: float) -> None:
        self._send_command('user_scroll_start', position)

    def update_user_scroll(self, position: float) -> None:
        self._send_command('user_scroll', position)

    def end_user_scroll(self) -> None:
        self._send_command('user_scroll_end')

    def jump_to(self, word_index: int) -> None:
        self._send_command('jump_to', word_index)

    def end_session(self, end_ms: float | None = None, timeout: float = 5.0
                    ) -> SessionSummaryReport | None:
        """
        End the session after all queued events are processed.

        Returns:
            The session report, or None if the worker did not answer in time
        """
        for unsubscribe in self._sources:
            unsubscribe()
        self._sources.clear()

        reply: queue.Queue[Any] = queue.Queue(maxsize=1)
        try:
            self.request_queue.put(ControlCommand('end', end_ms, reply), timeout=timeout)
            return reply.get(timeout=timeout)
        except (queue.Full, queue.Empty):
            logger.error("Timed out waiting for session report")
            return None

    def get_latest_update(self, timeout: float = 0) -> RenderUpdate | None:
        """
        Get the next render update from the queue.

        Args:
            timeout: How long to wait for an update (0 = don't wait)
        """
        try:
            if timeout > 0:
                return self.update_queue.get(timeout=timeout)
            return self.update_queue.get_nowait()
        except queue.Empty:
            return None

    def get_cached_update(self) -> RenderUpdate | None:
        """Latest render update without consuming from the queue."""
        with self.state_lock:
            return self.latest_update

    def shutdown(self) -> None:
        """Shutdown the worker thread."""
        try:
            self.request_queue.put(ControlCommand('shutdown'), timeout=1.0)
        except queue.Full:
            pass

        self.shutdown_flag.set()

        if self.worker_thread and self.worker_thread.is_alive():
            self.worker_thread.join(timeout=2.0)
