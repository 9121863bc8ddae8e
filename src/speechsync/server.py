# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
WebSocket bridge between a recognizer client, the engine and a renderer.

All session state is touched only from the event loop thread: WebSocket
handlers feed words in, and a render loop task ticks the session and
broadcasts the result.
"""

import asyncio
import contextlib
import json
import logging
import math
import re
from html.parser import HTMLParser
from pathlib import Path
from typing import Any

import markdown
from aiohttp import web

from .config import Config, default_config, save_config, update_config_section
from .events import WordEvent
from .fillers import FillerWordDetection
from .recognition import TranscriptionResult, TranscriptWordSplitter
from .report import SessionSummaryReport
from .script_index import BLOCK_TAGS, ScriptIndex, build_script_index, normalize_word
from .scroll import WordRect
from .session import PracticeSession, SessionStatus

logger = logging.getLogger(__name__)


class WordIndexingHTMLParser(HTMLParser):
    """HTML parser that wraps script words with spans carrying their index.

    Words are numbered in the same order as build_script_index numbers them,
    so the renderer can report layout per index. A word split by inline
    markup ("foo<strong>bar</strong>") is one script word, so each of its
    pieces gets a span with the same index.
    """

    def __init__(self, total_words: int) -> None:
        super().__init__(convert_charrefs=True)
        self.total_words = total_words
        self.next_index = 0
        self.output: list[str] = []
        # (output slot, escaped text) of each piece of the word being read
        self._pieces: list[tuple[int, str]] = []
        self._word: list[str] = []

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        if tag in BLOCK_TAGS or tag == 'br':
            self._end_word()
        attrs_str: str = ''.join(f' {k}="{v}"' for k, v in attrs)
        self.output.append(f'<{tag}{attrs_str}>')

    def handle_endtag(self, tag: str) -> None:
        if tag in BLOCK_TAGS:
            self._end_word()
        self.output.append(f'</{tag}>')

    def handle_startendtag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        if tag in BLOCK_TAGS or tag == 'br':
            self._end_word()
        attrs_str: str = ''.join(f' {k}="{v}"' for k, v in attrs)
        self.output.append(f'<{tag}{attrs_str}/>')

    def handle_data(self, data: str) -> None:
        for part in re.split(r'(\s+)', data):
            if not part:
                continue
            escaped = part.replace('&', '&amp;').replace('<', '&lt;').replace('>', '&gt;')
            if part.isspace():
                self._end_word()
                self.output.append(escaped)
            else:
                self._pieces.append((len(self.output), escaped))
                self.output.append(escaped)
                self._word.append(part)

    def _end_word(self) -> None:
        """Wrap the pieces of the finished word if it is speakable."""
        if not self._pieces:
            return
        if normalize_word(''.join(self._word)) and self.next_index < self.total_words:
            for slot, escaped in self._pieces:
                self.output[slot] = (
                    f'<span class="word" data-word-index="{self.next_index}">{escaped}</span>')
            self.next_index += 1
        self._pieces = []
        self._word = []

    def close(self) -> None:
        super().close()
        self._end_word()

    def get_output(self) -> str:
        self._end_word()
        return ''.join(self.output)


def render_script_with_word_indices(script_text: str) -> tuple[str, ScriptIndex]:
    """Render a script to indexed HTML and build its ScriptIndex.

    Returns:
        Tuple of (html_with_word_spans, script_index)
    """
    script = build_script_index(script_text)
    parser = WordIndexingHTMLParser(len(script))
    parser.feed(markdown.markdown(script_text))
    parser.close()
    return parser.get_output(), script


def _parse_rects(raw: object) -> dict[int, WordRect]:
    """Layout payload {"<index>": {"top": .., "height": ..}} -> WordRects."""
    rects: dict[int, WordRect] = {}
    if not isinstance(raw, dict):
        return rects
    for key, value in raw.items():
        try:
            index = int(key)
            top = float(value["top"])
            height = float(value.get("height", 0.0))
        except (TypeError, ValueError, KeyError, AttributeError):
            continue
        if math.isfinite(top) and math.isfinite(height):
            rects[index] = WordRect(top=top, height=height)
    return rects


def _number(value: object, default: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return float(value)


class SyncServer:
    """
    Serves the engine over WebSocket and HTTP.
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 8000,
        config: Config | None = None,
        log_dir: Path | None = None
    ) -> None:
        self.host: str = host
        self.port: int = port
        self.config: Config = config or default_config()
        self.log_dir = log_dir
        self.app: web.Application = web.Application()
        self.websockets: set[web.WebSocketResponse] = set()
        self.runner: web.AppRunner | None = None

        # Current state
        self.script_text: str = ""
        self.script_html: str = ""
        self.script: ScriptIndex | None = None
        self.session: PracticeSession | None = None
        self.last_report: SessionSummaryReport | None = None
        self.splitter = TranscriptWordSplitter()
        self._render_task: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[None]] = set()

        self._setup_routes()

    def _setup_routes(self) -> None:
        """Set up HTTP routes."""
        self.app.router.add_get('/ws', self._handle_websocket)
        self.app.router.add_post('/script', self._handle_script_upload)
        self.app.router.add_get('/settings', self._handle_get_settings)
        self.app.router.add_get('/report', self._handle_get_report)

    async def _handle_websocket(self, request: web.Request) -> web.WebSocketResponse:
        """Handle WebSocket connections for real-time updates."""
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        self.websockets.add(ws)
        logger.info("WebSocket connected. Total: %d", len(self.websockets))

        try:
            await ws.send_json({
                "type": "init",
                "script": self.script_text,
                "scriptHtml": self.script_html,
                "totalWords": len(self.script) if self.script else 0,
                "settings": self.config,
                "sessionStatus": self.session.status.value if self.session else None,
            })

            async for msg in ws:
                if msg.type == web.WSMsgType.TEXT:
                    try:
                        data = json.loads(msg.data)
                    except json.JSONDecodeError:
                        logger.warning("Ignoring non-JSON WebSocket message")
                        continue
                    if isinstance(data, dict):
                        await self._handle_ws_message(ws, data)
                elif msg.type == web.WSMsgType.ERROR:
                    logger.warning("WebSocket error: %s", ws.exception())
        finally:
            self.websockets.discard(ws)
            logger.info("WebSocket disconnected. Total: %d", len(self.websockets))

        return ws

    async def _handle_ws_message(self, ws: web.WebSocketResponse, data: dict[str, object]) -> None:
        """Handle incoming WebSocket messages using dispatch pattern."""
        msg_type: object | None = data.get("type")
        if not msg_type:
            return

        # Message type to handler dispatch
        handlers: dict[str, object] = {
            "script": self._on_script_message,
            "settings": self._on_settings_message,
            "save_config": self._on_save_config_message,
            "start": self._on_start_message,
            "word": self._on_word_message,
            "transcription": self._on_transcription_message,
            "transcript": self._on_transcript_message,
            "layout": self._on_layout_message,
            "user_scroll_start": self._on_user_scroll_start,
            "user_scroll": self._on_user_scroll,
            "user_scroll_end": self._on_user_scroll_end,
            "jump_to": self._on_jump_to_message,
            "end": self._on_end_message,
        }

        handler: object | None = handlers.get(msg_type)  # type: ignore[arg-type]
        if handler:
            await handler(ws, data)  # type: ignore[operator]
        else:
            logger.warning("Unhandled WebSocket message: %s", msg_type)

    def _running_session(self) -> PracticeSession | None:
        if self.session is None or self.session.status is not SessionStatus.RUNNING:
            return None
        return self.session

    async def load_script(self, text: str) -> None:
        """Index a new script version and broadcast it. Ends any running session."""
        if self._running_session() is not None:
            await self.end_session()
        self.script_text = text
        self.script_html, self.script = render_script_with_word_indices(text)
        self.session = None
        await self.broadcast({
            "type": "script_updated",
            "script": self.script_text,
            "scriptHtml": self.script_html,
            "totalWords": len(self.script),
        })

    async def start_session(self, start_ms: float | None = None) -> PracticeSession | None:
        """Create and start a session for the current script."""
        if self.script is None:
            logger.warning("Cannot start a session without a script")
            return None
        if self._running_session() is not None:
            await self.end_session()

        session = PracticeSession(self.script, config=self.config, log_dir=self.log_dir)
        session.on_filler.subscribe(self._on_filler_detected)
        session.start(start_ms=start_ms)
        self.session = session
        self.splitter.reset()
        self._render_task = asyncio.get_running_loop().create_task(self._render_loop(session))
        await self.broadcast({"type": "session_started", "sessionId": session.session_id})
        return session

    async def end_session(self) -> SessionSummaryReport | None:
        """End the current session, stop rendering and broadcast the report."""
        if self.session is None:
            return None
        report = self.session.end()
        if self._render_task is not None:
            self._render_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._render_task
            self._render_task = None
        if report is not self.last_report:
            self.last_report = report
            await self.broadcast({"type": "report", "report": report.to_dict()})
        return report

    async def _render_loop(self, session: PracticeSession) -> None:
        interval = 1.0 / session.config["session"]["tick_hz"]
        while session.status is SessionStatus.RUNNING:
            update = session.tick()
            await self.broadcast(update.to_message())
            await asyncio.sleep(interval)

    def _on_filler_detected(self, detection: FillerWordDetection) -> None:
        task = asyncio.get_running_loop().create_task(self.broadcast({
            "type": "filler",
            "word": detection.word,
            "timestampMs": detection.timestamp,
            "wordIndex": detection.word_index,
            "method": detection.detection_method.value,
        }))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _on_script_message(self, _ws: web.WebSocketResponse, data: dict[str, object]) -> None:
        await self.load_script(str(data.get("text", "")))

    async def _on_settings_message(self, ws: web.WebSocketResponse, data: dict[str, object]) -> None:
        """Update one config section; applies to the next session."""
        section = data.get("section")
        settings = data.get("settings")
        # Only dict-valued sections can be merged; host and port are not sections
        if (not isinstance(section, str) or not isinstance(self.config.get(section), dict)
                or not isinstance(settings, dict)):
            await ws.send_json({"type": "error", "message": f"Unknown settings section: {section}"})
            return
        self.config = update_config_section(self.config, section, settings)
        await self.broadcast({"type": "settings_updated", "settings": self.config})

    async def _on_save_config_message(self, ws: web.WebSocketResponse, _data: dict[str, object]) -> None:
        saved = save_config(self.config)
        await ws.send_json({"type": "config_saved", "success": saved})

    async def _on_start_message(self, _ws: web.WebSocketResponse, data: dict[str, object]) -> None:
        start_ms = data.get("startMs")
        await self.start_session(_number(start_ms, 0.0) if start_ms is not None else None)

    async def _on_word_message(self, _ws: web.WebSocketResponse, data: dict[str, object]) -> None:
        session = self._running_session()
        if session is None:
            logger.debug("Word received with no running session")
            return
        session.handle_word_event(WordEvent(
            word=data.get("word"),  # type: ignore[arg-type]
            confidence=_number(data.get("confidence"), 1.0),
            timestamp_ms=_number(data.get("timestampMs"), math.nan),
            is_final=bool(data.get("isFinal", True)),
        ))

    async def _on_transcription_message(self, _ws: web.WebSocketResponse, data: dict[str, object]) -> None:
        """Cumulative recognizer text, split into word events here."""
        session = self._running_session()
        if session is None:
            return
        result = TranscriptionResult(
            text=str(data.get("text", "")),
            is_partial=bool(data.get("isPartial", False)),
            confidence=_number(data.get("confidence"), 1.0),
        )
        timestamp_ms = _number(data.get("timestampMs"), math.nan)
        if not math.isfinite(timestamp_ms):
            return
        for event in self.splitter.split(result, timestamp_ms):
            session.handle_word_event(event)
        if not result.is_partial:
            session.handle_transcript_fragment(result.text, timestamp_ms)

    async def _on_transcript_message(self, _ws: web.WebSocketResponse, data: dict[str, object]) -> None:
        session = self._running_session()
        if session is None:
            return
        session.handle_transcript_fragment(
            str(data.get("text", "")), _number(data.get("timestampMs"), math.nan))

    async def _on_layout_message(self, _ws: web.WebSocketResponse, data: dict[str, object]) -> None:
        if self.session is not None:
            self.session.update_layout(_parse_rects(data.get("rects")))

    async def _on_user_scroll_start(self, _ws: web.WebSocketResponse, data: dict[str, object]) -> None:
        session = self._running_session()
        if session is not None:
            session.begin_user_scroll(_number(data.get("position"), 0.0))

    async def _on_user_scroll(self, _ws: web.WebSocketResponse, data: dict[str, object]) -> None:
        session = self._running_session()
        if session is not None:
            session.update_user_scroll(_number(data.get("position"), 0.0))

    async def _on_user_scroll_end(self, _ws: web.WebSocketResponse, _data: dict[str, object]) -> None:
        session = self._running_session()
        if session is not None:
            session.end_user_scroll()

    async def _on_jump_to_message(self, _ws: web.WebSocketResponse, data: dict[str, object]) -> None:
        session = self._running_session()
        word_index = data.get("wordIndex")
        if session is not None and isinstance(word_index, int):
            session.jump_to(word_index)

    async def _on_end_message(self, _ws: web.WebSocketResponse, _data: dict[str, object]) -> None:
        await self.end_session()

    async def _handle_script_upload(self, request: web.Request) -> web.Response:
        """Handle script upload via POST."""
        try:
            data: Any = await request.json()
        except json.JSONDecodeError:
            return web.json_response({"status": "error", "message": "Invalid JSON"}, status=400)
        await self.load_script(str(data.get("text", "")) if isinstance(data, dict) else "")
        return web.json_response({"status": "ok", "totalWords": len(self.script or ())})

    async def _handle_get_settings(self, request: web.Request) -> web.Response:
        """Get current settings."""
        return web.json_response(self.config)

    async def _handle_get_report(self, request: web.Request) -> web.Response:
        """Get the report of the last finished session."""
        if self.last_report is None:
            return web.json_response({"status": "error", "message": "No report yet"}, status=404)
        return web.json_response(self.last_report.to_dict())

    async def broadcast(self, message: dict[str, object]) -> None:
        """Send a message to all connected WebSocket clients."""
        if not self.websockets:
            return

        dead: set[web.WebSocketResponse] = set()
        for ws in list(self.websockets):
            try:
                await ws.send_json(message)
            except (ConnectionError, ConnectionResetError, RuntimeError) as e:
                logger.warning("Error sending to WebSocket: %s", e)
                dead.add(ws)

        self.websockets -= dead

    async def start(self) -> None:
        """Start the web server."""
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        site: web.TCPSite = web.TCPSite(self.runner, self.host, self.port)
        await site.start()
        print(f"SpeechSync bridge running at ws://{self.host}:{self.port}/ws")

    async def stop(self) -> None:
        """Stop the web server."""
        await self.end_session()
        for ws in list(self.websockets):
            with contextlib.suppress(Exception):
                await ws.close()
        self.websockets.clear()

        if self.runner:
            await self.runner.cleanup()
