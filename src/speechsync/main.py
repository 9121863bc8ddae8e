# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Main speechsync application.
Runs the WebSocket bridge that recognizer and renderer clients connect to.
"""

import argparse
import asyncio
import contextlib
import logging
import signal
from pathlib import Path

from .config import Config, get_config_path, load_config, save_config
from .diagnostics import LOG_DIR
from .server import SyncServer

logger = logging.getLogger(__name__)


class SpeechSyncApp:
    """
    Owns the bridge server and keeps it alive until shutdown.
    """

    def __init__(
        self,
        config: Config,
        host: str = "127.0.0.1",
        port: int = 8000,
        script_path: Path | None = None,
        log_dir: Path | None = None
    ) -> None:
        self.config = config
        self.host = host
        self.port = port
        self.script_path = script_path
        self.log_dir = log_dir
        self.server: SyncServer | None = None
        self.running: bool = False

    async def start(self) -> None:
        """Start the server and wait until stopped."""
        self.server = SyncServer(
            host=self.host, port=self.port, config=self.config, log_dir=self.log_dir)
        await self.server.start()

        if self.script_path is not None:
            await self.server.load_script(self.script_path.read_text(encoding='utf-8'))
            print(f"Script loaded: {len(self.server.script or ())} words")

        self.running = True
        while self.running:
            await asyncio.sleep(0.1)

    async def stop(self) -> None:
        """Stop the application."""
        print("\nStopping SpeechSync...")
        self.running = False

        if self.server:
            await self.server.stop()

        print("SpeechSync stopped.")


def main() -> None:
    """Main entry point."""
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S"
    )

    # Load config first to use as defaults
    config: Config = load_config()

    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="SpeechSync - Speech-synchronised teleprompter feedback engine"
    )

    parser.add_argument(
        "--host",
        default=config.get("host", "127.0.0.1"),
        help="Server host (default: from config or 127.0.0.1)"
    )

    parser.add_argument(
        "--port", "-p",
        type=int,
        default=config.get("port", 8000),
        help="Server port (default: from config or 8000)"
    )

    parser.add_argument(
        "--script", "-s",
        type=Path,
        default=None,
        help="Script file (plain text or markdown) to load at startup"
    )

    parser.add_argument(
        "--target-wpm",
        type=int,
        default=None,
        help="Target speaking pace in words per minute"
    )

    parser.add_argument(
        "--interim-policy",
        choices=["final_only", "provisional"],
        default=None,
        help="How interim recognition results are treated"
    )

    parser.add_argument(
        "--save-config",
        action="store_true",
        help="Save current CLI options to config file and exit"
    )

    parser.add_argument(
        "--debug-log",
        action="store_true",
        help="Write per-session word logs to ./logs/"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Show info-level log messages"
    )

    args: argparse.Namespace = parser.parse_args()

    if args.verbose:
        logging.getLogger("speechsync").setLevel(logging.INFO)

    config["host"] = args.host
    config["port"] = args.port
    if args.target_wpm is not None:
        config["pacing"]["target_wpm"] = args.target_wpm
    if args.interim_policy is not None:
        config["session"]["interim_policy"] = args.interim_policy

    if args.save_config:
        if save_config(config):
            print(f"Configuration saved to {get_config_path()}")
        return

    log_dir: Path | None = None
    if args.debug_log:
        log_dir = LOG_DIR
        print(f"Debug logging enabled (logs will be saved to {log_dir})")

    app: SpeechSyncApp = SpeechSyncApp(
        config=config,
        host=args.host,
        port=args.port,
        script_path=args.script,
        log_dir=log_dir
    )

    # Handle shutdown gracefully
    loop: asyncio.AbstractEventLoop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def shutdown(sig: int, frame: object) -> None:
        """Handle shutdown signals (SIGINT, SIGTERM) gracefully."""
        print("\nReceived shutdown signal...")
        app.running = False

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    try:
        loop.run_until_complete(app.start())
    except KeyboardInterrupt:
        app.running = False
    finally:
        with contextlib.suppress(Exception):
            loop.run_until_complete(app.stop())
        pending: set[asyncio.Task[object]] = asyncio.all_tasks(loop)
        for task in pending:
            task.cancel()
        if pending:
            loop.run_until_complete(asyncio.gather(
                *pending, return_exceptions=True))
        loop.close()


if __name__ == "__main__":
    main()
