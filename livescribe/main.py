"""Main application entry point for LiveScribe."""

import sys
import asyncio
import argparse
import logging
from pathlib import Path
from typing import Optional

from pubsub import pub
from rich.console import Console

from .config import BACKEND_KINDS, LiveScribeConfig
from .errors import BackendError, TranscriptionError
from .models.transcription import TranscriptEntry
from .services.transcription_service import TranscriptionService
from .transcription.publisher import ENTRY_TOPIC, ERROR_TOPIC

logger = logging.getLogger(__name__)


class Server:

    def __init__(self, config_path: str, log_level: Optional[str] = None):
        self.config = LiveScribeConfig(config_path)
        # command line overrides config
        setup_logging(self.config, log_level or self.config.get('logging.level', 'INFO'))
        self.console = Console()
        self.service = TranscriptionService(self.config)
        self.stop_event: Optional[asyncio.Event] = None

        pub.subscribe(self._on_entry, ENTRY_TOPIC)
        pub.subscribe(self._on_error, ERROR_TOPIC)

    def _on_entry(self, entry: TranscriptEntry) -> None:
        style = "green" if entry.is_current_user else "cyan"
        self.console.print(f"[dim]{entry.display_time}[/dim] [{style}]{entry.speaker}[/{style}]: {entry.text}")

    def _on_error(self, error: BackendError) -> None:
        if error.fatal:
            self.console.print(f"❌ {error.message}", style="bold red")
            if self.stop_event is not None:
                self.stop_event.set()
        else:
            self.console.print(f"⚠️  {error.message}", style="yellow")

    async def run(self, backend: Optional[str], duration: Optional[float]) -> None:
        self.stop_event = asyncio.Event()
        try:
            await self.service.start(backend)
            self.console.print(f"🎙️  Listening with '{self.service.backend.name}' backend", style="bold blue")
            try:
                await asyncio.wait_for(self.stop_event.wait(), duration)
            except asyncio.TimeoutError:
                pass
        finally:
            await self.cleanup()

    async def transcribe_file(self, path: str) -> None:
        try:
            entries = await self.service.transcribe_file(path)
            if not entries:
                self.console.print("No speech found in file", style="yellow")
        finally:
            await self.cleanup()

    async def cleanup(self) -> None:
        await self.service.close()
        self.console.print(f"📝 {len(self.service.entries)} transcript entries", style="blue")


def setup_logging(config, level: str = "INFO") -> None:
    """Set up logging configuration from YAML config."""
    log_file_path = config.get('logging.file_path', 'data/logs/livescribe.log')
    console_output = config.get('logging.console_output', True)

    Path(log_file_path).parent.mkdir(parents=True, exist_ok=True)

    handlers = []

    # File handler - always write to file
    file_handler = logging.FileHandler(log_file_path)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
    ))
    handlers.append(file_handler)

    # Console handler - only if enabled in config
    if console_output:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.WARNING)
        console_handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
        handlers.append(console_handler)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, level.upper()))
    for handler in handlers:
        root_logger.addHandler(handler)

    logger.info("=" * 50)
    logger.info("LiveScribe starting up")
    logger.info(f"Log file: {log_file_path}")
    logger.info(f"Log level set to: {level}")
    logger.info("=" * 50)


def main() -> None:
    """Main entry point for LiveScribe."""
    parser = argparse.ArgumentParser(
        description="LiveScribe - live speech transcription with speaker attribution"
    )
    parser.add_argument(
        "--config",
        type=str,
        required=True,
        help="Path to configuration YAML file"
    )
    parser.add_argument(
        "--backend",
        type=str,
        choices=BACKEND_KINDS,
        help="Transcription backend (overrides transcription.backend)"
    )
    parser.add_argument(
        "--duration",
        type=float,
        help="Stop listening after this many seconds (default: until Ctrl+C)"
    )
    parser.add_argument(
        "--file",
        type=str,
        help="Transcribe an audio file instead of the microphone"
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Set logging level (default: from config, else INFO)"
    )
    parser.add_argument(
        "--version",
        action="version",
        version="LiveScribe v0.1.0"
    )

    args = parser.parse_args()

    try:
        server = Server(args.config, args.log_level)
        if args.file:
            asyncio.run(server.transcribe_file(args.file))
        else:
            asyncio.run(server.run(args.backend, args.duration))
    except KeyboardInterrupt:
        print("\n👋 Goodbye!")
    except (TranscriptionError, FileNotFoundError, ValueError) as e:
        message = e.message if isinstance(e, TranscriptionError) else str(e)
        print(f"❌ Error: {message}")
        logging.error(f"Application error: {message}")
        sys.exit(1)


if __name__ == "__main__":
    main()
