"""
hex-daemon CLI

Entry point for the hex-daemon command.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from hex_daemon import __version__
from hex_daemon.client import (
    EXIT_ERROR,
    EXIT_SUCCESS,
    EXIT_USAGE,
    client_preload,
    client_status,
    client_transcribe,
)
from hex_daemon.config import Config
from hex_daemon.server import run_server

logger = logging.getLogger(__name__)

DEFAULT_TRANSCRIBE_MODEL = "distil-large-v3"


def setup_logging(verbose: bool = False) -> None:
    """Configure logging"""
    level = logging.DEBUG if verbose else logging.INFO
    format_str = "%(asctime)s %(levelname)s %(name)s: %(message)s"

    logging.basicConfig(
        level=level,
        format=format_str,
        stream=sys.stdout,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("faster_whisper").setLevel(logging.WARNING)
    logging.getLogger("huggingface_hub").setLevel(logging.WARNING)


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser"""
    parser = argparse.ArgumentParser(
        prog="hex-daemon",
        description="Resident speech-to-text daemon",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"hex-daemon {__version__}",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        help="Path to config file (default: ~/.config/hex-daemon/config.yml)",
    )
    parser.add_argument(
        "--socket",
        help="Unix domain socket path (overrides config)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # serve command
    serve_parser = subparsers.add_parser(
        "serve",
        help="Run the daemon with models preloaded in memory",
    )
    serve_parser.add_argument(
        "--preload",
        nargs="*",
        metavar="MODEL",
        help="Models to preload at startup (overrides config; pass none to skip)",
    )
    serve_parser.add_argument(
        "-l", "--language",
        help="Default language for transcription",
    )
    serve_parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    # status command
    status_parser = subparsers.add_parser(
        "status",
        help="Show daemon status and loaded models",
    )
    status_parser.add_argument(
        "--json",
        action="store_true",
        help="Output as JSON",
    )

    # preload command
    preload_parser = subparsers.add_parser(
        "preload",
        help="Load a model into the running daemon",
    )
    preload_parser.add_argument(
        "model",
        help="Model to load",
    )

    # transcribe command
    transcribe_parser = subparsers.add_parser(
        "transcribe",
        help="Transcribe an audio file",
    )
    transcribe_parser.add_argument(
        "audio",
        type=Path,
        help="Path to audio file to transcribe",
    )
    transcribe_parser.add_argument(
        "-m", "--model",
        default=DEFAULT_TRANSCRIBE_MODEL,
        help=f"Whisper model to use (default: {DEFAULT_TRANSCRIBE_MODEL})",
    )
    transcribe_parser.add_argument(
        "-l", "--language",
        help="Language code for transcription ('auto' to detect)",
    )
    transcribe_parser.add_argument(
        "-o", "--output",
        type=Path,
        help="Output file path (default: stdout)",
    )
    transcribe_parser.add_argument(
        "--daemon",
        action="store_true",
        help="Use daemon if available (fall back to local)",
    )
    transcribe_parser.add_argument(
        "-s", "--silent",
        action="store_true",
        help="Only output the transcription",
    )

    return parser


def main(args: Optional[List[str]] = None) -> int:
    """Main entry point"""
    parser = create_parser()
    parsed = parser.parse_args(args)

    if not parsed.command:
        parser.print_help()
        return EXIT_USAGE

    if parsed.command == "serve":
        setup_logging(verbose=parsed.verbose)
    else:
        # Minimal logging for client
        logging.basicConfig(
            level=logging.ERROR,
            format="%(message)s",
            stream=sys.stderr,
        )

    # Load config
    config = Config.load(parsed.config)
    if parsed.socket:
        config.daemon.socket_path = str(Path(parsed.socket).expanduser().absolute())

    if parsed.command == "serve":
        if parsed.language:
            config.daemon.language = parsed.language
        try:
            run_server(config, preload=parsed.preload)
        except OSError as e:
            logger.error(f"Failed to start daemon: {e}")
            return EXIT_ERROR
        return EXIT_SUCCESS

    elif parsed.command == "status":
        return client_status(config, as_json=parsed.json)

    elif parsed.command == "preload":
        return client_preload(config, parsed.model)

    elif parsed.command == "transcribe":
        return client_transcribe(
            config,
            audio=parsed.audio,
            model=parsed.model,
            language=parsed.language,
            output=parsed.output,
            use_daemon=parsed.daemon,
            silent=parsed.silent,
        )

    else:
        print(f"Unknown command: {parsed.command}", file=sys.stderr)
        return EXIT_USAGE


if __name__ == "__main__":
    sys.exit(main())
