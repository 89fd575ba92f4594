"""
hex-daemon client

One-shot request/response against a running daemon, plus the CLI client
commands built on it. Any transport failure yields None rather than an
exception so callers can fall back to local transcription.
"""

import json
import logging
import sys
import threading
from pathlib import Path
from typing import Any, Dict, Optional

from hex_daemon.cache import ModelCache
from hex_daemon.config import Config
from hex_daemon.engine import WhisperEngine
from hex_daemon.errors import ProtocolError, TransportError
from hex_daemon.ipc import create_client_socket, recv_frame, send_frame
from hex_daemon.protocol import Request, Response, decode_response, encode

logger = logging.getLogger(__name__)

# Exit codes
EXIT_SUCCESS = 0
EXIT_ERROR = 1
EXIT_USAGE = 2

DEFAULT_TIMEOUT = 120.0
STATUS_TIMEOUT = 2.0


class _Completion:
    """Holds the outcome of one call; only the first resolution counts"""

    def __init__(self):
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._value: Optional[Response] = None

    def resolve(self, value: Optional[Response]) -> bool:
        with self._lock:
            if self._done.is_set():
                return False
            self._value = value
            self._done.set()
            return True

    def wait(self, timeout: float) -> Optional[Response]:
        if not self._done.wait(timeout):
            self.resolve(None)
        return self._value


def send(
    request: Request,
    socket_path: Path,
    timeout: float = DEFAULT_TIMEOUT,
) -> Optional[Response]:
    """
    Send a request to the daemon and wait for its response

    Args:
        request: Request to send
        socket_path: Path to the daemon's socket file
        timeout: Seconds to wait for the whole exchange

    Returns:
        The decoded response, or None if the daemon is not running, the
        exchange failed or the timeout expired
    """
    try:
        frame = encode(request)
    except (TypeError, ValueError) as e:
        logger.debug(f"Could not encode request: {e}")
        return None

    completion = _Completion()
    worker = threading.Thread(
        target=_exchange,
        args=(frame, socket_path, timeout, completion),
        name="hex-daemon-client",
        daemon=True,
    )
    worker.start()
    return completion.wait(timeout)


def _exchange(frame: bytes, socket_path: Path, timeout: float, completion: _Completion) -> None:
    response = None
    try:
        response = _request_response(frame, socket_path, timeout)
    except TransportError as e:
        logger.debug(f"Daemon exchange failed: {e}")
    except Exception as e:
        logger.warning(f"Unexpected error talking to daemon: {e}")
    finally:
        if not completion.resolve(response) and response is not None:
            logger.debug("Daemon responded after the client gave up waiting")


def _request_response(frame: bytes, socket_path: Path, timeout: float) -> Response:
    try:
        sock = create_client_socket(socket_path, timeout)
    except OSError as e:
        raise TransportError(f"Cannot connect to daemon: {e}")

    try:
        send_frame(sock, frame)
        data = recv_frame(sock)
        if not data:
            raise TransportError("Daemon closed the connection without responding")
        return decode_response(data)
    except (OSError, ProtocolError) as e:
        raise TransportError(f"Communication error: {e}")
    finally:
        try:
            sock.close()
        except OSError:
            pass


def is_running(socket_path: Path, timeout: float = STATUS_TIMEOUT) -> bool:
    """Whether the socket file exists and the daemon answers a status request"""
    if not socket_path.exists():
        return False
    response = send(Request.status(), socket_path, timeout=timeout)
    return response is not None and response.ok


def client_status(config: Config, as_json: bool = False) -> int:
    """
    Print daemon status and the models loaded this session

    Args:
        config: Configuration
        as_json: Print a JSON document instead of text

    Returns:
        Exit code
    """
    socket_path = config.get_socket_path()

    if not socket_path.exists():
        if as_json:
            _print_json({"running": False, "socket": str(socket_path)})
        else:
            print(f"Daemon is not running (no socket at {socket_path})")
        return EXIT_ERROR

    response = send(Request.status(), socket_path, timeout=config.daemon.status_timeout)

    if response is None:
        if as_json:
            _print_json({"running": False, "socket": str(socket_path), "error": "not responding"})
        else:
            print(f"Daemon is not responding (socket exists at {socket_path} but connection failed)")
        return EXIT_ERROR

    if not response.ok:
        message = response.error or "unknown error"
        if as_json:
            _print_json({"running": False, "socket": str(socket_path), "error": message})
        else:
            print(f"Daemon returned error: {message}")
        return EXIT_ERROR

    models = sorted(response.models or [])

    if as_json:
        output: Dict[str, Any] = {
            "running": True,
            "socket": str(socket_path),
            "preloadedModels": models,
        }
        if response.loaded is not None:
            output["activeModel"] = response.loaded
        _print_json(output)
        return EXIT_SUCCESS

    print("Daemon is running")
    print(f"  Socket: {socket_path}")
    print(f"  Active model: {response.loaded or 'none'}")
    if models:
        print("  Preloaded models:")
        for model in models:
            marker = " (active)" if model == response.loaded else ""
            print(f"    - {model}{marker}")
    else:
        print("  Preloaded models: none")

    return EXIT_SUCCESS


def client_preload(config: Config, model: str) -> int:
    """
    Ask the daemon to make a model hot

    Returns:
        Exit code
    """
    socket_path = config.get_socket_path()
    response = send(Request.preload(model), socket_path, timeout=config.daemon.timeout)

    if response is None:
        logger.error("Daemon is not running. Start it with: hex-daemon serve")
        return EXIT_ERROR

    if not response.ok:
        logger.error(f"Daemon error: {response.error or 'unknown'}")
        return EXIT_ERROR

    print(f"{model} loaded")
    return EXIT_SUCCESS


def client_transcribe(
    config: Config,
    audio: Path,
    model: str,
    language: Optional[str] = None,
    output: Optional[Path] = None,
    use_daemon: bool = False,
    silent: bool = False,
) -> int:
    """
    Transcribe an audio file, via the daemon when asked, locally otherwise

    A daemon that is absent or answers with an error falls back to loading
    the model in this process.

    Args:
        config: Configuration
        audio: Audio file to transcribe
        model: Model identifier
        language: Language code (defaults to config.daemon.language)
        output: Write the text to this file instead of stdout
        use_daemon: Try the running daemon first
        silent: Print only the transcription

    Returns:
        Exit code
    """
    if not audio.is_file():
        logger.error(f"Audio file not found: {audio}")
        return EXIT_ERROR

    language = language or config.daemon.language
    text: Optional[str] = None

    if use_daemon:
        request = Request.transcribe(audio=str(audio.resolve()), model=model, language=language)
        response = send(request, config.get_socket_path(), timeout=config.daemon.timeout)
        if response is None:
            if not silent:
                print("Daemon not available, using local transcription...")
        elif response.ok and response.text is not None:
            text = response.text
        elif not silent:
            print(f"Daemon error: {response.error}, falling back to local transcription...")

    if text is None:
        if not silent:
            print(f"Transcribing {audio}...")
        try:
            text = transcribe_locally(config, audio, model, language)
        except Exception as e:
            logger.error(f"Transcription failed: {e}")
            return EXIT_ERROR

    _output_result(text, output, silent)
    return EXIT_SUCCESS


def transcribe_locally(config: Config, audio: Path, model: str, language: str) -> str:
    """Load the model in this process and transcribe without the daemon"""
    cache = ModelCache(WhisperEngine(config.engine))
    return cache.transcribe(model, str(audio), language)


def _output_result(text: str, output: Optional[Path], silent: bool) -> None:
    if output is not None:
        output.write_text(text, encoding="utf-8")
        if not silent:
            print(f"Transcription saved to: {output}")
        return

    if not silent:
        print("Transcription:")
    print(text)


def _print_json(value: Dict[str, Any]) -> None:
    json.dump(value, sys.stdout, indent=2, sort_keys=True)
    sys.stdout.write("\n")
