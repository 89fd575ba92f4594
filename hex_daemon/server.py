"""
hex-daemon server

Main server daemon that:
- Keeps one Whisper model hot in memory
- Preloads configured models at startup
- Accepts client connections on a Unix socket, one request per connection
- Runs every request through a single worker so engine access is serialized
"""

import logging
import signal
import socket
import threading
import time
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from pathlib import Path
from typing import List, Optional

from hex_daemon.cache import ModelCache
from hex_daemon.config import Config
from hex_daemon.dispatcher import Dispatcher
from hex_daemon.engine import WhisperEngine
from hex_daemon.errors import ProtocolError
from hex_daemon.ipc import create_server_socket, recv_frame, send_frame
from hex_daemon.protocol import Response, encode

logger = logging.getLogger(__name__)

LISTEN_BACKLOG = 16
ACCEPT_POLL_INTERVAL = 1.0
CLIENT_READ_TIMEOUT = 30.0


class Server:
    """
    hex-daemon server

    Manages:
    - The listening socket and its file on disk
    - One handler thread per client connection
    - The single serialized worker in front of the model cache
    """

    def __init__(self, config: Config, cache: ModelCache):
        """
        Initialize server

        Args:
            config: Daemon configuration
            cache: Residency cache owning the engine
        """
        self.config = config
        self.socket_path: Path = config.get_socket_path()
        self._cache = cache
        self._dispatcher = Dispatcher(cache, default_language=config.daemon.language)
        self._worker = ThreadPoolExecutor(max_workers=1, thread_name_prefix="hex-daemon-worker")
        self._running = False
        self._server_socket: Optional[socket.socket] = None
        self._accept_thread: Optional[threading.Thread] = None
        self._stop_lock = threading.Lock()
        self._stopped = False
        self._shutdown_requested = threading.Event()

    def start(self) -> None:
        """
        Bind the socket and begin accepting connections in the background

        Raises:
            OSError: If the socket cannot be bound
        """
        self._server_socket = create_server_socket(self.socket_path)
        self._server_socket.listen(LISTEN_BACKLOG)
        self._server_socket.settimeout(ACCEPT_POLL_INTERVAL)  # Allow periodic shutdown check
        self._running = True

        self._accept_thread = threading.Thread(
            target=self._accept_connections,
            name="hex-daemon-accept",
            daemon=True,
        )
        self._accept_thread.start()

        logger.info(f"Daemon listening on {self.socket_path}")

    def run(self, preload: Optional[List[str]] = None) -> None:
        """Run the daemon until SIGTERM/SIGINT (blocking)"""
        signal.signal(signal.SIGTERM, self._signal_handler)
        signal.signal(signal.SIGINT, self._signal_handler)

        self.start()
        self.preload_models(preload if preload is not None else self.config.daemon.preload)

        try:
            self._shutdown_requested.wait()
        finally:
            self.stop()

    def preload_models(self, models: List[str]) -> Future:
        """
        Queue models for loading on the serialized worker

        Requests that arrive meanwhile are queued behind the preload.

        Returns:
            Future resolving once every model has been tried
        """
        return self._worker.submit(self._preload_all, list(models))

    def stop(self) -> None:
        """Stop accepting, remove the socket file. Safe to call more than once."""
        # A concurrent caller returns only after teardown has completed
        with self._stop_lock:
            if self._stopped:
                return
            self._stopped = True
            self._teardown()

    def _teardown(self) -> None:
        logger.info("Shutting down daemon...")
        self._running = False
        self._shutdown_requested.set()

        if self._accept_thread and self._accept_thread is not threading.current_thread():
            self._accept_thread.join(timeout=ACCEPT_POLL_INTERVAL * 2)

        # An in-flight request finishes; queued ones are cancelled
        self._worker.shutdown(wait=False, cancel_futures=True)

        if self._server_socket:
            try:
                self._server_socket.close()
            except OSError as e:
                logger.debug(f"Error closing server socket: {e}")

            # Only remove the socket file this server created
            try:
                self.socket_path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"Could not remove socket {self.socket_path}: {e}")

        logger.info("Daemon stopped")

    def _signal_handler(self, signum: int, frame) -> None:
        """Handle termination signals"""
        logger.info(f"Received signal {signum}, shutting down...")
        self._shutdown_requested.set()

    def _preload_all(self, models: List[str]) -> None:
        for model in models:
            logger.info(f"Preloading {model}...")
            start = time.monotonic()
            try:
                self._cache.ensure_resident(model)
            except Exception as e:
                logger.error(f"Failed to preload {model}: {e}")
                continue
            logger.info(f"{model} ready ({time.monotonic() - start:.1f}s)")
        logger.info("Daemon ready.")

    def _accept_connections(self) -> None:
        """Accept and handle client connections"""
        while self._running:
            try:
                client_sock, _ = self._server_socket.accept()
                # Handle client in separate thread
                threading.Thread(
                    target=self._handle_client,
                    args=(client_sock,),
                    daemon=True,
                ).start()
            except socket.timeout:
                continue
            except OSError as e:
                if self._running:
                    logger.error(f"Accept error: {e}")
                break

    def _handle_client(self, client_sock: socket.socket) -> None:
        """Handle a single client connection: one frame in, one frame out"""
        try:
            client_sock.settimeout(CLIENT_READ_TIMEOUT)
            try:
                data = recv_frame(client_sock)
            except ProtocolError as e:
                response = Response.failure(f"Invalid request: {e}")
            else:
                if not data:
                    return
                response = self._submit(data)

            send_frame(client_sock, encode(response))

        except (OSError, ProtocolError) as e:
            logger.warning(f"Client connection error: {e}")
        finally:
            try:
                client_sock.close()
            except OSError:
                pass

    def _submit(self, data: bytes) -> Response:
        """Run the dispatcher on the serialized worker and wait for its response"""
        try:
            future = self._worker.submit(self._dispatcher.dispatch, data)
        except RuntimeError:
            return Response.failure("Daemon is shutting down")

        try:
            return future.result()
        except CancelledError:
            return Response.failure("Daemon is shutting down")
        except Exception as e:
            logger.exception("Unexpected error dispatching request")
            return Response.failure(f"Internal error: {e}")


def run_server(config: Config, preload: Optional[List[str]] = None) -> None:
    """
    Run the hex-daemon server

    Args:
        config: Daemon configuration
        preload: Models to load at startup (defaults to config.daemon.preload)

    Raises:
        OSError: If the socket cannot be bound
    """
    engine = WhisperEngine(config.engine)
    server = Server(config, ModelCache(engine))
    server.run(preload=preload)
