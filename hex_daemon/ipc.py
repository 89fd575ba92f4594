"""
Unix domain socket IPC helpers

Provides newline-framed byte exchange between the hex-daemon server
and its clients. One frame in, one frame out, per connection.
"""

import logging
import os
import socket
from pathlib import Path

from hex_daemon.errors import ProtocolError
from hex_daemon.protocol import FRAME_TERMINATOR

logger = logging.getLogger(__name__)

MAX_MESSAGE_SIZE = 1024 * 1024  # 1MB max message
RECV_CHUNK_SIZE = 65536


def create_server_socket(socket_path: Path) -> socket.socket:
    """
    Create and bind a Unix domain socket for the server

    A stale socket file left behind by a crashed daemon is removed first,
    and missing parent directories are created.

    Args:
        socket_path: Path to the socket file

    Returns:
        Bound socket ready for listening

    Raises:
        OSError: If the socket cannot be bound
    """
    if socket_path.exists() or socket_path.is_symlink():
        logger.debug(f"Removing stale socket {socket_path}")
        socket_path.unlink()

    socket_path.parent.mkdir(parents=True, exist_ok=True)

    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        sock.bind(str(socket_path))
    except OSError:
        sock.close()
        raise

    # Set socket permissions (owner read/write only)
    os.chmod(socket_path, 0o600)

    return sock


def create_client_socket(socket_path: Path, timeout: float) -> socket.socket:
    """
    Create and connect a Unix domain socket for the client

    Args:
        socket_path: Path to the socket file
        timeout: Timeout applied to connect and every later socket operation

    Returns:
        Connected socket

    Raises:
        ConnectionError: If server is not running
        OSError: If the connection fails for another reason
    """
    if not socket_path.exists():
        raise ConnectionError(f"Server socket not found: {socket_path}")

    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    sock.settimeout(timeout)
    try:
        sock.connect(str(socket_path))
    except OSError:
        sock.close()
        raise

    return sock


def send_frame(sock: socket.socket, frame: bytes) -> None:
    """
    Send one encoded frame over the socket

    Args:
        sock: Connected socket
        frame: Newline-terminated payload from protocol.encode()
    """
    if len(frame) > MAX_MESSAGE_SIZE:
        raise ProtocolError("Message too large")

    sock.sendall(frame)


def recv_frame(sock: socket.socket, limit: int = MAX_MESSAGE_SIZE) -> bytes:
    """
    Receive one frame from the socket

    Reads until the frame terminator arrives or the peer closes its side.

    Args:
        sock: Connected socket
        limit: Maximum accepted frame size in bytes

    Returns:
        Received bytes (terminator included when present), or b'' if the
        peer disconnected without sending anything

    Raises:
        ProtocolError: If the frame exceeds `limit`
    """
    data = b''
    while FRAME_TERMINATOR not in data:
        chunk = sock.recv(RECV_CHUNK_SIZE)
        if not chunk:
            break
        data += chunk
        if len(data) > limit:
            raise ProtocolError("Message too large")
    return data
