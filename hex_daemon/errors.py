"""
Exception types for hex-daemon

Daemon-side errors are converted to error responses at the handler
boundary; client-side transport errors never reach the caller.
"""

from typing import Optional


class HexDaemonError(Exception):
    """Base exception for all hex-daemon errors"""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ProtocolError(HexDaemonError):
    """Raised when a frame cannot be decoded (empty, bad JSON, unknown action)"""


class ValidationError(HexDaemonError):
    """Raised when a field required by the request's action is missing"""

    def __init__(self, field: str):
        super().__init__(f"Missing '{field}' field")
        self.field = field


class ResourceError(HexDaemonError):
    """Raised when audio, model assets or the engine are unavailable"""

    def __init__(self, message: str, reason: Optional[str] = None):
        super().__init__(message)
        self.reason = reason or message


class TransportError(HexDaemonError):
    """Raised inside the client when the socket exchange fails"""
