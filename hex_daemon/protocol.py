"""
Wire protocol for hex-daemon

Requests and responses travel as one UTF-8 JSON object per frame,
terminated by a single newline. Keys are sorted and absent fields are
omitted so that encoding is deterministic.
"""

import getpass
import json
import math
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from hex_daemon.errors import ProtocolError

FRAME_TERMINATOR = b"\n"

# Models preloaded by `hex-daemon serve` when neither config nor flags say otherwise
DEFAULT_PRELOAD = [
    "tiny.en",
    "distil-large-v3",
]


def default_socket_path() -> Path:
    """Per-user socket path: /tmp/<user>/hex-daemon.sock"""
    return Path("/tmp") / getpass.getuser() / "hex-daemon.sock"


class Action(str, Enum):
    """Request kinds understood by the daemon"""
    TRANSCRIBE = "transcribe"
    STATUS = "status"
    PRELOAD = "preload"


@dataclass(frozen=True)
class Request:
    """A client request; which optional fields matter depends on `action`"""
    action: Action
    audio: Optional[str] = None
    model: Optional[str] = None
    language: Optional[str] = None

    @classmethod
    def transcribe(cls, audio: str, model: str, language: Optional[str] = None) -> "Request":
        return cls(action=Action.TRANSCRIBE, audio=audio, model=model, language=language)

    @classmethod
    def status(cls) -> "Request":
        return cls(action=Action.STATUS)

    @classmethod
    def preload(cls, model: str) -> "Request":
        return cls(action=Action.PRELOAD, model=model)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"action": self.action.value}
        for key in ("audio", "model", "language"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Request":
        action = data.get("action")
        if action is None:
            raise ProtocolError("missing 'action' field")
        try:
            parsed = Action(action)
        except ValueError:
            raise ProtocolError(f"unknown action: {action!r}")

        return cls(
            action=parsed,
            audio=_optional_str(data, "audio"),
            model=_optional_str(data, "model"),
            language=_optional_str(data, "language"),
        )


@dataclass(frozen=True)
class Response:
    """
    A daemon response

    `text`/`seconds` are set only on successful transcription, `error` only
    when `ok` is false, `models`/`loaded` on status and preload replies.
    """
    ok: bool
    text: Optional[str] = None
    seconds: Optional[float] = None
    error: Optional[str] = None
    models: Optional[List[str]] = None
    loaded: Optional[str] = None

    @classmethod
    def success(cls, text: str, seconds: float) -> "Response":
        return cls(ok=True, text=text, seconds=seconds)

    @classmethod
    def failure(cls, message: str) -> "Response":
        return cls(ok=False, error=message)

    @classmethod
    def status(cls, models: List[str], loaded: Optional[str]) -> "Response":
        return cls(ok=True, models=sorted(models), loaded=loaded)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"ok": self.ok}
        for key in ("text", "seconds", "error", "models", "loaded"):
            value = getattr(self, key)
            if value is not None:
                data[key] = list(value) if key == "models" else value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Response":
        ok = data.get("ok")
        if not isinstance(ok, bool):
            raise ProtocolError("'ok' must be a boolean")

        seconds = data.get("seconds")
        if seconds is not None and (
            isinstance(seconds, bool) or not isinstance(seconds, (int, float))
        ):
            raise ProtocolError("'seconds' must be a number")

        models = data.get("models")
        if models is not None:
            if not isinstance(models, list) or not all(isinstance(m, str) for m in models):
                raise ProtocolError("'models' must be a list of strings")

        return cls(
            ok=ok,
            text=_optional_str(data, "text"),
            seconds=_finite_seconds(seconds),
            error=_optional_str(data, "error"),
            models=models,
            loaded=_optional_str(data, "loaded"),
        )


Message = Union[Request, Response]


def encode(message: Message) -> bytes:
    """
    Encode a request or response as a newline-terminated frame

    Args:
        message: Request or Response to encode

    Returns:
        Canonical JSON (sorted keys, compact separators) plus one newline
    """
    payload = json.dumps(
        message.to_dict(),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return payload.encode("utf-8") + FRAME_TERMINATOR


def decode_request(data: bytes) -> Request:
    """
    Decode a request frame

    Raises:
        ProtocolError: On empty input, invalid JSON or an unknown action
    """
    return Request.from_dict(_load_object(data))


def decode_response(data: bytes) -> Response:
    """
    Decode a response frame

    Raises:
        ProtocolError: On empty input, invalid JSON or malformed fields
    """
    return Response.from_dict(_load_object(data))


def _load_object(data: bytes) -> Dict[str, Any]:
    """Strip trailing CR/LF bytes and parse the remainder as a JSON object"""
    trimmed = data.rstrip(b"\r\n")
    if not trimmed:
        raise ProtocolError("empty frame")

    try:
        obj = json.loads(trimmed.decode("utf-8"), parse_int=_parse_int)
    except UnicodeDecodeError as e:
        raise ProtocolError(f"frame is not valid UTF-8: {e}")
    except (ValueError, RecursionError) as e:
        # JSONDecodeError is a ValueError; nesting too deep raises RecursionError
        raise ProtocolError(f"invalid JSON: {e}")

    if not isinstance(obj, dict):
        raise ProtocolError("frame must be a JSON object")
    return obj


def _optional_str(data: Dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise ProtocolError(f"'{key}' must be a string")
    return value


def _parse_int(text: str) -> Any:
    try:
        return int(text)
    except ValueError:
        # Past the interpreter's integer digit limit
        return float(text)


def _finite_seconds(seconds: Any) -> Optional[float]:
    if seconds is None:
        return None
    try:
        value = float(seconds)
    except OverflowError:
        raise ProtocolError("'seconds' must be a finite number")
    if not math.isfinite(value):
        raise ProtocolError("'seconds' must be a finite number")
    return value
