"""
Request dispatcher

Decodes a request frame, validates it for its action and routes it to
the matching handler. Always produces a Response; nothing raised by a
handler escapes `dispatch`.
"""

import logging
import os
import time
from typing import Callable, Dict, Optional

from hex_daemon.cache import ModelCache
from hex_daemon.errors import ProtocolError, ResourceError, ValidationError
from hex_daemon.protocol import Action, Request, Response, decode_request

logger = logging.getLogger(__name__)


class Dispatcher:
    """Routes decoded requests to the status, preload and transcribe handlers"""

    def __init__(self, cache: ModelCache, default_language: str):
        """
        Initialize dispatcher

        Args:
            cache: Residency cache owning the engine
            default_language: Language used when a transcribe request has none
        """
        self.default_language = default_language
        self._cache = cache
        self._handlers: Dict[Action, Callable[[Request], Response]] = {
            Action.TRANSCRIBE: self._handle_transcribe,
            Action.STATUS: self._handle_status,
            Action.PRELOAD: self._handle_preload,
        }

    def dispatch(self, data: bytes) -> Response:
        """Decode a raw frame and handle it"""
        try:
            request = decode_request(data)
        except ProtocolError as e:
            logger.warning(f"Invalid request: {e}")
            return Response.failure(f"Invalid request: {e}")

        return self.handle(request)

    def handle(self, request: Request) -> Response:
        """Handle an already decoded request"""
        logger.debug(f"Handling '{request.action.value}' request")
        try:
            return self._handlers[request.action](request)
        except ValidationError as e:
            logger.warning(f"Rejected '{request.action.value}' request without '{e.field}'")
            return Response.failure(e.message)
        except ResourceError as e:
            logger.error(f"{request.action.value} failed: {e.reason}")
            return Response.failure(e.message)
        except Exception as e:
            logger.exception(f"Unexpected error handling '{request.action.value}'")
            return Response.failure(f"Internal error: {e}")

    def _handle_status(self, request: Request) -> Response:
        return self._status_response()

    def _handle_preload(self, request: Request) -> Response:
        model = _require(request.model, "model")

        try:
            self._cache.ensure_resident(model)
        except Exception as e:
            raise ResourceError(f"Preload failed: {e}", reason=str(e))

        return self._status_response()

    def _handle_transcribe(self, request: Request) -> Response:
        audio = _require(request.audio, "audio")
        model = _require(request.model, "model")

        if not _is_readable_file(audio):
            raise ResourceError(f"Audio file not found: {audio}")

        language = request.language or self.default_language

        start = time.monotonic()
        try:
            text = self._cache.transcribe(model, audio, language)
        except Exception as e:
            raise ResourceError(f"Transcription failed: {e}", reason=str(e))
        elapsed = time.monotonic() - start

        logger.info(f"Transcribed {audio} with {model} in {elapsed:.2f}s")
        return Response.success(text=text, seconds=elapsed)

    def _status_response(self) -> Response:
        return Response.status(models=self._cache.ever_loaded(), loaded=self._cache.hot())


def _require(value: Optional[str], field: str) -> str:
    if not value:
        raise ValidationError(field)
    return value


def _is_readable_file(path: str) -> bool:
    return os.path.isfile(path) and os.access(path, os.R_OK)
