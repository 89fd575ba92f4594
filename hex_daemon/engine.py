"""
Transcription engine backed by faster-whisper

The daemon treats the engine as an opaque capability: check whether a
model's assets are on disk, download them, load exactly one model, and
transcribe audio files with whatever is loaded.
"""

import logging
import os
from typing import Callable, Optional, Protocol

from faster_whisper import WhisperModel
from faster_whisper.utils import download_model
from huggingface_hub.utils import LocalEntryNotFoundError

from hex_daemon.config import EngineConfig
from hex_daemon.errors import ResourceError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]

# Language value that asks Whisper to detect the spoken language
AUTO_LANGUAGE = "auto"


class TranscriptionEngine(Protocol):
    """Interface the residency cache needs from a speech-to-text engine.

    Implementations hold at most one loaded model. `load` replaces whatever
    was loaded before, `release` drops it.
    """

    def is_downloaded(self, model: str) -> bool:
        ...

    def download(self, model: str, on_progress: Optional[ProgressCallback] = None) -> None:
        ...

    def load(self, model: str) -> None:
        ...

    def transcribe(self, audio_path: str, language: Optional[str]) -> str:
        ...

    def release(self) -> None:
        ...


class WhisperEngine:
    """
    faster-whisper (CTranslate2) engine

    Model identifiers are anything faster-whisper accepts: a size name
    such as "tiny.en" or "large-v3", a Hugging Face repo id, or a local
    directory holding a converted model.
    """

    def __init__(self, config: EngineConfig):
        """
        Initialize engine

        Args:
            config: Device, compute type, cache directory and decoding settings
        """
        self.config = config
        self._model: Optional[WhisperModel] = None
        self._model_name: Optional[str] = None

    @property
    def model_name(self) -> Optional[str]:
        return self._model_name

    def is_downloaded(self, model: str) -> bool:
        """Check whether the model's files are available without network access"""
        if os.path.isdir(model):
            return True
        try:
            self._resolve(model, local_files_only=True)
        except (LocalEntryNotFoundError, ValueError):
            return False
        return True

    def download(self, model: str, on_progress: Optional[ProgressCallback] = None) -> None:
        """
        Download model files into the cache

        Args:
            model: Model identifier
            on_progress: Called with a completed fraction in [0, 1]

        Raises:
            ValueError: If the model identifier is unknown
            Exception: Network or Hugging Face Hub failures propagate
        """
        if on_progress:
            on_progress(0.0)
        logger.info(f"Downloading model: {model}")
        path = self._resolve(model, local_files_only=False)
        logger.info(f"Model downloaded: {model} -> {path}")
        if on_progress:
            on_progress(1.0)

    def load(self, model: str) -> None:
        """Load a model, releasing any previously loaded one first"""
        self.release()

        path = model if os.path.isdir(model) else self._resolve(model, local_files_only=True)
        logger.info(f"Loading Whisper model: {model}")
        self._model = WhisperModel(
            path,
            device=self.config.device,
            compute_type=self.config.compute_type,
        )
        self._model_name = model
        logger.info(f"Whisper model loaded: {model}")

    def transcribe(self, audio_path: str, language: Optional[str]) -> str:
        """
        Transcribe an audio file with the loaded model

        Args:
            audio_path: Path to any audio file faster-whisper can decode
            language: Language code, or None / "auto" to detect

        Returns:
            Transcribed text, segments joined with single spaces

        Raises:
            ResourceError: If no model is loaded
        """
        if self._model is None:
            raise ResourceError("No model loaded")

        if language == AUTO_LANGUAGE:
            language = None

        segments, info = self._model.transcribe(
            audio_path,
            language=language,
            beam_size=self.config.beam_size,
        )
        text = " ".join(segment.text.strip() for segment in segments).strip()
        logger.debug(f"Transcribed {audio_path} ({info.language}): {len(text.split())} words")
        return text

    def release(self) -> None:
        if self._model is None:
            return
        logger.info(f"Releasing Whisper model: {self._model_name}")
        self._model = None
        self._model_name = None

    def _resolve(self, model: str, local_files_only: bool) -> str:
        return download_model(
            model,
            local_files_only=local_files_only,
            cache_dir=self.config.download_root,
        )
