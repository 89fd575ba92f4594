"""
Model residency cache

Owns the single hot engine instance. Every operation that loads, swaps
or uses the engine runs under one lock, so no two callers ever observe
a half-finished model switch.
"""

import logging
import threading
import time
from typing import List, Optional, Set

from hex_daemon.engine import ProgressCallback, TranscriptionEngine

logger = logging.getLogger(__name__)


class ModelCache:
    """
    Tracks which model is hot and which models were loaded this session

    State lives for the lifetime of the process:
    - hot: the model currently loaded in the engine, or None
    - ever_loaded: every model successfully loaded at least once; it only
      grows, an evicted model stays listed
    """

    def __init__(self, engine: TranscriptionEngine):
        """
        Initialize cache

        Args:
            engine: Engine holding at most one loaded model
        """
        self._engine = engine
        self._hot: Optional[str] = None
        self._ever_loaded: Set[str] = set()
        self._lock = threading.RLock()

    def is_resident(self, model: str) -> bool:
        """Whether the model's assets are on disk (not whether it is hot)"""
        return self._engine.is_downloaded(model)

    def ensure_resident(
        self,
        model: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> TranscriptionEngine:
        """
        Make `model` the hot model

        No-op when it already is. Otherwise downloads missing assets, evicts
        the current model and loads the requested one. Download progress is
        reported as 0-0.5 and loading as 0.5-1.0.

        Args:
            model: Model identifier
            on_progress: Called with a completed fraction in [0, 1]

        Returns:
            The engine, with `model` loaded

        Raises:
            Exception: Download and load failures from the engine propagate
        """
        with self._lock:
            if self._hot == model:
                _report(on_progress, 1.0)
                return self._engine

            if self._engine.is_downloaded(model):
                _report(on_progress, 0.5)
            else:
                self._engine.download(
                    model,
                    on_progress=lambda fraction: _report(on_progress, fraction * 0.5),
                )

            previous = self._hot
            if previous is not None:
                # Release before loading: the engine never holds two models
                self._hot = None
                self._engine.release()
                logger.info(f"Evicted model {previous}")

            start = time.monotonic()
            self._engine.load(model)
            self._hot = model
            self._ever_loaded.add(model)
            logger.info(f"Model {model} is hot ({time.monotonic() - start:.1f}s load)")

            _report(on_progress, 1.0)
            return self._engine

    def transcribe(self, model: str, audio_path: str, language: Optional[str]) -> str:
        """Ensure `model` is hot and transcribe `audio_path` with it"""
        with self._lock:
            engine = self.ensure_resident(model)
            return engine.transcribe(audio_path, language)

    def hot(self) -> Optional[str]:
        with self._lock:
            return self._hot

    def ever_loaded(self) -> List[str]:
        with self._lock:
            return sorted(self._ever_loaded)


def _report(on_progress: Optional[ProgressCallback], fraction: float) -> None:
    if on_progress:
        on_progress(fraction)
