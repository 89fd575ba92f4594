"""Tests for the faster-whisper engine adapter with the library entry points patched."""
import types

import pytest
from huggingface_hub.utils import LocalEntryNotFoundError

import hex_daemon.engine as engine_mod
from hex_daemon.config import EngineConfig
from hex_daemon.engine import WhisperEngine
from hex_daemon.errors import ResourceError


class _FakeHub:
    """Stands in for faster_whisper.utils.download_model and its local cache."""

    def __init__(self, cached=()):
        self.cached = set(cached)
        self.calls = []

    def download_model(self, model, local_files_only=False, cache_dir=None):
        self.calls.append((model, local_files_only, cache_dir))
        if model not in self.cached:
            if local_files_only:
                raise LocalEntryNotFoundError(f"{model} is not cached")
            self.cached.add(model)
        return f"/cache/{model}"


class _FakeWhisperModel:
    instances = []

    def __init__(self, path, device, compute_type):
        self.path = path
        self.device = device
        self.compute_type = compute_type
        self.transcribe_calls = []
        _FakeWhisperModel.instances.append(self)

    def transcribe(self, audio, language=None, beam_size=5):
        self.transcribe_calls.append((audio, language, beam_size))
        segments = [types.SimpleNamespace(text=" hello "), types.SimpleNamespace(text="world ")]
        return iter(segments), types.SimpleNamespace(language=language or "en")


@pytest.fixture
def hub(monkeypatch):
    fake = _FakeHub(cached={"tiny.en"})
    monkeypatch.setattr(engine_mod, "download_model", fake.download_model)
    monkeypatch.setattr(engine_mod, "WhisperModel", _FakeWhisperModel)
    _FakeWhisperModel.instances = []
    return fake


@pytest.fixture
def whisper(hub):
    return WhisperEngine(EngineConfig(device="cpu", compute_type="int8", download_root="/models", beam_size=3))


def test_is_downloaded_uses_local_cache_only(whisper, hub):
    assert whisper.is_downloaded("tiny.en")
    assert not whisper.is_downloaded("base")
    assert all(local_only for _, local_only, _ in hub.calls)


def test_local_directory_counts_as_downloaded(whisper, tmp_path):
    assert whisper.is_downloaded(str(tmp_path))


def test_download_reports_progress(whisper, hub):
    progress = []

    whisper.download("base", on_progress=progress.append)

    assert progress == [0.0, 1.0]
    assert ("base", False, "/models") in hub.calls
    assert whisper.is_downloaded("base")


def test_load_passes_engine_settings(whisper):
    whisper.load("tiny.en")

    model = _FakeWhisperModel.instances[-1]
    assert (model.path, model.device, model.compute_type) == ("/cache/tiny.en", "cpu", "int8")
    assert whisper.model_name == "tiny.en"


def test_load_releases_previous_model(whisper, hub):
    hub.cached.add("base")
    whisper.load("tiny.en")
    whisper.load("base")

    assert whisper.model_name == "base"
    assert len(_FakeWhisperModel.instances) == 2


def test_load_missing_model_raises(whisper):
    with pytest.raises(LocalEntryNotFoundError):
        whisper.load("large-v3")
    assert whisper.model_name is None


def test_transcribe_joins_segments(whisper):
    whisper.load("tiny.en")

    text = whisper.transcribe("/tmp/a.wav", "en")

    assert text == "hello world"
    assert _FakeWhisperModel.instances[-1].transcribe_calls == [("/tmp/a.wav", "en", 3)]


def test_auto_language_means_detect(whisper):
    whisper.load("tiny.en")

    whisper.transcribe("/tmp/a.wav", "auto")

    assert _FakeWhisperModel.instances[-1].transcribe_calls[-1][1] is None


def test_transcribe_without_model(whisper):
    with pytest.raises(ResourceError):
        whisper.transcribe("/tmp/a.wav", "en")


def test_release_is_safe_without_model(whisper):
    whisper.release()
    whisper.load("tiny.en")
    whisper.release()

    assert whisper.model_name is None
