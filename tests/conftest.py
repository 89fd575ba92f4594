"""Shared fixtures: a fake engine and a daemon bound to a short socket path."""
import shutil
import tempfile
import threading
import time
from pathlib import Path

import pytest

from hex_daemon.cache import ModelCache
from hex_daemon.config import Config, DaemonConfig
from hex_daemon.server import Server


class FakeEngine:
    """Records calls instead of running faster-whisper."""

    def __init__(self, downloaded=(), transcript="hello world", delay=0.0):
        self.downloaded = set(downloaded)
        self.transcript = transcript
        self.delay = delay
        self.loaded = None
        self.calls = []
        self.fail_download = set()
        self.fail_load = set()
        self.fail_transcribe = False
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def _enter(self):
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)

    def _exit(self):
        with self._lock:
            self.active -= 1

    def is_downloaded(self, model):
        return model in self.downloaded

    def download(self, model, on_progress=None):
        self.calls.append(("download", model))
        if model in self.fail_download:
            raise RuntimeError(f"repository not found: {model}")
        self.downloaded.add(model)
        if on_progress:
            on_progress(1.0)

    def load(self, model):
        self._enter()
        try:
            self.calls.append(("load", model))
            time.sleep(self.delay)
            if model in self.fail_load:
                raise RuntimeError("out of memory")
            self.loaded = model
        finally:
            self._exit()

    def transcribe(self, audio_path, language):
        self._enter()
        try:
            self.calls.append(("transcribe", audio_path, language))
            time.sleep(self.delay)
            if self.fail_transcribe:
                raise RuntimeError("decoder crashed")
            return self.transcript
        finally:
            self._exit()

    def release(self):
        self.calls.append(("release", self.loaded))
        self.loaded = None

    def loads(self):
        return [call[1] for call in self.calls if call[0] == "load"]


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def socket_path():
    # AF_UNIX paths are limited to ~100 bytes, so stay out of pytest's tmp_path
    directory = tempfile.mkdtemp(prefix="hexd-", dir="/tmp")
    yield Path(directory) / "daemon.sock"
    shutil.rmtree(directory, ignore_errors=True)


@pytest.fixture
def config(socket_path):
    return Config(daemon=DaemonConfig(socket_path=str(socket_path), language="en", preload=[]))


@pytest.fixture
def server(config, engine):
    srv = Server(config, ModelCache(engine))
    srv.start()
    yield srv
    srv.stop()


@pytest.fixture
def audio_file(tmp_path):
    path = tmp_path / "test.wav"
    path.write_bytes(b"RIFF\x00\x00\x00\x00WAVE")
    return path
