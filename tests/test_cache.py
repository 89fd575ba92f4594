"""Tests for the model residency cache."""
import threading

import pytest

from hex_daemon.cache import ModelCache

from conftest import FakeEngine


def test_fresh_cache_is_empty(engine):
    cache = ModelCache(engine)

    assert cache.hot() is None
    assert cache.ever_loaded() == []


def test_switching_models_keeps_session_history(engine):
    cache = ModelCache(engine)

    cache.ensure_resident("tiny.en")
    cache.ensure_resident("base")

    assert cache.hot() == "base"
    assert set(cache.ever_loaded()) >= {"tiny.en", "base"}
    assert ("release", "tiny.en") in engine.calls
    assert engine.loaded == "base"


def test_ensure_resident_is_idempotent_while_hot(engine):
    cache = ModelCache(engine)

    first = cache.ensure_resident("tiny.en")
    second = cache.ensure_resident("tiny.en")

    assert first is second is engine
    assert engine.loads() == ["tiny.en"]


def test_switching_back_reloads(engine):
    cache = ModelCache(engine)

    for model in ("tiny.en", "base", "tiny.en"):
        cache.ensure_resident(model)

    assert engine.loads() == ["tiny.en", "base", "tiny.en"]
    assert cache.ever_loaded() == ["base", "tiny.en"]


def test_downloads_only_missing_models():
    engine = FakeEngine(downloaded={"tiny.en"})
    cache = ModelCache(engine)

    cache.ensure_resident("tiny.en")
    cache.ensure_resident("base")

    assert ("download", "tiny.en") not in engine.calls
    assert ("download", "base") in engine.calls


def test_progress_covers_download_then_load(engine):
    cache = ModelCache(engine)
    progress = []

    cache.ensure_resident("tiny.en", on_progress=progress.append)
    cache.ensure_resident("tiny.en", on_progress=progress.append)

    assert progress == [0.5, 1.0, 1.0]


def test_is_resident_checks_disk_not_hotness():
    engine = FakeEngine(downloaded={"tiny.en"})
    cache = ModelCache(engine)

    assert cache.is_resident("tiny.en")
    assert not cache.is_resident("base")
    assert cache.hot() is None


def test_failed_load_leaves_nothing_hot(engine):
    cache = ModelCache(engine)
    cache.ensure_resident("tiny.en")
    engine.fail_load.add("large-v3")

    with pytest.raises(RuntimeError, match="out of memory"):
        cache.ensure_resident("large-v3")

    assert cache.hot() is None
    assert cache.ever_loaded() == ["tiny.en"]


def test_failed_download_keeps_previous_model_hot(engine):
    cache = ModelCache(engine)
    cache.ensure_resident("tiny.en")
    engine.fail_download.add("bogus")

    with pytest.raises(RuntimeError, match="repository not found"):
        cache.ensure_resident("bogus")

    assert cache.hot() == "tiny.en"
    assert engine.loaded == "tiny.en"


def test_transcribe_loads_requested_model(engine):
    cache = ModelCache(engine)

    text = cache.transcribe("tiny.en", "/tmp/a.wav", "en")

    assert text == "hello world"
    assert cache.hot() == "tiny.en"
    assert engine.calls[-1] == ("transcribe", "/tmp/a.wav", "en")


def test_concurrent_callers_never_overlap_in_engine():
    engine = FakeEngine(delay=0.01)
    cache = ModelCache(engine)
    errors = []

    def worker(model):
        try:
            cache.transcribe(model, "/tmp/a.wav", "en")
        except Exception as e:  # pragma: no cover - surfaced by the assert below
            errors.append(e)

    threads = [
        threading.Thread(target=worker, args=("tiny.en" if i % 2 else "base",))
        for i in range(8)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert errors == []
    assert engine.max_active == 1
    assert set(cache.ever_loaded()) == {"tiny.en", "base"}
