"""
Runs a real watchdog observer against a temp file and checks that a save
reaches the callback.
"""
import threading

from replpeek.utils.watcher import FileWatcher


def test_save_fires_callback(tmp_path):
    source = tmp_path / "core.clj"
    source.write_text("(ns core)")
    saved = threading.Event()
    seen = []

    def on_save(path):
        seen.append(path)
        saved.set()

    watcher = FileWatcher()
    watcher.start_watching(str(source), on_save)
    try:
        assert watcher.is_watching
        source.write_text("(ns core)\n(def x 1)")
        assert saved.wait(timeout=5)
    finally:
        watcher.stop_watching()

    assert seen[0] == str(source.resolve())
    assert not watcher.is_watching
    assert watcher.observer is None


def test_restart_replaces_observer(tmp_path):
    first = tmp_path / "a.clj"
    second = tmp_path / "b.clj"
    first.write_text("")
    second.write_text("")
    watcher = FileWatcher()
    watcher.start_watching(str(first), lambda p: None)
    old = watcher.observer
    try:
        watcher.start_watching(str(second), lambda p: None)
        assert watcher.observer is not old
        assert not old.is_alive()
    finally:
        watcher.stop_watching()
