import logging
import time
from pathlib import Path
from typing import Callable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

logger = logging.getLogger(__name__)

SaveCallback = Callable[[str], None]


class SourceSaveHandler(FileSystemEventHandler):
    """
    Fires the callback once per save of one file. Editors that save
    atomically write a temp file and rename it over the target, so moves
    and creations onto the target count as saves too.
    """
    def __init__(self, target_file: str, callback: SaveCallback, debounce_seconds: float = 0.5):
        self.target_file = str(Path(target_file).resolve())
        self.callback = callback
        self.debounce_seconds = debounce_seconds
        self._last_fired: Optional[float] = None

    def _is_target(self, path) -> bool:
        if not path:
            return False
        if isinstance(path, bytes):
            path = path.decode()
        return str(Path(path).resolve()) == self.target_file

    def _fire(self):
        now = time.monotonic()
        if self._last_fired is not None and now - self._last_fired <= self.debounce_seconds:
            return
        self._last_fired = now
        logger.debug("Saved: %s", self.target_file)
        self.callback(self.target_file)

    def on_modified(self, event: FileSystemEvent):
        if not event.is_directory and self._is_target(event.src_path):
            self._fire()

    def on_created(self, event: FileSystemEvent):
        self.on_modified(event)

    def on_moved(self, event: FileSystemEvent):
        if not event.is_directory and self._is_target(getattr(event, "dest_path", None)):
            self._fire()


class FileWatcher:
    """Owns the watchdog observer thread for a single source file."""

    def __init__(self):
        self.observer: Optional[Observer] = None

    @property
    def is_watching(self) -> bool:
        return self.observer is not None and self.observer.is_alive()

    def start_watching(self, file_path: str, callback: SaveCallback):
        path = Path(file_path).resolve()
        if not path.exists():
            raise FileNotFoundError(f"Cannot watch non-existent file: {file_path}")

        self.stop_watching()
        self.observer = Observer()
        self.observer.schedule(SourceSaveHandler(str(path), callback), str(path.parent), recursive=False)
        self.observer.start()
        logger.info("Watching %s", path)

    def stop_watching(self):
        if self.is_watching:
            self.observer.stop()
            self.observer.join()
        self.observer = None
