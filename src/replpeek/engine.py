import functools
import logging
import os
import re
import time
import zipfile
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Dict, Optional, Set
from urllib.parse import unquote

from .errors import MalformedDiagnostic, ReplError, SourceNotFound, TransportError
from .nrepl.events import Completed, ErrorOutput, Output, ResponseEvent, Value
from .nrepl.session import ReplSession, Transport
from .parsing import (
    EvalOrigin,
    SourceBuffer,
    extract_diagnostic,
    last_sexp_before,
    place,
    top_level_form_at,
)
from .parsing.forms import ns_form_span
from .ui.decorations import DecorationStore
from .utils.config import ConfigManager
from .utils.state import ReplState, SourceLocation
from .utils.watcher import FileWatcher

logger = logging.getLogger(__name__)

DOC_SNIPPET = "(do (require 'clojure.repl) (clojure.repl/doc {symbol}))"

# Resolves a var and answers [url line column]; the url is a file: or jar: URL
# when the file is on the classpath, otherwise whatever :file the var carries.
LOCATION_SNIPPET = (
    "(do (require 'clojure.java.io) "
    "(when-let [m (meta (resolve '{symbol}))] "
    "(when-let [f (:file m)] "
    "[(str (or (clojure.java.io/resource f) f)) (:line m) (:column m)])))"
)

_LOCATION_RE = re.compile(r'^\s*\[\s*"((?:\\.|[^"\\])*)"\s+(\d+|nil)\s+(\d+|nil)\s*\]\s*$')

PROJECT_MARKERS = ("project.clj", "deps.edn", "build.boot", "shadow-cljs.edn", "bb.edn", ".nrepl-port")


def find_project_root(source_file: str) -> Path:
    start = Path(os.path.abspath(source_file)).parent
    for directory in [start, *start.parents]:
        if any((directory / marker).exists() for marker in PROJECT_MARKERS):
            return directory
    return start


def parse_location(value: str) -> Optional[SourceLocation]:
    """
    Parse the EDN vector LOCATION_SNIPPET evaluates to.
        "[\"jar:file:/m2/clojure.jar!/clojure/core.clj\" 4 1]"
          -> SourceLocation(path="clojure/core.clj", line=4, column=1, jar="/m2/clojure.jar")
    """
    match = _LOCATION_RE.match(value or "")
    if not match:
        return None
    raw, line, column = match.groups()
    path = raw.replace('\\"', '"').replace("\\\\", "\\")
    if not path or path in ("NO_SOURCE_PATH", "NO_SOURCE_FILE"):
        return None

    jar = None
    if path.startswith("jar:"):
        jar_url, _, entry = path[len("jar:"):].partition("!/")
        jar = unquote(jar_url[len("file:"):] if jar_url.startswith("file:") else jar_url)
        path = entry
    elif path.startswith("file:"):
        path = unquote(path[len("file:"):])

    return SourceLocation(
        path=path,
        line=int(line) if line != "nil" else 1,
        column=int(column) if column != "nil" else None,
        jar=jar,
    )


class ReplEngine:
    def __init__(self, source_file: str, transport: Transport, config: Optional[ConfigManager] = None):
        self.config = config if config else ConfigManager()
        source_path = os.path.abspath(source_file)
        self.state = ReplState(
            source_path=source_path,
            namespace=self.config.get("namespace", "user"),
            transcript_limit=self.config.get("transcript_limit", 500),
        )
        self.session = ReplSession(transport, namespace=self.state.namespace)
        self.decorations = DecorationStore()
        self.watcher = FileWatcher()
        self.project_root = find_project_root(source_path)
        self.buffer = SourceBuffer(path=source_path)
        self._buffers: Dict[str, SourceBuffer] = {}
        self._sending = False
        self._finished_early: Set[str] = set()
        self.on_update_callback: Optional[Callable[[ReplState], None]] = None

    # ── Lifecycle ───────────────────────────────────────────

    def start(self):
        self.load_source()
        try:
            self.session.clone(on_ready=self._on_session_ready)
            self.state.connected = True
            self.state.status = "connected"
        except TransportError as e:
            self._fail(e)
        self._watch(self.state.source_path)
        self._notify()

    def stop(self):
        self.watcher.stop_watching()
        self.session.close()
        self.state.connected = False

    def _watch(self, path: str):
        try:
            self.watcher.start_watching(path, self._on_file_saved)
        except (FileNotFoundError, OSError) as e:
            logger.warning("Not watching %s: %s", path, e)

    def _on_session_ready(self, session_id: str):
        self.state.session_id = session_id
        self._notify()

    def _on_file_saved(self, path: str):
        self.load_source()
        if self.config.get("load_on_save", True):
            self.eval_buffer()
        else:
            self._notify()

    def load_source(self):
        """(Re)read the current source file into the buffer and state."""
        try:
            self.buffer = SourceBuffer.from_file(self.state.source_path)
        except SourceNotFound as e:
            logger.error("Load Error: %s", e.message)
            self.state.status = e.message
            self.buffer = SourceBuffer(path=self.state.source_path)
        self._buffers.pop(self.state.source_path, None)
        self.state.update_source(self.buffer.text)

    # ── Buffers ─────────────────────────────────────────────

    def resolve_path(self, path: str) -> Optional[Path]:
        candidate = Path(path)
        if candidate.is_absolute():
            return candidate if candidate.exists() else None
        bases = [self.project_root] + [self.project_root / root for root in self.config.get("source_roots", [])]
        for base in bases:
            if (base / candidate).exists():
                return Path(os.path.abspath(base / candidate))
        return None

    def open_buffer(self, path: str) -> SourceBuffer:
        """Buffer for a path named by the runtime, loaded on demand."""
        if path == self.state.source_path:
            return self.buffer
        if path in self._buffers:
            return self._buffers[path]

        if "!/" in path:
            jar, _, entry = path.partition("!/")
            buffer = self._read_jar_entry(jar, entry)
        else:
            resolved = self.resolve_path(path)
            if resolved is None:
                raise SourceNotFound(f"No such file: {path}")
            if str(resolved) == self.state.source_path:
                return self.buffer
            buffer = SourceBuffer.from_file(str(resolved))
        self._buffers[path] = buffer
        return buffer

    @staticmethod
    def _read_jar_entry(jar: str, entry: str) -> SourceBuffer:
        try:
            with zipfile.ZipFile(jar) as archive:
                text = archive.read(entry).decode("utf-8")
        except (OSError, KeyError, UnicodeDecodeError, zipfile.BadZipFile) as e:
            raise SourceNotFound(f"Cannot read {entry} from {jar}: {e}") from e
        return SourceBuffer(path=f"{jar}!/{entry}", text=text)

    def visit(self, location: SourceLocation):
        """Make the file holding location the current source."""
        if location.jar:
            buffer = self.open_buffer(f"{location.jar}!/{location.path}")
            self.watcher.stop_watching()
        else:
            resolved = self.resolve_path(location.path)
            if resolved is None:
                raise SourceNotFound(f"No such file: {location.path}")
            location.path = str(resolved)
            if location.path == self.state.source_path:
                return
            buffer = SourceBuffer.from_file(location.path)
            self.project_root = find_project_root(location.path)
            self._watch(location.path)
        self.buffer = buffer
        self.state.source_path = buffer.path
        self.state.update_source(buffer.text)

    # ── Evaluation ──────────────────────────────────────────

    def _origin_at(self, offset: int) -> EvalOrigin:
        span = top_level_form_at(self.buffer, offset)
        form_line = self.buffer.position(span.start)[0] if span else 1
        return EvalOrigin(path=self.buffer.path, form_line=form_line)

    def _begin_cycle(self, code: str):
        # Clear-before-evaluate: nothing from a previous cycle survives into this one
        self.decorations.clear_all()
        self.state.reset_cycle()
        self.state.append("input", code)
        self.state.status = "evaluating"

    def _dispatch(self, send: Callable[[], str], track: bool = True):
        # transports may answer synchronously, before send() returns
        self._finished_early.clear()
        self._sending = True
        try:
            request_id = send()
            if track and request_id not in self._finished_early:
                self.state.pending = request_id
        except TransportError as e:
            self._fail(e)
        finally:
            self._sending = False
        self._notify()

    def eval_code(self, code: str, origin: Optional[EvalOrigin] = None) -> None:
        origin = origin or EvalOrigin(path=self.buffer.path)
        logger.info("eval in %s (form line %d): %s", self.session.namespace, origin.form_line, code[:80])
        self._begin_cycle(code)
        handler = functools.partial(self._handle_event, origin=origin)
        self._dispatch(lambda: self.session.eval(code, handler))

    def eval_top_level_form(self, offset: int) -> None:
        span = top_level_form_at(self.buffer, offset)
        if span is None:
            self._set_status("No form at point")
            return
        self.eval_code(self.buffer.substring(*span), self._origin_at(span.start))

    def eval_last_sexp(self, offset: int) -> None:
        span = last_sexp_before(self.buffer, offset)
        if span is None:
            self._set_status("No expression before point")
            return
        self.eval_code(self.buffer.substring(*span), self._origin_at(offset))

    def eval_region(self, start: int, end: int) -> None:
        start, end = min(start, end), max(start, end)
        code = self.buffer.substring(start, end)
        if not code.strip():
            self._set_status("Empty region")
            return
        self.eval_code(code, self._origin_at(start))

    def eval_buffer(self) -> None:
        """Send the whole file with load-file; its diagnostics carry absolute paths."""
        origin = EvalOrigin(path=self.buffer.path, form_line=1)
        logger.info("load-file %s", self.buffer.path)
        self._begin_cycle(f"(load-file \"{self.buffer.path}\")")
        handler = functools.partial(self._handle_event, origin=origin)
        self._dispatch(lambda: self.session.load_file(self.buffer.text, self.buffer.path, handler))

    def set_namespace(self, namespace: str) -> None:
        self.eval_code(f"(in-ns '{namespace})")

    def eval_namespace_form(self) -> None:
        span = ns_form_span(self.buffer)
        if span is None:
            self._set_status("No ns form in buffer")
            return
        self.eval_code(self.buffer.substring(*span), self._origin_at(span.start))

    def interrupt(self) -> None:
        if not self.state.pending:
            self._set_status("Nothing to interrupt")
            return
        try:
            self.session.interrupt(self.state.pending)
            self.state.status = "interrupting"
        except TransportError as e:
            self._fail(e)
        self._notify()

    def clear_decorations(self) -> None:
        self.decorations.clear_all()
        self.state.reset_cycle()
        self._notify()

    # ── Inspection ──────────────────────────────────────────

    def doc(self, symbol: str) -> None:
        self.state.doc_text = ""
        self.state.status = f"doc {symbol}"
        code = DOC_SNIPPET.format(symbol=symbol)
        handler = functools.partial(self._handle_doc_event, symbol=symbol)
        self._dispatch(lambda: self.session.eval(code, handler), track=False)

    def jump_to_definition(self, symbol: str) -> None:
        self.state.definition = None
        self.state.status = f"locating {symbol}"
        code = LOCATION_SNIPPET.format(symbol=symbol)
        handler = functools.partial(self._handle_location_event, symbol=symbol)
        self._dispatch(lambda: self.session.eval(code, handler), track=False)

    # ── Response handling ───────────────────────────────────

    def _handle_event(self, event: ResponseEvent, origin: EvalOrigin):
        with self._reporting(event):
            if isinstance(event, Value):
                self.state.last_value = event.value
                self.state.append("value", event.value)
                if event.ns:
                    self.state.namespace = event.ns
            elif isinstance(event, Output):
                self.state.append("out", event.text)
            elif isinstance(event, ErrorOutput):
                self.state.append("err", event.text)
                self.show_diagnostic(event.text, origin)
            elif isinstance(event, Completed):
                self._complete(event)

    @contextmanager
    def _reporting(self, event: ResponseEvent):
        """Handlers run on the transport's thread; nothing may escape into it."""
        try:
            yield
        except Exception as e:
            logger.exception("Error handling %r", event)
            self.state.status = f"Internal Engine Error: {e}"
        self._notify()

    def show_diagnostic(self, text: str, origin: EvalOrigin) -> None:
        """Decorate the first diagnostic found in one error payload."""
        for line in text.splitlines():
            try:
                diagnostic = extract_diagnostic(line)
            except MalformedDiagnostic as e:
                logger.warning("Dropping diagnostic: %s", e.message)
                continue
            if diagnostic is None:
                continue
            self.state.diagnostics.append(diagnostic)
            placement = place(diagnostic, origin, self.open_buffer)
            if placement is not None:
                self.decorations.create(
                    placement.target,
                    placement.start,
                    placement.end,
                    placement.severity.value,
                    placement.text,
                    placement.line,
                )
            return

    def _complete(self, event: Completed):
        if self._sending:
            self._finished_early.add(event.id)
        if event.id is None or event.id == self.state.pending:
            self.state.pending = None
        self.state.namespace = self.session.namespace
        if "interrupted" in event.status:
            self.state.status = "interrupted"
        elif event.failed:
            self.state.status = "error: " + ", ".join(s for s in event.status if s != "done")
        else:
            self.state.status = "done"

    def _handle_doc_event(self, event: ResponseEvent, symbol: str):
        with self._reporting(event):
            if isinstance(event, (Output, ErrorOutput)):
                self.state.doc_text += event.text
            elif isinstance(event, Completed):
                self._complete(event)
                if not self.state.doc_text.strip():
                    self.state.doc_text = f"No documentation found for {symbol}"

    def _handle_location_event(self, event: ResponseEvent, symbol: str):
        with self._reporting(event):
            if isinstance(event, Value):
                self.state.definition = parse_location(event.value)
            elif isinstance(event, ErrorOutput):
                self.state.append("err", event.text)
            elif isinstance(event, Completed):
                self._complete(event)
                if self.state.definition is None:
                    self.state.status = f"Symbol not found: {symbol}"
                    return
                try:
                    self.visit(self.state.definition)
                    self.state.status = f"{symbol} -> {self.state.definition.path}:{self.state.definition.line}"
                except SourceNotFound as e:
                    logger.warning("Jump failed: %s", e.message)
                    self.state.status = e.message
                    self.state.definition = None

    # ── Helpers ─────────────────────────────────────────────

    def _fail(self, error: ReplError):
        logger.error("Connection Error: %s", error.message)
        self.state.status = f"Connection Error: {error.message}"
        self.state.pending = None
        self.state.connected = False

    def _set_status(self, status: str):
        self.state.status = status
        self._notify()

    def _notify(self):
        self.state.last_update = time.time()
        if self.on_update_callback:
            self.on_update_callback(self.state)
