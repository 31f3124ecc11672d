"""
Unit tests for ReplEngine: evaluation cycles, diagnostic decoration,
doc lookup and jump to definition. The transport is a scripted fake that
answers synchronously; the file watcher is mocked.
"""
import zipfile
from unittest.mock import MagicMock, patch

import pytest

from replpeek.engine import ReplEngine, find_project_root, parse_location
from replpeek.errors import MalformedDiagnostic
from replpeek.nrepl.events import Completed
from replpeek.parsing.diagnostics import Severity
from replpeek.utils.config import ConfigManager

CORE = (
    "(ns app.core)\n"
    "\n"
    "(defn f []\n"
    "  (let [x 1]\n"
    "    (undefined-fn x)))\n"
    "\n"
    "(defn g [] (+ 1 2))\n"
)

UTIL = "(ns app.util)\n\n(defn helper\n  [x]\n  (* x 2))\n"


class ScriptedTransport:
    def __init__(self):
        self.sent = []
        self.replies = {}
        self.fail_with = None

    def send(self, message, on_message):
        if self.fail_with:
            raise self.fail_with
        self.sent.append(message)
        if message["op"] == "clone":
            on_message({"id": message["id"], "new-session": "s-1", "status": ["done"]})
            return
        for reply in self.replies.get(message["op"], [{"status": ["done"]}]):
            on_message(dict(reply, id=message["id"]))

    def close(self):
        pass


@pytest.fixture
def project(tmp_path):
    (tmp_path / "deps.edn").write_text("{}")
    src = tmp_path / "src" / "app"
    src.mkdir(parents=True)
    (src / "core.clj").write_text(CORE)
    (src / "util.clj").write_text(UTIL)
    return tmp_path


@pytest.fixture
def transport():
    return ScriptedTransport()


@pytest.fixture
def engine(project, transport, tmp_path):
    config = ConfigManager(config_dir=tmp_path / ".replpeek")
    with patch("replpeek.engine.FileWatcher", MagicMock()):
        eng = ReplEngine(str(project / "src" / "app" / "core.clj"), transport, config)
    eng.start()
    return eng


class TestLifecycle:
    def test_start_loads_source_and_clones(self, engine):
        assert engine.state.source_code == CORE
        assert engine.state.session_id == "s-1"
        assert engine.state.connected is True

    def test_start_reports_connection_error(self, project, transport, tmp_path):
        transport.fail_with = ConnectionRefusedError("refused")
        config = ConfigManager(config_dir=tmp_path / ".replpeek")
        with patch("replpeek.engine.FileWatcher", MagicMock()):
            eng = ReplEngine(str(project / "src" / "app" / "core.clj"), transport, config)
        eng.start()
        assert eng.state.connected is False
        assert eng.state.status.startswith("Connection Error")

    def test_project_root_found(self, engine, project):
        assert engine.project_root == project

    def test_callback_receives_state(self, engine):
        seen = []
        engine.on_update_callback = seen.append
        engine.eval_code("(+ 1 2)")
        assert seen and seen[-1] is engine.state


class TestEvaluation:
    def test_value_lands_in_transcript(self, engine, transport):
        transport.replies["eval"] = [{"value": "3", "ns": "user"}, {"status": ["done"]}]
        engine.eval_code("(+ 1 2)")
        assert engine.state.last_value == "3"
        assert ("value", "3") in engine.state.transcript
        assert engine.state.status == "done"
        assert engine.state.pending is None

    def test_pending_until_done(self, engine, transport):
        transport.replies["eval"] = [{"out": "working\n"}]
        engine.eval_code("(Thread/sleep 1000)")
        assert engine.state.pending == transport.sent[-1]["id"]

    def test_top_level_form_sends_enclosing_form(self, engine, transport):
        offset = CORE.index("undefined-fn")
        engine.eval_top_level_form(offset)
        assert transport.sent[-1]["code"] == "(defn f []\n  (let [x 1]\n    (undefined-fn x)))"

    def test_last_sexp(self, engine, transport):
        offset = CORE.index("(+ 1 2)") + len("(+ 1 2)")
        engine.eval_last_sexp(offset)
        assert transport.sent[-1]["code"] == "(+ 1 2)"

    def test_region(self, engine, transport):
        start = CORE.index("(+ 1 2)")
        engine.eval_region(start + 7, start)
        assert transport.sent[-1]["code"] == "(+ 1 2)"

    def test_empty_region_not_sent(self, engine, transport):
        count = len(transport.sent)
        engine.eval_region(0, 0)
        assert len(transport.sent) == count
        assert engine.state.status == "Empty region"

    def test_namespace_from_value(self, engine, transport):
        transport.replies["eval"] = [{"value": "nil", "ns": "app.core"}, {"status": ["done"]}]
        engine.set_namespace("app.core")
        assert transport.sent[-1]["code"] == "(in-ns 'app.core)"
        assert engine.state.namespace == "app.core"

    def test_eval_namespace_form(self, engine, transport):
        engine.eval_namespace_form()
        assert transport.sent[-1]["code"] == "(ns app.core)"

    def test_eval_buffer_uses_load_file(self, engine, transport):
        engine.eval_buffer()
        msg = transport.sent[-1]
        assert msg["op"] == "load-file"
        assert msg["file"] == CORE
        assert msg["file-path"] == engine.buffer.path

    def test_eval_error_status(self, engine, transport):
        transport.replies["eval"] = [{"err": "java.lang.ArithmeticException: Divide by zero\n"},
                                     {"status": ["eval-error", "done"]}]
        engine.eval_code("(/ 1 0)")
        assert engine.state.status == "error: eval-error"
        assert len(engine.decorations) == 0

    def test_send_failure_is_connection_error(self, engine, transport):
        transport.fail_with = BrokenPipeError("broken")
        engine.eval_code("(+ 1 2)")
        assert engine.state.status.startswith("Connection Error")
        assert engine.state.pending is None


class TestDiagnostics:
    ERR = ("Syntax error compiling at (NO_SOURCE_PATH:3:5).\n"
           "Unable to resolve symbol: undefined-fn in this context\n")

    def test_form_relative_decoration(self, engine, transport):
        transport.replies["eval"] = [{"err": self.ERR}, {"status": ["eval-error", "done"]}]
        engine.eval_top_level_form(CORE.index("undefined-fn"))
        decorations = engine.decorations.for_surface(engine.buffer.path)
        assert len(decorations) == 1
        deco = decorations[0]
        assert deco.line == 5
        assert deco.style == "compile-error"
        assert CORE[deco.start:deco.end] == "(undefined-fn x)"
        assert engine.state.diagnostics[0].severity == Severity.COMPILE_ERROR
        assert engine.state.has_errors

    def test_next_evaluation_clears_decoration(self, engine, transport):
        transport.replies["eval"] = [{"err": self.ERR}, {"status": ["eval-error", "done"]}]
        engine.eval_top_level_form(CORE.index("undefined-fn"))
        transport.replies["eval"] = [{"value": "3"}, {"status": ["done"]}]
        engine.eval_code("(+ 1 2)")
        assert len(engine.decorations) == 0
        assert engine.state.diagnostics == []

    def test_only_first_diagnostic_per_payload(self, engine, transport):
        err = ("Reflection warning, NO_SOURCE_PATH:1:1 - reference to field x can't be resolved.\n"
               "Reflection warning, NO_SOURCE_PATH:1:5 - call to y can't be resolved.\n")
        transport.replies["eval"] = [{"err": err}, {"status": ["done"]}]
        engine.eval_top_level_form(CORE.index("(defn g"))
        assert len(engine.decorations) == 1
        assert engine.decorations.for_surface(engine.buffer.path)[0].style == "warning"

    def test_absolute_file_diagnostic(self, engine, transport, project):
        util = str(project / "src" / "app" / "util.clj")
        transport.replies["load-file"] = [
            {"err": f"Syntax error compiling at ({util}:5:3).\n"},
            {"status": ["eval-error", "done"]},
        ]
        engine.eval_buffer()
        decorations = engine.decorations.for_surface(util)
        assert len(decorations) == 1
        assert UTIL[decorations[0].start:decorations[0].end] == "(* x 2)"

    def test_relative_path_resolved_against_source_roots(self, engine, transport, project):
        transport.replies["load-file"] = [{"err": "app/util.clj:4: bad binding\n"},
                                          {"status": ["done"]}]
        engine.eval_buffer()
        util = str(project / "src" / "app" / "util.clj")
        assert len(engine.decorations.for_surface(util)) == 1

    def test_unknown_file_is_dropped(self, engine, transport):
        transport.replies["load-file"] = [{"err": "nowhere/x.clj:4: bad\n"}, {"status": ["done"]}]
        engine.eval_buffer()
        assert len(engine.decorations) == 0
        assert len(engine.state.diagnostics) == 1

    def test_malformed_diagnostic_does_not_abort(self, engine, transport):
        transport.replies["eval"] = [{"err": "bad\n"}, {"value": "1"}, {"status": ["done"]}]
        with patch("replpeek.engine.extract_diagnostic", side_effect=MalformedDiagnostic("bad line")):
            engine.eval_code("1")
        assert len(engine.decorations) == 0
        assert engine.state.last_value == "1"
        assert engine.state.status == "done"

    def test_clear_decorations(self, engine, transport):
        transport.replies["eval"] = [{"err": self.ERR}, {"status": ["eval-error", "done"]}]
        engine.eval_top_level_form(CORE.index("undefined-fn"))
        engine.clear_decorations()
        assert len(engine.decorations) == 0


class TestInterrupt:
    def test_interrupt_pending(self, engine, transport):
        transport.replies["eval"] = [{"out": "..."}]
        engine.eval_code("(loop [] (recur))")
        pending = engine.state.pending
        transport.replies["eval"] = []
        engine.interrupt()
        assert transport.sent[-1]["op"] == "interrupt"
        assert transport.sent[-1]["interrupt-id"] == pending

    def test_nothing_to_interrupt(self, engine, transport):
        count = len(transport.sent)
        engine.interrupt()
        assert len(transport.sent) == count
        assert engine.state.status == "Nothing to interrupt"


class TestDoc:
    def test_doc_text_collected(self, engine, transport):
        transport.replies["eval"] = [{"out": "-------------------------\nclojure.core/inc\n"},
                                     {"value": "nil"}, {"status": ["done"]}]
        engine.doc("inc")
        assert "clojure.repl/doc inc" in transport.sent[-1]["code"]
        assert "clojure.core/inc" in engine.state.doc_text

    def test_no_doc(self, engine, transport):
        transport.replies["eval"] = [{"value": "nil"}, {"status": ["done"]}]
        engine.doc("nope")
        assert engine.state.doc_text == "No documentation found for nope"


class TestJumpToDefinition:
    def test_jump_to_file(self, engine, transport, project):
        util = project / "src" / "app" / "util.clj"
        transport.replies["eval"] = [{"value": f'["file:{util}" 3 1]'}, {"status": ["done"]}]
        engine.jump_to_definition("app.util/helper")
        assert engine.state.source_path == str(util)
        assert engine.state.source_code == UTIL
        assert engine.state.definition.line == 3
        assert engine.state.status == f"app.util/helper -> {util}:3"

    def test_jump_to_relative_path(self, engine, transport, project):
        transport.replies["eval"] = [{"value": '["app/util.clj" 3 1]'}, {"status": ["done"]}]
        engine.jump_to_definition("helper")
        assert engine.state.source_path == str(project / "src" / "app" / "util.clj")

    def test_symbol_not_found(self, engine, transport):
        transport.replies["eval"] = [{"value": "nil"}, {"status": ["done"]}]
        engine.jump_to_definition("nope")
        assert engine.state.status == "Symbol not found: nope"
        assert engine.state.source_code == CORE

    def test_missing_file(self, engine, transport):
        transport.replies["eval"] = [{"value": '["gone/away.clj" 3 1]'}, {"status": ["done"]}]
        engine.jump_to_definition("away")
        assert engine.state.definition is None
        assert engine.state.source_code == CORE
        assert "gone/away.clj" in engine.state.status

    def test_jump_into_jar(self, engine, transport, tmp_path):
        jar = tmp_path / "lib.jar"
        with zipfile.ZipFile(jar, "w") as archive:
            archive.writestr("lib/core.clj", "(ns lib.core)\n(defn thing [] 1)\n")
        transport.replies["eval"] = [{"value": f'["jar:file:{jar}!/lib/core.clj" 2 1]'},
                                     {"status": ["done"]}]
        engine.jump_to_definition("lib.core/thing")
        assert engine.state.source_path == f"{jar}!/lib/core.clj"
        assert engine.state.source_lines[1] == "(defn thing [] 1)"


class TestSaveHook:
    def test_save_reloads_and_loads_file(self, engine, transport, project):
        path = project / "src" / "app" / "core.clj"
        path.write_text(CORE + "\n(def h 1)\n")
        engine._on_file_saved(str(path))
        assert "(def h 1)" in engine.state.source_code
        assert transport.sent[-1]["op"] == "load-file"

    def test_load_on_save_disabled(self, engine, transport, project):
        engine.config.config["load_on_save"] = False
        count = len(transport.sent)
        engine._on_file_saved(str(project / "src" / "app" / "core.clj"))
        assert len(transport.sent) == count


class TestParseLocation:
    def test_plain_path(self):
        loc = parse_location('["app/util.clj" 3 1]')
        assert (loc.path, loc.line, loc.column, loc.jar) == ("app/util.clj", 3, 1, None)

    def test_file_url_is_unquoted(self):
        loc = parse_location('["file:/home/me/my%20proj/a.clj" 10 nil]')
        assert loc.path == "/home/me/my proj/a.clj"
        assert loc.column is None

    def test_jar_url(self):
        loc = parse_location('["jar:file:/m2/clojure.jar!/clojure/core.clj" 4 1]')
        assert loc.jar == "/m2/clojure.jar"
        assert loc.path == "clojure/core.clj"

    def test_nil_line_defaults_to_one(self):
        assert parse_location('["a.clj" nil nil]').line == 1

    def test_sentinel_and_nil(self):
        assert parse_location('["NO_SOURCE_PATH" 1 1]') is None
        assert parse_location("nil") is None
        assert parse_location("") is None


class TestFindProjectRoot:
    def test_marker_in_parent(self, project):
        assert find_project_root(str(project / "src" / "app" / "core.clj")) == project

    def test_no_marker_uses_file_dir(self, tmp_path):
        (tmp_path / "a.clj").write_text("")
        assert find_project_root(str(tmp_path / "a.clj")) == tmp_path


class TestTransportFailures:
    def test_non_os_error_on_eval(self, engine, transport):
        transport.fail_with = RuntimeError("not connected")
        engine.eval_code("(+ 1 2)")
        assert engine.state.status == "Connection Error: Connection lost: not connected"
        assert engine.state.connected is False

    def test_non_os_error_on_doc_and_jump(self, engine, transport):
        transport.fail_with = RuntimeError("not connected")
        engine.doc("inc")
        assert engine.state.status.startswith("Connection Error")
        engine.jump_to_definition("inc")
        assert engine.state.status.startswith("Connection Error")

    def test_non_os_error_on_interrupt(self, engine, transport):
        transport.replies["eval"] = [{"out": "..."}]
        engine.eval_code("(loop [] (recur))")
        transport.fail_with = RuntimeError("not connected")
        engine.interrupt()
        assert engine.state.status.startswith("Connection Error")


class TestSplitStatus:
    def test_eval_error_before_done(self, engine, transport):
        transport.replies["eval"] = [
            {"err": "boom\n"},
            {"ex": "class clojure.lang.ExceptionInfo", "root-ex": "class clojure.lang.ExceptionInfo",
             "status": ["eval-error"]},
            {"status": ["done"]},
        ]
        engine.eval_code("(throw (ex-info \"boom\" {}))")
        assert engine.state.status == "error: eval-error"
        assert engine.state.pending is None


class TestPendingRequest:
    def test_doc_does_not_clear_running_eval(self, engine, transport):
        transport.replies["eval"] = [{"out": "..."}]
        engine.eval_code("(loop [] (recur))")
        running = engine.state.pending
        transport.replies["eval"] = [{"out": "clojure.core/inc\n"}, {"status": ["done"]}]
        engine.doc("inc")
        assert engine.state.pending == running
        engine.interrupt()
        assert transport.sent[-1]["op"] == "interrupt"
        assert transport.sent[-1]["interrupt-id"] == running

    def test_only_matching_completion_clears(self, engine, transport):
        transport.replies["eval"] = [{"out": "..."}]
        engine.eval_code("(loop [] (recur))")
        running = engine.state.pending
        engine._handle_event(Completed(("done",), "other"), origin=None)
        assert engine.state.pending == running
        engine._handle_event(Completed(("interrupted", "done"), running), origin=None)
        assert engine.state.pending is None
        assert engine.state.status == "interrupted"


class TestUndecodableSources:
    def test_jump_to_undecodable_file(self, engine, transport, project):
        bad = project / "src" / "app" / "bad.clj"
        bad.write_bytes(b"\xff\xfe(ns app.bad)")
        transport.replies["eval"] = [{"value": f'["file:{bad}" 1 1]'}, {"status": ["done"]}]
        engine.jump_to_definition("app.bad/x")
        assert engine.state.status.startswith("Cannot decode")
        assert engine.state.definition is None
        assert engine.state.source_code == CORE

    def test_jump_to_undecodable_jar_entry(self, engine, transport, tmp_path):
        jar = tmp_path / "lib.jar"
        with zipfile.ZipFile(jar, "w") as archive:
            archive.writestr("lib/bad.clj", b"\xff\xfe")
        transport.replies["eval"] = [{"value": f'["jar:file:{jar}!/lib/bad.clj" 1 1]'},
                                     {"status": ["done"]}]
        engine.jump_to_definition("lib.bad/x")
        assert engine.state.status.startswith("Cannot read lib/bad.clj")
        assert engine.state.source_code == CORE

    def test_undecodable_current_file(self, project, transport, tmp_path):
        bad = project / "src" / "app" / "bad.clj"
        bad.write_bytes(b"\xff\xfe")
        config = ConfigManager(config_dir=tmp_path / ".replpeek")
        with patch("replpeek.engine.FileWatcher", MagicMock()):
            eng = ReplEngine(str(bad), transport, config)
        eng.start()
        assert eng.state.source_code == ""
        assert eng.state.connected is True

    def test_location_handler_errors_become_status(self, engine, transport):
        transport.replies["eval"] = [{"value": '["a.clj" 1 1]'}]
        with patch("replpeek.engine.parse_location", side_effect=ValueError("bad vector")):
            engine.jump_to_definition("x")
        assert engine.state.status == "Internal Engine Error: bad vector"
