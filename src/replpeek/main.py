import sys
import os
import argparse
from pathlib import Path
from .errors import ReplError
from .nrepl.session import load_transport
from .ui.app import run_tui
from .utils.config import ConfigManager, find_nrepl_port
from .utils.lang import is_supported
from .utils.logs import setup_logging


def _build_parser() -> argparse.ArgumentParser:
    """Build and return the CLI argument parser."""
    parser = argparse.ArgumentParser(description="replpeek: a source view wired to a live Clojure REPL")
    parser.add_argument("file", nargs="?", help="Clojure source file (.clj, .cljs, .cljc, .edn)")
    parser.add_argument("--host", help="nREPL host (default from config)")
    parser.add_argument("--port", type=int, help="nREPL port (default: .nrepl-port, then config)")
    parser.add_argument("--transport", help="Transport factory as module:callable")
    return parser


def resolve_port(args, config: ConfigManager, source_path: str) -> int:
    if args.port:
        return args.port
    discovered = find_nrepl_port(Path(source_path).parent)
    if discovered:
        return discovered
    return int(config.get("port", 7888))


def run():
    parser = _build_parser()
    args = parser.parse_args()

    if not args.file:
        print("Error: No source file specified.")
        print("Usage: replpeek <file.clj> [--host HOST] [--port PORT]")
        sys.exit(1)

    # Resolve to absolute path immediately
    abs_path = os.path.abspath(args.file)

    if not os.path.exists(abs_path):
        print(f"Error: File not found: {abs_path}")
        sys.exit(1)

    if not is_supported(abs_path):
        print("Error: Unsupported file type. Use .clj, .cljs, .cljc or .edn")
        sys.exit(1)

    config = ConfigManager()
    setup_logging(config.get("log_file", "/tmp/replpeek.log"))

    host = args.host or config.get("host", "127.0.0.1")
    port = resolve_port(args, config, abs_path)

    try:
        transport = load_transport(args.transport or config.get("transport", ""), host, port)
    except ReplError as e:
        print(f"Error: {e.message}")
        if e.hint:
            print(e.hint)
        sys.exit(1)

    try:
        run_tui(abs_path, transport, config)
    except KeyboardInterrupt:
        pass
    except Exception as e:
        print(f"Fatal Error: {e}")
        sys.exit(1)

if __name__ == "__main__":
    run()
