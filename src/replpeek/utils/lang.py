"""
Dialect detection from file extension. Used by the CLI to reject files the
runtime cannot load and by the UI for labels.
"""
from pathlib import Path
from enum import Enum


class Dialect(str, Enum):
    CLOJURE = "clj"
    CLOJURESCRIPT = "cljs"
    CLOJURE_COMMON = "cljc"
    EDN = "edn"
    UNKNOWN = "unknown"


_EXT_MAP = {
    ".clj": Dialect.CLOJURE,
    ".cljs": Dialect.CLOJURESCRIPT,
    ".cljc": Dialect.CLOJURE_COMMON,
    ".edn": Dialect.EDN,
}

SUPPORTED_EXTENSIONS = set(_EXT_MAP.keys())


def detect_dialect(file_path: str) -> Dialect:
    return _EXT_MAP.get(Path(file_path).suffix, Dialect.UNKNOWN)


def is_supported(file_path: str) -> bool:
    return Path(file_path).suffix in SUPPORTED_EXTENSIONS


def source_label(dialect: Dialect) -> str:
    if dialect == Dialect.CLOJURESCRIPT:
        return "CLJS"
    if dialect == Dialect.CLOJURE_COMMON:
        return "CLJC"
    if dialect == Dialect.EDN:
        return "EDN"
    return "CLJ"
