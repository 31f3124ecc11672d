"""
The REPL session: one explicit context object holding the connection,
the current namespace and the tooling session id. Every request goes
through it; nothing is kept in module-level state.
"""
from __future__ import annotations

import importlib
import itertools
import logging
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional, Protocol

from ..errors import TransportError
from .events import Completed, ResponseEvent, Value, events_from_message, message_status

logger = logging.getLogger(__name__)

EventHandler = Callable[[ResponseEvent], None]


class Transport(Protocol):
    """
    The network client this layer talks to. Implementations deliver every
    response map for a request to on_message, in arrival order, from
    whatever thread or loop they run on.
    """

    def send(self, message: Dict[str, Any], on_message: Callable[[Dict[str, Any]], None]) -> None:
        ...

    def close(self) -> None:
        ...


def load_transport(spec: str, host: str, port: int) -> Transport:
    """
    Resolve a "package.module:factory" spec and call factory(host, port).
    """
    if not spec or ":" not in spec:
        raise TransportError(
            f"Invalid transport '{spec}'",
            hint="Set \"transport\" to module:callable in ~/.replpeek/config.json",
        )
    module_name, _, attr = spec.partition(":")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise TransportError(f"Cannot import transport module '{module_name}': {e}") from e
    factory = getattr(module, attr, None)
    if factory is None:
        raise TransportError(f"Transport module '{module_name}' has no attribute '{attr}'")
    try:
        return factory(host, port)
    except OSError as e:
        raise TransportError(f"Cannot connect to {host}:{port}: {e}") from e


class ReplSession:
    def __init__(self, transport: Transport, namespace: str = "user", session_id: Optional[str] = None):
        self.transport = transport
        self.namespace = namespace
        self.session_id = session_id
        self._ids = itertools.count(1)

    def _next_id(self) -> str:
        return str(next(self._ids))

    def clone(self, on_ready: Optional[Callable[[str], None]] = None) -> str:
        """Ask the server for a fresh tooling session; stores its id when it arrives."""
        def handle(msg: Dict[str, Any]) -> None:
            new_session = msg.get("new-session")
            if new_session:
                self.session_id = new_session
                logger.info("Cloned session %s", new_session)
                if on_ready:
                    on_ready(new_session)

        request_id = self._next_id()
        self._send({"op": "clone", "id": request_id}, handle)
        return request_id

    def request(self, op: str, handler: EventHandler, **fields: Any) -> str:
        request_id = self._next_id()
        message: Dict[str, Any] = {"op": op, "id": request_id}
        if self.session_id:
            message["session"] = self.session_id
        if op == "eval" and "ns" not in fields:
            message["ns"] = self.namespace
        message.update({k: v for k, v in fields.items() if v is not None})

        # nREPL may send eval-error and done in separate maps
        statuses: List[str] = []

        def on_message(msg: Dict[str, Any]) -> None:
            statuses.extend(s for s in message_status(msg) if s != "done" and s not in statuses)
            for event in events_from_message(msg):
                if isinstance(event, Completed):
                    event = replace(event, status=(*statuses, "done"))
                if isinstance(event, Value) and event.ns:
                    self.namespace = event.ns
                handler(event)

        logger.debug("-> %s", message)
        self._send(message, on_message)
        return request_id

    def _send(self, message: Dict[str, Any], on_message: Callable[[Dict[str, Any]], None]) -> None:
        try:
            self.transport.send(message, on_message)
        except TransportError:
            raise
        except Exception as e:
            raise TransportError(f"Connection lost: {e}") from e

    def eval(
        self,
        code: str,
        handler: EventHandler,
        file: Optional[str] = None,
        line: Optional[int] = None,
        column: Optional[int] = None,
    ) -> str:
        # without file/line the runtime reports lines relative to the form
        return self.request("eval", handler, code=code, file=file, line=line, column=column)

    def load_file(self, text: str, path: str, handler: EventHandler) -> str:
        return self.request(
            "load-file",
            handler,
            file=text,
            **{"file-path": path, "file-name": path.rsplit("/", 1)[-1]},
        )

    def describe(self, handler: EventHandler) -> str:
        return self.request("describe", handler)

    def interrupt(self, request_id: str, handler: Optional[EventHandler] = None) -> str:
        return self.request("interrupt", handler or (lambda event: None), **{"interrupt-id": request_id})

    def close(self) -> None:
        try:
            self.transport.close()
        except Exception as e:
            logger.warning("Error closing transport: %s", e)
