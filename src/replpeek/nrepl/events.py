"""
Typed response events.

An nREPL response is a map that may carry several keys at once; each key
becomes one event, in the order the runtime streams them: value, out,
err, then the closing status.
"""
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union


@dataclass(frozen=True)
class Value:
    value: str
    ns: Optional[str] = None
    id: Optional[str] = None


@dataclass(frozen=True)
class Output:
    text: str
    id: Optional[str] = None


@dataclass(frozen=True)
class ErrorOutput:
    text: str
    id: Optional[str] = None


@dataclass(frozen=True)
class Completed:
    status: Tuple[str, ...] = field(default_factory=tuple)
    id: Optional[str] = None

    @property
    def failed(self) -> bool:
        return any(s in FAILURE_STATUSES for s in self.status)


ResponseEvent = Union[Value, Output, ErrorOutput, Completed]

FAILURE_STATUSES = {"eval-error", "namespace-not-found", "unknown-op", "error"}


def message_status(msg: dict) -> Tuple[str, ...]:
    status = msg.get("status") or ()
    if isinstance(status, (str, bytes)):
        status = (status,)
    return tuple(s.decode() if isinstance(s, bytes) else str(s) for s in status)


def events_from_message(msg: dict) -> List[ResponseEvent]:
    """Split one raw response map into events."""
    events: List[ResponseEvent] = []
    msg_id = msg.get("id")

    if "value" in msg:
        events.append(Value(value=msg["value"], ns=msg.get("ns"), id=msg_id))
    if "out" in msg:
        events.append(Output(text=msg["out"], id=msg_id))
    if "err" in msg:
        events.append(ErrorOutput(text=msg["err"], id=msg_id))

    status = message_status(msg)
    if "done" in status:
        events.append(Completed(status=status, id=msg_id))
    return events
