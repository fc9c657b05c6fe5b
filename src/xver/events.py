"""
Structured events for connection attempts.

One attempt produces, in order:
- CONNECT initiating
- TRUST built (algorithms in the trust table, preference order)
- TRUST verified | rejected (verdict on the presented host key)
- AUTH offered | skipped, once per credential
- AUTH success | failed
- CONNECT connected, or ERROR
- DISCONNECT on close

EventEmitter has one method per event, so payload keys stay the same
across call sites. Payloads never carry passwords or key material other
than public host keys.

Sinks:
- EventCollector: in memory, for tests and the CLI's --events output
- JSONLFileSink: appends one JSON object per line
"""
from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, IO, Any, Iterable, Iterator, Protocol

if TYPE_CHECKING:
    from xver.auth import AuthOffer
    from xver.config import ServerTarget
    from xver.errors import DisconnectReason, XverError
    from xver.host_key import HostKeyTable, HostKeyVerifier


class EventType(str, Enum):
    CONNECT = "CONNECT"
    TRUST = "TRUST"
    AUTH = "AUTH"
    DISCONNECT = "DISCONNECT"
    ERROR = "ERROR"


def _now_ms() -> float:
    return time.time() * 1000


@dataclass
class Event:
    """
    A timestamped record of one step of a connection attempt.

    Attributes:
        event_type: An EventType value
        timestamp: Unix time in milliseconds
        data: Flat, JSON-serialisable payload
    """
    event_type: str
    timestamp: float = field(default_factory=_now_ms)
    data: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if isinstance(self.event_type, EventType):
            self.event_type = self.event_type.value
        assert self.event_type in EventType._value2member_map_, \
            f"Invalid event_type {self.event_type!r}"
        assert self.timestamp > 0, f"Timestamp must be positive, got {self.timestamp}"

    def to_json(self) -> str:
        record = {"event_type": self.event_type, "timestamp": self.timestamp, "data": self.data}
        return json.dumps(record, default=str)

    @classmethod
    def from_json(cls, line: str) -> "Event":
        record = json.loads(line)
        return cls(record["event_type"], record["timestamp"], record.get("data", {}))


class EventSink(Protocol):
    def emit(self, event: Event) -> None: ...


class EventCollector:
    """Keeps events in memory."""

    def __init__(self) -> None:
        self._events: list[Event] = []

    def emit(self, event: Event) -> None:
        self._events.append(event)

    @property
    def events(self) -> list[Event]:
        return list(self._events)

    def clear(self) -> None:
        self._events.clear()

    def get_by_type(self, event_type: str | EventType) -> list[Event]:
        wanted = EventType(event_type).value
        return [e for e in self._events if e.event_type == wanted]


class JSONLFileSink:
    """
    Appends events to a file as JSON lines.

    The file (and its parent directory) is created on first use and
    flushed after every event, so a crashed process leaves a complete log.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._file: IO[str] | None = None

    def emit(self, event: Event) -> None:
        if self._file is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._file = open(self.path, "a", encoding="utf-8")
        self._file.write(event.to_json() + "\n")
        self._file.flush()

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None


class EventEmitter:
    """
    Records the steps of connection attempts to the configured sinks.

    Usage:
        emitter = EventEmitter(collector=EventCollector(), jsonl_path="xver.jsonl")
        emitter.attempt_started(server)
        ...
        emitter.close()
    """

    def __init__(
        self,
        collector: EventCollector | None = None,
        jsonl_path: Path | str | None = None,
    ) -> None:
        self._file_sink = JSONLFileSink(jsonl_path) if jsonl_path else None
        self._sinks: list[EventSink] = [s for s in (collector, self._file_sink) if s is not None]

    def emit(self, event_type: str | EventType, **data: Any) -> Event:
        """Dispatch an event with an arbitrary payload."""
        event = Event(EventType(event_type).value, data=data)
        for sink in self._sinks:
            sink.emit(event)
        return event

    # Connection lifecycle

    def attempt_started(self, server: "ServerTarget") -> Event:
        return self.emit(EventType.CONNECT, status="initiating", **_endpoint(server))

    def connected(self, server: "ServerTarget") -> Event:
        return self.emit(EventType.CONNECT, status="connected", **_endpoint(server))

    def disconnected(self, server: "ServerTarget", reason: "DisconnectReason") -> Event:
        return self.emit(
            EventType.DISCONNECT,
            host=server.hostname,
            port=server.ssh_port,
            reason=reason.value,
        )

    def failed(self, server: "ServerTarget", error: "XverError") -> Event:
        return self.emit(EventType.ERROR, label=server.label, **error.to_dict())

    # Host key trust

    def trust_built(self, table: "HostKeyTable", algorithm_order: Iterable[str]) -> Event:
        return self.emit(
            EventType.TRUST,
            status="built",
            trusted_algorithms=list(table),
            algorithm_order=list(algorithm_order),
        )

    def host_key_checked(self, verifier: "HostKeyVerifier", host: str, port: int) -> Event:
        accepted = verifier.result is not None and verifier.result.value == "trusted"
        return self.emit(
            EventType.TRUST,
            status="verified" if accepted else "rejected",
            result=verifier.result.value if verifier.result else None,
            algorithm=verifier.presented_algorithm,
            host=host,
            port=port,
        )

    # Authentication

    def credential_offered(self, offer: "AuthOffer") -> Event:
        return self.emit(EventType.AUTH, status="offered", **offer.to_dict())

    def identity_skipped(self, key_path: Path | None, reason: str) -> Event:
        return self.emit(
            EventType.AUTH,
            status="skipped",
            method="publickey",
            key_path=str(key_path),
            reason=reason,
        )

    def auth_succeeded(self, username: str, method: str, started_ms: float) -> Event:
        return self.emit(
            EventType.AUTH,
            status="success",
            method=method,
            username=username,
            duration_ms=_now_ms() - started_ms,
        )

    def auth_failed(self, username: str, tried_methods: list[str], started_ms: float) -> Event:
        return self.emit(
            EventType.AUTH,
            status="failed",
            username=username,
            tried_methods=list(tried_methods),
            duration_ms=_now_ms() - started_ms,
        )

    def close(self) -> None:
        if self._file_sink is not None:
            self._file_sink.close()


def _endpoint(server: "ServerTarget") -> dict[str, Any]:
    return {
        "host": server.hostname,
        "port": server.ssh_port,
        "username": server.username,
        "label": server.label,
    }


def iter_jsonl_events(path: Path | str) -> Iterator[Event]:
    """Yield the events stored in a JSONL file, skipping blank lines."""
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            if line.strip():
                yield Event.from_json(line)


def read_jsonl_events(path: Path | str) -> list[Event]:
    return list(iter_jsonl_events(path))
