"""
AutoControl Messenger — Stream Transport (Abstract I/O Layer)

Goal:
  Keep the byte-stream plumbing behind a small surface so the codec, the
  dispatcher and the connection state machine stay pure and testable.

Notes:
  - A Connection is one live instance of the byte stream. It is opened once,
    closed once, and never reused; a reconnect always builds a new one.
  - Connections report what happens to them through StreamEvents. Events carry
    the conn_id of the connection that produced them, so late events from a
    discarded connection can be recognised and dropped.
  - StreamTransport owns at most one Connection at a time.

This module is pure structure: no sockets here.
"""

from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Protocol, runtime_checkable


# ---------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------

class TransportError(Exception):
    """I/O failure on the underlying stream."""


class NotConnected(TransportError):
    """Write attempted without an open stream."""


class ConnectTimeout(TransportError):
    """The stream did not open within the connect timeout."""


# ---------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------

class TransportEvent(str, Enum):
    OPEN_COMPLETED = "OPEN_COMPLETED"
    READABLE = "READABLE"
    ERROR_OCCURRED = "ERROR_OCCURRED"
    CLOSED = "CLOSED"


@dataclass(frozen=True, slots=True)
class StreamEvent:
    kind: TransportEvent
    conn_id: int
    data: bytes = b""
    error: Optional[TransportError] = None


EventListener = Callable[[StreamEvent], None]


# ---------------------------------------------------------------------
# Connection interface
# ---------------------------------------------------------------------

@runtime_checkable
class Connection(Protocol):
    @property
    def conn_id(self) -> int: ...

    @property
    def is_open(self) -> bool: ...

    def open(self) -> None: ...
    def write(self, data: bytes) -> None: ...
    def close(self) -> None: ...


# factory(host, port, conn_id, listener) -> Connection
ConnectionFactory = Callable[[str, int, int, EventListener], Connection]


_conn_ids = itertools.count(1)


def next_conn_id() -> int:
    return next(_conn_ids)


# ---------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------

class StreamTransport:
    """Owns exactly one Connection at a time to a fixed host/port."""

    def __init__(self, host: str, port: int, factory: ConnectionFactory, listener: EventListener) -> None:
        self.host = str(host)
        self.port = int(port)
        self._factory = factory
        self._listener = listener
        self._conn: Optional[Connection] = None
        self._lock = threading.RLock()

    @property
    def connection(self) -> Optional[Connection]:
        return self._conn

    @property
    def current_conn_id(self) -> Optional[int]:
        conn = self._conn
        return conn.conn_id if conn is not None else None

    @property
    def is_open(self) -> bool:
        conn = self._conn
        return conn is not None and conn.is_open

    def open(self) -> Optional[int]:
        """Create and open a fresh connection. No-op if one is already held."""
        with self._lock:
            if self._conn is not None:
                return None
            conn = self._factory(self.host, self.port, next_conn_id(), self._on_event)
            self._conn = conn
        conn.open()
        return conn.conn_id

    def close(self) -> None:
        with self._lock:
            conn = self._conn
            self._conn = None
        if conn is not None:
            conn.close()

    def write(self, data: bytes) -> None:
        conn = self._conn
        if conn is None:
            raise NotConnected("stream is closed")
        conn.write(data)

    def _on_event(self, event: StreamEvent) -> None:
        if event.conn_id != self.current_conn_id:
            return
        self._listener(event)
