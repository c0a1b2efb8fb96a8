from __future__ import annotations

from typing import Dict, List, Optional

from autocontrol.net.transport import (
    EventListener,
    NotConnected,
    StreamEvent,
    TransportError,
    TransportEvent,
)


class InMemoryConnection:
    """
    Minimal in-process connection used for unit tests.

    - Does not open sockets
    - Records every write
    - Tests drive the peer side with complete_open(), inject(), fail(), eof()
    """

    def __init__(self, host: str, port: int, conn_id: int, listener: EventListener) -> None:
        self.host = host
        self.port = port
        self._conn_id = conn_id
        self._listener: Optional[EventListener] = listener

        self.open_calls = 0
        self.close_calls = 0
        self.opening = False
        self.connected = False
        self.closed = False
        self.written: List[bytes] = []

    @property
    def conn_id(self) -> int:
        return self._conn_id

    @property
    def is_open(self) -> bool:
        return self.connected and not self.closed

    def open(self) -> None:
        self.open_calls += 1
        if self.opening or self.closed:
            return
        self.opening = True

    def close(self) -> None:
        self.close_calls += 1
        if self.closed:
            return
        self.closed = True
        self.connected = False
        self._listener = None

    def write(self, data: bytes) -> None:
        if not self.is_open:
            raise NotConnected(f"connection {self._conn_id} is not open")
        self.written.append(bytes(data))

    # ---- helpers for tests / harness ----

    def _emit(self, event: StreamEvent) -> None:
        listener = self._listener
        if listener is not None:
            listener(event)

    def complete_open(self) -> None:
        self.connected = True
        self._emit(StreamEvent(kind=TransportEvent.OPEN_COMPLETED, conn_id=self._conn_id))

    def inject(self, data: bytes) -> None:
        self._emit(StreamEvent(kind=TransportEvent.READABLE, conn_id=self._conn_id, data=bytes(data)))

    def fail(self, reason: str = "simulated failure") -> None:
        self._emit(StreamEvent(kind=TransportEvent.ERROR_OCCURRED, conn_id=self._conn_id, error=TransportError(reason)))

    def eof(self) -> None:
        self._emit(StreamEvent(kind=TransportEvent.CLOSED, conn_id=self._conn_id))


class InMemoryNetwork:
    """Connection factory that keeps every connection it made, newest last."""

    def __init__(self) -> None:
        self.connections: List[InMemoryConnection] = []
        self._by_id: Dict[int, InMemoryConnection] = {}

    def __call__(self, host: str, port: int, conn_id: int, listener: EventListener) -> InMemoryConnection:
        conn = InMemoryConnection(host, port, conn_id, listener)
        self.connections.append(conn)
        self._by_id[conn_id] = conn
        return conn

    @property
    def last(self) -> InMemoryConnection:
        if not self.connections:
            raise LookupError("no connection has been created")
        return self.connections[-1]

    def get(self, conn_id: int) -> Optional[InMemoryConnection]:
        return self._by_id.get(conn_id)
