# src/autocontrol/net/transport_tcp.py
"""
AutoControl Messenger — TCP Connection

One TcpConnection is one socket lifetime:
  open()  -> background thread connects (bounded by connect_timeout), then
             blocks in recv() and reports each chunk as READABLE
  write() -> sendall() under a lock; partial writes are looped by the socket
  close() -> shutdown + close, which unblocks the reader thread

Framing is not done here. Chunks are handed up raw; the consumer buffers them
until whole frames are available.
"""

from __future__ import annotations

import logging
import socket
import threading
from typing import Optional

from autocontrol.net.net_logging import log_event
from autocontrol.net.transport import (
    ConnectTimeout,
    EventListener,
    NotConnected,
    StreamEvent,
    TransportError,
    TransportEvent,
)

_logger = logging.getLogger("autocontrol.net")


class TcpConnection:
    def __init__(
        self,
        host: str,
        port: int,
        conn_id: int,
        listener: EventListener,
        *,
        connect_timeout: Optional[float] = 10.0,
        read_chunk_bytes: int = 65536,
        join_timeout: float = 1.0,
    ) -> None:
        self.host = str(host)
        self.port = int(port)
        self._conn_id = int(conn_id)
        self._listener: Optional[EventListener] = listener
        self.connect_timeout = connect_timeout
        self.read_chunk_bytes = max(1, int(read_chunk_bytes))
        # close() waits at most this long for the reader thread to exit
        self.join_timeout = float(join_timeout)

        self._sock: Optional[socket.socket] = None
        self._wlock = threading.Lock()
        self._state_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._connected = False
        self._closed = False

    @property
    def conn_id(self) -> int:
        return self._conn_id

    @property
    def is_open(self) -> bool:
        return self._connected and not self._closed

    # -------------------------
    # lifecycle
    # -------------------------

    def open(self) -> None:
        with self._state_lock:
            if self._thread is not None or self._closed:
                return
            self._thread = threading.Thread(
                target=self._run,
                name=f"autocontrol-conn-{self._conn_id}",
                daemon=True,
            )
        self._thread.start()

    def close(self) -> None:
        with self._state_lock:
            if self._closed:
                return
            self._closed = True
            self._connected = False
            self._listener = None
            sock = self._sock
            self._sock = None
            thread = self._thread

        if sock is not None:
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            sock.close()

        if thread is not None and thread is not threading.current_thread():
            thread.join(self.join_timeout)

    def write(self, data: bytes) -> None:
        sock = self._sock
        if sock is None or not self.is_open:
            raise NotConnected(f"connection {self._conn_id} is not open")

        with self._wlock:
            try:
                sock.sendall(data)
            except OSError as e:
                err = TransportError(f"write failed: {e}")
                self._emit(TransportEvent.ERROR_OCCURRED, error=err)
                raise err from e

    # -------------------------
    # internals
    # -------------------------

    def _emit(self, kind: TransportEvent, *, data: bytes = b"", error: Optional[TransportError] = None) -> None:
        listener = self._listener
        if listener is None or self._closed:
            return
        listener(StreamEvent(kind=kind, conn_id=self._conn_id, data=data, error=error))

    def _connect(self) -> Optional[socket.socket]:
        try:
            sock = socket.create_connection((self.host, self.port), timeout=self.connect_timeout)
        except socket.timeout:
            self._emit(
                TransportEvent.ERROR_OCCURRED,
                error=ConnectTimeout(f"connect to {self.host}:{self.port} timed out after {self.connect_timeout}s"),
            )
            return None
        except OSError as e:
            self._emit(TransportEvent.ERROR_OCCURRED, error=TransportError(f"connect failed: {e}"))
            return None

        sock.settimeout(None)
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

        with self._state_lock:
            if self._closed:
                sock.close()
                return None
            self._sock = sock
            self._connected = True
        return sock

    def _run(self) -> None:
        sock = self._connect()
        if sock is None:
            return

        log_event(_logger, "conn_open", conn_id=self._conn_id, host=self.host, port=self.port)
        self._emit(TransportEvent.OPEN_COMPLETED)

        while not self._closed:
            try:
                chunk = sock.recv(self.read_chunk_bytes)
            except OSError as e:
                if not self._closed:
                    self._emit(TransportEvent.ERROR_OCCURRED, error=TransportError(f"read failed: {e}"))
                return

            if not chunk:
                self._emit(TransportEvent.CLOSED)
                return

            self._emit(TransportEvent.READABLE, data=chunk)


def tcp_connection_factory(*, connect_timeout: Optional[float] = 10.0, read_chunk_bytes: int = 65536):
    def factory(host: str, port: int, conn_id: int, listener: EventListener) -> TcpConnection:
        return TcpConnection(
            host,
            port,
            conn_id,
            listener,
            connect_timeout=connect_timeout,
            read_chunk_bytes=read_chunk_bytes,
        )

    return factory
