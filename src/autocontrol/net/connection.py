# src/autocontrol/net/connection.py
"""
AutoControl Messenger — Connection State Machine

  DISCONNECTED --open()/resume()--> CONNECTING --OPEN_COMPLETED--> CONNECTED
  CONNECTED --READABLE--> CONNECTED          (frames decoded and dispatched)
  CONNECTING|CONNECTED --error/EOF/bad frame--> RECONNECTING --backoff--> CONNECTING
  any live state --suspend()--> DISCONNECTED (no reconnect until resume())
  any state --shutdown()--> SHUTDOWN         (terminal)

Every CONNECTING entry gets a brand new Connection and a brand new
FrameDecoder. Events from earlier connections are ignored.

All transitions happen under one re-entrant lock. Reader threads deliver
events through it, so decoding never runs concurrently with itself, and
suspend()/shutdown() may be called from any thread.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Protocol

from autocontrol.net.codec import DecodeError, EndOfStream, FrameDecoder, Truncated
from autocontrol.net.messages import WrapperMessage
from autocontrol.net.net_logging import log_event
from autocontrol.net.transport import (
    ConnectionFactory,
    NotConnected,
    StreamEvent,
    StreamTransport,
    TransportError,
    TransportEvent,
)
from autocontrol.runtime.metrics import inc_counter, set_gauge


class ConnState(str, Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    RECONNECTING = "RECONNECTING"
    SHUTDOWN = "SHUTDOWN"


_STATE_GAUGE = {s: i for i, s in enumerate(ConnState)}


class ClientShutdown(RuntimeError):
    pass


@dataclass(frozen=True)
class ReconnectPolicy:
    initial_delay_s: float = 0.5
    max_delay_s: float = 30.0
    multiplier: float = 2.0
    max_attempts: Optional[int] = None  # None = retry forever

    def delay_for(self, attempt: int) -> float:
        n = max(1, int(attempt))
        base = float(self.initial_delay_s)
        cap = float(self.max_delay_s)
        if base <= 0:
            return 0.0
        try:
            grown = base * (float(self.multiplier) ** (n - 1))
        except OverflowError:
            return cap
        return min(cap, grown)

    def exhausted(self, attempt: int) -> bool:
        return self.max_attempts is not None and int(attempt) > int(self.max_attempts)


class Cancellable(Protocol):
    def cancel(self) -> None: ...


Scheduler = Callable[[float, Callable[[], None]], Cancellable]
StateListener = Callable[[ConnState, ConnState, str], None]
FrameSink = Callable[[WrapperMessage], object]


def timer_scheduler(delay: float, fn: Callable[[], None]) -> Cancellable:
    t = threading.Timer(delay, fn)
    t.daemon = True
    t.start()
    return t


class ConnectionStateMachine:
    def __init__(
        self,
        host: str,
        port: int,
        *,
        connection_factory: ConnectionFactory,
        on_frame: FrameSink,
        policy: Optional[ReconnectPolicy] = None,
        scheduler: Optional[Scheduler] = None,
    ) -> None:
        self.policy = policy or ReconnectPolicy()
        self.transport = StreamTransport(host, port, connection_factory, self._on_event)

        self._on_frame = on_frame
        self._schedule = scheduler or timer_scheduler
        self._lock = threading.RLock()
        self._state = ConnState.DISCONNECTED
        self._decoder = FrameDecoder()
        self._attempts = 0
        self._pending: Optional[Cancellable] = None
        self._listeners: List[StateListener] = []
        self._logger = logging.getLogger("autocontrol.net")

    # -------------------------
    # observation
    # -------------------------

    @property
    def state(self) -> ConnState:
        return self._state

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def reconnect_pending(self) -> bool:
        return self._pending is not None

    def add_state_listener(self, listener: StateListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_state_listener(self, listener: StateListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    # -------------------------
    # external signals
    # -------------------------

    def open(self) -> None:
        with self._lock:
            if self._state == ConnState.SHUTDOWN:
                raise ClientShutdown("connection has been shut down")
            if self._state != ConnState.DISCONNECTED:
                return
            self._attempts = 0
            self._connect("open")

    def resume(self) -> None:
        self.open()

    def suspend(self) -> None:
        if self._state in (ConnState.DISCONNECTED, ConnState.SHUTDOWN):
            return
        # a handler blocked in a write holds the lock; closing first unblocks it
        self.transport.close()
        with self._lock:
            if self._state in (ConnState.DISCONNECTED, ConnState.SHUTDOWN):
                return
            self._cancel_pending()
            self.transport.close()
            self._set_state(ConnState.DISCONNECTED, "suspended")

    def shutdown(self) -> None:
        if self._state != ConnState.SHUTDOWN:
            self.transport.close()
        with self._lock:
            if self._state == ConnState.SHUTDOWN:
                return
            self._cancel_pending()
            self.transport.close()
            self._set_state(ConnState.SHUTDOWN, "shutdown")

    def write(self, data: bytes) -> None:
        if self._state != ConnState.CONNECTED:
            raise NotConnected(f"cannot write while {self._state.value}")
        self.transport.write(data)

    # -------------------------
    # internals
    # -------------------------

    def _set_state(self, new: ConnState, reason: str) -> None:
        old = self._state
        if old == new:
            return
        self._state = new
        set_gauge("connection_state", _STATE_GAUGE[new])
        log_event(self._logger, "state_change", old=old.value, new=new.value, reason=reason)

        for listener in list(self._listeners):
            try:
                listener(old, new, reason)
            except Exception as e:
                log_event(self._logger, "state_listener_failed", level=logging.ERROR, error=f"{type(e).__name__}: {e}")

    def _connect(self, reason: str) -> None:
        self._decoder = FrameDecoder()
        self._set_state(ConnState.CONNECTING, reason)
        if self._state != ConnState.CONNECTING:
            return
        conn_id = self.transport.open()
        log_event(
            self._logger,
            "conn_opening",
            conn_id=conn_id,
            host=self.transport.host,
            port=self.transport.port,
            attempt=self._attempts,
        )

    def _cancel_pending(self) -> None:
        pending = self._pending
        self._pending = None
        if pending is not None:
            pending.cancel()

    def _fail(self, reason: str, error: BaseException) -> None:
        decode_failure = isinstance(error, DecodeError) and not isinstance(error, EndOfStream)
        inc_counter("decode_errors" if decode_failure else "transport_errors")
        log_event(
            self._logger,
            "conn_error",
            level=logging.WARNING,
            reason=reason,
            conn_id=self.transport.current_conn_id,
            error=f"{type(error).__name__}: {error}",
        )

        self.transport.close()
        self._set_state(ConnState.RECONNECTING, reason)
        if self._state != ConnState.RECONNECTING:
            return

        self._attempts += 1
        if self.policy.exhausted(self._attempts):
            log_event(self._logger, "reconnect_gave_up", level=logging.ERROR, attempts=self._attempts - 1)
            self._set_state(ConnState.DISCONNECTED, "gave_up")
            return

        delay = self.policy.delay_for(self._attempts)
        log_event(self._logger, "reconnect_scheduled", attempt=self._attempts, delay_s=delay)
        self._pending = self._schedule(delay, self._reconnect)

    def _reconnect(self) -> None:
        with self._lock:
            self._pending = None
            if self._state != ConnState.RECONNECTING:
                return
            inc_counter("reconnects")
            self._connect("reconnect")

    def _on_event(self, event: StreamEvent) -> None:
        with self._lock:
            if event.conn_id != self.transport.current_conn_id:
                return

            if event.kind == TransportEvent.OPEN_COMPLETED:
                if self._state == ConnState.CONNECTING:
                    self._attempts = 0
                    self._set_state(ConnState.CONNECTED, "open_completed")
                return

            if event.kind == TransportEvent.READABLE:
                if self._state == ConnState.CONNECTED:
                    self._handle_readable(event)
                return

            if self._state not in (ConnState.CONNECTING, ConnState.CONNECTED):
                return

            if event.kind == TransportEvent.ERROR_OCCURRED:
                self._fail("transport_error", event.error or TransportError("transport error"))
                return

            if event.kind == TransportEvent.CLOSED:
                try:
                    self._decoder.close()
                except Truncated as e:
                    self._fail("end_of_stream", e)
                    return
                self._fail("end_of_stream", EndOfStream("end_of_stream", "peer closed the stream"))

    def _handle_readable(self, event: StreamEvent) -> None:
        conn_id = event.conn_id
        self._decoder.feed(event.data)
        try:
            for frame in self._decoder.frames():
                self._on_frame(frame)
                # a handler may have suspended or shut the client down
                if self._state != ConnState.CONNECTED or self.transport.current_conn_id != conn_id:
                    return
        except DecodeError as e:
            log_event(self._logger, "frame_decode_failed", level=logging.WARNING, conn_id=conn_id, code=e.code)
            self._fail("decode_error", e)
