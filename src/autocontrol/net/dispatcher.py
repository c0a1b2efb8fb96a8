from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from autocontrol.net.codec import encode_frame
from autocontrol.net.messages import UINT64_MAX, OutboundMessage, WrapperMessage
from autocontrol.net.net_logging import log_event
from autocontrol.net.registry import MessageRegistry, tag_name
from autocontrol.runtime.metrics import inc_counter

Writer = Callable[[bytes], None]


class SequenceCounter:
    """Monotonic uint64 counter; wraps to 0 after UINT64_MAX."""

    def __init__(self, start: int = 1) -> None:
        self._next = int(start) & UINT64_MAX
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            v = self._next
            self._next = (v + 1) & UINT64_MAX
            return v


class Dispatcher:
    """Outbound: message -> tag -> frame -> writer. Inbound: frame -> handler by tag.

    Send failures go back to the caller and never touch connection state; only
    the transport's own error events cause a reconnect.
    """

    def __init__(self, registry: MessageRegistry, writer: Writer, *, sequence_start: int = 1) -> None:
        self.registry = registry
        self._writer = writer
        self._seq = SequenceCounter(sequence_start)
        self._logger = logging.getLogger("autocontrol.net")

    def send(self, message: OutboundMessage, *, sequence: Optional[int] = None) -> int:
        tag = self.registry.tag_for(message)
        seq = self._seq.next() if sequence is None else sequence
        frame = encode_frame(message, tag, seq)
        self._writer(frame)

        inc_counter("frames_sent")
        log_event(self._logger, "frame_sent", level=logging.DEBUG, type=tag_name(tag), seq=seq, size=len(frame))
        return seq

    def on_frame(self, frame: WrapperMessage) -> bool:
        inc_counter("frames_received")
        handler = self.registry.handler_for(frame.type)
        if handler is None:
            inc_counter("frames_dropped_unknown_type")
            log_event(self._logger, "frame_dropped_unknown_type", type=tag_name(frame.type), seq=frame.sequence)
            return False

        try:
            handler(frame.payload, frame.type)
        except Exception as e:
            log_event(
                self._logger,
                "handler_failed",
                level=logging.ERROR,
                type=tag_name(frame.type),
                seq=frame.sequence,
                error=f"{type(e).__name__}: {e}",
            )
        return True
