from __future__ import annotations

import io
import logging

import pytest

from autocontrol.net.codec import FrameTooLarge, read_frame
from autocontrol.net.dispatcher import Dispatcher, SequenceCounter
from autocontrol.net.messages import UINT64_MAX, ConnectRequest, MessageType, SyncRequest, WrapperMessage
from autocontrol.net.registry import MessageRegistry, UnknownMessageType
from autocontrol.net.transport import NotConnected
from autocontrol.runtime import metrics


class _Other:
    def serialize(self) -> bytes:
        return b""


def _dispatcher(**kw):
    written = []
    d = Dispatcher(MessageRegistry(), written.append, **kw)
    return d, written


def test_sequence_counter_is_monotonic_and_wraps() -> None:
    c = SequenceCounter(UINT64_MAX - 1)
    assert [c.next(), c.next(), c.next()] == [UINT64_MAX - 1, UINT64_MAX, 0]


def test_send_writes_one_frame_with_increasing_sequence() -> None:
    d, written = _dispatcher()
    assert d.send(SyncRequest(last_sync_time=10)) == 1
    assert d.send(SyncRequest(last_sync_time=11)) == 2

    frames = [read_frame(io.BytesIO(w)) for w in written]
    assert [(f.type, f.sequence) for f in frames] == [(1, 1), (1, 2)]
    assert frames[1].payload == SyncRequest(last_sync_time=11).serialize()
    assert metrics.counter("frames_sent") == 2


def test_caller_supplied_sequence_passes_through() -> None:
    d, written = _dispatcher(sequence_start=500)
    assert d.send(ConnectRequest(client_id="ipad"), sequence=111) == 111
    assert read_frame(io.BytesIO(written[0])).sequence == 111
    # the counter is untouched by explicit sequences
    assert d.send(ConnectRequest(client_id="ipad")) == 500


def test_send_errors_go_back_to_the_caller() -> None:
    d, written = _dispatcher()
    with pytest.raises(UnknownMessageType):
        d.send(_Other())
    with pytest.raises(FrameTooLarge):
        d.send(ConnectRequest(client_id="x" * 300))
    assert written == []
    assert metrics.counter("frames_sent") == 0

    def refuse(data: bytes) -> None:
        raise NotConnected("down")

    d2 = Dispatcher(MessageRegistry(), refuse)
    with pytest.raises(NotConnected):
        d2.send(SyncRequest(last_sync_time=1))


def test_on_frame_routes_by_tag() -> None:
    d, _ = _dispatcher()
    got = []
    d.registry.register_handler(MessageType.SYNC_ROUTE_RESPONSE, lambda payload, tag: got.append((payload, tag)))

    handled = d.on_frame(WrapperMessage(type=4, payload=b"routes", sequence=3))
    assert handled is True
    assert got == [(b"routes", 4)]
    assert metrics.counter("frames_received") == 1


def test_on_frame_drops_unknown_tags(caplog) -> None:
    d, _ = _dispatcher()
    with caplog.at_level(logging.INFO, logger="autocontrol.net"):
        assert d.on_frame(WrapperMessage(type=99, payload=b"?", sequence=1)) is False

    assert metrics.counter("frames_dropped_unknown_type") == 1
    assert any('"event":"frame_dropped_unknown_type"' in r.getMessage() for r in caplog.records)
    assert any('"type":"UNKNOWN(99)"' in r.getMessage() for r in caplog.records)


def test_handler_exception_is_logged_and_contained(caplog) -> None:
    d, _ = _dispatcher()

    def boom(payload: bytes, tag: int) -> None:
        raise ValueError("bad payload")

    d.registry.register_handler(1, boom)
    with caplog.at_level(logging.ERROR, logger="autocontrol.net"):
        assert d.on_frame(WrapperMessage(type=1, payload=b"", sequence=8)) is True

    rec = [r for r in caplog.records if '"event":"handler_failed"' in r.getMessage()]
    assert len(rec) == 1
    assert rec[0].levelno == logging.ERROR
    assert "ValueError: bad payload" in rec[0].getMessage()
