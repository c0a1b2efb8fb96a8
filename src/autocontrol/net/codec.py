# src/autocontrol/net/codec.py
"""
AutoControl Messenger — Framing Codec

Frame format:
  [1-byte unsigned length][serialized WrapperMessage]

Frames are sent back to back on one stream with no separator. The one-byte
prefix caps a body at 255 bytes; larger bodies are rejected with
FrameTooLarge rather than truncated.

There is no resync marker, so after a corrupt frame the read position is
meaningless and the caller must drop the connection.
"""

from __future__ import annotations

import struct
from typing import BinaryIO, Iterator, List

from google.protobuf.message import DecodeError as ProtoDecodeError

from autocontrol.net.messages import UINT64_MAX, OutboundMessage, WrapperMessage, WrapperMessageProto

_LEN = struct.Struct(">B")
LENGTH_PREFIX_BYTES = _LEN.size
MAX_FRAME_BODY = 255


class WireError(RuntimeError):
    def __init__(self, code: str, msg: str) -> None:
        super().__init__(msg)
        self.code = code


class EncodeError(WireError):
    pass


class FrameTooLarge(WireError):
    def __init__(self, size: int, limit: int = MAX_FRAME_BODY) -> None:
        super().__init__("frame_too_large", f"frame body is {size} bytes, limit is {limit}")
        self.size = size
        self.limit = limit


class DecodeError(WireError):
    pass


class Truncated(DecodeError):
    pass


class MalformedPayload(DecodeError):
    pass


class EndOfStream(DecodeError):
    pass


# ---------------------------------------------------------------------
# Encode
# ---------------------------------------------------------------------

def encode_wrapper(wrapper: WrapperMessage) -> bytes:
    seq = wrapper.sequence
    if isinstance(seq, bool) or not isinstance(seq, int) or seq < 0 or seq > UINT64_MAX:
        raise EncodeError("invalid_sequence", f"sequence must be a uint64, got {seq!r}")

    try:
        body = wrapper.to_proto().SerializeToString()
    except Exception as e:
        raise EncodeError("serialize_failed", f"wrapper serialization failed: {e}") from e

    if len(body) > MAX_FRAME_BODY:
        raise FrameTooLarge(len(body))

    return _LEN.pack(len(body)) + body


def encode_frame(message: OutboundMessage, type_tag: int, sequence: int) -> bytes:
    try:
        payload = message.serialize()
    except Exception as e:
        raise EncodeError("serialize_failed", f"{type(message).__name__} serialization failed: {e}") from e

    return encode_wrapper(WrapperMessage(type=int(type_tag), payload=payload, compressed=False, sequence=sequence))


# ---------------------------------------------------------------------
# Decode
# ---------------------------------------------------------------------

def parse_body(body: bytes) -> WrapperMessage:
    try:
        pb = WrapperMessageProto.FromString(bytes(body))
    except ProtoDecodeError as e:
        raise MalformedPayload("malformed_payload", f"invalid WrapperMessage: {e}") from e
    return WrapperMessage.from_proto(pb)


class FrameDecoder:
    """Accumulates stream chunks and yields whole frames.

    Readable notifications carry whatever the socket had; a frame may span
    several chunks and a chunk may hold several frames. Nothing is parsed until
    the full body is buffered.
    """

    def __init__(self) -> None:
        self._buf = bytearray()

    @property
    def pending(self) -> int:
        return len(self._buf)

    def feed(self, data: bytes) -> None:
        if data:
            self._buf.extend(data)

    def frames(self) -> Iterator[WrapperMessage]:
        """Yield buffered frames one at a time; a corrupt body raises at its turn."""
        buf = self._buf

        while len(buf) >= LENGTH_PREFIX_BYTES:
            (n,) = _LEN.unpack_from(buf)
            end = LENGTH_PREFIX_BYTES + n
            if len(buf) < end:
                break

            body = bytes(buf[LENGTH_PREFIX_BYTES:end])
            del buf[:end]
            yield parse_body(body)

    def drain(self) -> List[WrapperMessage]:
        return list(self.frames())

    def close(self) -> None:
        if self._buf:
            n = len(self._buf)
            self._buf.clear()
            raise Truncated("truncated", f"stream ended with {n} bytes of an incomplete frame")


def _read_exact(stream: BinaryIO, n: int) -> bytes:
    chunks = bytearray()
    while len(chunks) < n:
        chunk = stream.read(n - len(chunks))
        if not chunk:
            break
        chunks.extend(chunk)
    return bytes(chunks)


def read_frame(stream: BinaryIO) -> WrapperMessage:
    """Read exactly one frame from a blocking binary stream."""
    head = _read_exact(stream, LENGTH_PREFIX_BYTES)
    if not head:
        raise EndOfStream("end_of_stream", "stream closed before frame header")

    (n,) = _LEN.unpack(head)
    body = _read_exact(stream, n)
    if len(body) != n:
        raise Truncated("truncated", f"expected {n} body bytes, got {len(body)}")

    return parse_body(body)
