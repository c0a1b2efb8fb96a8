# src/autocontrol/net/messages.py
"""
AutoControl Messenger — wire schemas

The controller speaks protobuf. Descriptors are built once at import time from
a FileDescriptorProto so no generated *_pb2 module has to be shipped:

  package auto_control.messenger;
  enum Type { CONNECT_REQUEST_TYPE = 0; SYNC_REQUEST_TYPE = 1; ... }
  message WrapperMessage { Type type = 1; bytes data = 2; bool compressed = 3; uint64 seq = 4; }

Outbound messages are a closed set of dataclasses, each carrying its wire tag
as a class constant. Inbound payloads stay opaque bytes until a handler asks
for them to be parsed.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import IntEnum
from typing import ClassVar, Dict, Optional, Protocol, Type, Union, runtime_checkable

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory
from google.protobuf.message import Message as ProtoMessage

PROTO_PACKAGE = "auto_control.messenger"

UINT64_MAX = (1 << 64) - 1


class MessageType(IntEnum):
    CONNECT_REQUEST = 0
    SYNC_REQUEST = 1
    SYNC_BUS_REQUEST = 2
    SYNC_POINT_REQUEST = 3
    SYNC_ROUTE_RESPONSE = 4


# ---------------------------------------------------------------------
# Descriptor construction
# ---------------------------------------------------------------------

_F = descriptor_pb2.FieldDescriptorProto


def _add_field(msg: descriptor_pb2.DescriptorProto, name: str, number: int, ftype: int, type_name: str = "") -> None:
    f = msg.field.add(name=name, number=number, type=ftype, label=_F.LABEL_OPTIONAL)
    if type_name:
        f.type_name = type_name


def _build_file() -> descriptor_pb2.FileDescriptorProto:
    fdp = descriptor_pb2.FileDescriptorProto(
        name="auto_control/messenger.proto",
        package=PROTO_PACKAGE,
        syntax="proto3",
    )

    enum = fdp.enum_type.add(name="Type")
    for mt in MessageType:
        enum.value.add(name=f"{mt.name}_TYPE", number=int(mt))

    wrapper = fdp.message_type.add(name="WrapperMessage")
    _add_field(wrapper, "type", 1, _F.TYPE_ENUM, f".{PROTO_PACKAGE}.Type")
    _add_field(wrapper, "data", 2, _F.TYPE_BYTES)
    _add_field(wrapper, "compressed", 3, _F.TYPE_BOOL)
    _add_field(wrapper, "seq", 4, _F.TYPE_UINT64)

    for name in ("SyncRequest", "SyncBusRequest", "SyncPointRequest"):
        m = fdp.message_type.add(name=name)
        _add_field(m, "last_sync_time", 1, _F.TYPE_INT64)

    connect = fdp.message_type.add(name="ConnectRequest")
    _add_field(connect, "client_id", 1, _F.TYPE_STRING)

    route = fdp.message_type.add(name="SyncRouteResponse")
    _add_field(route, "sync_time", 1, _F.TYPE_INT64)
    _add_field(route, "routes", 2, _F.TYPE_BYTES)

    return fdp


_POOL = descriptor_pool.DescriptorPool()
_POOL.AddSerializedFile(_build_file().SerializeToString())


def _message_class(name: str) -> Type[ProtoMessage]:
    return message_factory.GetMessageClass(_POOL.FindMessageTypeByName(f"{PROTO_PACKAGE}.{name}"))


WrapperMessageProto = _message_class("WrapperMessage")
SyncRequestProto = _message_class("SyncRequest")
SyncBusRequestProto = _message_class("SyncBusRequest")
SyncPointRequestProto = _message_class("SyncPointRequest")
ConnectRequestProto = _message_class("ConnectRequest")
SyncRouteResponseProto = _message_class("SyncRouteResponse")


# ---------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class WrapperMessage:
    """Decoded envelope. `type` is a plain int so unknown peer tags survive."""

    type: int
    payload: bytes
    compressed: bool = False
    sequence: int = 0

    def to_proto(self) -> ProtoMessage:
        return WrapperMessageProto(
            type=int(self.type),
            data=bytes(self.payload),
            compressed=bool(self.compressed),
            seq=int(self.sequence),
        )

    @classmethod
    def from_proto(cls, pb: ProtoMessage) -> "WrapperMessage":
        return cls(type=int(pb.type), payload=bytes(pb.data), compressed=bool(pb.compressed), sequence=int(pb.seq))

    @property
    def known_type(self) -> Optional[MessageType]:
        try:
            return MessageType(self.type)
        except ValueError:
            return None


# ---------------------------------------------------------------------
# Outbound messages (closed set)
# ---------------------------------------------------------------------

@runtime_checkable
class OutboundMessage(Protocol):
    TYPE: ClassVar[MessageType]

    def serialize(self) -> bytes: ...


@dataclass(frozen=True, slots=True)
class SyncRequest:
    TYPE: ClassVar[MessageType] = MessageType.SYNC_REQUEST

    last_sync_time: int

    def serialize(self) -> bytes:
        return SyncRequestProto(last_sync_time=int(self.last_sync_time)).SerializeToString()


@dataclass(frozen=True, slots=True)
class SyncBusRequest:
    TYPE: ClassVar[MessageType] = MessageType.SYNC_BUS_REQUEST

    last_sync_time: int

    def serialize(self) -> bytes:
        return SyncBusRequestProto(last_sync_time=int(self.last_sync_time)).SerializeToString()


@dataclass(frozen=True, slots=True)
class SyncPointRequest:
    TYPE: ClassVar[MessageType] = MessageType.SYNC_POINT_REQUEST

    last_sync_time: int

    def serialize(self) -> bytes:
        return SyncPointRequestProto(last_sync_time=int(self.last_sync_time)).SerializeToString()


@dataclass(frozen=True, slots=True)
class ConnectRequest:
    TYPE: ClassVar[MessageType] = MessageType.CONNECT_REQUEST

    client_id: str = ""

    def serialize(self) -> bytes:
        return ConnectRequestProto(client_id=str(self.client_id)).SerializeToString()


AnyOutbound = Union[SyncRequest, SyncBusRequest, SyncPointRequest, ConnectRequest]

OUTBOUND_KINDS: tuple[Type[AnyOutbound], ...] = (
    SyncRequest,
    SyncBusRequest,
    SyncPointRequest,
    ConnectRequest,
)


def make_sync_request(now: Optional[float] = None) -> SyncRequest:
    ts = time.time() if now is None else now
    return SyncRequest(last_sync_time=int(ts))


# ---------------------------------------------------------------------
# Inbound payload parsing (for handlers)
# ---------------------------------------------------------------------

_PAYLOAD_CLASSES: Dict[MessageType, Type[ProtoMessage]] = {
    MessageType.CONNECT_REQUEST: ConnectRequestProto,
    MessageType.SYNC_REQUEST: SyncRequestProto,
    MessageType.SYNC_BUS_REQUEST: SyncBusRequestProto,
    MessageType.SYNC_POINT_REQUEST: SyncPointRequestProto,
    MessageType.SYNC_ROUTE_RESPONSE: SyncRouteResponseProto,
}


def parse_payload(tag: int, payload: bytes) -> ProtoMessage:
    """Parse a payload for a known tag.

    Raises ValueError for tags without a schema and
    google.protobuf.message.DecodeError for corrupt bytes.
    """
    cls = _PAYLOAD_CLASSES[MessageType(tag)]
    return cls.FromString(bytes(payload))
