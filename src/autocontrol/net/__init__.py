# src/autocontrol/net/__init__.py
"""
AutoControl Messenger — Network package

A persistent, reconnecting client for the controller's length-prefixed,
type-tagged protobuf protocol:
  - messages: protobuf schemas, envelope value type, outbound message kinds
  - codec: one-byte length-prefixed framing (encode, buffered and blocking decode)
  - registry: outbound kind -> tag, inbound tag -> handler
  - transport: stream events + StreamTransport owning one connection
  - transport_tcp: socket-backed connection
  - transport_memory: in-process connection for tests
  - connection: state machine with bounded reconnect backoff
  - dispatcher: send / on_frame
  - client: MessengerClient facade
  - lifecycle: host foreground/background adapter

The host application should depend on net.client (and net.messages for
message kinds) and keep payload semantics in its own handlers.
"""

from __future__ import annotations

__all__ = [
    "messages",
    "codec",
    "registry",
    "transport",
    "transport_tcp",
    "transport_memory",
    "connection",
    "dispatcher",
    "client",
    "lifecycle",
    "net_logging",
]
