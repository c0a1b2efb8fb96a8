from __future__ import annotations

import io
import logging
from dataclasses import replace

import pytest

from autocontrol.net.client import MessengerClient, client_from_env, reconnect_policy_from_config
from autocontrol.net.codec import encode_wrapper, read_frame
from autocontrol.net.connection import ClientShutdown, ConnState
from autocontrol.net.lifecycle import LifecycleAdapter, LifecycleSignal
from autocontrol.net.messages import MessageType, SyncPointRequest, SyncRouteResponseProto, WrapperMessage, parse_payload
from autocontrol.net.transport import NotConnected
from autocontrol.net.transport_memory import InMemoryNetwork
from autocontrol.runtime.client_config import default_client_config


def _client(scheduler, **overrides):
    net = InMemoryNetwork()
    cfg = replace(default_client_config(), host="10.0.0.5", port=6000, **overrides)
    return MessengerClient(cfg, connection_factory=net, scheduler=scheduler), net


def _decode(data: bytes) -> WrapperMessage:
    return read_frame(io.BytesIO(data))


def test_policy_from_config() -> None:
    cfg = replace(default_client_config(), reconnect_initial_delay_s=0.25, reconnect_max_attempts=0)
    p = reconnect_policy_from_config(cfg)
    assert p.initial_delay_s == 0.25
    assert p.max_attempts is None

    assert reconnect_policy_from_config(replace(cfg, reconnect_max_attempts=3)).max_attempts == 3


def test_start_connects_to_configured_endpoint(scheduler) -> None:
    client, net = _client(scheduler)
    assert client.start() is client
    assert client.state == ConnState.CONNECTING
    assert (net.last.host, net.last.port) == ("10.0.0.5", 6000)
    assert not client.is_connected

    net.last.complete_open()
    assert client.is_connected


def test_send_before_connect_fails_without_side_effects(scheduler) -> None:
    client, net = _client(scheduler)
    client.start()
    with pytest.raises(NotConnected):
        client.request_sync(now=5)
    assert client.state == ConnState.CONNECTING


def test_request_sync_and_send(scheduler) -> None:
    client, net = _client(scheduler, sequence_start=100)
    client.start()
    net.last.complete_open()

    assert client.request_sync(now=1_700_000_000.5) == 100
    assert client.send(SyncPointRequest(last_sync_time=7)) == 101

    first, second = (_decode(w) for w in net.last.written)
    assert (first.type, first.sequence) == (MessageType.SYNC_REQUEST, 100)
    assert parse_payload(first.type, first.payload).last_sync_time == 1_700_000_000
    assert (second.type, second.sequence) == (MessageType.SYNC_POINT_REQUEST, 101)


def test_inbound_messages_reach_handlers(scheduler) -> None:
    client, net = _client(scheduler)
    routes = []
    client.on_message(
        MessageType.SYNC_ROUTE_RESPONSE,
        lambda payload, tag: routes.append(parse_payload(tag, payload).routes),
    )
    client.start()
    net.last.complete_open()

    body = SyncRouteResponseProto(sync_time=3, routes=b"r1").SerializeToString()
    net.last.inject(encode_wrapper(WrapperMessage(type=42, payload=b"new", sequence=10)))
    net.last.inject(encode_wrapper(WrapperMessage(type=MessageType.SYNC_ROUTE_RESPONSE, payload=body, sequence=9)))

    assert routes == [b"r1"]
    assert client.is_connected


def test_sync_on_connect_sends_after_every_connect(scheduler) -> None:
    client, net = _client(scheduler, sync_on_connect=True)
    client.start()
    net.last.complete_open()
    assert [_decode(w).type for w in net.last.written] == [MessageType.SYNC_REQUEST]

    net.last.fail()
    scheduler.run_next()
    net.last.complete_open()
    assert [_decode(w).sequence for w in net.last.written] == [2]


def test_state_change_observer(scheduler) -> None:
    client, net = _client(scheduler)
    seen = []
    client.on_state_change(lambda old, new, reason: seen.append(new))
    client.start()
    net.last.complete_open()
    assert seen == [ConnState.CONNECTING, ConnState.CONNECTED]


def test_lifecycle_adapter_drives_suspend_and_resume(scheduler) -> None:
    client, net = _client(scheduler)
    adapter = LifecycleAdapter(client)
    client.start()
    first = net.last
    first.complete_open()

    adapter.notify(LifecycleSignal.WILL_RESIGN_ACTIVE)
    assert client.is_connected

    adapter(LifecycleSignal.ENTERED_BACKGROUND)
    assert client.state == ConnState.DISCONNECTED
    assert first.closed

    adapter("BECAME_ACTIVE")
    assert client.state == ConnState.CONNECTING
    assert net.last is not first


def test_lifecycle_adapter_rejects_unknown_signal(scheduler) -> None:
    client, _ = _client(scheduler)
    with pytest.raises(ValueError):
        LifecycleAdapter(client).notify("SOMETHING_ELSE")  # type: ignore[arg-type]


def test_context_manager_shuts_down(scheduler) -> None:
    client, net = _client(scheduler)
    with client:
        net.last.complete_open()
        assert client.is_connected

    assert client.state == ConnState.SHUTDOWN
    assert net.last.closed
    with pytest.raises(ClientShutdown):
        client.resume()


def test_invalid_config_is_rejected() -> None:
    with pytest.raises(ValueError):
        MessengerClient(replace(default_client_config(), port=0), connection_factory=InMemoryNetwork())


def test_client_from_env_applies_config_and_log_level(tmp_path, monkeypatch, root_logging, scheduler) -> None:
    for k in ("AUTOCONTROL_HOST", "AUTOCONTROL_PORT", "AUTOCONTROL_LOG_LEVEL"):
        monkeypatch.delenv(k, raising=False)
    p = tmp_path / "client.yaml"
    p.write_text("host: 10.9.9.9\nport: 6100\nlog_level: WARNING\n", encoding="utf-8")
    monkeypatch.setenv("AUTOCONTROL_CONFIG_PATH", str(p))

    net = InMemoryNetwork()
    client = client_from_env(connection_factory=net, scheduler=scheduler)
    assert client.cfg.log_level == "WARNING"
    assert root_logging.level == logging.WARNING
    assert client.state == ConnState.DISCONNECTED

    client.start()
    assert (net.last.host, net.last.port) == ("10.9.9.9", 6100)

    monkeypatch.setenv("AUTOCONTROL_LOG_LEVEL", "debug")
    assert client_from_env(connection_factory=net, scheduler=scheduler).cfg.log_level == "DEBUG"
    assert root_logging.level == logging.DEBUG
