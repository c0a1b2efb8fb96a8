from __future__ import annotations

import logging
from typing import Optional

from autocontrol.net.connection import (
    ConnectionStateMachine,
    ConnState,
    ReconnectPolicy,
    Scheduler,
    StateListener,
)
from autocontrol.net.dispatcher import Dispatcher
from autocontrol.net.messages import OutboundMessage, make_sync_request
from autocontrol.net.net_logging import configure_logging, log_event
from autocontrol.net.registry import MessageHandler, MessageRegistry
from autocontrol.net.transport import ConnectionFactory
from autocontrol.net.transport_tcp import tcp_connection_factory
from autocontrol.runtime.client_config import (
    ClientConfig,
    default_client_config,
    load_client_config,
    validate_client_config,
)


def reconnect_policy_from_config(cfg: ClientConfig) -> ReconnectPolicy:
    max_attempts = int(cfg.reconnect_max_attempts)
    return ReconnectPolicy(
        initial_delay_s=float(cfg.reconnect_initial_delay_s),
        max_delay_s=float(cfg.reconnect_max_delay_s),
        multiplier=float(cfg.reconnect_multiplier),
        max_attempts=max_attempts if max_attempts > 0 else None,
    )


class MessengerClient:
    """Persistent, reconnecting client for the controller's framed protocol.

    The host application only uses send(), on_message() and the lifecycle
    calls; connection state changes can be observed with on_state_change().
    """

    def __init__(
        self,
        cfg: Optional[ClientConfig] = None,
        *,
        registry: Optional[MessageRegistry] = None,
        connection_factory: Optional[ConnectionFactory] = None,
        scheduler: Optional[Scheduler] = None,
    ) -> None:
        self.cfg = cfg or default_client_config()
        validate_client_config(self.cfg)

        self.registry = registry or MessageRegistry()
        factory = connection_factory or tcp_connection_factory(
            connect_timeout=self.cfg.connect_timeout_s,
            read_chunk_bytes=self.cfg.read_chunk_bytes,
        )

        self.connection = ConnectionStateMachine(
            self.cfg.host,
            self.cfg.port,
            connection_factory=factory,
            on_frame=self._on_frame,
            policy=reconnect_policy_from_config(self.cfg),
            scheduler=scheduler,
        )
        self.dispatcher = Dispatcher(self.registry, self.connection.write, sequence_start=self.cfg.sequence_start)

        self._logger = logging.getLogger("autocontrol.net")
        if self.cfg.sync_on_connect:
            self.connection.add_state_listener(self._sync_after_connect)

    # -------------------------
    # state
    # -------------------------

    @property
    def state(self) -> ConnState:
        return self.connection.state

    @property
    def is_connected(self) -> bool:
        return self.connection.state == ConnState.CONNECTED

    def on_state_change(self, listener: StateListener) -> None:
        self.connection.add_state_listener(listener)

    # -------------------------
    # lifecycle
    # -------------------------

    def start(self) -> "MessengerClient":
        self.connection.open()
        return self

    def suspend(self) -> None:
        self.connection.suspend()

    def resume(self) -> None:
        self.connection.resume()

    def shutdown(self) -> None:
        self.connection.shutdown()

    def __enter__(self) -> "MessengerClient":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()

    # -------------------------
    # messaging
    # -------------------------

    def send(self, message: OutboundMessage, *, sequence: Optional[int] = None) -> int:
        return self.dispatcher.send(message, sequence=sequence)

    def on_message(self, tag: int, handler: MessageHandler) -> None:
        self.registry.register_handler(tag, handler)

    def request_sync(self, now: Optional[float] = None) -> int:
        return self.send(make_sync_request(now))

    def _on_frame(self, frame) -> None:
        self.dispatcher.on_frame(frame)

    def _sync_after_connect(self, old: ConnState, new: ConnState, reason: str) -> None:
        if new != ConnState.CONNECTED:
            return
        seq = self.request_sync()
        log_event(self._logger, "sync_on_connect", seq=seq)


def client_from_env(
    *,
    config_path: Optional[str] = None,
    connection_factory: Optional[ConnectionFactory] = None,
    scheduler: Optional[Scheduler] = None,
) -> MessengerClient:
    """Host entry point: load config (file + env), set up logging, build the client.

    Logging is configured at cfg.log_level. The client is returned unstarted.
    """
    cfg = load_client_config(config_path=config_path)
    configure_logging(cfg.log_level)
    return MessengerClient(cfg, connection_factory=connection_factory, scheduler=scheduler)
