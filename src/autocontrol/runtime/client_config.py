# src/autocontrol/runtime/client_config.py
from __future__ import annotations

import json
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

Json = Dict[str, Any]


def _as_int(v: Any, default: int) -> int:
    if v is None:
        return int(default)
    try:
        return int(v)
    except (TypeError, ValueError):
        return int(default)


def _as_float(v: Any, default: float) -> float:
    if v is None:
        return float(default)
    try:
        return float(v)
    except (TypeError, ValueError):
        return float(default)


def _as_str(v: Any, default: str) -> str:
    if v is None:
        return str(default)
    s = str(v)
    return s if s.strip() else str(default)


def _as_bool(v: Any, default: bool) -> bool:
    if v is None:
        return bool(default)
    if isinstance(v, bool):
        return v
    s = str(v).strip().lower()
    if s in {"1", "true", "yes", "y", "on"}:
        return True
    if s in {"0", "false", "no", "n", "off"}:
        return False
    return bool(default)


@dataclass(frozen=True)
class ClientConfig:
    host: str
    port: int

    # Bounds the Connecting state; expiry counts as a transport error.
    connect_timeout_s: float
    read_chunk_bytes: int

    # Reconnect backoff: min(max_delay, initial * multiplier**(attempt-1))
    reconnect_initial_delay_s: float
    reconnect_max_delay_s: float
    reconnect_multiplier: float
    # 0 = retry forever
    reconnect_max_attempts: int

    sequence_start: int
    sync_on_connect: bool

    log_level: str


def default_client_config() -> ClientConfig:
    return ClientConfig(
        host="127.0.0.1",
        port=5000,
        connect_timeout_s=10.0,
        read_chunk_bytes=65536,
        reconnect_initial_delay_s=0.5,
        reconnect_max_delay_s=30.0,
        reconnect_multiplier=2.0,
        reconnect_max_attempts=0,
        sequence_start=1,
        sync_on_connect=False,
        log_level="INFO",
    )


def validate_client_config(cfg: ClientConfig) -> None:
    """Fail-fast validation; a bad config must not turn into a tight reconnect loop."""

    if not isinstance(cfg.host, str) or not cfg.host.strip():
        raise ValueError("host must be a non-empty string")

    if int(cfg.port) <= 0 or int(cfg.port) > 65535:
        raise ValueError(f"port must be 1..65535; got: {cfg.port}")

    if float(cfg.connect_timeout_s) <= 0:
        raise ValueError(f"connect_timeout_s must be > 0; got: {cfg.connect_timeout_s}")

    if int(cfg.read_chunk_bytes) <= 0:
        raise ValueError(f"read_chunk_bytes must be > 0; got: {cfg.read_chunk_bytes}")

    if float(cfg.reconnect_initial_delay_s) < 0:
        raise ValueError(f"reconnect_initial_delay_s must be >= 0; got: {cfg.reconnect_initial_delay_s}")

    if float(cfg.reconnect_max_delay_s) < float(cfg.reconnect_initial_delay_s):
        raise ValueError(
            "reconnect_max_delay_s must be >= reconnect_initial_delay_s; "
            f"got: {cfg.reconnect_max_delay_s} < {cfg.reconnect_initial_delay_s}"
        )

    if float(cfg.reconnect_multiplier) < 1.0:
        raise ValueError(f"reconnect_multiplier must be >= 1; got: {cfg.reconnect_multiplier}")

    if int(cfg.reconnect_max_attempts) < 0:
        raise ValueError(f"reconnect_max_attempts must be >= 0; got: {cfg.reconnect_max_attempts}")

    if int(cfg.sequence_start) < 0 or int(cfg.sequence_start) >= (1 << 64):
        raise ValueError(f"sequence_start must be a uint64; got: {cfg.sequence_start}")


def client_config_from_dict(raw: Json) -> ClientConfig:
    if not isinstance(raw, dict):
        raise ValueError("client config must be a mapping")

    d = default_client_config()
    cfg = ClientConfig(
        host=_as_str(raw.get("host"), d.host),
        port=_as_int(raw.get("port"), d.port),
        connect_timeout_s=_as_float(raw.get("connect_timeout_s"), d.connect_timeout_s),
        read_chunk_bytes=_as_int(raw.get("read_chunk_bytes"), d.read_chunk_bytes),
        reconnect_initial_delay_s=_as_float(raw.get("reconnect_initial_delay_s"), d.reconnect_initial_delay_s),
        reconnect_max_delay_s=_as_float(raw.get("reconnect_max_delay_s"), d.reconnect_max_delay_s),
        reconnect_multiplier=_as_float(raw.get("reconnect_multiplier"), d.reconnect_multiplier),
        reconnect_max_attempts=_as_int(raw.get("reconnect_max_attempts"), d.reconnect_max_attempts),
        sequence_start=_as_int(raw.get("sequence_start"), d.sequence_start),
        sync_on_connect=_as_bool(raw.get("sync_on_connect"), d.sync_on_connect),
        log_level=_as_str(raw.get("log_level"), d.log_level),
    )
    validate_client_config(cfg)
    return cfg


def read_client_config_file(path: str) -> ClientConfig:
    p = Path(path)
    text = p.read_text(encoding="utf-8")
    if p.suffix.lower() in {".yaml", ".yml"}:
        raw = yaml.safe_load(text)
    else:
        raw = json.loads(text)
    if not isinstance(raw, dict):
        raise ValueError(f"client config must be an object: {path}")
    return client_config_from_dict(raw)


def apply_env_overrides(cfg: ClientConfig) -> ClientConfig:
    host = os.environ.get("AUTOCONTROL_HOST")
    port = os.environ.get("AUTOCONTROL_PORT")
    log_level = os.environ.get("AUTOCONTROL_LOG_LEVEL")
    out = cfg
    if host is not None and host.strip():
        out = replace(out, host=host.strip())
    if port is not None and port.strip():
        out = replace(out, port=_as_int(port, out.port))
    if log_level is not None and log_level.strip():
        out = replace(out, log_level=log_level.strip().upper())
    validate_client_config(out)
    return out


def load_client_config(*, config_path: Optional[str] = None) -> ClientConfig:
    p = config_path or os.environ.get("AUTOCONTROL_CONFIG_PATH")
    cfg = read_client_config_file(p) if p else default_client_config()
    return apply_env_overrides(cfg)
