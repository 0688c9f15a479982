"""Runtime configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional


def env_int(
    name: str,
    default: int,
    minimum: int = 1,
    environ: Optional[Mapping[str, str]] = None,
) -> int:
    source = os.environ if environ is None else environ
    raw = source.get(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value >= minimum else default


def env_str(name: str, default: str, environ: Optional[Mapping[str, str]] = None) -> str:
    source = os.environ if environ is None else environ
    raw = source.get(name, "").strip()
    return raw or default


DEFAULT_PORT = 8080
DEFAULT_READ_TIMEOUT_MS = 15000
DEFAULT_WRITE_TIMEOUT_MS = 15000
DEFAULT_READ_HEADER_TIMEOUT_MS = 2000
DEFAULT_IDLE_TIMEOUT_MS = 60000
DEFAULT_SHUTDOWN_TIMEOUT_MS = 10000
DEFAULT_MAX_BODY_BYTES = 1024 * 1024
DEFAULT_LISTEN_BACKLOG = 128


@dataclass(frozen=True)
class ServiceConfig:
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    read_timeout_ms: int = DEFAULT_READ_TIMEOUT_MS
    write_timeout_ms: int = DEFAULT_WRITE_TIMEOUT_MS
    read_header_timeout_ms: int = DEFAULT_READ_HEADER_TIMEOUT_MS
    idle_timeout_ms: int = DEFAULT_IDLE_TIMEOUT_MS
    shutdown_timeout_ms: int = DEFAULT_SHUTDOWN_TIMEOUT_MS
    max_body_bytes: int = DEFAULT_MAX_BODY_BYTES
    listen_backlog: int = DEFAULT_LISTEN_BACKLOG
    log_env: str = "prod"
    log_level: str = "info"

    @property
    def read_timeout(self) -> float:
        return self.read_timeout_ms / 1000.0

    @property
    def write_timeout(self) -> float:
        return self.write_timeout_ms / 1000.0

    @property
    def read_header_timeout(self) -> float:
        return self.read_header_timeout_ms / 1000.0

    @property
    def idle_timeout(self) -> float:
        return self.idle_timeout_ms / 1000.0

    @property
    def shutdown_timeout(self) -> float:
        return self.shutdown_timeout_ms / 1000.0


def load_config(environ: Optional[Mapping[str, str]] = None) -> ServiceConfig:
    """Build a ServiceConfig from ``QRGEN_*`` variables.

    Unset, non-numeric or below-minimum values fall back to the defaults.
    """
    return ServiceConfig(
        host=env_str("QRGEN_HOST", "0.0.0.0", environ),
        port=env_int("QRGEN_PORT", DEFAULT_PORT, minimum=0, environ=environ),
        read_timeout_ms=env_int("QRGEN_READ_TIMEOUT_MS", DEFAULT_READ_TIMEOUT_MS, environ=environ),
        write_timeout_ms=env_int("QRGEN_WRITE_TIMEOUT_MS", DEFAULT_WRITE_TIMEOUT_MS, environ=environ),
        read_header_timeout_ms=env_int(
            "QRGEN_READ_HEADER_TIMEOUT_MS",
            DEFAULT_READ_HEADER_TIMEOUT_MS,
            environ=environ,
        ),
        idle_timeout_ms=env_int("QRGEN_IDLE_TIMEOUT_MS", DEFAULT_IDLE_TIMEOUT_MS, environ=environ),
        shutdown_timeout_ms=env_int(
            "QRGEN_SHUTDOWN_TIMEOUT_MS",
            DEFAULT_SHUTDOWN_TIMEOUT_MS,
            environ=environ,
        ),
        max_body_bytes=env_int("QRGEN_MAX_BODY_BYTES", DEFAULT_MAX_BODY_BYTES, environ=environ),
        listen_backlog=env_int("QRGEN_LISTEN_BACKLOG", DEFAULT_LISTEN_BACKLOG, environ=environ),
        log_env=env_str("QRGEN_LOG_ENV", "prod", environ).lower(),
        log_level=env_str("QRGEN_LOG_LEVEL", "info", environ).lower(),
    )
