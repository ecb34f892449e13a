# src/wmrecorder/config.py
from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Mapping, Optional

from dotenv import load_dotenv

from wmrecorder.errors import ConfigError

DEFAULT_DB_PATH = "time_tracking_data.db"


def _positive_float(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {raw!r}")
    return value


def _optional_port(environ: Mapping[str, str], name: str) -> Optional[int]:
    raw = environ.get(name)
    if raw is None or raw == "":
        return None
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer port, got {raw!r}")
    if not 0 < value < 65536:
        raise ConfigError(f"{name} out of range: {value}")
    return value


@dataclass(frozen=True)
class Settings:
    db_path: str = DEFAULT_DB_PATH
    socket_path: Optional[str] = None  # None lets i3ipc discover the socket
    log_level: str = "INFO"
    idle_timeout: float = 300.0
    backoff_initial: float = 0.5
    backoff_max: float = 60.0
    metrics_port: Optional[int] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Read settings from the environment (after loading a .env file if present)."""
        if environ is None:
            load_dotenv()
            environ = os.environ

        backoff_initial = _positive_float(environ, "WMRECORDER_BACKOFF_INITIAL", cls.backoff_initial)
        backoff_max = _positive_float(environ, "WMRECORDER_BACKOFF_MAX", cls.backoff_max)
        if backoff_max < backoff_initial:
            raise ConfigError("WMRECORDER_BACKOFF_MAX must not be smaller than WMRECORDER_BACKOFF_INITIAL")

        return cls(
            db_path=environ.get("WMRECORDER_DB") or DEFAULT_DB_PATH,
            socket_path=environ.get("WMRECORDER_SOCKET") or None,
            log_level=(environ.get("WMRECORDER_LOG_LEVEL") or "INFO").upper(),
            idle_timeout=_positive_float(environ, "WMRECORDER_IDLE_TIMEOUT", cls.idle_timeout),
            backoff_initial=backoff_initial,
            backoff_max=backoff_max,
            metrics_port=_optional_port(environ, "WMRECORDER_METRICS_PORT"),
        )

    def with_overrides(self, **overrides) -> "Settings":
        """Apply CLI options; None means "not given"."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})
