from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_BASE_URL = "http://localhost:8000"
DEFAULT_TIMEOUT = 30.0
DEFAULT_MAX_READINGS = 20
DEFAULT_BACKOFF_INITIAL = 0.5
DEFAULT_BACKOFF_CEILING = 30.0

_BASE_URL_ENV = "API_BASE_URL"
_TIMEOUT_ENV = "CLI_TIMEOUT"
_MAX_READINGS_ENV = "CLI_MAX_READINGS"
_BACKOFF_INITIAL_ENV = "CLI_BACKOFF_INITIAL"
_BACKOFF_CEILING_ENV = "CLI_BACKOFF_CEILING"
_PASSKEY_ENV = "CLI_PASSKEY"


@dataclass(frozen=True)
class CLIConfig:
    base_url: str = DEFAULT_BASE_URL
    timeout: float = DEFAULT_TIMEOUT
    max_readings: int = DEFAULT_MAX_READINGS
    backoff_initial: float = DEFAULT_BACKOFF_INITIAL
    backoff_ceiling: float = DEFAULT_BACKOFF_CEILING
    passkey: Optional[str] = None

    @property
    def hub_url(self) -> str:
        """WebSocket URL of the push endpoint derived from ``base_url``."""
        if self.base_url.startswith("https://"):
            return "wss://" + self.base_url[len("https://"):] + "/motorHub"
        if self.base_url.startswith("http://"):
            return "ws://" + self.base_url[len("http://"):] + "/motorHub"
        return self.base_url + "/motorHub"


def _read_float(value: Optional[str], default: float) -> float:
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_int(value: Optional[str], default: int) -> int:
    if value is None or not value.strip():
        return default
    try:
        parsed = int(value.strip())
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def load_config(
    base_url: Optional[str] = None,
    timeout: Optional[float] = None,
    max_readings: Optional[int] = None,
) -> CLIConfig:
    url = base_url or os.getenv(_BASE_URL_ENV) or DEFAULT_BASE_URL
    if timeout is None:
        timeout = _read_float(os.getenv(_TIMEOUT_ENV), DEFAULT_TIMEOUT)
    if max_readings is None:
        max_readings = _read_int(os.getenv(_MAX_READINGS_ENV), DEFAULT_MAX_READINGS)
    initial = _read_float(os.getenv(_BACKOFF_INITIAL_ENV), DEFAULT_BACKOFF_INITIAL)
    ceiling = _read_float(os.getenv(_BACKOFF_CEILING_ENV), DEFAULT_BACKOFF_CEILING)
    return CLIConfig(
        base_url=url.rstrip("/"),
        timeout=timeout,
        max_readings=max_readings,
        backoff_initial=initial,
        backoff_ceiling=max(ceiling, initial),
        passkey=(os.getenv(_PASSKEY_ENV) or "").strip() or None,
    )
