from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


_MACHINE_ID_ENV = "MOTOR_MACHINE_ID"
_STORE_PATH_ENV = "READINGS_PERSISTENCE_PATH"
_STORE_LOCK_TIMEOUT_ENV = "READINGS_LOCK_TIMEOUT"
_DEFAULT_LIMIT_ENV = "READINGS_DEFAULT_LIMIT"
_SEED_ENV = "SIMULATION_SEED"
_SAMPLE_INTERVAL_ENV = "SAMPLE_INTERVAL_SECONDS"
_QUEUE_SIZE_ENV = "BROADCAST_QUEUE_SIZE"
_SEND_TIMEOUT_ENV = "BROADCAST_SEND_TIMEOUT"
_PASSKEY_ENV = "DELETE_PASSKEY"
_WORKER_COUNT_ENV = "COORDINATOR_WORKER_COUNT"
_LOG_LEVEL_ENV = "LOG_LEVEL"


@dataclass(frozen=True)
class Settings:
    machine_id: str
    store_persistence_path: Optional[str]
    store_lock_timeout: float
    default_limit: int
    simulation_seed: Optional[int]
    sample_interval: float
    broadcast_queue_size: int
    broadcast_send_timeout: float
    delete_passkey: Optional[str]
    coordinator_workers: int
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_positive_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_optional_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    if value is None:
        return None
    candidate = value.strip()
    if not candidate:
        return None
    try:
        return int(candidate)
    except ValueError:
        return None


def _read_float(name: str, default: float, *, allow_zero: bool = False) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    if parsed > 0 or (allow_zero and parsed == 0):
        return parsed
    return default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        machine_id=_read_str_env(_MACHINE_ID_ENV, "MOTOR-001"),
        store_persistence_path=_read_optional_env(_STORE_PATH_ENV, "./tmp/readings.jsonl"),
        store_lock_timeout=_read_float(_STORE_LOCK_TIMEOUT_ENV, 5.0),
        default_limit=_read_positive_int(_DEFAULT_LIMIT_ENV, 20),
        simulation_seed=_read_optional_int(_SEED_ENV),
        sample_interval=_read_float(_SAMPLE_INTERVAL_ENV, 0.0, allow_zero=True),
        broadcast_queue_size=_read_positive_int(_QUEUE_SIZE_ENV, 100),
        broadcast_send_timeout=_read_float(_SEND_TIMEOUT_ENV, 5.0),
        delete_passkey=_read_optional_env(_PASSKEY_ENV, None),
        coordinator_workers=_read_positive_int(_WORKER_COUNT_ENV, 1),
        log_level=_read_log_level("INFO"),
    )
