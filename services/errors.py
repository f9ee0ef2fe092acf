"""Failure kinds raised along the sampling pipeline."""

from __future__ import annotations

from typing import Any


class SynthesisError(ValueError):
    """A synthesized field was not finite or fell outside its physical range."""

    def __init__(self, field: str, value: Any, detail: str = "out of range") -> None:
        super().__init__(f"Synthesized field {field!r} is invalid ({detail}): {value!r}")
        self.field = field
        self.value = value


class PersistenceError(RuntimeError):
    """The reading store is unreachable or rejected a write."""


class BroadcastPartialFailure(Exception):
    """A single subscriber could not be reached; the reading stays persisted."""

    def __init__(self, subscriber_id: str, reason: str) -> None:
        super().__init__(f"Delivery to subscriber {subscriber_id} failed: {reason}")
        self.subscriber_id = subscriber_id
        self.reason = reason
