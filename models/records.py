"""Domain models shared across services."""

from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple


TARGET_SPEED = 2500.0
AMBIENT_BASELINE = 22.0


@dataclass(frozen=True, slots=True)
class MotorState:
    """Carry-over simulation state between two samples of one motor."""

    operating_seconds: float = 0.0
    bearing_wear: float = 0.0
    oil_degradation: float = 0.0
    speed: float = TARGET_SPEED
    temperature: float = 65.0
    load: float = 0.7
    shaft_angle: float = 0.0
    last_sample_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        if self.last_sample_at is not None:
            payload["last_sample_at"] = self.last_sample_at.isoformat()
        return payload

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "MotorState":
        known = {name: payload[name] for name in cls.__dataclass_fields__ if name in payload}
        stamp = known.get("last_sample_at")
        if isinstance(stamp, str):
            parsed = datetime.fromisoformat(stamp.replace("Z", "+00:00"))
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            known["last_sample_at"] = parsed
        return cls(**known)

    def serviced(self) -> "MotorState":
        """State after bearings and oil have been replaced; running time is kept."""
        return replace(self, bearing_wear=0.0, oil_degradation=0.0)


def split_operating_time(total_seconds: float) -> Tuple[int, int, float]:
    """Normalize a cumulative duration into an (hours, minutes, seconds) triple."""

    # Whole hundredths first, so a value that rounds up carries into the minute.
    hundredths = int(round(max(0.0, total_seconds) * 100))
    hours, remainder = divmod(hundredths, 360_000)
    minutes, remainder = divmod(remainder, 6_000)
    return hours, minutes, remainder / 100
