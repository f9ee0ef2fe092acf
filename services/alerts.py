"""Alert derivation for persisted readings."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional

from app.schemas import Alert, AlertSeverity, Reading


@dataclass(frozen=True)
class AlertRule:
    type: str
    field: str
    unit: str
    critical: float
    warning: float
    rising: bool = True

    def severity_for(self, value: float) -> Optional[AlertSeverity]:
        if self.rising:
            if value > self.critical:
                return AlertSeverity.critical
            if value > self.warning:
                return AlertSeverity.warning
            return None
        if value < self.critical:
            return AlertSeverity.critical
        if value < self.warning:
            return AlertSeverity.warning
        return None


DEFAULT_RULES = (
    AlertRule("temperature", "temperature", "°C", critical=90, warning=80),
    AlertRule("vibration", "vibration", " mm/s", critical=5.0, warning=4.0),
    AlertRule("pressure", "oil_pressure", " bar", critical=2.0, warning=2.5, rising=False),
    AlertRule("bearing", "bearing_health", "%", critical=70, warning=80, rising=False),
    AlertRule("system", "system_health", "%", critical=60, warning=75, rising=False),
    AlertRule("efficiency", "efficiency", "%", critical=75, warning=85, rising=False),
)


MAINTENANCE_DUE = 3


class AlertEvaluator:
    """Turns a reading into zero or more alerts; absent sensors never alert."""

    def __init__(self, rules: tuple[AlertRule, ...] = DEFAULT_RULES, id_factory: Optional[Callable[[], str]] = None) -> None:
        self.rules = rules
        self._id_factory = id_factory

    def evaluate(self, reading: Reading) -> List[Alert]:
        alerts: List[Alert] = []
        for rule in self.rules:
            value = getattr(reading, rule.field)
            if value is None:
                continue
            severity = rule.severity_for(value)
            if severity is None:
                continue
            label = rule.field.replace("_", " ")
            message = f"{severity.value.upper()}: {label} {value}{rule.unit} on {reading.machine_id}"
            alerts.append(self._alert(reading, rule.type, severity, message))
        if reading.maintenance_status == MAINTENANCE_DUE:
            message = (
                f"MAINTENANCE: scheduled service due on {reading.machine_id} "
                f"at {reading.operating_hours} operating hours"
            )
            alerts.append(self._alert(reading, "maintenance", AlertSeverity.info, message))
        return alerts

    def _alert(self, reading: Reading, kind: str, severity: AlertSeverity, message: str) -> Alert:
        extra = {"id": self._id_factory()} if self._id_factory else {}
        return Alert(
            type=kind,
            severity=severity,
            message=message,
            timestamp=reading.timestamp,
            machine_id=reading.machine_id,
            **extra,
        )
