from __future__ import annotations

from app.schemas import AlertSeverity
from services.alerts import AlertEvaluator, AlertRule
from tests.factories import make_reading


def test_healthy_reading_raises_no_alerts() -> None:
    assert AlertEvaluator().evaluate(make_reading(1)) == []


def test_thresholds_map_to_severity() -> None:
    evaluator = AlertEvaluator(id_factory=lambda: "fixed")
    reading = make_reading(1, temperature=92, oil_pressure=2.3, efficiency=84.0)

    alerts = {alert.type: alert for alert in evaluator.evaluate(reading)}

    assert alerts["temperature"].severity is AlertSeverity.critical
    assert alerts["pressure"].severity is AlertSeverity.warning
    assert alerts["efficiency"].severity is AlertSeverity.warning
    assert set(alerts) == {"temperature", "pressure", "efficiency"}
    assert all(alert.id == "fixed" for alert in alerts.values())
    assert alerts["temperature"].machine_id == "MOTOR-T"
    assert alerts["temperature"].timestamp == reading.timestamp
    assert "92" in alerts["temperature"].message


def test_absent_sensors_never_alert() -> None:
    reading = make_reading(1, vibration=None, oil_pressure=None, bearing_health=None)

    assert AlertEvaluator().evaluate(reading) == []


def test_falling_rule_boundaries() -> None:
    rule = AlertRule("bearing", "bearing_health", "%", critical=70, warning=80, rising=False)

    assert rule.severity_for(80) is None
    assert rule.severity_for(79.9) is AlertSeverity.warning
    assert rule.severity_for(70) is AlertSeverity.warning
    assert rule.severity_for(69) is AlertSeverity.critical


def test_service_due_raises_info_alert() -> None:
    reading = make_reading(1, maintenance_status=3, operating_hours=200, status="maintenance")

    alerts = AlertEvaluator().evaluate(reading)

    assert [(alert.type, alert.severity) for alert in alerts] == [("maintenance", AlertSeverity.info)]
    assert "200 operating hours" in alerts[0].message
    assert AlertEvaluator().evaluate(make_reading(2, maintenance_status=1)) == []
