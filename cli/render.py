from __future__ import annotations

from typing import Any, Dict, Iterable, Mapping, Optional

import typer

_STATUS_COLORS = {
    "normal": typer.colors.GREEN,
    "maintenance": typer.colors.BLUE,
    "warning": typer.colors.YELLOW,
    "critical": typer.colors.RED,
}


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def _field(payload: Mapping[str, Any], key: str) -> Any:
    value = payload.get(key)
    return "-" if value is None else value


def render_reading(payload: Dict[str, Any]) -> None:
    echo_heading(f"Reading #{payload.get('id')} ({payload.get('machineId')})")
    echo_key_values(
        [
            ("title", _field(payload, "title")),
            ("timestamp", _field(payload, "timestamp")),
            ("temperature", _field(payload, "temperature")),
            ("speed", _field(payload, "speed")),
            ("vibration", _field(payload, "vibration")),
            ("efficiency", _field(payload, "efficiency")),
            ("powerConsumption", _field(payload, "powerConsumption")),
            ("oilPressure", _field(payload, "oilPressure")),
            ("bearingHealth", _field(payload, "bearingHealth")),
            ("systemHealth", _field(payload, "systemHealth")),
            (
                "operatingTime",
                f"{_field(payload, 'operatingHours')}h {_field(payload, 'operatingMinutes')}m "
                f"{_field(payload, 'operatingSeconds')}s",
            ),
        ]
    )
    status = str(payload.get("status") or "unknown")
    typer.echo("status: ", nl=False)
    typer.secho(status, fg=_STATUS_COLORS.get(status))


def reading_line(payload: Mapping[str, Any]) -> str:
    return (
        f"{_field(payload, 'id'):>6}  {_field(payload, 'timestamp')}  "
        f"{_field(payload, 'temperature'):>6}C  {_field(payload, 'speed'):>7}rpm  "
        f"{_field(payload, 'vibration'):>5}  {_field(payload, 'efficiency'):>6}%  {_field(payload, 'status')}"
    )


def render_readings(readings: Iterable[Mapping[str, Any]]) -> None:
    rows = list(readings)
    echo_heading("Recent Readings")
    if not rows:
        typer.echo("No readings recorded.")
        return
    typer.echo(f"{'id':>6}  {'timestamp':<24}  {'temp':>7}  {'speed':>10}  {'vib':>5}  {'eff':>7}  status")
    for row in rows:
        typer.secho(reading_line(row), fg=_STATUS_COLORS.get(str(row.get("status"))))


def render_connection(state: str, *, stale: bool, detail: Optional[str] = None) -> None:
    suffix = " (view may be stale)" if stale else ""
    message = f"[{state}]{suffix}"
    if detail:
        message += f" {detail}"
    typer.secho(message, fg=typer.colors.YELLOW if stale else typer.colors.GREEN, err=True)


def render_alert(payload: Mapping[str, Any]) -> None:
    severity = str(payload.get("severity") or "warning")
    color = {"critical": typer.colors.RED, "info": typer.colors.BLUE}.get(severity, typer.colors.YELLOW)
    typer.secho(f"ALERT [{severity}] {payload.get('message')}", fg=color)
