from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Optional

import typer

from app.schemas import Alert, Reading
from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.feed import ConnectionState, LiveFeed
from cli.reconciler import ReadingReconciler
from cli.render import render_alert, render_connection, render_reading, render_readings, reading_line


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Utilities for interacting with the motor telemetry service.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        raise typer.Exit(code=1, message="CLI state is uninitialized.")
    return state


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Telemetry API base URL (defaults to API_BASE_URL env or http://localhost:8000).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Seconds to wait for each HTTP request or connection attempt.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(base_url=base_url, timeout=timeout)
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("sample")
def sample_command(ctx: typer.Context) -> None:
    """Take one sample on the server and show the stored reading."""
    state = _get_state(ctx)
    payload = state.client.sample()
    typer.secho(f"Stored reading id={payload.get('id')}", fg=typer.colors.GREEN)
    typer.echo()
    render_reading(payload)


@app.command("readings")
def readings_command(
    ctx: typer.Context,
    limit: Optional[int] = typer.Option(None, "--limit", "-n", min=1, max=1000, help="How many readings to list."),
) -> None:
    """List the most recent readings, newest first."""
    state = _get_state(ctx)
    render_readings(state.client.list_readings(limit))


@app.command("purge")
def purge_command(
    ctx: typer.Context,
    passkey: Optional[str] = typer.Option(
        None,
        "--passkey",
        help="Passkey for bulk delete (defaults to CLI_PASSKEY env).",
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt."),
) -> None:
    """Irreversibly delete every stored reading."""
    state = _get_state(ctx)
    key = passkey or state.config.passkey
    if not key:
        raise typer.BadParameter("A passkey is required (use --passkey or CLI_PASSKEY).")
    if not yes:
        typer.confirm("Delete every stored reading?", abort=True)
    deleted = state.client.delete_all(key)
    typer.secho(f"Deleted {deleted} readings.", fg=typer.colors.GREEN)


@app.command("service")
def service_command(
    ctx: typer.Context,
    passkey: Optional[str] = typer.Option(
        None,
        "--passkey",
        help="Passkey for protected operations (defaults to CLI_PASSKEY env).",
    ),
) -> None:
    """Record a motor service: bearing wear and oil degradation start over."""
    state = _get_state(ctx)
    key = passkey or state.config.passkey
    if not key:
        raise typer.BadParameter("A passkey is required (use --passkey or CLI_PASSKEY).")
    result = state.client.service(key)
    typer.secho(
        f"Serviced {result.get('machineId')} at {result.get('operatingHours')} operating hours.",
        fg=typer.colors.GREEN,
    )


@app.command("watch")
def watch_command(
    ctx: typer.Context,
    machine: Optional[str] = typer.Option(
        None,
        "--machine",
        "-m",
        help="Join this machine's group to also receive its alerts.",
    ),
    max_readings: Optional[int] = typer.Option(
        None,
        "--max-readings",
        min=1,
        help="Size of the live view (defaults to CLI_MAX_READINGS env or 20).",
    ),
    count: Optional[int] = typer.Option(
        None,
        "--count",
        "-c",
        min=1,
        help="Stop after this many pushed readings.",
    ),
) -> None:
    """Follow the live push stream, reconnecting with backoff when it drops."""
    state = _get_state(ctx)
    config = state.config
    reconciler = ReadingReconciler(max_size=max_readings or config.max_readings)
    received = 0

    async def _watch() -> LiveFeed:
        stop = asyncio.Event()
        feed: Optional[LiveFeed] = None

        def on_change(event: str, item: Any) -> None:
            nonlocal received
            if event == "state":
                detail = feed.last_error if feed and item is ConnectionState.backoff_wait else None
                render_connection(item.value, stale=item is not ConnectionState.connected, detail=detail)
            elif event == "seeded":
                render_readings(reading.model_dump(mode="json", by_alias=True) for reading in item)
            elif event == "reading" and isinstance(item, Reading):
                typer.echo(reading_line(item.model_dump(mode="json", by_alias=True)))
                received += 1
                if count is not None and received >= count:
                    stop.set()
            elif event == "alert" and isinstance(item, Alert):
                render_alert(item.model_dump(mode="json", by_alias=True))

        feed = LiveFeed(config, reconciler, machine_id=machine, on_change=on_change)
        await feed.run(stop)
        return feed

    typer.echo(f"Watching {config.hub_url} (Ctrl+C to stop) ...")
    try:
        asyncio.run(_watch())
    except KeyboardInterrupt:
        typer.echo()
    typer.echo(f"Received {received} readings; view holds {len(reconciler)}.")
