from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import typer

from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.render import render_reading, render_readings


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Utilities for querying the telemetry relay service.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        raise typer.Exit(code=1)
    return state


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Relay API base URL (defaults to API_BASE_URL env or http://localhost:8000).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Seconds to wait for each HTTP request.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(base_url=base_url, request_timeout=timeout)
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("recent")
def recent_command(
    ctx: typer.Context,
    limit: Optional[int] = typer.Option(
        None,
        "--limit",
        "-n",
        help="Number of readings to fetch (the service defaults to 20).",
    ),
) -> None:
    """List the most recent readings, newest first."""
    state = _get_state(ctx)
    render_readings(state.client.get_recent(limit))


@app.command("latest")
def latest_command(ctx: typer.Context) -> None:
    """Show the latest reading with temperature bands and LED state."""
    state = _get_state(ctx)
    reading = state.client.get_latest()
    if reading is None:
        typer.secho("No readings available yet.", fg=typer.colors.YELLOW, err=True)
        raise typer.Exit(code=1)
    render_reading(reading)


@app.command("watch")
def watch_command(
    ctx: typer.Context,
    interval: Optional[float] = typer.Option(
        None,
        "--interval",
        help="Seconds between polls (defaults to CLI_POLL_INTERVAL or 2).",
    ),
    count: Optional[int] = typer.Option(
        None,
        "--count",
        min=1,
        help="Stop after this many new readings.",
    ),
) -> None:
    """Poll for new readings and print each one as it arrives."""
    state = _get_state(ctx)
    poll_interval = interval if interval is not None else state.config.poll_interval
    typer.echo(f"Watching {state.config.base_url} (interval={poll_interval}s)...")
    for reading in state.client.iter_new_readings(interval=poll_interval, count=count):
        typer.echo()
        render_reading(reading)
