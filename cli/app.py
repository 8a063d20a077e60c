from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple

import typer

from cli.client import ApiClient
from cli.config import DEFAULT_RANGE_DAYS, CLIConfig, load_config
from cli.render import (
    render_averages,
    render_dashboard,
    render_export,
    render_summary,
    render_trend,
)

_DATE_FORMATS = ["%Y-%m-%d", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d %H:%M:%S"]


class Format(str, Enum):
    csv = "csv"
    json = "json"


class Parameter(str, Enum):
    temperature = "temperature"
    ph = "ph"
    oxygen = "oxygen"
    salinity = "salinity"
    turbidity = "turbidity"
    nitrates = "nitrates"
    ammonia = "ammonia"
    barometric = "barometric"


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Utilities for querying the aquaculture analytics service.",
    context_settings={"help_option_names": ["-h", "--help"]},
)

FromOption = typer.Option(None, "--from", formats=_DATE_FORMATS, help="Range start (default: 30 days ago).")
ToOption = typer.Option(None, "--to", formats=_DATE_FORMATS, help="Range end (default: now).")
SensorOption = typer.Option(None, "--sensor", "-s", help="Restrict to a sensor id; repeatable.")


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        typer.secho("CLI state is uninitialized.", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    return state


def _resolve_range(start: Optional[datetime], end: Optional[datetime]) -> Tuple[datetime, datetime]:
    resolved_end = end or datetime.now(timezone.utc)
    if resolved_end.tzinfo is None:
        resolved_end = resolved_end.replace(tzinfo=timezone.utc)
    resolved_start = start or resolved_end - timedelta(days=DEFAULT_RANGE_DAYS)
    if resolved_start.tzinfo is None:
        resolved_start = resolved_start.replace(tzinfo=timezone.utc)
    if resolved_end < resolved_start:
        raise typer.BadParameter("--to must not precede --from.")
    return resolved_start, resolved_end


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Analytics API base URL (defaults to API_BASE_URL env or http://localhost:8000).",
    ),
    poll_interval: Optional[float] = typer.Option(
        None,
        "--poll-interval",
        help="Seconds between status checks when waiting for completion.",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Maximum seconds to wait when polling for results.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(
        base_url=base_url,
        poll_interval=poll_interval,
        poll_timeout=timeout,
    )
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("summary")
def summary_command(
    ctx: typer.Context,
    start: Optional[datetime] = FromOption,
    end: Optional[datetime] = ToOption,
    sensors: Optional[List[int]] = SensorOption,
) -> None:
    """Show reading counts and parameter averages for a range."""
    state = _get_state(ctx)
    range_start, range_end = _resolve_range(start, end)
    render_summary(state.client.get_summary(range_start, range_end, sensors))


@app.command("averages")
def averages_command(
    ctx: typer.Context,
    start: Optional[datetime] = FromOption,
    end: Optional[datetime] = ToOption,
    sensors: Optional[List[int]] = SensorOption,
) -> None:
    """Show the weighted average of each sensor, highest first."""
    state = _get_state(ctx)
    range_start, range_end = _resolve_range(start, end)
    render_averages(state.client.get_averages(range_start, range_end, sensors))


@app.command("trend")
def trend_command(
    ctx: typer.Context,
    parameter: Parameter = typer.Argument(Parameter.temperature, help="Parameter to chart."),
    start: Optional[datetime] = FromOption,
    end: Optional[datetime] = ToOption,
    sensors: Optional[List[int]] = SensorOption,
) -> None:
    """Show the merged time series for one parameter."""
    state = _get_state(ctx)
    range_start, range_end = _resolve_range(start, end)
    points = state.client.get_trend(parameter.value, range_start, range_end, sensors)
    render_trend(parameter.value, points)


def _write_export(state: CLIState, export_id: str, output: Optional[Path]) -> Path:
    filename, content = state.client.download_export(export_id)
    target = output or state.config.export_dir / filename
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(content)
    return target


@app.command("export")
def export_command(
    ctx: typer.Context,
    start: Optional[datetime] = FromOption,
    end: Optional[datetime] = ToOption,
    fmt: Format = typer.Option(Format.csv, "--format", "-f", help="Output format."),
    include_all: bool = typer.Option(
        False,
        "--all/--first-20",
        help="Export every selected sensor instead of the first 20.",
    ),
    sensors: Optional[List[int]] = SensorOption,
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Where to write the file."),
    wait: bool = typer.Option(
        True,
        "--wait/--no-wait",
        help="Wait for the export to finish and download it.",
    ),
) -> None:
    """Export every reading in a range to CSV or JSON."""
    state = _get_state(ctx)
    range_start, range_end = _resolve_range(start, end)
    typer.echo("Preparing export...")
    export_id = state.client.start_export(
        range_start, range_end, fmt.value, include_all=include_all, sensor_ids=sensors
    )
    typer.echo(f"Export started. export_id={export_id}")

    if not wait:
        return

    last_done = -1

    def show_progress(done: int, total: int) -> None:
        nonlocal last_done
        if total and done != last_done:
            typer.echo(f"  {done}/{total} sensors")
            last_done = done

    payload = state.client.poll_export(
        export_id,
        interval=state.config.poll_interval,
        timeout=state.config.poll_timeout,
        on_progress=show_progress,
    )
    if payload.get("status") != "succeeded":
        typer.secho(payload.get("message") or "Export failed", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    target = _write_export(state, export_id, output)
    typer.secho(
        f"Export succeeded ({payload.get('record_count', 0)} records) -> {target}",
        fg=typer.colors.GREEN,
    )


@app.command("export-status")
def export_status_command(
    ctx: typer.Context,
    export_id: str = typer.Argument(..., help="Identifier returned from the export command."),
) -> None:
    """Show status and progress of an export job."""
    state = _get_state(ctx)
    render_export(state.client.get_export(export_id))


@app.command("download")
def download_command(
    ctx: typer.Context,
    export_id: str = typer.Argument(..., help="Identifier returned from the export command."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Where to write the file."),
) -> None:
    """Download the file of a finished export job."""
    state = _get_state(ctx)
    target = _write_export(state, export_id, output)
    typer.secho(f"Saved {target}", fg=typer.colors.GREEN)


@app.command("refresh")
def refresh_command(
    ctx: typer.Context,
    start: Optional[datetime] = FromOption,
    end: Optional[datetime] = ToOption,
    sensors: Optional[List[int]] = SensorOption,
    wait: bool = typer.Option(
        False,
        "--wait/--no-wait",
        help="Wait for the dashboard summary to refresh and display it.",
    ),
) -> None:
    """Move the dashboard to a new range."""
    state = _get_state(ctx)
    range_start, range_end = _resolve_range(start, end)
    generation = state.client.set_dashboard_range(range_start, range_end, sensors)
    typer.secho(f"Dashboard refresh scheduled. generation={generation}", fg=typer.colors.GREEN)

    if not wait:
        return

    payload = state.client.poll_dashboard(
        generation, interval=state.config.poll_interval, timeout=state.config.poll_timeout
    )
    committed = payload.get("committed_generation") or 0
    if committed < generation:
        typer.secho(
            f"Dashboard refresh (generation {generation}) did not complete; "
            "showing the last committed summary.",
            fg=typer.colors.YELLOW,
            err=True,
        )
    typer.echo()
    render_dashboard(payload)
