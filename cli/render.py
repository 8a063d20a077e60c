from __future__ import annotations

from typing import Any, Dict, Iterable, List

import typer


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def _fixed(value: Any, digits: int = 1) -> str:
    try:
        return f"{float(value):.{digits}f}"
    except (TypeError, ValueError):
        return "-"


def render_summary(payload: Dict[str, Any]) -> None:
    echo_heading("Summary")
    total = payload.get("totalLecturas", 0) or 0
    echo_key_values(
        [
            ("total_readings", f"{total:,}"),
            ("readings_today", payload.get("lecturasHoy")),
            ("avg_temperature", f"{_fixed(payload.get('promedioTemperatura'))} °C"),
            ("avg_ph", _fixed(payload.get("promedioPH"))),
            ("avg_oxygen", f"{_fixed(payload.get('promedioOxigeno'))} mg/L"),
        ]
    )
    failed = payload.get("sensoresFallidos") or []
    if failed:
        typer.secho(
            f"Warning: {len(failed)} sensor(s) failed and were counted as zero: "
            f"{', '.join(str(sensor_id) for sensor_id in failed)}",
            fg=typer.colors.YELLOW,
        )


def render_averages(rows: List[Dict[str, Any]]) -> None:
    echo_heading("Average per sensor")
    if not rows:
        typer.echo("No data for the range.")
        return
    for row in rows:
        unit = f" {row['unit']}" if row.get("unit") else ""
        typer.echo(
            f"  - {row.get('name')} (#{row.get('sensor_id')}): "
            f"{_fixed(row.get('promedio'), 2)}{unit} [{row.get('muestras')} samples]"
        )


def render_trend(parameter: str, points: List[Dict[str, Any]]) -> None:
    echo_heading(f"Trend: {parameter}")
    if not points:
        typer.echo("No data for the range.")
        return
    for point in points:
        typer.echo(f"  {point.get('timestamp')}  {_fixed(point.get('value'), 2)}")


def render_export(payload: Dict[str, Any]) -> None:
    echo_heading("Export")
    progress = payload.get("progress") or {}
    echo_key_values(
        [
            ("export_id", payload.get("export_id")),
            ("status", payload.get("status")),
            ("format", payload.get("format")),
            ("progress", f"{progress.get('done', 0)}/{progress.get('total', 0)}"),
            ("records", payload.get("record_count")),
            ("filename", payload.get("filename")),
        ]
    )
    if payload.get("message"):
        typer.echo(payload["message"])


def render_dashboard(payload: Dict[str, Any]) -> None:
    echo_key_values(
        [
            ("generation", payload.get("generation")),
            ("committed_generation", payload.get("committed_generation")),
            ("pending", payload.get("pending")),
        ]
    )
    summary = payload.get("summary")
    typer.echo()
    if summary:
        render_summary(summary)
    else:
        typer.echo("No summary committed yet.")
