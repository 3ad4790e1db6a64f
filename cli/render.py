from __future__ import annotations

from typing import Any, Dict, Iterable, Mapping, Sequence

import typer

FLOW_UNIT = "m³/h"


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def render_readings(readings: Sequence[Mapping[str, Any]]) -> None:
    echo_heading("Filtered Readings")
    if not readings:
        typer.echo("No readings in the overnight window.")
        return
    for reading in readings:
        typer.echo(f"  {str(reading.get('timestamp')):<20} {reading.get('flow')}")


def render_summary(summary: Mapping[str, Any] | None) -> None:
    echo_heading("Threshold")
    if not summary:
        typer.echo("No threshold available.")
        return
    echo_key_values(
        [
            ("mean_of_daily_minimums", f"{summary.get('mean_of_daily_minimums')} {FLOW_UNIT}"),
            ("threshold", f"{summary.get('threshold')} {FLOW_UNIT}"),
            ("computed_at", summary.get("computed_at_display") or summary.get("computed_at")),
        ]
    )
    typer.echo("daily_minimums:")
    for entry in summary.get("daily_minimums") or []:
        typer.echo(f"  - {entry.get('date')}: {entry.get('min_flow')}")


def render_errors(errors: Sequence[Mapping[str, Any]], heading: str = "Errors") -> None:
    echo_heading(heading)
    if not errors:
        typer.echo("No errors recorded.")
        return
    for error in errors:
        typer.echo(f"  - row {error.get('row_number')}: {error.get('reason')}")


def render_analysis(payload: Dict[str, Any]) -> None:
    render_readings(payload.get("readings") or [])
    typer.echo(f"excluded_count: {payload.get('excluded_count', 0)}")
    typer.echo()
    render_summary(payload.get("summary"))
    typer.echo()
    render_errors(payload.get("skipped") or [], heading="Skipped Rows")


def render_result(payload: Dict[str, Any]) -> None:
    echo_heading("Processing Result")
    echo_key_values(
        [
            ("file_id", payload.get("file_id")),
            ("status", payload.get("status")),
            ("uploaded_at", payload.get("uploaded_at")),
            ("processed_at", payload.get("processed_at")),
            ("processing_ms", payload.get("processing_ms")),
            ("persistence", payload.get("persistence")),
        ]
    )
    if payload.get("persistence_error"):
        typer.secho(f"persistence_error: {payload['persistence_error']}", fg=typer.colors.RED)

    typer.echo()
    render_summary(payload.get("summary"))
    typer.echo()
    render_errors(payload.get("errors") or [])
