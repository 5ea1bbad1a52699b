from __future__ import annotations

from typing import Any, Dict, Iterable, List

import typer


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def render_latest(payload: Dict[str, Any]) -> None:
    echo_heading("Latest Reading")
    echo_key_values(
        [
            ("temp", payload.get("temp")),
            ("humi", payload.get("humi")),
            ("observed_at", payload.get("observed_at")),
        ]
    )


def render_daily_averages(rows: List[Dict[str, Any]]) -> None:
    echo_heading("Daily Averages")
    if not rows:
        typer.echo("No readings stored yet.")
        return
    typer.echo(f"{'date':<12}{'avg_temp':>10}{'avg_humi':>10}{'count':>8}")
    for row in rows:
        typer.echo(
            f"{row.get('date', ''):<12}"
            f"{row.get('avg_temp', 0.0):>10.2f}"
            f"{row.get('avg_humi', 0.0):>10.2f}"
            f"{row.get('count', 0):>8}"
        )
