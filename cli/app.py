from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import typer
import uvicorn

from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.render import render_daily_averages, render_latest


@dataclass
class CLIState:
    config: CLIConfig
    client: Optional[ApiClient] = None


app = typer.Typer(
    help="Run and query the sensor feed aggregator service.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        raise typer.Exit(code=1)
    return state


def _get_client(ctx: typer.Context) -> ApiClient:
    state = _get_state(ctx)
    if state.client is None:
        state.client = ApiClient(state.config)
        ctx.call_on_close(state.client.close)
    return state.client


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Service base URL (defaults to API_BASE_URL env or http://localhost:3000).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Request timeout in seconds.",
    ),
) -> None:
    """Entry point for the CLI."""
    ctx.obj = CLIState(config=load_config(base_url=base_url, timeout=timeout))


@app.command("serve")
def serve_command(
    host: str = typer.Option("0.0.0.0", "--host", help="Interface to bind."),
    port: int = typer.Option(3000, "--port", "-p", envvar="PORT", help="Port to listen on."),
) -> None:
    """Run the HTTP service and the feed subscription in the foreground."""
    uvicorn.run(
        "app.main:create_app",
        factory=True,
        host=host,
        port=port,
        log_config=None,
    )


@app.command("latest")
def latest_command(ctx: typer.Context) -> None:
    """Show the most recently received reading."""
    payload = _get_client(ctx).get_latest()
    if payload is None:
        typer.secho("No data received yet.", fg=typer.colors.YELLOW)
        raise typer.Exit(code=1)
    render_latest(payload)


@app.command("daily")
def daily_command(
    ctx: typer.Context,
    days: Optional[int] = typer.Option(
        None, "--days", "-d", min=1, help="Only show the last N calendar days."
    ),
) -> None:
    """Show per-day averages, newest day first."""
    rows = _get_client(ctx).get_daily_averages(days=days)
    render_daily_averages(rows)
