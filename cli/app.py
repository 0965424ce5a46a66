from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Dict, List, Optional

import typer

from cli.client import RelayClient
from cli.config import CLIConfig, load_config
from cli.render import render_directory, render_health
from services.key_directory import load_key_directory
from services.relay import (
    CALLER_KEY,
    DEVICE_ID_KEY,
    ELEVATION_KEY,
    LATITUDE_KEY,
    LONGITUDE_KEY,
    TIMESTAMP_KEY,
)
from settings import ConfigurationError, read_keys_source


@dataclass
class CLIState:
    config: CLIConfig
    client: RelayClient


app = typer.Typer(
    help="Utilities for running and exercising the Torque to Warp10 relay.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        typer.secho("CLI state is uninitialized.", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    return state


def _parse_fields(fields: List[str]) -> Dict[str, str]:
    parsed: Dict[str, str] = {}
    for item in fields:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"Expected FIELD=VALUE, got {item!r}.")
        parsed[key] = value
    return parsed


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Relay base URL (defaults to RELAY_BASE_URL env or http://localhost:8080).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Seconds to wait for the relay to answer.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(base_url=base_url, timeout=timeout)
    client = RelayClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("keys")
def keys_command(
    source: Optional[str] = typer.Option(
        None,
        "--source",
        "-s",
        help="Key table URL or path (defaults to TORQUE_KEYS_SOURCE env or the upstream table).",
    ),
) -> None:
    """Load a key table and list its entries."""
    location = source or read_keys_source()
    try:
        directory = load_key_directory(location)
    except ConfigurationError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc
    render_directory(directory)


@app.command("push")
def push_command(
    ctx: typer.Context,
    fields: List[str] = typer.Argument(None, help="Torque readings as FIELD=VALUE pairs."),
    email: str = typer.Option(..., "--email", "-e", help="Caller identity sent as eml."),
    device_id: str = typer.Option("cli", "--id", help="Device identifier."),
    timestamp: Optional[int] = typer.Option(
        None, "--time", help="Device time in milliseconds (defaults to now)."
    ),
    latitude: Optional[str] = typer.Option(None, "--lat", help="GPS latitude."),
    longitude: Optional[str] = typer.Option(None, "--lon", help="GPS longitude."),
    elevation: Optional[str] = typer.Option(None, "--elev", help="GPS altitude in metres."),
) -> None:
    """Send a simulated Torque upload to a running relay."""
    state = _get_state(ctx)
    params: Dict[str, str] = {
        CALLER_KEY: email,
        DEVICE_ID_KEY: device_id,
        TIMESTAMP_KEY: str(timestamp if timestamp is not None else int(time.time() * 1000)),
    }
    for key, value in ((LATITUDE_KEY, latitude), (LONGITUDE_KEY, longitude), (ELEVATION_KEY, elevation)):
        if value is not None:
            params[key] = value
    params.update(_parse_fields(fields or []))

    typer.echo(f"Pushing {len(params)} fields to {state.config.base_url} ...")
    body = state.client.push(params)
    typer.secho(f"Relay answered: {body}", fg=typer.colors.GREEN)


@app.command("health")
def health_command(ctx: typer.Context) -> None:
    """Show the health of a running relay."""
    state = _get_state(ctx)
    render_health(state.client.health())


@app.command("serve")
def serve_command(
    host: str = typer.Option("0.0.0.0", "--host", help="Interface to bind."),
    port: int = typer.Option(8080, "--port", "-p", help="Port to listen on."),
) -> None:
    """Run the relay HTTP server."""
    import uvicorn

    uvicorn.run("app.main:app", host=host, port=port)
