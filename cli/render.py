from __future__ import annotations

from typing import Any, Dict, Iterable

import typer

from models.records import KeyEntry


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def render_directory(entries: Iterable[KeyEntry]) -> None:
    rows = sorted(entries, key=lambda entry: entry.field_code)
    echo_heading("Torque Keys")
    if not rows:
        typer.echo("No keys loaded.")
        return
    for entry in rows:
        tag = f" {{{entry.tag}}}" if entry.tag else ""
        typer.echo(f"  - {entry.field_code}: {entry.metric_name}{tag}")
    typer.echo()
    typer.echo(f"{len(rows)} keys")


def render_health(payload: Dict[str, Any]) -> None:
    echo_heading("Relay Health")
    echo_key_values(
        [
            ("status", payload.get("status")),
            ("keys_loaded", payload.get("keys_loaded")),
            ("failure_policy", payload.get("failure_policy")),
        ]
    )
