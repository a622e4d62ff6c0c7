"""BadgeSmith command-line interface powered by Typer."""

import asyncio
import json
import sys
from pathlib import Path
from typing import Annotated

import typer

from badgesmith._server import DEFAULT_TARGET

app = typer.Typer(name="badgesmith", add_completion=False, no_args_is_help=True)


# ------------------------------------------------------------------
# Serving
# ------------------------------------------------------------------


@app.command()
def dev(
    target: Annotated[str, typer.Option(help="module:callable app factory.")] = DEFAULT_TARGET,
    host: Annotated[str, typer.Option(help="Bind address.")] = "127.0.0.1",
    port: Annotated[int, typer.Option(help="Bind port.")] = 8000,
    reload: Annotated[bool | None, typer.Option("--reload/--no-reload", help="Auto-reload on code changes.")] = None,
) -> None:
    """Start a development server with auto-reload and debug logging."""
    from badgesmith._server import serve

    serve(target, host=host, port=port, dev=True, reload=reload)


@app.command()
def run(
    target: Annotated[str, typer.Option(help="module:callable app factory.")] = DEFAULT_TARGET,
    host: Annotated[str, typer.Option(help="Bind address.")] = "127.0.0.1",
    port: Annotated[int, typer.Option(help="Bind port.")] = 8000,
    workers: Annotated[int, typer.Option(help="Number of worker processes.")] = 1,
) -> None:
    """Start a production server."""
    from badgesmith._server import serve

    serve(target, host=host, port=port, workers=workers)


# ------------------------------------------------------------------
# Tooling
# ------------------------------------------------------------------


@app.command()
def routes() -> None:
    """Print the route table in match order."""
    from badgesmith.app import create_app
    from badgesmith.config import Settings
    from badgesmith.route_table import describe

    service = create_app(Settings(log_level="WARNING"))
    try:
        for route in service.resolver.routes:
            auth = "auth" if route.requires_auth else ""
            typer.echo(f"{route.method:<7} {describe(route.pattern):<60} {route.name:<24} {auth}".rstrip())
    finally:
        asyncio.run(service.shutdown())


@app.command()
def sign(
    payload: Annotated[str, typer.Argument(help="File holding the request body, or '-' for stdin.")],
    secret: Annotated[
        str,
        typer.Option(envvar="BADGESMITH_SIGNING_SECRET", help="Repository HMAC secret."),
    ],
    nonce: Annotated[str | None, typer.Option(help="Nonce to use instead of a random one.")] = None,
    as_json: Annotated[bool, typer.Option("--json", help="Emit the headers as a JSON object.")] = False,
) -> None:
    """Print the X-Signature, X-Timestamp and X-Nonce headers for a request body."""
    from badgesmith.signing import NONCE_HEADER, SIGNATURE_HEADER, TIMESTAMP_HEADER, sign_request

    if payload == "-":
        body = sys.stdin.buffer.read()
    else:
        file = Path(payload)
        if not file.is_file():
            typer.echo(f"Error: file {payload!r} not found.", err=True)
            raise typer.Exit(1)
        body = file.read_bytes()

    if not secret:
        typer.echo("Error: a non-empty secret is required.", err=True)
        raise typer.Exit(1)

    headers = sign_request(body, secret, nonce=nonce)
    display = {
        "X-Signature": headers[SIGNATURE_HEADER],
        "X-Timestamp": headers[TIMESTAMP_HEADER],
        "X-Nonce": headers[NONCE_HEADER],
    }
    if as_json:
        typer.echo(json.dumps(display, indent=2))
        return
    for name, value in display.items():
        typer.echo(f"{name}: {value}")
