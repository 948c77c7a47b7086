"""
Relay server command.

Usage:
    wsrelay serve --uuid 5f1c... --port 8080
    UUID=5f1c... wsrelay serve
"""

from typing import Annotated

import typer

from wsrelay.cli.output import console, print_error, print_warning
from wsrelay.models.enums import LogLevel

app = typer.Typer(help="Run the relay server")


@app.callback(invoke_without_command=True)
def serve(
    host: Annotated[
        str | None,
        typer.Option("--host", "-H", help="Address to bind to"),
    ] = None,
    port: Annotated[
        int | None,
        typer.Option("--port", "-p", help="Port to listen on"),
    ] = None,
    user_id: Annotated[
        str | None,
        typer.Option("--uuid", "-u", help="Identity every client must present"),
    ] = None,
    quota: Annotated[
        int | None,
        typer.Option("--quota", help="Outbound byte ceiling per session (0 = none)"),
    ] = None,
    idle_timeout: Annotated[
        float | None,
        typer.Option("--idle-timeout", help="Close idle sessions after N seconds"),
    ] = None,
    static_dir: Annotated[
        str | None,
        typer.Option("--static-dir", help="Directory served behind the secret path"),
    ] = None,
    log_level: Annotated[
        LogLevel | None,
        typer.Option("--log-level", "-l", help="Logging verbosity"),
    ] = None,
):
    """
    Run the relay server.

    Values are read from the environment first (UUID, PORT, WSRELAY_*);
    command line options take precedence.
    """
    from wsrelay.server.app import run
    from wsrelay.server.config import config

    try:
        config.load_env()
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(1)

    if host is not None:
        config.BIND_IP = host
    if port is not None:
        config.PORT = port
    if user_id is not None:
        config.USER_ID = user_id
    if quota is not None:
        config.SESSION_QUOTA_BYTES = quota
    if idle_timeout is not None:
        config.IDLE_TIMEOUT_SECONDS = idle_timeout
    if static_dir is not None:
        config.STATIC_DIR = static_dir
    if log_level is not None:
        config.LOG_LEVEL = log_level

    if config.identity() is None:
        print_warning("No valid --uuid / UUID set; every tunnel will be rejected.")

    console.print(
        f"[bold green]Serving[/bold green] "
        f"[cyan]ws://{config.BIND_IP}:{config.PORT}/[/cyan]"
    )
    run(config)
