"""
wsrelay unified CLI entry point.

Usage:
    wsrelay [OPTIONS] COMMAND [ARGS]...

Commands:
    serve     Run the relay server
    forward   Forward a local port through a relay
    uuid      Generate a client identity
    version   Show version information
"""

import typer

from wsrelay.cli.commands import forward, serve, uuid_cmd
from wsrelay.cli.output import console

app = typer.Typer(
    name="wsrelay",
    help="Authenticated TCP tunnel over WebSocket",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

# Register command groups
app.add_typer(serve.app, name="serve", help="Run the relay server")
app.add_typer(forward.app, name="forward", help="Forward a local port through a relay")
app.add_typer(uuid_cmd.app, name="uuid", help="Generate a client identity")


@app.command("version")
def version():
    """Show version information."""
    from wsrelay import __version__

    console.print(f"wsrelay v{__version__}")


def run():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    run()
