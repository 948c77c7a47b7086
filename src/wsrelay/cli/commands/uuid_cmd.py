"""Identity generation command."""

import uuid

import typer

from wsrelay.cli.output import console

app = typer.Typer(help="Generate a client identity")


@app.callback(invoke_without_command=True)
def generate_uuid():
    """Print a fresh random identity for USER_ID / --uuid."""
    console.print(str(uuid.uuid4()))
