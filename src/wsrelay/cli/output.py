"""Console output helpers for the wsrelay CLI."""

from rich.console import Console

console = Console()
err_console = Console(stderr=True)


def print_error(message: str) -> None:
    err_console.print(f"[bold red]Error:[/bold red] {message}")


def print_success(message: str) -> None:
    console.print(f"[bold green]✓[/bold green] {message}")


def print_warning(message: str) -> None:
    err_console.print(f"[bold yellow]Warning:[/bold yellow] {message}")


def format_bytes(num: int) -> str:
    """Format a byte count with a binary unit suffix."""
    if num < 1024:
        return f"{num} B"
    value = num / 1024
    for unit in ("KiB", "MiB"):
        if value < 1024:
            return f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GiB"
