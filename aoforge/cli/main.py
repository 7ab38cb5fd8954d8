"""ao-forge CLI.

`ao-forge process ...` manages AO processes, `ao-forge check` verifies the
aos installation.
"""

from __future__ import annotations

import typer
from rich.console import Console

from aoforge.cli import process
from aoforge.log import setup_logging

console = Console()

app = typer.Typer(
    name="ao-forge",
    help="ao-forge -- run and schedule AO processes for your project.",
    no_args_is_help=True,
)

app.add_typer(process.app, name="process", help="Manage AO processes (start, stop, list, schedule)")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
):
    setup_logging("DEBUG" if verbose else None)


@app.command("check")
def check():
    """Check that the aos binary is installed."""
    from aoforge.cli.context import ForgeContext, run_async

    ctx = ForgeContext.get()
    if not run_async(ctx.supervisor.check_installation()):
        raise typer.Exit(code=1)
    console.print("[green]AOS is installed[/green]")


@app.command("version")
def version_cmd():
    """Show ao-forge version."""
    from aoforge import __version__
    console.print(f"ao-forge v{__version__}")
