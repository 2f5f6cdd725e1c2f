"""Operator CLI for tenant databases."""

import typer
from rich.console import Console

from tenantdb import __version__
from tenantdb.commands import lifecycle, maintenance


console = Console()

app = typer.Typer(
    name="tenantdb",
    help="Inspect and operate tenant databases.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

app.command(name="list")(lifecycle.list_tenants)
app.command(name="create")(lifecycle.create)
app.command(name="delete")(lifecycle.delete)
app.command(name="purge")(lifecycle.purge)
app.command(name="purge-expired")(lifecycle.purge_expired)
app.command(name="retry")(lifecycle.retry)
app.command(name="migrate")(maintenance.migrate)
app.command(name="health")(maintenance.health)


@app.callback(invoke_without_command=True)
def version_callback(
    version: bool = typer.Option(
        False, "--version", "-v", help="Show version and exit."
    ),
) -> None:
    """tenantdb - operate database-per-tenant storage."""
    if version:
        console.print(f"[bold cyan]tenantdb[/bold cyan] version {__version__}")
        raise typer.Exit()


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
