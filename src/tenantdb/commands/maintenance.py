"""Commands: tenantdb migrate/health."""

import typer
from rich.console import Console
from rich.table import Table

from tenantdb.commands._runtime import run
from tenantdb.tenancy.schemas import HealthCheckResult, MigrationResult


console = Console()


def migrate(
    organization_id: str | None = typer.Argument(
        None, help="Organization to migrate; all active tenants when omitted"
    ),
    sequential: bool = typer.Option(
        False, "--sequential", help="Migrate one tenant at a time"
    ),
    max_concurrency: int = typer.Option(
        5, "--max-concurrency", help="Parallel migrations"
    ),
    continue_on_error: bool = typer.Option(
        False, "--continue-on-error", help="Keep going after a failure"
    ),
) -> None:
    """Bring tenant schemas up to date."""
    if organization_id:
        results: list[MigrationResult] = [
            run(lambda m: m.migrate_tenant(organization_id))
        ]
    else:
        results = run(
            lambda m: m.migrate_all(
                parallel=not sequential,
                max_concurrency=max_concurrency,
                continue_on_error=continue_on_error,
            )
        )

    if not results:
        console.print("[yellow]No active tenants.[/yellow]")
        return

    for r in results:
        if r.success:
            console.print(f"[green]✓[/green] {r.slug} ({r.duration_ms} ms)")
        else:
            console.print(f"[red]✗[/red] {r.slug}: {r.error}")

    failed = sum(1 for r in results if not r.success)
    if failed:
        console.print(f"\n[red]{failed} of {len(results)} migrations failed[/red]")
        raise typer.Exit(1)


def health(
    organization_id: str | None = typer.Argument(
        None, help="Organization to check; all tenants when omitted"
    ),
) -> None:
    """Check that tenant databases answer."""
    if organization_id:
        results: list[HealthCheckResult] = [
            run(lambda m: m.check_tenant_health(organization_id))
        ]
    else:
        results = run(lambda m: m.check_all_tenants_health())

    if not results:
        console.print("[yellow]No tenants found.[/yellow]")
        return

    table = Table(title="Tenant health", show_header=True)
    table.add_column("Organization", style="cyan", no_wrap=True)
    table.add_column("Slug", no_wrap=True)
    table.add_column("Status", no_wrap=True)
    table.add_column("Tables", justify="right")
    table.add_column("Error")

    for r in results:
        status = (
            "[green]healthy[/green]" if r.can_connect else "[red]unhealthy[/red]"
        )
        table.add_row(r.organization_id, r.slug, status, str(len(r.tables)), r.error or "")

    console.print()
    console.print(table)
    console.print()

    if any(not r.can_connect for r in results):
        raise typer.Exit(1)
