"""Commands: tenantdb list/create/delete/purge/purge-expired/retry."""

from datetime import timedelta

import typer
from rich.console import Console
from rich.table import Table

from tenantdb.commands._runtime import run
from tenantdb.core.utils.text import generate_unique_slug
from tenantdb.tenancy.manager import TenantDatabaseManager
from tenantdb.tenancy.models import TenantStatus
from tenantdb.tenancy.schemas import TenantRecord


console = Console()

STATUS_STYLES = {
    TenantStatus.ACTIVE: "green",
    TenantStatus.PENDING: "yellow",
    TenantStatus.PROVISIONING: "cyan",
    TenantStatus.FAILED: "red",
    TenantStatus.DELETED: "dim",
}


def _styled(status: TenantStatus) -> str:
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status.value}[/{style}]"


def list_tenants(
    status: TenantStatus | None = typer.Option(
        None, "--status", "-s", help="Only show tenants in this status"
    ),
    include_deleted: bool = typer.Option(
        False, "--include-deleted", "-a", help="Include soft-deleted tenants"
    ),
) -> None:
    """List tenants registered in the catalog."""
    tenants: list[TenantRecord] = run(
        lambda m: m.list_tenants(status=status, include_deleted=include_deleted)
    )

    if not tenants:
        console.print("[yellow]No tenants found.[/yellow]")
        return

    table = Table(title="Tenants", show_header=True)
    table.add_column("Organization", style="cyan", no_wrap=True)
    table.add_column("Slug", no_wrap=True)
    table.add_column("Name")
    table.add_column("Database", no_wrap=True)
    table.add_column("Status", no_wrap=True)
    table.add_column("Created", no_wrap=True)

    for t in tenants:
        table.add_row(
            t.organization_id,
            t.slug,
            t.name,
            t.connection_ref,
            _styled(t.status),
            t.created_at.strftime("%Y-%m-%d %H:%M"),
        )

    console.print()
    console.print(table)
    console.print()


def create(
    organization_id: str = typer.Argument(..., help="Organization the tenant belongs to"),
    name: str = typer.Argument(..., help="Display name"),
    slug: str | None = typer.Option(
        None, "--slug", help="Slug, derived from the name when omitted"
    ),
    owner: str | None = typer.Option(
        None, "--owner", help="User id seeded as the owner agent"
    ),
) -> None:
    """Register and provision a tenant synchronously."""

    async def _create(manager: TenantDatabaseManager) -> TenantRecord:
        chosen = slug
        if chosen is None:
            existing = await manager.list_tenants(include_deleted=True)
            chosen = generate_unique_slug(name, {t.slug for t in existing})
        return await manager.provision_tenant(
            organization_id, chosen, name, owner_id=owner
        )

    with console.status("[bold green]Provisioning tenant database..."):
        tenant = run(_create)
    console.print(
        f"[green]✓[/green] Tenant [bold]{tenant.slug}[/bold] is active "
        f"(database {tenant.connection_ref})"
    )


def delete(
    organization_id: str = typer.Argument(..., help="Organization to delete"),
    actor: str | None = typer.Option(None, "--actor", help="User id recorded as deleter"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Soft-delete a tenant. Its database is kept until purged."""
    if not yes:
        typer.confirm(f"Delete tenant of organization {organization_id}?", abort=True)

    tenant = run(lambda m: m.delete_tenant(organization_id, actor_user_id=actor))
    console.print(
        f"[green]✓[/green] Tenant [bold]{tenant.slug}[/bold] deleted; "
        f"database {tenant.connection_ref} is retained"
    )


def purge(
    organization_id: str = typer.Argument(..., help="Organization to purge"),
    retention_days: int | None = typer.Option(
        None, "--retention-days", help="Override the configured retention window"
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Drop the database of a soft-deleted tenant past its retention window."""
    if not yes:
        typer.confirm(
            f"Permanently drop the database of {organization_id}?", abort=True
        )

    retention = None if retention_days is None else timedelta(days=retention_days)
    tenant = run(lambda m: m.purge_tenant(organization_id, retention=retention))
    console.print(f"[green]✓[/green] Database {tenant.connection_ref} dropped")


def purge_expired(
    retention_days: int | None = typer.Option(
        None, "--retention-days", help="Override the configured retention window"
    ),
) -> None:
    """Purge every deleted tenant whose retention window has passed."""
    retention = None if retention_days is None else timedelta(days=retention_days)
    purged = run(lambda m: m.purge_expired(retention=retention))

    if not purged:
        console.print("[yellow]Nothing to purge.[/yellow]")
        return
    for organization_id in purged:
        console.print(f"[green]✓[/green] Purged {organization_id}")


def retry(
    organization_id: str = typer.Argument(..., help="Organization whose provisioning failed"),
    requested_by: str | None = typer.Option(None, "--requested-by", help="Operator user id"),
) -> None:
    """Move a failed tenant back to pending and queue provisioning again."""
    job_id = run(
        lambda m: m.retry_provisioning(organization_id, requested_by=requested_by),
        with_queue=True,
    )
    console.print(f"[green]✓[/green] Provisioning queued as job [bold]{job_id}[/bold]")
