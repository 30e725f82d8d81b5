"""
Command Line Interface for dataroll.
"""

import asyncio
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table
from rich import print as rprint

from ..config import EngineConfig
from ..connections.config import BackendKind, ConnectionDescriptor
from ..connections.registry import AdapterFactory
from ..exceptions import DatarollError
from ..migrations.service import MigrationService
from ..version import get_version_dict

app = typer.Typer(
    name="dataroll",
    help="Migration lifecycle and execution engine",
    add_completion=False
)
console = Console()


def _load_config() -> EngineConfig:
    try:
        config = EngineConfig.from_env()
    except DatarollError as e:
        rprint(f"❌ [red]{e.message}[/red]")
        for error in e.details.get('errors', []):
            rprint(f"  • {error}")
        raise typer.Exit(1)
    config.configure_logging()
    return config


def _load_service() -> MigrationService:
    config = _load_config()
    try:
        return MigrationService.from_config(config)
    except DatarollError as e:
        rprint(f"❌ [red]{e.message}[/red]")
        raise typer.Exit(1)


def _adapter_for(config: EngineConfig, kind: BackendKind):
    factory = AdapterFactory(
        connect_timeout=config.connect_timeout,
        command_timeout=config.command_timeout,
        application_name=config.application_name
    )
    return factory(kind)


def _build_descriptor(
    kind: BackendKind,
    host: Optional[str],
    port: Optional[int],
    database: str,
    user: Optional[str],
    password: Optional[str],
    url: Optional[str],
    ssl: bool
) -> ConnectionDescriptor:
    try:
        return ConnectionDescriptor(
            kind=kind,
            host=host,
            port=port,
            database=database,
            username=user,
            password=password,
            url=url,
            ssl=ssl
        )
    except ValueError as e:
        rprint(f"❌ [red]Invalid connection settings: {e}[/red]")
        raise typer.Exit(1)


@app.command()
def version():
    """Show dataroll version information."""
    info = get_version_dict()
    table = Table(title="dataroll")
    table.add_column("Component", style="cyan")
    table.add_column("Version", style="green")
    table.add_row("dataroll", info["version"])
    table.add_row("Python", info["python_version"])
    table.add_row("Minimum Python", info["python_min_version"])
    console.print(table)


@app.command("process-due")
def process_due():
    """Run every scheduled execution that is due now."""
    service = _load_service()

    outcomes = asyncio.run(service.process_due())
    if not outcomes:
        rprint("⏳ No scheduled executions are due")
        return

    table = Table(title="Processed Scheduled Executions")
    table.add_column("Scheduled ID", style="cyan")
    table.add_column("Migration ID")
    table.add_column("Status")
    table.add_column("Error", style="red")

    for outcome in outcomes:
        status_style = "green" if outcome.succeeded else "red"
        table.add_row(
            outcome.scheduled_id,
            outcome.migration_id,
            f"[{status_style}]{outcome.status.value}[/{status_style}]",
            outcome.error or ""
        )
    console.print(table)

    failed = [outcome for outcome in outcomes if not outcome.succeeded]
    if failed:
        rprint(f"⚠️  [yellow]{len(failed)} of {len(outcomes)} scheduled execution(s) failed[/yellow]")


@app.command("test-connection")
def test_connection(
    kind: BackendKind = typer.Option(..., help="Backend kind"),
    host: Optional[str] = typer.Option(None, help="Database host"),
    port: Optional[int] = typer.Option(None, help="Database port"),
    database: str = typer.Option("", help="Database name or SQLite file path"),
    user: Optional[str] = typer.Option(None, help="Database user"),
    password: Optional[str] = typer.Option(None, help="Database password"),
    url: Optional[str] = typer.Option(None, help="Direct connection URL, wins over the fields above"),
    ssl: bool = typer.Option(False, help="Require SSL")
):
    """Check that a target database is reachable."""
    config = _load_config()
    descriptor = _build_descriptor(kind, host, port, database, user, password, url, ssl)
    adapter = _adapter_for(config, descriptor.kind)

    result = asyncio.run(adapter.test(descriptor))
    if result.ok:
        rprint(f"✅ [green]Connected to {descriptor.display_name} in {result.latency_ms:.2f}ms[/green]")
        if result.server_version:
            rprint(f"   Server version: {result.server_version}")
    else:
        rprint(f"❌ [red]Connection to {descriptor.display_name} failed: {result.error}[/red]")
        raise typer.Exit(1)


@app.command("detect-orm")
def detect_orm(
    kind: BackendKind = typer.Option(..., help="Backend kind"),
    host: Optional[str] = typer.Option(None, help="Database host"),
    port: Optional[int] = typer.Option(None, help="Database port"),
    database: str = typer.Option("", help="Database name or SQLite file path"),
    user: Optional[str] = typer.Option(None, help="Database user"),
    password: Optional[str] = typer.Option(None, help="Database password"),
    url: Optional[str] = typer.Option(None, help="Direct connection URL, wins over the fields above"),
    ssl: bool = typer.Option(False, help="Require SSL")
):
    """Guess which ORM tool manages a target database."""
    config = _load_config()
    descriptor = _build_descriptor(kind, host, port, database, user, password, url, ssl)
    adapter = _adapter_for(config, descriptor.kind)

    result = asyncio.run(adapter.detect_orm(descriptor))

    table = Table(title=f"ORM Detection: {descriptor.display_name}")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Detected", result.detected.value)
    table.add_row("Confidence", f"{result.confidence:.0%}")
    for evidence in result.evidence:
        table.add_row("Evidence", evidence)
    console.print(table)


@app.command()
def snapshot(
    migration_id: str = typer.Argument(..., help="Migration ID"),
    team: Optional[str] = typer.Option(None, help="Owning team ID"),
    persist: bool = typer.Option(False, help="Store the snapshot if none exists yet"),
    capture_pre_state: bool = typer.Option(False, help="Capture column definitions of affected tables"),
    created_by: Optional[str] = typer.Option(None, help="User recorded as snapshot creator")
):
    """Show the snapshot of a migration, optionally persisting it."""
    service = _load_service()

    try:
        if persist:
            asyncio.run(service.create_snapshot(
                migration_id,
                team_id=team,
                created_by=created_by,
                capture_pre_state=capture_pre_state
            ))
        view = service.get_snapshot(migration_id, team)
    except DatarollError as e:
        rprint(f"❌ [red]{e.message}[/red]")
        raise typer.Exit(1)

    table = Table(title=f"Snapshot for migration {migration_id}")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Persisted", "yes" if view.is_persisted else "no (derived)")
    table.add_row("Schema version", view.schema_version)
    table.add_row("Affected tables", ", ".join(view.affected_tables) or "-")
    for key, value in view.metadata.items():
        if key != 'skipped_statements':
            table.add_row(key, str(value))
    console.print(table)

    if view.rollback_sql:
        rprint("[bold]Rollback SQL:[/bold]")
        rprint(view.rollback_sql)
    else:
        rprint("⚠️  [yellow]No rollback SQL can be derived for this migration[/yellow]")


@app.command()
def pitr(
    connection_id: str = typer.Argument(..., help="Connection ID"),
    team: Optional[str] = typer.Option(None, help="Owning team ID")
):
    """Show native point-in-time recovery support for a connection."""
    service = _load_service()

    try:
        capability = service.pitr_capability(connection_id, team)
    except DatarollError as e:
        rprint(f"❌ [red]{e.message}[/red]")
        raise typer.Exit(1)

    rprint(f"📊 Provider: [bold]{capability.provider}[/bold]")
    rprint(f"   Native PITR: {'yes' if capability.native_pitr else 'no'}")
    rprint("")
    rprint(capability.instructions)


def main():
    """Main CLI entry point."""
    app()


if __name__ == "__main__":
    main()
