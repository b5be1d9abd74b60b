#!/usr/bin/env python3
"""
Portal CLI

Command-line interface for operating the employee portal backend.
"""

import sqlite3
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from portal.config import load_config
from portal.database import Database, seed_users_from_config
from portal.logging_config import setup_logging
from portal.migrations import MigrationError, Migrator, create_migration

console = Console()


def get_db(config: dict) -> Database:
    """Get database connection using config."""
    db_path = config.get("database", {}).get("path", "db/employee_portal.sqlite")
    return Database(db_path)


def get_migrator(config: dict) -> Migrator:
    """Get a migrator for the configured database and migrations directory."""
    return Migrator(get_db(config), config["database"]["migrations_dir"])


def apply_migrations(migrator: Migrator) -> list[str]:
    """Apply pending migrations, exiting with status 1 on failure."""
    try:
        return migrator.migrate()
    except MigrationError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    finally:
        migrator.db.close()


@click.group()
@click.version_option(version="0.1.0", prog_name="portal")
def main():
    """Employee Portal - identity and access backend

    Manage the portal database, migrations and API server.
    """
    pass


@main.command()
def init():
    """Apply migrations and seed the default accounts."""
    config = load_config()
    migrator = get_migrator(config)
    applied = apply_migrations(migrator)
    console.print(f"[green]✓[/green] Database initialized ({len(applied)} migration(s) applied)")

    db = get_db(config)
    try:
        for email in seed_users_from_config(db, config):
            console.print(f"[green]✓[/green] Seeded user {email}")
    finally:
        db.close()

    if not Path("config.yaml").exists():
        console.print(
            "[yellow]![/yellow] No config.yaml found. "
            "Copy config.example.yaml to configure SMTP and the base URL."
        )
    else:
        console.print("[green]✓[/green] Configuration loaded")


@main.command()
def migrate():
    """Apply pending migrations."""
    config = load_config()
    setup_logging(config.get("logging", {}).get("level", "INFO"), console=console)

    applied = apply_migrations(get_migrator(config))
    if not applied:
        console.print("[green]✓[/green] Database is up to date")
        return

    for name in applied:
        console.print(f"  Applied: {name}")
    console.print(f"[green]✓[/green] {len(applied)} migration(s) applied")


@main.command(name="migrate-status")
def migrate_status():
    """Show applied and pending migrations."""
    config = load_config()
    migrator = get_migrator(config)
    try:
        status = migrator.status()
    finally:
        migrator.db.close()

    table = Table(title="Migrations", show_header=True, header_style="bold cyan")
    table.add_column("Migration", style="bold")
    table.add_column("State")

    for name in status["applied"]:
        table.add_row(name, "[green]applied[/green]")
    for name in status["pending"]:
        table.add_row(name, "[yellow]pending[/yellow]")

    console.print(table)
    console.print(Panel(
        f"[bold]Applied:[/bold] {status['total_applied']}\n"
        f"[bold]Pending:[/bold] {status['total_pending']}",
        title="Summary",
        border_style="blue",
    ))


@main.command(name="make-migration")
@click.argument("name")
def make_migration(name):
    """Create a new, empty migration file."""
    config = load_config()
    try:
        path = create_migration(name, config["database"]["migrations_dir"])
    except MigrationError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    console.print(f"[green]✓[/green] Created {path.name}")


@main.command()
def users():
    """List user accounts."""
    config = load_config()
    db = get_db(config)
    try:
        rows = db.get_all_users()
    except sqlite3.OperationalError:
        console.print("[red]Error:[/red] Database not initialized. Run 'portal init' first.")
        return
    finally:
        db.close()

    table = Table(title="Users", show_header=True, header_style="bold cyan")
    table.add_column("ID", justify="right")
    table.add_column("Name")
    table.add_column("Email")
    table.add_column("Department")
    table.add_column("Admin")
    table.add_column("Last login", style="dim")

    for user in rows:
        table.add_row(
            str(user["id"]),
            user["name"],
            user["email"],
            user["department"] or "-",
            "[green]yes[/green]" if user["is_admin"] else "no",
            user["last_login_at"] or "-",
        )

    console.print(table)


@main.command()
@click.option("--host", default=None, help="Bind address (default from config)")
@click.option("--port", "-p", type=int, default=None, help="Port (default from config)")
@click.option("--reload", is_flag=True, help="Reload on code changes")
def serve(host, port, reload):
    """Run the API server."""
    import uvicorn

    config = load_config()
    server = config.get("server", {})
    uvicorn.run(
        "web.api.main:app",
        host=host or server.get("host", "0.0.0.0"),
        port=port or int(server.get("port", 4000)),
        reload=reload,
    )


if __name__ == "__main__":
    main()
