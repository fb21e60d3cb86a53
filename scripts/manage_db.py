#!/usr/bin/env python3
"""
Database management script for the Soarchain observer.
"""

import asyncio
import sys

import typer
from rich.console import Console
from rich.table import Table
from sqlalchemy import func, select

from alembic.config import Config
from alembic import command
from soar_observer.core.database import (
    DatabaseManager,
    close_database,
    get_async_session,
    init_database,
)
from soar_observer.core.logging import setup_logging, get_logger
from soar_observer.models import Client, ClientEarning, EpochEarnings

console = Console()
logger = get_logger(__name__)
app = typer.Typer(help="Database management commands")


@app.command()
def init():
    """Create all tables from the models."""
    async def _init():
        setup_logging()
        await init_database()
        await DatabaseManager.create_tables()
        await close_database()
        console.print("Database initialized")

    asyncio.run(_init())


@app.command()
def upgrade(revision: str = "head"):
    """Apply migrations."""
    command.upgrade(Config("alembic.ini"), revision)
    console.print(f"Database upgraded to: {revision}")


@app.command()
def downgrade(revision: str):
    """Downgrade database to a specific revision."""
    command.downgrade(Config("alembic.ini"), revision)
    console.print(f"Database downgraded to: {revision}")


@app.command()
def current():
    """Show current database revision."""
    command.current(Config("alembic.ini"))


@app.command()
def history():
    """Show migration history."""
    command.history(Config("alembic.ini"))


@app.command()
def reset():
    """Drop all tables."""
    if not typer.confirm("Are you sure you want to drop all tables?"):
        console.print("Operation cancelled")
        return

    async def _reset():
        setup_logging()
        await init_database()
        await DatabaseManager.drop_tables()
        await close_database()
        console.print("All tables dropped")

    asyncio.run(_reset())


@app.command()
def status():
    """Show connectivity and row counts."""
    table = Table(title="Database Status")
    table.add_column("Component", style="cyan")
    table.add_column("Status", style="green")

    async def _status():
        setup_logging()
        await init_database()

        is_healthy = await DatabaseManager.health_check()
        table.add_row("Database", "Connected" if is_healthy else "Disconnected")

        if is_healthy:
            async with get_async_session() as session:
                for model in (Client, ClientEarning, EpochEarnings):
                    count = await session.scalar(select(func.count()).select_from(model))
                    table.add_row(model.__tablename__, f"{count} rows")

        console.print(table)
        await close_database()

        if not is_healthy:
            sys.exit(1)

    asyncio.run(_status())


if __name__ == "__main__":
    app()
