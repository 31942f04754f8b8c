from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import List

import typer

from clinic_orm.config import get_settings
from clinic_orm.infrastructure.connection import ConnectionProvider
from clinic_orm.migrations import MigrationResult, apply_migrations
from clinic_orm.reporter import print_migrations, print_settings
from clinic_orm.utils.logging import configure_logging

app = typer.Typer(help="clinic-orm database CLI.")


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    print_settings(get_settings())


@app.command()
def health() -> None:
    """
    Open the pool and run a trivial query. Exits 1 when the database is unreachable.
    """
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)

    async def check() -> bool:
        provider = ConnectionProvider()
        await provider.initialize(settings)
        try:
            return await provider.health_check()
        finally:
            await provider.close()

    if asyncio.run(check()):
        typer.echo(f"OK: {settings.db_host}:{settings.db_port}/{settings.db_name}")
        return
    typer.echo("Database health check failed.", err=True)
    raise typer.Exit(code=1)


@app.command()
def migrate(
    directory: Path = typer.Argument(
        ...,
        exists=True,
        file_okay=False,
        dir_okay=True,
        help="Directory of *.sql migration files, applied in file-name order.",
    ),
) -> None:
    """
    Apply every SQL migration in DIRECTORY, one transaction per file.
    """
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)

    async def run() -> List[MigrationResult]:
        provider = ConnectionProvider()
        await provider.initialize(settings)
        try:
            return await apply_migrations(directory, provider)
        finally:
            await provider.close()

    print_migrations(asyncio.run(run()))


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
