from __future__ import annotations

from typing import List, Optional

from rich import box
from rich.console import Console
from rich.table import Table

from clinic_orm.config import Settings
from clinic_orm.migrations import MigrationResult


def print_settings(settings: Settings, console: Optional[Console] = None) -> None:
    """
    Render the effective configuration. The password is masked.
    """
    console = console or Console()

    table = Table(title="clinic-orm configuration", box=box.ROUNDED)
    table.add_column("Setting", style="cyan", no_wrap=True)
    table.add_column("Value", style="magenta")

    table.add_row("Database", f"{settings.db_user}@{settings.db_host}:{settings.db_port}/{settings.db_name}")
    table.add_row("Password", "****" if settings.db_password else "[dim](empty)[/dim]")
    table.add_row("Pool size", f"{settings.db_pool_min_size}..{settings.db_pool_max_size}")
    table.add_row("Pool timeout (s)", f"{settings.db_pool_timeout:.1f}")
    table.add_row("Max waiting", str(settings.db_pool_max_waiting or "unbounded"))
    table.add_row("Transaction retries", str(settings.tx_retries))
    table.add_row("Retry backoff (ms)", str(settings.tx_backoff_ms))
    table.add_row("Environment", settings.app_env)
    table.add_row("Log level", settings.log_level)

    console.print(table)


def print_migrations(results: List[MigrationResult], console: Optional[Console] = None) -> None:
    """
    Render applied migrations as a rich table.
    """
    console = console or Console()

    if not results:
        console.print("[yellow]No migrations to apply.[/yellow]")
        return

    table = Table(
        title="Applied migrations",
        box=box.ROUNDED,
        caption=f"{len(results)} file(s), {sum(r.duration_seconds for r in results):.2f}s total",
    )
    table.add_column("#", justify="right", style="blue")
    table.add_column("Migration", style="cyan", no_wrap=True)
    table.add_column("Duration (s)", justify="right", style="green")

    for index, result in enumerate(results, start=1):
        table.add_row(str(index), result.name, f"{result.duration_seconds:.3f}")

    console.print(table)
