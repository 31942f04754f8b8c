"""
Plain-SQL migration runner.

Every ``*.sql`` file of a directory is applied in lexical order (``001_...``,
``002_...``), each inside its own transaction. A file is sent as a single
multi-statement script, so it either applies completely or not at all, and
the first failing file stops the run.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

from clinic_orm.errors import OrmError
from clinic_orm.infrastructure.connection import ConnectionProvider, get_provider, run_statement
from clinic_orm.orm.transaction import TxOptions, active_connection, run_in_transaction
from clinic_orm.utils.logging import get_logger

log = get_logger(__name__)


@dataclass
class MigrationResult:
    name: str
    duration_seconds: float


def discover_migrations(directory: Union[str, Path]) -> List[Path]:
    """
    List migration files in the order they are applied.

    Raises
    ------
    FileNotFoundError
        If ``directory`` does not exist or is not a directory.
    """
    path = Path(directory)
    if not path.is_dir():
        raise FileNotFoundError(f"Migration directory not found at: {path}")
    return sorted(p for p in path.glob("*.sql") if p.is_file())


async def apply_migrations(
    directory: Union[str, Path], provider: Optional[ConnectionProvider] = None
) -> List[MigrationResult]:
    """
    Apply every migration file under ``directory``.

    Parameters
    ----------
    directory : str or Path
        Folder holding ``*.sql`` files.
    provider : ConnectionProvider, optional
        Initialized provider; the default provider when omitted.

    Returns
    -------
    list of MigrationResult
        One entry per applied file, in application order.
    """
    provider = provider or get_provider()
    # DDL is not retried on lock conflicts
    options = TxOptions(retries=0, backoff_seconds=0)
    results: List[MigrationResult] = []

    for path in discover_migrations(directory):
        script = path.read_text(encoding="utf-8")

        async def apply() -> None:
            conn = active_connection()
            if conn is None:
                raise OrmError(f"migration {path.name} ran outside its transaction")
            await run_statement(conn, script)

        log.info("applying migration", extra={"migration": path.name})
        start = time.perf_counter()
        await run_in_transaction(apply, options, provider=provider)
        results.append(MigrationResult(path.name, time.perf_counter() - start))

    log.info("migrations complete", extra={"applied": len(results)})
    return results


__all__ = ["MigrationResult", "apply_migrations", "discover_migrations"]
