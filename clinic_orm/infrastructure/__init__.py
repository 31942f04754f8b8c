"""
Infrastructure package for clinic-orm.

Centralizes database connectivity concerns (pool lifecycle, checkout and
checkin, single-statement execution). Keep this layer focused on I/O and
resource management, decoupled from query building and transactions.
"""

from clinic_orm.infrastructure.connection import (
    ConnectionProvider,
    StatementResult,
    build_dsn,
    get_provider,
    run_statement,
)

__all__ = [
    "ConnectionProvider",
    "StatementResult",
    "build_dsn",
    "get_provider",
    "run_statement",
]
