"""
clinic-orm - Async data-access core for the clinic management system.

This package provides the persistence layer shared by the clinic's services:

- A pooled PostgreSQL connection provider
- A fluent, parameterized query builder
- Nestable transactions with savepoints and deadlock retry
- A generic repository with timestamps, soft deletes, and write hooks

Statements issued inside ``run_in_transaction`` join the enclosing
transaction automatically; everything else runs on a pooled connection.
"""

from __future__ import annotations

__version__ = "0.1.0"

# Public API exports
from clinic_orm.config import Settings, get_settings
from clinic_orm.errors import (
    ConfigurationError,
    NotFoundError,
    NotInitializedError,
    OrmError,
    PoolExhaustionError,
    QueryError,
    UnsupportedOperationError,
)
from clinic_orm.infrastructure.connection import ConnectionProvider, get_provider
from clinic_orm.orm import (
    UNSET,
    BaseRepository,
    IsolationLevel,
    QueryBuilder,
    RepositoryHooks,
    TxOptions,
    run_in_transaction,
    transactional,
)
from clinic_orm.utils.logging import configure_logging, get_logger

__all__ = [
    # Version info
    "__version__",
    # Configuration
    "Settings",
    "get_settings",
    # Connections
    "ConnectionProvider",
    "get_provider",
    # Query building & repositories
    "QueryBuilder",
    "BaseRepository",
    "RepositoryHooks",
    "UNSET",
    # Transactions
    "IsolationLevel",
    "TxOptions",
    "run_in_transaction",
    "transactional",
    # Errors
    "OrmError",
    "ConfigurationError",
    "NotInitializedError",
    "PoolExhaustionError",
    "QueryError",
    "NotFoundError",
    "UnsupportedOperationError",
    # Logging
    "configure_logging",
    "get_logger",
]
