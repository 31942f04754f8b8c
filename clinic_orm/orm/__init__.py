"""
ORM package for clinic-orm.

Re-exports the query builder, transaction manager, and repository base so
downstream code can import from `clinic_orm.orm` directly.
"""

from clinic_orm.orm.query_builder import QueryBuilder, execute_raw
from clinic_orm.orm.repository import BaseRepository, RepositoryHooks, sanitize
from clinic_orm.orm.transaction import (
    IsolationLevel,
    TxOptions,
    active_connection,
    in_transaction,
    run_in_transaction,
    transactional,
)
from clinic_orm.orm.types import UNSET, PaginationMeta, PaginationResult

__all__ = [
    # Query building
    "QueryBuilder",
    "execute_raw",
    # Repositories
    "BaseRepository",
    "RepositoryHooks",
    "sanitize",
    # Transactions
    "IsolationLevel",
    "TxOptions",
    "active_connection",
    "in_transaction",
    "run_in_transaction",
    "transactional",
    # Types
    "UNSET",
    "PaginationMeta",
    "PaginationResult",
]
