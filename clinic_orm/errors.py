"""
Exception hierarchy for clinic-orm.

Driver errors (``psycopg.Error`` and subclasses such as ``UniqueViolation`` or
``ForeignKeyViolation``) are never wrapped: they propagate unchanged so an
outer layer can translate them into user-facing responses. The classes below
cover failures the core raises itself.
"""

from __future__ import annotations

from typing import Any, Optional

# SQLSTATE codes a root transaction may retry:
# 40P01 deadlock_detected, 40001 serialization_failure, 55P03 lock_not_available
TRANSIENT_SQLSTATES = frozenset({"40P01", "40001", "55P03"})


class OrmError(Exception):
    """Base class for errors raised by the data-access core."""


class ConfigurationError(OrmError):
    """The connection pool was initialized twice or is misconfigured."""


class NotInitializedError(ConfigurationError):
    """The connection pool was used before ``initialize`` was called."""


class PoolExhaustionError(OrmError):
    """No connection became available within the pool's queue limits."""


class QueryError(OrmError):
    """A statement could not be built from the given builder state."""


class UnsupportedOperationError(OrmError):
    """The repository's table does not support the requested operation."""


class NotFoundError(OrmError):
    """A record looked up with ``find_or_fail`` does not exist."""

    def __init__(self, table: str, record_id: Any) -> None:
        self.table = table
        self.record_id = record_id
        super().__init__(f"{table} record with ID {record_id} not found.")


def sqlstate_of(exc: BaseException) -> Optional[str]:
    """Return the SQLSTATE carried by a driver error, if any."""
    return getattr(exc, "sqlstate", None)


def is_transient_conflict(exc: BaseException) -> bool:
    """
    True when ``exc`` is a deadlock or lock conflict worth retrying.
    """
    return sqlstate_of(exc) in TRANSIENT_SQLSTATES


__all__ = [
    "TRANSIENT_SQLSTATES",
    "OrmError",
    "ConfigurationError",
    "NotInitializedError",
    "PoolExhaustionError",
    "QueryError",
    "UnsupportedOperationError",
    "NotFoundError",
    "sqlstate_of",
    "is_transient_conflict",
]
