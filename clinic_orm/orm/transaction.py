"""
Nestable transactions with implicit connection propagation.

``run_in_transaction`` is the single entry point for atomic units of work:

- A root call checks out one pooled connection, issues ``BEGIN`` (plus an
  optional isolation level), publishes the connection in an ambient
  ``ContextVar`` while ``work()`` runs, then commits or rolls back. Deadlocks
  and other transient lock conflicts restart the whole unit of work with a
  growing backoff.
- A call made while a transaction is already active reuses that connection
  and wraps ``work()`` in a savepoint, so an inner failure only undoes the
  inner writes. Nested scopes never retry on their own.

Query builders and repositories consult ``active_connection()`` so every
statement issued inside ``work()`` shares the root's connection without any
explicit plumbing.

Usage:
    async def transfer():
        await accounts.update(1, {"balance": 10})
        await run_in_transaction(audit_step)  # savepoint

    await run_in_transaction(transfer, TxOptions(isolation=IsolationLevel.SERIALIZABLE))
"""

from __future__ import annotations

import uuid
from contextvars import ContextVar
from dataclasses import dataclass
from enum import Enum
from functools import wraps
from typing import Any, Awaitable, Callable, Optional, TypeVar

from psycopg import AsyncConnection
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_incrementing,
)

from clinic_orm.config import Settings, get_settings
from clinic_orm.errors import is_transient_conflict, sqlstate_of
from clinic_orm.infrastructure.connection import ConnectionProvider, get_provider, run_statement
from clinic_orm.utils.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")

_active_connection: ContextVar[Optional[AsyncConnection]] = ContextVar(
    "clinic_orm_active_connection", default=None
)


class IsolationLevel(str, Enum):
    READ_UNCOMMITTED = "READ UNCOMMITTED"
    READ_COMMITTED = "READ COMMITTED"
    REPEATABLE_READ = "REPEATABLE READ"
    SERIALIZABLE = "SERIALIZABLE"


@dataclass(frozen=True)
class TxOptions:
    """
    Options for a root transaction.

    Attributes
    ----------
    isolation : IsolationLevel, optional
        Isolation level for the transaction; the server default when omitted.
    retries : int
        Extra attempts after a transient conflict (deadlock, lock timeout).
    backoff_seconds : float
        Base wait; the n-th retry waits ``n * backoff_seconds``.
    """

    isolation: Optional[IsolationLevel] = None
    retries: int = 3
    backoff_seconds: float = 0.05

    @classmethod
    def from_settings(
        cls, settings: Optional[Settings] = None, isolation: Optional[IsolationLevel] = None
    ) -> "TxOptions":
        settings = settings or get_settings()
        return cls(
            isolation=isolation,
            retries=settings.tx_retries,
            backoff_seconds=settings.tx_backoff_ms / 1000.0,
        )


def active_connection() -> Optional[AsyncConnection]:
    """Connection of the transaction enclosing the caller, or None."""
    return _active_connection.get()


def in_transaction() -> bool:
    return _active_connection.get() is not None


async def _run_nested(conn: AsyncConnection, work: Callable[[], Awaitable[T]]) -> T:
    savepoint = f"sp_{uuid.uuid4().hex[:16]}"
    await run_statement(conn, f"SAVEPOINT {savepoint}")
    try:
        result = await work()
        await run_statement(conn, f"RELEASE SAVEPOINT {savepoint}")
    except BaseException as exc:
        log.debug(
            "rolling back to savepoint",
            extra={"savepoint": savepoint, "error_type": type(exc).__name__},
        )
        await run_statement(conn, f"ROLLBACK TO SAVEPOINT {savepoint}")
        raise
    return result


async def _rollback(conn: AsyncConnection) -> None:
    try:
        await run_statement(conn, "ROLLBACK")
    except Exception:
        log.error("transaction rollback failed", exc_info=True)
        raise


async def _run_root(
    work: Callable[[], Awaitable[T]],
    options: TxOptions,
    provider: ConnectionProvider,
) -> T:
    conn = await provider.acquire_connection()
    try:
        await run_statement(conn, "BEGIN")
        if options.isolation is not None:
            await run_statement(
                conn, f"SET TRANSACTION ISOLATION LEVEL {IsolationLevel(options.isolation).value}"
            )

        token = _active_connection.set(conn)
        try:
            result = await work()
        finally:
            _active_connection.reset(token)

        await run_statement(conn, "COMMIT")
        return result
    except BaseException:
        await _rollback(conn)
        raise
    finally:
        await provider.release_connection(conn)


async def run_in_transaction(
    work: Callable[[], Awaitable[T]],
    options: Optional[TxOptions] = None,
    *,
    provider: Optional[ConnectionProvider] = None,
) -> T:
    """
    Run ``work`` atomically and return its result.

    Parameters
    ----------
    work : Callable[[], Awaitable[T]]
        Zero-argument coroutine function holding the unit of work.
    options : TxOptions, optional
        Isolation and retry policy for a root transaction. Ignored when the
        call is nested inside an active transaction.
    provider : ConnectionProvider, optional
        Pool to borrow the root connection from; the default provider when
        omitted.

    Raises
    ------
    Exception
        Whatever ``work`` raised, after the transaction (or savepoint) has been
        rolled back. Transient conflicts are re-raised once retries run out.
    """
    conn = _active_connection.get()
    if conn is not None:
        return await _run_nested(conn, work)

    options = options or TxOptions.from_settings()
    provider = provider or get_provider()

    def _log_retry(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        log.warning(
            "transient conflict, retrying transaction",
            extra={
                "attempt": state.attempt_number,
                "retries": options.retries,
                "sqlstate": sqlstate_of(exc) if exc else None,
            },
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(options.retries + 1),
        wait=wait_incrementing(start=options.backoff_seconds, increment=options.backoff_seconds),
        retry=retry_if_exception(is_transient_conflict),
        before_sleep=_log_retry,
        reraise=True,
    )
    return await retrying(_run_root, work, options, provider)


def transactional(
    options: Optional[TxOptions] = None, *, provider: Optional[ConnectionProvider] = None
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Decorator running an async function through ``run_in_transaction``.

    Example
    -------
        @transactional(TxOptions(retries=5))
        async def assign_role(user_id: int, role_id: int) -> None:
            ...
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await run_in_transaction(
                lambda: func(*args, **kwargs), options, provider=provider
            )

        return wrapper

    return decorator


__all__ = [
    "IsolationLevel",
    "TxOptions",
    "active_connection",
    "in_transaction",
    "run_in_transaction",
    "transactional",
]
