"""
Shared query-plan types for the clinic-orm query builder and repositories.

Conditions and joins are kept as small dataclasses so a builder's state can be
inspected in tests; pagination results are TypedDicts so they serialize
straight to the ``{data, meta}`` envelope callers return over HTTP.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, List, Literal, Optional, Sequence, TypedDict, TypeVar

T = TypeVar("T")

Connector = Literal["AND", "OR"]
JoinKind = Literal["INNER", "LEFT", "RIGHT"]
ConditionKind = Literal["basic", "in", "not_in", "null", "not_null", "raw"]

OPERATORS = frozenset(
    {"=", "!=", "<>", "<", "<=", ">", ">=", "LIKE", "NOT LIKE", "ILIKE", "NOT ILIKE"}
)
DIRECTIONS = frozenset({"ASC", "DESC"})


class _Unset:
    """Marker for a field explicitly left unset by the caller."""

    _instance: Optional["_Unset"] = None

    def __new__(cls) -> "_Unset":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


@dataclass
class Condition:
    """
    One WHERE predicate.

    ``connector`` joins this condition to the one before it; the first
    condition of a clause is always rendered with ``WHERE`` instead.
    """

    kind: ConditionKind
    column: Optional[str] = None
    operator: Optional[str] = None
    value: Any = None
    bindings: Sequence[Any] = field(default_factory=tuple)
    connector: Connector = "AND"


@dataclass
class JoinClause:
    kind: JoinKind
    table: str
    on: str


class PaginationMeta(TypedDict):
    total: int
    per_page: int
    current_page: int
    last_page: int


class PaginationResult(TypedDict, Generic[T]):
    data: List[T]
    meta: PaginationMeta


__all__ = [
    "UNSET",
    "OPERATORS",
    "DIRECTIONS",
    "Connector",
    "JoinKind",
    "ConditionKind",
    "Condition",
    "JoinClause",
    "PaginationMeta",
    "PaginationResult",
]
