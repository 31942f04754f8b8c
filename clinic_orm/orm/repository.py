"""
Generic per-table repository built on the query builder.

``BaseRepository`` gives every domain table the same CRUD + pagination
contract plus record-lifecycle conventions:

- timestamps: ``created_at`` is stamped on insert, ``updated_at`` on insert
  and update when ``use_timestamps`` is on;
- soft deletes: lookups and updates skip rows carrying ``deleted_at`` when
  ``use_soft_deletes`` is on;
- hooks: a ``RepositoryHooks`` policy object may transform input before
  writes and observe results after them;
- sanitization: ``UNSET`` values become explicit NULLs before any write,
  while falsy values such as ``0``, ``False`` and ``""`` are kept.

A repository normally runs unbound and follows the ambient transaction (or
the pool). ``with_transaction(conn)`` returns a copy pinned to one connection.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import (
    Any,
    ClassVar,
    Dict,
    Generic,
    List,
    Mapping,
    Optional,
    Sequence,
    Type,
    TypeVar,
    Union,
    cast,
)

from psycopg import AsyncConnection

from clinic_orm.domain.models import BaseEntity
from clinic_orm.errors import NotFoundError, UnsupportedOperationError
from clinic_orm.infrastructure.connection import ConnectionProvider, Row
from clinic_orm.orm.query_builder import QueryBuilder, execute_raw
from clinic_orm.orm.types import UNSET, PaginationResult
from clinic_orm.utils.logging import get_logger

log = get_logger(__name__)

EntityT = TypeVar("EntityT", bound=BaseEntity)
Payload = Union[Mapping[str, Any], BaseEntity]


class RepositoryHooks(Generic[EntityT]):
    """
    Write lifecycle extension points; the defaults change nothing.

    Hooks are coroutines and may run their own queries. They execute on the
    same connection as the write they wrap.
    """

    async def before_create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return data

    async def after_create(self, entity: EntityT) -> None:
        return None

    async def before_update(self, record_id: Any, data: Dict[str, Any]) -> Dict[str, Any]:
        return data

    async def after_update(self, record_id: Any, data: Dict[str, Any]) -> None:
        return None


def sanitize(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Replace ``UNSET`` with ``None``; every other value passes through untouched."""
    return {key: (None if value is UNSET else value) for key, value in data.items()}


class BaseRepository(Generic[EntityT]):
    """
    Data-access façade for one table.

    Subclasses set ``table`` (required) and usually ``model``; tables without
    ``updated_at`` or ``deleted_at`` columns switch the matching flag off.
    """

    table: ClassVar[str]
    model: ClassVar[Type[BaseEntity]] = BaseEntity
    use_timestamps: ClassVar[bool] = True
    use_soft_deletes: ClassVar[bool] = True
    # write updated_by / deleted_by actor columns
    track_actors: ClassVar[bool] = True
    hooks_class: ClassVar[Type[RepositoryHooks]] = RepositoryHooks

    def __init__(
        self,
        connection: Optional[AsyncConnection] = None,
        *,
        hooks: Optional[RepositoryHooks[EntityT]] = None,
        provider: Optional[ConnectionProvider] = None,
    ) -> None:
        if not getattr(type(self), "table", None):
            raise TypeError(f"{type(self).__name__} must declare a table name")
        self.connection = connection
        self.hooks: RepositoryHooks[EntityT] = hooks if hooks is not None else self.hooks_class()
        self.provider = provider

    def with_transaction(self, connection: AsyncConnection) -> "BaseRepository[EntityT]":
        """
        Return a new repository of the same class bound to ``connection``.
        """
        return type(self)(connection, hooks=self.hooks, provider=self.provider)

    # --- Query helpers ---

    def new_query(self) -> QueryBuilder[Row]:
        return QueryBuilder(self.table, self.connection, self.provider)

    def query_for(self, table: str) -> QueryBuilder[Row]:
        """Builder for a related table sharing this repository's connection."""
        return QueryBuilder(table, self.connection, self.provider)

    def apply_scopes(self, query: QueryBuilder[Row]) -> QueryBuilder[Row]:
        """Default filters for ``find_all`` and ``paginate``; override per table."""
        return query

    async def raw(self, sql: str, params: Sequence[Any] = ()) -> List[Row]:
        """Run hand-written SQL. No soft-delete filter or scope is applied."""
        result = await execute_raw(sql, params, connection=self.connection, provider=self.provider)
        return result.rows

    def _exclude_deleted(self, query: QueryBuilder[Row], include_deleted: bool) -> QueryBuilder[Row]:
        if self.use_soft_deletes and not include_deleted:
            query.where_null("deleted_at")
        return query

    @staticmethod
    def _match(query: QueryBuilder[Row], criteria: Mapping[str, Any]) -> QueryBuilder[Row]:
        # None matches NULL; "col = NULL" is never true
        for column, value in criteria.items():
            if value is None:
                query.where_null(column)
            else:
                query.where(column, "=", value)
        return query

    def _hydrate(self, row: Mapping[str, Any]) -> EntityT:
        return cast(EntityT, self.model.model_validate(dict(row)))

    @staticmethod
    def _as_dict(data: Payload) -> Dict[str, Any]:
        if isinstance(data, BaseEntity):
            return data.to_row()
        return dict(data)

    @staticmethod
    def _now() -> datetime:
        return datetime.now(UTC)

    # --- Read operations ---

    async def find_by_id(self, record_id: Any, include_deleted: bool = False) -> Optional[EntityT]:
        query = self.new_query().where("id", "=", record_id)
        row = await self._exclude_deleted(query, include_deleted).first()
        return self._hydrate(row) if row else None

    async def find_or_fail(self, record_id: Any, include_deleted: bool = False) -> EntityT:
        """
        Find a record or raise ``NotFoundError`` naming the table and id.
        """
        entity = await self.find_by_id(record_id, include_deleted)
        if entity is None:
            raise NotFoundError(self.table, record_id)
        return entity

    async def find_one_by(
        self, criteria: Mapping[str, Any], include_deleted: bool = False
    ) -> Optional[EntityT]:
        """
        First record matching every ``column == value`` pair.

        A ``None`` value matches NULL.
        Usage: ``await repo.find_one_by({"email": "a@b.c", "status": "active"})``
        """
        query = self._match(self.new_query(), criteria)
        row = await self._exclude_deleted(query, include_deleted).first()
        return self._hydrate(row) if row else None

    async def find_all(self, include_deleted: bool = False) -> List[EntityT]:
        query = self._exclude_deleted(self.new_query(), include_deleted)
        rows = await self.apply_scopes(query).get()
        return [self._hydrate(row) for row in rows]

    async def paginate(
        self, page: int = 1, limit: int = 15, include_deleted: bool = False
    ) -> PaginationResult[EntityT]:
        query = self._exclude_deleted(self.new_query(), include_deleted)
        result = await self.apply_scopes(query).paginate(page, limit)
        return {
            "data": [self._hydrate(row) for row in result["data"]],
            "meta": result["meta"],
        }

    async def count(
        self, criteria: Optional[Mapping[str, Any]] = None, include_deleted: bool = False
    ) -> int:
        query = self._match(self.new_query(), criteria or {})
        return await self._exclude_deleted(query, include_deleted).count()

    async def exists(self, criteria: Mapping[str, Any]) -> bool:
        return await self.count(criteria) > 0

    # --- Write operations ---

    async def create(self, data: Payload) -> EntityT:
        payload = await self.hooks.before_create(self._as_dict(data))

        now = self._now()
        row = {**payload, "created_at": now}
        if self.use_timestamps:
            row["updated_at"] = now

        insert_data = sanitize(row)
        record_id = await self.new_query().insert(insert_data)

        entity = self._hydrate({**insert_data, "id": record_id})
        await self.hooks.after_create(entity)
        log.debug("record created", extra={"table": self.table, "record_id": record_id})
        return entity

    async def create_many(self, rows: Sequence[Payload]) -> int:
        """Bulk insert with timestamps and sanitization. Hooks do not run."""
        if not rows:
            return 0

        now = self._now()
        insert_rows = []
        for item in rows:
            row = {**self._as_dict(item), "created_at": now}
            if self.use_timestamps:
                row["updated_at"] = now
            insert_rows.append(sanitize(row))

        inserted = await self.new_query().insert_many(insert_rows)
        log.debug("records created", extra={"table": self.table, "rowcount": inserted})
        return inserted

    async def update(
        self, record_id: Any, data: Payload, updated_by: Optional[int] = None
    ) -> bool:
        payload = await self.hooks.before_update(record_id, self._as_dict(data))

        if self.use_timestamps:
            payload["updated_at"] = self._now()
        if self.track_actors and updated_by is not None and "updated_by" not in payload:
            payload["updated_by"] = updated_by

        clean = sanitize(payload)
        query = self.new_query().where("id", "=", record_id)
        if self.use_soft_deletes:
            query.where_null("deleted_at")

        affected = await query.update(clean)
        if affected > 0:
            await self.hooks.after_update(record_id, clean)
            log.debug("record updated", extra={"table": self.table, "record_id": record_id})
        return affected > 0

    async def save(self, data: Payload) -> Union[EntityT, bool]:
        """
        Update when the payload carries an ``id``, create otherwise.
        """
        payload = self._as_dict(data)
        record_id = payload.pop("id", None)
        if record_id is not None:
            return await self.update(record_id, payload)
        return await self.create(payload)

    # --- Delete operations ---

    def _require_soft_deletes(self, operation: str) -> None:
        if not self.use_soft_deletes:
            raise UnsupportedOperationError(f"{self.table} does not support {operation}")

    async def soft_delete(self, record_id: Any, deleted_by: Optional[int] = None) -> bool:
        self._require_soft_deletes("soft deletes")

        data: Dict[str, Any] = {"deleted_at": self._now()}
        if self.track_actors and deleted_by is not None:
            data["deleted_by"] = deleted_by

        affected = await (
            self.new_query().where("id", "=", record_id).where_null("deleted_at").update(data)
        )
        log.debug(
            "record soft-deleted",
            extra={"table": self.table, "record_id": record_id, "rowcount": affected},
        )
        return affected > 0

    async def hard_delete(self, record_id: Any) -> bool:
        affected = await self.new_query().where("id", "=", record_id).delete()
        log.debug(
            "record deleted",
            extra={"table": self.table, "record_id": record_id, "rowcount": affected},
        )
        return affected > 0

    async def restore(self, record_id: Any) -> bool:
        self._require_soft_deletes("restore")

        data: Dict[str, Any] = {"deleted_at": None}
        if self.track_actors:
            data["deleted_by"] = None

        affected = await (
            self.new_query().where("id", "=", record_id).where_not_null("deleted_at").update(data)
        )
        log.debug(
            "record restored",
            extra={"table": self.table, "record_id": record_id, "rowcount": affected},
        )
        return affected > 0


__all__ = ["BaseRepository", "RepositoryHooks", "sanitize"]
