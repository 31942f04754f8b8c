from __future__ import annotations

from typing import Any, List, Mapping

from clinic_orm.domain.models import AuditLog
from clinic_orm.infrastructure.connection import Row
from clinic_orm.orm.query_builder import QueryBuilder
from clinic_orm.orm.repository import BaseRepository
from clinic_orm.orm.types import PaginationResult


class AuditLogRepository(BaseRepository[AuditLog]):
    """
    Append-only audit trail: rows are never updated or soft-deleted.
    """

    table = "audit_logs"
    model = AuditLog
    use_timestamps = False
    use_soft_deletes = False
    track_actors = False

    async def search(
        self, filters: Mapping[str, Any], page: int = 1, limit: int = 15
    ) -> PaginationResult[AuditLog]:
        query = self._filter_query(filters).order_by("created_at", "DESC")
        result = await query.paginate(page, limit)
        return {"data": [self._hydrate(row) for row in result["data"]], "meta": result["meta"]}

    async def find_by_entity(self, entity_type: str, entity_id: int) -> List[AuditLog]:
        rows = await (
            self.new_query()
            .where("entity_type", "=", entity_type)
            .where("entity_id", "=", entity_id)
            .order_by("created_at", "DESC")
            .get()
        )
        return [self._hydrate(row) for row in rows]

    async def find_by_user(self, user_id: int, limit: int = 50) -> List[AuditLog]:
        rows = await (
            self.new_query()
            .where("user_id", "=", user_id)
            .order_by("created_at", "DESC")
            .limit(limit)
            .get()
        )
        return [self._hydrate(row) for row in rows]

    def _filter_query(self, filters: Mapping[str, Any]) -> QueryBuilder[Row]:
        query = self.new_query()

        if filters.get("user_id"):
            query.where("user_id", "=", filters["user_id"])
        if filters.get("action"):
            query.where("action", "=", filters["action"])
        if filters.get("entity_type"):
            query.where("entity_type", "=", filters["entity_type"])
        if filters.get("entity_id"):
            query.where("entity_id", "=", filters["entity_id"])
        if filters.get("start_date"):
            query.where("created_at", ">=", filters["start_date"])
        if filters.get("end_date"):
            query.where("created_at", "<=", filters["end_date"])

        return query
