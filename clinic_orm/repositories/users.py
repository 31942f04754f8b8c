from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from clinic_orm.domain.models import Permission, Role, User, UserStatus
from clinic_orm.orm.repository import BaseRepository, RepositoryHooks
from clinic_orm.orm.types import PaginationResult


class UserHooks(RepositoryHooks[User]):
    """Emails are stored trimmed and lower-cased so lookups are case-insensitive."""

    async def before_create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return _normalize_email(data)

    async def before_update(self, record_id: Any, data: Dict[str, Any]) -> Dict[str, Any]:
        return _normalize_email(data)


def _normalize_email(data: Dict[str, Any]) -> Dict[str, Any]:
    email = data.get("email")
    if isinstance(email, str):
        data = {**data, "email": email.strip().lower()}
    return data


class UserRepository(BaseRepository[User]):
    table = "users"
    model = User
    hooks_class = UserHooks

    async def find_by_email(self, email: str, include_deleted: bool = False) -> Optional[User]:
        return await self.find_one_by({"email": email.strip().lower()}, include_deleted)

    async def find_by_email_with_role(self, email: str) -> Optional[User]:
        """
        User joined with its role; the role lands on the ``role`` attribute.
        """
        row = await (
            self.new_query()
            .select(
                "users.*",
                "roles.name AS role_name",
                "roles.display_name AS role_display_name",
                "roles.description AS role_description",
                "roles.is_system_role AS role_is_system_role",
            )
            .left_join("roles", "users.role_id", "=", "roles.id")
            .where("users.email", "=", email.strip().lower())
            .where_null("users.deleted_at")
            .first()
        )
        if row is None:
            return None

        role_fields = {
            "name": row.pop("role_name", None),
            "display_name": row.pop("role_display_name", None),
            "description": row.pop("role_description", None),
            "is_system_role": row.pop("role_is_system_role", None),
        }
        role = Role(id=row["role_id"], **role_fields) if row.get("role_id") else None
        return self._hydrate({**row, "role": role})

    async def get_permissions(self, user_id: int) -> List[Permission]:
        rows = await self.raw(
            """
            SELECT DISTINCT p.* FROM permissions p
            JOIN role_permissions rp ON p.id = rp.permission_id
            JOIN users u ON u.role_id = rp.role_id
            WHERE u.id = %s AND u.deleted_at IS NULL
            """,
            [user_id],
        )
        return [Permission.model_validate(row) for row in rows]

    async def increment_failed_logins(self, user_id: int) -> None:
        await self.raw(
            "UPDATE users SET failed_login_attempts = failed_login_attempts + 1, "
            "updated_at = NOW() WHERE id = %s",
            [user_id],
        )

    async def reset_failed_logins(self, user_id: int) -> None:
        await self.raw(
            """
            UPDATE users
            SET failed_login_attempts = 0, locked_until = NULL,
                status = CASE WHEN status = 'locked' THEN 'active' ELSE status END,
                updated_at = NOW()
            WHERE id = %s
            """,
            [user_id],
        )

    async def lock_account(self, user_id: int, lock_until: datetime) -> bool:
        return await self.update(user_id, {"status": UserStatus.LOCKED, "locked_until": lock_until})

    async def update_last_login(self, user_id: int) -> bool:
        return await self.update(user_id, {"last_login_at": self._now()})

    async def is_email_taken(self, email: str, exclude_user_id: Optional[int] = None) -> bool:
        query = self.new_query().where("email", "=", email.strip().lower()).where_null("deleted_at")
        if exclude_user_id is not None:
            query.where("id", "!=", exclude_user_id)
        return await query.count() > 0

    async def search(
        self, filters: Mapping[str, Any], page: int = 1, limit: int = 15
    ) -> PaginationResult[User]:
        """
        Filter by ``status``, ``role_id``, ``email_verified`` and a free-text
        ``search`` over email and names.
        """
        query = self.new_query().where_null("deleted_at")

        if filters.get("status"):
            query.where("status", "=", filters["status"])
        if filters.get("role_id"):
            query.where("role_id", "=", filters["role_id"])
        if filters.get("email_verified") is not None:
            query.where("email_verified", "=", bool(filters["email_verified"]))
        if filters.get("search"):
            term = f"%{filters['search']}%"
            query.where_raw(
                "(email ILIKE %s OR first_name ILIKE %s OR last_name ILIKE %s)", [term, term, term]
            )

        result = await query.order_by("created_at", "DESC").paginate(page, limit)
        return {"data": [self._hydrate(row) for row in result["data"]], "meta": result["meta"]}

    async def count_by_role(self, role_id: int) -> int:
        return await self.count({"role_id": role_id})
