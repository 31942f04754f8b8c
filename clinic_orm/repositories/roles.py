from __future__ import annotations

from typing import List, Optional, Sequence

from clinic_orm.domain.models import Permission, Role
from clinic_orm.orm.repository import BaseRepository


class RoleRepository(BaseRepository[Role]):
    table = "roles"
    model = Role
    # roles carry deleted_at but no actor columns
    track_actors = False

    async def find_by_name(self, name: str) -> Optional[Role]:
        return await self.find_one_by({"name": name})

    async def get_permissions(self, role_id: int) -> List[Permission]:
        rows = await (
            self.query_for("permissions")
            .select("permissions.*")
            .join("role_permissions", "permissions.id", "=", "role_permissions.permission_id")
            .where("role_permissions.role_id", "=", role_id)
            .order_by("permissions.resource")
            .get()
        )
        return [Permission.model_validate(row) for row in rows]

    async def add_permissions(self, role_id: int, permission_ids: Sequence[int]) -> int:
        """Attach permissions with one multi-row insert into the pivot table."""
        rows = [{"role_id": role_id, "permission_id": pid} for pid in permission_ids]
        return await self.query_for("role_permissions").insert_many(rows)

    async def clear_permissions(self, role_id: int) -> int:
        return await self.query_for("role_permissions").where("role_id", "=", role_id).delete()

    async def all_permissions(self) -> List[Permission]:
        rows = await (
            self.query_for("permissions").order_by("resource").order_by("action").get()
        )
        return [Permission.model_validate(row) for row in rows]

    async def permissions_exist(self, permission_ids: Sequence[int]) -> bool:
        """True when every id in ``permission_ids`` names an existing permission."""
        unique_ids = set(permission_ids)
        if not unique_ids:
            return True
        found = await self.query_for("permissions").where_in("id", sorted(unique_ids)).count()
        return found == len(unique_ids)
