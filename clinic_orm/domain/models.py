"""
Domain entities for clinic-orm.

``BaseEntity`` is an open record: it types the lifecycle columns every table
shares (``id``, timestamps, soft-delete marker) and accepts any other column
as an extra attribute. Per-table models add the columns callers rely on.
Field names match the columns in `db/init.sql`.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class BaseEntity(BaseModel):
    """
    Any persisted record.
    """

    id: Optional[int] = Field(None, description="Primary key; immutable once assigned.")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def to_row(self) -> Dict[str, Any]:
        """Columns explicitly set on this entity, ready for a write."""
        return self.model_dump(exclude_unset=True)


class Permission(BaseEntity):
    name: Optional[str] = None
    display_name: Optional[str] = None
    resource: Optional[str] = None
    action: Optional[str] = None
    description: Optional[str] = None


class Role(BaseEntity):
    name: Optional[str] = None
    display_name: Optional[str] = None
    description: Optional[str] = None
    is_system_role: Optional[bool] = False


class User(BaseEntity):
    email: Optional[str] = None
    password_hash: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    role_id: Optional[int] = None
    status: Optional[str] = "active"
    email_verified: Optional[bool] = False
    failed_login_attempts: Optional[int] = 0
    locked_until: Optional[datetime] = None
    last_login_at: Optional[datetime] = None


class AuditLog(BaseEntity):
    user_id: Optional[int] = None
    action: Optional[str] = None
    entity_type: Optional[str] = None
    entity_id: Optional[int] = None
    old_values: Optional[Dict[str, Any]] = None
    new_values: Optional[Dict[str, Any]] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


class LoginAttempt(BaseEntity):
    email: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    success: Optional[bool] = None
    user_id: Optional[int] = None
    failure_reason: Optional[str] = None


class UserStatus:
    ACTIVE = "active"
    INACTIVE = "inactive"
    LOCKED = "locked"
    SUSPENDED = "suspended"


__all__ = [
    "BaseEntity",
    "Permission",
    "Role",
    "User",
    "AuditLog",
    "LoginAttempt",
    "UserStatus",
]
