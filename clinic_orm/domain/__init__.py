"""
Domain package for clinic-orm.

Exports the entity models hydrated by the repositories. Keep this package
focused on data definitions and validation concerns.
"""

from clinic_orm.domain.models import (
    AuditLog,
    BaseEntity,
    LoginAttempt,
    Permission,
    Role,
    User,
    UserStatus,
)

__all__ = [
    "AuditLog",
    "BaseEntity",
    "LoginAttempt",
    "Permission",
    "Role",
    "User",
    "UserStatus",
]
