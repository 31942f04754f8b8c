"""
Domain repositories for the authentication and administration schema.

Each one extends ``BaseRepository`` with its table name, lifecycle flags and
table-specific queries.
"""

from clinic_orm.repositories.audit_logs import AuditLogRepository
from clinic_orm.repositories.login_attempts import LoginAttemptRepository
from clinic_orm.repositories.roles import RoleRepository
from clinic_orm.repositories.users import UserHooks, UserRepository

__all__ = [
    "AuditLogRepository",
    "LoginAttemptRepository",
    "RoleRepository",
    "UserHooks",
    "UserRepository",
]
