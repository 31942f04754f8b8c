from __future__ import annotations

from datetime import timedelta
from typing import Optional

from clinic_orm.domain.models import LoginAttempt
from clinic_orm.orm.repository import BaseRepository
from clinic_orm.orm.types import UNSET


class LoginAttemptRepository(BaseRepository[LoginAttempt]):
    table = "login_attempts"
    model = LoginAttempt
    use_timestamps = False
    use_soft_deletes = False
    track_actors = False

    async def log_attempt(
        self,
        email: str,
        ip_address: str,
        user_agent: Optional[str],
        success: bool,
        user_id: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> LoginAttempt:
        # user_id and failure_reason are always written, as NULL when absent
        return await self.create(
            {
                "email": email,
                "ip_address": ip_address,
                "user_agent": user_agent,
                "success": success,
                "user_id": UNSET if user_id is None else user_id,
                "failure_reason": UNSET if reason is None else reason,
            }
        )

    async def recent_failed_attempts(self, email: str, minutes_ago: int = 15) -> int:
        since = self._now() - timedelta(minutes=minutes_ago)
        return await (
            self.new_query()
            .where("email", "=", email)
            .where("success", "=", False)
            .where("created_at", ">", since)
            .count()
        )
