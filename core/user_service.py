from __future__ import annotations

import logging

from core.clock import resolve_tz
from core.errors import NotFound
from entity.repositories.users_repo import UsersRepo

log = logging.getLogger("users")


class UserService:
    """Owners and their IANA timezone. A timezone is validated before it is stored."""

    def __init__(self, db, settings):
        self.settings = settings
        self.users = UsersRepo(db)

    @staticmethod
    def _tz_name(tz: str | None) -> str | None:
        if tz is None:
            return None
        return resolve_tz(tz).key

    async def register(self, user_id, display_name: str | None = None, tz: str | None = None):
        tz_name = self._tz_name(tz)
        name = (display_name or "").strip()[:200] or None
        await self.users.upsert_user(user_id, name, tz_name)
        return await self.get(user_id)

    async def get(self, user_id) -> dict:
        u = await self.users.get_user(user_id)
        if not u:
            raise NotFound(f"user {user_id} not found")
        return u

    async def set_timezone(self, user_id, tz: str) -> str:
        await self.get(user_id)
        tz_name = self._tz_name(tz)
        await self.users.set_timezone(user_id, tz_name)
        log.info("timezone set user=%s tz=%s", user_id, tz_name)
        return tz_name

    async def timezone_for(self, user_id) -> str:
        return await self.users.get_timezone(user_id) or self.settings.default_timezone
