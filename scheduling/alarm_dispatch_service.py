from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from core.errors import HabitCoreError
from entity.repositories.alarms_repo import AlarmsRepo
from entity.repositories.locks_repo import LocksRepo

log = logging.getLogger("alarm_dispatch")


class AlarmDispatchService:
    """Fires alarms whose next_fire_at has passed.

    Several workers may scan at once: each fire goes through the alarm
    service's dedup lock, so overlapping passes collapse into one fire.
    """

    def __init__(self, db, settings, alarm_service):
        self.settings = settings
        self.alarm_service = alarm_service
        self.alarms = AlarmsRepo(db)
        self.locks = LocksRepo(db)

    def _now_utc(self) -> datetime:
        return datetime.now(timezone.utc)

    async def _fire_one(self, a: dict, now: datetime) -> str:
        try:
            res = await self.alarm_service.fire_alarm(a["user_id"], a["id"], as_of=now)
        except HabitCoreError as e:
            log.warning("alarm dispatch failed alarm=%s retryable=%s: %s", a["id"], e.retryable, e)
            return "failed"
        if not res.accepted:
            return "skipped"
        return "deduplicated" if res.deduplicated else "fired"

    async def dispatch_due(self, now: datetime | None = None) -> dict:
        now = now or self._now_utc()
        due = await self.alarms.list_due(now, limit=self.settings.alarm_dispatch_batch)
        counts = {"fired": 0, "deduplicated": 0, "skipped": 0, "failed": 0}
        if not due:
            return counts

        outcomes = await asyncio.gather(*(self._fire_one(a, now) for a in due))
        for outcome in outcomes:
            counts[outcome] += 1
        log.info("alarm dispatch due=%s %s", len(due), counts)
        return counts

    async def purge_locks(self) -> int:
        removed = await self.locks.purge_expired()
        if removed:
            log.info("purged expired locks=%s", removed)
        return removed
