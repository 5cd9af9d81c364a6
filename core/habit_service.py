from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from core.clock import add_local_days, as_utc, local_day_key, resolve_tz
from core.errors import NotFound, NotOwned
from core.locks import acquire, bounded, habit_tick_key
from core.schedule import dump_schedule, is_due, parse_schedule, parse_time_of_day
from entity.repositories.events_repo import EventsRepo
from entity.repositories.habits_repo import HabitsRepo
from entity.repositories.locks_repo import LocksRepo
from entity.repositories.users_repo import UsersRepo

log = logging.getLogger("habits")

NOT_SCHEDULED = "not_scheduled"
BEFORE_LAST_COMPLETION = "before_last_completion"

DEFAULT_COLOR = "emerald"
DEFAULT_REMINDER_TIME = "08:00"


@dataclass(frozen=True)
class TickResult:
    accepted: bool
    idempotent: bool = False
    streak: int = 0
    reason: str | None = None
    local_day: str | None = None
    completed_at: datetime | None = None


class HabitService:
    """CRUD + idempotent completion ("tick") for habits.

    Exactly-once per (owner, habit, local day) comes from the lock service,
    backed up by a compare-and-set on last_completed_at. Nothing is cached
    between calls; every tick re-reads the habit.
    """

    def __init__(self, db, settings, locks=None):
        self.settings = settings
        self.habits = HabitsRepo(db)
        self.users = UsersRepo(db)
        self.events = EventsRepo(db)
        self.locks = locks or LocksRepo(db)

    def _now_utc(self) -> datetime:
        return datetime.now(timezone.utc)

    async def _user_tz(self, user_id) -> ZoneInfo:
        tz_name = await self.users.get_timezone(user_id) or self.settings.default_timezone
        return resolve_tz(tz_name)

    async def _emit(self, user_id, kind: str, payload: dict):
        try:
            await self.events.record(user_id, kind, payload)
        except Exception:
            log.exception("event sink failed kind=%s user=%s", kind, user_id)

    @staticmethod
    def _schedule_text(raw) -> str:
        desc = parse_schedule(raw)
        if isinstance(raw, str):
            return raw.strip()
        return dump_schedule(desc)

    async def get_owned(self, user_id, habit_id):
        h = await self.habits.get(habit_id)
        if not h:
            raise NotFound(f"habit {habit_id} not found")
        if str(h["user_id"]) != str(user_id):
            raise NotOwned(f"habit {habit_id} is not owned by {user_id}")
        return h

    # ----------------------------
    # CRUD
    # ----------------------------
    @staticmethod
    def _color(raw) -> str:
        return (str(raw).strip()[:32] if raw is not None else "") or DEFAULT_COLOR

    @staticmethod
    def _context(raw) -> dict:
        if raw is None:
            return {}
        if not isinstance(raw, dict):
            raise ValueError("habit context must be an object")
        return raw

    @staticmethod
    def _reminder_time(raw) -> str:
        return parse_time_of_day(raw) or DEFAULT_REMINDER_TIME

    async def create(
        self,
        user_id,
        title: str,
        schedule,
        color: str | None = None,
        context: dict | None = None,
        reminder_enabled: bool = False,
        reminder_time: str | None = None,
    ) -> int:
        title = (title or "").strip()[:200] or "Habit"
        schedule_json = self._schedule_text(schedule)
        color = self._color(color)
        context = self._context(context)
        reminder_time = self._reminder_time(reminder_time)
        habit_id = await self.habits.create(
            user_id, title, schedule_json, color, context, bool(reminder_enabled), reminder_time
        )
        await self._emit(
            user_id,
            "habit_created",
            {
                "habit_id": habit_id,
                "title": title,
                "color": color,
                "reminder_enabled": bool(reminder_enabled),
                "reminder_time": reminder_time,
            },
        )
        return habit_id

    async def list_for_user(self, user_id):
        return await self.habits.list_for_user(user_id)

    async def list_for_day(self, user_id, when: datetime | None = None) -> list[dict]:
        """Habits due on the owner's local day of `when`, each with a status."""

        tz = await self._user_tz(user_id)
        now = as_utc(when) if when else self._now_utc()
        today = local_day_key(now, tz)
        out = []
        for h in await self.habits.list_for_user(user_id):
            if not is_due(parse_schedule(h["schedule_json"]), now, tz):
                continue
            last = h.get("last_completed_at")
            done = bool(last) and local_day_key(last, tz) == today
            out.append({**h, "status": "completed_today" if done else "pending"})
        return out

    async def update(
        self,
        user_id,
        habit_id,
        title: str | None = None,
        schedule=None,
        color: str | None = None,
        context: dict | None = None,
        reminder_enabled: bool | None = None,
        reminder_time: str | None = None,
    ) -> dict:
        """Partial update; None leaves a field as stored. Returns the merged row."""

        h = await self.get_owned(user_id, habit_id)
        changes = {}
        if title is not None and title.strip():
            changes["title"] = title.strip()[:200]
        if schedule is not None:
            changes["schedule_json"] = self._schedule_text(schedule)
        if color is not None:
            changes["color"] = self._color(color)
        if context is not None:
            changes["context_json"] = self._context(context)
        if reminder_enabled is not None:
            changes["reminder_enabled"] = bool(reminder_enabled)
        if reminder_time is not None:
            changes["reminder_time"] = self._reminder_time(reminder_time)

        merged = {**h, **changes}
        if not changes:
            return merged
        await self.habits.update(
            habit_id,
            user_id,
            merged["title"],
            merged["schedule_json"],
            merged.get("color") or DEFAULT_COLOR,
            merged.get("context_json") or {},
            bool(merged.get("reminder_enabled")),
            merged.get("reminder_time") or DEFAULT_REMINDER_TIME,
        )
        await self._emit(user_id, "habit_updated", {"habit_id": habit_id, "changes": changes})
        return merged

    async def delete(self, user_id, habit_id) -> bool:
        """Pending tick locks for the habit are left to expire."""

        h = await self.get_owned(user_id, habit_id)
        ok = await self.habits.delete(habit_id, user_id) > 0
        if ok:
            await self._emit(user_id, "habit_deleted", {"habit_id": habit_id, "title": h.get("title")})
        return ok

    # ----------------------------
    # Completion
    # ----------------------------
    @staticmethod
    def next_streak(streak: int, last_completed_at: datetime | None, now: datetime, tz) -> int:
        """streak + 1 if the previous completion was on the local day before `now`, else 1."""

        if not last_completed_at:
            return 1
        yesterday = local_day_key(add_local_days(now, tz, -1), tz)
        if local_day_key(last_completed_at, tz) == yesterday:
            return int(streak) + 1
        return 1

    @staticmethod
    def _idempotent(h, day_key: str) -> TickResult:
        return TickResult(
            accepted=True,
            idempotent=True,
            streak=int(h.get("streak") or 0),
            local_day=day_key,
            completed_at=h.get("last_completed_at"),
        )

    async def tick(self, user_id, habit_id, as_of: datetime | None = None, client_key: str | None = None) -> TickResult:
        return await bounded(
            self._tick(user_id, habit_id, as_of, client_key),
            self.settings.operation_timeout_seconds,
            f"tick habit={habit_id}",
        )

    async def _tick(self, user_id, habit_id, as_of, client_key) -> TickResult:
        h = await self.get_owned(user_id, habit_id)
        tz = await self._user_tz(user_id)
        now = as_utc(as_of) if as_of else self._now_utc()
        day_key = local_day_key(now, tz)

        if not is_due(parse_schedule(h["schedule_json"]), now, tz):
            log.debug("tick not scheduled habit=%s day=%s", habit_id, day_key)
            return TickResult(
                accepted=False,
                streak=int(h.get("streak") or 0),
                reason=NOT_SCHEDULED,
                local_day=day_key,
            )

        key = habit_tick_key(user_id, habit_id, day_key, client_key)
        ttl = timedelta(hours=self.settings.habit_lock_ttl_hours)
        if not await acquire(self.locks, key, ttl):
            log.debug("tick lock held habit=%s day=%s", habit_id, day_key)
            return self._idempotent(await self.get_owned(user_id, habit_id), day_key)

        # Lock won: decide on freshly read state.
        h = await self.get_owned(user_id, habit_id)
        last = h.get("last_completed_at")
        if last:
            last_key = local_day_key(last, tz)
            if last_key == day_key:
                return self._idempotent(h, day_key)
            if last_key > day_key:
                log.info("tick before last completion habit=%s day=%s last=%s", habit_id, day_key, last_key)
                return TickResult(
                    accepted=False,
                    streak=int(h.get("streak") or 0),
                    reason=BEFORE_LAST_COMPLETION,
                    local_day=day_key,
                    completed_at=last,
                )

        old_streak = int(h.get("streak") or 0)
        new_streak = self.next_streak(old_streak, last, now, tz)
        if not await self.habits.record_completion(habit_id, last, now, new_streak):
            # Another request with a different client key completed first.
            return self._idempotent(await self.get_owned(user_id, habit_id), day_key)

        log.info("habit tick habit=%s day=%s streak=%s->%s", habit_id, day_key, old_streak, new_streak)
        await self._emit(
            user_id,
            "habit_tick",
            {
                "habit_id": habit_id,
                "title": h.get("title"),
                "color": h.get("color"),
                "previous_streak": old_streak,
                "streak": new_streak,
                "local_day": day_key,
                "completed_at": now.isoformat(),
            },
        )
        return TickResult(accepted=True, streak=new_streak, local_day=day_key, completed_at=now)
