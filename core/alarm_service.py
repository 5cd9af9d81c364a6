from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from core.clock import as_utc, resolve_tz
from core.errors import NotFound, NotOwned
from core.locks import acquire, alarm_fire_key, bounded
from core.recurrence import next_fire_after, parse_rule, validate_rule
from entity.repositories.alarms_repo import AlarmsRepo
from entity.repositories.events_repo import EventsRepo
from entity.repositories.locks_repo import LocksRepo
from entity.repositories.users_repo import UsersRepo

log = logging.getLogger("alarms")

DISABLED = "disabled"

TONES = ("strict", "balanced", "light")
DEFAULT_TONE = "balanced"


@dataclass(frozen=True)
class FireResult:
    accepted: bool
    deduplicated: bool = False
    reason: str | None = None
    next_fire_at: datetime | None = None
    fired_at: datetime | None = None


@dataclass(frozen=True)
class DismissResult:
    accepted: bool
    snoozed: bool = False
    reason: str | None = None
    next_fire_at: datetime | None = None


class AlarmService:
    """CRUD + fire/dismiss/snooze for alarms.

    next_fire_at is only ever produced by next_fire_after (or a snooze) and is
    always strictly after the instant being processed. A ONCE alarm that has
    nothing left to fire is disabled instead of rescheduled; a snooze on it
    re-arms it for the snooze interval.
    """

    def __init__(self, db, settings, locks=None):
        self.settings = settings
        self.alarms = AlarmsRepo(db)
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

    def _next(self, rule: str, after: datetime, tz) -> datetime | None:
        return next_fire_after(
            rule,
            after,
            tz,
            default_hour=self.settings.alarm_default_hour,
            default_minute=self.settings.alarm_default_minute,
        )

    async def _advance(self, alarm_id, next_fire_at: datetime | None):
        if next_fire_at is None:
            await self.alarms.disable(alarm_id)
        else:
            await self.alarms.set_next_fire_at(alarm_id, next_fire_at)

    @staticmethod
    def _spent_once(rule: str, now: datetime) -> bool:
        r = parse_rule(rule)
        return r.freq == "ONCE" and (r.fire_at is None or r.fire_at <= now)

    async def get_owned(self, user_id, alarm_id):
        a = await self.alarms.get(alarm_id)
        if not a:
            raise NotFound(f"alarm {alarm_id} not found")
        if str(a["user_id"]) != str(user_id):
            raise NotOwned(f"alarm {alarm_id} is not owned by {user_id}")
        return a

    # ----------------------------
    # CRUD
    # ----------------------------
    @staticmethod
    def _tone(raw) -> str:
        tone = (raw or DEFAULT_TONE).strip().lower()
        if tone not in TONES:
            raise ValueError(f"unknown alarm tone: {raw!r}")
        return tone

    async def create(self, user_id, label: str, rule: str, enabled: bool = True, tone: str | None = None) -> int:
        validate_rule(rule)
        rule = rule.strip()
        label = (label or "").strip()[:200] or "Alarm"
        tone = self._tone(tone)
        next_fire_at = None
        if enabled:
            next_fire_at = self._next(rule, self._now_utc(), await self._user_tz(user_id))
            # A ONCE alarm in the past has nothing to fire.
            enabled = next_fire_at is not None
        alarm_id = await self.alarms.create(user_id, label, rule, tone, enabled, next_fire_at)
        await self._emit(
            user_id,
            "alarm_created",
            {"alarm_id": alarm_id, "label": label, "rrule": rule, "tone": tone, "next_fire_at": next_fire_at},
        )
        return alarm_id

    async def list_for_user(self, user_id):
        return await self.alarms.list_for_user(user_id)

    async def update(
        self,
        user_id,
        alarm_id,
        label: str | None = None,
        rule: str | None = None,
        enabled: bool | None = None,
        tone: str | None = None,
    ) -> dict:
        a = await self.get_owned(user_id, alarm_id)
        if rule is not None:
            validate_rule(rule)
            rule = rule.strip()
        if tone is not None:
            tone = self._tone(tone)
        new_tone = tone or a.get("tone") or DEFAULT_TONE

        new_label = a["label"]
        if label is not None and label.strip():
            new_label = label.strip()[:200]
        new_rule = rule if rule is not None else a["rrule"]
        new_enabled = bool(enabled) if enabled is not None else bool(a["enabled"])

        next_fire_at = a.get("next_fire_at")
        if not new_enabled:
            next_fire_at = None
        elif rule is not None or not a["enabled"] or next_fire_at is None:
            next_fire_at = self._next(new_rule, self._now_utc(), await self._user_tz(user_id))
            new_enabled = next_fire_at is not None

        await self.alarms.update(alarm_id, user_id, new_label, new_rule, new_tone, new_enabled, next_fire_at)
        changes = {"label": label, "rrule": rule, "enabled": enabled, "tone": tone}
        await self._emit(
            user_id,
            "alarm_updated",
            {
                "alarm_id": alarm_id,
                "changes": {k: v for k, v in changes.items() if v is not None},
                "next_fire_at": next_fire_at,
            },
        )
        return {
            **a,
            "label": new_label,
            "rrule": new_rule,
            "tone": new_tone,
            "enabled": new_enabled,
            "next_fire_at": next_fire_at,
        }

    async def delete(self, user_id, alarm_id) -> bool:
        await self.get_owned(user_id, alarm_id)
        ok = await self.alarms.delete(alarm_id, user_id) > 0
        if ok:
            await self._emit(user_id, "alarm_deleted", {"alarm_id": alarm_id})
        return ok

    # ----------------------------
    # Fire / dismiss
    # ----------------------------
    async def fire_alarm(self, user_id, alarm_id, as_of: datetime | None = None) -> FireResult:
        return await bounded(
            self._fire(user_id, alarm_id, as_of),
            self.settings.operation_timeout_seconds,
            f"fire alarm={alarm_id}",
        )

    async def _fire(self, user_id, alarm_id, as_of) -> FireResult:
        a = await self.get_owned(user_id, alarm_id)
        if not a["enabled"]:
            return FireResult(accepted=False, reason=DISABLED)

        now = as_utc(as_of) if as_of else self._now_utc()
        key = alarm_fire_key(user_id, alarm_id)
        if not await acquire(self.locks, key, timedelta(seconds=self.settings.alarm_dedup_seconds)):
            log.debug("alarm fire deduplicated alarm=%s", alarm_id)
            return FireResult(accepted=True, deduplicated=True, next_fire_at=a.get("next_fire_at"))

        a = await self.get_owned(user_id, alarm_id)
        tz = await self._user_tz(user_id)
        await self._emit(
            user_id,
            "alarm_fired",
            {
                "alarm_id": alarm_id,
                "label": a.get("label"),
                "tone": a.get("tone"),
                "fired_at": now.isoformat(),
            },
        )
        next_fire_at = self._next(a["rrule"], now, tz)
        await self._advance(alarm_id, next_fire_at)
        log.info("alarm fired alarm=%s next=%s", alarm_id, next_fire_at)
        return FireResult(accepted=True, next_fire_at=next_fire_at, fired_at=now)

    async def dismiss_alarm(
        self,
        user_id,
        alarm_id,
        as_of: datetime | None = None,
        snooze_minutes: int | None = None,
    ) -> DismissResult:
        return await bounded(
            self._dismiss(user_id, alarm_id, as_of, snooze_minutes),
            self.settings.operation_timeout_seconds,
            f"dismiss alarm={alarm_id}",
        )

    async def _dismiss(self, user_id, alarm_id, as_of, snooze_minutes) -> DismissResult:
        a = await self.get_owned(user_id, alarm_id)
        now = as_utc(as_of) if as_of else self._now_utc()
        snoozed = bool(snooze_minutes) and int(snooze_minutes) > 0

        if not a["enabled"]:
            # A ONCE alarm is disabled as soon as it rings; snoozing it re-arms it.
            if not (snoozed and self._spent_once(a["rrule"], now)):
                return DismissResult(accepted=False, reason=DISABLED)
            next_fire_at = now + timedelta(minutes=int(snooze_minutes))
            await self.alarms.update(
                alarm_id,
                user_id,
                a["label"],
                a["rrule"],
                a.get("tone") or DEFAULT_TONE,
                True,
                next_fire_at,
            )
        elif snoozed:
            next_fire_at = now + timedelta(minutes=int(snooze_minutes))
            await self._advance(alarm_id, next_fire_at)
        else:
            next_fire_at = self._next(a["rrule"], now, await self._user_tz(user_id))
            await self._advance(alarm_id, next_fire_at)

        await self._emit(
            user_id,
            "alarm_dismissed",
            {
                "alarm_id": alarm_id,
                "snoozed": snoozed,
                "snooze_minutes": int(snooze_minutes) if snoozed else 0,
                "next_fire_at": next_fire_at,
            },
        )
        return DismissResult(accepted=True, snoozed=snoozed, next_fire_at=next_fire_at)
