"""Alarm recurrence rules.

Grammar: ``;``-separated ``KEY=VALUE`` pairs, keys case-insensitive.

    FREQ      ONCE | DAILY | WEEKLY        (missing -> DAILY)
    BYHOUR    0..23                        (missing -> default hour)
    BYMINUTE  0..59                        (missing -> default minute)
    BYDAY     MO,TU,WE,TH,FR,SA,SU         (WEEKLY only, missing -> every day)
    DTSTART   ISO-8601 instant             (ONCE only, required there)

Examples::

    FREQ=DAILY;BYHOUR=7;BYMINUTE=0
    FREQ=WEEKLY;BYDAY=MO,TU,WE,TH,FR;BYHOUR=6;BYMINUTE=30
    FREQ=ONCE;DTSTART=2025-10-01T08:00:00Z
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time, timedelta

from core.clock import as_utc, local_date, resolve_tz
from core.errors import InvalidRecurrence

WEEKDAY_CODES = ("MO", "TU", "WE", "TH", "FR", "SA", "SU")  # index == date.weekday()
FREQUENCIES = ("ONCE", "DAILY", "WEEKLY")
_KEYS = ("FREQ", "BYHOUR", "BYMINUTE", "BYDAY", "DTSTART")

WEEKLY_SCAN_DAYS = 8


@dataclass(frozen=True)
class AlarmRule:
    freq: str = "DAILY"
    hour: int | None = None
    minute: int | None = None
    weekdays: frozenset | None = None  # weekday() indexes; None means every day
    fire_at: datetime | None = None  # ONCE


def _split(text: str) -> list[tuple[str, str]]:
    pairs = []
    for part in (text or "").split(";"):
        part = part.strip()
        if not part:
            continue
        k, sep, v = part.partition("=")
        pairs.append((k.strip().upper(), v.strip() if sep else None))
    return pairs


def _parse_instant(raw: str) -> datetime:
    return as_utc(datetime.fromisoformat(raw.strip().replace("Z", "+00:00").replace("z", "+00:00")))


def _int_in_range(raw: str, lo: int, hi: int, key: str) -> int:
    try:
        v = int(raw)
    except (TypeError, ValueError) as e:
        raise InvalidRecurrence(f"{key} must be an integer, got {raw!r}") from e
    if not lo <= v <= hi:
        raise InvalidRecurrence(f"{key} out of range: {v}")
    return v


def validate_rule(text: str) -> AlarmRule:
    """Strict parse used when a rule is written. Raises InvalidRecurrence."""

    if not isinstance(text, str) or not text.strip():
        raise InvalidRecurrence("empty recurrence rule")

    parts: dict[str, str] = {}
    for k, v in _split(text):
        if v is None:
            raise InvalidRecurrence(f"malformed segment: {k!r}")
        if k not in _KEYS:
            raise InvalidRecurrence(f"unknown rule key: {k}")
        if k in parts:
            raise InvalidRecurrence(f"duplicate rule key: {k}")
        parts[k] = v

    freq = parts.get("FREQ", "DAILY").upper()
    if freq not in FREQUENCIES:
        raise InvalidRecurrence(f"unknown FREQ: {freq}")

    hour = _int_in_range(parts["BYHOUR"], 0, 23, "BYHOUR") if "BYHOUR" in parts else None
    minute = _int_in_range(parts["BYMINUTE"], 0, 59, "BYMINUTE") if "BYMINUTE" in parts else None

    weekdays = None
    if "BYDAY" in parts:
        if freq != "WEEKLY":
            raise InvalidRecurrence("BYDAY is only allowed with FREQ=WEEKLY")
        codes = [c.strip().upper() for c in parts["BYDAY"].split(",") if c.strip()]
        if not codes:
            raise InvalidRecurrence("BYDAY is empty")
        unknown = [c for c in codes if c not in WEEKDAY_CODES]
        if unknown:
            raise InvalidRecurrence(f"unknown BYDAY codes: {','.join(unknown)}")
        weekdays = frozenset(WEEKDAY_CODES.index(c) for c in codes)

    fire_at = None
    if freq == "ONCE":
        if "DTSTART" not in parts:
            raise InvalidRecurrence("FREQ=ONCE requires DTSTART")
        try:
            fire_at = _parse_instant(parts["DTSTART"])
        except ValueError as e:
            raise InvalidRecurrence(f"invalid DTSTART: {parts['DTSTART']!r}") from e

    return AlarmRule(freq=freq, hour=hour, minute=minute, weekdays=weekdays, fire_at=fire_at)


def parse_rule(text: str) -> AlarmRule:
    """Lenient parse for evaluation: stored rules were validated on write.

    Unknown or missing FREQ falls back to DAILY and unusable fields are dropped,
    so evaluation never raises.
    """

    parts = {k: v for k, v in _split(text) if v is not None}
    freq = parts.get("FREQ", "DAILY").upper()

    def _opt(key: str, hi: int) -> int | None:
        try:
            v = int(parts[key])
        except (KeyError, ValueError):
            return None
        return v if 0 <= v <= hi else None

    weekdays = None
    if freq == "WEEKLY" and parts.get("BYDAY"):
        codes = {c.strip().upper() for c in parts["BYDAY"].split(",")}
        weekdays = frozenset(i for i, c in enumerate(WEEKDAY_CODES) if c in codes) or None

    fire_at = None
    if freq == "ONCE":
        try:
            fire_at = _parse_instant(parts.get("DTSTART", ""))
        except ValueError:
            fire_at = None
    elif freq not in FREQUENCIES:
        freq = "DAILY"

    return AlarmRule(freq=freq, hour=_opt("BYHOUR", 23), minute=_opt("BYMINUTE", 59), weekdays=weekdays, fire_at=fire_at)


def next_fire_after(
    rule,
    from_instant: datetime,
    tz="UTC",
    *,
    default_hour: int = 9,
    default_minute: int = 0,
) -> datetime | None:
    """Next fire instant (UTC) strictly after `from_instant`, or None when a ONCE rule is spent.

    The target time of day is wall-clock time in `tz`.
    """

    r = rule if isinstance(rule, AlarmRule) else parse_rule(rule)
    zone = resolve_tz(tz)
    now = as_utc(from_instant)

    if r.freq == "ONCE":
        if r.fire_at is not None and r.fire_at > now:
            return r.fire_at
        return None

    target = time(
        r.hour if r.hour is not None else default_hour,
        r.minute if r.minute is not None else default_minute,
    )
    today = local_date(now, zone)

    def at(offset: int) -> datetime:
        return as_utc(datetime.combine(today + timedelta(days=offset), target, tzinfo=zone))

    if r.freq == "WEEKLY":
        allowed = r.weekdays if r.weekdays is not None else frozenset(range(7))
        for i in range(WEEKLY_SCAN_DAYS):
            day = today + timedelta(days=i)
            if day.weekday() not in allowed:
                continue
            candidate = at(i)
            if candidate > now:
                return candidate
        return at(7)

    # DAILY
    candidate = at(0)
    if candidate > now:
        return candidate
    return at(1)
