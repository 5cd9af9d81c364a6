from __future__ import annotations

import json
import re
from dataclasses import dataclass
from datetime import date, datetime, time

from dateutil.rrule import rrulestr

from core.clock import local_date, local_day_bounds, resolve_tz
from core.errors import InvalidRecurrence

DAY_NAMES = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")  # index == date.weekday()
_WEEK_ORDER = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")

_HHMM_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")

# Sub-daily frequencies are refused: a day would expand into too many occurrences.
RULE_FREQUENCIES = ("DAILY", "WEEKLY", "MONTHLY", "YEARLY")
DEFAULT_RULE_START = date(2000, 1, 1)


@dataclass(frozen=True)
class Daily:
    time: str | None = None


@dataclass(frozen=True)
class Weekdays:
    time: str | None = None


@dataclass(frozen=True)
class Weekends:
    time: str | None = None


@dataclass(frozen=True)
class DaysOfWeek:
    days: frozenset = frozenset()
    time: str | None = None


@dataclass(frozen=True)
class EveryN:
    interval_days: int
    anchor_date: date
    time: str | None = None


@dataclass(frozen=True)
class RuleString:
    rule: str
    start_date: date | None = None
    time: str | None = None


ScheduleDescriptor = Daily | Weekdays | Weekends | DaysOfWeek | EveryN | RuleString


# ----------------------------
# Parsing / validation
# ----------------------------
def parse_time_of_day(raw) -> str | None:
    if raw is None:
        return None
    s = str(raw).strip()
    if not _HHMM_RE.match(s):
        raise InvalidRecurrence(f"invalid time of day: {raw!r}")
    return s


def _parse_date(raw, field: str) -> date:
    try:
        return date.fromisoformat(str(raw).strip()[:10])
    except (TypeError, ValueError) as e:
        raise InvalidRecurrence(f"invalid {field}: {raw!r}") from e


def _parse_days(raw) -> frozenset:
    if not isinstance(raw, (list, tuple, set, frozenset)):
        raise InvalidRecurrence("daysOfWeek.days must be a list")
    days = set()
    for d in raw:
        name = str(d).strip().lower()
        if name not in DAY_NAMES:
            raise InvalidRecurrence(f"unknown weekday: {d!r}")
        days.add(name)
    return frozenset(days)


def build_rule(rule: str, tz, start_date: date | None = None):
    """dateutil rule anchored at local midnight of `start_date` in `tz`."""

    dtstart = datetime.combine(start_date or DEFAULT_RULE_START, time(0, 0), tzinfo=resolve_tz(tz))
    return rrulestr(rule, dtstart=dtstart, cache=False)


def validate_rule_string(rule) -> str:
    text = (rule or "").strip() if isinstance(rule, str) else ""
    if not text:
        raise InvalidRecurrence("empty recurrence rule")
    if "\n" in text or "DTSTART" in text.upper():
        raise InvalidRecurrence("only a single RRULE line is supported")
    body = text.upper()
    if body.startswith("RRULE:"):
        body = body[len("RRULE:"):]
    parts = {}
    for part in body.split(";"):
        k, _, v = part.partition("=")
        parts[k.strip()] = v.strip()
    freq = parts.get("FREQ")
    if not freq:
        raise InvalidRecurrence("recurrence rule has no FREQ")
    if freq not in RULE_FREQUENCIES:
        raise InvalidRecurrence(f"unsupported FREQ: {freq}")
    # Due-ness is per day: at most one occurrence per day keeps evaluation cheap.
    if "BYSECOND" in parts:
        raise InvalidRecurrence("BYSECOND is not supported")
    for key in ("BYHOUR", "BYMINUTE"):
        if "," in parts.get(key, ""):
            raise InvalidRecurrence(f"{key} takes a single value")
    try:
        build_rule(text, "UTC")
    except (ValueError, TypeError, KeyError) as e:
        raise InvalidRecurrence(f"invalid recurrence rule: {e}") from e
    return text


def parse_schedule(raw) -> ScheduleDescriptor:
    """Parse the stored schedule format into a descriptor. Anything unrecognised is rejected."""

    if isinstance(raw, (Daily, Weekdays, Weekends, DaysOfWeek, EveryN, RuleString)):
        return raw
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            raise InvalidRecurrence("schedule is not valid JSON") from e
    if not isinstance(raw, dict):
        raise InvalidRecurrence("schedule must be an object")

    kind = raw.get("type")
    t = parse_time_of_day(raw.get("time"))
    if kind == "daily":
        return Daily(time=t)
    if kind == "weekdays":
        return Weekdays(time=t)
    if kind == "weekends":
        return Weekends(time=t)
    if kind == "daysOfWeek":
        return DaysOfWeek(days=_parse_days(raw.get("days", [])), time=t)
    if kind == "everyN":
        every = raw.get("every")
        if isinstance(every, bool) or not isinstance(every, int) or every <= 0:
            raise InvalidRecurrence(f"everyN.every must be a positive integer, got {every!r}")
        return EveryN(interval_days=every, anchor_date=_parse_date(raw.get("startDate"), "startDate"), time=t)
    if kind == "rrule":
        start = raw.get("startDate")
        return RuleString(
            rule=validate_rule_string(raw.get("rule")),
            start_date=_parse_date(start, "startDate") if start else None,
            time=t,
        )
    raise InvalidRecurrence(f"unknown schedule type: {kind!r}")


def dump_schedule(s: ScheduleDescriptor) -> str:
    if isinstance(s, Daily):
        out = {"type": "daily"}
    elif isinstance(s, Weekdays):
        out = {"type": "weekdays"}
    elif isinstance(s, Weekends):
        out = {"type": "weekends"}
    elif isinstance(s, DaysOfWeek):
        out = {"type": "daysOfWeek", "days": [d for d in _WEEK_ORDER if d in s.days]}
    elif isinstance(s, EveryN):
        out = {"type": "everyN", "every": s.interval_days, "startDate": s.anchor_date.isoformat()}
    elif isinstance(s, RuleString):
        out = {"type": "rrule", "rule": s.rule}
        if s.start_date:
            out["startDate"] = s.start_date.isoformat()
    else:
        raise TypeError(f"unknown schedule descriptor: {s!r}")
    if s.time:
        out["time"] = s.time
    return json.dumps(out, ensure_ascii=False)


# ----------------------------
# Evaluation
# ----------------------------
def is_due(schedule: ScheduleDescriptor, when, tz) -> bool:
    """Is an occurrence due on the local day of `when` (a date or an instant) in `tz`?

    Pure: no I/O, no state.
    """

    d = local_date(when, tz)
    wd = d.weekday()

    if isinstance(schedule, Daily):
        return True
    if isinstance(schedule, Weekdays):
        return wd <= 4
    if isinstance(schedule, Weekends):
        return wd >= 5
    if isinstance(schedule, DaysOfWeek):
        return DAY_NAMES[wd] in schedule.days
    if isinstance(schedule, EveryN):
        diff = (d - schedule.anchor_date).days
        return diff >= 0 and diff % schedule.interval_days == 0
    if isinstance(schedule, RuleString):
        zone = resolve_tz(tz)
        start, end = local_day_bounds(d, zone)
        first = build_rule(schedule.rule, zone, schedule.start_date).after(start, inc=True)
        return first is not None and first < end
    raise TypeError(f"unknown schedule descriptor: {schedule!r}")
