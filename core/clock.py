"""Timezone-local calendar arithmetic.

Every "same day" decision in the project goes through here. Local days are
computed from calendar dates in the owner's zone, never as fixed 24h spans,
so 23h and 25h days around DST changes come out right.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from core.errors import InvalidTimezone


def resolve_tz(tz) -> ZoneInfo:
    if isinstance(tz, ZoneInfo):
        return tz
    name = (tz or "").strip() if isinstance(tz, str) else ""
    if not name:
        raise InvalidTimezone(f"invalid timezone: {tz!r}")
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, OSError) as e:
        # Region names like "Europe" resolve to a directory in the tz database.
        raise InvalidTimezone(f"invalid timezone: {tz!r}") from e


def as_utc(instant: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""

    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


def local_date(value, tz) -> date:
    """Calendar date of `value` in `tz`. A plain date is returned as is."""

    if isinstance(value, datetime):
        return as_utc(value).astimezone(resolve_tz(tz)).date()
    if isinstance(value, date):
        return value
    raise TypeError(f"expected date or datetime, got {type(value).__name__}")


def start_of_local_date(d: date, tz) -> datetime:
    """UTC instant at which local date `d` begins in `tz`."""

    # A midnight that falls in a DST gap resolves (fold=0) to the first real instant of the day.
    local_midnight = datetime.combine(d, time(0, 0), tzinfo=resolve_tz(tz))
    return local_midnight.astimezone(timezone.utc)


def local_day_key(instant: datetime, tz) -> str:
    return local_date(instant, tz).isoformat()


def local_day_bounds(instant, tz) -> tuple[datetime, datetime]:
    """(start, end) of the local day containing `instant`; end is exclusive. Both UTC."""

    d = local_date(instant, tz)
    return start_of_local_date(d, tz), start_of_local_date(d + timedelta(days=1), tz)


def add_local_days(instant: datetime, tz, n: int) -> datetime:
    """Start (UTC) of the local day `n` calendar days away from `instant`'s local day."""

    d = local_date(instant, tz)
    return start_of_local_date(d + timedelta(days=n), tz)
