import os
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()


def _int(name: str, default: str) -> int:
    return int((os.getenv(name) or default).strip())


@dataclass(frozen=True)
class Settings:
    db_host: str
    db_port: int
    db_name: str
    db_user: str
    db_password: str
    default_timezone: str
    habit_lock_ttl_hours: int
    alarm_dedup_seconds: int
    operation_timeout_seconds: int
    alarm_default_hour: int
    alarm_default_minute: int
    alarm_dispatch_batch: int


def get_settings() -> Settings:
    hour = _int("ALARM_DEFAULT_HOUR", "9")
    minute = _int("ALARM_DEFAULT_MINUTE", "0")
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError("ALARM_DEFAULT_HOUR/ALARM_DEFAULT_MINUTE out of range")
    # A local day can last 25h, so the tick lock must outlive it.
    ttl_hours = _int("HABIT_LOCK_TTL_HOURS", "36")
    if ttl_hours < 26:
        raise ValueError("HABIT_LOCK_TTL_HOURS must be at least 26")
    return Settings(
        db_host=os.getenv("DB_HOST", "localhost"),
        db_port=_int("DB_PORT", "5432"),
        db_name=os.getenv("DB_NAME", "habits"),
        db_user=os.getenv("DB_USER", "postgres"),
        db_password=os.getenv("DB_PASSWORD", "postgres"),
        default_timezone=os.getenv("DEFAULT_TIMEZONE", "UTC"),
        habit_lock_ttl_hours=ttl_hours,
        alarm_dedup_seconds=_int("ALARM_DEDUP_SECONDS", "60"),
        operation_timeout_seconds=_int("OPERATION_TIMEOUT_SECONDS", "10"),
        alarm_default_hour=hour,
        alarm_default_minute=minute,
        alarm_dispatch_batch=_int("ALARM_DISPATCH_BATCH", "200"),
    )
