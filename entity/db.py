from contextlib import asynccontextmanager
import psycopg
from psycopg.rows import dict_row
from entity.settings import Settings

SCHEMA_SQL = r'''
CREATE TABLE IF NOT EXISTS users (
  id BIGINT PRIMARY KEY,
  display_name TEXT,
  timezone TEXT,
  created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

-- Habits. schedule_json is stored verbatim and re-parsed on every evaluation.
CREATE TABLE IF NOT EXISTS habits (
  id BIGSERIAL PRIMARY KEY,
  user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
  title TEXT NOT NULL,
  schedule_json TEXT NOT NULL,
  color TEXT NOT NULL DEFAULT 'emerald',
  context_json JSONB NOT NULL DEFAULT '{}'::jsonb,
  reminder_enabled BOOLEAN NOT NULL DEFAULT FALSE,
  reminder_time TEXT NOT NULL DEFAULT '08:00',
  streak INT NOT NULL DEFAULT 0 CHECK (streak >= 0),
  last_completed_at TIMESTAMPTZ,
  created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
  updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
  CHECK (last_completed_at IS NOT NULL OR streak = 0)
);

CREATE INDEX IF NOT EXISTS idx_habits_user ON habits(user_id);

-- Alarms. next_fire_at is NULL while disabled or exhausted.
CREATE TABLE IF NOT EXISTS alarms (
  id BIGSERIAL PRIMARY KEY,
  user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
  label TEXT NOT NULL,
  rrule TEXT NOT NULL,
  tone TEXT NOT NULL DEFAULT 'balanced' CHECK (tone IN ('strict', 'balanced', 'light')),
  enabled BOOLEAN NOT NULL DEFAULT TRUE,
  next_fire_at TIMESTAMPTZ,
  created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
  updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_alarms_due ON alarms(enabled, next_fire_at);

-- Short-lived idempotency keys. Existence is the only payload.
CREATE TABLE IF NOT EXISTS completion_locks (
  lock_key TEXT PRIMARY KEY,
  expires_at TIMESTAMPTZ NOT NULL,
  created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_completion_locks_expires ON completion_locks(expires_at);

-- Append-only event log consumed by notification/voice integrations.
CREATE TABLE IF NOT EXISTS events (
  id BIGSERIAL PRIMARY KEY,
  user_id BIGINT NOT NULL,
  kind TEXT NOT NULL,
  payload_json JSONB NOT NULL,
  created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_events_user_kind ON events(user_id, kind, created_at);
'''

MIGRATIONS_SQL = [
    "ALTER TABLE users ADD COLUMN IF NOT EXISTS timezone TEXT",
    "ALTER TABLE habits ADD COLUMN IF NOT EXISTS streak INT NOT NULL DEFAULT 0",
    "ALTER TABLE habits ADD COLUMN IF NOT EXISTS last_completed_at TIMESTAMPTZ",
    "ALTER TABLE habits ADD COLUMN IF NOT EXISTS color TEXT NOT NULL DEFAULT 'emerald'",
    "ALTER TABLE habits ADD COLUMN IF NOT EXISTS context_json JSONB NOT NULL DEFAULT '{}'::jsonb",
    "ALTER TABLE habits ADD COLUMN IF NOT EXISTS reminder_enabled BOOLEAN NOT NULL DEFAULT FALSE",
    "ALTER TABLE habits ADD COLUMN IF NOT EXISTS reminder_time TEXT NOT NULL DEFAULT '08:00'",
    "ALTER TABLE alarms ADD COLUMN IF NOT EXISTS tone TEXT NOT NULL DEFAULT 'balanced'",
    "ALTER TABLE alarms ADD COLUMN IF NOT EXISTS next_fire_at TIMESTAMPTZ",
]


class Database:
    def __init__(self, settings: Settings):
        self.settings = settings

    async def connect(self):
        return await psycopg.AsyncConnection.connect(
            host=self.settings.db_host,
            port=self.settings.db_port,
            dbname=self.settings.db_name,
            user=self.settings.db_user,
            password=self.settings.db_password,
            row_factory=dict_row,
        )

    @asynccontextmanager
    async def session(self):
        conn = await self.connect()
        try:
            yield conn
            await conn.commit()
        except Exception:
            await conn.rollback()
            raise
        finally:
            await conn.close()

    @asynccontextmanager
    async def cursor(self):
        async with self.session() as conn:
            cur = conn.cursor()
            try:
                yield cur
            finally:
                await cur.close()

    async def init_schema(self):
        async with self.session() as conn:
            cur = conn.cursor()
            await cur.execute(SCHEMA_SQL)
            for stmt in MIGRATIONS_SQL:
                await cur.execute(stmt)
            await cur.close()
