from __future__ import annotations

import logging
from datetime import timedelta

import psycopg

from core.errors import LockServiceUnavailable
from entity.db import Database

log = logging.getLogger("locks")


class LocksRepo:
    """Postgres-backed lock service: atomic create-if-absent with expiry.

    An expired row is taken over in the same statement, so a stale lock never
    needs an explicit release.
    """

    def __init__(self, db: Database):
        self.db = db

    async def try_acquire(self, key: str, ttl: timedelta) -> bool:
        try:
            async with self.db.cursor() as cur:
                await cur.execute(
                    """
                    INSERT INTO completion_locks(lock_key, expires_at)
                    VALUES (%s, NOW() + %s)
                    ON CONFLICT (lock_key) DO UPDATE
                      SET expires_at = EXCLUDED.expires_at,
                          created_at = NOW()
                      WHERE completion_locks.expires_at <= NOW()
                    RETURNING 1
                    """,
                    (key, ttl),
                )
                return (await cur.fetchone()) is not None
        except psycopg.Error as e:
            log.warning("lock store error key=%s: %s", key, e)
            raise LockServiceUnavailable(f"lock store unavailable: {e}") from e

    async def purge_expired(self) -> int:
        async with self.db.cursor() as cur:
            await cur.execute("DELETE FROM completion_locks WHERE expires_at <= NOW()")
            return cur.rowcount
