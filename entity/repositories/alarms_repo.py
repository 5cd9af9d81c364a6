from datetime import datetime

from entity.db import Database


class AlarmsRepo:
    def __init__(self, db: Database):
        self.db = db

    async def create(
        self,
        user_id: int,
        label: str,
        rrule: str,
        tone: str,
        enabled: bool,
        next_fire_at: datetime | None,
    ) -> int:
        async with self.db.cursor() as cur:
            await cur.execute(
                """
                INSERT INTO alarms(user_id, label, rrule, tone, enabled, next_fire_at)
                VALUES (%s,%s,%s,%s,%s,%s)
                RETURNING id
                """,
                (user_id, label, rrule, tone, enabled, next_fire_at),
            )
            return int((await cur.fetchone())["id"])

    async def get(self, alarm_id: int):
        async with self.db.cursor() as cur:
            await cur.execute("SELECT * FROM alarms WHERE id=%s", (alarm_id,))
            return await cur.fetchone()

    async def list_for_user(self, user_id: int):
        async with self.db.cursor() as cur:
            await cur.execute(
                "SELECT * FROM alarms WHERE user_id=%s ORDER BY enabled DESC, next_fire_at ASC NULLS LAST, id",
                (user_id,),
            )
            return await cur.fetchall()

    async def list_due(self, now_utc: datetime, limit: int = 200):
        async with self.db.cursor() as cur:
            await cur.execute(
                """
                SELECT * FROM alarms
                 WHERE enabled=TRUE
                   AND next_fire_at IS NOT NULL
                   AND next_fire_at <= %s
                 ORDER BY next_fire_at ASC
                 LIMIT %s
                """,
                (now_utc, limit),
            )
            return await cur.fetchall()

    async def update(
        self,
        alarm_id: int,
        user_id: int,
        label: str,
        rrule: str,
        tone: str,
        enabled: bool,
        next_fire_at: datetime | None,
    ):
        async with self.db.cursor() as cur:
            await cur.execute(
                """
                UPDATE alarms
                   SET label=%s, rrule=%s, tone=%s, enabled=%s, next_fire_at=%s, updated_at=NOW()
                 WHERE id=%s AND user_id=%s
                """,
                (label, rrule, tone, enabled, next_fire_at, alarm_id, user_id),
            )
            return cur.rowcount

    async def set_next_fire_at(self, alarm_id: int, next_fire_at: datetime | None):
        async with self.db.cursor() as cur:
            await cur.execute(
                "UPDATE alarms SET next_fire_at=%s, updated_at=NOW() WHERE id=%s",
                (next_fire_at, alarm_id),
            )
            return cur.rowcount

    async def disable(self, alarm_id: int):
        async with self.db.cursor() as cur:
            await cur.execute(
                "UPDATE alarms SET enabled=FALSE, next_fire_at=NULL, updated_at=NOW() WHERE id=%s",
                (alarm_id,),
            )
            return cur.rowcount

    async def delete(self, alarm_id: int, user_id: int):
        async with self.db.cursor() as cur:
            await cur.execute("DELETE FROM alarms WHERE id=%s AND user_id=%s", (alarm_id, user_id))
            return cur.rowcount
