import json
from datetime import datetime

from entity.db import Database


class HabitsRepo:
    def __init__(self, db: Database):
        self.db = db

    async def create(
        self,
        user_id: int,
        title: str,
        schedule_json: str,
        color: str,
        context: dict,
        reminder_enabled: bool,
        reminder_time: str,
    ) -> int:
        async with self.db.cursor() as cur:
            await cur.execute(
                """
                INSERT INTO habits(
                  user_id, title, schedule_json, color, context_json,
                  reminder_enabled, reminder_time, streak, last_completed_at
                )
                VALUES (%s,%s,%s,%s,%s::jsonb,%s,%s,0,NULL)
                RETURNING id
                """,
                (user_id, title, schedule_json, color, json.dumps(context), reminder_enabled, reminder_time),
            )
            return int((await cur.fetchone())["id"])

    async def list_for_user(self, user_id: int):
        async with self.db.cursor() as cur:
            await cur.execute(
                "SELECT * FROM habits WHERE user_id=%s ORDER BY created_at, id",
                (user_id,),
            )
            return await cur.fetchall()

    async def get(self, habit_id: int):
        async with self.db.cursor() as cur:
            await cur.execute("SELECT * FROM habits WHERE id=%s", (habit_id,))
            return await cur.fetchone()

    async def delete(self, habit_id: int, user_id: int):
        async with self.db.cursor() as cur:
            await cur.execute("DELETE FROM habits WHERE id=%s AND user_id=%s", (habit_id, user_id))
            return cur.rowcount

    async def update(
        self,
        habit_id: int,
        user_id: int,
        title: str,
        schedule_json: str,
        color: str,
        context: dict,
        reminder_enabled: bool,
        reminder_time: str,
    ):
        """Rewrites the editable columns. Streak and last completion are only touched by record_completion."""

        async with self.db.cursor() as cur:
            await cur.execute(
                """
                UPDATE habits
                   SET title=%s, schedule_json=%s, color=%s, context_json=%s::jsonb,
                       reminder_enabled=%s, reminder_time=%s, updated_at=NOW()
                 WHERE id=%s AND user_id=%s
                """,
                (
                    title,
                    schedule_json,
                    color,
                    json.dumps(context),
                    reminder_enabled,
                    reminder_time,
                    habit_id,
                    user_id,
                ),
            )
            return cur.rowcount

    async def record_completion(
        self,
        habit_id: int,
        expected_last: datetime | None,
        completed_at: datetime,
        streak: int,
    ) -> bool:
        """Compare-and-set on last_completed_at. False means another writer got there first."""

        async with self.db.cursor() as cur:
            await cur.execute(
                """
                UPDATE habits
                   SET last_completed_at=%s, streak=%s, updated_at=NOW()
                 WHERE id=%s
                   AND last_completed_at IS NOT DISTINCT FROM %s
                """,
                (completed_at, streak, habit_id, expected_last),
            )
            return cur.rowcount > 0
