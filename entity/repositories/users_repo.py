from entity.db import Database


class UsersRepo:
    def __init__(self, db: Database):
        self.db = db

    async def upsert_user(self, user_id: int, display_name: str | None, timezone: str | None):
        async with self.db.cursor() as cur:
            await cur.execute(
                '''
                INSERT INTO users(id, display_name, timezone)
                VALUES (%s, %s, %s)
                ON CONFLICT (id) DO UPDATE
                  SET display_name = COALESCE(users.display_name, EXCLUDED.display_name),
                      timezone = COALESCE(EXCLUDED.timezone, users.timezone)
                ''',
                (user_id, display_name, timezone),
            )

    async def get_user(self, user_id: int):
        async with self.db.cursor() as cur:
            await cur.execute("SELECT * FROM users WHERE id=%s", (user_id,))
            return await cur.fetchone()

    async def get_timezone(self, user_id: int) -> str | None:
        async with self.db.cursor() as cur:
            await cur.execute("SELECT timezone FROM users WHERE id=%s", (user_id,))
            row = await cur.fetchone()
            if not row:
                return None
            return row.get("timezone")

    async def set_timezone(self, user_id: int, tz: str):
        async with self.db.cursor() as cur:
            await cur.execute("UPDATE users SET timezone=%s WHERE id=%s", (tz, user_id))
