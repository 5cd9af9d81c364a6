import json
from entity.db import Database


class EventsRepo:
    """Append-only event log. Downstream integrations read it; nothing here waits on them."""

    def __init__(self, db: Database):
        self.db = db

    async def record(self, user_id: int, kind: str, payload: dict):
        async with self.db.cursor() as cur:
            await cur.execute(
                "INSERT INTO events(user_id, kind, payload_json) VALUES (%s,%s,%s::jsonb)",
                (user_id, kind, json.dumps(payload, default=str)),
            )
