import asyncio
import logging

from core.alarm_service import AlarmService
from core.habit_service import HabitService
from core.user_service import UserService
from entity.db import Database
from entity.repositories.locks_repo import LocksRepo
from entity.settings import get_settings
from scheduling import worker
from scheduling.alarm_dispatch_service import AlarmDispatchService


def build_services(db: Database, settings) -> dict:
    locks = LocksRepo(db)
    habits = HabitService(db, settings, locks=locks)
    alarms = AlarmService(db, settings, locks=locks)
    return {
        "user": UserService(db, settings),
        "habit": habits,
        "alarm": alarms,
        "alarm_dispatch": AlarmDispatchService(db, settings, alarms),
    }


async def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    settings = get_settings()
    db = Database(settings)
    await db.init_schema()
    await worker.run(build_services(db, settings))


if __name__ == "__main__":
    asyncio.run(main())
