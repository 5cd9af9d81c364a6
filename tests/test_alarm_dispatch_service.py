import unittest
from datetime import datetime, timezone
from types import SimpleNamespace

from core.alarm_service import FireResult
from core.errors import LockServiceUnavailable
from scheduling import worker
from scheduling.alarm_dispatch_service import AlarmDispatchService

NOW = datetime(2024, 1, 15, 7, 0, 30, tzinfo=timezone.utc)


class DummyAlarms:
    def __init__(self, rows):
        self.rows = rows
        self.calls = []

    async def list_due(self, now_utc, limit=200):
        self.calls.append((now_utc, limit))
        return self.rows


class DummyLocks:
    def __init__(self, removed=0):
        self.removed = removed

    async def purge_expired(self):
        return self.removed


class DummyAlarmService:
    def __init__(self, outcomes):
        self.outcomes = outcomes
        self.fired = []

    async def fire_alarm(self, user_id, alarm_id, as_of=None):
        self.fired.append((user_id, alarm_id, as_of))
        out = self.outcomes[alarm_id]
        if isinstance(out, Exception):
            raise out
        return out


def _svc(rows, outcomes, removed=0):
    svc = AlarmDispatchService.__new__(AlarmDispatchService)
    svc.settings = SimpleNamespace(alarm_dispatch_batch=50)
    svc.alarms = DummyAlarms(rows)
    svc.locks = DummyLocks(removed)
    svc.alarm_service = DummyAlarmService(outcomes)
    svc._now_utc = lambda: NOW
    return svc


class AlarmDispatchTests(unittest.IsolatedAsyncioTestCase):
    async def test_dispatch_counts_outcomes(self):
        rows = [{"id": i, "user_id": 7} for i in (1, 2, 3, 4)]
        svc = _svc(
            rows,
            {
                1: FireResult(accepted=True, next_fire_at=NOW),
                2: FireResult(accepted=True, deduplicated=True),
                3: FireResult(accepted=False, reason="disabled"),
                4: LockServiceUnavailable("down"),
            },
        )

        counts = await svc.dispatch_due()

        self.assertEqual(counts, {"fired": 1, "deduplicated": 1, "skipped": 1, "failed": 1})
        self.assertEqual(svc.alarms.calls, [(NOW, 50)])
        self.assertEqual(sorted(a for _, a, _ in svc.alarm_service.fired), [1, 2, 3, 4])
        self.assertTrue(all(as_of == NOW for _, _, as_of in svc.alarm_service.fired))

    async def test_nothing_due(self):
        svc = _svc([], {})
        counts = await svc.dispatch_due()
        self.assertEqual(counts["fired"], 0)
        self.assertEqual(svc.alarm_service.fired, [])

    async def test_worker_tick_dispatches_and_purges(self):
        svc = _svc([{"id": 1, "user_id": 7}], {1: FireResult(accepted=True)}, removed=3)

        counts = await worker.tick({"alarm_dispatch": svc})

        self.assertEqual(counts["fired"], 1)
        self.assertEqual(await svc.purge_locks(), 3)


if __name__ == "__main__":
    unittest.main()
