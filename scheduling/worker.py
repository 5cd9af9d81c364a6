import asyncio
import logging

log = logging.getLogger("worker")


async def tick(services: dict):
    # Fire due alarms, then drop expired idempotency rows.
    dispatch = services["alarm_dispatch"]
    counts = await dispatch.dispatch_due()
    await dispatch.purge_locks()
    return counts


async def run(services: dict, interval_seconds: float = 60.0, stop: asyncio.Event | None = None):
    stop = stop or asyncio.Event()
    while not stop.is_set():
        try:
            await tick(services)
        except Exception:
            log.exception("worker tick failed")
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            pass
