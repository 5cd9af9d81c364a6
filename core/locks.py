from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Protocol

from core.errors import LockServiceUnavailable, OperationTimedOut


class LockService(Protocol):
    """Atomic create-if-absent with expiry. Expiry is the only release."""

    async def try_acquire(self, key: str, ttl: timedelta) -> bool: ...


def habit_tick_key(owner_id, habit_id, local_day_key: str, client_key: str | None = None) -> str:
    base = f"idem:habit:{owner_id}:{habit_id}:{local_day_key}"
    client_key = (client_key or "").strip()
    return f"{base}:{client_key}" if client_key else base


def alarm_fire_key(owner_id, alarm_id) -> str:
    return f"idem:alarm:{owner_id}:{alarm_id}:fired"


async def acquire(locks: LockService, key: str, ttl: timedelta) -> bool:
    """try_acquire with store failures surfaced as LockServiceUnavailable.

    There is no fallback to unlocked processing.
    """

    try:
        return bool(await locks.try_acquire(key, ttl))
    except LockServiceUnavailable:
        raise
    except Exception as e:
        raise LockServiceUnavailable(f"lock service failed for {key}: {e}") from e


async def bounded(coro, timeout: float, what: str):
    """Run one lock + read + write sequence within `timeout` seconds.

    On timeout the caller must not assume the operation happened.
    """

    try:
        return await asyncio.wait_for(coro, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise OperationTimedOut(f"{what} did not finish within {timeout}s") from e
