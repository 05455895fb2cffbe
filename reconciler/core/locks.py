"""PostgreSQL advisory lock helpers."""

import hashlib
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import text

from reconciler.core.database import direct_session_maker

# Advisory lock IDs (arbitrary unique integers, one per job)
PROVIDER_SWEEP_LOCK_ID = 731401
CORRELATION_PURGE_LOCK_ID = 731402


def customer_lock_key(customer_id: str) -> int:
    """Stable signed 64-bit advisory lock key for a provider customer id.

    Python's hash() is salted per process, so every instance would compute a
    different key; derive it from a digest instead.
    """
    digest = hashlib.blake2b(customer_id.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


@asynccontextmanager
async def advisory_lock(lock_id: int) -> AsyncIterator[bool]:
    """
    Acquire a PostgreSQL advisory lock for the duration of the context.

    Advisory locks are session-level and automatically released when the
    session ends. We use pg_try_advisory_lock() which returns immediately
    (non-blocking): if the lock is held by another process, we skip.
    """
    async with direct_session_maker() as session:
        result = await session.execute(
            text("SELECT pg_try_advisory_lock(:lock_id)"),
            {"lock_id": lock_id},
        )
        acquired = result.scalar()

        if not acquired:
            yield False
            return

        try:
            yield True
        finally:
            await session.execute(
                text("SELECT pg_advisory_unlock(:lock_id)"),
                {"lock_id": lock_id},
            )
            await session.commit()
