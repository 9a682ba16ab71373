from __future__ import annotations

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncSession


def make_lock_key(source: str, job: str, extra: str | None = None) -> str:
    parts = [source, job]
    if extra:
        parts.append(extra)
    return ":".join(parts)


class AdvisoryLock:
    """Session-level Postgres advisory lock keyed by job identity."""

    def __init__(self, session: AsyncSession | AsyncConnection) -> None:
        self.session = session

    async def acquire(self, key: str) -> bool:
        result = await self.session.execute(
            text("SELECT pg_try_advisory_lock(hashtext(:key)) AS locked"), {"key": key}
        )
        return bool(result.scalar_one())

    async def release(self, key: str) -> None:
        await self.session.execute(text("SELECT pg_advisory_unlock(hashtext(:key))"), {"key": key})
