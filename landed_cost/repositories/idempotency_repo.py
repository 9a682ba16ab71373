from __future__ import annotations

from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from landed_cost.models.enums import IdempotencyStatus
from landed_cost.models.idempotency import IdempotencyKey


class IdempotencyRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert_pending(self, scope: str, key: str, request_hash: str) -> bool:
        result = await self.session.execute(
            pg_insert(IdempotencyKey)
            .values(scope=scope, key=key, request_hash=request_hash, status=IdempotencyStatus.PENDING)
            .on_conflict_do_nothing(index_elements=["scope", "key"])
            .returning(IdempotencyKey.id)
        )
        inserted = result.scalar_one_or_none() is not None
        await self.session.commit()
        return inserted

    async def claim(self, scope: str, key: str, request_hash: str) -> bool:
        """Move a pending row with a matching hash to processing. Only one caller wins."""
        result = await self.session.execute(
            update(IdempotencyKey)
            .where(
                IdempotencyKey.scope == scope,
                IdempotencyKey.key == key,
                IdempotencyKey.request_hash == request_hash,
                IdempotencyKey.status == IdempotencyStatus.PENDING,
                IdempotencyKey.locked_at.is_(None),
            )
            .values(status=IdempotencyStatus.PROCESSING, locked_at=func.now(), updated_at=func.now())
            .returning(IdempotencyKey.id)
        )
        claimed = result.scalar_one_or_none() is not None
        await self.session.commit()
        return claimed

    async def get(self, scope: str, key: str) -> IdempotencyKey | None:
        result = await self.session.execute(
            select(IdempotencyKey)
            .where(IdempotencyKey.scope == scope, IdempotencyKey.key == key)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def complete(self, scope: str, key: str, response: dict[str, Any]) -> None:
        await self._set(scope, key, status=IdempotencyStatus.COMPLETED, response=response)

    async def fail(self, scope: str, key: str) -> None:
        # the compute may have left the session mid-transaction
        await self.session.rollback()
        await self._set(scope, key, status=IdempotencyStatus.FAILED, response=None)

    async def rollback(self) -> None:
        await self.session.rollback()

    async def refresh_response(self, scope: str, key: str, response: dict[str, Any]) -> None:
        await self._set(scope, key, response=response)

    async def _set(self, scope: str, key: str, **values: Any) -> None:
        await self.session.execute(
            update(IdempotencyKey)
            .where(IdempotencyKey.scope == scope, IdempotencyKey.key == key)
            .values(updated_at=func.now(), **values)
        )
        await self.session.commit()
