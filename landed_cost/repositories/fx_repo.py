from __future__ import annotations

from datetime import date
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from landed_cost.models.fx_rate import FxRate


class FxRateRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert_ignore(self, rows: list[dict[str, Any]]) -> int:
        if not rows:
            return 0
        result = await self.session.execute(
            pg_insert(FxRate)
            .values(rows)
            .on_conflict_do_nothing(index_elements=["provider", "base", "quote", "as_of"])
            .returning(FxRate.id)
        )
        inserted = len(result.scalars().all())
        await self.session.commit()
        return inserted

    async def latest_as_of(self, on_or_before: date | None = None) -> date | None:
        stmt = select(func.max(FxRate.as_of))
        if on_or_before is not None:
            stmt = stmt.where(FxRate.as_of <= on_or_before)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def rates_on(self, as_of: date) -> list[FxRate]:
        result = await self.session.execute(select(FxRate).where(FxRate.as_of == as_of))
        return list(result.scalars().all())
