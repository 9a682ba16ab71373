from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date
from typing import Any

from sqlalchemy import or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from landed_cost.models.enums import RateKind
from landed_cost.models.rate_record import DutyRateComponent, RateRecord


@dataclass(frozen=True)
class RateScope:
    dest: str
    partner: str | None = None
    hs6: str | None = None
    transport_mode: str | None = None


# Columns that identify one versioned series of a rate.
SERIES_COLUMNS = ("kind", "dest", "partner", "hs6", "transport_mode", "code", "unit", "upto_qty", "source")


class RateRepository:
    """Query contract over effective-dated rate records.

    No windowing happens here; callers receive every version for the scope.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def find_candidates(self, scope: RateScope, kind: RateKind) -> list[RateRecord]:
        stmt = select(RateRecord).where(RateRecord.kind == kind, RateRecord.dest == scope.dest)
        stmt = stmt.where(self._nullable_match(RateRecord.partner, scope.partner))
        stmt = stmt.where(self._nullable_match(RateRecord.hs6, scope.hs6))
        stmt = stmt.where(self._nullable_match(RateRecord.transport_mode, scope.transport_mode))
        result = await self.session.execute(stmt.order_by(RateRecord.effective_from.desc()))
        return list(result.scalars().all())

    async def find_components(self, parent_id: uuid.UUID) -> list[DutyRateComponent]:
        result = await self.session.execute(
            select(DutyRateComponent).where(DutyRateComponent.duty_rate_id == parent_id)
        )
        return list(result.scalars().all())

    async def has_coverage(self, dest: str, kind: RateKind) -> bool:
        result = await self.session.execute(
            select(RateRecord.id).where(RateRecord.kind == kind, RateRecord.dest == dest).limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def upsert_version(self, values: dict[str, Any], components: list[dict[str, Any]] | None = None) -> bool:
        """Insert one rate version, closing the open window it supersedes.

        Returns False when the same version already exists.
        """
        series = [getattr(RateRecord, col) == values.get(col) for col in SERIES_COLUMNS if values.get(col) is not None]
        series += [getattr(RateRecord, col).is_(None) for col in SERIES_COLUMNS if values.get(col) is None]
        effective_from: date = values["effective_from"]
        await self.session.execute(
            update(RateRecord)
            .where(
                *series,
                RateRecord.effective_from < effective_from,
                RateRecord.effective_to.is_(None),
            )
            .values(effective_to=effective_from)
        )
        result = await self.session.execute(
            pg_insert(RateRecord)
            .values(**values)
            .on_conflict_do_nothing()
            .returning(RateRecord.id)
        )
        parent_id = result.scalar_one_or_none()
        if parent_id is None:
            return False
        if components:
            await self.session.execute(
                pg_insert(DutyRateComponent).values([{**c, "duty_rate_id": parent_id} for c in components])
            )
        return True

    async def commit(self) -> None:
        await self.session.commit()

    @staticmethod
    def _nullable_match(column, value):
        if value is None:
            return column.is_(None)
        return or_(column.is_(None), column == value)
