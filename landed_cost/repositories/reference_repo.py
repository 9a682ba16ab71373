from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from landed_cost.models.reference import Category, DeMinimisThreshold, MerchantProfile, TaxRegistration


class CategoryRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, key: str) -> Category | None:
        result = await self.session.execute(select(Category).where(Category.key == key))
        return result.scalar_one_or_none()


class DeMinimisRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def for_dest(self, dest: str) -> list[DeMinimisThreshold]:
        result = await self.session.execute(
            select(DeMinimisThreshold)
            .where(DeMinimisThreshold.dest == dest)
            .order_by(DeMinimisThreshold.effective_from.desc())
        )
        return list(result.scalars().all())


class MerchantRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_profile(self, merchant_id: uuid.UUID) -> MerchantProfile | None:
        result = await self.session.execute(select(MerchantProfile).where(MerchantProfile.id == merchant_id))
        return result.scalar_one_or_none()

    async def active_registrations(self, merchant_id: uuid.UUID) -> list[TaxRegistration]:
        result = await self.session.execute(
            select(TaxRegistration).where(
                TaxRegistration.merchant_id == merchant_id,
                TaxRegistration.is_active.is_(True),
            )
        )
        return list(result.scalars().all())
