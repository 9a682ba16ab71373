from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from landed_cost.models.enums import ImportStatus
from landed_cost.models.import_run import ImportRun


class ImportRunRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def start(self, dataset: str, job: str) -> ImportRun:
        run = ImportRun(dataset=dataset, job=job, status=ImportStatus.RUNNING)
        self.session.add(run)
        await self.session.commit()
        await self.session.refresh(run)
        return run

    async def heartbeat(self, run: ImportRun, inserted: int = 0, skipped: int = 0) -> None:
        await self.session.execute(
            update(ImportRun)
            .where(ImportRun.id == run.id)
            .values(heartbeat_at=func.now(), inserted=inserted, skipped=skipped)
        )
        await self.session.commit()

    async def finish(
        self,
        run: ImportRun,
        status: ImportStatus,
        inserted: int,
        skipped: int,
        error: str | None = None,
    ) -> None:
        run_id = run.id
        if status == ImportStatus.FAILED:
            # a failed job may have left the session mid-transaction
            await self.session.rollback()
        await self.session.execute(
            update(ImportRun)
            .where(ImportRun.id == run_id)
            .values(status=status, inserted=inserted, skipped=skipped, error=error, finished_at=func.now())
        )
        await self.session.commit()

    async def last_success(self, dataset: str) -> datetime | None:
        result = await self.session.execute(
            select(func.max(ImportRun.finished_at)).where(
                ImportRun.dataset == dataset,
                ImportRun.status == ImportStatus.SUCCEEDED,
            )
        )
        return result.scalar_one_or_none()
