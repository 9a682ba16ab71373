from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from landed_cost.core.errors import Conflict
from landed_cost.core.logging import get_logger
from landed_cost.db.session import engine
from landed_cost.models.enums import ImportStatus
from landed_cost.repositories.lock_repo import AdvisoryLock, make_lock_key

logger = get_logger()


@dataclass
class JobSummary:
    inserted: int = 0
    skipped: int = 0
    failed: list[str] | None = None

    @property
    def partial(self) -> bool:
        return bool(self.failed)


class JobContext:
    def __init__(self, runs, run) -> None:
        self.runs = runs
        self.run = run
        self.summary = JobSummary(failed=[])

    async def heartbeat(self) -> None:
        await self.runs.heartbeat(self.run, inserted=self.summary.inserted, skipped=self.summary.skipped)


@asynccontextmanager
async def advisory_lock() -> AsyncIterator[AdvisoryLock]:
    """Advisory lock on its own connection so session commits cannot release it."""
    async with engine.connect() as conn:
        yield AdvisoryLock(conn)


async def run_locked_job(
    lock: AdvisoryLock,
    runs,
    source: str,
    job: str,
    dataset: str,
    work: Callable[[JobContext], Awaitable[Any]],
    extra: str | None = None,
) -> JobSummary:
    """Run one ingestion job under an advisory lock, recorded in import_runs.

    The lock is released and the run finished on every exit path.
    """
    key = make_lock_key(source, job, extra)
    if not await lock.acquire(key):
        raise Conflict(f"Job {key} is already running")
    try:
        run = await runs.start(dataset, key)
        ctx = JobContext(runs, run)
        logger.info("job_started", job=key, dataset=dataset)
        try:
            await work(ctx)
        except Exception as exc:
            await runs.finish(
                run,
                ImportStatus.FAILED,
                inserted=ctx.summary.inserted,
                skipped=ctx.summary.skipped,
                error=str(exc),
            )
            logger.error("job_failed", job=key, error=str(exc), inserted=ctx.summary.inserted)
            raise
        status = ImportStatus.FAILED if ctx.summary.partial and ctx.summary.inserted == 0 else ImportStatus.SUCCEEDED
        await runs.finish(
            run,
            status,
            inserted=ctx.summary.inserted,
            skipped=ctx.summary.skipped,
            error="; ".join(ctx.summary.failed or []) or None,
        )
        logger.info(
            "job_finished",
            job=key,
            status=status.value,
            inserted=ctx.summary.inserted,
            skipped=ctx.summary.skipped,
            failed=ctx.summary.failed,
        )
        return ctx.summary
    finally:
        await lock.release(key)
