from __future__ import annotations

from dataclasses import asdict
from datetime import date
from pathlib import Path
from typing import Any

from landed_cost.db.session import SessionLocal
from landed_cost.repositories.fx_repo import FxRateRepository
from landed_cost.repositories.import_run_repo import ImportRunRepository
from landed_cost.repositories.rate_repo import RateRepository
from landed_cost.services.fx.providers import EcbProvider, build_secondary_providers
from landed_cost.services.fx.refresh import FxRefreshResult, FxRefreshService
from landed_cost.services.ingestion.importer import DutyImporter
from landed_cost.services.ingestion.jobs import JobContext, advisory_lock, run_locked_job


async def refresh_fx(on: date | None = None) -> dict[str, Any]:
    result: dict[str, FxRefreshResult] = {}

    async with SessionLocal() as session, advisory_lock() as lock:
        service = FxRefreshService(FxRateRepository(session), EcbProvider(), build_secondary_providers())

        async def work(ctx: JobContext) -> None:
            refreshed = await service.refresh(on)
            ctx.summary.inserted = refreshed.inserted
            result["fx"] = refreshed

        summary = await run_locked_job(
            lock, ImportRunRepository(session), "ecb", "fx_refresh", "ecb", work, extra=on.isoformat() if on else None
        )

    refreshed = result["fx"]
    return {
        "status": "ok",
        "as_of": refreshed.as_of.isoformat(),
        "inserted": summary.inserted,
        "providers": refreshed.providers,
        "filled": refreshed.filled,
    }


async def import_duties_sdmx(
    dests: list[str],
    year: int | None = None,
    backfill_years: int = 1,
    partners: list[str] | None = None,
) -> dict[str, Any]:
    dests = [d.strip().upper() for d in dests if d.strip()]
    async with SessionLocal() as session, advisory_lock() as lock:
        importer = DutyImporter(RateRepository(session))

        async def work(ctx: JobContext) -> None:
            await importer.import_sdmx(ctx, dests, year=year, backfill_years=backfill_years, partners=partners)

        summary = await run_locked_job(
            lock, ImportRunRepository(session), "wits", "duties_sdmx", "wits", work, extra=",".join(sorted(dests))
        )
    return {"status": "partial" if summary.partial else "ok", **asdict(summary)}


async def import_duties_file(path: Path, dataset: str | None = None) -> dict[str, Any]:
    dataset = dataset or path.stem
    async with SessionLocal() as session, advisory_lock() as lock:
        importer = DutyImporter(RateRepository(session))

        async def work(ctx: JobContext) -> None:
            await importer.import_file(ctx, path, dataset)

        summary = await run_locked_job(
            lock, ImportRunRepository(session), "file", "duties_file", dataset, work, extra=dataset
        )
    return {"status": "partial" if summary.partial else "ok", **asdict(summary)}
