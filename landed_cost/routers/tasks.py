from __future__ import annotations

from fastapi import APIRouter

from landed_cost.jobs.tasks import import_duties_sdmx, refresh_fx
from landed_cost.schemas.tasks import FxRefreshRequest, SdmxImportRequest

router = APIRouter(prefix="/tasks", tags=["tasks"])


@router.post("/fx/refresh")
async def fx_refresh(body: FxRefreshRequest | None = None):
    return await refresh_fx(body.on if body else None)


@router.post("/duties/sdmx")
async def duties_sdmx(body: SdmxImportRequest):
    return await import_duties_sdmx(
        body.dests,
        year=body.year,
        backfill_years=body.backfill_years,
        partners=body.partners,
    )
