from __future__ import annotations

from datetime import date

from pydantic import BaseModel, Field


class FxRefreshRequest(BaseModel):
    on: date | None = None


class SdmxImportRequest(BaseModel):
    dests: list[str] = Field(min_length=1)
    year: int | None = None
    backfill_years: int = Field(default=1, ge=0, le=5)
    partners: list[str] | None = None
