from __future__ import annotations

from datetime import date
from decimal import Decimal

from pydantic import BaseModel


class FxRateResponse(BaseModel):
    base: str
    quote: str
    rate: Decimal | None
    as_of: date | None
    route: str | None = None
    providers: list[str] = []


class DutyRateResponse(BaseModel):
    dest: str
    origin: str | None
    hs6: str
    rate: Decimal | None
    status: str
    tier: str | None = None
    source: str | None = None
    dataset: str | None = None
    rule: str | None = None
    effective_from: date | None = None
    components: list[str] = []


class VatRateResponse(BaseModel):
    country: str
    hs6: str | None = None
    rate: Decimal | None
    rate_kind: str | None = None
    vat_base: str
    status: str
    source: str | None = None
