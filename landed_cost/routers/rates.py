from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends

from landed_cost.core.deps import get_quote_service
from landed_cost.core.errors import InvalidRequest
from landed_cost.schemas.rates import DutyRateResponse, FxRateResponse, VatRateResponse
from landed_cost.services.quote import QuoteService

router = APIRouter(prefix="/rates", tags=["rates"])


def _as_of(value: str | None) -> date:
    if not value:
        return date.today()
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise InvalidRequest("as_of must be ISO format YYYY-MM-DD") from exc


@router.get("/fx", response_model=FxRateResponse)
async def fx_rate(base: str, quote: str, as_of: str | None = None, service: QuoteService = Depends(get_quote_service)):
    table = await service.fx_loader.load(_as_of(as_of) if as_of else None)
    conversion = table.lookup(base, quote)
    return FxRateResponse(
        base=base.upper(),
        quote=quote.upper(),
        rate=conversion.rate if conversion else None,
        as_of=table.as_of,
        route=conversion.route if conversion else None,
        providers=list(conversion.providers) if conversion else [],
    )


@router.get("/duty", response_model=DutyRateResponse)
async def duty_rate(
    dest: str,
    hs6: str,
    origin: str | None = None,
    as_of: str | None = None,
    service: QuoteService = Depends(get_quote_service),
):
    lookup = await service.lookups.duty(dest.upper(), origin.upper() if origin else None, hs6, _as_of(as_of))
    record = lookup.record
    return DutyRateResponse(
        dest=dest.upper(),
        origin=origin.upper() if origin else None,
        hs6=hs6,
        rate=record.value if record is not None else None,
        status=lookup.meta.status.value,
        tier=lookup.meta.tier,
        source=lookup.meta.source,
        dataset=lookup.meta.dataset,
        rule=record.rule if record is not None else None,
        effective_from=lookup.meta.effective_from,
        components=sorted({str(getattr(c.component_type, "value", c.component_type)) for c in lookup.components}),
    )


@router.get("/vat", response_model=VatRateResponse)
async def vat_rate(
    country: str,
    hs6: str | None = None,
    as_of: str | None = None,
    service: QuoteService = Depends(get_quote_service),
):
    lookup = await service.lookups.vat(country.upper(), hs6, _as_of(as_of))
    return VatRateResponse(
        country=country.upper(),
        hs6=hs6,
        rate=lookup.rate_pct,
        rate_kind=lookup.rate_kind,
        vat_base=lookup.base.value,
        status=lookup.meta.status.value,
        source=lookup.meta.source,
    )
