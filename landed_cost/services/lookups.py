from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any

from landed_cost.models.enums import DutyRule, LookupStatus, RateKind, RateSource, VatBase, VatRateKind
from landed_cost.repositories.rate_repo import RateScope
from landed_cost.services.money import ZERO, is_eu, to_decimal
from landed_cost.services.rate_resolver import PriorityTier, RateResolver, ResolveMeta, specificity


def _source(record: Any) -> RateSource:
    return RateSource(getattr(record.source, "value", record.source))


def _is(source: RateSource):
    return lambda r: _source(r) == source


DUTY_TIERS = [
    PriorityTier("override", lambda r: _source(r) == RateSource.OVERRIDE and r.hs6 is not None),
    PriorityTier(
        "preferential",
        lambda r: _source(r) == RateSource.OFFICIAL and r.rule == DutyRule.FTA.value and r.partner is not None,
    ),
    PriorityTier(
        "mfn",
        lambda r: _source(r) == RateSource.OFFICIAL
        and r.partner is None
        and (r.rule is None or r.rule == DutyRule.MFN.value),
    ),
    PriorityTier("country_default", _is(RateSource.DEFAULT)),
]

EU_TARIFF_REPORTER = "EU"

VAT_OVERRIDE_TIERS = [
    PriorityTier(
        "override-rate",
        lambda r: _source(r) == RateSource.OVERRIDE and r.hs6 is not None and r.value is not None,
    ),
    PriorityTier(
        "override-kind",
        lambda r: _source(r) == RateSource.OVERRIDE and r.hs6 is not None and r.value_ref is not None,
    ),
]


def vat_kind_tiers(rate_kind: str) -> list[PriorityTier]:
    def matches(r: Any) -> bool:
        return r.hs6 is None and (r.code or VatRateKind.STANDARD.value) == rate_kind

    return [
        PriorityTier("default", lambda r: matches(r) and _source(r) == RateSource.OFFICIAL),
        PriorityTier("default", lambda r: matches(r) and _source(r) == RateSource.DEFAULT),
    ]


def sourced_tiers(extra=None) -> list[PriorityTier]:
    def tier(name: str, source: RateSource) -> PriorityTier:
        if extra is None:
            return PriorityTier(name, _is(source))
        return PriorityTier(name, lambda r: _source(r) == source and extra(r))

    return [
        tier("override", RateSource.OVERRIDE),
        tier("official", RateSource.OFFICIAL),
        tier("default", RateSource.DEFAULT),
    ]


@dataclass
class DutyLookup:
    record: Any | None
    components: list[Any]
    meta: ResolveMeta


@dataclass
class VatLookup:
    rate_pct: Decimal | None
    base: VatBase
    rate_kind: str | None
    meta: ResolveMeta
    standard_meta: ResolveMeta | None = None


@dataclass
class SurchargeItem:
    code: str
    fixed_amount: Decimal
    currency: str | None
    rate_pct: Decimal
    source: str
    dataset: str | None
    effective_from: date | None


@dataclass
class SurchargeLookup:
    items: list[SurchargeItem] = field(default_factory=list)
    meta: ResolveMeta = field(default_factory=lambda: ResolveMeta(status=LookupStatus.NO_DATASET))


@dataclass
class FreightLookup:
    price: Decimal | None
    currency: str | None
    price_per_unit: Decimal | None
    step_upto: Decimal | None
    meta: ResolveMeta


class RateLookups:
    """Per-kind tier orders on top of the generic temporal resolver."""

    def __init__(self, resolver: RateResolver, repo) -> None:
        self.resolver = resolver
        self.repo = repo

    async def duty(self, dest: str, origin: str | None, hs6: str, as_of: date) -> DutyLookup:
        resolved = await self.resolver.resolve(
            RateScope(dest=dest, partner=origin, hs6=hs6), RateKind.DUTY, as_of, DUTY_TIERS
        )
        if resolved.meta.status == LookupStatus.NO_DATASET and is_eu(dest):
            # member states share the common external tariff published under EU
            resolved = await self.resolver.resolve(
                RateScope(dest=EU_TARIFF_REPORTER, partner=origin, hs6=hs6), RateKind.DUTY, as_of, DUTY_TIERS
            )
        components: list[Any] = []
        if resolved.value is not None:
            components = await self.repo.find_components(resolved.value.id)
        return DutyLookup(record=resolved.value, components=components, meta=resolved.meta)

    async def vat(self, dest: str, hs6: str | None, as_of: date) -> VatLookup:
        country = RateScope(dest=dest)
        standard = await self.resolver.resolve(country, RateKind.VAT, as_of, vat_kind_tiers(VatRateKind.STANDARD.value))
        base = VatBase.CIF_PLUS_DUTY
        if standard.value is not None and standard.value.vat_base:
            base = VatBase(standard.value.vat_base)
        standard_rate = to_decimal(standard.value.value) if standard.value is not None else None

        if standard.meta.status == LookupStatus.OUT_OF_SCOPE or hs6 is None:
            return VatLookup(
                rate_pct=standard_rate,
                base=base,
                rate_kind=VatRateKind.STANDARD.value,
                meta=standard.meta,
                standard_meta=standard.meta,
            )

        override = await self.resolver.resolve(
            RateScope(dest=dest, hs6=hs6), RateKind.VAT, as_of, VAT_OVERRIDE_TIERS
        )
        if override.value is None:
            return VatLookup(
                rate_pct=standard_rate,
                base=base,
                rate_kind=VatRateKind.STANDARD.value,
                meta=standard.meta,
                standard_meta=standard.meta,
            )
        if override.meta.tier == "override-rate":
            return VatLookup(
                rate_pct=to_decimal(override.value.value),
                base=base,
                rate_kind=None,
                meta=override.meta,
                standard_meta=standard.meta,
            )

        rate_kind = str(override.value.value_ref).upper()
        by_kind = await self.resolver.resolve(country, RateKind.VAT, as_of, vat_kind_tiers(rate_kind))
        if by_kind.value is None:
            # named kind not published for this country: standard rate applies
            return VatLookup(
                rate_pct=standard_rate,
                base=base,
                rate_kind=VatRateKind.STANDARD.value,
                meta=standard.meta,
                standard_meta=standard.meta,
            )
        meta = override.meta
        meta.note = f"rate kind {rate_kind}"
        return VatLookup(
            rate_pct=to_decimal(by_kind.value.value),
            base=base,
            rate_kind=rate_kind,
            meta=meta,
            standard_meta=standard.meta,
        )

    async def surcharges(
        self, dest: str, origin: str | None, hs6: str | None, mode: str | None, as_of: date
    ) -> SurchargeLookup:
        resolved = await self.resolver.resolve_many(
            RateScope(dest=dest, partner=origin, hs6=hs6, transport_mode=mode),
            RateKind.SURCHARGE,
            as_of,
            sourced_tiers(),
            group_by=lambda r: r.code,
        )
        meta = resolved.meta
        if meta.status in (LookupStatus.NO_DATASET, LookupStatus.NO_MATCH) and not resolved.groups:
            if await self.repo.has_coverage(dest, RateKind.SURCHARGE):
                # destination publishes surcharges, none apply to this lane
                return SurchargeLookup(items=[], meta=ResolveMeta(status=LookupStatus.OK, note="no applicable surcharges"))
            return SurchargeLookup(items=[], meta=meta)

        items = []
        for code in sorted(resolved.groups):
            record = resolved.groups[code].value
            items.append(
                SurchargeItem(
                    code=code,
                    fixed_amount=to_decimal(record.fixed_amount) or ZERO,
                    currency=record.currency,
                    rate_pct=to_decimal(record.value) or ZERO,
                    source=_source(record).value,
                    dataset=record.dataset,
                    effective_from=record.effective_from,
                )
            )
        return SurchargeLookup(items=items, meta=meta)

    async def freight(
        self, origin: str, dest: str, mode: str, unit: str, qty: Decimal, as_of: date
    ) -> FreightLookup:
        ranked, meta = await self.resolver.resolve_all(
            RateScope(dest=dest, partner=origin, transport_mode=mode),
            RateKind.FREIGHT,
            as_of,
            sourced_tiers(lambda r: (r.unit or unit) == unit),
        )
        if not ranked:
            return FreightLookup(price=None, currency=None, price_per_unit=None, step_upto=None, meta=meta)

        top = ranked[0]
        card = [
            r
            for r in ranked
            if r.effective_from == top.effective_from and specificity(r) == specificity(top) and r.upto_qty is not None
        ] or [top]
        step = pick_step(card, qty)
        per_unit = to_decimal(step.fixed_amount) or ZERO
        return FreightLookup(
            price=per_unit * qty,
            currency=step.currency,
            price_per_unit=per_unit,
            step_upto=to_decimal(step.upto_qty),
            meta=meta,
        )


def pick_step(steps: list[Any], qty: Decimal) -> Any:
    """Smallest tier covering qty, else the largest tier."""
    ordered = sorted(steps, key=lambda s: to_decimal(s.upto_qty) if s.upto_qty is not None else Decimal("Infinity"))
    for step in ordered:
        if step.upto_qty is None or to_decimal(step.upto_qty) >= qty:
            return step
    return ordered[-1]
