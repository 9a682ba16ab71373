from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from landed_cost.core.config import get_settings
from landed_cost.core.errors import InvalidRequest, NotFound
from landed_cost.core.logging import get_logger
from landed_cost.models.enums import (
    CheckoutVatPreference,
    Confidence,
    FreightUnit,
    Incoterm,
    LookupStatus,
    RateKind,
    TransportMode,
    VatBase,
)
from landed_cost.repositories.fx_repo import FxRateRepository
from landed_cost.repositories.import_run_repo import ImportRunRepository
from landed_cost.repositories.rate_repo import RateRepository
from landed_cost.repositories.reference_repo import CategoryRepository, DeMinimisRepository, MerchantRepository
from landed_cost.schemas.quote import ComponentConfidence, QuoteComponents, QuoteInput, QuoteOptions, QuoteResult
from landed_cost.services.confidence import COMPONENTS, confidence_for, missing_components, worst
from landed_cost.services.de_minimis import DeMinimisDecision, DeMinimisService
from landed_cost.services.duty_composer import DutyContext, compose
from landed_cost.services.freshness import FreshnessService
from landed_cost.services.fx.table import FxTable, FxTableLoader
from landed_cost.services.lookups import RateLookups
from landed_cost.services.money import HUNDRED, ZERO, currency_for_country, is_eu, round_money
from landed_cost.services.rate_resolver import RateResolver

logger = get_logger()

VOLUMETRIC_DIVISOR = Decimal("5000")
CM3_PER_M3 = Decimal("1000000")
IOSS_JURISDICTION = "EU"
IOSS_SCHEME = "IOSS"

POLICY_DE_MINIMIS_BOTH = "De minimis: duty & VAT not charged at import."
POLICY_DE_MINIMIS_DUTY = "De minimis: duty not charged at import."
POLICY_DE_MINIMIS_VAT = "De minimis: VAT not charged at import."
POLICY_IOSS = "IOSS: VAT collected at checkout; no import VAT due."
POLICY_STANDARD = "Standard import tax rules apply."


@dataclass
class CheckoutVat:
    eligible: bool
    charge_shipping: bool = False
    reason: str | None = None


class _Converter:
    """Converts into the quote currency, tracking whether any rate was missing."""

    def __init__(self, table: FxTable, currency: str) -> None:
        self.table = table
        self.currency = currency
        self.missing = False
        self.routes: set[str] = set()
        self.providers: set[str] = set()

    def to_dest(self, amount: Decimal, from_currency: str | None) -> Decimal:
        converted = self.convert(amount, from_currency or self.currency, self.currency)
        # without a rate the amount is carried unconverted and fx is graded missing
        return amount if converted is None else converted

    def convert(self, amount: Decimal, base: str, quote: str) -> Decimal | None:
        conversion = self.table.lookup(base, quote)
        if conversion is None:
            self.missing = True
            logger.warning("fx_rate_missing", base=base, quote=quote, as_of=str(self.table.as_of))
            return None
        if conversion.route != "identity":
            self.routes.add(conversion.route)
            self.providers.update(conversion.providers)
        return amount * conversion.rate


def policy_text(de_minimis: DeMinimisDecision, checkout_collected: bool) -> str:
    """One sentence: de minimis wins over IOSS, IOSS over the standard rules."""
    if de_minimis.suppress_duty and de_minimis.suppress_vat:
        return POLICY_DE_MINIMIS_BOTH
    if de_minimis.suppress_duty:
        return POLICY_DE_MINIMIS_DUTY
    if de_minimis.suppress_vat:
        return POLICY_DE_MINIMIS_VAT
    if checkout_collected:
        return POLICY_IOSS
    return POLICY_STANDARD


def incoterm_for(profile) -> Incoterm:
    value = getattr(profile, "default_incoterm", None)
    if not value:
        return Incoterm.DAP
    try:
        return Incoterm(str(value).upper())
    except ValueError:
        logger.warning("incoterm_unsupported", incoterm=value)
        return Incoterm.DAP


def chargeable(data: QuoteInput) -> tuple[Decimal, Decimal, FreightUnit]:
    """(chargeable kg, freight quantity, freight unit) for the transport mode."""
    cm3 = data.dimensions.l * data.dimensions.w * data.dimensions.h
    if data.mode == TransportMode.AIR:
        kg = max(data.weight_kg, cm3 / VOLUMETRIC_DIVISOR)
        return kg, kg, FreightUnit.KG
    return data.weight_kg, cm3 / CM3_PER_M3, FreightUnit.M3


def _iso(value: date | None) -> str | None:
    return value.isoformat() if value else None


class QuoteService:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.settings = get_settings()
        rate_repo = RateRepository(session)
        resolver = RateResolver(rate_repo, out_of_scope={RateKind.VAT: self.settings.vat_out_of_scope})
        self.lookups = RateLookups(resolver, rate_repo)
        self.fx_loader = FxTableLoader(FxRateRepository(session))
        self.de_minimis = DeMinimisService(DeMinimisRepository(session))
        self.categories = CategoryRepository(session)
        self.merchants = MerchantRepository(session)
        self.freshness = FreshnessService(ImportRunRepository(session))

    async def quote(
        self,
        data: QuoteInput,
        merchant_id: uuid.UUID | None = None,
        opts: QuoteOptions | None = None,
    ) -> QuoteResult:
        opts = opts or QuoteOptions()
        origin, dest = data.origin, data.dest
        currency = currency_for_country(dest)
        as_of = opts.as_of or date.today()
        hs6 = await self._resolve_hs6(data)
        chargeable_kg, qty, unit = chargeable(data)

        fx = await self.fx_loader.load(opts.fx_as_of)
        money = _Converter(fx, currency)

        # freight
        freight_meta = None
        freight_step = None
        if data.freight is not None:
            freight = money.to_dest(data.freight.amount, data.freight.currency)
            freight_confidence = Confidence.ESTIMATED
            freight_status = LookupStatus.OK
        else:
            lookup = await self.lookups.freight(origin, dest, data.mode.value, unit.value, qty, as_of)
            freight_meta = lookup.meta
            freight_status = lookup.meta.status
            freight_step = lookup.step_upto
            # cards without a currency are priced in the configured base currency
            card_currency = lookup.currency or self.settings.currency_base
            freight = ZERO if lookup.price is None else money.to_dest(lookup.price, card_currency)
            freight_confidence = confidence_for(freight_status)

        item_value = money.to_dest(data.item_value.amount, data.item_value.currency)
        cif = item_value + freight

        de_minimis = await self.de_minimis.evaluate(dest, currency, item_value, freight, as_of, fx)

        # duty
        duty_lookup = await self.lookups.duty(dest, origin, hs6, as_of)
        duty_detail = None
        duty = ZERO
        if duty_lookup.record is not None:
            duty_detail = compose(
                duty_lookup.record,
                duty_lookup.components,
                DutyContext(
                    customs_value=cif,
                    currency=currency,
                    as_of=as_of,
                    net_kg=data.weight_kg,
                    quantity=data.quantity,
                    liters=data.liters,
                ),
                convert=money.convert,
            )
            if not de_minimis.suppress_duty:
                duty = duty_detail.duty

        # vat
        vat_lookup = await self.lookups.vat(dest, hs6, as_of)
        vat_rate = vat_lookup.rate_pct or ZERO
        merchant_id = merchant_id or data.merchant_id
        profile = await self.merchants.get_profile(merchant_id) if merchant_id is not None else None
        checkout = await self._checkout_vat(data, merchant_id, profile, dest, money)
        vat = ZERO
        checkout_vat = None
        if checkout.eligible:
            checkout_base = item_value + (freight if checkout.charge_shipping else ZERO)
            checkout_vat = vat_rate / HUNDRED * checkout_base
        elif not de_minimis.suppress_vat:
            vat_base = cif if vat_lookup.base == VatBase.CIF else cif + duty
            vat = vat_rate / HUNDRED * vat_base

        # surcharges
        surcharges = await self.lookups.surcharges(dest, origin, hs6, data.mode.value, as_of)
        fees = ZERO
        for item in surcharges.items:
            if item.fixed_amount:
                fees += money.to_dest(item.fixed_amount, item.currency)
            if item.rate_pct:
                fees += item.rate_pct / HUNDRED * cif

        components = QuoteComponents(
            cif=round_money(cif, currency),
            duty=round_money(duty, currency),
            vat=round_money(vat, currency),
            fees=round_money(fees, currency),
            checkout_vat=round_money(checkout_vat, currency) if checkout_vat is not None else None,
        )
        total = round_money(
            components.cif + components.duty + components.vat + components.fees + (components.checkout_vat or ZERO),
            currency,
        )
        buffer = Decimal(str(self.settings.guaranteed_max_buffer_pct))
        guaranteed_max = round_money(total * (HUNDRED + buffer) / HUNDRED, currency)

        grades = {
            "duty": confidence_for(duty_lookup.meta.status),
            "vat": confidence_for(vat_lookup.meta.status),
            "surcharges": confidence_for(surcharges.meta.status),
            "freight": freight_confidence,
            "fx": Confidence.MISSING if money.missing else Confidence.AUTHORITATIVE,
        }
        if duty_detail is not None and duty_detail.fx_missing:
            grades["fx"] = Confidence.MISSING
        strict = opts.strict_freshness if opts.strict_freshness is not None else self.settings.quote_strict_freshness
        if strict:
            await self._apply_freshness(grades, duty_lookup, vat_lookup, surcharges, freight_meta, money)

        result = QuoteResult(
            hs6=hs6,
            currency=currency,
            fx_as_of=fx.as_of,
            chargeable_kg=chargeable_kg.quantize(Decimal("0.001")),
            freight=round_money(freight, currency),
            de_minimis=self._de_minimis_summary(de_minimis),
            components=components,
            total=total,
            guaranteed_max=guaranteed_max,
            incoterm=incoterm_for(profile),
            component_confidence=ComponentConfidence(**grades),
            overall_confidence=worst(grades[name] for name in COMPONENTS),
            missing_components=missing_components(grades),
            policy=policy_text(de_minimis, checkout.eligible),
            sources={
                "duty": self._source(duty_lookup.meta),
                "vat": self._source(vat_lookup.meta),
                "surcharges": [
                    {"code": s.code, "provider": s.source, "dataset": s.dataset, "effectiveFrom": _iso(s.effective_from)}
                    for s in surcharges.items
                ],
                "freight": self._source(freight_meta) if freight_meta else {"provider": "override"},
                "fx": {
                    "asOf": _iso(fx.as_of),
                    "providers": sorted(money.providers),
                    "routes": sorted(money.routes),
                },
            },
            explainability={
                "duty": {
                    "dutyRule": getattr(duty_lookup.record, "rule", None),
                    "partner": getattr(duty_lookup.record, "partner", None),
                    "tier": duty_lookup.meta.tier,
                    "status": duty_lookup.meta.status.value,
                    "source": duty_lookup.meta.source,
                    "effectiveFrom": _iso(duty_lookup.meta.effective_from),
                    "basis": duty_detail.basis if duty_detail else None,
                    "components": duty_detail.used_components if duty_detail else [],
                    "formula": duty_detail.formula if duty_detail else None,
                    "effectivePct": str(duty_detail.effective_pct)
                    if duty_detail and duty_detail.effective_pct is not None
                    else None,
                    "suppressedByDeMinimis": de_minimis.suppress_duty,
                },
                "vat": {
                    "status": vat_lookup.meta.status.value,
                    "source": vat_lookup.meta.source,
                    "tier": vat_lookup.meta.tier,
                    "rateKind": vat_lookup.rate_kind,
                    "ratePct": str(vat_rate),
                    "vatBase": vat_lookup.base.value,
                    "effectiveFrom": _iso(vat_lookup.meta.effective_from),
                    "checkoutCollected": checkout.eligible,
                    "checkoutReason": checkout.reason,
                    "suppressedByDeMinimis": de_minimis.suppress_vat and not checkout.eligible,
                },
                "surcharges": {
                    "status": surcharges.meta.status.value,
                    "appliedCodes": [s.code for s in surcharges.items],
                    "appliedCount": len(surcharges.items),
                    "sourceRefs": sorted({s.dataset for s in surcharges.items if s.dataset}),
                },
                "freight": {
                    "model": "override" if data.freight is not None else "card",
                    "lookupStatus": freight_status.value,
                    "unit": unit.value,
                    "qty": str(qty),
                    "stepUpto": str(freight_step) if freight_step is not None else None,
                },
            },
        )
        logger.info(
            "quote_computed",
            origin=origin,
            dest=dest,
            hs6=hs6,
            total=str(total),
            currency=currency,
            overall=result.overall_confidence.value,
            missing=result.missing_components,
        )
        return result

    async def _resolve_hs6(self, data: QuoteInput) -> str:
        if data.hs6:
            return data.hs6
        if not data.category_key:
            raise InvalidRequest("Either hs6 or categoryKey is required")
        category = await self.categories.get(data.category_key)
        if category is None:
            raise NotFound(f"Unknown category {data.category_key}")
        return category.default_hs6

    async def _checkout_vat(
        self, data: QuoteInput, merchant_id: uuid.UUID | None, profile, dest: str, money: _Converter
    ) -> CheckoutVat:
        if merchant_id is None:
            return CheckoutVat(eligible=False, reason="no_merchant")
        if not is_eu(dest):
            return CheckoutVat(eligible=False, reason="non_eu_destination")
        # merchants without a stored profile get the AUTO defaults
        preference = (
            CheckoutVatPreference(profile.collect_vat_at_checkout) if profile is not None else CheckoutVatPreference.AUTO
        )
        if preference == CheckoutVatPreference.NEVER:
            return CheckoutVat(eligible=False, reason="merchant_opted_out")
        registrations = await self.merchants.active_registrations(merchant_id)
        if not any(
            r.jurisdiction.upper() == IOSS_JURISDICTION and r.scheme.upper() == IOSS_SCHEME for r in registrations
        ):
            return CheckoutVat(eligible=False, reason="no_ioss_registration")
        value_eur = money.table.convert(data.item_value.amount, data.item_value.currency, "EUR")
        if value_eur is None:
            return CheckoutVat(eligible=False, reason="fx_unavailable")
        if value_eur > Decimal(str(self.settings.ioss_threshold_eur)):
            return CheckoutVat(eligible=False, reason="over_threshold")
        charge_shipping = bool(getattr(profile, "charge_shipping_at_checkout", False))
        return CheckoutVat(eligible=True, charge_shipping=charge_shipping, reason="ioss")

    async def _apply_freshness(self, grades, duty_lookup, vat_lookup, surcharges, freight_meta, money) -> None:
        datasets = {
            "duty": [duty_lookup.meta.dataset],
            "vat": [vat_lookup.meta.dataset, getattr(vat_lookup.standard_meta, "dataset", None)],
            "surcharges": [s.dataset for s in surcharges.items],
            "freight": [freight_meta.dataset] if freight_meta else [],
            "fx": sorted(money.providers),
        }
        stale = await self.freshness.stale(d for names in datasets.values() for d in names)
        for component, names in datasets.items():
            if any(name in stale for name in names if name):
                grades[component] = Confidence.MISSING

    @staticmethod
    def _source(meta) -> dict[str, Any]:
        return {
            "provider": meta.source,
            "dataset": meta.dataset,
            "tier": meta.tier,
            "status": meta.status.value,
            "effectiveFrom": _iso(meta.effective_from),
        }

    @staticmethod
    def _de_minimis_summary(decision: DeMinimisDecision) -> dict[str, Any]:
        def side(check) -> dict[str, Any] | None:
            if check is None:
                return None
            return {
                "basis": check.basis,
                "threshold": str(check.threshold) if check.threshold is not None else None,
                "thresholdCurrency": check.threshold_currency,
                "thresholdDest": str(check.threshold_dest) if check.threshold_dest is not None else None,
                "valueChecked": str(check.value_checked),
                "under": check.under,
            }

        return {
            "suppressDuty": decision.suppress_duty,
            "suppressVat": decision.suppress_vat,
            "duty": side(decision.duty),
            "vat": side(decision.vat),
        }
