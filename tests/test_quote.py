from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace
import uuid

import pytest

from landed_cost.core.errors import InvalidRequest, NotFound
from landed_cost.models.enums import (
    CheckoutVatPreference,
    Confidence,
    DeMinimisBasis,
    DeMinimisKind,
    Incoterm,
    RateKind,
    RateSource,
    TransportMode,
)
from landed_cost.schemas.common import Money
from landed_cost.schemas.quote import Dimensions, QuoteInput, QuoteOptions
from landed_cost.services.de_minimis import DeMinimisDecision, DeMinimisService
from landed_cost.services.freshness import FreshnessService
from landed_cost.services.fx.table import FxTable
from landed_cost.services.lookups import RateLookups
from landed_cost.services.quote import (
    POLICY_DE_MINIMIS_DUTY,
    POLICY_IOSS,
    POLICY_STANDARD,
    QuoteService,
    chargeable,
    policy_text,
)
from landed_cost.services.rate_resolver import RateResolver

AS_OF = date(2024, 5, 2)


def rate(**overrides):
    values = dict(
        id=uuid.uuid4(),
        kind=RateKind.DUTY,
        dest="DE",
        partner=None,
        hs6=None,
        transport_mode=None,
        value=None,
        value_ref=None,
        fixed_amount=None,
        currency=None,
        unit=None,
        upto_qty=None,
        rule=None,
        vat_base=None,
        code=None,
        source=RateSource.OFFICIAL,
        effective_from=date(2024, 1, 1),
        effective_to=None,
        dataset=None,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


class FakeRateStore:
    def __init__(self, records):
        self.records = records

    async def find_candidates(self, scope, kind):
        def matches(value, wanted):
            return value is None if wanted is None else value in (None, wanted)

        return [
            r
            for r in self.records
            if r.kind == kind
            and r.dest == scope.dest
            and matches(r.partner, scope.partner)
            and matches(r.hs6, scope.hs6)
            and matches(r.transport_mode, scope.transport_mode)
        ]

    async def find_components(self, parent_id):
        return []

    async def has_coverage(self, dest, kind):
        return any(r.dest == dest and r.kind == kind for r in self.records)


class FakeFxLoader:
    def __init__(self, rows):
        self.rows = rows

    async def load(self, on_or_before=None):
        return FxTable.from_rows(AS_OF, self.rows)


class FakeDeMinimisRepo:
    def __init__(self, rows=None):
        self.rows = rows or []

    async def for_dest(self, dest):
        return [r for r in self.rows if r.dest == dest]


class FakeCategories:
    async def get(self, key):
        if key == "phones":
            return SimpleNamespace(key="phones", default_hs6="851712")
        return None


class FakeMerchants:
    def __init__(self, preference=CheckoutVatPreference.AUTO, registrations=None, incoterm="DAP", has_profile=True):
        self.preference = preference
        self.incoterm = incoterm
        self.has_profile = has_profile
        self.registrations = registrations if registrations is not None else [
            SimpleNamespace(jurisdiction="EU", scheme="IOSS", is_active=True)
        ]

    async def get_profile(self, merchant_id):
        if not self.has_profile:
            return None
        return SimpleNamespace(
            id=merchant_id,
            collect_vat_at_checkout=self.preference,
            charge_shipping_at_checkout=False,
            default_incoterm=self.incoterm,
        )

    async def active_registrations(self, merchant_id):
        return self.registrations


class FakeImportRuns:
    def __init__(self, finished=None):
        self.finished = finished or {}

    async def last_success(self, dataset):
        return self.finished.get(dataset)


RECORDS = [
    rate(hs6="851712", value=Decimal("5"), rule="mfn", dataset="wits"),
    rate(kind=RateKind.VAT, value=Decimal("20"), code="STANDARD", vat_base="CIF_PLUS_DUTY", dataset="vat"),
    rate(
        kind=RateKind.FREIGHT,
        partner="CN",
        transport_mode="air",
        unit="kg",
        fixed_amount=Decimal("10"),
        currency="EUR",
        dataset="cards",
    ),
    rate(kind=RateKind.SURCHARGE, transport_mode="sea", code="PORT", fixed_amount=Decimal("15"), currency="EUR"),
    rate(kind=RateKind.DUTY, dest="US", hs6="851712", value=Decimal("0"), rule="mfn", dataset="wits"),
    rate(kind=RateKind.SURCHARGE, dest="US", transport_mode="sea", code="HMF", value=Decimal("0.125")),
]

FX_ROWS = [
    SimpleNamespace(provider="ecb", base="EUR", quote="USD", rate=Decimal("1.08")),
]


def make_service(de_minimis=None, merchants=None, import_runs=None, records=None):
    service = QuoteService(SimpleNamespace())
    store = FakeRateStore(records if records is not None else RECORDS)
    service.lookups = RateLookups(RateResolver(store, out_of_scope={RateKind.VAT: {"US"}}), store)
    service.fx_loader = FakeFxLoader(FX_ROWS)
    service.de_minimis = DeMinimisService(FakeDeMinimisRepo(de_minimis))
    service.categories = FakeCategories()
    service.merchants = merchants or FakeMerchants()
    service.freshness = FreshnessService(FakeImportRuns(import_runs), {"wits": 24 * 400, "vat": 24 * 60})
    return service


def quote_input(**overrides):
    values = dict(
        origin="CN",
        dest="DE",
        item_value=Money(amount=Decimal("100"), currency="EUR"),
        dimensions=Dimensions(l=Decimal("10"), w=Decimal("10"), h=Decimal("10")),
        weight_kg=Decimal("2"),
        hs6="851712",
    )
    values.update(overrides)
    return QuoteInput(**values)


OPTS = QuoteOptions(as_of=AS_OF)


@pytest.mark.asyncio
async def test_standard_cn_to_de_quote():
    result = await make_service().quote(quote_input(), opts=OPTS)

    assert result.currency == "EUR"
    assert result.freight == Decimal("20.00")
    assert result.components.cif == Decimal("120.00")
    assert result.components.duty == Decimal("6.00")
    assert result.components.vat == Decimal("25.20")
    assert result.components.fees == Decimal("0.00")
    assert result.components.checkout_vat is None
    assert result.total == Decimal("151.20")
    assert result.guaranteed_max == Decimal("154.22")
    assert result.policy == POLICY_STANDARD
    assert result.overall_confidence == Confidence.AUTHORITATIVE
    assert result.missing_components == []
    assert result.explainability["duty"]["tier"] == "mfn"
    assert result.explainability["vat"]["vatBase"] == "CIF_PLUS_DUTY"


@pytest.mark.asyncio
async def test_de_minimis_suppresses_duty_and_vat():
    thresholds = [
        SimpleNamespace(
            dest="DE",
            kind=kind,
            basis=DeMinimisBasis.INTRINSIC,
            currency="EUR",
            value=Decimal("150"),
            effective_from=date(2021, 7, 1),
            effective_to=None,
        )
        for kind in (DeMinimisKind.DUTY, DeMinimisKind.VAT)
    ]
    result = await make_service(de_minimis=thresholds).quote(quote_input(), opts=OPTS)

    assert result.components.duty == Decimal("0.00")
    assert result.components.vat == Decimal("0.00")
    assert result.total == Decimal("120.00")
    assert result.policy == "De minimis: duty & VAT not charged at import."
    assert result.de_minimis["suppressDuty"] is True
    assert result.explainability["duty"]["suppressedByDeMinimis"] is True


@pytest.mark.asyncio
async def test_ioss_moves_vat_to_checkout():
    merchant_id = uuid.uuid4()
    result = await make_service().quote(quote_input(), merchant_id=merchant_id, opts=OPTS)

    assert result.components.vat == Decimal("0.00")
    assert result.components.checkout_vat == Decimal("20.00")
    assert result.components.duty == Decimal("6.00")
    assert result.total == Decimal("146.00")
    assert result.policy == POLICY_IOSS
    assert "checkout" in result.policy

    payload = result.to_payload()
    assert payload["components"]["checkoutVAT"] == "20.00"
    assert payload["components"]["CIF"] == "120.00"


@pytest.mark.asyncio
async def test_ioss_not_applied_when_merchant_opted_out_or_unregistered():
    merchant_id = uuid.uuid4()
    opted_out = make_service(merchants=FakeMerchants(preference=CheckoutVatPreference.NEVER))
    result = await opted_out.quote(quote_input(), merchant_id=merchant_id, opts=OPTS)
    assert result.components.vat == Decimal("25.20")
    assert result.explainability["vat"]["checkoutReason"] == "merchant_opted_out"

    unregistered = make_service(merchants=FakeMerchants(registrations=[]))
    result = await unregistered.quote(quote_input(), merchant_id=merchant_id, opts=OPTS)
    assert result.components.checkout_vat is None
    assert result.explainability["vat"]["checkoutReason"] == "no_ioss_registration"


@pytest.mark.asyncio
async def test_merchant_without_profile_uses_auto_checkout():
    merchants = FakeMerchants(has_profile=False)
    result = await make_service(merchants=merchants).quote(quote_input(), merchant_id=uuid.uuid4(), opts=OPTS)

    assert result.components.vat == Decimal("0.00")
    assert result.components.checkout_vat == Decimal("20.00")
    assert result.explainability["vat"]["checkoutReason"] == "ioss"
    assert result.incoterm == Incoterm.DAP


@pytest.mark.asyncio
async def test_incoterm_follows_merchant_profile():
    merchant_id = uuid.uuid4()
    ddp = make_service(merchants=FakeMerchants(incoterm="ddp"))
    result = await ddp.quote(quote_input(), merchant_id=merchant_id, opts=OPTS)
    assert result.incoterm == Incoterm.DDP
    assert result.to_payload()["incoterm"] == "DDP"

    unknown = make_service(merchants=FakeMerchants(incoterm="EXW"))
    result = await unknown.quote(quote_input(), merchant_id=merchant_id, opts=OPTS)
    assert result.incoterm == Incoterm.DAP

    anonymous = await ddp.quote(quote_input(), opts=OPTS)
    assert anonymous.incoterm == Incoterm.DAP


@pytest.mark.asyncio
async def test_ioss_over_threshold_uses_border_vat():
    result = await make_service().quote(
        quote_input(item_value=Money(amount=Decimal("200"), currency="EUR")),
        merchant_id=uuid.uuid4(),
        opts=OPTS,
    )
    assert result.components.checkout_vat is None
    assert result.components.vat > Decimal("0")


@pytest.mark.asyncio
async def test_out_of_scope_vat_and_freight_override_are_estimated():
    data = quote_input(dest="US", freight=Money(amount=Decimal("20"), currency="EUR"))
    result = await make_service().quote(data, opts=OPTS)

    assert result.currency == "USD"
    assert result.components.cif == Decimal("129.60")
    assert result.components.vat == Decimal("0.00")
    assert result.component_confidence.vat == Confidence.ESTIMATED
    assert result.component_confidence.freight == Confidence.ESTIMATED
    assert result.component_confidence.fx == Confidence.AUTHORITATIVE
    assert result.overall_confidence == Confidence.ESTIMATED
    assert result.sources["fx"]["providers"] == ["ecb"]


@pytest.mark.asyncio
async def test_missing_fx_is_reported():
    data = quote_input(item_value=Money(amount=Decimal("100"), currency="JPY"))
    result = await make_service().quote(data, opts=OPTS)

    assert result.component_confidence.fx == Confidence.MISSING
    assert "fx" in result.missing_components
    assert result.overall_confidence == Confidence.MISSING


@pytest.mark.asyncio
async def test_missing_datasets_grade_components_missing():
    result = await make_service(records=[]).quote(quote_input(), opts=OPTS)

    assert result.components.duty == Decimal("0.00")
    assert result.freight == Decimal("0.00")
    assert result.missing_components == ["duty", "vat", "surcharges", "freight"]


@pytest.mark.asyncio
async def test_strict_freshness_downgrades_stale_duty():
    now = datetime.now(timezone.utc)
    runs = {"wits": now - timedelta(days=500), "vat": now - timedelta(days=1)}
    service = make_service(import_runs=runs)

    relaxed = await service.quote(quote_input(), opts=OPTS)
    assert relaxed.component_confidence.duty == Confidence.AUTHORITATIVE

    strict = await service.quote(quote_input(), opts=QuoteOptions(as_of=AS_OF, strict_freshness=True))
    assert strict.component_confidence.duty == Confidence.MISSING
    assert strict.component_confidence.vat == Confidence.AUTHORITATIVE
    assert strict.missing_components == ["duty"]


@pytest.mark.asyncio
async def test_category_resolves_hs6():
    service = make_service()
    result = await service.quote(quote_input(hs6=None, category_key="phones"), opts=OPTS)
    assert result.hs6 == "851712"

    with pytest.raises(NotFound):
        await service.quote(quote_input(hs6=None, category_key="unknown"), opts=OPTS)
    with pytest.raises(InvalidRequest):
        await service.quote(quote_input(hs6=None), opts=OPTS)


def test_chargeable_weight_by_mode():
    air = quote_input(dimensions=Dimensions(l=Decimal("50"), w=Decimal("40"), h=Decimal("30")))
    kg, qty, unit = chargeable(air)
    assert kg == Decimal("12")
    assert qty == kg
    assert unit.value == "kg"

    sea = quote_input(
        mode=TransportMode.SEA, dimensions=Dimensions(l=Decimal("100"), w=Decimal("100"), h=Decimal("100"))
    )
    kg, qty, unit = chargeable(sea)
    assert kg == Decimal("2")
    assert qty == Decimal("1")
    assert unit.value == "m3"


@pytest.mark.asyncio
async def test_freight_card_without_currency_is_priced_in_base_currency():
    records = [
        r
        if r.kind != RateKind.FREIGHT
        else rate(
            kind=RateKind.FREIGHT,
            partner="CN",
            transport_mode="air",
            unit="kg",
            fixed_amount=Decimal("10"),
            dataset="cards",
        )
        for r in RECORDS
    ]
    result = await make_service(records=records).quote(quote_input(), opts=OPTS)

    assert result.currency == "EUR"
    assert result.freight == Decimal("18.52")
    assert "USD->EUR" in result.sources["fx"]["routes"]
    assert result.sources["fx"]["providers"] == ["ecb"]


def test_policy_text_names_a_single_rule():
    both = DeMinimisDecision(suppress_duty=True, suppress_vat=True)
    duty_only = DeMinimisDecision(suppress_duty=True)
    none = DeMinimisDecision()

    assert policy_text(both, checkout_collected=True) == "De minimis: duty & VAT not charged at import."
    assert policy_text(duty_only, checkout_collected=True) == POLICY_DE_MINIMIS_DUTY
    assert policy_text(none, checkout_collected=True) == POLICY_IOSS
    assert policy_text(none, checkout_collected=False) == POLICY_STANDARD
