from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest

from landed_cost.core.errors import ComputationError
from landed_cost.models.enums import DutyComponentType
from landed_cost.services.duty_composer import DutyContext, compose, parse_formula


def component(kind, **overrides):
    values = dict(
        component_type=kind,
        rate_pct=None,
        amount=None,
        currency=None,
        uom=None,
        qualifier=None,
        combinator_formula=None,
        effective_from=None,
        effective_to=None,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


PARENT = SimpleNamespace(id="r1", value=Decimal("5"))
CTX = DutyContext(
    customs_value=Decimal("200"),
    currency="EUR",
    as_of=date(2024, 5, 1),
    net_kg=Decimal("10"),
    quantity=Decimal("4"),
)


def test_headline_rate_without_components():
    result = compose(PARENT, [], CTX)
    assert result.duty == Decimal("10")
    assert result.basis == "headline"
    assert result.effective_pct == Decimal("5")


def test_ad_valorem_plus_specific_is_summed():
    parts = [
        component(DutyComponentType.AD_VALOREM, rate_pct=Decimal("3")),
        component(DutyComponentType.SPECIFIC, amount=Decimal("0.5"), uom="kg", currency="EUR"),
    ]
    result = compose(PARENT, parts, CTX)
    assert result.duty == Decimal("11")
    assert result.basis == "components"
    assert result.used_components == ["ad_valorem", "specific"]


def test_composition_is_order_independent():
    parts = [
        component(DutyComponentType.AD_VALOREM, rate_pct=Decimal("8"), combinator_formula="max_of(ad_valorem, specific)"),
        component(DutyComponentType.SPECIFIC, amount=Decimal("2"), uom="kg", combinator_formula="max_of(ad_valorem, specific)"),
        component(DutyComponentType.MINIMUM, amount=Decimal("25")),
        component(DutyComponentType.MAXIMUM, amount=Decimal("60")),
    ]
    forward = compose(PARENT, parts, CTX)
    backward = compose(PARENT, list(reversed(parts)), CTX)
    assert forward.duty == backward.duty == Decimal("25")
    assert forward.formula == "max_of(ad_valorem, specific)"


def test_min_and_max_clamp():
    floor = [
        component(DutyComponentType.AD_VALOREM, rate_pct=Decimal("1")),
        component(DutyComponentType.MINIMUM, amount=Decimal("5")),
    ]
    assert compose(PARENT, floor, CTX).duty == Decimal("5")

    ceiling = [
        component(DutyComponentType.AD_VALOREM, rate_pct=Decimal("50")),
        component(DutyComponentType.MAXIMUM, amount=Decimal("30")),
    ]
    assert compose(PARENT, ceiling, CTX).duty == Decimal("30")


def test_whichever_is_lower_phrase():
    parts = [
        component(DutyComponentType.AD_VALOREM, rate_pct=Decimal("10"), combinator_formula="whichever is lower"),
        component(DutyComponentType.SPECIFIC, amount=Decimal("3"), uom="unit"),
    ]
    assert compose(PARENT, parts, CTX).duty == Decimal("12")


def test_conflicting_formulas_raise():
    parts = [
        component(DutyComponentType.AD_VALOREM, rate_pct=Decimal("10"), combinator_formula="max_of(ad_valorem, specific)"),
        component(DutyComponentType.SPECIFIC, amount=Decimal("3"), combinator_formula="min_of(ad_valorem, specific)"),
    ]
    with pytest.raises(ComputationError):
        compose(PARENT, parts, CTX)


def test_parse_formula():
    assert parse_formula(None) is None
    assert parse_formula("MAX_OF(specific, ad_valorem)") == "max"
    assert parse_formula("whichever is greater") == "max"
    with pytest.raises(ComputationError):
        parse_formula("ad_valorem + 2 * specific")


def test_expired_components_fall_back_to_headline():
    parts = [component(DutyComponentType.AD_VALOREM, rate_pct=Decimal("9"), effective_to=date(2024, 1, 1))]
    result = compose(PARENT, parts, CTX)
    assert result.basis == "headline"
    assert result.duty == Decimal("10")


def test_foreign_currency_specific_duty_is_converted():
    parts = [component(DutyComponentType.SPECIFIC, amount=Decimal("1"), uom="kg", currency="USD")]

    def convert(amount, base, quote):
        assert (base, quote) == ("USD", "EUR")
        return amount * Decimal("0.9")

    result = compose(PARENT, parts, CTX, convert=convert)
    assert result.duty == Decimal("9.0")
    assert result.fx_missing is False

    missing = compose(PARENT, parts, CTX, convert=lambda *args: None)
    assert missing.fx_missing is True
    assert missing.duty == Decimal("0")
