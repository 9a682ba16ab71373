from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any

from landed_cost.core.errors import ComputationError
from landed_cost.models.enums import DutyComponentType
from landed_cost.services.money import HUNDRED, ZERO, to_decimal
from landed_cost.services.rate_resolver import is_effective

Converter = Callable[[Decimal, str, str], Decimal | None]

_FORMULA_FN = re.compile(r"^\s*(max_of|min_of)\s*\(\s*(\w+)\s*,\s*(\w+)\s*\)\s*$", re.IGNORECASE)
_HIGHER = re.compile(r"whichever\s+is\s+(higher|greater)", re.IGNORECASE)
_LOWER = re.compile(r"whichever\s+is\s+(lower|lesser|smaller)", re.IGNORECASE)
_LEGS = {DutyComponentType.AD_VALOREM.value, DutyComponentType.SPECIFIC.value}


@dataclass
class DutyContext:
    customs_value: Decimal
    currency: str
    as_of: date
    net_kg: Decimal | None = None
    quantity: Decimal | None = None
    liters: Decimal | None = None


@dataclass
class DutyComputation:
    duty: Decimal
    effective_pct: Decimal | None
    basis: str
    used_components: list[str] = field(default_factory=list)
    formula: str | None = None
    fx_missing: bool = False


def parse_formula(formula: str | None) -> str | None:
    """Return "max", "min" or None (plain sum) for a combinator formula."""
    if formula is None or not formula.strip():
        return None
    match = _FORMULA_FN.match(formula)
    if match:
        legs = {match.group(2).lower(), match.group(3).lower()}
        if legs != _LEGS:
            raise ComputationError(f"Unsupported duty formula operands: {formula}")
        return "max" if match.group(1).lower() == "max_of" else "min"
    if _HIGHER.search(formula):
        return "max"
    if _LOWER.search(formula):
        return "min"
    raise ComputationError(f"Unparseable duty formula: {formula}")


def uom_factor(uom: str | None, ctx: DutyContext) -> Decimal:
    unit = (uom or "").strip().lower()
    if not unit:
        return Decimal("1")
    if unit == "kg":
        return ctx.net_kg or ZERO
    if unit == "100kg":
        return (ctx.net_kg or ZERO) / HUNDRED
    if unit in {"l", "liter", "litre"}:
        return ctx.liters or ZERO
    return ctx.quantity if ctx.quantity is not None else Decimal("1")


def _component_type(component: Any) -> DutyComponentType:
    value = component.component_type
    return value if isinstance(value, DutyComponentType) else DutyComponentType(str(value))


class _Composer:
    def __init__(self, ctx: DutyContext, convert: Converter | None) -> None:
        self.ctx = ctx
        self.convert = convert
        self.fx_missing = False

    def amount(self, component: Any) -> Decimal | None:
        rate_pct = to_decimal(component.rate_pct)
        if rate_pct is not None:
            return rate_pct / HUNDRED * self.ctx.customs_value
        amount = to_decimal(component.amount)
        if amount is None:
            return None
        charge = amount * uom_factor(component.uom, self.ctx)
        currency = (component.currency or self.ctx.currency).upper()
        if currency == self.ctx.currency.upper():
            return charge
        if self.convert is None:
            self.fx_missing = True
            return None
        converted = self.convert(charge, currency, self.ctx.currency)
        if converted is None:
            self.fx_missing = True
        return converted


def compose(
    parent: Any,
    components: list[Any],
    ctx: DutyContext,
    convert: Converter | None = None,
) -> DutyComputation:
    """Compose a duty charge from its parent rate and dated components.

    Ad valorem and specific legs are summed, or combined by a component
    combinator formula, then clamped by any minimum and maximum components.
    The returned charge is unrounded.
    """
    active = [
        c
        for c in components
        if is_effective(c, ctx.as_of) and _component_type(c) != DutyComponentType.OTHER
    ]
    if not active:
        rate_pct = to_decimal(getattr(parent, "value", None)) or ZERO
        return DutyComputation(
            duty=rate_pct / HUNDRED * ctx.customs_value,
            effective_pct=rate_pct,
            basis="headline",
        )

    formulas = {c.combinator_formula.strip().lower() for c in active if c.combinator_formula}
    if len(formulas) > 1:
        raise ComputationError("Conflicting duty formulas", formulas=sorted(formulas))
    formula = next(iter(formulas), None)
    mode = parse_formula(formula)

    composer = _Composer(ctx, convert)
    ad_valorem = ZERO
    specific = ZERO
    has_specific = False
    minimums: list[Decimal] = []
    maximums: list[Decimal] = []
    used: list[str] = []
    for component in active:
        kind = _component_type(component)
        value = composer.amount(component)
        if value is None:
            continue
        used.append(kind.value)
        if kind == DutyComponentType.AD_VALOREM:
            ad_valorem += value
        elif kind == DutyComponentType.SPECIFIC:
            specific += value
            has_specific = True
        elif kind == DutyComponentType.MINIMUM:
            minimums.append(value)
        elif kind == DutyComponentType.MAXIMUM:
            maximums.append(value)

    if mode == "max" and has_specific:
        duty = max(ad_valorem, specific)
    elif mode == "min" and has_specific:
        duty = min(ad_valorem, specific)
    else:
        duty = ad_valorem + specific

    if minimums:
        duty = max(duty, max(minimums))
    if maximums:
        duty = min(duty, min(maximums))

    effective_pct = None
    if ctx.customs_value > ZERO:
        effective_pct = duty / ctx.customs_value * HUNDRED
    return DutyComputation(
        duty=duty,
        effective_pct=effective_pct,
        basis="components",
        used_components=sorted(used),
        formula=formula,
        fx_missing=composer.fx_missing,
    )
