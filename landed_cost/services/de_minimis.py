from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any

from landed_cost.models.enums import DeMinimisBasis, DeMinimisKind
from landed_cost.services.fx.table import FxTable
from landed_cost.services.rate_resolver import is_effective


@dataclass
class DeMinimisCheck:
    kind: str
    basis: str
    threshold: Decimal | None
    threshold_currency: str
    threshold_dest: Decimal | None
    value_checked: Decimal
    under: bool
    effective_from: date | None = None


@dataclass
class DeMinimisDecision:
    suppress_duty: bool = False
    suppress_vat: bool = False
    duty: DeMinimisCheck | None = None
    vat: DeMinimisCheck | None = None

    @property
    def applied(self) -> bool:
        return self.suppress_duty or self.suppress_vat


def _current(rows: list[Any], kind: DeMinimisKind, as_of: date) -> Any | None:
    valid = [r for r in rows if r.kind == kind and is_effective(r, as_of)]
    if not valid:
        return None
    return max(valid, key=lambda r: r.effective_from)


def _check(
    row: Any,
    dest_currency: str,
    goods_value: Decimal,
    freight: Decimal,
    fx: FxTable,
) -> DeMinimisCheck:
    basis = DeMinimisBasis(row.basis)
    value_checked = goods_value + freight if basis == DeMinimisBasis.CIF else goods_value
    threshold = Decimal(str(row.value))
    threshold_dest = fx.convert(threshold, row.currency, dest_currency)
    return DeMinimisCheck(
        kind=DeMinimisKind(row.kind).value,
        basis=basis.value,
        threshold=threshold,
        threshold_currency=row.currency,
        threshold_dest=threshold_dest,
        value_checked=value_checked,
        # without a conversion there is no usable threshold
        under=threshold_dest is not None and value_checked <= threshold_dest,
        effective_from=row.effective_from,
    )


def evaluate_de_minimis(
    rows: list[Any],
    dest_currency: str,
    goods_value: Decimal,
    freight: Decimal,
    as_of: date,
    fx: FxTable,
) -> DeMinimisDecision:
    """Decide whether duty and/or VAT are waived below the destination's thresholds.

    Values are in destination currency. INTRINSIC thresholds compare the goods
    value only, CIF thresholds compare goods plus freight.
    """
    decision = DeMinimisDecision()
    duty_row = _current(rows, DeMinimisKind.DUTY, as_of)
    if duty_row is not None:
        decision.duty = _check(duty_row, dest_currency, goods_value, freight, fx)
        decision.suppress_duty = decision.duty.under
    vat_row = _current(rows, DeMinimisKind.VAT, as_of)
    if vat_row is not None:
        decision.vat = _check(vat_row, dest_currency, goods_value, freight, fx)
        decision.suppress_vat = decision.vat.under
    return decision


class DeMinimisService:
    def __init__(self, repo) -> None:
        self.repo = repo

    async def evaluate(
        self,
        dest: str,
        dest_currency: str,
        goods_value: Decimal,
        freight: Decimal,
        as_of: date,
        fx: FxTable,
    ) -> DeMinimisDecision:
        rows = await self.repo.for_dest(dest)
        return evaluate_de_minimis(rows, dest_currency, goods_value, freight, as_of, fx)
