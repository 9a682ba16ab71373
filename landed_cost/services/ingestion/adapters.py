from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

import pandas as pd

from landed_cost.models.enums import DutyComponentType, DutyRule, RateKind, RateSource

HS6 = re.compile(r"^\d{6}$")
ISO2 = re.compile(r"^[A-Z]{2}$")
PCT_EXPONENT = Decimal("0.001")


class RowError(ValueError):
    """A feed row that cannot be normalized. Callers skip and count it."""


@dataclass(frozen=True)
class CandidateComponent:
    component_type: DutyComponentType
    rate_pct: Decimal | None = None
    amount: Decimal | None = None
    currency: str | None = None
    uom: str | None = None
    qualifier: str | None = None
    combinator_formula: str | None = None
    effective_from: date | None = None
    effective_to: date | None = None

    def to_values(self) -> dict[str, Any]:
        return {
            "component_type": self.component_type,
            "rate_pct": self.rate_pct,
            "amount": self.amount,
            "currency": self.currency,
            "uom": self.uom,
            "qualifier": self.qualifier,
            "combinator_formula": self.combinator_formula,
            "effective_from": self.effective_from,
            "effective_to": self.effective_to,
        }


@dataclass(frozen=True)
class CandidateRate:
    """The one normalized row type every feed adapter produces."""

    kind: RateKind
    dest: str
    effective_from: date
    source: RateSource = RateSource.OFFICIAL
    hs6: str | None = None
    partner: str | None = None
    rate_pct: Decimal | None = None
    rule: str | None = None
    currency: str | None = None
    effective_to: date | None = None
    dataset: str | None = None
    notes: str | None = None
    components: tuple[CandidateComponent, ...] = field(default_factory=tuple)

    def to_values(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "dest": self.dest,
            "partner": self.partner,
            "hs6": self.hs6,
            "value": self.rate_pct,
            "currency": self.currency,
            "rule": self.rule,
            "source": self.source,
            "effective_from": self.effective_from,
            "effective_to": self.effective_to,
            "dataset": self.dataset,
            "notes": self.notes,
        }


def parse_pct(value: Any) -> Decimal:
    try:
        pct = Decimal(str(value).strip().rstrip("%"))
    except (InvalidOperation, ValueError) as exc:
        raise RowError(f"invalid duty %: {value!r}") from exc
    if not pct.is_finite() or pct < 0:
        raise RowError(f"invalid duty %: {value!r}")
    return pct.quantize(PCT_EXPONENT, rounding=ROUND_HALF_UP)


def hs6_from_token(token: Any) -> str | None:
    """Six-digit code from a literal token; 8+ digit codes are cut to their HS6 prefix."""
    text = str(token or "").strip().replace(".", "")
    if not text.isdigit():
        return None
    if len(text) == 6:
        return text
    if len(text) >= 8:
        return text[:6]
    return None


def _iso2(value: Any, field_name: str) -> str:
    code = str(value or "").strip().upper()
    if not ISO2.match(code):
        raise RowError(f"invalid {field_name}: {value!r}")
    return code


def _date(value: Any, field_name: str) -> date:
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    try:
        parsed = pd.to_datetime(value)
    except (ValueError, TypeError) as exc:
        raise RowError(f"invalid {field_name}: {value!r}") from exc
    if pd.isna(parsed):
        raise RowError(f"missing {field_name}")
    return parsed.date()


def _optional_date(value: Any, field_name: str) -> date | None:
    if value is None or (not isinstance(value, (date, str)) and pd.isna(value)) or value == "":
        return None
    return _date(value, field_name)


def from_sdmx_observation(
    dest: str,
    hs6: str,
    year: int,
    value: Any,
    duty_type: str,
    partner: str | None,
) -> CandidateRate:
    """WITS TRAINS observation: yearly simple-average ad valorem rate."""
    preferential = duty_type == "prf"
    return CandidateRate(
        kind=RateKind.DUTY,
        dest=dest,
        hs6=hs6,
        partner=partner if preferential else None,
        rate_pct=parse_pct(value),
        rule=DutyRule.FTA.value if preferential else DutyRule.MFN.value,
        currency="USD",
        effective_from=date(year, 1, 1),
        dataset="wits",
        notes=(
            "source: WITS/UNCTAD TRAINS (Preferential-PRF, SimpleAverage, reported)"
            if preferential
            else "source: WITS/UNCTAD TRAINS (SimpleAverage, reported)"
        ),
    )


def from_json_duty_row(row: dict[str, Any], dataset: str) -> CandidateRate:
    """Duty feed rows in the shape {dest, partner?, hs6, ratePct, rule?, effectiveFrom, effectiveTo?, components?}."""
    hs6 = hs6_from_token(row.get("hs6") or row.get("hsCode"))
    if hs6 is None:
        raise RowError(f"invalid hs6: {row.get('hs6')!r}")
    partner = row.get("partner") or None
    components = tuple(_component(c) for c in row.get("components") or [])
    rate = row.get("ratePct")
    return CandidateRate(
        kind=RateKind.DUTY,
        dest=_iso2(row.get("dest"), "dest"),
        hs6=hs6,
        partner=_iso2(partner, "partner") if partner else None,
        rate_pct=parse_pct(rate) if rate is not None else None,
        rule=str(row.get("rule") or (DutyRule.FTA.value if partner else DutyRule.MFN.value)).lower(),
        currency=row.get("currency"),
        source=RateSource(str(row.get("source") or RateSource.OFFICIAL.value).lower()),
        effective_from=_date(row.get("effectiveFrom"), "effectiveFrom"),
        effective_to=_optional_date(row.get("effectiveTo"), "effectiveTo"),
        dataset=dataset,
        notes=row.get("notes"),
        components=components,
    )


def _component(raw: dict[str, Any]) -> CandidateComponent:
    try:
        component_type = DutyComponentType(str(raw.get("type")).lower())
    except ValueError as exc:
        raise RowError(f"invalid component type: {raw.get('type')!r}") from exc
    amount = raw.get("amount")
    rate = raw.get("ratePct")
    return CandidateComponent(
        component_type=component_type,
        rate_pct=parse_pct(rate) if rate is not None else None,
        amount=Decimal(str(amount)) if amount is not None else None,
        currency=raw.get("currency"),
        uom=raw.get("uom"),
        qualifier=raw.get("qualifier"),
        combinator_formula=raw.get("formula") or raw.get("combinatorFormula"),
        effective_from=_optional_date(raw.get("effectiveFrom"), "effectiveFrom"),
        effective_to=_optional_date(raw.get("effectiveTo"), "effectiveTo"),
    )


def from_frame_row(row: dict[str, Any], dataset: str) -> CandidateRate:
    """Row from a normalized CSV/XLSX tariff sheet (see normalize_columns)."""
    hs6 = hs6_from_token(row.get("hs6") or row.get("hs_code") or row.get("commodity_code"))
    if hs6 is None:
        raise RowError(f"invalid hs6 in row {row!r}")
    partner = row.get("partner") or row.get("origin")
    partner = None if partner is None or (isinstance(partner, float) and pd.isna(partner)) else partner
    return CandidateRate(
        kind=RateKind.DUTY,
        dest=_iso2(row.get("dest") or row.get("destination"), "dest"),
        hs6=hs6,
        partner=_iso2(partner, "partner") if partner else None,
        rate_pct=parse_pct(row.get("rate_pct") if row.get("rate_pct") is not None else row.get("duty_rate")),
        rule=DutyRule.FTA.value if partner else DutyRule.MFN.value,
        effective_from=_date(row.get("effective_from") or row.get("valid_from"), "effective_from"),
        effective_to=_optional_date(row.get("effective_to") or row.get("valid_to"), "effective_to"),
        dataset=dataset,
    )


def normalize_columns(df: pd.DataFrame) -> pd.DataFrame:
    df = df.copy()
    df.columns = [
        str(c)
        .strip()
        .lower()
        .replace(" ", "_")
        .replace("-", "_")
        .replace("/", "_")
        for c in df.columns
    ]
    return df
