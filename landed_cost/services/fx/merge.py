from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from landed_cost.core.errors import UpstreamUnavailable
from landed_cost.core.logging import get_logger

logger = get_logger()

ISO_CURRENCY = re.compile(r"^[A-Z]{3}$")
RATE_EXPONENT = Decimal("0.00000001")
ANCHOR = "EUR"
CROSS = "USD"


@dataclass
class ProviderFeed:
    """One provider's EUR-anchored quotes for a single day."""

    provider: str
    as_of: date
    rates: dict[str, Any]
    source_ref: str | None = None

    @property
    def ref(self) -> str:
        return self.source_ref or f"{self.provider}:{self.as_of.isoformat()}"


@dataclass(frozen=True)
class MergedRate:
    rate: Decimal
    provider: str
    source_ref: str


@dataclass(frozen=True)
class FxRow:
    provider: str
    base: str
    quote: str
    as_of: date
    rate: Decimal
    source_ref: str

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class FxDay:
    as_of: date
    rates: list[FxRow]
    filled: dict[str, str] = field(default_factory=dict)


def clean_rate(value: Any) -> Decimal | None:
    """Positive finite rate quantized to 8 places, else None."""
    try:
        rate = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return None
    if not rate.is_finite() or rate <= 0:
        return None
    rate = rate.quantize(RATE_EXPONENT, rounding=ROUND_HALF_UP)
    return rate if rate > 0 else None


def _collect(feed: ProviderFeed) -> dict[str, MergedRate]:
    out: dict[str, MergedRate] = {}
    for currency, raw in feed.rates.items():
        code = str(currency).upper()
        if code == ANCHOR or not ISO_CURRENCY.match(code):
            continue
        rate = clean_rate(raw)
        if rate is None:
            continue
        out[code] = MergedRate(rate=rate, provider=feed.provider, source_ref=feed.ref)
    return out


def merge_fill_only(
    primary: ProviderFeed, secondaries: list[ProviderFeed], max_lag_days: int
) -> tuple[dict[str, MergedRate], dict[str, str]]:
    merged = _collect(primary)
    filled: dict[str, str] = {}
    for feed in secondaries:
        lag = abs((primary.as_of - feed.as_of).days)
        if lag > max_lag_days:
            logger.info("fx_secondary_skipped", provider=feed.provider, as_of=str(feed.as_of), lag_days=lag)
            continue
        for code, value in _collect(feed).items():
            if code in merged:
                continue
            merged[code] = value
            filled[code] = feed.provider
    return merged, filled


def build_day(primary: ProviderFeed, secondaries: list[ProviderFeed], max_lag_days: int) -> FxDay:
    """Merge one day of reference rates into the full provider-scoped table.

    The primary feed's date is the canonical as_of. Secondaries only fill
    currencies the primary lacks. EUR/USD is always the primary's, and USD
    crosses are derived through EUR keeping the provenance of the other leg.
    """
    merged, filled = merge_fill_only(primary, secondaries, max_lag_days)
    eur_usd = merged.get(CROSS)
    if eur_usd is None or eur_usd.provider != primary.provider:
        raise UpstreamUnavailable(f"{primary.provider} feed has no {CROSS} rate", as_of=str(primary.as_of))

    as_of = primary.as_of
    rows: list[FxRow] = []
    seen: set[tuple[str, str, str, date]] = set()

    def emit(provider: str, base: str, quote: str, rate: Decimal | None, source_ref: str) -> None:
        cleaned = clean_rate(rate) if rate is not None else None
        if cleaned is None:
            return
        key = (provider, base, quote, as_of)
        if key in seen:
            return
        seen.add(key)
        rows.append(FxRow(provider=provider, base=base, quote=quote, as_of=as_of, rate=cleaned, source_ref=source_ref))

    primary_ref = primary.ref
    emit(primary.provider, ANCHOR, CROSS, eur_usd.rate, primary_ref)
    emit(primary.provider, CROSS, ANCHOR, Decimal(1) / eur_usd.rate, primary_ref)

    for code in sorted(merged):
        if code == CROSS:
            continue
        leg = merged[code]
        emit(leg.provider, ANCHOR, code, leg.rate, leg.source_ref)
        emit(leg.provider, code, ANCHOR, Decimal(1) / leg.rate, leg.source_ref)
        usd_to_x = leg.rate / eur_usd.rate
        emit(leg.provider, CROSS, code, usd_to_x, leg.source_ref)
        emit(leg.provider, code, CROSS, Decimal(1) / usd_to_x, leg.source_ref)

    return FxDay(as_of=as_of, rates=rows, filled=filled)
