from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any

from redis.exceptions import RedisError

from landed_cost.core.config import get_settings
from landed_cost.core.logging import get_logger
from landed_cost.core.redis import redis_get_json, redis_set_json

logger = get_logger()

HUBS = ("EUR", "USD")
PROVIDER_PRIORITY = ("ecb", "exchangerate.host", "openexchangerates")


@dataclass(frozen=True)
class FxLeg:
    base: str
    quote: str
    rate: Decimal
    provider: str
    source_ref: str | None = None


@dataclass(frozen=True)
class FxConversion:
    rate: Decimal
    route: str
    providers: tuple[str, ...]


@dataclass
class FxTable:
    """All reference rates for one pinned as_of date, held in memory for a quote."""

    as_of: date | None
    legs: dict[tuple[str, str], FxLeg] = field(default_factory=dict)

    @classmethod
    def from_rows(cls, as_of: date | None, rows: list[Any]) -> "FxTable":
        def priority(row: Any) -> int:
            try:
                return PROVIDER_PRIORITY.index(row.provider)
            except ValueError:
                return len(PROVIDER_PRIORITY)

        legs: dict[tuple[str, str], FxLeg] = {}
        for row in sorted(rows, key=priority):
            key = (row.base.upper(), row.quote.upper())
            if key in legs:
                continue
            legs[key] = FxLeg(
                base=key[0],
                quote=key[1],
                rate=Decimal(str(row.rate)),
                provider=row.provider,
                source_ref=getattr(row, "source_ref", None),
            )
        return cls(as_of=as_of, legs=legs)

    def _pair(self, base: str, quote: str) -> tuple[Decimal, tuple[str, ...]] | None:
        leg = self.legs.get((base, quote))
        if leg is not None:
            return leg.rate, (leg.provider,)
        reverse = self.legs.get((quote, base))
        if reverse is not None and reverse.rate != 0:
            return Decimal(1) / reverse.rate, (reverse.provider,)
        return None

    def lookup(self, base: str, quote: str) -> FxConversion | None:
        base, quote = base.upper(), quote.upper()
        if base == quote:
            return FxConversion(rate=Decimal(1), route="identity", providers=())
        direct = self._pair(base, quote)
        if direct is not None:
            return FxConversion(rate=direct[0], route=f"{base}->{quote}", providers=direct[1])
        for hub in HUBS:
            if hub in (base, quote):
                continue
            first = self._pair(base, hub)
            second = self._pair(hub, quote)
            if first is not None and second is not None:
                return FxConversion(
                    rate=first[0] * second[0],
                    route=f"{base}->{hub}->{quote}",
                    providers=first[1] + second[1],
                )
        return None

    def convert(self, amount: Decimal, base: str, quote: str) -> Decimal | None:
        conversion = self.lookup(base, quote)
        if conversion is None:
            return None
        return amount * conversion.rate

    def to_cache(self) -> dict[str, Any]:
        return {
            "as_of": self.as_of.isoformat() if self.as_of else None,
            "legs": [
                {"base": l.base, "quote": l.quote, "rate": str(l.rate), "provider": l.provider, "source_ref": l.source_ref}
                for l in self.legs.values()
            ],
        }

    @classmethod
    def from_cache(cls, payload: dict[str, Any]) -> "FxTable":
        as_of = date.fromisoformat(payload["as_of"]) if payload.get("as_of") else None
        legs = {}
        for item in payload.get("legs", []):
            leg = FxLeg(
                base=item["base"],
                quote=item["quote"],
                rate=Decimal(item["rate"]),
                provider=item["provider"],
                source_ref=item.get("source_ref"),
            )
            legs[(leg.base, leg.quote)] = leg
        return cls(as_of=as_of, legs=legs)


class FxTableLoader:
    def __init__(self, repo, use_cache: bool = True) -> None:
        self.repo = repo
        self.use_cache = use_cache
        self.settings = get_settings()

    async def load(self, on_or_before: date | None = None) -> FxTable:
        as_of = await self.repo.latest_as_of(on_or_before)
        if as_of is None:
            logger.warning("fx_table_empty", on_or_before=str(on_or_before) if on_or_before else None)
            return FxTable(as_of=None)

        cache_key = f"fx:table:{as_of.isoformat()}"
        if self.use_cache:
            try:
                cached = await redis_get_json(cache_key)
            except RedisError as exc:
                logger.warning("fx_table_cache_unavailable", error=str(exc))
                cached = None
            if cached:
                return FxTable.from_cache(cached)

        table = FxTable.from_rows(as_of, await self.repo.rates_on(as_of))
        if self.use_cache:
            try:
                await redis_set_json(cache_key, table.to_cache(), self.settings.fx_table_cache_ttl_seconds)
            except RedisError as exc:
                logger.warning("fx_table_cache_unavailable", error=str(exc))
        return table
