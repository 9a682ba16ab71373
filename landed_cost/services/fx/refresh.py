from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date

from landed_cost.core.config import get_settings
from landed_cost.core.errors import UpstreamUnavailable
from landed_cost.core.logging import get_logger
from landed_cost.services.fx.merge import ProviderFeed, build_day
from landed_cost.services.http_client import CircuitBreaker

logger = get_logger()


@dataclass
class FxRefreshResult:
    as_of: date
    inserted: int
    providers: list[str] = field(default_factory=list)
    filled: dict[str, str] = field(default_factory=dict)


class FxRefreshService:
    def __init__(
        self,
        repo,
        primary,
        secondaries: list | None = None,
        max_lag_days: int | None = None,
        breakers: dict[str, CircuitBreaker] | None = None,
    ) -> None:
        self.repo = repo
        self.primary = primary
        self.secondaries = secondaries or []
        self.max_lag_days = (
            max_lag_days if max_lag_days is not None else get_settings().fx_secondary_max_lag_days
        )
        self.breakers = breakers if breakers is not None else {}

    async def refresh(self, on: date | None = None) -> FxRefreshResult:
        primary_feed: ProviderFeed = await self.primary.fetch(on)
        secondary_feeds: list[ProviderFeed] = []
        for provider in self.secondaries:
            breaker = self.breakers.setdefault(provider.name, CircuitBreaker())
            if not breaker.allow():
                logger.info("fx_secondary_circuit_open", provider=provider.name)
                continue
            try:
                feed = await provider.fetch(primary_feed.as_of)
            except UpstreamUnavailable as exc:
                breaker.record_failure()
                logger.warning("fx_secondary_failed", provider=provider.name, error=exc.message)
                continue
            breaker.record_success()
            secondary_feeds.append(feed)

        day = build_day(primary_feed, secondary_feeds, self.max_lag_days)
        inserted = await self.repo.insert_ignore([row.as_dict() for row in day.rates])
        providers = [primary_feed.provider] + [f.provider for f in secondary_feeds]
        logger.info(
            "fx_refresh_complete",
            as_of=str(day.as_of),
            rows=len(day.rates),
            inserted=inserted,
            providers=providers,
            filled=sorted(day.filled),
        )
        return FxRefreshResult(as_of=day.as_of, inserted=inserted, providers=providers, filled=day.filled)
