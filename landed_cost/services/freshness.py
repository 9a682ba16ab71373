from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timedelta, timezone

from landed_cost.core.config import get_settings
from landed_cost.core.logging import get_logger

logger = get_logger()


class FreshnessService:
    """Flags datasets whose last successful import is older than its threshold."""

    def __init__(self, import_runs, thresholds_hours: dict[str, int] | None = None) -> None:
        self.import_runs = import_runs
        self.thresholds_hours = thresholds_hours if thresholds_hours is not None else get_settings().dataset_freshness_hours

    async def stale(self, datasets: Iterable[str | None], now: datetime | None = None) -> set[str]:
        now = now or datetime.now(timezone.utc)
        stale: set[str] = set()
        for dataset in {d for d in datasets if d}:
            hours = self.thresholds_hours.get(dataset)
            if hours is None:
                continue
            last = await self.import_runs.last_success(dataset)
            if last is None or now - last > timedelta(hours=hours):
                stale.add(dataset)
        if stale:
            logger.info("datasets_stale", datasets=sorted(stale))
        return stale
