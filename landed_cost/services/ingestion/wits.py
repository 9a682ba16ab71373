from __future__ import annotations

from typing import Any

import pycountry

from landed_cost.core.config import Settings, get_settings
from landed_cost.core.errors import InvalidRequest, UpstreamUnavailable
from landed_cost.core.logging import get_logger
from landed_cost.services.http_client import get_json
from landed_cost.services.ingestion.feed_cache import FeedCache

logger = get_logger()

DATAFLOW = "DF_WITS_Tariff_TRAINS"
UNION_TOKENS = {"EU": "918", "EUN": "918", "EU27": "918", "EU28": "918"}
WORLD_TOKENS = {"ALL": "000", "WLD": "000", "WORLD": "000"}
DATA_TYPES = ("reported", "aveestimated")


def reporter_token(code: str) -> tuple[str, str]:
    """WITS numeric token and display code for an ISO2 country, EU or world."""
    up = str(code or "").strip().upper()
    if not up:
        raise InvalidRequest("empty reporter/partner")
    if up in UNION_TOKENS:
        return UNION_TOKENS[up], "EU"
    if up in WORLD_TOKENS:
        return WORLD_TOKENS[up], "WLD"
    country = pycountry.countries.get(alpha_2=up)
    if country is None:
        raise InvalidRequest(f"unknown ISO2 country: {code}")
    return country.numeric, up


def _has_series(payload: Any) -> bool:
    if not isinstance(payload, dict):
        return False
    data_sets = payload.get("dataSets") or []
    return bool(data_sets and data_sets[0].get("series"))


class WitsClient:
    def __init__(self, cache: FeedCache | None = None, settings: Settings | None = None) -> None:
        self.cache = cache if cache is not None else FeedCache()
        self.settings = settings or get_settings()

    def url(self, reporter: str, partner: str, data_type: str) -> str:
        return f"{self.settings.wits_sdmx_base}/data/{DATAFLOW}/A.{reporter}.{partner}..{data_type}/"

    async def fetch(self, reporter: str, partner: str, start_year: int, end_year: int) -> dict | None:
        """Reported rates first, AVE estimates when the reported series is empty or unavailable."""
        params = {"startperiod": start_year, "endperiod": end_year, "format": "JSON"}
        last_error: UpstreamUnavailable | None = None
        for data_type in DATA_TYPES:
            url = self.url(reporter, partner, data_type)
            cache_key = f"{url}?{start_year}-{end_year}"
            payload = self.cache.get(cache_key)
            if payload is None:
                try:
                    payload = await get_json(url, params=params, headers={"user-agent": "landed-cost-importer"})
                except UpstreamUnavailable as exc:
                    last_error = exc
                    logger.warning("wits_fetch_failed", url=url, error=exc.message)
                    continue
                self.cache.put(cache_key, payload)
            if _has_series(payload):
                return payload
        if last_error is not None:
            raise last_error
        return None
