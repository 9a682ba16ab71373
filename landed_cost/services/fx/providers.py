from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from landed_cost.core.config import Settings, get_settings
from landed_cost.core.errors import UpstreamUnavailable
from landed_cost.services.fx.merge import ProviderFeed, clean_rate
from landed_cost.services.http_client import get_json


class EcbProvider:
    """Primary feed: ECB euro foreign exchange reference rates (SDMX-JSON)."""

    name = "ecb"

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()

    async def fetch(self, on: date | None = None) -> ProviderFeed:
        url = f"{self.settings.ecb_api_base}/D..EUR.SP00.A"
        params: dict[str, Any] = {"format": "jsondata"}
        if on is None:
            params["lastNObservations"] = 1
        else:
            params["startPeriod"] = on.isoformat()
            params["endPeriod"] = on.isoformat()
        payload = await get_json(url, params=params)
        return self.parse(payload)

    def parse(self, payload: dict) -> ProviderFeed:
        try:
            structure = payload["structure"]["dimensions"]
            series_dims = structure["series"]
            obs_dates = [v["id"] for v in structure["observation"][0]["values"]]
            series = payload["dataSets"][0]["series"]
        except (KeyError, IndexError, TypeError) as exc:
            raise UpstreamUnavailable("Malformed ECB payload") from exc

        currency_pos = next((i for i, d in enumerate(series_dims) if d.get("id") == "CURRENCY"), 1)
        currency_values = series_dims[currency_pos]["values"]

        by_date: dict[str, dict[str, Any]] = {}
        for key, body in series.items():
            parts = key.split(":")
            try:
                currency = currency_values[int(parts[currency_pos])]["id"]
            except (IndexError, ValueError):
                continue
            for obs_key, values in (body.get("observations") or {}).items():
                if not values or values[0] is None:
                    continue
                try:
                    obs_date = obs_dates[int(obs_key)]
                except (IndexError, ValueError) as exc:
                    raise UpstreamUnavailable(f"Malformed ECB observation key {obs_key!r}") from exc
                by_date.setdefault(obs_date, {})[currency] = values[0]

        if not by_date:
            raise UpstreamUnavailable("ECB payload has no observations")
        latest = max(by_date)
        as_of = date.fromisoformat(latest)
        return ProviderFeed(
            provider=self.name,
            as_of=as_of,
            rates=by_date[latest],
            source_ref=f"ecb:{latest}",
        )


class ExchangeRateHostProvider:
    name = "exchangerate.host"

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()

    async def fetch(self, on: date | None = None) -> ProviderFeed:
        day = on.isoformat() if on else "latest"
        payload = await get_json(f"{self.settings.exchangerate_host_base}/{day}", params={"base": "EUR"})
        return self.parse(payload)

    def parse(self, payload: dict) -> ProviderFeed:
        rates = payload.get("rates")
        raw_date = payload.get("date")
        if not isinstance(rates, dict) or not raw_date:
            raise UpstreamUnavailable("Malformed exchangerate.host payload")
        return ProviderFeed(
            provider=self.name,
            as_of=date.fromisoformat(str(raw_date)[:10]),
            rates=rates,
            source_ref=f"{self.name}:{raw_date}",
        )


class OpenExchangeRatesProvider:
    """USD-based feed, rebased to EUR before merging."""

    name = "openexchangerates"

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()

    async def fetch(self, on: date | None = None) -> ProviderFeed:
        if not self.settings.oxr_app_id:
            raise UpstreamUnavailable("OXR_APP_ID is not configured")
        path = f"historical/{on.isoformat()}.json" if on else "latest.json"
        payload = await get_json(
            f"{self.settings.oxr_api_base}/{path}",
            params={"app_id": self.settings.oxr_app_id},
        )
        return self.parse(payload)

    def parse(self, payload: dict) -> ProviderFeed:
        usd_rates = payload.get("rates")
        timestamp = payload.get("timestamp")
        if not isinstance(usd_rates, dict) or timestamp is None:
            raise UpstreamUnavailable("Malformed openexchangerates payload")
        usd_to_eur = clean_rate(usd_rates.get("EUR"))
        if usd_to_eur is None:
            raise UpstreamUnavailable("openexchangerates payload has no EUR rate")
        as_of = datetime.fromtimestamp(int(timestamp), tz=timezone.utc).date()

        rates: dict[str, Decimal] = {"USD": Decimal(1) / usd_to_eur}
        for code, raw in usd_rates.items():
            usd_to_x = clean_rate(raw)
            if usd_to_x is None or code in {"USD", "EUR"}:
                continue
            rates[code] = usd_to_x / usd_to_eur
        return ProviderFeed(
            provider=self.name,
            as_of=as_of,
            rates=rates,
            source_ref=f"{self.name}:{as_of.isoformat()}",
        )


SECONDARY_PROVIDERS = {
    ExchangeRateHostProvider.name: ExchangeRateHostProvider,
    OpenExchangeRatesProvider.name: OpenExchangeRatesProvider,
}


def build_secondary_providers(settings: Settings | None = None) -> list:
    settings = settings or get_settings()
    providers = []
    for name in settings.fx_secondary_providers:
        provider_cls = SECONDARY_PROVIDERS.get(name)
        if provider_cls is not None:
            providers.append(provider_cls(settings))
    return providers
