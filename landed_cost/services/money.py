from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any

from landed_cost.core.errors import InvalidRequest

ZERO = Decimal("0")
HUNDRED = Decimal("100")

ZERO_DECIMAL_CURRENCIES = {
    "BIF", "CLP", "DJF", "GNF", "ISK", "JPY", "KMF", "KRW", "PYG",
    "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF",
}

EU_ISO2 = {
    "AT", "BE", "BG", "HR", "CY", "CZ", "DK", "EE", "FI", "FR", "DE", "GR", "HU", "IE",
    "IT", "LV", "LT", "LU", "MT", "NL", "PL", "PT", "RO", "SK", "SI", "ES", "SE",
}

_NON_EUR_CURRENCIES = {
    "US": "USD", "GB": "GBP", "CA": "CAD", "AU": "AUD", "NZ": "NZD", "JP": "JPY",
    "CN": "CNY", "HK": "HKD", "SG": "SGD", "KR": "KRW", "IN": "INR", "CH": "CHF",
    "NO": "NOK", "SE": "SEK", "DK": "DKK", "PL": "PLN", "CZ": "CZK", "HU": "HUF",
    "RO": "RON", "BG": "BGN", "IS": "ISK", "TR": "TRY", "MX": "MXN", "BR": "BRL",
    "ZA": "ZAR", "AE": "AED", "SA": "SAR", "IL": "ILS", "TH": "THB", "MY": "MYR",
    "ID": "IDR", "PH": "PHP", "VN": "VND", "CL": "CLP",
}


def currency_for_country(iso2: str) -> str:
    code = iso2.upper()
    if code in _NON_EUR_CURRENCIES:
        return _NON_EUR_CURRENCIES[code]
    if code in EU_ISO2:
        return "EUR"
    raise InvalidRequest(f"Unsupported destination country {iso2}")


def is_eu(iso2: str) -> bool:
    return iso2.upper() in EU_ISO2


def currency_places(currency: str) -> int:
    return 0 if currency.upper() in ZERO_DECIMAL_CURRENCIES else 2


def round_money(amount: Decimal, currency: str) -> Decimal:
    places = currency_places(currency)
    exponent = Decimal(1).scaleb(-places)
    return amount.quantize(exponent, rounding=ROUND_HALF_UP)


def to_decimal(value: Any) -> Decimal | None:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _canonical(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k): _canonical(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_canonical(v) for v in value]
    if isinstance(value, Decimal):
        return format(value.normalize(), "f")
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


def canonical_json(payload: Any) -> str:
    """Stable JSON: sorted keys, no whitespace, decimals and dates as strings."""
    return json.dumps(_canonical(payload), sort_keys=True, separators=(",", ":"))
