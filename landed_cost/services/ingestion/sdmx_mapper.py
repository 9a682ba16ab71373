from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from landed_cost.core.logging import get_logger
from landed_cost.services.ingestion.adapters import CandidateRate, RowError, from_sdmx_observation, hs6_from_token

logger = get_logger()

HS6_IN_NAME = re.compile(r"(?<!\d)(\d{6})(?!\d)")
PRODUCT_HINTS = ("PRODUCT", "HS", "COMMODITY")
TARIFF_TYPE_HINTS = ("DUTYTYPE", "TARIFFTYPE")
TARIFF_TYPE_ALIASES = {"PREF": "prf", "PRF": "prf", "MFN": "mfn", "AHS": "ahs", "BND": "bnd"}


@dataclass(frozen=True)
class ProductMapping:
    """Where the product code lives in a series key.

    dim_index None means the token at `position` is read as a literal code.
    """

    position: int
    dim_index: int | None
    literal_only: bool
    distinct_codes: int


@dataclass
class FlattenResult:
    rows: list[CandidateRate] = field(default_factory=list)
    dropped: int = 0
    filtered: int = 0
    mapping: ProductMapping | None = None


def hs6_from_value(value: dict[str, Any]) -> str | None:
    code = hs6_from_token(value.get("id"))
    if code is not None:
        return code
    match = HS6_IN_NAME.search(str(value.get("name") or ""))
    return match.group(1) if match else None


def _looks_like_product(dim: dict[str, Any]) -> bool:
    label = f"{dim.get('id', '')} {dim.get('name', '')}".upper()
    return any(hint in label for hint in PRODUCT_HINTS)


def _index_lookup(token: str, values: list[dict[str, Any]]) -> str | None:
    if not token.isdigit():
        return None
    idx = int(token)
    if idx >= len(values):
        return None
    return hs6_from_value(values[idx])


def choose_product_mapping(
    series_keys: list[str],
    dimensions: list[dict[str, Any]],
    sample_size: int = 500,
) -> ProductMapping:
    """Pick the key position (and dimension) that recovers the most distinct HS6 codes.

    Every (position, dimension) pair is scored by the distinct codes found when
    the token is read as an index into that dimension's values; every position
    is also scored reading the token as a literal code. Ties go to
    product-looking dimensions, then to a position matching its dimension.
    """
    sample = [key.split(":") for key in series_keys[:sample_size]]
    width = max((len(tokens) for tokens in sample), default=0)

    best: tuple[tuple, ProductMapping] | None = None

    def consider(score: tuple, mapping: ProductMapping) -> None:
        nonlocal best
        if best is None or score > best[0]:
            best = (score, mapping)

    for position in range(width):
        tokens = [t[position] for t in sample if position < len(t)]
        for dim_index, dim in enumerate(dimensions):
            values = dim.get("values") or []
            codes = {c for c in (_index_lookup(tok, values) for tok in tokens) if c}
            consider(
                (len(codes), _looks_like_product(dim), position == dim_index, -position),
                ProductMapping(position, dim_index, False, len(codes)),
            )
        literal = {c for c in (hs6_from_token(tok) for tok in tokens) if c}
        consider(
            (len(literal), False, False, -position),
            ProductMapping(position, None, False, len(literal)),
        )

    if best is None:
        return ProductMapping(0, None, True, 0)
    mapping = best[1]
    if mapping.distinct_codes == 0:
        product_dims = [i for i, d in enumerate(dimensions) if _looks_like_product(d) and i < width]
        position = product_dims[0] if product_dims else mapping.position
        return ProductMapping(position, None, True, 0)
    return mapping


def resolve_product(tokens: list[str], mapping: ProductMapping, dimensions: list[dict[str, Any]]) -> str | None:
    if mapping.position >= len(tokens):
        return None
    token = tokens[mapping.position]
    if mapping.dim_index is not None:
        code = _index_lookup(token, dimensions[mapping.dim_index].get("values") or [])
        if code is not None:
            return code
    # positions can mix indexes and literal codes
    return hs6_from_token(token)


def _tariff_type(
    tokens: list[str],
    body: dict[str, Any],
    dimensions: list[dict[str, Any]],
    attributes: list[dict[str, Any]],
) -> str | None:
    for dim_index, dim in enumerate(dimensions):
        if any(hint in str(dim.get("id", "")).upper() for hint in TARIFF_TYPE_HINTS):
            if dim_index < len(tokens) and tokens[dim_index].isdigit():
                values = dim.get("values") or []
                idx = int(tokens[dim_index])
                if idx < len(values):
                    return _normalize_tariff_type(values[idx])
    series_attrs = body.get("attributes") or []
    for attr_index, attr in enumerate(attributes):
        if str(attr.get("id", "")).upper() != "TARIFFTYPE" or attr_index >= len(series_attrs):
            continue
        value_index = series_attrs[attr_index]
        values = attr.get("values") or []
        if isinstance(value_index, int) and 0 <= value_index < len(values):
            return _normalize_tariff_type(values[value_index])
    return None


def _normalize_tariff_type(value: dict[str, Any]) -> str | None:
    raw = str(value.get("id") or value.get("name") or "").upper()
    return TARIFF_TYPE_ALIASES.get(raw, raw.lower() or None)


def flatten_series(
    feed: dict[str, Any],
    dest: str,
    year: int,
    duty_type: str,
    partner: str | None,
    mapping: ProductMapping | None = None,
) -> FlattenResult:
    """Turn one SDMX-JSON tariff feed into candidate duty rows for a year.

    The product mapping is computed once for the feed and applied to every
    series. Series without a resolvable HS6 code are dropped and counted.
    """
    result = FlattenResult()
    data_sets = feed.get("dataSets") or []
    if not data_sets:
        return result
    series = data_sets[0].get("series") or {}
    structure = feed.get("structure") or {}
    dims = structure.get("dimensions") or {}
    dimensions = dims.get("series") or []
    time_values = ((dims.get("observation") or [{}])[0]).get("values") or []
    attributes = (structure.get("attributes") or {}).get("series") or []

    mapping = mapping or choose_product_mapping(list(series.keys()), dimensions)
    result.mapping = mapping
    logger.info(
        "sdmx_mapping_selected",
        dest=dest,
        position=mapping.position,
        dim_index=mapping.dim_index,
        literal_only=mapping.literal_only,
        distinct_codes=mapping.distinct_codes,
    )

    for key, body in series.items():
        tokens = key.split(":")
        hs6 = resolve_product(tokens, mapping, dimensions)
        if hs6 is None:
            result.dropped += 1
            continue
        tariff_type = _tariff_type(tokens, body, dimensions, attributes)
        if tariff_type is not None and tariff_type != duty_type:
            result.filtered += 1
            continue
        for obs_key, values in (body.get("observations") or {}).items():
            try:
                obs_year = int(time_values[int(obs_key)]["id"])
            except (ValueError, IndexError, KeyError):
                continue
            if obs_year != year or not values:
                continue
            try:
                result.rows.append(from_sdmx_observation(dest, hs6, year, values[0], duty_type, partner))
            except RowError as exc:
                result.dropped += 1
                logger.info("ingestion_row_skipped", dest=dest, hs6=hs6, error=str(exc))

    return result
