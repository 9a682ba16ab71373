from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal
from typing import Any

from pydantic import Field, field_validator

from landed_cost.models.enums import Confidence, Incoterm, TransportMode
from landed_cost.schemas.common import CamelSchema, Money


class Dimensions(CamelSchema):
    l: Decimal = Field(ge=0)
    w: Decimal = Field(ge=0)
    h: Decimal = Field(ge=0)


class QuoteInput(CamelSchema):
    origin: str = Field(min_length=2, max_length=2)
    dest: str = Field(min_length=2, max_length=2)
    item_value: Money
    dimensions: Dimensions
    weight_kg: Decimal = Field(ge=0)
    mode: TransportMode = TransportMode.AIR
    category_key: str | None = None
    hs6: str | None = Field(default=None, pattern=r"^\d{6}$")
    quantity: Decimal = Field(default=Decimal("1"), gt=0)
    liters: Decimal | None = Field(default=None, ge=0)
    freight: Money | None = None
    merchant_id: uuid.UUID | None = None

    @field_validator("origin", "dest")
    @classmethod
    def upper_country(cls, value: str) -> str:
        return value.upper()


class QuoteOptions(CamelSchema):
    as_of: date | None = None
    fx_as_of: date | None = None
    strict_freshness: bool | None = None


class QuoteComponents(CamelSchema):
    cif: Decimal = Field(alias="CIF")
    duty: Decimal
    vat: Decimal
    fees: Decimal
    checkout_vat: Decimal | None = Field(default=None, alias="checkoutVAT")


class ComponentConfidence(CamelSchema):
    duty: Confidence
    vat: Confidence
    surcharges: Confidence
    freight: Confidence
    fx: Confidence


class QuoteResult(CamelSchema):
    hs6: str
    currency: str
    fx_as_of: date | None = None
    chargeable_kg: Decimal
    freight: Decimal
    de_minimis: dict[str, Any] = Field(default_factory=dict)
    components: QuoteComponents
    total: Decimal
    guaranteed_max: Decimal
    incoterm: Incoterm = Incoterm.DAP
    component_confidence: ComponentConfidence
    overall_confidence: Confidence
    missing_components: list[str] = Field(default_factory=list)
    policy: str
    sources: dict[str, Any] = Field(default_factory=dict)
    explainability: dict[str, Any] = Field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class QuoteRequest(QuoteInput):
    options: QuoteOptions | None = None
