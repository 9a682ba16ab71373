from __future__ import annotations

import uuid
from decimal import Decimal
from sqlalchemy import Date, DateTime, Enum as SAEnum, ForeignKey, Index, Numeric, String, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from landed_cost.db.base import Base
from landed_cost.models.enums import DutyComponentType, RateKind, RateSource


class RateRecord(Base):
    __tablename__ = "rate_records"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    kind: Mapped[RateKind] = mapped_column(SAEnum(RateKind, name="rate_kind"), nullable=False)
    dest: Mapped[str] = mapped_column(String(2), nullable=False)
    partner: Mapped[str | None] = mapped_column(String(2))
    hs6: Mapped[str | None] = mapped_column(String(6))
    transport_mode: Mapped[str | None] = mapped_column(String(8))
    value: Mapped[Decimal | None] = mapped_column(Numeric(12, 4))
    value_ref: Mapped[str | None] = mapped_column(String(32))
    fixed_amount: Mapped[Decimal | None] = mapped_column(Numeric(16, 4))
    currency: Mapped[str | None] = mapped_column(String(3))
    unit: Mapped[str | None] = mapped_column(String(8))
    upto_qty: Mapped[Decimal | None] = mapped_column(Numeric(14, 3))
    rule: Mapped[str | None] = mapped_column(String(16))
    vat_base: Mapped[str | None] = mapped_column(String(16))
    code: Mapped[str | None] = mapped_column(String(32))
    source: Mapped[RateSource] = mapped_column(SAEnum(RateSource, name="rate_source"), nullable=False)
    effective_from: Mapped[Date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[Date | None] = mapped_column(Date)
    dataset: Mapped[str | None] = mapped_column(String(64))
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("ix_rate_records_scope", "kind", "dest", "hs6"),
        Index(
            "ux_rate_records_version",
            "kind",
            "dest",
            "partner",
            "hs6",
            "transport_mode",
            "code",
            "unit",
            "upto_qty",
            "source",
            "effective_from",
            unique=True,
            postgresql_nulls_not_distinct=True,
        ),
    )


class DutyRateComponent(Base):
    __tablename__ = "duty_rate_components"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    duty_rate_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("rate_records.id", ondelete="CASCADE"), nullable=False
    )
    component_type: Mapped[DutyComponentType] = mapped_column(
        SAEnum(DutyComponentType, name="duty_component_type"), nullable=False
    )
    rate_pct: Mapped[Decimal | None] = mapped_column(Numeric(12, 4))
    amount: Mapped[Decimal | None] = mapped_column(Numeric(16, 4))
    currency: Mapped[str | None] = mapped_column(String(3))
    uom: Mapped[str | None] = mapped_column(String(16))
    qualifier: Mapped[str | None] = mapped_column(String(64))
    combinator_formula: Mapped[str | None] = mapped_column(String(128))
    effective_from: Mapped[Date | None] = mapped_column(Date)
    effective_to: Mapped[Date | None] = mapped_column(Date)

    __table_args__ = (Index("ix_duty_rate_components_parent", "duty_rate_id"),)
