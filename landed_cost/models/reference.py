from __future__ import annotations

import uuid
from decimal import Decimal
from sqlalchemy import Boolean, Date, DateTime, Enum as SAEnum, ForeignKey, Index, Numeric, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from landed_cost.db.base import Base
from landed_cost.models.enums import CheckoutVatPreference, DeMinimisBasis, DeMinimisKind


class DeMinimisThreshold(Base):
    __tablename__ = "de_minimis"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    dest: Mapped[str] = mapped_column(String(2), nullable=False)
    kind: Mapped[DeMinimisKind] = mapped_column(SAEnum(DeMinimisKind, name="de_minimis_kind"), nullable=False)
    basis: Mapped[DeMinimisBasis] = mapped_column(
        SAEnum(DeMinimisBasis, name="de_minimis_basis"), nullable=False, default=DeMinimisBasis.INTRINSIC
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    value: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    effective_from: Mapped[Date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[Date | None] = mapped_column(Date)

    __table_args__ = (Index("ux_de_minimis_dest_kind_from", "dest", "kind", "effective_from", unique=True),)


class Category(Base):
    __tablename__ = "categories"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str | None] = mapped_column(String(255))
    default_hs6: Mapped[str] = mapped_column(String(6), nullable=False)


class MerchantProfile(Base):
    __tablename__ = "merchant_profiles"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    collect_vat_at_checkout: Mapped[CheckoutVatPreference] = mapped_column(
        SAEnum(CheckoutVatPreference, name="checkout_vat_preference"),
        nullable=False,
        default=CheckoutVatPreference.AUTO,
    )
    charge_shipping_at_checkout: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    default_incoterm: Mapped[str] = mapped_column(String(3), nullable=False, default="DAP")
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class TaxRegistration(Base):
    __tablename__ = "tax_registrations"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    merchant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("merchant_profiles.id", ondelete="CASCADE"), nullable=False
    )
    jurisdiction: Mapped[str] = mapped_column(String(8), nullable=False)
    scheme: Mapped[str] = mapped_column(String(16), nullable=False)
    number: Mapped[str | None] = mapped_column(String(64))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (Index("ix_tax_registrations_merchant", "merchant_id"),)
