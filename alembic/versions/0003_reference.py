from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "0003_reference"
down_revision = "0002_fx_idempotency"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "de_minimis",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("dest", sa.String(length=2), nullable=False),
        sa.Column("kind", sa.Enum("DUTY", "VAT", name="de_minimis_kind"), nullable=False),
        sa.Column("basis", sa.Enum("INTRINSIC", "CIF", name="de_minimis_basis"), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("value", sa.Numeric(14, 2), nullable=False),
        sa.Column("effective_from", sa.Date(), nullable=False),
        sa.Column("effective_to", sa.Date()),
    )
    op.create_index(
        "ux_de_minimis_dest_kind_from", "de_minimis", ["dest", "kind", "effective_from"], unique=True
    )

    op.create_table(
        "categories",
        sa.Column("key", sa.String(length=64), primary_key=True),
        sa.Column("title", sa.String(length=255)),
        sa.Column("default_hs6", sa.String(length=6), nullable=False),
    )

    op.create_table(
        "merchant_profiles",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column(
            "collect_vat_at_checkout",
            sa.Enum("AUTO", "ALWAYS", "NEVER", name="checkout_vat_preference"),
            nullable=False,
        ),
        sa.Column("charge_shipping_at_checkout", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("default_incoterm", sa.String(length=3), nullable=False, server_default="DAP"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "tax_registrations",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "merchant_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("merchant_profiles.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("jurisdiction", sa.String(length=8), nullable=False),
        sa.Column("scheme", sa.String(length=16), nullable=False),
        sa.Column("number", sa.String(length=64)),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_index("ix_tax_registrations_merchant", "tax_registrations", ["merchant_id"])


def downgrade() -> None:
    op.drop_index("ix_tax_registrations_merchant", table_name="tax_registrations")
    op.drop_table("tax_registrations")
    op.drop_table("merchant_profiles")
    op.drop_table("categories")
    op.drop_index("ux_de_minimis_dest_kind_from", table_name="de_minimis")
    op.drop_table("de_minimis")
    op.execute("DROP TYPE IF EXISTS checkout_vat_preference")
    op.execute("DROP TYPE IF EXISTS de_minimis_basis")
    op.execute("DROP TYPE IF EXISTS de_minimis_kind")
