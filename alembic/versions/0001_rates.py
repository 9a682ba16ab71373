from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "0001_rates"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "rate_records",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("kind", sa.Enum("DUTY", "VAT", "SURCHARGE", "FREIGHT", name="rate_kind"), nullable=False),
        sa.Column("dest", sa.String(length=2), nullable=False),
        sa.Column("partner", sa.String(length=2)),
        sa.Column("hs6", sa.String(length=6)),
        sa.Column("transport_mode", sa.String(length=8)),
        sa.Column("value", sa.Numeric(12, 4)),
        sa.Column("value_ref", sa.String(length=32)),
        sa.Column("fixed_amount", sa.Numeric(16, 4)),
        sa.Column("currency", sa.String(length=3)),
        sa.Column("unit", sa.String(length=8)),
        sa.Column("upto_qty", sa.Numeric(14, 3)),
        sa.Column("rule", sa.String(length=16)),
        sa.Column("vat_base", sa.String(length=16)),
        sa.Column("code", sa.String(length=32)),
        sa.Column("source", sa.Enum("OFFICIAL", "OVERRIDE", "DEFAULT", name="rate_source"), nullable=False),
        sa.Column("effective_from", sa.Date(), nullable=False),
        sa.Column("effective_to", sa.Date()),
        sa.Column("dataset", sa.String(length=64)),
        sa.Column("notes", sa.Text()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_rate_records_scope", "rate_records", ["kind", "dest", "hs6"])
    op.create_index(
        "ux_rate_records_version",
        "rate_records",
        [
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
        ],
        unique=True,
        postgresql_nulls_not_distinct=True,
    )

    op.create_table(
        "duty_rate_components",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "duty_rate_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("rate_records.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "component_type",
            sa.Enum("AD_VALOREM", "SPECIFIC", "MINIMUM", "MAXIMUM", "OTHER", name="duty_component_type"),
            nullable=False,
        ),
        sa.Column("rate_pct", sa.Numeric(12, 4)),
        sa.Column("amount", sa.Numeric(16, 4)),
        sa.Column("currency", sa.String(length=3)),
        sa.Column("uom", sa.String(length=16)),
        sa.Column("qualifier", sa.String(length=64)),
        sa.Column("combinator_formula", sa.String(length=128)),
        sa.Column("effective_from", sa.Date()),
        sa.Column("effective_to", sa.Date()),
    )
    op.create_index("ix_duty_rate_components_parent", "duty_rate_components", ["duty_rate_id"])


def downgrade() -> None:
    op.drop_index("ix_duty_rate_components_parent", table_name="duty_rate_components")
    op.drop_table("duty_rate_components")
    op.drop_index("ux_rate_records_version", table_name="rate_records")
    op.drop_index("ix_rate_records_scope", table_name="rate_records")
    op.drop_table("rate_records")
    op.execute("DROP TYPE IF EXISTS duty_component_type")
    op.execute("DROP TYPE IF EXISTS rate_source")
    op.execute("DROP TYPE IF EXISTS rate_kind")
