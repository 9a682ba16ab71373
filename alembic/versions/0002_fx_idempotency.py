from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "0002_fx_idempotency"
down_revision = "0001_rates"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "fx_rates",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("provider", sa.String(length=32), nullable=False),
        sa.Column("base", sa.String(length=3), nullable=False),
        sa.Column("quote", sa.String(length=3), nullable=False),
        sa.Column("as_of", sa.Date(), nullable=False),
        sa.Column("rate", sa.Numeric(20, 8), nullable=False),
        sa.Column("source_ref", sa.String(length=128)),
        sa.Column("ingested_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ux_fx_rates_provider_pair_day", "fx_rates", ["provider", "base", "quote", "as_of"], unique=True
    )
    op.create_index("ix_fx_rates_as_of", "fx_rates", ["as_of"])

    op.create_table(
        "idempotency_keys",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("scope", sa.String(length=64), nullable=False),
        sa.Column("key", sa.String(length=255), nullable=False),
        sa.Column("request_hash", sa.String(length=64), nullable=False),
        sa.Column(
            "status",
            sa.Enum("PENDING", "PROCESSING", "COMPLETED", "FAILED", name="idempotency_status"),
            nullable=False,
        ),
        sa.Column("response", postgresql.JSONB()),
        sa.Column("locked_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ux_idempotency_scope_key", "idempotency_keys", ["scope", "key"], unique=True)

    op.create_table(
        "import_runs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("dataset", sa.String(length=64), nullable=False),
        sa.Column("job", sa.String(length=128), nullable=False),
        sa.Column("status", sa.Enum("RUNNING", "SUCCEEDED", "FAILED", name="import_status"), nullable=False),
        sa.Column("inserted", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("skipped", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error", sa.Text()),
        sa.Column("started_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("heartbeat_at", sa.DateTime(timezone=True)),
        sa.Column("finished_at", sa.DateTime(timezone=True)),
    )
    op.create_index("ix_import_runs_dataset_finished", "import_runs", ["dataset", "finished_at"])


def downgrade() -> None:
    op.drop_index("ix_import_runs_dataset_finished", table_name="import_runs")
    op.drop_table("import_runs")
    op.drop_index("ux_idempotency_scope_key", table_name="idempotency_keys")
    op.drop_table("idempotency_keys")
    op.drop_index("ix_fx_rates_as_of", table_name="fx_rates")
    op.drop_index("ux_fx_rates_provider_pair_day", table_name="fx_rates")
    op.drop_table("fx_rates")
    op.execute("DROP TYPE IF EXISTS import_status")
    op.execute("DROP TYPE IF EXISTS idempotency_status")
