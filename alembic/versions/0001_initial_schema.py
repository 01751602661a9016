"""initial fx tick schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-01-29 09:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None

PRICE = sa.Numeric(18, 8)


def upgrade() -> None:
    op.create_table(
        "sources",
        sa.Column("id", sa.SmallInteger(), sa.Identity(always=False), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("priority", sa.SmallInteger(), server_default="0", nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )
    op.create_table(
        "currency_pairs",
        sa.Column("id", sa.SmallInteger(), sa.Identity(always=False), nullable=False),
        sa.Column("symbol", sa.String(), nullable=False),
        sa.Column("base_currency", sa.String(length=3), nullable=False),
        sa.Column("quote_currency", sa.String(length=3), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("symbol"),
    )
    op.create_table(
        "fx_ticks",
        sa.Column("time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("pair_id", sa.SmallInteger(), nullable=False),
        sa.Column("source_id", sa.SmallInteger(), nullable=False),
        sa.Column("bid", PRICE, nullable=False),
        sa.Column("mid", PRICE, nullable=False),
        sa.Column("ask", PRICE, nullable=False),
        sa.Column("volume", PRICE, nullable=True),
        sa.ForeignKeyConstraint(["pair_id"], ["currency_pairs.id"]),
        sa.ForeignKeyConstraint(["source_id"], ["sources.id"]),
        sa.PrimaryKeyConstraint("time", "pair_id", "source_id"),
    )
    op.create_index("ix_fx_ticks_pair_time", "fx_ticks", ["pair_id", sa.text("time DESC")])

    op.create_table(
        "ingestion_runs",
        sa.Column("run_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("source_name", sa.String(), nullable=False),
        sa.Column("snapshot_id", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("ticks_received", sa.Integer(), server_default="0", nullable=False),
        sa.Column("ticks_upserted", sa.Integer(), server_default="0", nullable=False),
        sa.Column("ticks_deduped", sa.Integer(), server_default="0", nullable=False),
        sa.Column("samples_skipped", sa.Integer(), server_default="0", nullable=False),
        sa.Column("error_message", sa.String(), nullable=True),
        sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("run_id"),
    )
    op.create_index("ix_ingestion_runs_source_started", "ingestion_runs", ["source_name", "started_at"])

    # Partitioning/compression only where TimescaleDB is installed
    op.execute(
        """
        DO $$
        BEGIN
            IF EXISTS (SELECT 1 FROM pg_available_extensions WHERE name = 'timescaledb') THEN
                CREATE EXTENSION IF NOT EXISTS timescaledb;
                PERFORM create_hypertable('fx_ticks', 'time', chunk_time_interval => INTERVAL '1 day', if_not_exists => TRUE);
                ALTER TABLE fx_ticks SET (
                    timescaledb.compress,
                    timescaledb.compress_segmentby = 'pair_id, source_id'
                );
                PERFORM add_compression_policy('fx_ticks', INTERVAL '7 days', if_not_exists => TRUE);
            END IF;
        END
        $$;
        """
    )


def downgrade() -> None:
    op.drop_index("ix_ingestion_runs_source_started", table_name="ingestion_runs")
    op.drop_table("ingestion_runs")
    op.drop_index("ix_fx_ticks_pair_time", table_name="fx_ticks")
    op.drop_table("fx_ticks")
    op.drop_table("currency_pairs")
    op.drop_table("sources")
