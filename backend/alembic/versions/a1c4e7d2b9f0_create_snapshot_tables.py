"""create snapshot tables

Revision ID: a1c4e7d2b9f0
Revises:
Create Date: 2026-10-18 09:30:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "a1c4e7d2b9f0"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "snapshots",
        sa.Column("snapshot_id", sa.String(length=10), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=True),
        sa.Column("is_closing_period_data", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("collection_date", sa.String(length=10), nullable=True),
        sa.Column("logical_date", sa.String(length=10), nullable=True),
        sa.Column("data_month", sa.String(length=7), nullable=True),
        sa.Column("successful_units", sa.JSON(), nullable=True),
        sa.Column("failed_units", sa.JSON(), nullable=True),
        sa.Column("unit_errors", sa.JSON(), nullable=True),
        sa.Column("metadata_created_at", sa.String(length=40), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("snapshot_id"),
    )
    op.create_index("ix_snapshots_status", "snapshots", ["status"], unique=False)

    op.create_table(
        "snapshot_units",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("snapshot_id", sa.String(length=10), nullable=False),
        sa.Column("unit_id", sa.String(length=32), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("sha256", sa.String(length=64), nullable=False),
        sa.Column("club_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("collection_date", sa.String(length=10), nullable=True),
        sa.Column("is_closing_period_data", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["snapshot_id"], ["snapshots.snapshot_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("snapshot_id", "unit_id", name="uq_snapshot_units_snapshot_unit"),
    )
    op.create_index("ix_snapshot_units_id", "snapshot_units", ["id"], unique=False)
    op.create_index("ix_snapshot_units_unit", "snapshot_units", ["unit_id"], unique=False)

    op.create_table(
        "snapshot_rankings",
        sa.Column("snapshot_id", sa.String(length=10), nullable=False),
        sa.Column("ranking_version", sa.String(length=16), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["snapshot_id"], ["snapshots.snapshot_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("snapshot_id"),
    )


def downgrade() -> None:
    op.drop_table("snapshot_rankings")
    op.drop_index("ix_snapshot_units_unit", table_name="snapshot_units")
    op.drop_index("ix_snapshot_units_id", table_name="snapshot_units")
    op.drop_table("snapshot_units")
    op.drop_index("ix_snapshots_status", table_name="snapshots")
    op.drop_table("snapshots")
