from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB

from district_analytics.core.db import Base
from district_analytics.models.mixins import TimestampMixin


JSON_TYPE = JSONB().with_variant(JSON, "sqlite")


class SnapshotRecord(TimestampMixin, Base):
    __tablename__ = "snapshots"

    # YYYY-MM-DD logical date
    snapshot_id = Column(String(10), primary_key=True)
    # Null until the run writes its metadata.
    status = Column(String(16), nullable=True, index=True)
    is_closing_period_data = Column(Boolean, nullable=False, default=False)
    collection_date = Column(String(10), nullable=True)
    logical_date = Column(String(10), nullable=True)
    data_month = Column(String(7), nullable=True)
    successful_units = Column(JSON_TYPE, nullable=True)
    failed_units = Column(JSON_TYPE, nullable=True)
    unit_errors = Column(JSON_TYPE, nullable=True)
    metadata_created_at = Column(String(40), nullable=True)


class SnapshotUnit(TimestampMixin, Base):
    __tablename__ = "snapshot_units"
    __table_args__ = (
        UniqueConstraint("snapshot_id", "unit_id", name="uq_snapshot_units_snapshot_unit"),
        Index("ix_snapshot_units_unit", "unit_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    snapshot_id = Column(
        String(10), ForeignKey("snapshots.snapshot_id", ondelete="CASCADE"), nullable=False
    )
    unit_id = Column(String(32), nullable=False)
    payload = Column(JSON_TYPE, nullable=False)
    sha256 = Column(String(64), nullable=False)
    club_count = Column(Integer, nullable=False, default=0)
    collection_date = Column(String(10), nullable=True)
    is_closing_period_data = Column(Boolean, nullable=False, default=False)


class SnapshotRanking(TimestampMixin, Base):
    __tablename__ = "snapshot_rankings"

    snapshot_id = Column(
        String(10), ForeignKey("snapshots.snapshot_id", ondelete="CASCADE"), primary_key=True
    )
    ranking_version = Column(String(16), nullable=False)
    payload = Column(JSON_TYPE, nullable=False)
