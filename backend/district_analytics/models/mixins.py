from sqlalchemy import Column, DateTime

from district_analytics.core.time import utcnow


class TimestampMixin:
    """Row bookkeeping in naive UTC, kept apart from the snapshot's own dates.

    ``created_at``/``updated_at`` record when the row was written, which for a
    closing-period snapshot is unrelated to its logical or collection date.
    """

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
