from __future__ import annotations

from typing import Sequence

from district_analytics.analytics.utils import round1
from district_analytics.core.time import Clock, utcnow
from district_analytics.schemas.analytics import (
    MembershipAnalytics,
    MembershipTrendPoint,
    PaymentsTrendPoint,
)
from district_analytics.schemas.statistics import UnitStatistics


def growth_rate(initial: int, current: int) -> float:
    if initial == 0:
        return 100.0 if current > 0 else 0.0
    return round1((current - initial) / initial * 100)


def retention_rate(payments: int, membership: int) -> float:
    """Rough estimate: each retained member pays twice a year."""
    if membership <= 0:
        return 0.0
    return round1(min(100.0, payments / (2 * membership) * 100))


class MembershipAnalyticsModule:
    def __init__(self, clock: Clock = utcnow) -> None:
        self.clock = clock

    def analyze(self, unit_id: str, snapshots: Sequence[UnitStatistics]) -> MembershipAnalytics:
        ordered = sorted(snapshots, key=lambda s: s.snapshot_date)
        if not ordered:
            raise ValueError("membership analytics need at least one snapshot")
        first, latest = ordered[0], ordered[-1]
        total = latest.total_membership
        return MembershipAnalytics(
            unit_id=unit_id,
            computed_at=self.clock().isoformat(),
            total_membership=total,
            membership_change=total - first.total_membership,
            growth_rate=growth_rate(first.total_membership, total),
            retention_rate=retention_rate(latest.effective_payments, total),
            membership_trend=[
                MembershipTrendPoint(date=s.snapshot_date, count=s.total_membership) for s in ordered
            ],
            payments_trend=[
                PaymentsTrendPoint(date=s.snapshot_date, payments=s.effective_payments)
                for s in ordered
            ],
        )
