"""Distinguished-level counts, projection and per-level progress."""

from __future__ import annotations

from typing import Dict, Iterable, List, Sequence

from district_analytics.analytics.club_health import distinguished_level
from district_analytics.core.time import Clock, utcnow
from district_analytics.schemas.analytics import (
    ClubTrend,
    DistinguishedClubAnalytics,
    DistinguishedClubEntry,
    DistinguishedCounts,
    DistinguishedLevel,
    DistinguishedProjection,
    HealthStatus,
    LevelProgress,
)
from district_analytics.schemas.statistics import UnitStatistics


def count_levels(levels: Iterable[DistinguishedLevel]) -> DistinguishedCounts:
    counts = DistinguishedCounts()
    for level in levels:
        setattr(counts, level.value, getattr(counts, level.value) + 1)
    return counts


def counts_for_snapshot(snapshot: UnitStatistics) -> DistinguishedCounts:
    return count_levels(
        level for level in (distinguished_level(club) for club in snapshot.clubs) if level
    )


def project_distinguished(trends: Sequence[ClubTrend], projection_date: str) -> DistinguishedProjection:
    """Projected year-end distinguished clubs is the number of thriving clubs today."""
    counts = count_levels(t.distinguished_level for t in trends if t.distinguished_level)
    return DistinguishedProjection(
        projected_distinguished=sum(1 for t in trends if t.current_status == HealthStatus.THRIVING),
        current_smedley=counts.smedley,
        current_presidents=counts.presidents,
        current_select=counts.select,
        current_distinguished=counts.distinguished,
        projection_date=projection_date,
    )


def _trend(first: int, last: int) -> str:
    if last > first:
        return "improving"
    if last < first:
        return "declining"
    return "stable"


class DistinguishedClubAnalyticsModule:
    def __init__(self, clock: Clock = utcnow) -> None:
        self.clock = clock

    def progress_by_level(self, snapshots: Sequence[UnitStatistics]) -> Dict[str, LevelProgress]:
        ordered = sorted(snapshots, key=lambda s: s.snapshot_date)
        if not ordered:
            return {}
        first = counts_for_snapshot(ordered[0])
        last = counts_for_snapshot(ordered[-1])
        return {
            level.value: LevelProgress(
                current=getattr(last, level.value),
                trend=_trend(getattr(first, level.value), getattr(last, level.value)),
            )
            for level in DistinguishedLevel
        }

    def analyze(
        self,
        unit_id: str,
        snapshots: Sequence[UnitStatistics],
        trends: Sequence[ClubTrend],
    ) -> DistinguishedClubAnalytics:
        if not snapshots:
            raise ValueError("distinguished analytics need at least one snapshot")
        latest_date = max(s.snapshot_date for s in snapshots)
        entries: List[DistinguishedClubEntry] = [
            DistinguishedClubEntry(
                club_id=t.club_id,
                club_name=t.club_name,
                level=t.distinguished_level,
                goals_met=t.goals_met,
                membership=t.membership,
            )
            for t in trends
            if t.distinguished_level is not None
        ]
        counts = count_levels(entry.level for entry in entries)
        return DistinguishedClubAnalytics(
            unit_id=unit_id,
            computed_at=self.clock().isoformat(),
            distinguished_clubs=counts,
            total_distinguished=counts.total,
            distinguished_club_list=entries,
            projection=project_distinguished(trends, latest_date),
            progress_by_level=self.progress_by_level(snapshots),
        )
