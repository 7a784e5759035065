"""Per-unit analytics orchestration.

Everything here works on already-loaded snapshots plus an optional rankings
artifact; storage is the caller's business.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from district_analytics.analytics.club_health import ClubHealthAnalyticsModule
from district_analytics.analytics.distinguished import (
    DistinguishedClubAnalyticsModule,
    counts_for_snapshot,
)
from district_analytics.analytics.leadership import LeadershipInsightsModule
from district_analytics.analytics.membership import MembershipAnalyticsModule
from district_analytics.analytics.rankings import metric_rankings
from district_analytics.analytics.utils import (
    days_between,
    format_date,
    parse_date,
    percent_change,
    program_year_for,
    round1,
    same_day_previous_year,
)
from district_analytics.core.time import Clock, utcnow
from district_analytics.schemas.analytics import (
    ClubTrendsIndex,
    ComputationResult,
    DistinguishedLevel,
    HealthStatus,
    MetricComparison,
    MetricTargets,
    MultiYearPoint,
    PerformanceTargets,
    RecognitionTargets,
    UnitAnalytics,
    VulnerableClubsReport,
    YearOverYearComparison,
    YearOverYearMetrics,
)
from district_analytics.schemas.rankings import RankingsArtifact
from district_analytics.schemas.statistics import UnitStatistics


logger = logging.getLogger(__name__)

DEFAULT_MAX_DAY_DIFFERENCE = 180
DEFAULT_MULTI_YEAR_LOOKBACK = 5

# Growth over base (percent) per recognition level, lowest first.
GROWTH_TARGET_PERCENTS = (
    (DistinguishedLevel.DISTINGUISHED, 1),
    (DistinguishedLevel.SELECT, 3),
    (DistinguishedLevel.PRESIDENTS, 5),
    (DistinguishedLevel.SMEDLEY, 8),
)
# Share of the paid club base (percent) that must be distinguished.
DISTINGUISHED_SHARE_PERCENTS = (
    (DistinguishedLevel.DISTINGUISHED, 45),
    (DistinguishedLevel.SELECT, 50),
    (DistinguishedLevel.PRESIDENTS, 55),
    (DistinguishedLevel.SMEDLEY, 60),
)


def _ceil_div(numerator: int, denominator: int) -> int:
    return -(-numerator // denominator)


def growth_targets(base: Optional[int]) -> Optional[RecognitionTargets]:
    """``ceil(base * (1 + p))`` per level, computed in integers."""
    if base is None:
        return None
    values = {level.value: _ceil_div(base * (100 + pct), 100) for level, pct in GROWTH_TARGET_PERCENTS}
    return RecognitionTargets(**values)


def distinguished_share_targets(base: Optional[int]) -> Optional[RecognitionTargets]:
    """``ceil(base * p)`` per level, computed in integers."""
    if base is None:
        return None
    values = {level.value: _ceil_div(base * pct, 100) for level, pct in DISTINGUISHED_SHARE_PERCENTS}
    return RecognitionTargets(**values)


def achieved_level(current: int, targets: Optional[RecognitionTargets]) -> Optional[DistinguishedLevel]:
    if targets is None:
        return None
    achieved = None
    for level, _ in GROWTH_TARGET_PERCENTS:
        if current >= getattr(targets, level.value):
            achieved = level
    return achieved


def find_snapshot_for_date(
    snapshots: Sequence[UnitStatistics],
    target_date: str,
    max_day_difference: int = DEFAULT_MAX_DAY_DIFFERENCE,
) -> Optional[UnitStatistics]:
    """Exact date, else latest in the same calendar year, else nearest within the limit."""
    if not snapshots:
        return None
    for snapshot in snapshots:
        if snapshot.snapshot_date == target_date:
            return snapshot

    target = parse_date(target_date)
    same_year = [s for s in snapshots if parse_date(s.snapshot_date).year == target.year]
    if same_year:
        return max(same_year, key=lambda s: s.snapshot_date)

    nearest = min(
        snapshots,
        key=lambda s: (days_between(parse_date(s.snapshot_date), target), s.snapshot_date),
    )
    if days_between(parse_date(nearest.snapshot_date), target) > max_day_difference:
        return None
    return nearest


def compare(current: float, previous: float) -> MetricComparison:
    return MetricComparison(
        current=current,
        previous=previous,
        absolute_change=round1(current - previous),
        percent_change=percent_change(current, previous),
    )


class AnalyticsComputer:
    def __init__(
        self,
        clock: Clock = utcnow,
        *,
        max_day_difference: int = DEFAULT_MAX_DAY_DIFFERENCE,
        multi_year_lookback: int = DEFAULT_MULTI_YEAR_LOOKBACK,
    ) -> None:
        self.clock = clock
        self.max_day_difference = max_day_difference
        self.multi_year_lookback = multi_year_lookback
        self.club_health = ClubHealthAnalyticsModule()
        self.distinguished = DistinguishedClubAnalyticsModule(clock)
        self.membership = MembershipAnalyticsModule(clock)
        self.leadership = LeadershipInsightsModule(clock)

    def find_snapshot_for_date(
        self, snapshots: Sequence[UnitStatistics], target_date: str
    ) -> Optional[UnitStatistics]:
        return find_snapshot_for_date(snapshots, target_date, self.max_day_difference)

    # Year over year

    def _health_counts(self, snapshot: UnitStatistics) -> dict:
        categories = self.club_health.categorize(self.club_health.analyze([snapshot]))
        return {
            HealthStatus.THRIVING: len(categories.thriving),
            HealthStatus.VULNERABLE: len(categories.vulnerable),
            HealthStatus.INTERVENTION_REQUIRED: len(categories.intervention_required),
        }

    def year_over_year_metrics(
        self, current: UnitStatistics, previous: UnitStatistics
    ) -> YearOverYearMetrics:
        now_health = self._health_counts(current)
        then_health = self._health_counts(previous)

        def average_goals(snapshot: UnitStatistics) -> float:
            return round1(snapshot.total_goals / snapshot.club_count) if snapshot.club_count else 0.0

        return YearOverYearMetrics(
            membership=compare(current.total_membership, previous.total_membership),
            distinguished_clubs=compare(
                counts_for_snapshot(current).total, counts_for_snapshot(previous).total
            ),
            thriving_clubs=compare(
                now_health[HealthStatus.THRIVING], then_health[HealthStatus.THRIVING]
            ),
            vulnerable_clubs=compare(
                now_health[HealthStatus.VULNERABLE], then_health[HealthStatus.VULNERABLE]
            ),
            intervention_required_clubs=compare(
                now_health[HealthStatus.INTERVENTION_REQUIRED],
                then_health[HealthStatus.INTERVENTION_REQUIRED],
            ),
            dcp_goals_total=compare(current.total_goals, previous.total_goals),
            dcp_goals_average=compare(average_goals(current), average_goals(previous)),
            club_count=compare(current.club_count, previous.club_count),
        )

    def multi_year_trends(
        self, snapshots: Sequence[UnitStatistics], current_date: str
    ) -> Optional[List[MultiYearPoint]]:
        target = parse_date(current_date)
        points: List[MultiYearPoint] = []
        seen = set()
        for years_back in range(self.multi_year_lookback):
            day = target
            for _ in range(years_back):
                day = same_day_previous_year(day)
            snapshot = self.find_snapshot_for_date(snapshots, format_date(day))
            if snapshot is None or snapshot.snapshot_date in seen:
                continue
            seen.add(snapshot.snapshot_date)
            points.append(
                MultiYearPoint(
                    year=day.year,
                    date=snapshot.snapshot_date,
                    membership=snapshot.total_membership,
                    distinguished_clubs=counts_for_snapshot(snapshot).total,
                    total_dcp_goals=snapshot.total_goals,
                    club_count=snapshot.club_count,
                )
            )
        if len(points) < 2:
            return None
        return sorted(points, key=lambda p: p.date)

    def compute_year_over_year(
        self, unit_id: str, snapshots: Sequence[UnitStatistics], current_date: str
    ) -> YearOverYearComparison:
        previous_date = format_date(same_day_previous_year(parse_date(current_date)))
        base = dict(
            unit_id=unit_id,
            computed_at=self.clock().isoformat(),
            current_date=current_date,
            previous_year_date=previous_date,
        )
        if not snapshots:
            return YearOverYearComparison(
                **base, data_available=False, message="No snapshot data available for this unit"
            )

        current = self.find_snapshot_for_date(snapshots, current_date)
        if current is None:
            return YearOverYearComparison(
                **base,
                data_available=False,
                message="No snapshot data available for the current date",
            )

        previous = self.find_snapshot_for_date(snapshots, previous_date)
        if previous is None or previous.snapshot_date == current.snapshot_date:
            logger.info(
                "year_over_year.previous_missing",
                extra={"operation": "compute_year_over_year", "unit_id": unit_id},
            )
            return YearOverYearComparison(
                **base,
                data_available=False,
                message="Previous year data not available for year-over-year comparison",
            )

        return YearOverYearComparison(
            **base,
            data_available=True,
            metrics=self.year_over_year_metrics(current, previous),
            multi_year_trends=self.multi_year_trends(snapshots, current_date),
        )

    # Performance targets

    def compute_performance_targets(
        self,
        unit_id: str,
        latest: UnitStatistics,
        rankings: Optional[RankingsArtifact],
    ) -> PerformanceTargets:
        entry = rankings.for_unit(unit_id) if rankings is not None else None
        computed_at = self.clock().isoformat()
        if entry is None:
            distinguished_now = counts_for_snapshot(latest).total
            return PerformanceTargets(
                unit_id=unit_id,
                computed_at=computed_at,
                data_available=False,
                paid_clubs=MetricTargets(
                    current=latest.club_count, rankings=metric_rankings(None, unit_id, "clubs")
                ),
                membership_payments=MetricTargets(
                    current=latest.effective_payments,
                    rankings=metric_rankings(None, unit_id, "payments"),
                ),
                distinguished_clubs=MetricTargets(
                    current=distinguished_now,
                    rankings=metric_rankings(None, unit_id, "distinguished"),
                ),
            )

        club_targets = growth_targets(entry.paid_club_base)
        payment_targets = growth_targets(entry.payment_base)
        distinguished_targets = distinguished_share_targets(entry.paid_club_base)
        return PerformanceTargets(
            unit_id=unit_id,
            computed_at=computed_at,
            data_available=True,
            paid_clubs=MetricTargets(
                current=entry.paid_clubs,
                base=entry.paid_club_base,
                targets=club_targets,
                achieved_level=achieved_level(entry.paid_clubs, club_targets),
                rankings=metric_rankings(rankings, unit_id, "clubs"),
            ),
            membership_payments=MetricTargets(
                current=entry.total_payments,
                base=entry.payment_base,
                targets=payment_targets,
                achieved_level=achieved_level(entry.total_payments, payment_targets),
                rankings=metric_rankings(rankings, unit_id, "payments"),
            ),
            distinguished_clubs=MetricTargets(
                current=entry.distinguished_clubs,
                base=entry.paid_club_base,
                targets=distinguished_targets,
                achieved_level=achieved_level(entry.distinguished_clubs, distinguished_targets),
                rankings=metric_rankings(rankings, unit_id, "distinguished"),
            ),
        )

    # Full computation

    def compute(
        self,
        unit_id: str,
        snapshots: Sequence[UnitStatistics],
        rankings: Optional[RankingsArtifact] = None,
    ) -> ComputationResult:
        ordered = sorted(snapshots, key=lambda s: s.snapshot_date)
        if not ordered:
            raise ValueError(f"No snapshots supplied for unit {unit_id}")
        latest = ordered[-1]
        program_year = program_year_for(parse_date(latest.snapshot_date))
        current_year = [
            s for s in ordered if program_year_for(parse_date(s.snapshot_date)) == program_year
        ]
        computed_at = self.clock().isoformat()

        trends = self.club_health.analyze(current_year)
        categories = self.club_health.categorize(trends)
        distinguished = self.distinguished.analyze(unit_id, current_year, trends)
        membership = self.membership.analyze(unit_id, current_year)

        unit_analytics = UnitAnalytics(
            unit_id=unit_id,
            computed_at=computed_at,
            start_date=current_year[0].snapshot_date,
            end_date=latest.snapshot_date,
            total_membership=membership.total_membership,
            membership_change=membership.membership_change,
            club_count=len(trends),
            thriving_count=len(categories.thriving),
            stable_count=len(categories.stable),
            vulnerable_count=len(categories.vulnerable),
            intervention_required_count=len(categories.intervention_required),
            distinguished_clubs=distinguished.distinguished_clubs,
            distinguished_projection=distinguished.projection,
            membership_trend=membership.membership_trend,
        )
        logger.info(
            "analytics.computed",
            extra={
                "operation": "compute_analytics",
                "unit_id": unit_id,
                "snapshot_id": latest.snapshot_date,
                "club_count": len(trends),
            },
        )
        return ComputationResult(
            unit_analytics=unit_analytics,
            membership=membership,
            vulnerable_clubs=VulnerableClubsReport(
                unit_id=unit_id,
                computed_at=computed_at,
                total_vulnerable=len(categories.vulnerable),
                intervention_required_count=len(categories.intervention_required),
                vulnerable_clubs=categories.vulnerable,
                intervention_required_clubs=categories.intervention_required,
            ),
            leadership=self.leadership.analyze(unit_id, current_year),
            distinguished=distinguished,
            year_over_year=self.compute_year_over_year(unit_id, ordered, latest.snapshot_date),
            performance_targets=self.compute_performance_targets(unit_id, latest, rankings),
            club_trends=ClubTrendsIndex(
                unit_id=unit_id,
                computed_at=computed_at,
                clubs={trend.club_id: trend for trend in trends},
            ),
        )
