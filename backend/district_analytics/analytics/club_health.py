"""Per-club health classification, risk factors and trend arrays."""

from __future__ import annotations

from collections import OrderedDict
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from district_analytics.analytics.utils import parse_date
from district_analytics.schemas.analytics import (
    ClubCategorization,
    ClubTrend,
    DcpGoalsTrendPoint,
    DistinguishedLevel,
    HealthStatus,
    MembershipTrendPoint,
    RiskFactor,
)
from district_analytics.schemas.statistics import ClubStatistics, UnitStatistics


# Goals a club should have met by each calendar month of the program year.
_DCP_CHECKPOINTS = {
    7: 0,
    8: 1,
    9: 1,
    10: 2,
    11: 2,
    12: 3,
    1: 3,
    2: 4,
    3: 4,
    4: 5,
    5: 5,
    6: 5,
}

INTERVENTION_MEMBERSHIP = 12
THRIVING_MEMBERSHIP = 20
NET_GROWTH_TARGET = 3


def dcp_checkpoint_for_month(month: int) -> int:
    try:
        return _DCP_CHECKPOINTS[month]
    except KeyError:
        raise ValueError(f"Invalid month: {month}") from None


def membership_requirement_met(club: ClubStatistics) -> bool:
    return club.membership >= THRIVING_MEMBERSHIP or club.net_growth >= NET_GROWTH_TARGET


def classify_club(club: ClubStatistics, checkpoint: int) -> Tuple[HealthStatus, Set[RiskFactor]]:
    """First match wins: intervention, thriving, vulnerable, stable."""
    if club.membership < INTERVENTION_MEMBERSHIP and club.net_growth < NET_GROWTH_TARGET:
        return HealthStatus.INTERVENTION_REQUIRED, {
            RiskFactor.LOW_MEMBERSHIP,
            RiskFactor.INSUFFICIENT_GROWTH,
        }

    criteria = {
        RiskFactor.MEMBERSHIP_TARGET_MISSED: membership_requirement_met(club),
        RiskFactor.DCP_CHECKPOINT_MISSED: club.goals_met >= checkpoint,
        RiskFactor.CSP_NOT_SUBMITTED: club.has_csp,
    }
    missed = {factor for factor, met in criteria.items() if not met}
    if not missed:
        return HealthStatus.THRIVING, set()
    if len(missed) < len(criteria):
        return HealthStatus.VULNERABLE, missed
    return HealthStatus.STABLE, missed


def health_score(club: ClubStatistics) -> float:
    if club.membership >= 20 and club.goals_met >= 5:
        return 1.0
    if club.membership >= 12 or club.goals_met >= 3:
        return 0.5
    return 0.0


def distinguished_level(club: ClubStatistics) -> Optional[DistinguishedLevel]:
    if not club.has_csp:
        return None
    goals, members, net = club.goals_met, club.membership, club.net_growth
    if goals >= 10 and members >= 25:
        return DistinguishedLevel.SMEDLEY
    if goals >= 9 and members >= 20:
        return DistinguishedLevel.PRESIDENTS
    if goals >= 7 and (members >= 20 or net >= 5):
        return DistinguishedLevel.SELECT
    if goals >= 5 and (members >= 20 or net >= 3):
        return DistinguishedLevel.DISTINGUISHED
    return None


def risk_factor_labels(factors: Iterable[RiskFactor]) -> List[str]:
    return sorted(factor.value for factor in set(factors))


def parse_risk_factor_labels(labels: Iterable[str]) -> Set[RiskFactor]:
    return {RiskFactor.from_label(label) for label in labels}


class ClubHealthAnalyticsModule:
    """Builds one ClubTrend per club from a unit's ordered snapshots."""

    def club_histories(
        self, snapshots: Sequence[UnitStatistics]
    ) -> "OrderedDict[str, List[Tuple[str, ClubStatistics]]]":
        histories: "OrderedDict[str, List[Tuple[str, ClubStatistics]]]" = OrderedDict()
        for snapshot in sorted(snapshots, key=lambda s: s.snapshot_date):
            for club in snapshot.clubs:
                histories.setdefault(club.club_id, []).append((snapshot.snapshot_date, club))
        return histories

    def analyze_club(self, history: Sequence[Tuple[str, ClubStatistics]]) -> ClubTrend:
        if not history:
            raise ValueError("club history is empty")
        latest_date, latest = history[-1]
        checkpoint = dcp_checkpoint_for_month(parse_date(latest_date).month)
        status, factors = classify_club(latest, checkpoint)

        membership_trend = [MembershipTrendPoint(date=d, count=c.membership) for d, c in history]
        if len(membership_trend) >= 2 and membership_trend[-1].count < membership_trend[0].count:
            factors = factors | {RiskFactor.MEMBERSHIP_DECLINE}

        return ClubTrend(
            club_id=latest.club_id,
            club_name=latest.club_name,
            division=latest.division,
            area=latest.area,
            current_status=status,
            health_score=health_score(latest),
            risk_factors=risk_factor_labels(factors),
            membership_trend=membership_trend,
            dcp_goals_trend=[DcpGoalsTrendPoint(date=d, goals_achieved=c.goals_met) for d, c in history],
            membership=latest.membership,
            membership_base=latest.membership_base,
            net_growth=latest.net_growth,
            goals_met=latest.goals_met,
            dcp_checkpoint=checkpoint,
            csp_submitted=latest.has_csp,
            distinguished_level=distinguished_level(latest),
        )

    def analyze(self, snapshots: Sequence[UnitStatistics]) -> List[ClubTrend]:
        """Clubs missing from the latest snapshot are not reported."""
        if not snapshots:
            return []
        latest_date = max(s.snapshot_date for s in snapshots)
        trends = []
        for history in self.club_histories(snapshots).values():
            if history[-1][0] != latest_date:
                continue
            trends.append(self.analyze_club(history))
        return trends

    @staticmethod
    def categorize(trends: Iterable[ClubTrend]) -> ClubCategorization:
        buckets: Dict[HealthStatus, List[ClubTrend]] = {status: [] for status in HealthStatus}
        for trend in trends:
            buckets[trend.current_status].append(trend)
        return ClubCategorization(
            thriving=buckets[HealthStatus.THRIVING],
            stable=buckets[HealthStatus.STABLE],
            vulnerable=buckets[HealthStatus.VULNERABLE],
            intervention_required=buckets[HealthStatus.INTERVENTION_REQUIRED],
        )
