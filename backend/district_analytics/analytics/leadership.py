"""Division and area leadership effectiveness."""

from __future__ import annotations

import math
from collections import OrderedDict
from typing import Dict, List, Optional, Sequence

from district_analytics.core.time import Clock, utcnow
from district_analytics.schemas.analytics import (
    AreaCorrelation,
    DivisionEffectiveness,
    LeadershipInsights,
    LeadershipSummary,
)
from district_analytics.schemas.statistics import ClubStatistics, UnitStatistics


BEST_PRACTICE_SCORE = 75
BEST_PRACTICE_TOP_SHARE = 0.2
CONSISTENCY_FLOOR = 0.7
UNASSIGNED = "Unassigned"


def _is_healthy(club: ClubStatistics) -> bool:
    return club.membership >= 12 and club.goals_met > 0


def _membership_component(clubs: Sequence[ClubStatistics]) -> float:
    average = sum(c.membership for c in clubs) / len(clubs)
    return min(average / 30 * 100, 100.0)


def _clamp_growth(rate: float) -> float:
    # +10% growth = 100, flat = 50, -10% = 0
    return max(0.0, min(100.0, 50 + rate * 5))


def division_health_score(clubs: Sequence[ClubStatistics]) -> float:
    if not clubs:
        return 0.0
    healthy = sum(1 for c in clubs if _is_healthy(c)) / len(clubs) * 100
    strong = sum(1 for c in clubs if c.membership >= 20) / len(clubs) * 100
    return healthy * 0.5 + _membership_component(clubs) * 0.3 + strong * 0.2


def division_growth_score(history: Sequence[Sequence[ClubStatistics]]) -> float:
    if len(history) < 2:
        clubs = history[0] if history else []
        base = sum(c.membership_base for c in clubs)
        if not clubs or base == 0:
            return 50.0
        current = sum(c.membership for c in clubs)
        return _clamp_growth((current - base) / base * 100)
    first = sum(c.membership for c in history[0])
    last = sum(c.membership for c in history[-1])
    rate = (last - first) / first * 100 if first > 0 else 0.0
    return _clamp_growth(rate)


def division_dcp_score(clubs: Sequence[ClubStatistics]) -> float:
    if not clubs:
        return 0.0
    return sum(c.goals_met for c in clubs) / (len(clubs) * 10) * 100


def area_performance_score(clubs: Sequence[ClubStatistics]) -> float:
    if not clubs:
        return 0.0
    avg_goals = sum(c.goals_met for c in clubs) / len(clubs)
    healthy = sum(1 for c in clubs if _is_healthy(c)) / len(clubs)
    return round(avg_goals / 10 * 40 + _membership_component(clubs) * 0.3 + healthy * 100 * 0.3)


def activity_indicator(score: float) -> str:
    if score >= 70:
        return "high"
    if score >= 40:
        return "medium"
    return "low"


def _group(clubs: Sequence[ClubStatistics], key) -> "OrderedDict[str, List[ClubStatistics]]":
    groups: "OrderedDict[str, List[ClubStatistics]]" = OrderedDict()
    for club in clubs:
        groups.setdefault(key(club) or UNASSIGNED, []).append(club)
    return groups


class LeadershipInsightsModule:
    def __init__(self, clock: Clock = utcnow) -> None:
        self.clock = clock

    def division_rankings(self, snapshots: Sequence[UnitStatistics]) -> List[DivisionEffectiveness]:
        latest = snapshots[-1]
        scores = []
        for division, clubs in _group(latest.clubs, lambda c: c.division).items():
            history = [
                [c for c in s.clubs if (c.division or UNASSIGNED) == division] for s in snapshots
            ]
            health = division_health_score(clubs)
            growth = division_growth_score(history)
            dcp = division_dcp_score(clubs)
            scores.append(
                DivisionEffectiveness(
                    division=division,
                    club_count=len(clubs),
                    health_score=round(health),
                    growth_score=round(growth),
                    dcp_score=round(dcp),
                    overall_score=round(health * 0.4 + growth * 0.3 + dcp * 0.3),
                )
            )
        scores.sort(key=lambda s: (-s.overall_score, s.division))
        for index, score in enumerate(scores, start=1):
            score.rank = index
        return scores

    @staticmethod
    def is_consistent(division: str, snapshots: Sequence[UnitStatistics]) -> bool:
        """False when division DCP goals drop below 70% of the previous snapshot."""
        totals = [
            sum(c.goals_met for c in s.clubs if (c.division or UNASSIGNED) == division)
            for s in snapshots
        ]
        for previous, current in zip(totals, totals[1:]):
            if previous > 0 and current < previous * CONSISTENCY_FLOOR:
                return False
        return True

    def best_practice_divisions(
        self, rankings: Sequence[DivisionEffectiveness], snapshots: Sequence[UnitStatistics]
    ) -> List[DivisionEffectiveness]:
        top = math.ceil(len(rankings) * BEST_PRACTICE_TOP_SHARE)
        return [
            score
            for index, score in enumerate(rankings)
            if score.overall_score >= BEST_PRACTICE_SCORE
            and index < top
            and self.is_consistent(score.division, snapshots)
        ]

    def area_correlations(self, latest: UnitStatistics) -> List[AreaCorrelation]:
        correlations = []
        for area, clubs in _group(latest.clubs, lambda c: c.area).items():
            score = area_performance_score(clubs)
            activity = activity_indicator(score)
            if activity == "high":
                correlation = "positive"
            elif activity == "low":
                correlation = "negative"
            else:
                correlation = "neutral"
            correlations.append(
                AreaCorrelation(
                    area=area,
                    division=clubs[0].division,
                    club_count=len(clubs),
                    activity_indicator=activity,
                    club_performance_score=score,
                    correlation=correlation,
                )
            )
        correlations.sort(key=lambda c: (-c.club_performance_score, c.area))
        return correlations

    @staticmethod
    def summary(
        rankings: Sequence[DivisionEffectiveness],
        best: Sequence[DivisionEffectiveness],
        latest: UnitStatistics,
    ) -> LeadershipSummary:
        area_scores: Dict[str, float] = {}
        for area, clubs in _group(latest.clubs, lambda c: c.area).items():
            area_scores[area] = round(sum(c.goals_met for c in clubs) / len(clubs) * 10)
        top_areas = sorted(area_scores, key=lambda a: (-area_scores[a], a))[:5]
        average: Optional[float] = None
        if rankings:
            average = round(sum(s.overall_score for s in rankings) / len(rankings), 1)
        return LeadershipSummary(
            top_divisions=[s.division for s in rankings[:5]],
            top_areas=top_areas,
            average_leadership_score=average or 0.0,
            total_best_practice_divisions=len(best),
        )

    def analyze(self, unit_id: str, snapshots: Sequence[UnitStatistics]) -> LeadershipInsights:
        ordered = sorted(snapshots, key=lambda s: s.snapshot_date)
        if not ordered:
            raise ValueError("leadership insights need at least one snapshot")
        latest = ordered[-1]
        rankings = self.division_rankings(ordered)
        best = self.best_practice_divisions(rankings, ordered)
        return LeadershipInsights(
            unit_id=unit_id,
            computed_at=self.clock().isoformat(),
            division_rankings=rankings,
            best_practice_divisions=best,
            area_correlations=self.area_correlations(latest),
            summary=self.summary(rankings, best, latest),
        )
