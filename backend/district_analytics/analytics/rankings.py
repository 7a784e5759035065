"""Borda-count ranking of every unit in one snapshot.

Three categories are ranked independently (club growth %, payment growth %,
distinguished %). Each category awards ``N - rank + 1`` points and the sum
is the aggregate score. Ordering always falls back to the unit id so the
result is identical across runs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from district_analytics.core.time import Clock, utcnow
from district_analytics.schemas.rankings import (
    MetricRankings,
    RankingsArtifact,
    RankingsMetadata,
    UnitRanking,
)
from district_analytics.schemas.statistics import RankingInput


logger = logging.getLogger(__name__)

RANKING_VERSION = "2.0"

CATEGORY_VALUES: Dict[str, Callable[[UnitRanking], float]] = {
    "clubs": lambda r: r.club_growth_percent,
    "payments": lambda r: r.payment_growth_percent,
    "distinguished": lambda r: r.distinguished_percent,
}


def competition_ranks(values: Dict[str, float]) -> Dict[str, int]:
    """Standard competition ranking, highest value first ("1224")."""
    ordered = sorted(values.items(), key=lambda item: (-item[1], item[0]))
    ranks: Dict[str, int] = {}
    previous: Optional[float] = None
    current_rank = 0
    for position, (key, value) in enumerate(ordered, start=1):
        if previous is None or value != previous:
            current_rank = position
            previous = value
        ranks[key] = current_rank
    return ranks


@dataclass
class _CategoryResult:
    ranks: Dict[str, int]
    points: Dict[str, int]


class RankingCalculator:
    def __init__(self, clock: Clock = utcnow) -> None:
        self.clock = clock

    def _rank_category(self, values: Dict[str, float]) -> _CategoryResult:
        total = len(values)
        ranks = competition_ranks(values)
        return _CategoryResult(
            ranks=ranks,
            points={key: total - rank + 1 for key, rank in ranks.items()},
        )

    def calculate(self, inputs: Sequence[RankingInput]) -> List[UnitRanking]:
        by_id: Dict[str, RankingInput] = {}
        for item in inputs:
            if item.unit_id in by_id:
                logger.warning(
                    "rankings.duplicate_unit",
                    extra={"operation": "calculate_rankings", "unit_id": item.unit_id},
                )
            by_id[item.unit_id] = item
        if not by_id:
            return []

        clubs = self._rank_category({k: v.club_growth_percent for k, v in by_id.items()})
        payments = self._rank_category({k: v.payment_growth_percent for k, v in by_id.items()})
        distinguished = self._rank_category(
            {k: v.distinguished_percent for k, v in by_id.items()}
        )

        aggregates = {
            unit_id: clubs.points[unit_id] + payments.points[unit_id] + distinguished.points[unit_id]
            for unit_id in by_id
        }
        overall = competition_ranks({k: float(v) for k, v in aggregates.items()})

        rankings = [
            UnitRanking(
                unit_id=unit_id,
                region=item.region,
                paid_clubs=item.paid_clubs,
                paid_club_base=item.paid_club_base,
                club_growth_percent=item.club_growth_percent,
                total_payments=item.total_payments,
                payment_base=item.payment_base,
                payment_growth_percent=item.payment_growth_percent,
                active_clubs=item.active_clubs,
                distinguished_clubs=item.distinguished_clubs,
                distinguished_percent=item.distinguished_percent,
                clubs_rank=clubs.ranks[unit_id],
                payments_rank=payments.ranks[unit_id],
                distinguished_rank=distinguished.ranks[unit_id],
                aggregate_score=aggregates[unit_id],
                overall_rank=overall[unit_id],
            )
            for unit_id, item in by_id.items()
        ]
        rankings.sort(key=lambda r: (-r.aggregate_score, r.unit_id))
        return rankings

    def build_rankings_artifact(
        self, snapshot_id: str, inputs: Iterable[RankingInput]
    ) -> RankingsArtifact:
        rankings = self.calculate(list(inputs))
        artifact = RankingsArtifact(
            metadata=RankingsMetadata(
                snapshot_id=snapshot_id,
                calculated_at=self.clock().isoformat(),
                ranking_version=RANKING_VERSION,
                total_units=len(rankings),
            ),
            rankings=rankings,
        )
        logger.info(
            "rankings.computed",
            extra={
                "operation": "build_rankings_artifact",
                "snapshot_id": snapshot_id,
                "total_units": len(rankings),
            },
        )
        return artifact


def metric_rankings(
    artifact: Optional[RankingsArtifact], unit_id: str, category: str
) -> MetricRankings:
    """World and region standing of one unit on one ranking category."""
    if artifact is None or category not in CATEGORY_VALUES:
        return MetricRankings()
    entry = artifact.for_unit(unit_id)
    if entry is None:
        return MetricRankings()

    value_of = CATEGORY_VALUES[category]
    total = len(artifact.rankings)
    world_rank = getattr(entry, f"{category}_rank")
    percentile = round((1 - (world_rank - 1) / total) * 100, 1) if total else None

    region_rank = None
    total_in_region = None
    if entry.region:
        peers = [r for r in artifact.rankings if r.region == entry.region]
        region_rank = competition_ranks({r.unit_id: value_of(r) for r in peers})[unit_id]
        total_in_region = len(peers)

    return MetricRankings(
        world_rank=world_rank,
        world_percentile=percentile,
        region_rank=region_rank,
        total_units=total,
        total_in_region=total_in_region,
        region=entry.region,
    )
