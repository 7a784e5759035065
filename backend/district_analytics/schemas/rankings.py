from typing import List, Optional

from pydantic import BaseModel, Field


class UnitRanking(BaseModel):
    unit_id: str
    region: Optional[str] = None
    paid_clubs: int = 0
    paid_club_base: Optional[int] = None
    club_growth_percent: float = 0.0
    total_payments: int = 0
    payment_base: Optional[int] = None
    payment_growth_percent: float = 0.0
    active_clubs: int = 0
    distinguished_clubs: int = 0
    distinguished_percent: float = 0.0
    clubs_rank: int
    payments_rank: int
    distinguished_rank: int
    aggregate_score: int
    overall_rank: int


class RankingsMetadata(BaseModel):
    snapshot_id: str
    calculated_at: str
    ranking_version: str
    total_units: int


class RankingsArtifact(BaseModel):
    metadata: RankingsMetadata
    rankings: List[UnitRanking] = Field(default_factory=list)

    def for_unit(self, unit_id: str) -> Optional[UnitRanking]:
        for ranking in self.rankings:
            if ranking.unit_id == unit_id:
                return ranking
        return None


class MetricRankings(BaseModel):
    """Where one unit stands on one category. All None when unranked."""

    world_rank: Optional[int] = None
    world_percentile: Optional[float] = None
    region_rank: Optional[int] = None
    total_units: Optional[int] = None
    total_in_region: Optional[int] = None
    region: Optional[str] = None
